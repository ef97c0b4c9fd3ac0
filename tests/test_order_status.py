# tests/test_order_status.py
import pytest

from marketplace.domain.order_status import (
    STATUS_CHAIN,
    STATUS_LABELS,
    OrderStatus,
    can_cancel,
    is_terminal,
    next_status,
)
from marketplace.domain.texts import status_update_message


@pytest.mark.parametrize("current, expected", [
    ("pending", OrderStatus.CONFIRMED),
    ("confirmed", OrderStatus.PREPARING),
    ("preparing", OrderStatus.READY),
    ("ready", OrderStatus.DELIVERING),
    ("delivering", OrderStatus.DELIVERED),
    ("delivered", None),
    ("cancelled", None),
])
def test_next_status_follows_the_chain(current, expected):
    assert next_status(current) == expected


def test_next_status_is_total_over_every_status():
    """Every status has exactly one successor or none, never an error."""
    for status in OrderStatus:
        successor = next_status(status)
        assert successor is None or successor in STATUS_CHAIN


def test_unknown_status_is_rejected():
    with pytest.raises(ValueError):
        next_status("shipped")


def test_terminal_and_cancellable_statuses():
    assert is_terminal("delivered") and is_terminal("cancelled")
    assert not is_terminal("delivering")
    assert [s for s in OrderStatus if can_cancel(s)] == [OrderStatus.PENDING]


def test_every_status_has_a_label():
    assert set(STATUS_LABELS) == set(OrderStatus)


def test_delivered_message_carries_rating_prompt():
    text = status_update_message("ord-001-abcdef", OrderStatus.DELIVERED)
    assert text.startswith("Tu pedido #ord-001- ha sido entregado.")
    assert "Califica del 1 al 5" in text

    text = status_update_message("ord-001-abcdef", OrderStatus.DELIVERING)
    assert "está en camino" in text
    assert "Califica" not in text
