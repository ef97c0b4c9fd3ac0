# tests/test_order_service.py
import pytest

from marketplace.core.errors import InvalidTransitionError, OrderNotFoundError
from marketplace.infrastructure.state_manager import STATE_RATING_ORDER

VENDOR_ID = "vendor-1"
CUSTOMER_PHONE = "+5491122223333"

pytestmark = pytest.mark.asyncio


async def test_status_update_notifies_customer_and_publishes(services, make_order, bus, notifier):
    """A successful transition is stored, broadcast and sent over WhatsApp."""
    order = make_order()
    seen = []
    bus.subscribe("orders", seen.append, "vendor_id", VENDOR_ID)

    updated = await services.orders.update_order_status(order.id, "confirmed")

    assert updated.status == "confirmed"
    assert services.order_repo.get_order(order.id).status == "confirmed"
    assert [e.new["status"] for e in seen] == ["confirmed"]
    assert "confirmado" in notifier.messages_to(CUSTOMER_PHONE)[0]


async def test_same_status_is_a_no_op(services, make_order, notifier):
    order = make_order(status="preparing")
    result = await services.orders.update_order_status(order.id, "preparing")
    assert result.status == "preparing"
    assert notifier.sent == []


async def test_terminal_orders_do_not_move(services, make_order):
    order = make_order(status="delivered")
    with pytest.raises(InvalidTransitionError):
        await services.orders.update_order_status(order.id, "preparing")


async def test_unknown_order_raises(services):
    with pytest.raises(OrderNotFoundError):
        await services.orders.update_order_status("missing", "confirmed")


async def test_unknown_status_raises(services, make_order):
    order = make_order()
    with pytest.raises(InvalidTransitionError):
        await services.orders.update_order_status(order.id, "shipped")


async def test_advance_walks_the_chain(services, make_order):
    order = make_order()
    for expected in ["confirmed", "preparing", "ready", "delivering", "delivered"]:
        order = await services.orders.advance_order(order.id)
        assert order.status == expected
    with pytest.raises(InvalidTransitionError):
        await services.orders.advance_order(order.id)


async def test_cancel_only_from_pending(services, make_order, notification_repo, notifier):
    confirmed = make_order(status="confirmed")
    with pytest.raises(InvalidTransitionError):
        await services.orders.cancel_order(confirmed.id)

    pending = make_order()
    cancelled = await services.orders.cancel_order(pending.id)
    assert cancelled.status == "cancelled"

    history = notification_repo.list_notifications(VENDOR_ID)
    assert [n.type.value for n in history] == ["order_cancelled"]
    # Customer notice plus the vendor's WhatsApp copy
    assert len(notifier.messages_to(CUSTOMER_PHONE)) == 1
    assert len(notifier.messages_to("+5491100000001")) == 1


async def test_delivered_arms_rating_prompt(services, make_order, session_store, notifier):
    order = make_order(status="delivering")
    await services.orders.update_order_status(order.id, "delivered")

    session = session_store.get_session(CUSTOMER_PHONE)
    assert session.previous_state == STATE_RATING_ORDER
    assert session.context == {"selected_vendor_id": VENDOR_ID, "pending_order_id": order.id}
    assert "Califica del 1 al 5" in notifier.messages_to(CUSTOMER_PHONE)[-1]


async def test_failed_whatsapp_does_not_undo_transition(services, make_order, notifier):
    notifier.fail_with = "Twilio down"
    order = make_order()
    updated = await services.orders.update_order_status(order.id, "confirmed")
    assert updated.status == "confirmed"
    assert services.order_repo.get_order(order.id).status == "confirmed"


async def test_mark_as_paid_records_payment(services, make_order, notification_repo):
    order = make_order(status="delivering", payment_method="efectivo")
    verdict = await services.orders.mark_as_paid(order.id)

    assert verdict.allowed
    stored = services.order_repo.get_order(order.id)
    assert stored.payment_status == "paid"
    assert stored.paid_at is not None
    notifications = notification_repo.list_notifications(VENDOR_ID)
    assert notifications[0].type.value == "payment_received"
    assert "💵" in notifications[0].message


async def test_mark_as_paid_refusal_leaves_order_untouched(services, make_order, notification_repo):
    order = make_order(status="pending", payment_method="efectivo")
    verdict = await services.orders.mark_as_paid(order.id)

    assert not verdict.allowed
    assert services.order_repo.get_order(order.id).payment_status == "pending"
    assert notification_repo.list_notifications(VENDOR_ID) == []


async def test_mark_as_unpaid_clears_paid_at(services, make_order):
    order = make_order(status="ready", payment_method="transferencia")
    await services.orders.mark_as_paid(order.id)
    verdict = await services.orders.mark_as_unpaid(order.id)

    assert verdict.allowed
    stored = services.order_repo.get_order(order.id)
    assert stored.payment_status == "pending"
    assert stored.paid_at is None


async def test_new_order_reaches_vendor(services, make_order, bus, notification_repo, notifier):
    order = make_order()
    seen = []
    bus.subscribe("orders", seen.append, "vendor_id", VENDOR_ID)

    await services.orders.notify_new_order(order.id)

    assert [e.type for e in seen] == ["INSERT"]
    assert notification_repo.list_notifications(VENDOR_ID)[0].type.value == "new_order"
    summary = notifier.messages_to("+5491100000001")[0]
    assert "• 6x Medialunas - $300.0" in summary
    assert "Av. Corrientes 1234, CABA" in summary


async def test_payment_instructions_follow_vendor_settings(services, make_order, vendor_repo):
    vendor_repo.add_vendor(id="vendor-3", name="Verdulería", payment_settings={
        "efectivo": True,
        "transferencia": {"activo": True, "alias": "verdu.alias"},
    })
    order = make_order(vendor_id="vendor-3", total=2500.0)

    text = services.orders.payment_instructions_for(order.id)

    assert "Total $2,500.00" in text
    assert "verdu.alias" in text
    assert "Efectivo" in text
