from enum import Enum
from typing import Optional


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Linear happy path. Cancellation is only reachable from PENDING.
STATUS_CHAIN = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.DELIVERING,
    OrderStatus.DELIVERED,
]

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


def next_status(current: OrderStatus | str) -> Optional[OrderStatus]:
    """
    Returns the single successor of `current` in the fulfillment chain,
    or None for delivered/cancelled orders.
    """
    current = OrderStatus(current)
    if current in TERMINAL_STATUSES:
        return None
    return STATUS_CHAIN[STATUS_CHAIN.index(current) + 1]


def is_terminal(status: OrderStatus | str) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def can_cancel(status: OrderStatus | str) -> bool:
    return OrderStatus(status) == OrderStatus.PENDING


# --- Customer-facing texts (WhatsApp) ---
STATUS_MESSAGES = {
    OrderStatus.CONFIRMED: "confirmado",
    OrderStatus.PREPARING: "está siendo preparado",
    OrderStatus.READY: "está listo",
    OrderStatus.DELIVERING: "está en camino",
    OrderStatus.DELIVERED: "ha sido entregado",
    OrderStatus.CANCELLED: "ha sido cancelado",
}

STATUS_DESCRIPTIONS = {
    OrderStatus.CONFIRMED: "El vendedor está preparando tu pedido.",
    OrderStatus.PREPARING: "Tu pedido está siendo preparado.",
    OrderStatus.READY: "Tu pedido está listo para entrega.",
    OrderStatus.DELIVERING: "Tu pedido está en camino.",
    OrderStatus.DELIVERED: "¡Gracias por tu compra!",
    OrderStatus.CANCELLED: "Si tienes alguna duda, contacta al vendedor.",
}

STATUS_LABELS = {
    OrderStatus.PENDING: "Pendiente",
    OrderStatus.CONFIRMED: "Confirmado",
    OrderStatus.PREPARING: "En preparación",
    OrderStatus.READY: "Listo",
    OrderStatus.DELIVERING: "En camino",
    OrderStatus.DELIVERED: "Entregado",
    OrderStatus.CANCELLED: "Cancelado",
}
