from typing import List, Optional

from marketplace.domain.order_status import STATUS_DESCRIPTIONS, STATUS_MESSAGES, OrderStatus
from marketplace.domain.schemas import NotificationType, OrderItem


def short_id(order_id: str) -> str:
    return order_id[:8]


# --- Customer (WhatsApp) ---
RATING_PROMPT = """
⭐ *¿Cómo fue tu experiencia?*

Califica del 1 al 5:
1️⃣ Muy malo
2️⃣ Malo
3️⃣ Regular
4️⃣ Bueno
5️⃣ Excelente

Escribe solo el número (o "omitir" para saltar)"""

BOT_REACTIVATED_MESSAGE = (
    "🤖 El asistente virtual está activo nuevamente.\n\n"
    "Escribe *menu* para hacer un nuevo pedido o *estado* para consultar tu pedido."
)


def status_update_message(order_id: str, status: OrderStatus) -> str:
    message = f"Tu pedido #{short_id(order_id)} {STATUS_MESSAGES[status]}. {STATUS_DESCRIPTIONS[status]}"
    if status == OrderStatus.DELIVERED:
        message += f"\n{RATING_PROMPT}"
    return message


def vendor_chat_message(content: str, vendor_name: Optional[str] = None) -> str:
    if vendor_name:
        return f"📩 Mensaje de *{vendor_name}*:\n{content}"
    return f"📩 Mensaje del vendedor: {content}"


# --- Vendor ---
NOTIFICATION_EMOJI = {
    NotificationType.NEW_ORDER: "🆕",
    NotificationType.ORDER_CANCELLED: "❌",
    NotificationType.PAYMENT_RECEIVED: "💰",
    NotificationType.ORDER_UPDATED: "📦",
    NotificationType.CUSTOMER_MESSAGE: "💬",
}


def notification_emoji(type: str) -> str:
    try:
        return NOTIFICATION_EMOJI[NotificationType(type)]
    except ValueError:
        return "🔔"


def new_order_summary(order_id: str, customer_name: str, address: Optional[str],
                      items: List[OrderItem], total: float) -> str:
    items_list = "\n".join(f"• {item.quantity}x {item.name} - ${item.price}" for item in items)
    return (
        f"🛍️ *Nuevo Pedido #{short_id(order_id)}*\n\n"
        f"👤 Cliente: {customer_name}\n"
        f"📍 Dirección: {address or 'Sin dirección'}\n\n"
        f"*Productos:*\n{items_list}\n\n"
        f"💰 Total: ${total}\n\n"
        f"Por favor, confirma el pedido desde tu panel de vendedor."
    )


def order_cancelled_summary(order_id: str, customer_name: str, total: float) -> str:
    return (
        f"❌ *Pedido Cancelado #{short_id(order_id)}*\n\n"
        f"El pedido de {customer_name} ha sido cancelado.\n"
        f"Total: ${total}"
    )


CUSTOMER_MESSAGE_SUMMARY = (
    "💬 *Nuevo mensaje de cliente*\n\n"
    "Un cliente está intentando comunicarse contigo. "
    "Por favor, revisa tu panel de vendedor."
)
