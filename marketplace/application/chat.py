import logging
from typing import Optional

from marketplace.application.handoff import BotHandoff
from marketplace.core.errors import MarketplaceError, OrderNotFoundError, RepositoryError
from marketplace.domain.schemas import MessageRecord, MessageSender, NotificationType, SendMessageResult
from marketplace.domain.texts import CUSTOMER_MESSAGE_SUMMARY, short_id, vendor_chat_message
from marketplace.interfaces.IMessageRepository import IMessageRepository
from marketplace.interfaces.INotificationRepository import INotificationRepository, IVendorRepository
from marketplace.interfaces.INotifier import INotifier
from marketplace.interfaces.IOrderRepository import IOrderRepository
from marketplace.interfaces.IRealtimeBus import IRealtimeBus

logger = logging.getLogger(__name__)


class ChatService:
    """Per-order chat between vendor and customer, mirrored to WhatsApp."""

    def __init__(
        self,
        message_repo: IMessageRepository,
        order_repo: IOrderRepository,
        notification_repo: INotificationRepository,
        bus: IRealtimeBus,
        notifier: INotifier,
        handoff: BotHandoff,
        vendor_repo: Optional[IVendorRepository] = None,
    ):
        self.message_repo = message_repo
        self.order_repo = order_repo
        self.notification_repo = notification_repo
        self.bus = bus
        self.notifier = notifier
        self.handoff = handoff
        self.vendor_repo = vendor_repo

    async def send_message(self, order_id: str, content: str, sender: MessageSender | str) -> SendMessageResult:
        """
        Records the message, then for vendor messages pauses the bot and
        forwards the text over WhatsApp. Delivery failures are reported in
        the result; the stored message and the pause stay in place.
        """
        sender = MessageSender(sender)
        content = content.strip()
        if not content:
            raise MarketplaceError("El mensaje no puede estar vacío")

        order = self.order_repo.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)

        message = self.message_repo.add_message(order_id, sender.value, content)
        await self.bus.publish("messages", message.model_dump(mode="json"), "INSERT")

        if sender != MessageSender.VENDOR:
            return SendMessageResult(message=message)

        self.handoff.pause_bot(order.customer_phone)

        vendor_name = None
        if self.vendor_repo is not None:
            try:
                vendor = self.vendor_repo.get_vendor(order.vendor_id)
                vendor_name = vendor.name if vendor else None
            except RepositoryError as e:
                logger.warning(f"⚠️ Vendor lookup failed for {order.vendor_id}, sending without name: {e}")

        delivery = self.notifier.send(order.customer_phone, vendor_chat_message(content, vendor_name), order_id)
        if delivery.success:
            logger.info(f"✅ Vendor message for {short_id(order_id)} forwarded to WhatsApp")
        else:
            logger.warning(f"⚠️ Vendor message for {short_id(order_id)} stored but not delivered: {delivery.error}")

        return SendMessageResult(message=message, delivery=delivery, bot_paused=True)

    async def receive_customer_message(self, phone: str, text: str) -> Optional[MessageRecord]:
        """
        Inbound WhatsApp text. While the bot is paused it belongs to the
        vendor chat of the customer's latest open order; otherwise the bot
        handles it and nothing is recorded here.
        """
        if not self.handoff.check_bot_status(phone):
            return None

        order = self.order_repo.latest_open_order_for_phone(phone)
        if order is None:
            logger.info(f"ℹ️ {phone} is in vendor chat but has no open order")
            return None

        result = await self.send_message(order.id, text, MessageSender.CUSTOMER)

        try:
            row = self.notification_repo.add_notification(
                order.vendor_id,
                NotificationType.CUSTOMER_MESSAGE.value,
                f"Mensaje de {order.customer_name}",
                CUSTOMER_MESSAGE_SUMMARY,
                {"order_id": order.id, "preview": text[:50]},
            )
            await self.bus.publish("vendor_notification_history", row.model_dump(mode="json"), "INSERT")
        except RepositoryError as e:
            logger.error(f"❌ Could not record customer_message for vendor {order.vendor_id}: {e}")

        return result.message
