import logging
from datetime import datetime, timezone
from typing import Optional

import pytz

from marketplace.core.config import settings
from marketplace.core.errors import InvalidTransitionError, OrderNotFoundError, RepositoryError
from marketplace.domain.order_status import OrderStatus, can_cancel, is_terminal, next_status
from marketplace.domain.payments import (
    PaymentStatus,
    ValidationResult,
    can_mark_as_paid,
    can_mark_as_unpaid,
    parse_payment_settings,
    payment_instructions,
    payment_method_icon,
)
from marketplace.domain.schemas import NotificationType, OrderRecord
from marketplace.domain.texts import new_order_summary, order_cancelled_summary, short_id, status_update_message
from marketplace.infrastructure.state_manager import STATE_RATING_ORDER, SessionStore
from marketplace.interfaces.INotificationRepository import INotificationRepository, IVendorRepository
from marketplace.interfaces.INotifier import INotifier
from marketplace.interfaces.IOrderRepository import IOrderRepository
from marketplace.interfaces.IRealtimeBus import IRealtimeBus

logger = logging.getLogger(__name__)

TIMEZONE = pytz.timezone(settings.TIMEZONE)


def local_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(TIMEZONE).strftime("%d/%m %H:%M")


class OrderService:
    """
    Write-through operations on orders: status transitions and payment flags.
    Every successful write is published on the change feed.
    """

    def __init__(
        self,
        order_repo: IOrderRepository,
        notification_repo: INotificationRepository,
        bus: IRealtimeBus,
        notifier: INotifier,
        session_store: SessionStore,
        vendor_repo: Optional[IVendorRepository] = None,
    ):
        self.order_repo = order_repo
        self.notification_repo = notification_repo
        self.bus = bus
        self.notifier = notifier
        self.session_store = session_store
        self.vendor_repo = vendor_repo

    def get_order(self, order_id: str) -> OrderRecord:
        order = self.order_repo.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    # ---------------------------------------------------------
    # STATUS
    # ---------------------------------------------------------
    async def update_order_status(self, order_id: str, new_status: OrderStatus | str) -> OrderRecord:
        order = self.get_order(order_id)
        try:
            target = OrderStatus(new_status)
        except ValueError:
            raise InvalidTransitionError(order.status, str(new_status))

        if order.status == target.value:
            logger.info(f"ℹ️ Order {short_id(order_id)} already '{target.value}', ignoring update")
            return order

        # Delivered and cancelled are absorbing
        if is_terminal(order.status):
            raise InvalidTransitionError(order.status, target.value)

        updated = self.order_repo.update_status(order_id, target.value)
        if updated is None:
            raise OrderNotFoundError(order_id)
        logger.info(f"✅ Order {short_id(order_id)}: {order.status} -> {target.value}")

        await self.bus.publish("orders", updated.model_dump(mode="json"), "UPDATE")

        self._notify_customer(updated, target)
        if target == OrderStatus.CANCELLED:
            await self._record_vendor_notification(
                updated,
                NotificationType.ORDER_CANCELLED,
                f"Pedido #{short_id(order_id)} cancelado",
                order_cancelled_summary(order_id, updated.customer_name, updated.total),
                notify_whatsapp=True,
            )
        return updated

    async def advance_order(self, order_id: str) -> OrderRecord:
        order = self.get_order(order_id)
        successor = next_status(order.status)
        if successor is None:
            raise InvalidTransitionError(order.status, "siguiente")
        return await self.update_order_status(order_id, successor)

    async def cancel_order(self, order_id: str) -> OrderRecord:
        order = self.get_order(order_id)
        if not can_cancel(order.status):
            raise InvalidTransitionError(order.status, OrderStatus.CANCELLED.value)
        return await self.update_order_status(order_id, OrderStatus.CANCELLED)

    def _notify_customer(self, order: OrderRecord, status: OrderStatus):
        if status == OrderStatus.DELIVERED:
            # The bot asks for a 1-5 rating on the customer's next message
            self.session_store.upsert_session(
                order.customer_phone,
                previous_state=STATE_RATING_ORDER,
                context={"selected_vendor_id": order.vendor_id, "pending_order_id": order.id},
            )

        if status == OrderStatus.PENDING:
            return
        result = self.notifier.send(order.customer_phone, status_update_message(order.id, status), order.id)
        if not result.success:
            logger.warning(f"⚠️ Status notification for {short_id(order.id)} not delivered: {result.error}")

    # ---------------------------------------------------------
    # NEW ORDERS
    # ---------------------------------------------------------
    async def notify_new_order(self, order_id: str) -> OrderRecord:
        """
        Called by the ordering bot once it has inserted an order.
        Broadcasts the row and tells the vendor (history + WhatsApp).
        """
        order = self.get_order(order_id)
        await self.bus.publish("orders", order.model_dump(mode="json"), "INSERT")
        await self._record_vendor_notification(
            order,
            NotificationType.NEW_ORDER,
            f"Nuevo pedido #{short_id(order_id)}",
            new_order_summary(order_id, order.customer_name, order.address, order.items, order.total),
            notify_whatsapp=True,
        )
        return order

    def payment_instructions_for(self, order_id: str) -> str:
        order = self.get_order(order_id)
        vendor = self.vendor_repo.get_vendor(order.vendor_id) if self.vendor_repo else None
        options = parse_payment_settings(vendor.payment_settings if vendor else None)
        return payment_instructions(options, order.total)

    # ---------------------------------------------------------
    # PAYMENT
    # ---------------------------------------------------------
    async def mark_as_paid(self, order_id: str) -> ValidationResult:
        order = self.get_order(order_id)
        verdict = can_mark_as_paid(order.status, order.payment_method)
        if not verdict.allowed:
            logger.info(f"🚫 Mark-as-paid refused for {short_id(order_id)}: {verdict.reason}")
            return verdict

        paid_at = datetime.now(timezone.utc)
        updated = self.order_repo.set_payment_status(order_id, PaymentStatus.PAID.value, paid_at)
        if updated is None:
            raise OrderNotFoundError(order_id)
        await self.bus.publish("orders", updated.model_dump(mode="json"), "UPDATE")

        await self._record_vendor_notification(
            updated,
            NotificationType.PAYMENT_RECEIVED,
            f"Pago recibido #{short_id(order_id)}",
            f"{payment_method_icon(updated.payment_method)} ${updated.total} "
            f"({updated.payment_method}) registrado el {local_time(paid_at)}",
        )
        return verdict

    async def mark_as_unpaid(self, order_id: str) -> ValidationResult:
        order = self.get_order(order_id)
        verdict = can_mark_as_unpaid(order.status, order.payment_method)
        if not verdict.allowed:
            logger.info(f"🚫 Mark-as-unpaid refused for {short_id(order_id)}: {verdict.reason}")
            return verdict

        updated = self.order_repo.set_payment_status(order_id, PaymentStatus.PENDING.value, None)
        if updated is None:
            raise OrderNotFoundError(order_id)
        await self.bus.publish("orders", updated.model_dump(mode="json"), "UPDATE")
        return verdict

    # ---------------------------------------------------------
    # VENDOR NOTIFICATIONS
    # ---------------------------------------------------------
    async def _record_vendor_notification(self, order: OrderRecord, type: NotificationType,
                                          title: str, message: str, notify_whatsapp: bool = False):
        """Side effect of a committed write: failures are logged, never raised."""
        try:
            row = self.notification_repo.add_notification(
                order.vendor_id, type.value, title, message,
                {"order_id": order.id, "status": order.status},
            )
        except RepositoryError as e:
            logger.error(f"❌ Could not record '{type.value}' for vendor {order.vendor_id}: {e}")
            return
        await self.bus.publish("vendor_notification_history", row.model_dump(mode="json"), "INSERT")

        if notify_whatsapp and self.vendor_repo is not None:
            try:
                vendor = self.vendor_repo.get_vendor(order.vendor_id)
            except RepositoryError as e:
                logger.error(f"❌ Could not load vendor {order.vendor_id} for WhatsApp notice: {e}")
                return
            if vendor and vendor.whatsapp_number:
                result = self.notifier.send(vendor.whatsapp_number, message, order.id)
                if not result.success:
                    logger.warning(f"⚠️ Vendor WhatsApp for {short_id(order.id)} not delivered: {result.error}")
