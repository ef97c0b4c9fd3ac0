"""
Live, in-memory views over the backend of record.

A feed seeds itself with one full fetch and keeps up through a change-feed
subscription scoped to a vendor or an order. Every incoming row goes through
`merge_rows`, so replayed events, resubscribe refetches and the race between
the seed fetch and the first live event all converge on the same state.

Lifecycle: `mount()` acquires the subscription, `close()` releases it.
Feeds also work as async context managers.
"""
import asyncio
import logging
from typing import Callable, Iterable, List, Optional, Set

from pydantic import BaseModel

from marketplace.application.chat import ChatService
from marketplace.application.order_service import OrderService
from marketplace.core.errors import MarketplaceError, RepositoryError
from marketplace.domain.order_status import STATUS_LABELS, OrderStatus
from marketplace.domain.schemas import (
    Alert,
    ChangeEvent,
    MessageRecord,
    MessageSender,
    NotificationRecord,
    OrderRecord,
    SendMessageResult,
)
from marketplace.domain.texts import notification_emoji, short_id
from marketplace.infrastructure.state_manager import SessionStore
from marketplace.interfaces.IMessageRepository import IMessageRepository
from marketplace.interfaces.INotificationRepository import INotificationRepository
from marketplace.interfaces.IOrderRepository import IOrderRepository
from marketplace.interfaces.IRealtimeBus import IRealtimeBus, Subscription

logger = logging.getLogger(__name__)

AlertCallback = Callable[[Alert], None]


def merge_rows(rows: Iterable[BaseModel], incoming: Iterable[BaseModel], descending: bool = False) -> list:
    """
    Keyed merge: a row replaces the one with the same id, otherwise it is added.
    Output is sorted by (created_at, id), so the result does not depend on
    arrival order for identical payloads.
    """
    by_id = {row.id: row for row in rows}
    for row in incoming:
        by_id[row.id] = row
    return sorted(by_id.values(), key=lambda r: (r.created_at, r.id), reverse=descending)


def _log_alert(alert: Alert):
    logger.info(f"🔔 {alert.title} {alert.description}".rstrip())


class _RealtimeFeed:
    table: str = ""
    record_model: type = BaseModel
    descending: bool = False

    def __init__(self, bus: IRealtimeBus, filter_column: Optional[str], filter_value: Optional[str],
                 on_alert: Optional[AlertCallback] = None, on_change: Optional[Callable[[], None]] = None):
        self.bus = bus
        self.filter_column = filter_column
        self.filter_value = filter_value
        self.on_alert = on_alert or _log_alert
        self.on_change = on_change
        self.rows: list = []
        self.loading = True
        self._subscription: Optional[Subscription] = None
        self._alive = False
        self._pending: Set[asyncio.Task] = set()

    async def mount(self):
        # Re-mounting (scope change) releases the previous subscription first
        if self._subscription is not None:
            self.close()

        self._alive = True
        self.loading = True
        # Subscribe before the seed fetch so nothing committed in between is missed
        self._subscription = self.bus.subscribe(
            self.table,
            self._on_event,
            filter_column=self.filter_column if self.filter_value else None,
            filter_value=self.filter_value,
            on_reconnect=self._on_reconnect,
        )
        await self.refresh()
        return self

    async def refresh(self):
        try:
            records = self._fetch()
        except RepositoryError as e:
            logger.error(f"❌ Seed fetch for {self.table} ({self.filter_column}={self.filter_value}) failed: {e}")
            self._alert(Alert(title="Error", description=str(e), variant="destructive"))
            return
        finally:
            self.loading = False
        if self._alive:
            self.rows = merge_rows(self.rows, records, self.descending)

    def close(self):
        """Releases the subscription. Callbacks and late results are dropped afterwards."""
        self._alive = False
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        for task in self._pending:
            task.cancel()
        self._pending.clear()

    async def __aenter__(self):
        return await self.mount()

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

    def get(self, row_id: str):
        return next((row for row in self.rows if row.id == row_id), None)

    # --- event path ---
    def _on_event(self, event: ChangeEvent):
        if not self._alive:
            return
        record = self.record_model.model_validate(event.new)
        if self.filter_value and str(getattr(record, self.filter_column)) != str(self.filter_value):
            # The transport filters by scope; anything else is a transport bug
            logger.warning(f"⚠️ Dropped out-of-scope {self.table} row {record.id}")
            return
        previous = self.get(record.id)
        self.rows = merge_rows(self.rows, [record], self.descending)
        self._after_merge(event, record, previous)
        if self.on_change is not None:
            self.on_change()

    def _on_reconnect(self):
        if not self._alive:
            return
        # Events may have been missed while disconnected
        task = asyncio.get_running_loop().create_task(self.refresh())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _alert(self, alert: Alert):
        if self._alive:
            self.on_alert(alert)

    def _fetch(self) -> List:
        raise NotImplementedError

    def _after_merge(self, event: ChangeEvent, record, previous):
        pass


class OrderFeed(_RealtimeFeed):
    """Orders of one vendor (or every order when vendor_id is None), newest first."""
    table = "orders"
    record_model = OrderRecord
    descending = True

    def __init__(self, order_repo: IOrderRepository, bus: IRealtimeBus, order_service: OrderService,
                 vendor_id: Optional[str] = None, on_alert: Optional[AlertCallback] = None,
                 on_change: Optional[Callable[[], None]] = None):
        super().__init__(bus, "vendor_id", vendor_id, on_alert, on_change)
        self.order_repo = order_repo
        self.order_service = order_service
        self.vendor_id = vendor_id

    @property
    def orders(self) -> List[OrderRecord]:
        return self.rows

    def _fetch(self) -> List[OrderRecord]:
        return self.order_repo.list_orders(self.vendor_id)

    def _after_merge(self, event, record: OrderRecord, previous: Optional[OrderRecord]):
        if previous is None and event.type == "INSERT":
            self._alert(Alert(title="🆕 Nuevo pedido", description=f"Pedido #{short_id(record.id)} recibido"))
        elif previous is not None and previous.status != record.status:
            label = STATUS_LABELS.get(OrderStatus(record.status), record.status)
            self._alert(Alert(title="✅ Pedido actualizado", description=f"Estado cambiado a {label}"))

    async def update_order_status(self, order_id: str, new_status: OrderStatus | str) -> bool:
        """
        Writes through to the backend. Local state only changes with what the
        backend returned; on failure it is left as is and an error alert is raised.
        """
        if self.get(order_id) is None:
            self._alert(Alert(title="Error", description="Pedido no encontrado", variant="destructive"))
            return False
        try:
            updated = await self.order_service.update_order_status(order_id, new_status)
        except MarketplaceError as e:
            logger.error(f"❌ Error updating order status {short_id(order_id)}: {e}")
            self._alert(Alert(
                title="Error",
                description="No se pudo actualizar el estado del pedido",
                variant="destructive",
            ))
            return False

        if not self._alive:
            logger.debug(f"Feed closed; discarding status result for {short_id(order_id)}")
            return True
        self.rows = merge_rows(self.rows, [updated], self.descending)
        return True


class MessageFeed(_RealtimeFeed):
    """Chat of a single order, oldest first."""
    table = "messages"
    record_model = MessageRecord
    descending = False

    def __init__(self, message_repo: IMessageRepository, bus: IRealtimeBus, chat_service: ChatService,
                 order_id: str, on_alert: Optional[AlertCallback] = None):
        super().__init__(bus, "order_id", order_id, on_alert)
        self.message_repo = message_repo
        self.chat_service = chat_service
        self.order_id = order_id

    @property
    def messages(self) -> List[MessageRecord]:
        return self.rows

    def _fetch(self) -> List[MessageRecord]:
        return self.message_repo.list_messages(self.order_id)

    def _after_merge(self, event, record: MessageRecord, previous: Optional[MessageRecord]):
        if previous is None and record.sender == MessageSender.CUSTOMER:
            self._alert(Alert(title="💬 Nuevo mensaje", description=f"{record.content[:50]}..."))

    async def send_message(self, content: str, sender: MessageSender | str) -> Optional[SendMessageResult]:
        try:
            result = await self.chat_service.send_message(self.order_id, content, sender)
        except MarketplaceError as e:
            logger.error(f"❌ Error sending message on {short_id(self.order_id)}: {e}")
            self._alert(Alert(title="Error", description="No se pudo enviar el mensaje", variant="destructive"))
            return None

        if not self._alive:
            return result
        self.rows = merge_rows(self.rows, [result.message], self.descending)

        if result.warning:
            self._alert(Alert(title="Advertencia", description=result.warning, variant="warning"))
        elif result.delivery is not None:
            self._alert(Alert(title="Mensaje enviado", description="El cliente recibirá el mensaje por WhatsApp"))
        return result


class NotificationFeed(_RealtimeFeed):
    """Vendor notification history, newest first, with a persisted sound preference."""
    table = "vendor_notification_history"
    record_model = NotificationRecord
    descending = True

    def __init__(self, notification_repo: INotificationRepository, bus: IRealtimeBus, vendor_id: str,
                 store: SessionStore, on_alert: Optional[AlertCallback] = None,
                 on_sound: Optional[Callable[[str], None]] = None, limit: int = 50):
        super().__init__(bus, "vendor_id", vendor_id, on_alert)
        self.notification_repo = notification_repo
        self.vendor_id = vendor_id
        self.store = store
        self.on_sound = on_sound
        self.limit = limit

    @property
    def notifications(self) -> List[NotificationRecord]:
        return self.rows

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.rows if not n.is_read)

    @property
    def sound_enabled(self) -> bool:
        return bool(self.store.get_preference(f"vendor:{self.vendor_id}", "notification_sound", True))

    @sound_enabled.setter
    def sound_enabled(self, enabled: bool):
        self.store.set_preference(f"vendor:{self.vendor_id}", "notification_sound", bool(enabled))

    def _fetch(self) -> List[NotificationRecord]:
        return self.notification_repo.list_notifications(self.vendor_id, self.limit)

    def _after_merge(self, event, record: NotificationRecord, previous: Optional[NotificationRecord]):
        if previous is not None:
            return
        if self.sound_enabled and self.on_sound is not None:
            self.on_sound(record.type.value)
        self._alert(Alert(title=f"{notification_emoji(record.type.value)} {record.title}",
                          description=record.message))

    def mark_as_read(self, notification_id: str) -> bool:
        try:
            found = self.notification_repo.mark_as_read(notification_id)
        except RepositoryError as e:
            logger.error(f"❌ Error marking notification as read: {e}")
            return False
        if found:
            self.rows = [n.model_copy(update={"is_read": True}) if n.id == notification_id else n
                         for n in self.rows]
        return found

    def mark_all_as_read(self) -> int:
        try:
            count = self.notification_repo.mark_all_as_read(self.vendor_id)
        except RepositoryError as e:
            logger.error(f"❌ Error marking all notifications as read: {e}")
            return 0
        self.rows = [n.model_copy(update={"is_read": True}) for n in self.rows]
        return count
