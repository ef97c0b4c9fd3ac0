from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from marketplace.domain.schemas import ChangeEvent

EventCallback = Callable[[ChangeEvent], None]
ReconnectCallback = Callable[[], None]

# Indexed columns a subscription may filter on, per table
FILTER_COLUMNS = {
    "orders": ("vendor_id", "status"),
    "messages": ("order_id",),
    "vendor_notification_history": ("vendor_id",),
    "user_sessions": ("phone",),
}


def channel_name(table: str, column: Optional[str] = None, value: Any = None) -> str:
    if column is None:
        return f"realtime:{table}"
    return f"realtime:{table}:{column}=eq.{value}"


class Subscription(ABC):
    """Disposable handle returned by IRealtimeBus.subscribe."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass

    @abstractmethod
    def close(self) -> None:
        """Detach synchronously. No callback runs once this returns."""
        pass


class IRealtimeBus(ABC):
    @abstractmethod
    async def publish(self, table: str, row: Dict[str, Any], event_type: str = "UPDATE") -> None:
        pass

    @abstractmethod
    def subscribe(
        self,
        table: str,
        callback: EventCallback,
        filter_column: Optional[str] = None,
        filter_value: Any = None,
        on_reconnect: Optional[ReconnectCallback] = None,
    ) -> Subscription:
        pass

    async def close(self) -> None:
        pass
