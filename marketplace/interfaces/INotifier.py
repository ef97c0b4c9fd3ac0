from abc import ABC, abstractmethod
from typing import Optional

from marketplace.domain.schemas import NotificationResult

class INotifier(ABC):
    """Outbound WhatsApp delivery. Implementations never raise."""

    @abstractmethod
    def send(self, phone_number: str, message: str, order_id: Optional[str] = None) -> NotificationResult:
        pass
