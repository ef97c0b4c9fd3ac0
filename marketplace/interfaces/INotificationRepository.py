from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from marketplace.domain.schemas import NotificationRecord, VendorRecord

class INotificationRepository(ABC):
    @abstractmethod
    def list_notifications(self, vendor_id: str, limit: int = 50) -> List[NotificationRecord]:
        pass

    @abstractmethod
    def add_notification(self, vendor_id: str, type: str, title: str, message: str,
                         data: Optional[Dict[str, Any]] = None) -> NotificationRecord:
        pass

    @abstractmethod
    def mark_as_read(self, notification_id: str) -> bool:
        pass

    @abstractmethod
    def mark_all_as_read(self, vendor_id: str) -> int:
        pass


class IVendorRepository(ABC):
    @abstractmethod
    def get_vendor(self, vendor_id: str) -> Optional[VendorRecord]:
        pass
