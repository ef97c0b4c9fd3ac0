from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from marketplace.domain.schemas import OrderRecord

class IOrderRepository(ABC):
    @abstractmethod
    def get_order(self, order_id: str) -> Optional[OrderRecord]:
        pass

    @abstractmethod
    def list_orders(self, vendor_id: Optional[str] = None) -> List[OrderRecord]:
        pass

    @abstractmethod
    def update_status(self, order_id: str, status: str) -> Optional[OrderRecord]:
        pass

    @abstractmethod
    def set_payment_status(self, order_id: str, payment_status: str, paid_at: Optional[datetime]) -> Optional[OrderRecord]:
        pass

    @abstractmethod
    def latest_open_order_for_phone(self, customer_phone: str) -> Optional[OrderRecord]:
        pass
