from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything here is UTC
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RowModel(BaseModel):
    """Row snapshot as stored by the backend of record and carried by the change feed."""
    model_config = ConfigDict(from_attributes=True)

    @field_validator("*", mode="after")
    @classmethod
    def _utc_datetimes(cls, value):
        return _aware(value)


class OrderItem(BaseModel):
    id: str
    name: str
    quantity: int = 1
    price: float = 0.0
    notes: Optional[str] = None


class OrderRecord(RowModel):
    id: str
    vendor_id: str
    customer_name: str
    customer_phone: str
    status: str = "pending"
    items: List[OrderItem] = []
    total: float = 0.0
    address: Optional[str] = None
    coordinates: Optional[Dict[str, float]] = None
    notes: Optional[str] = None
    delivery_person_name: Optional[str] = None
    delivery_person_phone: Optional[str] = None
    payment_method: str = "efectivo"
    payment_status: str = "pending"
    paid_at: Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @field_validator("items", mode="before")
    @classmethod
    def _normalize_items(cls, value):
        # Bot-created orders use product_id/product_name
        items = []
        for item in value or []:
            if isinstance(item, dict):
                item = {
                    **item,
                    "id": item.get("id") or item.get("product_id") or "",
                    "name": item.get("name") or item.get("product_name") or "",
                }
            items.append(item)
        return items

    # --- Vendor view ---
    @computed_field
    @property
    def customer_name_masked(self) -> str:
        return f"{(self.customer_name or '')[:3]}***"

    @computed_field
    @property
    def customer_phone_masked(self) -> str:
        return f"****{(self.customer_phone or '')[-4:]}"

    @computed_field
    @property
    def address_simplified(self) -> Optional[str]:
        if not self.address:
            return None
        return self.address.split(",")[0].strip()


class MessageSender(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    SYSTEM = "system"


class MessageRecord(RowModel):
    id: str
    order_id: str
    sender: MessageSender
    content: str
    is_read: bool = False
    created_at: datetime


class NotificationType(str, Enum):
    NEW_ORDER = "new_order"
    ORDER_CANCELLED = "order_cancelled"
    PAYMENT_RECEIVED = "payment_received"
    ORDER_UPDATED = "order_updated"
    CUSTOMER_MESSAGE = "customer_message"


class NotificationRecord(RowModel):
    id: str
    vendor_id: str
    type: NotificationType
    title: str
    message: str
    data: Dict[str, Any] = {}
    is_read: bool = False
    created_at: datetime


class VendorRecord(RowModel):
    id: str
    name: str
    whatsapp_number: Optional[str] = None
    payment_settings: Optional[Dict[str, Any]] = None
    is_active: bool = True


class UserSession(BaseModel):
    phone: str
    in_vendor_chat: bool = False
    assigned_vendor_phone: Optional[str] = None
    previous_state: Optional[str] = None
    context: Dict[str, Any] = {}
    updated_at: Optional[datetime] = None


class ChangeEvent(BaseModel):
    table: str
    type: Literal["INSERT", "UPDATE"]
    new: Dict[str, Any]


class Alert(BaseModel):
    """User-visible transient notice (toast)."""
    title: str
    description: str = ""
    variant: Literal["default", "destructive", "warning"] = "default"


class NotificationResult(BaseModel):
    success: bool
    error: Optional[str] = None


class SendMessageResult(BaseModel):
    message: MessageRecord
    # None when no outbound delivery was attempted
    delivery: Optional[NotificationResult] = None
    bot_paused: bool = False

    @property
    def warning(self) -> Optional[str]:
        if self.delivery is not None and not self.delivery.success:
            return f"No se pudo enviar por WhatsApp: {self.delivery.error or 'error desconocido'}"
        return None


# --- API payloads ---
class StatusUpdatePayload(BaseModel):
    status: str


class PaymentUpdatePayload(BaseModel):
    paid: bool


class MessagePayload(BaseModel):
    content: str = Field(..., min_length=1)
    sender: Literal["customer", "vendor"] = "vendor"
