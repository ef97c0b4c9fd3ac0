import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, JSON, String, Text

from marketplace.infrastructure.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


# Microsecond timestamps keep per-order message order stable
def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    whatsapp_number = Column(String, nullable=True)
    # Raw blob, parsed by domain.payments.parse_payment_settings
    payment_settings = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    vendor_id = Column(String(36), index=True, nullable=False)
    customer_name = Column(String, nullable=False)
    customer_phone = Column(String, index=True, nullable=False)
    status = Column(String, index=True, default="pending")

    # [{"id", "name", "quantity", "price", "notes"}]
    items = Column(JSON, default=list)
    total = Column(Float, default=0.0)

    address = Column(Text, nullable=True)
    coordinates = Column(JSON, nullable=True)  # {"lat", "lng"}
    notes = Column(Text, nullable=True)
    delivery_person_name = Column(String, nullable=True)
    delivery_person_phone = Column(String, nullable=True)

    payment_method = Column(String, default="efectivo")
    payment_status = Column(String, default="pending")
    paid_at = Column(DateTime(timezone=True), nullable=True)

    estimated_delivery = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), index=True, nullable=False)
    sender = Column(String, nullable=False)  # customer, vendor, system
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class VendorNotification(Base):
    __tablename__ = "vendor_notification_history"

    id = Column(String(36), primary_key=True, default=_uuid)
    vendor_id = Column(String(36), index=True, nullable=False)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, default=dict)
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
