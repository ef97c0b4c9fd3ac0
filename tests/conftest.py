# tests/conftest.py
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.pop("REDIS_URL", None)
os.environ.pop("TWILIO_ACCOUNT_SID", None)
os.environ.pop("TWILIO_AUTH_TOKEN", None)

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace.application.services import build_services
from marketplace.domain import models  # noqa: F401
from marketplace.domain.schemas import NotificationResult
from marketplace.infrastructure.database import Base
from marketplace.infrastructure.realtime import InProcessRealtimeBus
from marketplace.infrastructure.repositories.message_repository import PostgresMessageRepository
from marketplace.infrastructure.repositories.notification_repository import (
    PostgresNotificationRepository,
    PostgresVendorRepository,
)
from marketplace.infrastructure.repositories.order_repository import PostgresOrderRepository
from marketplace.infrastructure.state_manager import SessionStore
from marketplace.interfaces import twilio_webhook, vendor_api
from marketplace.interfaces.INotifier import INotifier

VENDOR_ID = "vendor-1"
OTHER_VENDOR_ID = "vendor-2"
CUSTOMER_PHONE = "+5491122223333"


class FakeNotifier(INotifier):
    """Records every outbound WhatsApp instead of calling Twilio."""

    def __init__(self):
        self.sent: List[tuple] = []
        self.fail_with: Optional[str] = None

    def send(self, phone_number: str, message: str, order_id: Optional[str] = None) -> NotificationResult:
        self.sent.append((phone_number, message, order_id))
        if self.fail_with:
            return NotificationResult(success=False, error=self.fail_with)
        return NotificationResult(success=True)

    def messages_to(self, phone_number: str) -> List[str]:
        return [message for phone, message, _ in self.sent if phone == phone_number]


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def order_repo(session_factory):
    return PostgresOrderRepository(session_factory)


@pytest.fixture
def message_repo(session_factory):
    return PostgresMessageRepository(session_factory)


@pytest.fixture
def notification_repo(session_factory):
    return PostgresNotificationRepository(session_factory)


@pytest.fixture
def vendor_repo(session_factory):
    repo = PostgresVendorRepository(session_factory)
    repo.add_vendor(id=VENDOR_ID, name="Panadería Sol", whatsapp_number="+5491100000001")
    repo.add_vendor(id=OTHER_VENDOR_ID, name="Kiosko Luna", whatsapp_number=None)
    return repo


@pytest.fixture
def session_store():
    return SessionStore(None)


@pytest.fixture
def bus():
    return InProcessRealtimeBus()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def services(order_repo, message_repo, notification_repo, vendor_repo, session_store, bus, notifier):
    return build_services(
        order_repo=order_repo,
        message_repo=message_repo,
        notification_repo=notification_repo,
        vendor_repo=vendor_repo,
        session_store=session_store,
        bus=bus,
        notifier=notifier,
    )


@pytest.fixture
def make_order(order_repo):
    """Creates orders with strictly increasing created_at."""
    base = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    counter = {"n": 0}

    def _make(**fields):
        counter["n"] += 1
        defaults = {
            "vendor_id": VENDOR_ID,
            "customer_name": "Martina Gómez",
            "customer_phone": CUSTOMER_PHONE,
            "status": "pending",
            "items": [{"product_id": "p1", "product_name": "Medialunas", "quantity": 6, "price": 300.0}],
            "total": 1800.0,
            "address": "Av. Corrientes 1234, CABA",
            "payment_method": "efectivo",
            "created_at": base + timedelta(minutes=counter["n"]),
        }
        defaults.update(fields)
        return order_repo.add_order(**defaults)

    return _make


@pytest.fixture
def app(services):
    application = FastAPI()
    application.include_router(twilio_webhook.router)
    application.include_router(vendor_api.router)
    application.state.services = services
    return application


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
