import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.exc import OperationalError

from marketplace.application.services import build_services
from marketplace.core.config import settings
from marketplace.core.logging_config import setup_logging

# 1. Infrastructure & Domain Imports
from marketplace.domain import models  # noqa: F401  (registers tables on Base)
from marketplace.infrastructure.database import Base, engine
from marketplace.infrastructure.notification_service import NotificationService
from marketplace.infrastructure.realtime import create_realtime_bus
from marketplace.infrastructure.repositories.message_repository import PostgresMessageRepository
from marketplace.infrastructure.repositories.notification_repository import (
    PostgresNotificationRepository,
    PostgresVendorRepository,
)
from marketplace.infrastructure.repositories.order_repository import PostgresOrderRepository
from marketplace.infrastructure.state_manager import SessionStore
from marketplace.interfaces import twilio_webhook, vendor_api

setup_logging()
logger = logging.getLogger(__name__)

# ---------------------------------------------------------
# DATABASE CONNECTION (With Retry Logic)
# ---------------------------------------------------------
MAX_RETRIES = 10
WAIT_SECONDS = 3


def init_db() -> bool:
    for attempt in range(MAX_RETRIES):
        try:
            logger.info(f"🔄 Attempting DB connection ({attempt + 1}/{MAX_RETRIES})...")
            Base.metadata.create_all(bind=engine)
            logger.info("✅ DB Connected and Tables Created.")
            return True
        except OperationalError:
            logger.warning(f"⚠️ DB not ready yet. Waiting {WAIT_SECONDS}s...")
            time.sleep(WAIT_SECONDS)
    logger.error("❌ Could not connect to DB after retries.")
    return False


# ---------------------------------------------------------
# COMPOSITION ROOT
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.db_ready = init_db()
    bus = await create_realtime_bus(settings.REDIS_URL)
    app.state.services = build_services(
        order_repo=PostgresOrderRepository(),
        message_repo=PostgresMessageRepository(),
        notification_repo=PostgresNotificationRepository(),
        vendor_repo=PostgresVendorRepository(),
        session_store=SessionStore(settings.REDIS_URL),
        bus=bus,
        notifier=NotificationService(),
    )
    try:
        yield
    finally:
        await bus.close()
        logger.info("👋 Realtime bus closed.")


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# Include Routers
app.include_router(twilio_webhook.router)
app.include_router(vendor_api.router)


@app.get("/")
def health_check():
    # Services are always built; the DB may still be unreachable
    status = "active" if getattr(app.state, "db_ready", False) else "degraded"
    return {"status": status, "system": settings.PROJECT_NAME}
