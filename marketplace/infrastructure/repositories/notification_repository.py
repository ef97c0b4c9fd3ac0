import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError

from marketplace.core.errors import RepositoryError
from marketplace.domain.models import Vendor, VendorNotification
from marketplace.domain.schemas import NotificationRecord, VendorRecord
from marketplace.infrastructure.database import SessionLocal
from marketplace.interfaces.INotificationRepository import INotificationRepository, IVendorRepository

logger = logging.getLogger(__name__)


class PostgresNotificationRepository(INotificationRepository):

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def list_notifications(self, vendor_id: str, limit: int = 50) -> List[NotificationRecord]:
        session = self.session_factory()
        try:
            rows = (
                session.query(VendorNotification)
                .filter(VendorNotification.vendor_id == vendor_id)
                .order_by(desc(VendorNotification.created_at))
                .limit(limit)
                .all()
            )
            return [NotificationRecord.model_validate(r) for r in rows]
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Read Error (notifications for {vendor_id}): {e}")
            raise RepositoryError("No se pudieron cargar las notificaciones") from e
        finally:
            session.close()

    def add_notification(self, vendor_id: str, type: str, title: str, message: str,
                         data: Optional[Dict[str, Any]] = None) -> NotificationRecord:
        session = self.session_factory()
        try:
            row = VendorNotification(
                vendor_id=vendor_id, type=type, title=title, message=message, data=data or {}
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return NotificationRecord.model_validate(row)
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Error saving '{type}' notification for {vendor_id}: {e}")
            session.rollback()
            raise RepositoryError("No se pudo registrar la notificación") from e
        finally:
            session.close()

    def mark_as_read(self, notification_id: str) -> bool:
        session = self.session_factory()
        try:
            updated = (
                session.query(VendorNotification)
                .filter(VendorNotification.id == notification_id)
                .update({VendorNotification.is_read: True}, synchronize_session=False)
            )
            session.commit()
            return updated > 0
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Error marking notification {notification_id} as read: {e}")
            session.rollback()
            raise RepositoryError("No se pudo marcar la notificación como leída") from e
        finally:
            session.close()

    def mark_all_as_read(self, vendor_id: str) -> int:
        session = self.session_factory()
        try:
            updated = (
                session.query(VendorNotification)
                .filter(VendorNotification.vendor_id == vendor_id)
                .filter(VendorNotification.is_read.is_(False))
                .update({VendorNotification.is_read: True}, synchronize_session=False)
            )
            session.commit()
            return updated
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Error marking notifications of {vendor_id} as read: {e}")
            session.rollback()
            raise RepositoryError("No se pudieron marcar las notificaciones") from e
        finally:
            session.close()


class PostgresVendorRepository(IVendorRepository):

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def get_vendor(self, vendor_id: str) -> Optional[VendorRecord]:
        session = self.session_factory()
        try:
            vendor = session.get(Vendor, vendor_id)
            return VendorRecord.model_validate(vendor) if vendor else None
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Read Error (vendor {vendor_id}): {e}")
            raise RepositoryError(f"No se pudo leer el negocio {vendor_id}") from e
        finally:
            session.close()

    def add_vendor(self, **fields) -> VendorRecord:
        session = self.session_factory()
        try:
            vendor = Vendor(**fields)
            session.add(vendor)
            session.commit()
            session.refresh(vendor)
            return VendorRecord.model_validate(vendor)
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Error creating vendor: {e}")
            session.rollback()
            raise RepositoryError("No se pudo crear el negocio") from e
        finally:
            session.close()
