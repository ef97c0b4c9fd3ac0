import logging
from typing import List

from sqlalchemy.exc import SQLAlchemyError

from marketplace.core.errors import RepositoryError
from marketplace.domain.models import Message
from marketplace.domain.schemas import MessageRecord
from marketplace.infrastructure.database import SessionLocal
from marketplace.interfaces.IMessageRepository import IMessageRepository

logger = logging.getLogger(__name__)


class PostgresMessageRepository(IMessageRepository):

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def list_messages(self, order_id: str) -> List[MessageRecord]:
        session = self.session_factory()
        try:
            messages = (
                session.query(Message)
                .filter(Message.order_id == order_id)
                .order_by(Message.created_at.asc())
                .all()
            )
            return [MessageRecord.model_validate(m) for m in messages]
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Read Error (messages for {order_id}): {e}")
            raise RepositoryError("No se pudieron cargar los mensajes") from e
        finally:
            session.close()

    def add_message(self, order_id: str, sender: str, content: str) -> MessageRecord:
        session = self.session_factory()
        try:
            message = Message(order_id=order_id, sender=sender, content=content, is_read=False)
            session.add(message)
            session.commit()
            session.refresh(message)
            return MessageRecord.model_validate(message)
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Error saving message for {order_id}: {e}")
            session.rollback()
            raise RepositoryError("No se pudo enviar el mensaje") from e
        finally:
            session.close()
