import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError

from marketplace.core.errors import RepositoryError
from marketplace.domain.models import Order
from marketplace.domain.order_status import TERMINAL_STATUSES
from marketplace.domain.schemas import OrderRecord
from marketplace.infrastructure.database import SessionLocal
from marketplace.interfaces.IOrderRepository import IOrderRepository

logger = logging.getLogger(__name__)


class PostgresOrderRepository(IOrderRepository):

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def get_order(self, order_id: str) -> Optional[OrderRecord]:
        session = self.session_factory()
        try:
            order = session.get(Order, order_id)
            return OrderRecord.model_validate(order) if order else None
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Read Error (order {order_id}): {e}")
            raise RepositoryError(f"No se pudo leer el pedido {order_id}") from e
        finally:
            session.close()

    def list_orders(self, vendor_id: Optional[str] = None) -> List[OrderRecord]:
        """
        Retrieves orders, newest first.
        Scoped to one vendor when vendor_id is given.
        """
        session = self.session_factory()
        try:
            query = session.query(Order)
            if vendor_id:
                query = query.filter(Order.vendor_id == vendor_id)
            orders = query.order_by(desc(Order.created_at)).all()
            return [OrderRecord.model_validate(o) for o in orders]
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Read Error (orders, vendor={vendor_id}): {e}")
            raise RepositoryError("No se pudieron cargar los pedidos") from e
        finally:
            session.close()

    def update_status(self, order_id: str, status: str) -> Optional[OrderRecord]:
        return self._update(order_id, status=status)

    def set_payment_status(self, order_id: str, payment_status: str, paid_at: Optional[datetime]) -> Optional[OrderRecord]:
        return self._update(order_id, payment_status=payment_status, paid_at=paid_at)

    def latest_open_order_for_phone(self, customer_phone: str) -> Optional[OrderRecord]:
        session = self.session_factory()
        try:
            order = (
                session.query(Order)
                .filter(Order.customer_phone == customer_phone)
                .filter(Order.status.notin_([s.value for s in TERMINAL_STATUSES]))
                .order_by(desc(Order.created_at))
                .first()
            )
            return OrderRecord.model_validate(order) if order else None
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Read Error (open order for {customer_phone}): {e}")
            raise RepositoryError("No se pudo buscar el pedido activo") from e
        finally:
            session.close()

    def add_order(self, **fields) -> OrderRecord:
        """Order placement happens in the bot; this exists for seeding and tests."""
        session = self.session_factory()
        try:
            order = Order(**fields)
            session.add(order)
            session.commit()
            session.refresh(order)
            return OrderRecord.model_validate(order)
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Error creating order: {e}")
            session.rollback()
            raise RepositoryError("No se pudo crear el pedido") from e
        finally:
            session.close()

    def _update(self, order_id: str, **changes) -> Optional[OrderRecord]:
        session = self.session_factory()
        try:
            order = session.get(Order, order_id)
            if order is None:
                return None
            for key, value in changes.items():
                setattr(order, key, value)
            session.commit()
            session.refresh(order)
            return OrderRecord.model_validate(order)
        except SQLAlchemyError as e:
            logger.error(f"❌ DB Error updating order {order_id} ({', '.join(changes)}): {e}")
            session.rollback()
            raise RepositoryError(f"No se pudo actualizar el pedido {order_id}") from e
        finally:
            session.close()
