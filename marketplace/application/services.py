from dataclasses import dataclass

from marketplace.application.chat import ChatService
from marketplace.application.handoff import BotHandoff
from marketplace.application.order_service import OrderService
from marketplace.infrastructure.state_manager import SessionStore
from marketplace.interfaces.IMessageRepository import IMessageRepository
from marketplace.interfaces.INotificationRepository import INotificationRepository, IVendorRepository
from marketplace.interfaces.INotifier import INotifier
from marketplace.interfaces.IOrderRepository import IOrderRepository
from marketplace.interfaces.IRealtimeBus import IRealtimeBus


@dataclass
class Services:
    order_repo: IOrderRepository
    message_repo: IMessageRepository
    notification_repo: INotificationRepository
    vendor_repo: IVendorRepository
    session_store: SessionStore
    bus: IRealtimeBus
    notifier: INotifier
    orders: OrderService
    handoff: BotHandoff
    chat: ChatService


def build_services(order_repo, message_repo, notification_repo, vendor_repo,
                   session_store, bus, notifier) -> Services:
    handoff = BotHandoff(session_store, notifier)
    orders = OrderService(order_repo, notification_repo, bus, notifier, session_store, vendor_repo)
    chat = ChatService(message_repo, order_repo, notification_repo, bus, notifier, handoff, vendor_repo)
    return Services(
        order_repo=order_repo,
        message_repo=message_repo,
        notification_repo=notification_repo,
        vendor_repo=vendor_repo,
        session_store=session_store,
        bus=bus,
        notifier=notifier,
        orders=orders,
        handoff=handoff,
        chat=chat,
    )
