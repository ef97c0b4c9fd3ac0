import logging
from typing import Optional

from marketplace.domain.schemas import NotificationResult
from marketplace.domain.texts import BOT_REACTIVATED_MESSAGE
from marketplace.infrastructure.state_manager import SessionStore
from marketplace.interfaces.INotifier import INotifier

logger = logging.getLogger(__name__)


class BotHandoff:
    """
    Pauses the WhatsApp bot while a vendor talks to a customer by hand.
    The bot reads `in_vendor_chat` from the same session store.
    """

    def __init__(self, session_store: SessionStore, notifier: INotifier):
        self.session_store = session_store
        self.notifier = notifier

    def pause_bot(self, phone: str, vendor_phone: Optional[str] = None):
        session = self.session_store.upsert_session(
            phone,
            in_vendor_chat=True,
            **({"assigned_vendor_phone": vendor_phone} if vendor_phone else {}),
        )
        logger.info(f"⏸️ Bot paused for {phone} (vendor={session.assigned_vendor_phone})")

    def activate_bot(self, phone: str) -> NotificationResult:
        """
        Hands the conversation back to the bot and tells the customer.
        Sends one message per call: trigger from a user action, never retry.
        """
        self.session_store.upsert_session(phone, in_vendor_chat=False, assigned_vendor_phone=None)
        logger.info(f"▶️ Bot reactivated for {phone}")

        result = self.notifier.send(phone, BOT_REACTIVATED_MESSAGE)
        if not result.success:
            logger.warning(f"⚠️ Reactivation notice to {phone} not delivered: {result.error}")
        return result

    def check_bot_status(self, phone: str) -> bool:
        """True while the bot is paused (vendor chatting)."""
        return self.session_store.get_session(phone).in_vendor_chat
