import logging
import re
from typing import Optional

from requests.exceptions import RequestException
from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from marketplace.core.config import settings
from marketplace.domain.schemas import NotificationResult
from marketplace.interfaces.INotifier import INotifier

logger = logging.getLogger(__name__)


def normalize_argentine_phone(phone: str) -> str:
    """
    Normalizes Argentine mobile numbers to 549XXXXXXXXXX (13 digits).
    Strips WhatsApp suffixes (@s.whatsapp.net, :3@lid...) and punctuation.
    """
    if not phone:
        return ""

    cleaned = re.sub(r"(:\d+)?@[\w.]+$", "", phone, flags=re.IGNORECASE)
    cleaned = re.sub(r"\D", "", cleaned)

    # Double 9 (54993...) sneaks in from some clients
    if cleaned.startswith("54993") and len(cleaned) == 14:
        cleaned = "549" + cleaned[4:]

    if cleaned.startswith("549") and len(cleaned) == 13:
        return cleaned
    if cleaned.startswith("54") and not cleaned.startswith("549") and len(cleaned) == 12:
        cleaned = "549" + cleaned[2:]
    if cleaned.startswith("9") and len(cleaned) == 11:
        cleaned = "54" + cleaned
    if not cleaned.startswith("54") and len(cleaned) == 10:
        cleaned = "549" + cleaned
    if len(cleaned) > 13:
        cleaned = "549" + cleaned[-10:]

    if not cleaned.startswith("549") or len(cleaned) != 13:
        logger.warning(f"⚠️ Unexpected phone format after normalization: {cleaned}")

    return cleaned


def _whatsapp_address(number: str) -> str:
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


class NotificationService(INotifier):
    def __init__(self, client: Optional[Client] = None):
        self.client = client
        self.enabled = client is not None

        # Only initialize if credentials exist in .env
        if self.client is None and settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN:
            try:
                self.client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
                self.enabled = True
                logger.info("✅ NotificationService: Twilio Client Initialized")
            except TwilioException as e:
                logger.error(f"❌ Failed to initialize Twilio Client: {e}")
        elif self.client is None:
            logger.warning("⚠️ NotificationService: Credentials missing in .env. Notifications disabled.")

    def send(self, phone_number: str, message: str, order_id: Optional[str] = None) -> NotificationResult:
        """Sends a WhatsApp message. Failures are returned, never raised."""
        if not self.enabled or not settings.TWILIO_FROM_NUMBER:
            return NotificationResult(success=False, error="WhatsApp no está configurado")
        if not phone_number or not message:
            return NotificationResult(success=False, error="Falta el número o el mensaje")

        normalized = normalize_argentine_phone(phone_number)
        try:
            sent = self.client.messages.create(
                from_=_whatsapp_address(settings.TWILIO_FROM_NUMBER),
                body=message,
                to=_whatsapp_address(f"+{normalized}"),
            )
            logger.info(f"✅ WhatsApp sent to {normalized} (order={order_id}, sid={sent.sid})")
            return NotificationResult(success=True)
        except (TwilioException, RequestException) as e:
            # Twilio's HTTP client lets transport errors through unwrapped
            logger.error(f"❌ WhatsApp delivery failed for {normalized} (order={order_id}): {e}")
            return NotificationResult(success=False, error=str(e))
