from fastapi import APIRouter, Form, Request
from fastapi.responses import Response
import logging
from xml.sax.saxutils import escape

from marketplace.core.errors import MarketplaceError

router = APIRouter()
logger = logging.getLogger(__name__)

EMPTY_TWIML = """<?xml version="1.0" encoding="UTF-8"?>
<Response>
</Response>"""


def _twiml(text: str) -> Response:
    xml_response = f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Message>{escape(text)}</Message>
</Response>"""
    return Response(content=xml_response, media_type="application/xml")


@router.post("/webhook/twilio")
async def whatsapp_webhook(
    request: Request,
    From: str = Form(...),
    Body: str = Form(""),
    NumMedia: int = Form(0),
    MediaContentType0: str = Form(None)
):
    """
    Inbound WhatsApp from Twilio.
    While a vendor has taken over the chat, customer replies are stored in
    the order chat; otherwise the bot owns the conversation and we stay silent.
    """
    chat = request.app.state.services.chat
    user_id = From.replace("whatsapp:", "")
    message_text = Body.strip()
    logger.info(f"📨 Twilio Webhook: From={user_id}, Body={message_text!r}, NumMedia={NumMedia}")

    if NumMedia > 0 and not message_text:
        if not chat.handoff.check_bot_status(user_id):
            return Response(content=EMPTY_TWIML, media_type="application/xml")
        logger.info(f"⚠️ MEDIA DETECTED from {user_id}. Type: {MediaContentType0}")
        return _twiml("Por ahora el negocio solo puede leer mensajes de texto 🙏. ¿Nos lo podés escribir?")

    if not message_text:
        return Response(content=EMPTY_TWIML, media_type="application/xml")

    try:
        stored = await chat.receive_customer_message(user_id, message_text)
        if stored is not None:
            logger.info(f"✅ Customer message {stored.id} routed to order {stored.order_id}")
    except MarketplaceError as e:
        logger.error(f"❌ Webhook Error: {e}", exc_info=True)

    # Empty TwiML also stops Twilio retries
    return Response(content=EMPTY_TWIML, media_type="application/xml")
