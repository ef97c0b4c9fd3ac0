import asyncio
import logging
from typing import List

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect, status

from marketplace.application.realtime_sync import OrderFeed
from marketplace.core.config import settings
from marketplace.core.errors import InvalidTransitionError, MarketplaceError, OrderNotFoundError, RepositoryError
from marketplace.domain.schemas import (
    MessagePayload,
    MessageRecord,
    NotificationRecord,
    OrderRecord,
    PaymentUpdatePayload,
    StatusUpdatePayload,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _services(request: Request):
    return request.app.state.services


def _raise_http(e: MarketplaceError):
    if isinstance(e, OrderNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, InvalidTransitionError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, RepositoryError):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# ---------------------------------------------------------
# ORDERS
# ---------------------------------------------------------
@router.get("/vendors/{vendor_id}/orders", response_model=List[OrderRecord])
def list_vendor_orders(vendor_id: str, request: Request):
    try:
        return _services(request).order_repo.list_orders(vendor_id)
    except MarketplaceError as e:
        _raise_http(e)


@router.post("/orders/{order_id}/status", response_model=OrderRecord)
async def update_order_status(order_id: str, payload: StatusUpdatePayload, request: Request):
    try:
        return await _services(request).orders.update_order_status(order_id, payload.status)
    except MarketplaceError as e:
        _raise_http(e)


@router.post("/orders/{order_id}/advance", response_model=OrderRecord)
async def advance_order(order_id: str, request: Request):
    try:
        return await _services(request).orders.advance_order(order_id)
    except MarketplaceError as e:
        _raise_http(e)


@router.post("/orders/{order_id}/cancel", response_model=OrderRecord)
async def cancel_order(order_id: str, request: Request):
    try:
        return await _services(request).orders.cancel_order(order_id)
    except MarketplaceError as e:
        _raise_http(e)


@router.post("/orders/{order_id}/notify-vendor", response_model=OrderRecord)
async def notify_vendor(order_id: str, request: Request):
    try:
        return await _services(request).orders.notify_new_order(order_id)
    except MarketplaceError as e:
        _raise_http(e)


@router.get("/orders/{order_id}/payment-instructions")
def payment_instructions(order_id: str, request: Request):
    try:
        text = _services(request).orders.payment_instructions_for(order_id)
    except MarketplaceError as e:
        _raise_http(e)
    return {"order_id": order_id, "instructions": text}


@router.post("/orders/{order_id}/payment")
async def update_payment(order_id: str, payload: PaymentUpdatePayload, request: Request):
    orders = _services(request).orders
    try:
        verdict = await (orders.mark_as_paid(order_id) if payload.paid else orders.mark_as_unpaid(order_id))
        if not verdict.allowed:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=verdict.reason)
        order = orders.get_order(order_id)
    except MarketplaceError as e:
        _raise_http(e)
    return {"allowed": True, "order": order.model_dump(mode="json")}


# ---------------------------------------------------------
# CHAT
# ---------------------------------------------------------
@router.get("/orders/{order_id}/messages", response_model=List[MessageRecord])
def list_messages(order_id: str, request: Request):
    try:
        return _services(request).message_repo.list_messages(order_id)
    except MarketplaceError as e:
        _raise_http(e)


@router.post("/orders/{order_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(order_id: str, payload: MessagePayload, request: Request):
    try:
        result = await _services(request).chat.send_message(order_id, payload.content, payload.sender)
    except MarketplaceError as e:
        _raise_http(e)
    return {
        "message": result.message.model_dump(mode="json"),
        "bot_paused": result.bot_paused,
        "delivered": result.delivery.success if result.delivery else None,
        "warning": result.warning,
    }


# ---------------------------------------------------------
# BOT HANDOFF
# ---------------------------------------------------------
@router.get("/bot/{phone}")
def bot_status(phone: str, request: Request):
    return {"phone": phone, "in_vendor_chat": _services(request).handoff.check_bot_status(phone)}


@router.post("/bot/{phone}/activate")
def activate_bot(phone: str, request: Request):
    result = _services(request).handoff.activate_bot(phone)
    return {"phone": phone, "in_vendor_chat": False, "notified": result.success, "error": result.error}


# ---------------------------------------------------------
# VENDOR NOTIFICATIONS
# ---------------------------------------------------------
@router.get("/vendors/{vendor_id}/notifications", response_model=List[NotificationRecord])
def list_notifications(vendor_id: str, request: Request):
    try:
        return _services(request).notification_repo.list_notifications(
            vendor_id, settings.NOTIFICATION_HISTORY_LIMIT
        )
    except MarketplaceError as e:
        _raise_http(e)


@router.post("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, request: Request):
    try:
        found = _services(request).notification_repo.mark_as_read(notification_id)
    except MarketplaceError as e:
        _raise_http(e)
    if not found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notificación no encontrada")
    return {"id": notification_id, "is_read": True}


@router.post("/vendors/{vendor_id}/notifications/read")
def mark_all_notifications_read(vendor_id: str, request: Request):
    try:
        count = _services(request).notification_repo.mark_all_as_read(vendor_id)
    except MarketplaceError as e:
        _raise_http(e)
    return {"vendor_id": vendor_id, "updated": count}


# ---------------------------------------------------------
# LIVE DASHBOARD
# ---------------------------------------------------------
@router.websocket("/ws/vendors/{vendor_id}/orders")
async def vendor_orders_socket(websocket: WebSocket, vendor_id: str):
    """
    Pushes the vendor's order list on every change, plus alerts.
    One OrderFeed per connection, released when the socket goes away.
    """
    services = websocket.app.state.services
    await websocket.accept()
    outbox: asyncio.Queue = asyncio.Queue()

    feed = OrderFeed(
        services.order_repo, services.bus, services.orders, vendor_id=vendor_id,
        on_alert=lambda alert: outbox.put_nowait({"type": "alert", **alert.model_dump()}),
        on_change=lambda: outbox.put_nowait(_snapshot(feed)),
    )

    receiver = None
    try:
        await feed.mount()
        await websocket.send_json(_snapshot(feed))
        receiver = asyncio.create_task(websocket.receive_text())
        while True:
            sender = asyncio.create_task(outbox.get())
            done, _ = await asyncio.wait({receiver, sender}, return_when=asyncio.FIRST_COMPLETED)
            if sender in done:
                await websocket.send_json(sender.result())
            else:
                sender.cancel()
            if receiver in done:
                text = receiver.result()
                if text.strip().lower() == "ping":
                    await websocket.send_text("pong")
                receiver = asyncio.create_task(websocket.receive_text())
    except WebSocketDisconnect as e:
        logger.info(f"📴 Vendor {vendor_id} dashboard disconnected (code: {e.code})")
    finally:
        if receiver is not None:
            receiver.cancel()
        feed.close()


def _snapshot(feed: OrderFeed) -> dict:
    return {"type": "orders", "orders": [o.model_dump(mode="json") for o in feed.orders]}
