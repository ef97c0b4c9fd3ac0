from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel

from marketplace.domain.order_status import OrderStatus


class PaymentMethod(str, Enum):
    CASH = "efectivo"
    TRANSFER = "transferencia"
    MERCADOPAGO = "mercadopago"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class ValidationResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None


def _as_method(payment_method: str) -> Optional[PaymentMethod]:
    try:
        return PaymentMethod((payment_method or "").strip().lower())
    except ValueError:
        return None


def can_mark_as_paid(order_status: OrderStatus | str, payment_method: str) -> ValidationResult:
    """Decides whether a vendor may flag the order as paid by hand."""
    status = OrderStatus(order_status)
    method = _as_method(payment_method)

    # The gateway confirms through its webhook
    if method == PaymentMethod.MERCADOPAGO:
        return ValidationResult(allowed=False, reason="MercadoPago confirma el pago automáticamente")

    # Cash changes hands at dispatch
    if method == PaymentMethod.CASH:
        if status in (OrderStatus.DELIVERING, OrderStatus.DELIVERED):
            return ValidationResult(allowed=True)
        return ValidationResult(allowed=False, reason="El pago en efectivo se confirma al momento de la entrega")

    if method == PaymentMethod.TRANSFER:
        if status != OrderStatus.DELIVERED:
            return ValidationResult(allowed=True)
        return ValidationResult(allowed=False, reason="Ya no se puede modificar un pedido entregado")

    return ValidationResult(allowed=True)


def can_mark_as_unpaid(order_status: OrderStatus | str, payment_method: str) -> ValidationResult:
    """Decides whether a vendor may revert a payment flag."""
    status = OrderStatus(order_status)

    if _as_method(payment_method) == PaymentMethod.MERCADOPAGO:
        return ValidationResult(allowed=False, reason="No se puede modificar pagos de MercadoPago")

    if status == OrderStatus.DELIVERED:
        return ValidationResult(
            allowed=False,
            reason="No se puede marcar como no pagado un pedido ya entregado. Contactá a soporte si hay un problema.",
        )

    return ValidationResult(allowed=True)


def payment_method_icon(payment_method: str) -> str:
    return {
        PaymentMethod.CASH: "💵",
        PaymentMethod.TRANSFER: "🏦",
        PaymentMethod.MERCADOPAGO: "💳",
    }.get(_as_method(payment_method), "💰")


def is_automatic_payment_method(payment_method: str) -> bool:
    return _as_method(payment_method) == PaymentMethod.MERCADOPAGO


# ---------------------------------------------------------
# VENDOR PAYMENT SETTINGS (tagged variants)
# ---------------------------------------------------------
class CashSettings(BaseModel):
    kind: Literal["efectivo"] = "efectivo"


class TransferSettings(BaseModel):
    kind: Literal["transferencia"] = "transferencia"
    alias: Optional[str] = None
    cbu: Optional[str] = None
    titular: Optional[str] = None


class MercadoPagoSettings(BaseModel):
    kind: Literal["mercadopago"] = "mercadopago"
    user_id: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    def is_token_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


PaymentSettings = Union[CashSettings, TransferSettings, MercadoPagoSettings]


def parse_payment_settings(blob: Optional[dict]) -> List[PaymentSettings]:
    """
    Turns the vendor's stored JSON into the list of active payment options.

    Stored shape:
        {"efectivo": true,
         "transferencia": {"activo": true, "alias": ..., "cbu": ..., "titular": ...},
         "mercadoPago": {"activo": false, "user_id": ..., "access_token": ...,
                         "refresh_token": ..., "fecha_expiracion_token": ...}}
    A missing blob means cash only.
    """
    if not blob:
        return [CashSettings()]

    options: List[PaymentSettings] = []

    mp = blob.get("mercadoPago") or {}
    if mp.get("activo") and mp.get("access_token"):
        options.append(MercadoPagoSettings(
            user_id=mp.get("user_id"),
            access_token=mp.get("access_token"),
            refresh_token=mp.get("refresh_token"),
            expires_at=mp.get("fecha_expiracion_token"),
        ))

    transfer = blob.get("transferencia") or {}
    if transfer.get("activo"):
        options.append(TransferSettings(
            alias=transfer.get("alias"),
            cbu=transfer.get("cbu"),
            titular=transfer.get("titular"),
        ))

    if blob.get("efectivo", True):
        options.append(CashSettings())

    return options


def payment_instructions(options: List[PaymentSettings], total: float) -> str:
    """Renders the payment block sent to the customer over WhatsApp."""
    if not options:
        return "⚠️ Este negocio no tiene medios de pago configurados."

    lines = [f"## ✨ Formas de Pago – Total ${total:,.2f}"]
    for option in options:
        if isinstance(option, MercadoPagoSettings):
            lines.append("### 💳 MercadoPago")
            lines.append("* Te enviaremos el link de pago por este chat.")
        elif isinstance(option, TransferSettings):
            lines.append("### 🏦 Transferencia")
            if option.alias:
                lines.append(f"* **Alias:** {option.alias}")
            if option.cbu:
                lines.append(f"* **CBU:** {option.cbu}")
            if option.titular:
                lines.append(f"* **Titular:** {option.titular}")
        elif isinstance(option, CashSettings):
            lines.append("### 💵 Efectivo")
            lines.append("* Pago en efectivo al recibir el pedido")
    return "\n".join(lines)
