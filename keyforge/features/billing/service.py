"""
Billing service orchestrator.

Coordinates:
- PIX charge creation and status checks (proxy to the gateway)
- Plan activation after a verified payment (idempotent per transaction)
- Gateway postbacks -> push notifications

All TriboPay-specific code is in tribopay_provider.py.
"""
import logging
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import update

from keyforge.core.config import settings
from keyforge.core.database import get_db_session, users
from keyforge.core.errors import (
    AppError,
    PaymentNotConfirmed,
    UpstreamUnavailable,
    UserNotFound,
    ValidationError,
)
from keyforge.core.logging import log_event
from keyforge.features.billing.provider import (
    PAID,
    PENDING,
    UNKNOWN,
    PaymentProvider,
    PaymentProviderError,
    PixTransaction,
    normalize_payment_status,
)
from keyforge.features.billing.tribopay_provider import TriboPayProvider, normalize_transaction
from keyforge.features.notifications import service as notifications
from keyforge.models.billing import (
    CUSTOMER_ADDRESS_FIELDS,
    PAYABLE_PLANS,
    ActivateRequest,
    CreatePaymentRequest,
    PaymentView,
    PixInfo,
)
from keyforge.models.user import User

logger = logging.getLogger("keyforge")

_NON_DIGITS = re.compile(r"\D")

PUSH_MESSAGES = {
    PAID: {"title": "Pagamento aprovado", "body": "Um pagamento PIX foi confirmado."},
    PENDING: {"title": "Pagamento pendente", "body": "Um novo PIX foi gerado e aguarda pagamento."},
}


class BillingDisabled(AppError):
    code = "billing_disabled"
    status_code = 503


def billing_enabled() -> bool:
    """Check if billing is enabled (TriboPay configured)."""
    return bool(settings.TRIBOPAY_API_TOKEN)


def get_provider() -> Optional[PaymentProvider]:
    """Get payment provider if billing is enabled."""
    if not billing_enabled():
        return None
    try:
        return TriboPayProvider()
    except PaymentProviderError:
        return None


def _require_provider() -> PaymentProvider:
    provider = get_provider()
    if not provider:
        raise BillingDisabled("Pagamentos indisponíveis.")
    return provider


def _only_digits(value: Optional[str]) -> str:
    return _NON_DIGITS.sub("", value or "")


def to_cents(amount: Any) -> Optional[int]:
    try:
        parsed = float(str(amount))
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed) or math.isinf(parsed) or parsed <= 0:
        return None
    return round(parsed * 100)


def _build_customer(request: CreatePaymentRequest) -> Dict[str, Any]:
    phone = _only_digits(request.phone or request.phone_number)
    customer: Dict[str, Any] = {
        "name": request.name,
        "email": request.email,
        "phone_number": phone if phone.startswith("55") else f"55{phone}",
    }
    document = _only_digits(request.cpf)
    if document:
        customer["document"] = document
    extras = request.model_extra or {}
    for key in CUSTOMER_ADDRESS_FIELDS:
        if extras.get(key):
            customer[key] = extras[key]
    return customer


def _build_cart(items: list, amount_cents: int) -> list[Dict[str, Any]]:
    cart = []
    for item in items:
        item = item if isinstance(item, dict) else {}
        price = to_cents(item.get("unitPrice") or item.get("price") or 0) or amount_cents
        cart.append({
            "product_hash": item.get("product_hash") or item.get("hash") or item.get("id") or "plan",
            "title": item.get("title") or item.get("name") or "Produto",
            "cover": item.get("cover"),
            "price": price,
            "quantity": int(item.get("quantity") or 1),
            "operation_type": int(item.get("operation_type") or 1),
            "tangible": bool(item.get("tangible") or False),
        })
    return cart


def _build_tracking(utm: Optional[Dict[str, Any]], fallback_src: Optional[str]) -> Dict[str, str]:
    utm = utm or {}
    return {
        "src": utm.get("src") or utm.get("utm_source") or fallback_src or "",
        "utm_source": utm.get("utm_source") or "",
        "utm_medium": utm.get("utm_medium") or "",
        "utm_campaign": utm.get("utm_campaign") or "",
        "utm_term": utm.get("utm_term") or "",
        "utm_content": utm.get("utm_content") or "",
    }


def _view(transaction: PixTransaction, fallback_amount: Optional[int] = None) -> PaymentView:
    return PaymentView(
        transaction_hash=transaction.transaction_hash,
        status=transaction.status,
        amount=transaction.amount if transaction.amount is not None else fallback_amount,
        payment_method=transaction.payment_method or "pix",
        pix=PixInfo(
            qrCodeText=transaction.qr_code_text,
            qrCodeImageBase64=transaction.qr_code_image_base64,
            expiresAt=transaction.expires_at,
        ),
        paid_at=transaction.paid_at,
    )


def create_payment(request: CreatePaymentRequest) -> PaymentView:
    """
    Create a PIX charge for a plan purchase.

    Raises:
        ValidationError: invalid amount or items, or gateway rejected the charge
        BillingDisabled: gateway not configured
        UpstreamUnavailable: gateway unreachable or 5xx
    """
    amount_cents = to_cents(request.amount)
    if not amount_cents:
        raise ValidationError("Valor do pagamento inválido.")
    if not isinstance(request.items, list) or not request.items:
        raise ValidationError("Itens do pedido inválidos.")

    provider = _require_provider()
    if not settings.TRIBOPAY_OFFER_HASH_CLIENT:
        raise BillingDisabled("Pagamentos indisponíveis.")

    payload: Dict[str, Any] = {
        "amount": amount_cents,
        "offer_hash": settings.TRIBOPAY_OFFER_HASH_CLIENT,
        "payment_method": "pix",
        "customer": _build_customer(request),
        "cart": _build_cart(request.items, amount_cents),
        "installments": 1,
        "expire_in_days": 1,
        "transaction_origin": "api",
        "tracking": _build_tracking(request.utm_query, request.external_id),
    }
    if settings.TRIBOPAY_POSTBACK_URL:
        payload["postback_url"] = settings.TRIBOPAY_POSTBACK_URL

    try:
        transaction = provider.create_pix_transaction(payload)
    except PaymentProviderError as e:
        if e.is_client_error:
            raise ValidationError("Falha na TriboPay.")
        raise UpstreamUnavailable("Falha na TriboPay.")

    log_event(
        "info",
        "billing.payment_created",
        extra={"transaction_hash": transaction.transaction_hash, "amount": amount_cents, "plan": request.plan},
    )
    return _view(transaction, fallback_amount=amount_cents)


def check_payment(transaction_hash: Optional[str]) -> PaymentView:
    if not transaction_hash:
        raise ValidationError("transaction_hash é obrigatório.")
    provider = _require_provider()
    try:
        transaction = provider.get_transaction(transaction_hash)
    except PaymentProviderError:
        raise UpstreamUnavailable("Falha ao consultar status na TriboPay.")
    return _view(transaction)


def activate_plan(user: User, request: ActivateRequest, now: Optional[datetime] = None) -> dict:
    """
    Apply a paid plan to the user after confirming the payment with the gateway.

    Re-submitting the same transaction_hash is a no-op (`alreadyApplied`).
    A new payment restarts the window at now + PLAN_DURATION_DAYS; windows
    never stack.

    Raises:
        ValidationError: bad plan/hash, or the gateway could not verify
        PaymentNotConfirmed: the gateway says the payment is not paid (409)
    """
    plan = request.plan
    transaction_hash = request.transaction_hash
    if plan not in PAYABLE_PLANS:
        raise ValidationError("Plano inválido.")
    if not transaction_hash or not isinstance(transaction_hash, str):
        raise ValidationError("transaction_hash ausente.")

    provider = get_provider()
    if not provider:
        raise ValidationError("Não foi possível verificar pagamento.")
    try:
        transaction = provider.get_transaction(transaction_hash)
    except PaymentProviderError:
        raise ValidationError("Não foi possível verificar pagamento.")

    if transaction.normalized_status != PAID:
        raise PaymentNotConfirmed("Pagamento ainda não confirmado.")

    if user.plan_last_transaction_hash and user.plan_last_transaction_hash == transaction_hash:
        return {
            "ok": True,
            "alreadyApplied": True,
            "plan": user.plan,
            "planPaidAt": user.plan_paid_at,
            "planExpiresAt": user.plan_expires_at,
        }

    now = now or datetime.now(timezone.utc)
    expires_at = now + timedelta(days=settings.PLAN_DURATION_DAYS)
    with get_db_session() as session:
        result = session.execute(
            update(users)
            .where(users.c.id == user.id)
            .values(
                plan=plan,
                plan_paid_at=now,
                plan_expires_at=expires_at,
                plan_last_transaction_hash=transaction_hash,
                plan_external_id=request.external_id,
                updated_at=now,
            )
        )
        if result.rowcount == 0:
            raise UserNotFound("Usuário não encontrado.")

    log_event(
        "info",
        "billing.plan_activated",
        user_id=user.id,
        event_type="plan_activation",
        extra={"plan": plan, "transaction_hash": transaction_hash},
    )
    notifications.send_to_user(user.id, {
        "title": "Plano ativado",
        "body": f"Seu plano {plan} está ativo até {expires_at.date().isoformat()}.",
        "url": "/settings/billing",
    })

    return {
        "ok": True,
        "plan": plan,
        "planPaidAt": now,
        "planExpiresAt": expires_at,
    }


def handle_postback(payload: Dict[str, Any]) -> dict:
    """
    Gateway postback: confirm the reported transaction with the gateway,
    then notify subscribers of its normalized status.
    """
    reported = normalize_transaction(payload)
    status = UNKNOWN
    if reported.transaction_hash:
        provider = get_provider()
        if provider:
            try:
                status = provider.get_transaction(reported.transaction_hash).normalized_status
            except PaymentProviderError:
                logger.warning("billing.postback_unverified", extra={"transaction_hash": reported.transaction_hash})

    delivered = 0
    message = PUSH_MESSAGES.get(status)
    if message:
        delivered = notifications.dispatch(status, {**message, "url": "/settings/billing", "status": status})

    log_event(
        "info",
        "billing.postback",
        extra={"transaction_hash": reported.transaction_hash, "status": status, "delivered": delivered},
    )
    return {"ok": True, "status": status, "delivered": delivered}


__all__ = [
    "billing_enabled",
    "get_provider",
    "create_payment",
    "check_payment",
    "activate_plan",
    "handle_postback",
    "normalize_payment_status",
]
