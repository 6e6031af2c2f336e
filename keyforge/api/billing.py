"""
Billing API routes.

- POST /api/billing/activate: apply a plan after a confirmed PIX payment
- POST /api/billing/postback: TriboPay postback (unauthenticated)
- POST /api/create-payment: create a PIX charge
- GET  /api/create-payment?transaction_hash=...: poll a charge
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from keyforge.core.auth import get_current_user
from keyforge.features.billing import service as billing
from keyforge.models.billing import ActivateRequest, CreatePaymentRequest
from keyforge.models.user import User

router = APIRouter(prefix="/billing", tags=["billing"])
payments_router = APIRouter(prefix="/create-payment", tags=["billing"])


@router.post("/activate")
def activate(body: ActivateRequest, user: User = Depends(get_current_user)):
    """
    Activate a plan for the current user.

    Errors:
        400: invalid plan, missing hash, or payment could not be verified
        409: payment not confirmed yet
    """
    return billing.activate_plan(user, body)


@router.post("/postback")
def postback(payload: Optional[Dict[str, Any]] = Body(None)):
    return billing.handle_postback(payload or {})


@payments_router.post("")
def create_payment(body: CreatePaymentRequest):
    return billing.create_payment(body).model_dump()


@payments_router.get("")
def check_payment(transaction_hash: Optional[str] = Query(None)):
    return billing.check_payment(transaction_hash).model_dump()
