"""
Billing models: plan activation requests and PIX payment views.
"""
from typing import Any, Optional, Dict
from pydantic import BaseModel, ConfigDict, Field

PAYABLE_PLANS = ("client", "empresarial")

CUSTOMER_ADDRESS_FIELDS = ("street_name", "number", "complement", "neighborhood", "city", "state", "zip_code")


class ActivateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan: Optional[str] = None
    transaction_hash: Optional[str] = None
    external_id: Optional[str] = Field(default=None, alias="externalId")


class CreatePaymentRequest(BaseModel):
    """Checkout form as posted by the plans page; address fields pass through."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    phone_number: Optional[str] = None
    cpf: Optional[str] = None
    amount: Any = None
    items: Any = None
    plan: Optional[str] = None
    external_id: Optional[str] = Field(default=None, alias="externalId")
    utm_query: Optional[Dict[str, Any]] = Field(default=None, alias="utmQuery")


class PixInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    qrCodeText: Optional[str] = None
    qrCodeImageBase64: Optional[str] = None
    expiresAt: Optional[str] = None


class PaymentView(BaseModel):
    """What the front end is allowed to see of a gateway transaction (no customer data)."""
    model_config = ConfigDict(frozen=True)

    transaction_hash: Optional[str] = None
    status: str
    amount: Optional[int] = None
    payment_method: str = "pix"
    pix: PixInfo = Field(default_factory=PixInfo)
    paid_at: Optional[str] = None
