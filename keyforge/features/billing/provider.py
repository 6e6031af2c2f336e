"""
Payment provider protocol.

Defines the interface for PIX payment gateways (TriboPay, etc.).
This allows swapping providers without changing business logic.
"""
from typing import Protocol, Dict, Any, Optional
from dataclasses import dataclass, field


PAID = "paid"
PENDING = "pending"
FAILED = "failed"
UNKNOWN = "unknown"

_STATUS_ALIASES = {
    "paid": PAID,
    "pago": PAID,
    "pending": PENDING,
    "pendente": PENDING,
    "awaiting": PENDING,
    "waiting_payment": PENDING,
    "canceled": FAILED,
    "cancelled": FAILED,
    "refunded": FAILED,
    "failed": FAILED,
}


def normalize_payment_status(raw: Any) -> str:
    """Map a gateway status string onto paid / pending / failed / unknown."""
    return _STATUS_ALIASES.get(str(raw or "").strip().lower(), UNKNOWN)


@dataclass
class PixTransaction:
    """A gateway transaction, reduced to what the app may show or act on."""
    transaction_hash: Optional[str]
    status: str  # raw gateway status
    amount: Optional[int] = None  # cents
    payment_method: str = "pix"
    qr_code_text: Optional[str] = None
    qr_code_image_base64: Optional[str] = None
    expires_at: Optional[str] = None
    paid_at: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def normalized_status(self) -> str:
        return normalize_payment_status(self.status)


class PaymentProvider(Protocol):
    """
    Protocol for PIX payment providers.

    Implementations must handle:
    - PIX charge creation
    - Transaction lookup by hash
    """

    def create_pix_transaction(self, payload: Dict[str, Any]) -> PixTransaction:
        """
        Create a PIX charge.

        Args:
            payload: Gateway request body (amount in cents, customer, cart, tracking)

        Returns:
            Normalized transaction including the QR code

        Raises:
            PaymentProviderError: If the gateway rejects or cannot be reached
        """
        ...

    def get_transaction(self, transaction_hash: str) -> PixTransaction:
        """
        Fetch a transaction's current state.

        Raises:
            PaymentProviderError: If no lookup strategy succeeds
        """
        ...


class PaymentProviderError(Exception):
    """Base exception for payment provider errors."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500
