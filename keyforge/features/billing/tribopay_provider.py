"""
TriboPay PIX provider implementation.

Implements PaymentProvider against TriboPay's public REST API using httpx.
Authentication is the `api_token` query parameter. The gateway is not
consistent about where it nests transaction fields (`data`, `transaction`,
`offer`, `pix`), so responses go through `normalize_transaction`.
"""
import base64
import logging
import re
from io import BytesIO
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
import qrcode

from keyforge.core.config import settings
from keyforge.features.billing.provider import PaymentProviderError, PixTransaction

logger = logging.getLogger("keyforge")

_DATA_URL_PREFIX = re.compile(r"^data:image/png;base64,(.+)$", re.IGNORECASE | re.DOTALL)


def _first(*values):
    for value in values:
        if value not in (None, ""):
            return value
    return None


def _dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def strip_data_url_prefix(value: Any) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    match = _DATA_URL_PREFIX.match(value)
    return match.group(1) if match else value


def qr_png_base64(text: str) -> str:
    """Render a PIX copy-paste string as a bare base64 PNG."""
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, box_size=6, border=1)
    qr.add_data(text)
    qr.make(fit=True)
    buffer = BytesIO()
    qr.make_image().save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def normalize_transaction(data: Dict[str, Any]) -> PixTransaction:
    data = _dict(data)
    core = _dict(_first(data.get("data"), data.get("transaction"))) or data
    offer = _dict(_first(core.get("offer"), data.get("offer")))
    pix = _dict(_first(core.get("pix"), _dict(core.get("payment")).get("pix"), data.get("pix"), offer.get("pix")))

    transaction_hash = _first(
        core.get("transaction_hash"), core.get("hash"),
        data.get("transaction_hash"), data.get("hash"),
        offer.get("transaction_hash"), offer.get("hash"),
    )
    status = _first(core.get("status"), data.get("status"), core.get("payment_status"), offer.get("payment_status")) or "pending"
    amount = _first(core.get("amount"), data.get("amount"), offer.get("amount"))
    payment_method = _first(core.get("payment_method"), data.get("payment_method"), offer.get("payment_method")) or "pix"

    qr_text = _first(
        pix.get("qr_code_text"), pix.get("qrCodeText"), pix.get("qr_code"), pix.get("copy_paste"),
        pix.get("pix_qr_code"), pix.get("pix_qrcode"),
        offer.get("pix_qr_code"), offer.get("pix_qrcode"),
        core.get("pix_qr_code"), core.get("qr_code"),
        data.get("pix_qr_code"), data.get("qr_code"),
    )
    qr_image = _first(
        pix.get("qr_code_image_base64"), pix.get("qrCodeImageBase64"), pix.get("qr_code_image"),
        pix.get("qr_code_base64"), pix.get("qrCodeBase64"),
        offer.get("qr_code_base64"), offer.get("qr_code_image_base64"),
        core.get("qr_code_base64"), data.get("qr_code_base64"),
    )
    expires_at = _first(
        pix.get("expires_at"), pix.get("expiresAt"),
        offer.get("expires_at"), offer.get("expiresAt"),
        core.get("expires_at"), core.get("expiresAt"),
        data.get("expires_at"), data.get("expiresAt"),
    )
    paid_at = _first(core.get("paid_at"), core.get("approved_at"))

    qr_text = str(qr_text) if qr_text is not None else None
    qr_image = strip_data_url_prefix(str(qr_image)) if qr_image is not None else None
    if not qr_image and qr_text:
        qr_image = qr_png_base64(qr_text)

    try:
        amount = int(amount) if amount is not None else None
    except (TypeError, ValueError):
        amount = None

    return PixTransaction(
        transaction_hash=str(transaction_hash) if transaction_hash is not None else None,
        status=str(status),
        amount=amount,
        payment_method=str(payment_method),
        qr_code_text=qr_text,
        qr_code_image_base64=qr_image,
        expires_at=str(expires_at) if expires_at is not None else None,
        paid_at=str(paid_at) if paid_at is not None else None,
    )


class TriboPayProvider:
    """TriboPay implementation of PaymentProvider protocol."""

    def __init__(
        self,
        api_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize TriboPay provider.

        Args:
            api_token: TriboPay API token (defaults to TRIBOPAY_API_TOKEN)
            base_url: API root (defaults to TRIBOPAY_BASE_URL)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.api_token = api_token or settings.TRIBOPAY_API_TOKEN
        if not self.api_token:
            raise PaymentProviderError("TRIBOPAY_API_TOKEN not configured")
        self.base_url = (base_url or settings.TRIBOPAY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.TRIBOPAY_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={"Accept": "application/json"},
        )

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {"raw": response.text}
        return body if isinstance(body, dict) else {"data": body}

    def create_pix_transaction(self, payload: Dict[str, Any]) -> PixTransaction:
        try:
            with self._client() as client:
                response = client.post("/transactions", params={"api_token": self.api_token}, json=payload)
        except httpx.HTTPError as e:
            raise PaymentProviderError(f"TriboPay request failed: {type(e).__name__}")

        body = self._json(response)
        if response.is_error:
            # Gateway messages may echo customer data; keep them in logs only.
            logger.warning(
                "tribopay.create_failed",
                extra={"status": response.status_code, "gateway_message": str(body.get("message") or body.get("error") or "")[:200]},
            )
            raise PaymentProviderError("Falha na TriboPay.", status_code=response.status_code)
        return normalize_transaction(body)

    def get_transaction(self, transaction_hash: str) -> PixTransaction:
        attempts = [
            (f"/transactions/{quote(transaction_hash, safe='')}", {"api_token": self.api_token}),
            ("/transactions", {"api_token": self.api_token, "transaction_hash": transaction_hash}),
        ]
        last_status: Optional[int] = None
        with self._client() as client:
            for path, params in attempts:
                try:
                    response = client.get(path, params=params)
                except httpx.HTTPError as e:
                    logger.warning("tribopay.lookup_error", extra={"path": path.split("/")[1], "error": type(e).__name__})
                    continue
                if response.is_error:
                    last_status = response.status_code
                    continue
                transaction = normalize_transaction(self._json(response))
                if not transaction.transaction_hash:
                    transaction.transaction_hash = transaction_hash
                return transaction

        raise PaymentProviderError("Falha ao consultar transação na TriboPay.", status_code=last_status)
