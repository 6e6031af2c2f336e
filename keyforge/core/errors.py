"""Error taxonomy and normalized handlers."""

import logging
import builtins
from typing import Optional
from uuid import uuid4

from starlette.exceptions import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from keyforge.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


# --- Authentication ---------------------------------------------------------

class Unauthenticated(AppError):
    code = "unauthenticated"
    status_code = 401


class InvalidToken(AppError):
    code = "invalid_token"
    status_code = 401


class InvalidCredentials(AppError):
    code = "invalid_credentials"
    status_code = 401


class UserNotFound(AppError):
    code = "user_not_found"
    status_code = 404


# --- Authorization ----------------------------------------------------------

class AccessDenied(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


# --- Input ------------------------------------------------------------------

class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class InvalidEmail(ValidationError):
    code = "invalid_email"


class DuplicateSlug(ValidationError):
    code = "duplicate_slug"


class AlreadyLinked(ValidationError):
    code = "already_linked"


class NotLinked(ValidationError):
    code = "not_linked"


class CollectionIdMalformed(ValidationError):
    code = "collection_id_malformed"


class KeyIdMalformed(ValidationError):
    code = "key_id_malformed"


class NoExistingSubscription(ValidationError):
    code = "no_existing_subscription"


# --- Lookup -----------------------------------------------------------------

class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class CollectionNotLinked(NotFoundError):
    code = "collection_not_linked"


class DocumentNotFound(NotFoundError):
    code = "document_not_found"


class IntegrationUnavailable(AppError):
    """The integration backing a collection is missing, disconnected or has no URI.

    Key generation reports this as 400; key lifecycle operations as 404.
    """
    code = "integration_unavailable"
    status_code = 400


# --- State / upstream -------------------------------------------------------

class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class PaymentNotConfirmed(ConflictError):
    code = "payment_not_confirmed"


class UpstreamUnavailable(AppError):
    code = "upstream_unavailable"
    status_code = 502


class GenerationFailed(AppError):
    code = "generation_failed"
    status_code = 500


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


def _json_error(status_code: int, code: str, message: str, rid: str) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=_error_payload(code, message, rid))
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    logger = logging.getLogger("keyforge")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _json_error(exc.status_code, exc.code, exc.message, rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    logger = logging.getLogger("keyforge")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _json_error(exc.status_code, code, message, rid)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"Invalid field: {field}" if field else "Invalid request body"
    logger = logging.getLogger("keyforge")
    logger.warning("request.invalid", extra={"request_id": rid, "error_code": "validation_error", "field": field})
    return _json_error(400, "validation_error", message, rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("keyforge")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    return _json_error(500, "internal_error", "Unexpected error", rid)
