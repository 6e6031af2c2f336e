"""
Session cookie auth.

Issues and verifies the HS256 JWT carried in the HTTP-only `auth_token`
cookie and resolves it to the stored user on every request. Nothing about
the user's role is trusted from the token; only `id` and `email`.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
import hashlib
import logging
from uuid import uuid4

import jwt
from fastapi import Request, Response

from keyforge.core.config import settings
from keyforge.core.errors import Unauthenticated, InvalidToken, UserNotFound

logger = logging.getLogger("keyforge")


def _secret() -> str:
    if not settings.JWT_SECRET:
        raise RuntimeError("JWT_SECRET is not configured")
    return settings.JWT_SECRET


def issue_token(user_id: str, email: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    payload = {
        "id": user_id,
        "email": email,
        "jti": uuid4().hex,
        "iat": now,
        "exp": now + timedelta(days=settings.AUTH_TOKEN_TTL_DAYS),
    }
    return jwt.encode(payload, _secret(), algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> dict:
    """
    Verify signature and expiry and return the `{id, email}` claims.

    Raises:
        InvalidToken: bad signature, expired, or missing `id` claim
    """
    try:
        payload = jwt.decode(
            token,
            _secret(),
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise InvalidToken("Token expirado.")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise InvalidToken("Token inválido.")

    if not payload.get("id"):
        raise InvalidToken("Token inválido.")
    return {"id": str(payload["id"]), "email": payload.get("email")}


def token_fingerprint(token: str) -> str:
    """Sessions store a digest of the cookie, never the cookie itself."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
        path="/",
        max_age=settings.AUTH_TOKEN_TTL_DAYS * 24 * 60 * 60,
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(key=settings.AUTH_COOKIE_NAME, path="/")


def get_session_token(request: Request) -> str:
    token = request.cookies.get(settings.AUTH_COOKIE_NAME)
    if not token:
        raise Unauthenticated("Não autenticado.")
    return token


def get_current_user(request: Request):
    """
    FastAPI dependency resolving the cookie to a full User.

    Raises:
        Unauthenticated: no cookie
        InvalidToken: signature or expiry check failed
        UserNotFound: token refers to a deleted user
    """
    from keyforge.features.users.service import get_user

    claims = verify_token(get_session_token(request))
    user = get_user(claims["id"])
    if not user:
        raise UserNotFound("Usuário não encontrado.")
    request.state.user_id = user.id
    return user
