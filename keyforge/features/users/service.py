"""
User domain service.
- register / authenticate (bcrypt passwords, login sessions)
- get_user / get_user_by_email
- profile and password updates
- MongoDB integration connect / disconnect
"""

import uuid
import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

import bcrypt
from sqlalchemy import select, insert, update, delete
from sqlalchemy.exc import IntegrityError

from keyforge.core.auth import issue_token, token_fingerprint
from keyforge.core.database import get_db_session, users, user_sessions, as_utc
from keyforge.core.errors import (
    ValidationError,
    InvalidCredentials,
    NotFoundError,
    UserNotFound,
)
from keyforge.models.user import User, Integration, SessionInfo

logger = logging.getLogger("keyforge")

MAX_IMAGE_CHARS = int(0.5 * 1024 * 1024)
MONGO_URI_SCHEMES = ("mongodb://", "mongodb+srv://")
UNKNOWN_DEVICE = "Unknown Device"
UNKNOWN_LOCATION = "Unknown Location"


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        image=row.image,
        plan=row.plan or "none",
        plan_paid_at=as_utc(row.plan_paid_at),
        plan_expires_at=as_utc(row.plan_expires_at),
        plan_last_transaction_hash=row.plan_last_transaction_hash,
        plan_external_id=row.plan_external_id,
        integrations=[Integration.model_validate(i) for i in (row.integrations or [])],
        created_at=as_utc(row.created_at),
    )


def get_user(user_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(users).where(users.c.id == user_id)).first()
        return _row_to_user(row) if row else None


def get_user_by_email(email: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(users).where(users.c.email == normalize_email(email))).first()
        return _row_to_user(row) if row else None


def register(name: Optional[str], email: Optional[str], password: Optional[str]) -> User:
    if not name or not email or not password or not name.strip() or not email.strip():
        raise ValidationError("Preencha nome, e-mail e senha.")

    email = normalize_email(email)
    if get_user_by_email(email):
        raise ValidationError("Já existe uma conta com esse e-mail.")

    now = datetime.now(timezone.utc)
    user_id = str(uuid.uuid4())
    try:
        with get_db_session() as session:
            session.execute(
                insert(users).values(
                    id=user_id,
                    name=name.strip(),
                    email=email,
                    password_hash=hash_password(password),
                    plan="none",
                    integrations=[],
                    created_at=now,
                    updated_at=now,
                )
            )
    except IntegrityError:
        # Lost a race with a concurrent registration for the same email
        raise ValidationError("Já existe uma conta com esse e-mail.")

    logger.info("user.registered", extra={"user_id": user_id})
    return User(id=user_id, name=name.strip(), email=email, plan="none", created_at=now)


def authenticate(
    email: Optional[str],
    password: Optional[str],
    *,
    device: Optional[str] = None,
    location: Optional[str] = None,
    ip: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[User, str]:
    """
    Check credentials, open a login session and return (user, jwt).

    Raises:
        ValidationError: email or password missing
        InvalidCredentials: unknown email or wrong password
    """
    if not email or not password:
        raise ValidationError("Preencha e-mail e senha.")

    with get_db_session() as session:
        row = session.execute(select(users).where(users.c.email == normalize_email(email))).first()
    if not row or not verify_password(password, row.password_hash):
        raise InvalidCredentials("Credenciais inválidas.")

    user = _row_to_user(row)
    now = now or datetime.now(timezone.utc)
    token = issue_token(user.id, user.email, now=now)

    with get_db_session() as session:
        session.execute(
            insert(user_sessions).values(
                id=str(uuid.uuid4()),
                user_id=user.id,
                device=device or UNKNOWN_DEVICE,
                location=location or UNKNOWN_LOCATION,
                ip=ip or "unknown",
                token_hash=token_fingerprint(token),
                last_active=now,
                created_at=now,
            )
        )

    logger.info("user.login", extra={"user_id": user.id})
    return user, token


def update_profile(
    user: User,
    *,
    name: Optional[str] = None,
    email: Optional[str] = None,
    image: Optional[str] = None,
) -> User:
    """Partial update: only fields that were sent are validated and written."""
    values = {}
    if name is not None:
        if not name.strip():
            raise ValidationError("Nome não pode ser vazio.")
        values["name"] = name.strip()
    if email is not None:
        if not email.strip():
            raise ValidationError("Email não pode ser vazio.")
        values["email"] = normalize_email(email)
    if image is not None:
        if not image.startswith("data:image/"):
            raise ValidationError("Imagem inválida. Deve ser uma string base64 de imagem.")
        if len(image) > MAX_IMAGE_CHARS:
            raise ValidationError("Imagem muito grande. Máximo permitido: 0.5 MB.")
        values["image"] = image

    if not values:
        return user

    values["updated_at"] = datetime.now(timezone.utc)
    try:
        with get_db_session() as session:
            session.execute(update(users).where(users.c.id == user.id).values(**values))
    except IntegrityError:
        raise ValidationError("Já existe uma conta com esse e-mail.")

    return get_user(user.id)


def change_password(user: User, current_password: Optional[str], new_password: Optional[str]) -> None:
    if not current_password or not new_password:
        raise ValidationError("Preencha a senha atual e nova.")

    with get_db_session() as session:
        row = session.execute(select(users.c.password_hash).where(users.c.id == user.id)).first()
        if not row:
            raise UserNotFound("Usuário não encontrado.")
        if not verify_password(current_password, row.password_hash):
            raise InvalidCredentials("Senha atual incorreta.")
        session.execute(
            update(users)
            .where(users.c.id == user.id)
            .values(password_hash=hash_password(new_password), updated_at=datetime.now(timezone.utc))
        )


def list_sessions(user: User, current_token: Optional[str] = None) -> list[SessionInfo]:
    current_hash = token_fingerprint(current_token) if current_token else None
    with get_db_session() as session:
        rows = session.execute(
            select(user_sessions)
            .where(user_sessions.c.user_id == user.id)
            .order_by(user_sessions.c.last_active.desc())
        ).fetchall()

    return [
        SessionInfo(
            id=row.id,
            device=row.device,
            location=row.location,
            ip=row.ip,
            last_active=as_utc(row.last_active),
            current=row.token_hash == current_hash,
        )
        for row in rows
    ]


def revoke_session(user: User, session_id: Optional[str]) -> None:
    if not session_id:
        raise ValidationError("ID da sessão é obrigatório.")
    with get_db_session() as session:
        result = session.execute(
            delete(user_sessions).where(
                user_sessions.c.id == session_id,
                user_sessions.c.user_id == user.id,
            )
        )
        if result.rowcount == 0:
            raise NotFoundError("Sessão não encontrada.")


def _save_integrations(user_id: str, integrations: list[Integration]) -> None:
    with get_db_session() as session:
        session.execute(
            update(users)
            .where(users.c.id == user_id)
            .values(
                integrations=[i.model_dump(exclude_none=True) for i in integrations],
                updated_at=datetime.now(timezone.utc),
            )
        )


def list_integrations(user: User) -> list[Integration]:
    return list(user.integrations)


def connect_integration(user: User, integration_id: Optional[str], uri: Optional[str]) -> list[Integration]:
    if not integration_id or not uri:
        raise ValidationError("ID e URI são obrigatórios.")
    if "-" in integration_id:
        # collectionId segments are dash-separated; the integration id must be one segment
        raise ValidationError("ID da integração não pode conter \"-\".")
    uri = uri.strip()
    if not uri.startswith(MONGO_URI_SCHEMES):
        raise ValidationError("URI inválida. Deve começar com mongodb:// ou mongodb+srv://")

    connected = Integration(id=integration_id, name="MongoDB", connected=True, config={"uri": uri})
    integrations = [i for i in user.integrations if i.id != integration_id] + [connected]
    _save_integrations(user.id, integrations)
    logger.info("integration.connected", extra={"user_id": user.id, "integration_id": integration_id})
    return integrations


def disconnect_integration(user: User, integration_id: Optional[str]) -> list[Integration]:
    """Keep the entry so the UI can offer reconnecting, but forget the URI."""
    if not integration_id:
        raise ValidationError("ID da integração é obrigatório.")

    integrations = [
        Integration(id=i.id, name=i.name, connected=False) if i.id == integration_id else i
        for i in user.integrations
    ]

    _save_integrations(user.id, integrations)
    logger.info("integration.disconnected", extra={"user_id": user.id, "integration_id": integration_id})
    return integrations
