"""
Plan -> role -> permission policy.

Roles are never stored. Every request derives the role from the user's
current `plan`, so a plan change takes effect on the next request.

    plan         role
    -----------  -----------
    empresarial  empresarial
    client       client
    none / ???   client      (but with no key permissions)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from keyforge.core.errors import AccessDenied

ROLE_EMPRESARIAL = "empresarial"
ROLE_CLIENT = "client"


class Permission(str, Enum):
    CREATE_PROJECT = "create_project"
    LINK_COLLECTION = "link_collection"
    GENERATE_KEYS = "generate_keys"
    RESET_HWID = "reset_hwid"
    REMOVE_KEY = "remove_key"


_EMPRESARIAL_ONLY = {
    Permission.CREATE_PROJECT,
    Permission.LINK_COLLECTION,
}

_PAID_PLAN_ONLY = {
    Permission.GENERATE_KEYS,
    Permission.RESET_HWID,
    Permission.REMOVE_KEY,
}

_DENIAL_MESSAGES = {
    Permission.CREATE_PROJECT: "Apenas contas empresariais podem criar projetos.",
    Permission.LINK_COLLECTION: "Apenas contas empresariais podem vincular coleções.",
    Permission.GENERATE_KEYS: "Seu plano não permite gerar keys.",
    Permission.RESET_HWID: "Seu plano não permite resetar HWID.",
    Permission.REMOVE_KEY: "Seu plano não permite remover keys.",
}


def role_for_plan(plan: Optional[str]) -> str:
    return ROLE_EMPRESARIAL if plan == "empresarial" else ROLE_CLIENT


def is_allowed(plan: Optional[str], permission: Permission) -> bool:
    if permission in _EMPRESARIAL_ONLY:
        return role_for_plan(plan) == ROLE_EMPRESARIAL
    if permission in _PAID_PLAN_ONLY:
        return (plan or "none") != "none"
    return True


def require(user, permission: Permission) -> None:
    """Raise AccessDenied (403) unless the user's plan grants `permission`."""
    if not is_allowed(user.plan, permission):
        raise AccessDenied(_DENIAL_MESSAGES[permission])


def plan_is_active(plan: Optional[str], expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if not plan or plan == "none" or expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at > now
