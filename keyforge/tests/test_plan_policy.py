"""Tests for plan -> role -> permission derivation."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from keyforge.core.errors import AccessDenied
from keyforge.features.plans.policy import (
    Permission,
    ROLE_CLIENT,
    ROLE_EMPRESARIAL,
    is_allowed,
    plan_is_active,
    require,
    role_for_plan,
)


@pytest.mark.parametrize(
    "plan,role",
    [("empresarial", ROLE_EMPRESARIAL), ("client", ROLE_CLIENT), ("none", ROLE_CLIENT), (None, ROLE_CLIENT), ("gold", ROLE_CLIENT)],
)
def test_role_for_plan(plan, role):
    assert role_for_plan(plan) == role
    # pure: same input, same answer
    assert role_for_plan(plan) == role_for_plan(plan)


def test_empresarial_only_permissions():
    for perm in (Permission.CREATE_PROJECT, Permission.LINK_COLLECTION):
        assert is_allowed("empresarial", perm)
        assert not is_allowed("client", perm)
        assert not is_allowed("none", perm)


def test_key_permissions_need_any_paid_plan():
    for perm in (Permission.GENERATE_KEYS, Permission.RESET_HWID, Permission.REMOVE_KEY):
        assert is_allowed("empresarial", perm)
        assert is_allowed("client", perm)
        assert not is_allowed("none", perm)
        assert not is_allowed(None, perm)


def test_require_raises_access_denied():
    with pytest.raises(AccessDenied) as exc:
        require(SimpleNamespace(plan="none"), Permission.GENERATE_KEYS)
    assert exc.value.status_code == 403
    require(SimpleNamespace(plan="client"), Permission.GENERATE_KEYS)


def test_plan_is_active():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert plan_is_active("client", now + timedelta(seconds=1), now)
    assert not plan_is_active("client", now - timedelta(seconds=1), now)
    assert not plan_is_active("none", now + timedelta(days=1), now)
    assert not plan_is_active("empresarial", None, now)
    # naive timestamps from SQLite are treated as UTC
    assert plan_is_active("client", datetime(2026, 1, 2), now)
