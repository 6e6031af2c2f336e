# keyforge/conftest.py
import os
import tempfile
from pathlib import Path

# Must run before any keyforge import: settings are read at import time.
_TEST_DIR = Path(tempfile.mkdtemp(prefix="keyforge-tests-"))
os.environ["ENV"] = "test"
os.environ["TEST_DATABASE_URL"] = f"sqlite:///{_TEST_DIR / 'keyforge.db'}"
os.environ["SKIP_ENV_VALIDATION"] = "1"
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
for _var in ("TRIBOPAY_API_TOKEN", "TRIBOPAY_OFFER_HASH_CLIENT", "VAPID_PUBLIC_KEY", "VAPID_PRIVATE_KEY"):
    os.environ.pop(_var, None)

import pytest
from unittest.mock import patch
from sqlalchemy import update

from keyforge.core.auth import issue_token
from keyforge.core.config import settings
from keyforge.core.database import get_db_session, reset_database, users
from keyforge.tests.mocks import FakeMongoServer, FakePaymentProvider


@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """Fresh tables for every test (SQLite file in a temp dir)."""
    reset_database()
    yield


@pytest.fixture
def mongo():
    """
    In-memory stand-in for every user-supplied MongoDB deployment.

    Register deployments with `mongo.deployment(uri)`; any other URI fails
    server selection like an unreachable host would.
    """
    server = FakeMongoServer()
    with patch("keyforge.features.collections.external.MongoClient", server.client):
        yield server


@pytest.fixture
def payment_provider():
    provider = FakePaymentProvider()
    with patch("keyforge.features.billing.service.get_provider", return_value=provider):
        yield provider


@pytest.fixture
def vapid(monkeypatch):
    monkeypatch.setattr(settings, "VAPID_PUBLIC_KEY", "test-public-key")
    monkeypatch.setattr(settings, "VAPID_PRIVATE_KEY", "test-private-key")


@pytest.fixture
def make_user():
    """Factory: register a user and optionally set plan / integrations."""
    from keyforge.features.users.service import get_user, register

    counter = {"n": 0}

    def _make(plan="none", email=None, name="Test User", password="secret123", integrations=None):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        user = register(name, email, password)
        values = {"plan": plan}
        if integrations is not None:
            values["integrations"] = integrations
        with get_db_session() as session:
            session.execute(update(users).where(users.c.id == user.id).values(**values))
        return get_user(user.id)

    return _make


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from keyforge.main import app

    return TestClient(app)


@pytest.fixture
def login(client):
    """Put a valid session cookie for `user` on the shared TestClient."""

    def _login(user):
        client.cookies.set(settings.AUTH_COOKIE_NAME, issue_token(user.id, user.email))
        return client

    return _login
