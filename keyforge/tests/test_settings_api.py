"""Tests for the settings surface: integrations, profile, password, sessions."""
import pytest

from keyforge.features.users.service import authenticate, connect_integration, get_user


@pytest.fixture
def user(make_user):
    return make_user(email="ana@example.com", password="secret123")


def test_connect_and_disconnect_integration(login, user):
    client = login(user)

    resp = client.post("/api/settings/integrations/connect", json={"id": "main", "uri": "  mongodb+srv://u:p@cluster/ "})
    assert resp.status_code == 200
    integrations = resp.json()["integrations"]
    assert integrations == [
        {"id": "main", "name": "MongoDB", "connected": True, "config": {"uri": "mongodb+srv://u:p@cluster/"}}
    ]

    # reconnecting the same id replaces the entry
    client.post("/api/settings/integrations/connect", json={"id": "main", "uri": "mongodb://other/"})
    assert len(client.get("/api/settings/integrations").json()["integrations"]) == 1

    resp = client.post("/api/settings/integrations/disconnect", json={"id": "main"})
    assert resp.json()["integrations"][0]["connected"] is False
    assert get_user(user.id).integration_uri("main") is None


@pytest.mark.parametrize(
    "body",
    [
        {"id": "main"},
        {"uri": "mongodb://x/"},
        {"id": "main", "uri": "postgres://x/"},
        {"id": "my-db", "uri": "mongodb://x/"},
    ],
)
def test_connect_integration_validation(login, user, body):
    resp = login(user).post("/api/settings/integrations/connect", json=body)
    assert resp.status_code == 400


def test_disconnect_unknown_integration_is_noop(user):
    connect_integration(user, "main", "mongodb://x/")
    fresh = get_user(user.id)
    from keyforge.features.users.service import disconnect_integration

    integrations = disconnect_integration(fresh, "other")
    assert [i.id for i in integrations] == ["main"]
    assert integrations[0].connected is True


def test_profile_update(login, user):
    client = login(user)
    resp = client.patch("/api/settings/profile", json={"name": "  Ana Maria ", "image": "data:image/png;base64,AAAA"})
    assert resp.status_code == 200
    assert resp.json()["user"]["name"] == "Ana Maria"

    assert client.patch("/api/settings/profile", json={"image": "http://x/y.png"}).status_code == 400
    big = "data:image/png;base64," + "A" * (600 * 1024)
    assert client.patch("/api/settings/profile", json={"image": big}).status_code == 400
    assert client.patch("/api/settings/profile", json={"name": "  "}).status_code == 400


def test_change_password(login, user):
    client = login(user)
    wrong = client.post("/api/settings/change-password", json={"currentPassword": "nope", "newPassword": "n3w"})
    assert wrong.status_code == 401

    ok = client.post("/api/settings/change-password", json={"currentPassword": "secret123", "newPassword": "n3w-pass"})
    assert ok.status_code == 200
    authenticate("ana@example.com", "n3w-pass")


def test_revoke_session(client, user):
    client.post("/api/auth/login", json={"email": "ana@example.com", "password": "secret123"})
    _, _ = authenticate("ana@example.com", "secret123", device="Phone")

    sessions = client.get("/api/settings/sessions").json()["sessions"]
    assert len(sessions) == 2
    other = next(s for s in sessions if not s["current"])

    resp = client.request("DELETE", "/api/settings/sessions", json={"sessionId": other["id"]})
    assert resp.status_code == 200
    assert len(client.get("/api/settings/sessions").json()["sessions"]) == 1

    again = client.request("DELETE", "/api/settings/sessions", json={"sessionId": other["id"]})
    assert again.status_code == 404
    missing = client.request("DELETE", "/api/settings/sessions", json={})
    assert missing.status_code == 400
