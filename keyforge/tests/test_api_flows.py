"""End-to-end route tests: projects, collections, keys, billing, notifications."""
from unittest.mock import patch

import pytest

from keyforge.core.config import settings
from keyforge.tests.mocks import mongo_integration

URI = "mongodb://owner-host/"


@pytest.fixture
def owner(make_user, mongo):
    mongo.deployment(URI).seed("shop", "licenses", [{"key": "SEED-0001", "hwid": "pc-1"}])
    return make_user(plan="empresarial", integrations=[mongo_integration("main", URI)])


def test_project_collection_key_flow(login, owner, make_user, mongo):
    client = login(owner)

    created = client.post("/api/projects", json={"name": "Loja", "clientEmail": "buyer@example.com"})
    assert created.status_code == 201
    project_id = created.json()["project"]["id"]

    dup = client.post("/api/projects", json={"name": "loja"})
    assert dup.status_code == 400
    assert dup.json()["error"]["code"] == "duplicate_slug"

    collections = client.get("/api/collections").json()
    assert collections["role"] == "empresarial"
    assert [c["id"] for c in collections["collections"]] == ["main-shop-licenses"]

    not_linked = client.post("/api/keys/generate", json={"projectId": project_id, "collectionId": "main-shop-licenses"})
    assert not_linked.status_code == 404
    assert not_linked.json()["error"]["code"] == "collection_not_linked"

    assert client.post("/api/collections/link", json={"collectionId": "main-shop-licenses", "projectId": project_id}).json() == {"success": True}

    generated = client.post(
        "/api/keys/generate",
        json={"projectId": project_id, "collectionId": "main-shop-licenses", "quantity": 3, "expirationDays": 0},
    )
    assert generated.status_code == 200
    assert generated.json()["inserted"] == 3
    assert generated.json()["expireAt"] is None

    keys = client.get("/api/keys").json()["keys"]
    assert len(keys) == 4

    reset = client.post("/api/keys/reset-hwid", json={"keyId": keys[0]["id"]})
    assert reset.json()["success"] is True
    removed = client.post("/api/keys/remove", json={"keyId": keys[0]["id"]})
    assert removed.status_code == 200
    assert len(client.get("/api/keys").json()["keys"]) == 3

    projects = client.get("/api/projects").json()
    assert projects["projects"][0]["keysTotal"] == 3
    assert projects["projects"][0]["collectionsCount"] == 1

    overview = client.get("/api/dashboard/overview").json()
    assert overview["resetsToday"] == 1
    assert mongo.all_closed


def test_client_routes_are_scoped(login, owner, make_user):
    buyer = make_user(plan="client", email="buyer@example.com")
    stranger = make_user(plan="client", email="stranger@example.com")

    owner_client = login(owner)
    project_id = owner_client.post("/api/projects", json={"name": "Loja", "clientEmail": "buyer@example.com"}).json()["project"]["id"]
    owner_client.post("/api/collections/link", json={"collectionId": "main-shop-licenses", "projectId": project_id})

    buyer_client = login(buyer)
    assert [p["id"] for p in buyer_client.get("/api/projects").json()["projects"]] == [project_id]
    assert len(buyer_client.get("/api/keys").json()["keys"]) == 1
    assert buyer_client.post("/api/collections/link", json={"collectionId": "main-shop-licenses", "projectId": project_id}).status_code == 403

    stranger_client = login(stranger)
    assert stranger_client.get("/api/projects").json()["projects"] == []
    assert stranger_client.get("/api/keys").json() == {"role": "client", "keys": []}
    denied = stranger_client.post("/api/keys/generate", json={"projectId": project_id, "collectionId": "main-shop-licenses"})
    assert denied.status_code == 403


def test_link_client_routes(login, owner):
    client = login(owner)
    project_id = client.post("/api/projects", json={"name": "Loja"}).json()["project"]["id"]

    assert client.post(f"/api/projects/{project_id}/link-client", json={"email": "x@example.com"}).status_code == 200
    again = client.post(f"/api/projects/{project_id}/link-client", json={"email": "X@example.com"})
    assert again.json()["error"]["code"] == "already_linked"
    assert client.post(f"/api/projects/{project_id}/link-client", json={"email": "bad"}).status_code == 400
    assert client.post(f"/api/projects/{project_id}/unlink-client", json={"email": "x@example.com"}).status_code == 200
    assert client.post("/api/projects/missing/link-client", json={"email": "x@example.com"}).status_code == 404


def test_billing_routes(login, make_user, payment_provider, monkeypatch):
    monkeypatch.setattr(settings, "TRIBOPAY_OFFER_HASH_CLIENT", "offer_123")
    user = make_user()
    client = login(user)

    created = client.post(
        "/api/create-payment",
        json={"name": "Ana", "email": "ana@example.com", "phone": "11999990000", "amount": 29.9, "items": [{"title": "Plano"}]},
    )
    assert created.status_code == 200
    tx_hash = created.json()["transaction_hash"]
    assert created.json()["pix"]["qrCodeText"]

    polled = client.get("/api/create-payment", params={"transaction_hash": tx_hash})
    assert polled.json()["status"] == "waiting_payment"
    assert client.get("/api/create-payment").status_code == 400

    pending = client.post("/api/billing/activate", json={"plan": "client", "transaction_hash": tx_hash})
    assert pending.status_code == 409

    payment_provider.add(tx_hash, "paid")
    activated = client.post("/api/billing/activate", json={"plan": "client", "transaction_hash": tx_hash})
    assert activated.status_code == 200
    assert activated.json()["plan"] == "client"

    me = client.get("/api/auth/me").json()["user"]
    assert me["plan"] == "client"
    assert me["planActive"] is True

    again = client.post("/api/billing/activate", json={"plan": "client", "transaction_hash": tx_hash})
    assert again.json()["alreadyApplied"] is True


def test_postback_route(client, payment_provider):
    payment_provider.add("tx_1", "paid")
    with patch("keyforge.features.billing.service.notifications.dispatch", return_value=0):
        resp = client.post("/api/billing/postback", json={"transaction_hash": "tx_1", "status": "paid"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "paid"


def test_notification_routes(login, make_user, vapid):
    client = login(make_user())
    assert client.get("/api/notifications/subscribe").json()["hasSubscription"] is False

    no_sub = client.post("/api/notifications/subscribe", json={"statuses": ["paid"]})
    assert no_sub.status_code == 400
    assert no_sub.json()["error"]["code"] == "no_existing_subscription"

    sub = {"endpoint": "https://push.example/1", "keys": {"p256dh": "p", "auth": "a"}}
    assert client.post("/api/notifications/subscribe", json={"subscription": sub, "statuses": ["paid", "pending"]}).status_code == 200
    prefs = client.get("/api/notifications/subscribe").json()
    assert prefs == {"enabled": True, "statuses": ["paid", "pending"], "hasSubscription": True}

    test = client.get("/api/notifications/test")
    assert test.status_code == 200
    assert test.json()["publicKey"] == "test-public-key"


def test_notification_test_route_without_vapid(client):
    resp = client.get("/api/notifications/test")
    assert resp.status_code == 500
    assert resp.json()["configured"] is False
