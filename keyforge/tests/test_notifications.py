"""Tests for push subscriptions and delivery (pywebpush mocked)."""
import json
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from pywebpush import WebPushException
from sqlalchemy import select

from keyforge.core.database import get_db_session, notification_subscriptions
from keyforge.core.errors import NoExistingSubscription
from keyforge.features.notifications.service import dispatch, get_preferences, send_to_user, subscribe, vapid_status
from keyforge.models.notification import SubscribeRequest

SUB = {"endpoint": "https://push.example/abc", "keys": {"p256dh": "p-key", "auth": "a-key"}}


def _rows():
    with get_db_session() as session:
        return session.execute(select(notification_subscriptions)).fetchall()


def test_preferences_default_when_unsubscribed(make_user):
    prefs = get_preferences(make_user())
    assert prefs.enabled is False
    assert prefs.statuses == ["paid"]
    assert prefs.hasSubscription is False


def test_subscribe_upserts_single_row(make_user):
    user = make_user()
    subscribe(user, SubscribeRequest.model_validate({"subscription": SUB, "statuses": ["paid", "pending"]}))
    subscribe(user, SubscribeRequest.model_validate({"subscription": {**SUB, "endpoint": "https://push.example/new"}}))

    rows = _rows()
    assert len(rows) == 1
    assert rows[0].endpoint == "https://push.example/new"
    assert rows[0].statuses == ["paid"]
    assert get_preferences(user).hasSubscription is True


def test_statuses_only_update_requires_subscription(make_user):
    user = make_user()
    with pytest.raises(NoExistingSubscription) as exc:
        subscribe(user, SubscribeRequest(statuses=["pending"]))
    assert exc.value.status_code == 400

    subscribe(user, SubscribeRequest.model_validate({"subscription": SUB}))
    result = subscribe(user, SubscribeRequest(statuses=["pending", " "]))
    assert result["statuses"] == ["pending"]
    assert get_preferences(user).statuses == ["pending"]


def test_disable_deletes_subscription(make_user):
    user = make_user()
    subscribe(user, SubscribeRequest.model_validate({"subscription": SUB}))
    subscribe(user, SubscribeRequest(enabled=False))
    assert _rows() == []


def test_vapid_status(monkeypatch, vapid):
    assert vapid_status()["configured"] is True
    from keyforge.core.config import settings

    monkeypatch.setattr(settings, "VAPID_PRIVATE_KEY", None)
    status = vapid_status()
    assert status["ok"] is False
    assert status["configured"] is False


def test_dispatch_filters_by_status(make_user, vapid):
    paid_user = make_user()
    pending_user = make_user()
    subscribe(paid_user, SubscribeRequest.model_validate({"subscription": SUB, "statuses": ["paid"]}))
    subscribe(pending_user, SubscribeRequest.model_validate({"subscription": SUB, "statuses": ["pending"]}))

    with patch("keyforge.features.notifications.service.webpush") as webpush:
        delivered = dispatch("paid", {"title": "Pagamento aprovado"})

    assert delivered == 1
    webpush.assert_called_once()
    kwargs = webpush.call_args.kwargs
    assert kwargs["subscription_info"]["keys"] == {"p256dh": "p-key", "auth": "a-key"}
    assert json.loads(kwargs["data"]) == {"title": "Pagamento aprovado"}
    assert kwargs["vapid_private_key"] == "test-private-key"


def test_gone_subscription_is_pruned(make_user, vapid):
    user = make_user()
    subscribe(user, SubscribeRequest.model_validate({"subscription": SUB}))
    gone = WebPushException("gone", response=SimpleNamespace(status_code=410))

    with patch("keyforge.features.notifications.service.webpush", side_effect=gone):
        assert send_to_user(user.id, {"title": "x"}) is False
    assert _rows() == []


def test_transient_failure_keeps_subscription(make_user, vapid):
    user = make_user()
    subscribe(user, SubscribeRequest.model_validate({"subscription": SUB}))
    boom = WebPushException("server error", response=SimpleNamespace(status_code=500))

    with patch("keyforge.features.notifications.service.webpush", side_effect=boom):
        assert dispatch("paid", {"title": "x"}) == 0
    assert len(_rows()) == 1


def test_no_vapid_no_delivery(make_user):
    user = make_user()
    subscribe(user, SubscribeRequest.model_validate({"subscription": SUB}))
    with patch("keyforge.features.notifications.service.webpush") as webpush:
        assert dispatch("paid", {}) == 0
        assert send_to_user(user.id, {}) is False
    webpush.assert_not_called()
