"""
Web push subscriptions and delivery.

One subscription per user with a list of payment statuses the user wants
to hear about. Delivery uses VAPID through pywebpush; endpoints the push
service reports as gone (404/410) are deleted.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pywebpush import webpush, WebPushException
from sqlalchemy import select, insert, update, delete

from keyforge.core.config import settings
from keyforge.core.database import get_db_session, notification_subscriptions
from keyforge.core.errors import NoExistingSubscription
from keyforge.models.notification import DEFAULT_STATUSES, NotificationPreferences, SubscribeRequest
from keyforge.models.user import User

logger = logging.getLogger("keyforge")

GONE_STATUSES = (404, 410)


def vapid_configured() -> bool:
    return bool(settings.VAPID_PUBLIC_KEY and settings.VAPID_PRIVATE_KEY)


def vapid_status() -> dict:
    if not vapid_configured():
        return {
            "ok": False,
            "configured": False,
            "message": "VAPID não configurado. Defina VAPID_PUBLIC_KEY e VAPID_PRIVATE_KEY.",
        }
    return {
        "ok": True,
        "configured": True,
        "publicKey": settings.VAPID_PUBLIC_KEY,
        "message": "Push notifications configuradas corretamente.",
    }


def _clean_statuses(statuses: Optional[list[str]]) -> list[str]:
    cleaned = [s for s in (statuses or []) if isinstance(s, str) and s.strip()]
    return cleaned or list(DEFAULT_STATUSES)


def get_preferences(user: User) -> NotificationPreferences:
    with get_db_session() as session:
        row = session.execute(
            select(notification_subscriptions.c.statuses).where(notification_subscriptions.c.user_id == user.id)
        ).first()
    if not row:
        return NotificationPreferences(enabled=False, statuses=list(DEFAULT_STATUSES), hasSubscription=False)
    return NotificationPreferences(enabled=True, statuses=_clean_statuses(row.statuses), hasSubscription=True)


def subscribe(user: User, request: SubscribeRequest) -> dict:
    """
    Create, update or remove the user's subscription.

    - enabled=False deletes the subscription
    - no (complete) subscription: only the statuses of an existing one change
    - otherwise upsert endpoint, keys and statuses
    """
    if request.enabled is False:
        with get_db_session() as session:
            session.execute(delete(notification_subscriptions).where(notification_subscriptions.c.user_id == user.id))
        logger.info("push.unsubscribed", extra={"user_id": user.id})
        return {"ok": True, "enabled": False}

    statuses = _clean_statuses(request.statuses)
    now = datetime.now(timezone.utc)

    if not request.subscription or not request.subscription.is_complete:
        with get_db_session() as session:
            result = session.execute(
                update(notification_subscriptions)
                .where(notification_subscriptions.c.user_id == user.id)
                .values(statuses=statuses, updated_at=now)
            )
            if result.rowcount == 0:
                raise NoExistingSubscription(
                    "Nenhuma subscription encontrada para este usuário. Ative as notificações primeiro."
                )
        return {"ok": True, "enabled": True, "statuses": statuses}

    sub = request.subscription
    values = {
        "endpoint": sub.endpoint,
        "p256dh": sub.keys.p256dh,
        "auth": sub.keys.auth,
        "statuses": statuses,
        "updated_at": now,
    }
    with get_db_session() as session:
        result = session.execute(
            update(notification_subscriptions)
            .where(notification_subscriptions.c.user_id == user.id)
            .values(**values)
        )
        if result.rowcount == 0:
            session.execute(insert(notification_subscriptions).values(user_id=user.id, created_at=now, **values))

    logger.info("push.subscribed", extra={"user_id": user.id, "statuses": ",".join(statuses)})
    return {"ok": True, "enabled": True, "statuses": statuses}


def _send(row, payload: Dict[str, Any]) -> bool:
    """Deliver to one subscription row; prune it when the push service says it is gone."""
    try:
        webpush(
            subscription_info={"endpoint": row.endpoint, "keys": {"p256dh": row.p256dh, "auth": row.auth}},
            data=json.dumps(payload),
            vapid_private_key=settings.VAPID_PRIVATE_KEY,
            vapid_claims={"sub": settings.VAPID_SUBJECT},
        )
        return True
    except WebPushException as e:
        status = getattr(e.response, "status_code", None)
        if status in GONE_STATUSES:
            with get_db_session() as session:
                session.execute(delete(notification_subscriptions).where(notification_subscriptions.c.id == row.id))
            logger.info("push.subscription_pruned", extra={"user_id": row.user_id, "status": status})
        else:
            logger.warning("push.send_failed", extra={"user_id": row.user_id, "status": status})
        return False


def dispatch(status_key: str, payload: Dict[str, Any]) -> int:
    """Push `payload` to every subscriber of `status_key`. Returns deliveries."""
    if not vapid_configured():
        logger.warning("push.vapid_missing", extra={"status_key": status_key})
        return 0

    with get_db_session() as session:
        rows = session.execute(select(notification_subscriptions)).fetchall()

    # statuses is a JSON column; filter in Python to stay portable across backends
    targets = [r for r in rows if status_key in (r.statuses or [])]
    delivered = sum(1 for row in targets if _send(row, payload))
    logger.info("push.dispatched", extra={"status_key": status_key, "targets": len(targets), "delivered": delivered})
    return delivered


def send_to_user(user_id: str, payload: Dict[str, Any]) -> bool:
    if not vapid_configured():
        return False
    with get_db_session() as session:
        row = session.execute(
            select(notification_subscriptions).where(notification_subscriptions.c.user_id == user_id)
        ).first()
    if not row:
        logger.info("push.no_subscription", extra={"user_id": user_id})
        return False
    return _send(row, payload)
