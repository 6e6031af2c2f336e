"""
Push notification API routes.

- GET  /api/notifications/subscribe: current preferences
- POST /api/notifications/subscribe: subscribe / update statuses / disable
- GET  /api/notifications/test: VAPID configuration status
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from keyforge.core.auth import get_current_user
from keyforge.features.notifications import service as notifications
from keyforge.models.notification import SubscribeRequest
from keyforge.models.user import User

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/subscribe")
def get_preferences(user: User = Depends(get_current_user)):
    return notifications.get_preferences(user).model_dump()


@router.post("/subscribe")
def subscribe(body: SubscribeRequest, user: User = Depends(get_current_user)):
    return notifications.subscribe(user, body)


@router.get("/test")
def vapid_test():
    status = notifications.vapid_status()
    return JSONResponse(status_code=200 if status["ok"] else 500, content=status)
