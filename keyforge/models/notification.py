from typing import Optional
from pydantic import BaseModel, ConfigDict

DEFAULT_STATUSES = ["paid"]


class PushKeys(BaseModel):
    p256dh: Optional[str] = None
    auth: Optional[str] = None


class PushSubscriptionPayload(BaseModel):
    """Browser PushSubscription.toJSON() shape."""
    model_config = ConfigDict(extra="ignore")

    endpoint: Optional[str] = None
    keys: Optional[PushKeys] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.endpoint and self.keys and self.keys.p256dh and self.keys.auth)


class SubscribeRequest(BaseModel):
    subscription: Optional[PushSubscriptionPayload] = None
    statuses: Optional[list[str]] = None
    enabled: Optional[bool] = None


class NotificationPreferences(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enabled: bool
    statuses: list[str]
    hasSubscription: bool
