from datetime import datetime
from typing import Optional, Literal
from pydantic import BaseModel, ConfigDict, Field

Plan = Literal["none", "client", "empresarial"]


class IntegrationConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    uri: Optional[str] = None


class Integration(BaseModel):
    """A MongoDB deployment the user connected from settings."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = "MongoDB"
    connected: bool = False
    config: IntegrationConfig = Field(default_factory=IntegrationConfig)

    @property
    def usable_uri(self) -> Optional[str]:
        if self.connected and self.config.uri:
            return self.config.uri
        return None


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    created_at: datetime
    image: Optional[str] = None
    plan: Plan = "none"
    plan_paid_at: Optional[datetime] = None
    plan_expires_at: Optional[datetime] = None
    plan_last_transaction_hash: Optional[str] = None
    plan_external_id: Optional[str] = None
    integrations: list[Integration] = Field(default_factory=list)

    def integration_uri(self, integration_id: str) -> Optional[str]:
        """URI of a connected integration, None when missing/disconnected."""
        for integration in self.integrations:
            if integration.id == integration_id:
                return integration.usable_uri
        return None

    def public_summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "image": self.image,
            "plan": self.plan,
            "planPaidAt": self.plan_paid_at,
            "planExpiresAt": self.plan_expires_at,
        }


class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    device: Optional[str] = None
    location: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    image: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: Optional[str] = Field(default=None, alias="currentPassword")
    new_password: Optional[str] = Field(default=None, alias="newPassword")


class ConnectIntegrationRequest(BaseModel):
    id: Optional[str] = None
    uri: Optional[str] = None


class DisconnectIntegrationRequest(BaseModel):
    id: Optional[str] = None


class SessionInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    device: str
    location: str
    ip: Optional[str] = None
    last_active: datetime
    current: bool = False
