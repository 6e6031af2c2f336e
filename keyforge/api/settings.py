"""
Account settings API routes: integrations, profile, password, sessions.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from keyforge.core.auth import get_current_user
from keyforge.core.config import settings as app_settings
from keyforge.features.users import service as users
from keyforge.models.user import (
    ChangePasswordRequest,
    ConnectIntegrationRequest,
    DisconnectIntegrationRequest,
    ProfileUpdateRequest,
    User,
)

router = APIRouter(prefix="/settings", tags=["settings"])


class RevokeSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")


def _dump(integrations) -> list[dict]:
    return [i.model_dump() for i in integrations]


@router.get("/integrations")
def list_integrations(user: User = Depends(get_current_user)):
    return {"integrations": _dump(users.list_integrations(user))}


@router.post("/integrations/connect")
def connect_integration(body: ConnectIntegrationRequest, user: User = Depends(get_current_user)):
    integrations = users.connect_integration(user, body.id, body.uri)
    return {"message": "Integração conectada com sucesso.", "integrations": _dump(integrations)}


@router.post("/integrations/disconnect")
def disconnect_integration(body: DisconnectIntegrationRequest, user: User = Depends(get_current_user)):
    integrations = users.disconnect_integration(user, body.id)
    return {"message": "Integração desconectada com sucesso.", "integrations": _dump(integrations)}


@router.patch("/profile")
def update_profile(body: ProfileUpdateRequest, user: User = Depends(get_current_user)):
    updated = users.update_profile(user, name=body.name, email=body.email, image=body.image)
    return {"message": "Perfil atualizado com sucesso.", "user": updated.public_summary()}


@router.post("/change-password")
def change_password(body: ChangePasswordRequest, user: User = Depends(get_current_user)):
    users.change_password(user, body.current_password, body.new_password)
    return {"message": "Senha alterada com sucesso."}


@router.get("/sessions")
def list_sessions(request: Request, user: User = Depends(get_current_user)):
    token = request.cookies.get(app_settings.AUTH_COOKIE_NAME)
    sessions = users.list_sessions(user, current_token=token)
    return {"sessions": [s.model_dump(by_alias=True) for s in sessions]}


@router.delete("/sessions")
def revoke_session(body: RevokeSessionRequest, user: User = Depends(get_current_user)):
    users.revoke_session(user, body.session_id)
    return {"message": "Sessão revogada com sucesso."}
