"""
Key API routes.

- GET  /api/keys
- POST /api/keys/generate
- POST /api/keys/reset-hwid
- POST /api/keys/remove
"""
from fastapi import APIRouter, Depends

from keyforge.core.auth import get_current_user
from keyforge.features.keys import service as keys
from keyforge.features.plans.policy import role_for_plan
from keyforge.models.key import GenerateKeysRequest, KeyActionRequest
from keyforge.models.user import User

router = APIRouter(prefix="/keys", tags=["keys"])


@router.get("")
def list_keys(user: User = Depends(get_current_user)):
    return {"role": role_for_plan(user.plan), "keys": keys.list_keys(user)}


@router.post("/generate")
def generate_keys(body: GenerateKeysRequest, user: User = Depends(get_current_user)):
    return keys.generate_keys(user, body)


@router.post("/reset-hwid")
def reset_hwid(body: KeyActionRequest, user: User = Depends(get_current_user)):
    keys.reset_hwid(user, body.key_id)
    return {"success": True, "message": "HWID resetado com sucesso."}


@router.post("/remove")
def remove_key(body: KeyActionRequest, user: User = Depends(get_current_user)):
    keys.remove_key(user, body.key_id)
    return {"success": True, "message": "Key removida com sucesso."}
