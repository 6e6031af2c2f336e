"""
Auth API routes.

- POST /api/auth/register
- POST /api/auth/login: issues the HTTP-only session cookie
- POST /api/auth/logout: clears it
- GET  /api/auth/me
"""
from fastapi import APIRouter, Depends, Request, Response

from keyforge.core.auth import clear_auth_cookie, get_current_user, set_auth_cookie
from keyforge.features.plans.policy import plan_is_active, role_for_plan
from keyforge.features.users import service as users
from keyforge.models.user import LoginRequest, RegisterRequest, User

router = APIRouter(prefix="/auth", tags=["auth"])


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


@router.post("/register", status_code=201)
def register(body: RegisterRequest):
    user = users.register(body.name, body.email, body.password)
    return {"message": "Usuário criado com sucesso.", "user": user.public_summary()}


@router.post("/login")
def login(body: LoginRequest, request: Request, response: Response):
    user, token = users.authenticate(
        body.email,
        body.password,
        device=body.device or request.headers.get("user-agent"),
        location=body.location,
        ip=_client_ip(request),
    )
    set_auth_cookie(response, token)
    return {"message": "Login realizado com sucesso.", "user": user.public_summary()}


@router.post("/logout")
def logout(response: Response):
    clear_auth_cookie(response)
    return {"message": "Logout realizado com sucesso."}


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return {
        "user": {
            **user.public_summary(),
            "role": role_for_plan(user.plan),
            "planPaidAt": user.plan_paid_at,
            "planExpiresAt": user.plan_expires_at,
            "planActive": plan_is_active(user.plan, user.plan_expires_at),
        }
    }
