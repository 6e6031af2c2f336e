from fastapi import APIRouter, Depends

from keyforge.core.auth import get_current_user
from keyforge.features.dashboard.service import overview
from keyforge.models.user import User

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/overview")
def dashboard_overview(user: User = Depends(get_current_user)):
    """Headline counters for the dashboard home."""
    return overview(user)
