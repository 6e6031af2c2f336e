"""
Dashboard overview.

Counts are live: key totals come straight from the owners' external
collections, so the overview is only as available as those deployments.
Unreachable collections count as zero.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, func

from keyforge.core.config import settings
from keyforge.core.database import get_db_session, hwid_resets
from keyforge.features.collections.service import count_links_for_projects
from keyforge.features.plans.policy import ROLE_EMPRESARIAL, role_for_plan
from keyforge.features.projects.service import (
    count_projects_created_before,
    live_key_total,
    project_collection_ids,
    projects_linking_client,
    projects_owned_by,
)
from keyforge.models.project import Project
from keyforge.models.user import User

ANNOUNCEMENTS = [
    {
        "id": "n1",
        "title": "Update: sistema de geração de keys adicionado",
        "subtitle": (
            "Novo sistema de geração de keys disponível. Agora é possível criar e "
            "gerenciar keys com mais agilidade e controle no painel."
        ),
        "when": "Hoje",
        "authorName": "Equipe",
        "authorAvatar": "/avatar.jpg",
        "ctaLabel": "Abrir keys",
        "ctaHref": "/keys",
    },
]


def fmt_delta_pct(current: int, previous: int) -> str:
    """
    >>> fmt_delta_pct(3, 0)
    '+100%'
    >>> fmt_delta_pct(2, 4)
    '-50%'
    """
    if previous <= 0:
        return "+100%" if current > 0 else ""
    rounded = round((current - previous) / previous * 100)
    if rounded == 0:
        return ""
    return f"{'+' if rounded > 0 else ''}{rounded}%"


def local_day_range(now: datetime) -> tuple[datetime, datetime]:
    """[start, end] of the dashboard's local calendar day containing `now`, in UTC."""
    offset = timedelta(hours=settings.DASHBOARD_UTC_OFFSET_HOURS)
    local = now.astimezone(timezone.utc) + offset
    start_local = local.replace(hour=0, minute=0, second=0, microsecond=0)
    start = start_local - offset
    end = start + timedelta(days=1) - timedelta(microseconds=1)
    return start, end


def visible_projects(user: User) -> list[Project]:
    """Owned or linked projects, regardless of role."""
    seen: dict[str, Project] = {}
    for project in projects_owned_by(user.id) + projects_linking_client(user.email):
        seen.setdefault(project.id, project)
    return list(seen.values())


def _resets_between(project_ids: list[str], start: datetime, end: datetime) -> int:
    if not project_ids:
        return 0
    with get_db_session() as session:
        return session.execute(
            select(func.count()).select_from(hwid_resets).where(
                hwid_resets.c.project_id.in_(project_ids),
                hwid_resets.c.created_at >= start,
                hwid_resets.c.created_at <= end,
            )
        ).scalar_one()


def overview(user: User, now: Optional[datetime] = None) -> dict:
    from keyforge.features.users.service import get_user

    now = now or datetime.now(timezone.utc)
    role = role_for_plan(user.plan)
    projects = visible_projects(user)
    project_ids = [p.id for p in projects]

    owners: dict[str, Optional[User]] = {user.id: user}
    keys_total = 0
    for project in projects:
        if project.owner_id not in owners:
            owners[project.owner_id] = get_user(project.owner_id)
        keys_total += live_key_total(owners[project.owner_id], project_collection_ids(project.owner_id, project.id))

    linked_clients_total = 0
    if role == ROLE_EMPRESARIAL:
        linked_clients_total = sum(len(p.linked_clients) for p in projects if p.owner_id == user.id)

    collections_total = count_links_for_projects(project_ids)
    today_start, today_end = local_day_range(now)
    _, yesterday_end = local_day_range(now - timedelta(days=1))

    projects_yesterday = count_projects_created_before(project_ids, yesterday_end)
    collections_yesterday = count_links_for_projects(project_ids, created_before=yesterday_end)

    return {
        "role": role,
        "projectsTotal": len(projects),
        "collectionsTotal": collections_total,
        "keysActiveTotal": keys_total,
        "resetsToday": _resets_between(project_ids, today_start, today_end),
        "linkedClientsTotal": linked_clients_total,
        # keys, resets and clients have no history to compare against
        "deltas": {
            "projects": fmt_delta_pct(len(projects), projects_yesterday),
            "collections": fmt_delta_pct(collections_total, collections_yesterday),
            "keys": "",
            "resets": "",
            "linkedClients": "",
        },
        "announcements": ANNOUNCEMENTS,
        "giveaways": [],
    }
