"""
Project and linked-client store.

Handles:
- Slug derivation (deterministic, idempotent)
- Role-scoped project listing with live collection/key counts
- Project creation (empresarial only)
- Linking / unlinking client emails
"""

import re
import uuid
import logging
import unicodedata
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, insert, delete, func
from sqlalchemy.exc import IntegrityError

from keyforge.core.database import (
    get_db_session,
    projects,
    project_clients,
    collection_links,
    as_utc,
)
from keyforge.core.errors import (
    AccessDenied,
    AlreadyLinked,
    DuplicateSlug,
    InvalidEmail,
    NotFoundError,
    NotLinked,
    ValidationError,
)
from keyforge.features.collections.external import count_license_keys
from keyforge.features.plans.policy import Permission, ROLE_EMPRESARIAL, require, role_for_plan
from keyforge.models.collection import CollectionRef
from keyforge.models.project import Project, LinkedClient, PROJECT_STATUSES
from keyforge.models.user import User

logger = logging.getLogger("keyforge")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """
    >>> slugify("Café Projeto!")
    'cafe-projeto'
    """
    decomposed = unicodedata.normalize("NFD", name.strip().lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM_RE.sub("-", stripped).strip("-")


def normalize_client_email(email: Optional[str]) -> str:
    """Lower-case and validate; raises ValidationError / InvalidEmail."""
    if not email or not email.strip():
        raise ValidationError("Email é obrigatório.")
    email = email.strip().lower()
    if not EMAIL_RE.match(email):
        raise InvalidEmail("Email inválido.")
    return email


def _load_clients(session, project_ids: list[str]) -> dict[str, list[LinkedClient]]:
    clients: dict[str, list[LinkedClient]] = {pid: [] for pid in project_ids}
    if not project_ids:
        return clients
    rows = session.execute(
        select(project_clients)
        .where(project_clients.c.project_id.in_(project_ids))
        .order_by(project_clients.c.id)
    ).fetchall()
    for row in rows:
        clients[row.project_id].append(LinkedClient(email=row.email, name=row.name, user_id=row.user_id))
    return clients


def _rows_to_projects(session, rows) -> list[Project]:
    clients = _load_clients(session, [r.id for r in rows])
    return [
        Project(
            id=r.id,
            name=r.name,
            slug=r.slug,
            status=r.status,
            owner_id=r.owner_id,
            created_at=as_utc(r.created_at),
            updated_at=as_utc(r.updated_at),
            linked_clients=clients[r.id],
        )
        for r in rows
    ]


def get_project(project_id: str) -> Optional[Project]:
    with get_db_session() as session:
        rows = session.execute(select(projects).where(projects.c.id == project_id)).fetchall()
        found = _rows_to_projects(session, rows)
    return found[0] if found else None


def projects_owned_by(user_id: str) -> list[Project]:
    with get_db_session() as session:
        rows = session.execute(
            select(projects).where(projects.c.owner_id == user_id).order_by(projects.c.created_at)
        ).fetchall()
        return _rows_to_projects(session, rows)


def projects_linking_client(email: str) -> list[Project]:
    email = email.strip().lower()
    with get_db_session() as session:
        linked_ids = select(project_clients.c.project_id).where(project_clients.c.email == email)
        rows = session.execute(
            select(projects).where(projects.c.id.in_(linked_ids)).order_by(projects.c.created_at)
        ).fetchall()
        return _rows_to_projects(session, rows)


def visible_projects(user: User) -> list[Project]:
    """Projects a user may list: owned for empresarial, linked for client."""
    if role_for_plan(user.plan) == ROLE_EMPRESARIAL:
        return projects_owned_by(user.id)
    return projects_linking_client(user.email)


def project_collection_ids(owner_id: str, project_id: str) -> list[str]:
    with get_db_session() as session:
        rows = session.execute(
            select(collection_links.c.collection_id).where(
                collection_links.c.user_id == owner_id,
                collection_links.c.project_id == project_id,
            )
        ).fetchall()
    return [r.collection_id for r in rows]


def live_key_total(owner: Optional[User], collection_ids: list[str]) -> int:
    """Sum of live key counts over `collection_ids`, read through the owner's integrations."""
    if owner is None:
        return 0
    total = 0
    for collection_id in collection_ids:
        try:
            ref = CollectionRef.parse(collection_id)
        except ValidationError:
            continue
        total += count_license_keys(owner.integration_uri(ref.integration_id), ref)
    return total


def project_row(project: Project, owner: Optional[User]) -> dict:
    collection_ids = project_collection_ids(project.owner_id, project.id)
    return {
        "id": project.id,
        "name": project.name,
        "status": project.status,
        "clientsCount": len(project.linked_clients),
        "collectionsCount": len(collection_ids),
        "keysTotal": live_key_total(owner, collection_ids),
        "updatedAt": project.updated_at,
        "linkedClients": [{"email": c.email, "name": c.name} for c in project.linked_clients],
    }


def list_projects(user: User) -> list[dict]:
    from keyforge.features.users.service import get_user

    owners: dict[str, Optional[User]] = {user.id: user}
    rows = []
    for project in visible_projects(user):
        if project.owner_id not in owners:
            owners[project.owner_id] = get_user(project.owner_id)
        rows.append(project_row(project, owners[project.owner_id]))
    return rows


def create_project(
    user: User,
    name: Optional[str],
    status: Optional[str] = None,
    client_email: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    from keyforge.features.users.service import get_user_by_email

    require(user, Permission.CREATE_PROJECT)
    if not name or not name.strip():
        raise ValidationError("Nome do projeto é obrigatório.")
    status = status or "active"
    if status not in PROJECT_STATUSES:
        raise ValidationError("Status inválido.")

    slug = slugify(name)
    if not slug:
        raise ValidationError("Nome do projeto é obrigatório.")

    seed: Optional[LinkedClient] = None
    if client_email and client_email.strip():
        email = normalize_client_email(client_email)
        existing = get_user_by_email(email)
        seed = LinkedClient(
            email=email,
            name=existing.name if existing else None,
            user_id=existing.id if existing else None,
        )

    now = now or datetime.now(timezone.utc)
    project_id = str(uuid.uuid4())
    try:
        with get_db_session() as session:
            taken = session.execute(select(projects.c.id).where(projects.c.slug == slug)).first()
            if taken:
                raise DuplicateSlug("Slug já existe. Escolha outro nome.")
            session.execute(
                insert(projects).values(
                    id=project_id,
                    name=name.strip(),
                    slug=slug,
                    status=status,
                    owner_id=user.id,
                    created_at=now,
                    updated_at=now,
                )
            )
            if seed:
                session.execute(
                    insert(project_clients).values(
                        project_id=project_id,
                        email=seed.email,
                        name=seed.name,
                        user_id=seed.user_id,
                        created_at=now,
                    )
                )
    except IntegrityError:
        raise DuplicateSlug("Slug já existe. Escolha outro nome.")

    logger.info("project.created", extra={"user_id": user.id, "project_id": project_id})
    return {
        "id": project_id,
        "name": name.strip(),
        "status": status,
        "clientsCount": 1 if seed else 0,
        "collectionsCount": 0,
        "keysTotal": 0,
        "updatedAt": now,
        "linkedClients": [{"email": seed.email, "name": seed.name}] if seed else [],
    }


def _load_for_client_change(user: User, project_id: str) -> Project:
    project = get_project(project_id)
    if not project:
        raise NotFoundError("Projeto não encontrado.")
    # Any empresarial account may manage clients, not only the owner.
    if project.owner_id != user.id and role_for_plan(user.plan) != ROLE_EMPRESARIAL:
        raise AccessDenied("Permissão negada.")
    return project


def link_client(user: User, project_id: str, email: Optional[str]) -> None:
    from keyforge.features.users.service import get_user_by_email

    project = _load_for_client_change(user, project_id)
    email = normalize_client_email(email)
    if project.has_client(email):
        raise AlreadyLinked("Cliente já vinculado.")

    existing = get_user_by_email(email)
    now = datetime.now(timezone.utc)
    try:
        with get_db_session() as session:
            session.execute(
                insert(project_clients).values(
                    project_id=project.id,
                    email=email,
                    name=existing.name if existing else None,
                    user_id=existing.id if existing else None,
                    created_at=now,
                )
            )
            session.execute(projects.update().where(projects.c.id == project.id).values(updated_at=now))
    except IntegrityError:
        raise AlreadyLinked("Cliente já vinculado.")

    logger.info("project.client_linked", extra={"user_id": user.id, "project_id": project.id})


def unlink_client(user: User, project_id: str, email: Optional[str]) -> None:
    project = _load_for_client_change(user, project_id)
    if not email or not email.strip():
        raise ValidationError("Email é obrigatório.")
    email = email.strip().lower()

    now = datetime.now(timezone.utc)
    with get_db_session() as session:
        result = session.execute(
            delete(project_clients).where(
                project_clients.c.project_id == project.id,
                project_clients.c.email == email,
            )
        )
        if result.rowcount == 0:
            raise NotLinked("Cliente não está vinculado.")
        session.execute(projects.update().where(projects.c.id == project.id).values(updated_at=now))

    logger.info("project.client_unlinked", extra={"user_id": user.id, "project_id": project.id})


def count_projects_created_before(project_ids: list[str], cutoff: datetime) -> int:
    if not project_ids:
        return 0
    with get_db_session() as session:
        return session.execute(
            select(func.count()).select_from(projects).where(
                projects.c.id.in_(project_ids),
                projects.c.created_at <= cutoff,
            )
        ).scalar_one()
