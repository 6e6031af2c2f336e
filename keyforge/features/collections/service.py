"""
Collection discovery and CollectionLink store.

Visibility is derived per request:
- empresarial users see every license collection on their own connected
  integrations (full scan of databases x collections);
- client users see only collections their projects' owners linked to those
  projects, reached through the owner's integrations, never their own.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, Optional

from pymongo.errors import PyMongoError
from sqlalchemy import select, insert, update, delete, func

from keyforge.core.database import get_db_session, collection_links
from keyforge.core.errors import NotFoundError, ValidationError
from keyforge.features.collections.external import (
    iter_license_collections,
    log_external_failure,
    open_external_client,
    probe_collection,
)
from keyforge.features.plans.policy import Permission, ROLE_EMPRESARIAL, require, role_for_plan
from keyforge.models.collection import CollectionRef
from keyforge.models.project import Project
from keyforge.models.user import User

logger = logging.getLogger("keyforge")


@dataclass(frozen=True)
class ClientCollection:
    """A collection a client reaches through one of its linked projects."""
    project: Project
    ref: CollectionRef
    uri: str


def connected_integrations(user: User) -> Iterator[tuple[str, str]]:
    """(integration_id, uri) for each connected integration with a URI."""
    for integration in user.integrations:
        if integration.usable_uri:
            yield integration.id, integration.usable_uri


def iter_client_collections(user: User) -> Iterator[ClientCollection]:
    from keyforge.features.projects.service import projects_linking_client, project_collection_ids
    from keyforge.features.users.service import get_user

    for project in projects_linking_client(user.email):
        owner = get_user(project.owner_id)
        if not owner:
            continue
        for collection_id in project_collection_ids(owner.id, project.id):
            try:
                ref = CollectionRef.parse(collection_id)
            except ValidationError:
                continue
            uri = owner.integration_uri(ref.integration_id)
            if not uri:
                continue
            yield ClientCollection(project=project, ref=ref, uri=uri)


def get_link(user_id: str, collection_id: str) -> Optional[str]:
    """Project id the user's collection is linked to, if any."""
    with get_db_session() as session:
        row = session.execute(
            select(collection_links.c.project_id).where(
                collection_links.c.user_id == user_id,
                collection_links.c.collection_id == collection_id,
            )
        ).first()
    return row.project_id if row else None


def link_exists(owner_id: str, project_id: str, collection_id: str) -> bool:
    return get_link(owner_id, collection_id) == project_id


def link_collection(user: User, collection_id: Optional[str], project_id: Optional[str]) -> None:
    require(user, Permission.LINK_COLLECTION)
    if not collection_id or not project_id:
        raise ValidationError("collectionId e projectId são obrigatórios.")
    CollectionRef.parse(collection_id)

    from keyforge.features.projects.service import get_project

    project = get_project(project_id)
    if not project or project.owner_id != user.id:
        raise NotFoundError("Projeto não encontrado.")

    now = datetime.now(timezone.utc)
    with get_db_session() as session:
        result = session.execute(
            update(collection_links)
            .where(
                collection_links.c.user_id == user.id,
                collection_links.c.collection_id == collection_id,
            )
            .values(project_id=project_id, updated_at=now)
        )
        if result.rowcount == 0:
            session.execute(
                insert(collection_links).values(
                    user_id=user.id,
                    collection_id=collection_id,
                    project_id=project_id,
                    created_at=now,
                    updated_at=now,
                )
            )

    logger.info("collection.linked", extra={"user_id": user.id, "collection_id": collection_id, "project_id": project_id})


def unlink_collection(user: User, collection_id: Optional[str]) -> None:
    require(user, Permission.LINK_COLLECTION)
    if not collection_id:
        raise ValidationError("collectionId é obrigatório.")

    with get_db_session() as session:
        session.execute(
            delete(collection_links).where(
                collection_links.c.user_id == user.id,
                collection_links.c.collection_id == collection_id,
            )
        )

    logger.info("collection.unlinked", extra={"user_id": user.id, "collection_id": collection_id})


def _collection_row(ref: CollectionRef, keys_total: int, project: Optional[Project] = None) -> dict:
    return {
        "id": str(ref),
        "name": ref.collection_name,
        "status": "active",
        "projectId": project.id if project else "",
        "projectName": project.name if project else "",
        "keysTotal": keys_total,
        "updatedAt": datetime.now(timezone.utc),
        "database": ref.db_name,
    }


def _list_owned(user: User) -> list[dict]:
    from keyforge.features.projects.service import get_project

    rows = []
    for integration_id, uri in connected_integrations(user):
        try:
            with open_external_client(uri) as client:
                for db_name, coll in iter_license_collections(client):
                    ref = CollectionRef(integration_id, db_name, coll.name)
                    rows.append(_collection_row(ref, coll.count_documents({})))
        except PyMongoError as e:
            log_external_failure(e, integration_id=integration_id, user_id=user.id)

    projects_by_id: dict[str, Optional[Project]] = {}
    for row in rows:
        project_id = get_link(user.id, row["id"])
        if not project_id:
            continue
        if project_id not in projects_by_id:
            projects_by_id[project_id] = get_project(project_id)
        project = projects_by_id[project_id]
        row["projectId"] = project_id
        row["projectName"] = project.name if project else ""
    return rows


def _list_for_client(user: User) -> list[dict]:
    rows = []
    for scoped in iter_client_collections(user):
        try:
            with open_external_client(scoped.uri) as client:
                coll = client[scoped.ref.db_name][scoped.ref.collection_name]
                if probe_collection(coll):
                    rows.append(_collection_row(scoped.ref, coll.count_documents({}), scoped.project))
        except PyMongoError as e:
            log_external_failure(
                e,
                integration_id=scoped.ref.integration_id,
                collection_id=str(scoped.ref),
                user_id=user.id,
            )
    return rows


def list_collections(user: User) -> list[dict]:
    if role_for_plan(user.plan) == ROLE_EMPRESARIAL:
        return _list_owned(user)
    return _list_for_client(user)


def count_links_for_projects(project_ids: list[str], created_before: Optional[datetime] = None) -> int:
    if not project_ids:
        return 0
    query = select(func.count()).select_from(collection_links).where(collection_links.c.project_id.in_(project_ids))
    if created_before is not None:
        query = query.where(collection_links.c.created_at <= created_before)
    with get_db_session() as session:
        return session.execute(query).scalar_one()
