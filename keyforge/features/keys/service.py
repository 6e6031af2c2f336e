"""
Key issuance and lifecycle against external license collections.

- generate_keys: resolve owner + link, then insert a batch of new keys
- list_keys: role-scoped listing of key documents
- reset_hwid / remove_key: single-document mutations addressed by keyId

Authorization is re-derived on every call from the caller's plan, owned
integrations and linked projects; nothing is cached between requests.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import BulkWriteError, PyMongoError
from sqlalchemy import insert

from keyforge.core.database import get_db_session, hwid_resets
from keyforge.core.errors import (
    AccessDenied,
    CollectionNotLinked,
    DocumentNotFound,
    GenerationFailed,
    IntegrationUnavailable,
    KeyIdMalformed,
    NotFoundError,
    UpstreamUnavailable,
    ValidationError,
)
from keyforge.core.logging import log_event
from keyforge.features.collections.external import (
    LICENSE_PROBE,
    iter_license_collections,
    log_external_failure,
    open_external_client,
    probe_collection,
)
from keyforge.features.collections.service import (
    connected_integrations,
    get_link,
    iter_client_collections,
    link_exists,
)
from keyforge.features.keys.generator import KeyOptions, generate_batch, key_document, key_status
from keyforge.features.plans.policy import Permission, ROLE_EMPRESARIAL, require, role_for_plan
from keyforge.models.collection import CollectionRef, KeyRef
from keyforge.models.key import GenerateKeysRequest
from keyforge.models.project import Project
from keyforge.models.user import User

logger = logging.getLogger("keyforge")

SAMPLE_SIZE = 30


def _resolve_project_and_owner(user: User, project_id: str) -> tuple[Project, User]:
    from keyforge.features.projects.service import get_project
    from keyforge.features.users.service import get_user

    project = get_project(project_id)
    if role_for_plan(user.plan) == ROLE_EMPRESARIAL:
        if not project or project.owner_id != user.id:
            raise NotFoundError("Projeto não encontrado ou sem permissão.")
        return project, user

    if not project or not project.has_client(user.email):
        raise AccessDenied("Projeto não encontrado ou você não está vinculado.")
    owner = get_user(project.owner_id)
    if not owner:
        raise NotFoundError("Owner do projeto não encontrado.")
    return project, owner


def generate_keys(user: User, request: GenerateKeysRequest, now: Optional[datetime] = None) -> dict:
    require(user, Permission.GENERATE_KEYS)
    if not request.project_id or not request.collection_id:
        raise ValidationError("projectId e collectionId são obrigatórios.")

    project, owner = _resolve_project_and_owner(user, request.project_id)

    if not link_exists(owner.id, project.id, request.collection_id):
        raise CollectionNotLinked("Essa coleção não está vinculada a esse projeto.")

    ref = CollectionRef.parse(request.collection_id)
    uri = owner.integration_uri(ref.integration_id)
    if not uri:
        raise IntegrationUnavailable("Integração desconectada ou sem URI.", status_code=400)

    options = KeyOptions.from_raw(
        quantity=request.quantity,
        expiration_days=request.expiration_days,
        length=request.length,
        prefix=request.prefix,
        dashed=request.dashed,
    )
    keys = generate_batch(options)
    if not keys:
        raise GenerationFailed("Falha ao gerar keys (duplicadas).")

    now = now or datetime.now(timezone.utc)
    docs = [key_document(k, options, now) for k in keys]

    try:
        with open_external_client(uri) as client:
            coll = client[ref.db_name][ref.collection_name]
            try:
                inserted = len(coll.insert_many(docs, ordered=False).inserted_ids)
            except BulkWriteError as e:
                # ordered=False: the rest of the batch still went in
                inserted = e.details.get("nInserted", 0)
                logger.warning(
                    "keys.partial_insert",
                    extra={"collection_id": str(ref), "inserted": inserted, "requested": len(docs)},
                )
    except PyMongoError as e:
        log_external_failure(e, integration_id=ref.integration_id, collection_id=str(ref), user_id=user.id)
        raise UpstreamUnavailable("Não foi possível acessar o banco da integração.")

    log_event(
        "info",
        "keys.generated",
        user_id=user.id,
        project_id=project.id,
        collection_id=str(ref),
        extra={"inserted": inserted},
    )

    expire_at = options.expire_at(now)
    return {
        "ok": True,
        "role": role_for_plan(user.plan),
        "inserted": inserted,
        "sample": keys[:SAMPLE_SIZE],
        "projectId": project.id,
        "collectionId": request.collection_id,
        "dbName": ref.db_name,
        "collName": ref.collection_name,
        "expirationDays": options.expiration_days,
        "expireAt": expire_at,
    }


def _key_row(ref: CollectionRef, doc: dict, now: datetime) -> Optional[dict]:
    key = doc.get("key") or ""
    if not key:
        return None
    updated_at = doc.get("updatedAt")
    if not updated_at and isinstance(doc.get("_id"), ObjectId):
        updated_at = doc["_id"].generation_time
    return {
        "id": str(KeyRef(ref, str(doc["_id"]))),
        "key": key,
        "hwid": doc.get("hwid") or doc.get("code") or "",
        "status": key_status(doc.get("expireAt"), now),
        "updatedAt": updated_at,
    }


def _rows_from(coll, ref: CollectionRef, now: datetime) -> list[dict]:
    rows = []
    for doc in coll.find(LICENSE_PROBE):
        row = _key_row(ref, doc, now)
        if row:
            rows.append(row)
    return rows


def list_keys(user: User, now: Optional[datetime] = None) -> list[dict]:
    now = now or datetime.now(timezone.utc)
    rows: list[dict] = []

    if role_for_plan(user.plan) == ROLE_EMPRESARIAL:
        for integration_id, uri in connected_integrations(user):
            try:
                with open_external_client(uri) as client:
                    for db_name, coll in iter_license_collections(client):
                        rows.extend(_rows_from(coll, CollectionRef(integration_id, db_name, coll.name), now))
            except PyMongoError as e:
                log_external_failure(e, integration_id=integration_id, user_id=user.id)
        return rows

    for scoped in iter_client_collections(user):
        try:
            with open_external_client(scoped.uri) as client:
                coll = client[scoped.ref.db_name][scoped.ref.collection_name]
                if probe_collection(coll):
                    rows.extend(_rows_from(coll, scoped.ref, now))
        except PyMongoError as e:
            log_external_failure(
                e,
                integration_id=scoped.ref.integration_id,
                collection_id=str(scoped.ref),
                user_id=user.id,
            )
    return rows


def _authorize_key(user: User, key_id: Optional[str]) -> tuple[KeyRef, ObjectId, str, Optional[str]]:
    """Resolve (key_ref, document _id, uri, project_id) or raise."""
    if not key_id:
        raise ValidationError("keyId obrigatório.")
    key_ref = KeyRef.parse(key_id)
    try:
        doc_id = ObjectId(key_ref.document_id)
    except (InvalidId, TypeError):
        raise KeyIdMalformed("keyId inválido.")

    ref = key_ref.collection
    if role_for_plan(user.plan) == ROLE_EMPRESARIAL:
        uri = user.integration_uri(ref.integration_id)
        if not uri:
            raise IntegrationUnavailable("Integração não encontrada ou desconectada.", status_code=404)
        return key_ref, doc_id, uri, get_link(user.id, str(ref))

    for scoped in iter_client_collections(user):
        if scoped.ref == ref:
            return key_ref, doc_id, scoped.uri, scoped.project.id
    raise AccessDenied("Acesso negado a esta key.")


def reset_hwid(user: User, key_id: Optional[str], now: Optional[datetime] = None) -> None:
    require(user, Permission.RESET_HWID)
    key_ref, doc_id, uri, project_id = _authorize_key(user, key_id)
    ref = key_ref.collection
    now = now or datetime.now(timezone.utc)

    try:
        with open_external_client(uri) as client:
            result = client[ref.db_name][ref.collection_name].update_one(
                {"_id": doc_id},
                {"$set": {"hwid": "", "updatedAt": now}},
            )
    except PyMongoError as e:
        log_external_failure(e, integration_id=ref.integration_id, collection_id=str(ref), user_id=user.id)
        raise UpstreamUnavailable("Erro ao resetar HWID.")

    if result.matched_count == 0:
        raise DocumentNotFound("Documento não encontrado.")

    with get_db_session() as session:
        session.execute(
            insert(hwid_resets).values(
                user_id=user.id,
                project_id=project_id,
                collection_id=str(ref),
                created_at=now,
            )
        )
    log_event("info", "keys.hwid_reset", user_id=user.id, project_id=project_id, collection_id=str(ref))


def remove_key(user: User, key_id: Optional[str]) -> None:
    require(user, Permission.REMOVE_KEY)
    key_ref, doc_id, uri, project_id = _authorize_key(user, key_id)
    ref = key_ref.collection

    try:
        with open_external_client(uri) as client:
            result = client[ref.db_name][ref.collection_name].delete_one({"_id": doc_id})
    except PyMongoError as e:
        log_external_failure(e, integration_id=ref.integration_id, collection_id=str(ref), user_id=user.id)
        raise UpstreamUnavailable("Erro ao remover key.")

    if result.deleted_count == 0:
        raise DocumentNotFound("Documento não encontrado.")
    log_event("info", "keys.removed", user_id=user.id, project_id=project_id, collection_id=str(ref))
