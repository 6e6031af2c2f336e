"""
Access to user-supplied MongoDB deployments ("integrations").

Every request opens its own client, uses it, and closes it in `finally`.
There is no pooling or caching across requests: integrations can be
disconnected or re-pointed at any time from settings.

A collection counts as a license store when at least one document has a
`key`, `hwid` or `code` field. That classifier lives here and nowhere else.
"""
from contextlib import contextmanager
from typing import Iterator, Optional

from pymongo import MongoClient
from pymongo.errors import PyMongoError

from keyforge.core.config import settings
from keyforge.core.logging import log_event
from keyforge.models.collection import CollectionRef

LICENSE_FIELDS = ("key", "hwid", "code")
LICENSE_PROBE = {"$or": [{field: {"$exists": True}} for field in LICENSE_FIELDS]}


def is_license_collection(sample_doc: Optional[dict]) -> bool:
    return bool(sample_doc) and any(field in sample_doc for field in LICENSE_FIELDS)


@contextmanager
def open_external_client(uri: str) -> Iterator[MongoClient]:
    client = MongoClient(
        uri,
        serverSelectionTimeoutMS=settings.EXTERNAL_MONGO_TIMEOUT_MS,
        tz_aware=True,
    )
    try:
        yield client
    finally:
        client.close()


def probe_collection(coll) -> bool:
    return is_license_collection(coll.find_one(LICENSE_PROBE))


def iter_license_collections(client: MongoClient):
    """Yield (db_name, collection) for every license collection on the deployment."""
    for db_name in client.list_database_names():
        db = client[db_name]
        for coll_name in db.list_collection_names():
            coll = db[coll_name]
            if probe_collection(coll):
                yield db_name, coll


def log_external_failure(exc: Exception, *, integration_id: str, collection_id: Optional[str] = None, user_id: Optional[str] = None) -> None:
    # Never log the URI: it carries credentials.
    log_event(
        "warning",
        "external.mongo_failed",
        user_id=user_id,
        collection_id=collection_id,
        error_code="external_unavailable",
        extra={"integration_id": integration_id, "error": type(exc).__name__},
    )


def count_license_keys(uri: Optional[str], ref: CollectionRef) -> int:
    """Live document count, or 0 when unreachable, disconnected or not a license collection."""
    if not uri:
        return 0
    try:
        with open_external_client(uri) as client:
            coll = client[ref.db_name][ref.collection_name]
            if not probe_collection(coll):
                return 0
            return coll.count_documents({})
    except PyMongoError as e:
        log_external_failure(e, integration_id=ref.integration_id, collection_id=str(ref))
        return 0
