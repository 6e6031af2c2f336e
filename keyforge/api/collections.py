"""
Collection API routes.

Listing opens a short-lived connection to every reachable integration, so
these handlers are plain `def` and run on the threadpool.
"""
from fastapi import APIRouter, Depends

from keyforge.core.auth import get_current_user
from keyforge.features.collections import service as collections
from keyforge.features.plans.policy import role_for_plan
from keyforge.models.collection import LinkCollectionRequest, UnlinkCollectionRequest
from keyforge.models.user import User

router = APIRouter(prefix="/collections", tags=["collections"])


@router.get("")
def list_collections(user: User = Depends(get_current_user)):
    return {"role": role_for_plan(user.plan), "collections": collections.list_collections(user)}


@router.post("/link")
def link_collection(body: LinkCollectionRequest, user: User = Depends(get_current_user)):
    collections.link_collection(user, body.collection_id, body.project_id)
    return {"success": True}


@router.post("/unlink")
def unlink_collection(body: UnlinkCollectionRequest, user: User = Depends(get_current_user)):
    collections.unlink_collection(user, body.collection_id)
    return {"success": True}
