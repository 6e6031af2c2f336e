"""
Project API routes.

- GET  /api/projects: role-scoped listing with live counts
- POST /api/projects: create (empresarial only)
- POST /api/projects/{project_id}/link-client
- POST /api/projects/{project_id}/unlink-client
"""
from fastapi import APIRouter, Depends

from keyforge.core.auth import get_current_user
from keyforge.features.plans.policy import role_for_plan
from keyforge.features.projects import service as projects
from keyforge.models.project import CreateProjectRequest, LinkClientRequest
from keyforge.models.user import User

router = APIRouter(prefix="/projects", tags=["projects"])


@router.get("")
def list_projects(user: User = Depends(get_current_user)):
    return {"role": role_for_plan(user.plan), "projects": projects.list_projects(user)}


@router.post("", status_code=201)
def create_project(body: CreateProjectRequest, user: User = Depends(get_current_user)):
    project = projects.create_project(user, body.name, body.status, body.client_email)
    return {"project": project}


@router.post("/{project_id}/link-client")
def link_client(project_id: str, body: LinkClientRequest, user: User = Depends(get_current_user)):
    projects.link_client(user, project_id, body.email)
    return {"message": "Cliente vinculado com sucesso."}


@router.post("/{project_id}/unlink-client")
def unlink_client(project_id: str, body: LinkClientRequest, user: User = Depends(get_current_user)):
    projects.unlink_client(user, project_id, body.email)
    return {"message": "Cliente desvinculado com sucesso."}
