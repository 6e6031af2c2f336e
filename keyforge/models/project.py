from datetime import datetime
from typing import Optional, Literal
from pydantic import BaseModel, ConfigDict, Field

ProjectStatus = Literal["active", "paused", "archived"]
PROJECT_STATUSES = ("active", "paused", "archived")


class LinkedClient(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    name: Optional[str] = None
    user_id: Optional[str] = None


class Project(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    slug: str
    status: ProjectStatus = "active"
    owner_id: str
    created_at: datetime
    updated_at: datetime
    linked_clients: list[LinkedClient] = Field(default_factory=list)

    def has_client(self, email: str) -> bool:
        email = email.strip().lower()
        return any(c.email == email for c in self.linked_clients)


class CreateProjectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    status: Optional[str] = None
    client_email: Optional[str] = Field(default=None, alias="clientEmail")


class LinkClientRequest(BaseModel):
    email: Optional[str] = None
