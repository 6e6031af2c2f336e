from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class GenerateKeysRequest(BaseModel):
    """Raw generation options; numeric fields are clamped by the service, not rejected."""
    model_config = ConfigDict(populate_by_name=True)

    project_id: Optional[str] = Field(default=None, alias="projectId")
    collection_id: Optional[str] = Field(default=None, alias="collectionId")
    quantity: Any = None
    expiration_days: Any = Field(default=None, alias="expirationDays")
    length: Any = None
    prefix: Any = None
    dashed: Any = None


class KeyActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key_id: Optional[str] = Field(default=None, alias="keyId")
