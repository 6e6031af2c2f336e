"""
Composite identifiers for external collections and the documents in them.

Wire format:
    collectionId = "<integrationId>-<dbName>-<collectionName>"
    keyId        = "<collectionId>-<documentId>"

Parsing takes the first segment as the integration id and the last as the
collection name; everything in between is the database name, so database
names may contain dashes but integration ids and collection names may not.
"""
from dataclasses import dataclass
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from keyforge.core.errors import CollectionIdMalformed, KeyIdMalformed

SEPARATOR = "-"


@dataclass(frozen=True)
class CollectionRef:
    integration_id: str
    db_name: str
    collection_name: str

    @classmethod
    def parse(cls, raw: str) -> "CollectionRef":
        parts = (raw or "").split(SEPARATOR)
        if len(parts) < 3 or not all(parts[:1] + parts[-1:]):
            raise CollectionIdMalformed("collectionId inválido.")
        return cls(
            integration_id=parts[0],
            db_name=SEPARATOR.join(parts[1:-1]),
            collection_name=parts[-1],
        )

    def __str__(self) -> str:
        return SEPARATOR.join((self.integration_id, self.db_name, self.collection_name))


@dataclass(frozen=True)
class KeyRef:
    collection: CollectionRef
    document_id: str

    @classmethod
    def parse(cls, raw: str) -> "KeyRef":
        parts = (raw or "").split(SEPARATOR)
        if len(parts) < 4 or not parts[-1]:
            raise KeyIdMalformed("keyId inválido.")
        try:
            collection = CollectionRef.parse(SEPARATOR.join(parts[:-1]))
        except CollectionIdMalformed:
            raise KeyIdMalformed("keyId inválido.")
        return cls(collection=collection, document_id=parts[-1])

    def __str__(self) -> str:
        return f"{self.collection}{SEPARATOR}{self.document_id}"


class LinkCollectionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    collection_id: Optional[str] = Field(default=None, alias="collectionId")
    project_id: Optional[str] = Field(default=None, alias="projectId")


class UnlinkCollectionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    collection_id: Optional[str] = Field(default=None, alias="collectionId")
