"""
kbchat - Domain Models
=======================
Pydantic models shared by the stores and the answering pipeline.

``KnowledgeDocument``
    A stored knowledge unit.  Retrieval is global: every document, of
    any owner, is a ranking candidate.  ``owner_id`` only decides who
    may list or delete it.
``Message``
    One immutable conversation turn.
``Match``
    Transient ``(document, similarity)`` pair produced by ranking.
``ImageAttachment``
    Optional image sent alongside a question.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kbchat.config.prompt_templates import DEFAULT_TITLE
from kbchat.src.core.errors import InvalidDocumentError
from kbchat.src.utils.text_utils import normalize_title

Role = Literal["user", "bot"]
Vector = list[float]
MongoDocument = dict[str, Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KnowledgeDocument(BaseModel):
    """A knowledge-base entry as stored in the ``knowledges`` collection."""

    id: str | None = None
    title: str = DEFAULT_TITLE
    content: str = ""
    embedding: Vector | None = None
    file_ref: str | None = None
    file_kind: str | None = None
    owner_id: str
    content_truncated: bool = False
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("title", mode="before")
    @classmethod
    def _normalize_title(cls, v: str | None) -> str:
        return normalize_title(v)


    def ensure_persistable(self) -> None:
        """Raise ``InvalidDocumentError`` when there is nothing to store."""
        if not self.content and not self.file_ref:
            raise InvalidDocumentError(f"Document '{self.title}' has neither content nor a file reference.")


    def to_mongo(self) -> MongoDocument:
        """Serialise for insertion; ``id`` is owned by MongoDB."""
        return self.model_dump(exclude={"id"})


    @classmethod
    def from_mongo(cls, doc: MongoDocument) -> KnowledgeDocument:
        data = {k: v for k, v in doc.items() if k != "_id"}
        data["content"] = data.get("content") or ""
        return cls(id=str(doc["_id"]), **data)


class Message(BaseModel):
    """A single conversation turn.  Frozen once created."""

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    owner_id: str
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)

    def to_mongo(self) -> MongoDocument:
        return self.model_dump(exclude={"id"})


    @classmethod
    def from_mongo(cls, doc: MongoDocument) -> Message:
        return cls(id=str(doc["_id"]), owner_id=doc["owner_id"], role=doc["role"], content=doc["content"], timestamp=doc["timestamp"])


@dataclass(frozen=True)
class Match:
    document: KnowledgeDocument
    similarity: float


@dataclass(frozen=True)
class ImageAttachment:
    mime_type: str
    data: bytes
