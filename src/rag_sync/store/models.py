"""Domain models for embedded documents and persisted rows."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

#: Partial metadata matched by JSON containment (row metadata ⊇ filter).
MetadataFilter = dict[str, Any]

#: ``(source, id, chunk)``: the storage identity of one embedded chunk.
IdentityKey = tuple[str, str, str | None]


def content_hash(content: str) -> str:
    """Return the SHA-256 hex digest used to detect changed content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def strip_nul(text: str) -> str:
    """Remove NUL bytes, which PostgreSQL ``text`` columns reject."""
    return text.replace("\x00", "")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmbeddingDocument(BaseModel):
    """A document (or chunk of one) as produced by an ingestor or the chunker.

    Attributes
    ----------
    metadata:
        Free-form metadata. ``source`` and ``id`` are required and together
        identify one logical document; ``id`` is only unique within its
        ``source``. The chunker adds ``chunk``.
    content:
        The text to embed.
    """

    metadata: dict[str, Any]
    content: str

    @field_validator("metadata")
    @classmethod
    def _require_source_and_id(cls, value: dict[str, Any]) -> dict[str, Any]:
        for key in ("source", "id"):
            if not isinstance(value.get(key), str) or not value[key]:
                raise ValueError(f"metadata.{key} must be a non-empty string")
        return value

    @property
    def source(self) -> str:
        return self.metadata["source"]

    @property
    def document_id(self) -> str:
        return self.metadata["id"]

    def identity(self) -> IdentityKey:
        return identity_of(self.metadata)


def identity_of(metadata: dict[str, Any]) -> IdentityKey:
    chunk = metadata.get("chunk")
    return (
        str(metadata.get("source")),
        str(metadata.get("id")),
        None if chunk is None else str(chunk),
    )


class EmbeddingRow(BaseModel):
    """One persisted, embedded chunk. Rows are never mutated in place."""

    id: UUID = Field(default_factory=uuid4)
    content: str
    metadata: dict[str, Any]
    vector: list[float]
    hash: str | None = None
    last_updated: datetime | None = None

    @field_validator("last_updated")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def identity(self) -> IdentityKey:
        return identity_of(self.metadata)

    @classmethod
    def from_document(
        cls,
        document: EmbeddingDocument,
        vector: list[float],
        *,
        now: datetime | None = None,
    ) -> EmbeddingRow:
        content = strip_nul(document.content)
        return cls(
            content=content,
            metadata=dict(document.metadata),
            vector=list(vector),
            hash=content_hash(document.content),
            last_updated=now or utcnow(),
        )


class ScoredRow(BaseModel):
    """A row returned by the ranked query together with its scoring terms."""

    row: EmbeddingRow
    distance: float
    score: float

    def to_document(self, now: datetime) -> EmbeddingDocument:
        """Return the row as a document annotated with age information."""
        metadata = dict(self.row.metadata)
        last_updated = self.row.last_updated
        if last_updated is not None:
            metadata["ageInDays"] = round((now - last_updated).total_seconds() / 86400)
            metadata["lastUpdated"] = last_updated.isoformat()
        else:
            metadata["ageInDays"] = None
            metadata["lastUpdated"] = None
        return EmbeddingDocument(metadata=metadata, content=self.row.content)
