"""Domain models for documents and their chunks."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStatus(str, Enum):
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.COMPLETED, DocumentStatus.FAILED)


class DocumentCreate(BaseModel):
    """Fields supplied when a document record is first created."""

    display_name: str = Field(min_length=1)
    size_bytes: int = Field(ge=0)
    owner_id: str | None = None
    mime_type: str = "application/pdf"
    status: DocumentStatus = DocumentStatus.UPLOADING
    stage_label: str = "File uploaded, preparing to process..."


class Document(BaseModel):
    """A stored document and its processing state.

    Attributes
    ----------
    progress_percent:
        0–100.  Non-decreasing while ``status`` is ``processing``; reset to
        0 when the run fails.
    stage_label:
        Human-readable description of the current processing stage.
    error_message:
        Sanitized failure message (only set when ``status`` is ``failed``).
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    owner_id: str | None = None
    display_name: str
    size_bytes: int = 0
    mime_type: str = "application/pdf"
    status: DocumentStatus = DocumentStatus.UPLOADING
    total_pages: int | None = None
    total_chunk_count: int | None = None
    progress_percent: int = 0
    stage_label: str = ""
    error_message: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None


class DocumentPatch(BaseModel):
    """Partial update merged into a :class:`Document`.

    Only fields that were explicitly set are applied (merge-patch
    semantics); ``None`` values are ignored unless set explicitly.
    """

    model_config = {"extra": "forbid"}

    progress_percent: int | None = Field(default=None, ge=0, le=100)
    stage_label: str | None = None
    total_pages: int | None = Field(default=None, ge=0)
    total_chunk_count: int | None = Field(default=None, ge=0)
    error_message: str | None = None

    def apply_to(self, document: Document) -> Document:
        """Return a copy of *document* with this patch merged in."""
        changes = self.model_dump(exclude_unset=True)
        return document.model_copy(update=changes)


class Chunk(BaseModel):
    """One embedded text segment of a document."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    document_id: str
    owner_id: str | None = None
    chunk_index: int = Field(ge=0)
    content: str
    page_number: int = Field(default=1, ge=1)
    content_hash: str
    embedding: list[float]

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("chunk content must not be blank")
        return value

    @property
    def word_count(self) -> int:
        return len(self.content.split())


class ScoredChunk(BaseModel):
    """A chunk paired with its similarity to a query vector."""

    chunk: Chunk
    score: float
