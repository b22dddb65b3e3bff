"""Domain models for vector records, index matches and search results."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from docchat.storage.models import Chunk, Document


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-store queries.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"documentName"``, ``"ownerId"``).
    operator:
        Comparison operator — one of ``eq``, ``ne``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)

    def matches(self, metadata: dict[str, Any]) -> bool:
        """Evaluate this filter against a metadata dict (used by local backends)."""
        actual = metadata.get(self.field)
        if self.operator == "eq":
            return actual == self.value
        if self.operator == "ne":
            return actual != self.value
        if self.operator == "in":
            return actual in self.value
        if self.operator == "nin":
            return actual not in self.value
        raise ValueError(f"Unsupported filter operator: {self.operator!r}")


class VectorMetadata(BaseModel):
    """Metadata stored next to every vector.  Keys are camelCase on the wire."""

    model_config = {"populate_by_name": True}

    document_id: str = Field(alias="documentId")
    document_name: str = Field(alias="documentName")
    owner_id: str | None = Field(default=None, alias="ownerId")
    chunk_index: int = Field(alias="chunkIndex")
    content: str
    page_number: int = Field(default=1, alias="pageNumber")
    content_length: int = Field(alias="contentLength")
    word_count: int = Field(alias="wordCount")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class VectorRecord(BaseModel):
    """An ``(id, vector, metadata)`` triple, 1:1 with a stored chunk."""

    id: str
    vector: list[float]
    metadata: VectorMetadata

    @classmethod
    def from_chunk(cls, chunk: Chunk, document_name: str) -> VectorRecord:
        return cls(
            id=chunk.id,
            vector=chunk.embedding,
            metadata=VectorMetadata(
                document_id=chunk.document_id,
                document_name=document_name,
                owner_id=chunk.owner_id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                page_number=chunk.page_number,
                content_length=len(chunk.content),
                word_count=chunk.word_count,
            ),
        )


class VectorMatch(BaseModel):
    """One ranked hit returned by a vector index query."""

    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class RetrievedChunk(BaseModel):
    """Chunk projection carried by a search result."""

    id: str
    document_id: str
    chunk_index: int | None = None
    content: str
    page_number: int | None = None
    content_length: int | None = None
    word_count: int | None = None


class SearchResult(BaseModel):
    """A retrieved passage joined with the document it came from."""

    chunk: RetrievedChunk
    document: Document
    score: float

    def short_ref(self) -> str:
        """Return a compact ``[name p.N]`` citation string."""
        page = self.chunk.page_number if self.chunk.page_number is not None else "?"
        return f"[{self.document.display_name} p.{page}]"

    def __str__(self) -> str:  # noqa: D105
        return f"{self.short_ref()} {self.chunk.content[:120]}…"
