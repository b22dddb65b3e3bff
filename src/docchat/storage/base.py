"""Abstract interface for the document metadata store.

The store persists :class:`Document` records and the local copy of every
:class:`Chunk` (including its embedding), which doubles as the fallback
retrieval path when the vector index is unavailable.  All operations are
owner-scoped where an ``owner_id`` is supplied.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from docchat.storage.models import (
    Chunk,
    Document,
    DocumentCreate,
    DocumentPatch,
    DocumentStatus,
    ScoredChunk,
)


class MetadataStore(ABC):
    """Backend-agnostic document / chunk persistence."""

    # -- documents ------------------------------------------------------------

    @abstractmethod
    async def create_document(self, fields: DocumentCreate) -> Document:
        """Persist a new document record and return it."""
        ...

    @abstractmethod
    async def update_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        patch: DocumentPatch | None = None,
    ) -> Document | None:
        """Set *status* and merge *patch* into the document.

        Sets ``completed_at`` when *status* is ``completed``.  Returns the
        updated document, or ``None`` when it no longer exists.
        """
        ...

    @abstractmethod
    async def get_document(self, document_id: str) -> Document | None:
        ...

    @abstractmethod
    async def list_documents(self, owner_id: str | None = None) -> list[Document]:
        """Return documents (all, or those of *owner_id*), newest first."""
        ...

    @abstractmethod
    async def delete_document(self, document_id: str, owner_id: str | None = None) -> bool:
        """Delete a document and cascade to its chunks.

        When *owner_id* is given only a document owned by that user is
        deleted.  Returns ``True`` if a record was removed.
        """
        ...

    # -- chunks ---------------------------------------------------------------

    @abstractmethod
    async def create_chunk(self, chunk: Chunk) -> Chunk:
        ...

    @abstractmethod
    async def get_document_chunks(self, document_id: str) -> list[Chunk]:
        """Return the chunks of a document ordered by ``chunk_index``."""
        ...

    @abstractmethod
    async def delete_chunks_by_document(self, document_id: str, owner_id: str | None = None) -> int:
        """Delete a document's chunks; returns the number removed."""
        ...

    @abstractmethod
    async def search_chunks_by_embedding_local(
        self,
        embedding: list[float],
        limit: int | None = 5,
        owner_id: str | None = None,
    ) -> list[ScoredChunk]:
        """Linear-scan cosine search over stored chunk embeddings.

        Candidates are the chunks of *owner_id* (all chunks when unset).
        Results are ordered by descending score; ``limit=None`` returns
        every candidate.
        """
        ...
