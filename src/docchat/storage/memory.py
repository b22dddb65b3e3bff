"""In-process, owner-scoped implementation of :class:`MetadataStore`."""

from __future__ import annotations

import asyncio
import logging

from docchat.retrieval.similarity import rank_by_similarity
from docchat.storage.base import MetadataStore
from docchat.storage.models import (
    Chunk,
    Document,
    DocumentCreate,
    DocumentPatch,
    DocumentStatus,
    ScoredChunk,
    utcnow,
)

logger = logging.getLogger(__name__)


class InMemoryMetadataStore(MetadataStore):
    """Dictionary-backed store for local development and tests.

    Records are lost on restart.  Mutations are serialised with an
    :class:`asyncio.Lock` so concurrent ingestion runs see consistent
    state.
    """

    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}
        self._chunks: dict[str, Chunk] = {}
        self._lock = asyncio.Lock()

    # -- documents ------------------------------------------------------------

    async def create_document(self, fields: DocumentCreate) -> Document:
        document = Document(**fields.model_dump())
        async with self._lock:
            self._documents[document.id] = document
        return document

    async def update_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        patch: DocumentPatch | None = None,
    ) -> Document | None:
        async with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                logger.debug("Status update for missing document %s ignored", document_id)
                return None
            if patch is not None:
                document = patch.apply_to(document)
            update: dict = {"status": status}
            if status is DocumentStatus.COMPLETED:
                update["completed_at"] = utcnow()
            document = document.model_copy(update=update)
            self._documents[document_id] = document
            return document

    async def get_document(self, document_id: str) -> Document | None:
        return self._documents.get(document_id)

    async def list_documents(self, owner_id: str | None = None) -> list[Document]:
        docs = [
            d for d in self._documents.values() if owner_id is None or d.owner_id == owner_id
        ]
        return sorted(docs, key=lambda d: d.created_at, reverse=True)

    async def delete_document(self, document_id: str, owner_id: str | None = None) -> bool:
        async with self._lock:
            document = self._documents.get(document_id)
            if document is None or (owner_id is not None and document.owner_id != owner_id):
                return False
            del self._documents[document_id]
            self._drop_chunks(document_id)
        return True

    # -- chunks ---------------------------------------------------------------

    async def create_chunk(self, chunk: Chunk) -> Chunk:
        async with self._lock:
            self._chunks[chunk.id] = chunk
        return chunk

    async def get_document_chunks(self, document_id: str) -> list[Chunk]:
        chunks = [c for c in self._chunks.values() if c.document_id == document_id]
        return sorted(chunks, key=lambda c: c.chunk_index)

    async def delete_chunks_by_document(self, document_id: str, owner_id: str | None = None) -> int:
        async with self._lock:
            if owner_id is not None:
                document = self._documents.get(document_id)
                if document is not None and document.owner_id != owner_id:
                    return 0
            return self._drop_chunks(document_id)

    async def search_chunks_by_embedding_local(
        self,
        embedding: list[float],
        limit: int | None = 5,
        owner_id: str | None = None,
    ) -> list[ScoredChunk]:
        candidates = [
            (chunk, chunk.embedding)
            for chunk in self._chunks.values()
            if chunk.embedding and (owner_id is None or chunk.owner_id == owner_id)
        ]
        ranked = rank_by_similarity(embedding, candidates, limit=limit)
        return [ScoredChunk(chunk=chunk, score=score) for chunk, score in ranked]

    # -- internals ------------------------------------------------------------

    def _drop_chunks(self, document_id: str) -> int:
        doomed = [cid for cid, c in self._chunks.items() if c.document_id == document_id]
        for cid in doomed:
            del self._chunks[cid]
        return len(doomed)
