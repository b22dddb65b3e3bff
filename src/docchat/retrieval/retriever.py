"""Semantic retriever — filtered top-k search with a local fallback.

This module is the **primary public interface** for retrieval.

Usage::

    retriever = SemanticRetriever(store, index, embedder)
    results = await retriever.search("refund policy", k=5, owner_id=user_id)
    for r in results:
        print(r.short_ref(), r.score, r.chunk.content[:80])

The vector index is tried first.  When it raises or returns nothing, the
retriever scans the chunks held in the metadata store instead, so
documents whose vectors never reached the index remain searchable.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from docchat.config import settings
from docchat.errors import VectorIndexError
from docchat.retrieval.base import VectorStoreBase
from docchat.retrieval.models import MetadataFilter, RetrievedChunk, SearchResult, VectorMatch
from docchat.storage.base import MetadataStore
from docchat.storage.models import Document, ScoredChunk

if TYPE_CHECKING:
    from docchat.ingestion.embedder import EmbeddingService

logger = logging.getLogger(__name__)

_Hit = tuple[RetrievedChunk, float]


class SemanticRetriever:
    """High-level retriever over any :class:`VectorStoreBase`.

    Parameters
    ----------
    store:
        Metadata store used to join results with their documents and as
        the fallback chunk source.
    index:
        Primary vector index.
    embedder:
        Embeds the query text.
    default_k:
        Default number of results returned by :meth:`search`.
    score_threshold:
        Optional minimum similarity score; lower results are discarded.
    """

    def __init__(
        self,
        store: MetadataStore,
        index: VectorStoreBase,
        embedder: EmbeddingService,
        *,
        default_k: int = settings.retrieval_top_k,
        score_threshold: float | None = None,
    ) -> None:
        self._store = store
        self._index = index
        self._embedder = embedder
        self.default_k = default_k
        self.score_threshold = score_threshold

    # -- public API -----------------------------------------------------------

    async def search(
        self,
        query: str,
        *,
        k: int | None = None,
        document_name: str | None = None,
        owner_id: str | None = None,
    ) -> list[SearchResult]:
        """Run a semantic search and return document-joined results.

        Parameters
        ----------
        query:
            Natural-language query string.
        k:
            Number of results (defaults to ``self.default_k``).  ``0`` returns no results.
        document_name:
            Restrict results to documents with this display name.
        owner_id:
            Restrict results to this owner's documents.

        Raises
        ------
        EmbeddingServiceError
            If the query cannot be embedded.  This is never turned into an
            empty result.
        ValueError
            If *k* is negative.
        """
        embedding = await self._embedder.embed(query)
        return await self.search_by_embedding(
            embedding, k=k, document_name=document_name, owner_id=owner_id
        )

    async def search_by_embedding(
        self,
        embedding: list[float],
        *,
        k: int | None = None,
        document_name: str | None = None,
        owner_id: str | None = None,
    ) -> list[SearchResult]:
        """Same as :meth:`search` but accepts a pre-computed embedding."""
        k = self.default_k if k is None else k
        if k < 0:
            raise ValueError(f"k must be non-negative, got {k}")
        if k == 0:
            return []
        documents: dict[str, Document | None] = {}

        filters: list[MetadataFilter] = []
        if document_name:
            filters.append(MetadataFilter.equals("documentName", document_name))
        if owner_id:
            filters.append(MetadataFilter.equals("ownerId", owner_id))

        hits = await self._search_index(embedding, k, filters)
        if not hits:
            hits = await self._search_local(embedding, k, document_name, owner_id, documents)

        hits.sort(key=lambda hit: hit[1], reverse=True)
        return await self._to_results(hits, documents)

    # -- internals ------------------------------------------------------------

    async def _search_index(
        self, embedding: list[float], k: int, filters: list[MetadataFilter]
    ) -> list[_Hit]:
        try:
            matches = await self._index.query(embedding, top_k=k, filters=filters)
        except VectorIndexError as exc:
            logger.warning("Vector index search failed, using local fallback: %s", exc)
            return []
        if not matches:
            logger.info("No matches in vector index, falling back to local search")
            return []
        logger.debug("Index scores: %s", [round(m.score, 4) for m in matches])
        return [(_chunk_from_match(m), m.score) for m in matches]

    async def _search_local(
        self,
        embedding: list[float],
        k: int,
        document_name: str | None,
        owner_id: str | None,
        documents: dict[str, Document | None],
    ) -> list[_Hit]:
        # The local scan has no metadata predicate, so a name filter needs
        # every candidate before truncating to k.
        limit = None if document_name else k
        scored = await self._store.search_chunks_by_embedding_local(
            embedding, limit=limit, owner_id=owner_id
        )
        hits: list[_Hit] = []
        for item in scored:
            if document_name:
                document = await self._lookup(item.chunk.document_id, documents)
                if document is None or document.display_name != document_name:
                    continue
            hits.append((_chunk_from_scored(item), item.score))
            if len(hits) >= k:
                break
        logger.info("Local fallback search returned %d chunks", len(hits))
        return hits

    async def _to_results(
        self, hits: list[_Hit], documents: dict[str, Document | None]
    ) -> list[SearchResult]:
        results: list[SearchResult] = []
        for chunk, score in hits:
            if self.score_threshold is not None and score < self.score_threshold:
                continue
            document = await self._lookup(chunk.document_id, documents)
            if document is None:
                logger.debug("Dropping chunk %s of deleted document %s", chunk.id, chunk.document_id)
                continue
            results.append(SearchResult(chunk=chunk, document=document, score=score))
        return results

    async def _lookup(
        self, document_id: str, documents: dict[str, Document | None]
    ) -> Document | None:
        if not document_id:
            return None
        if document_id not in documents:
            documents[document_id] = await self._store.get_document(document_id)
        return documents[document_id]


def _chunk_from_match(match: VectorMatch) -> RetrievedChunk:
    meta: dict[str, Any] = match.metadata
    return RetrievedChunk(
        id=match.id,
        document_id=str(meta.get("documentId") or ""),
        chunk_index=meta.get("chunkIndex"),
        content=meta.get("content", ""),
        page_number=meta.get("pageNumber"),
        content_length=meta.get("contentLength"),
        word_count=meta.get("wordCount"),
    )


def _chunk_from_scored(item: ScoredChunk) -> RetrievedChunk:
    chunk = item.chunk
    return RetrievedChunk(
        id=chunk.id,
        document_id=chunk.document_id,
        chunk_index=chunk.chunk_index,
        content=chunk.content,
        page_number=chunk.page_number,
        content_length=len(chunk.content),
        word_count=chunk.word_count,
    )


def has_usable_context(
    results: list[SearchResult], min_chars: int = settings.min_context_chars
) -> bool:
    """Return ``True`` if any result carries more than *min_chars* of content.

    Answer generation should reply "no answer available" when this is
    ``False`` rather than prompting with near-empty context.
    """
    return any(len(r.chunk.content.strip()) > min_chars for r in results)
