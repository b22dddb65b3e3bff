"""Chroma implementation of the vector-store abstraction."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import chromadb

from docchat.config import settings
from docchat.retrieval.base import VectorStoreBase
from docchat.retrieval.models import MetadataFilter, VectorMatch, VectorRecord

logger = logging.getLogger(__name__)


def _build_chroma_where(filters: list[MetadataFilter]) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    _OP_MAP = {
        "eq": "$eq",
        "ne": "$ne",
        "in": "$in",
        "nin": "$nin",
    }

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _flatten_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    # Chroma metadata values must be flat str/int/float/bool
    return {k: v for k, v in metadata.items() if isinstance(v, (str, int, float, bool))}


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector store using cosine distance.

    The HTTP client and collection are created on first use.  chromadb's
    client is synchronous, so every call runs in a worker thread.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    batch_size:
        Maximum records per upsert call.
    client:
        Pre-built chromadb client (tests, embedded ``PersistentClient``).
    """

    def __init__(
        self,
        collection_name: str = settings.chroma_collection,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        batch_size: int = settings.vector_upsert_batch_size,
        client: Any = None,
    ) -> None:
        super().__init__(collection_name, batch_size=batch_size)
        self._host = host
        self._port = port
        self._client = client
        self._collection: Any = None

    # -- VectorStoreBase overrides --------------------------------------------

    async def _initialize(self) -> None:
        if self._client is None:
            self._client = await asyncio.to_thread(
                chromadb.HttpClient, host=self._host, port=self._port
            )
        self._collection = await asyncio.to_thread(
            self._client.get_or_create_collection,
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    async def _upsert_batch(self, records: list[VectorRecord]) -> None:
        await asyncio.to_thread(
            self._collection.upsert,
            ids=[r.id for r in records],
            embeddings=[r.vector for r in records],
            documents=[r.metadata.content for r in records],
            metadatas=[_flatten_metadata(r.metadata.to_wire()) for r in records],
        )

    async def _query(
        self,
        vector: list[float],
        *,
        top_k: int,
        filters: list[MetadataFilter],
    ) -> list[VectorMatch]:
        results = await asyncio.to_thread(
            self._collection.query,
            query_embeddings=[vector],
            n_results=top_k,
            where=_build_chroma_where(filters),
            include=["documents", "metadatas", "distances"],
        )

        ids = (results.get("ids") or [[]])[0]
        docs = (results.get("documents") or [[]])[0]
        metas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        matches: list[VectorMatch] = []
        for chunk_id, content, meta, dist in zip(ids, docs, metas, distances):
            metadata = dict(meta or {})
            metadata.setdefault("content", content or "")
            # cosine space: distance = 1 - cos(θ)
            matches.append(VectorMatch(id=chunk_id, score=1.0 - dist, metadata=metadata))
        return matches

    async def _delete(self, filters: list[MetadataFilter]) -> None:
        await asyncio.to_thread(self._collection.delete, where=_build_chroma_where(filters))

    async def health_check(self) -> bool:
        try:
            await self.ensure_ready()
            await asyncio.to_thread(self._client.heartbeat)
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False

    async def count(self) -> int:
        await self.ensure_ready()
        return await asyncio.to_thread(self._collection.count)
