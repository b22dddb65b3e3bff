"""Exact-search in-process vector store."""

from __future__ import annotations

from docchat.retrieval.base import VectorStoreBase
from docchat.retrieval.models import MetadataFilter, VectorMatch, VectorRecord
from docchat.retrieval.similarity import rank_by_similarity


class InMemoryVectorStore(VectorStoreBase):
    """Brute-force cosine index kept in a dict.

    Suitable for local development and tests; it satisfies the same
    upsert / query / delete contract as the remote backends.
    """

    def __init__(self, collection_name: str = "memory", *, batch_size: int = 100) -> None:
        super().__init__(collection_name, batch_size=batch_size)
        self._records: dict[str, VectorRecord] = {}

    async def _initialize(self) -> None:
        return None

    async def _upsert_batch(self, records: list[VectorRecord]) -> None:
        for record in records:
            self._records[record.id] = record

    async def _query(
        self,
        vector: list[float],
        *,
        top_k: int,
        filters: list[MetadataFilter],
    ) -> list[VectorMatch]:
        candidates = [
            (record, record.vector)
            for record in self._records.values()
            if all(f.matches(record.metadata.to_wire()) for f in filters)
        ]
        ranked = rank_by_similarity(vector, candidates, limit=top_k)
        return [
            VectorMatch(id=record.id, score=score, metadata=record.metadata.to_wire())
            for record, score in ranked
        ]

    async def _delete(self, filters: list[MetadataFilter]) -> None:
        doomed = [
            rid
            for rid, record in self._records.items()
            if all(f.matches(record.metadata.to_wire()) for f in filters)
        ]
        for rid in doomed:
            del self._records[rid]

    async def health_check(self) -> bool:
        return True

    async def count(self) -> int:
        return len(self._records)
