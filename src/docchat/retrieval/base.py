"""Abstract base class for vector-store backends.

Adding a new backend (Pinecone, Qdrant, …) only requires subclassing
:class:`VectorStoreBase` and implementing the abstract methods.  The
rest of the ingestion and retrieval stack is backend-agnostic.

Backends connect lazily: :meth:`VectorStoreBase.ensure_ready` calls
:meth:`_initialize` on first use and again on every later call until it
succeeds, so a transient outage at start-up never disables the index.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from docchat.errors import VectorIndexError
from docchat.retrieval.models import MetadataFilter, VectorMatch, VectorRecord

logger = logging.getLogger(__name__)


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index / namespace.
    batch_size:
        Maximum records sent per upsert call.
    """

    def __init__(self, collection_name: str, *, batch_size: int = 100) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.collection_name = collection_name
        self.batch_size = batch_size
        self._ready = False
        self._init_lock = asyncio.Lock()

    # -- lifecycle ------------------------------------------------------------

    async def ensure_ready(self) -> None:
        """Initialise the backend if that has not yet succeeded.

        Raises
        ------
        VectorIndexError
            If initialisation fails.  The failure is not remembered; the
            next call tries again.
        """
        if self._ready:
            return
        async with self._init_lock:
            if self._ready:
                return
            try:
                await self._initialize()
            except VectorIndexError:
                raise
            except Exception as exc:
                raise VectorIndexError(
                    f"Failed to initialise vector index {self.collection_name!r}: {exc}"
                ) from exc
            self._ready = True
            logger.info("Vector index %r ready", self.collection_name)

    # -- public API -----------------------------------------------------------

    async def upsert(self, records: list[VectorRecord]) -> int:
        """Insert or overwrite *records* in batches of ``batch_size``.

        A failing batch aborts the remaining ones.  Batches already
        written are kept; upserts are idempotent by id so the whole call
        can be retried.

        Returns the number of records written.
        """
        if not records:
            return 0
        await self.ensure_ready()
        total_batches = (len(records) + self.batch_size - 1) // self.batch_size
        written = 0
        for number, start in enumerate(range(0, len(records), self.batch_size), 1):
            batch = records[start : start + self.batch_size]
            try:
                await self._upsert_batch(batch)
            except Exception as exc:
                raise VectorIndexError(
                    f"Upsert failed on batch {number}/{total_batches} "
                    f"after {written} records: {exc}"
                ) from exc
            written += len(batch)
            logger.debug("Upserted batch %d/%d (%d records)", number, total_batches, len(batch))
        logger.info("Upserted %d vectors into %r", written, self.collection_name)
        return written

    async def query(
        self,
        vector: list[float],
        *,
        top_k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[VectorMatch]:
        """Return the *top_k* matches for *vector*, best first.

        *filters* is a conjunction of metadata constraints.
        """
        await self.ensure_ready()
        try:
            matches = await self._query(vector, top_k=top_k, filters=filters or [])
        except Exception as exc:
            raise VectorIndexError(f"Vector query failed: {exc}") from exc
        return sorted(matches, key=lambda m: m.score, reverse=True)

    async def delete_by_document_id(self, document_id: str) -> None:
        """Remove every vector of *document_id*.  Unknown ids are a no-op."""
        await self._delete_where([MetadataFilter.equals("documentId", document_id)])

    async def delete_by_document_name(
        self, document_name: str, *, owner_id: str | None = None
    ) -> None:
        """Remove every vector whose ``documentName`` matches.  Unknown names are a no-op.

        With *owner_id* only that owner's vectors are removed.
        """
        filters = [MetadataFilter.equals("documentName", document_name)]
        if owner_id is not None:
            filters.append(MetadataFilter.equals("ownerId", owner_id))
        await self._delete_where(filters)

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    async def _initialize(self) -> None:
        """Connect to / create the backing collection."""
        ...

    @abstractmethod
    async def _upsert_batch(self, records: list[VectorRecord]) -> None:
        ...

    @abstractmethod
    async def _query(
        self,
        vector: list[float],
        *,
        top_k: int,
        filters: list[MetadataFilter],
    ) -> list[VectorMatch]:
        """Each match's ``score`` must be a similarity (higher = more similar)."""
        ...

    @abstractmethod
    async def _delete(self, filters: list[MetadataFilter]) -> None:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    @abstractmethod
    async def count(self) -> int:
        """Return the number of stored vectors."""
        ...

    # -- internals ------------------------------------------------------------

    async def _delete_where(self, filters: list[MetadataFilter]) -> None:
        await self.ensure_ready()
        described = ", ".join(f"{f.field}={f.value!r}" for f in filters)
        try:
            await self._delete(filters)
        except Exception as exc:
            raise VectorIndexError(f"Delete where {described} failed: {exc}") from exc
        logger.info("Deleted vectors where %s", described)
