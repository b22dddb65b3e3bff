"""Unit tests for the vector-store abstraction and its backends."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fakes import FlakyVectorStore

from docchat.errors import VectorIndexError
from docchat.retrieval.memory_store import InMemoryVectorStore
from docchat.retrieval.models import MetadataFilter, VectorMetadata, VectorRecord


def _record(
    rid: str,
    vector: list[float],
    *,
    document_id: str = "doc-1",
    document_name: str = "report.pdf",
    owner_id: str | None = None,
) -> VectorRecord:
    content = f"content of {rid}"
    return VectorRecord(
        id=rid,
        vector=vector,
        metadata=VectorMetadata(
            document_id=document_id,
            document_name=document_name,
            owner_id=owner_id,
            chunk_index=0,
            content=content,
            page_number=1,
            content_length=len(content),
            word_count=len(content.split()),
        ),
    )


# ── Models ─────────────────────────────────────────────────────────────


class TestMetadataFilter:
    def test_equals_factory(self) -> None:
        f = MetadataFilter.equals("documentName", "report.pdf")
        assert f.field == "documentName"
        assert f.operator == "eq"
        assert f.value == "report.pdf"

    def test_one_of_factory(self) -> None:
        f = MetadataFilter.one_of("documentId", ["a", "b"])
        assert f.operator == "in"
        assert f.matches({"documentId": "b"})
        assert not f.matches({"documentId": "c"})

    def test_not_in(self) -> None:
        f = MetadataFilter(field="ownerId", operator="nin", value=["bob"])
        assert f.matches({"ownerId": "alice"})

    def test_unsupported_operator_raises(self) -> None:
        with pytest.raises(ValueError, match="Unsupported filter operator"):
            MetadataFilter(field="x", operator="regex", value=".*").matches({"x": "y"})


def test_vector_metadata_uses_camel_case_keys() -> None:
    wire = _record("r1", [1.0], owner_id="alice").metadata.to_wire()
    assert wire["documentId"] == "doc-1"
    assert wire["documentName"] == "report.pdf"
    assert wire["ownerId"] == "alice"
    assert {"chunkIndex", "content", "pageNumber", "contentLength", "wordCount"} <= wire.keys()


# ── VectorStoreBase via the in-memory backend ──────────────────────────


class TestInMemoryVectorStore:
    @pytest.mark.asyncio
    async def test_upsert_and_query_best_first(self) -> None:
        store = InMemoryVectorStore()
        written = await store.upsert(
            [_record("a", [1.0, 0.0]), _record("b", [0.0, 1.0]), _record("c", [1.0, 1.0])]
        )
        assert written == 3

        matches = await store.query([1.0, 0.0], top_k=2)
        assert [m.id for m in matches] == ["a", "c"]
        assert matches[0].score == pytest.approx(1.0)
        assert matches[0].metadata["documentName"] == "report.pdf"

    @pytest.mark.asyncio
    async def test_upsert_overwrites_by_id(self) -> None:
        store = InMemoryVectorStore()
        await store.upsert([_record("a", [1.0, 0.0])])
        await store.upsert([_record("a", [0.0, 1.0])])
        assert await store.count() == 1
        matches = await store.query([0.0, 1.0], top_k=1)
        assert matches[0].score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_empty_upsert_is_noop(self) -> None:
        assert await InMemoryVectorStore().upsert([]) == 0

    @pytest.mark.asyncio
    async def test_query_applies_all_filters(self) -> None:
        store = InMemoryVectorStore()
        await store.upsert(
            [
                _record("a", [1.0, 0.0], document_name="report.pdf", owner_id="alice"),
                _record("b", [1.0, 0.0], document_name="notes.pdf", owner_id="alice"),
                _record("c", [1.0, 0.0], document_name="report.pdf", owner_id="bob"),
            ]
        )
        matches = await store.query(
            [1.0, 0.0],
            top_k=5,
            filters=[
                MetadataFilter.equals("documentName", "report.pdf"),
                MetadataFilter.equals("ownerId", "alice"),
            ],
        )
        assert [m.id for m in matches] == ["a"]

    @pytest.mark.asyncio
    async def test_delete_by_document_id(self) -> None:
        store = InMemoryVectorStore()
        await store.upsert([_record("a", [1.0], document_id="d1"), _record("b", [1.0], document_id="d2")])
        await store.delete_by_document_id("d1")
        assert [m.id for m in await store.query([1.0], top_k=5)] == ["b"]

    @pytest.mark.asyncio
    async def test_delete_unknown_document_is_noop(self) -> None:
        store = InMemoryVectorStore()
        await store.upsert([_record("a", [1.0])])
        await store.delete_by_document_id("missing")
        await store.delete_by_document_name("missing.pdf")
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_delete_by_name_is_owner_scoped(self) -> None:
        store = InMemoryVectorStore()
        await store.upsert(
            [
                _record("a", [1.0], owner_id="alice"),
                _record("b", [1.0], owner_id="bob"),
            ]
        )
        await store.delete_by_document_name("report.pdf", owner_id="alice")
        assert [m.id for m in await store.query([1.0], top_k=5)] == ["b"]

    @pytest.mark.asyncio
    async def test_health_check(self) -> None:
        assert await InMemoryVectorStore().health_check() is True

    def test_batch_size_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            InMemoryVectorStore(batch_size=0)


class TestBatchingAndErrors:
    @pytest.mark.asyncio
    async def test_upsert_is_split_into_batches(self) -> None:
        store = InMemoryVectorStore(batch_size=2)
        batches: list[int] = []
        original = store._upsert_batch

        async def record_batch(records):
            batches.append(len(records))
            await original(records)

        store._upsert_batch = record_batch  # type: ignore[method-assign]
        assert await store.upsert([_record(f"r{i}", [1.0]) for i in range(5)]) == 5
        assert batches == [2, 2, 1]

    @pytest.mark.asyncio
    async def test_failing_batch_aborts_remaining(self) -> None:
        store = InMemoryVectorStore(batch_size=2)
        calls = 0
        original = store._upsert_batch

        async def fail_second(records):
            nonlocal calls
            calls += 1
            if calls == 2:
                raise RuntimeError("rate limited")
            await original(records)

        store._upsert_batch = fail_second  # type: ignore[method-assign]
        with pytest.raises(VectorIndexError, match=r"batch 2/3 after 2 records"):
            await store.upsert([_record(f"r{i}", [1.0]) for i in range(5)])
        assert calls == 2
        assert await store.count() == 2

    @pytest.mark.asyncio
    async def test_query_failure_is_wrapped(self) -> None:
        store = FlakyVectorStore()
        store.fail_query = True
        with pytest.raises(VectorIndexError, match="connection refused"):
            await store.query([1.0])

    @pytest.mark.asyncio
    async def test_delete_failure_is_wrapped(self) -> None:
        store = FlakyVectorStore()
        store.fail_delete = True
        with pytest.raises(VectorIndexError, match="documentId"):
            await store.delete_by_document_id("d1")

    @pytest.mark.asyncio
    async def test_failed_initialisation_is_retried(self) -> None:
        store = InMemoryVectorStore()
        attempts = 0

        async def flaky_init() -> None:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise ConnectionError("index warming up")

        store._initialize = flaky_init  # type: ignore[method-assign]
        with pytest.raises(VectorIndexError, match="Failed to initialise"):
            await store.query([1.0])
        assert await store.query([1.0]) == []
        await store.query([1.0])
        assert attempts == 2


# ── Chroma backend ─────────────────────────────────────────────────────


class TestBuildChromaWhere:
    @pytest.fixture(autouse=True)
    def _skip_if_chroma_broken(self) -> None:
        """Skip if chromadb can't be imported in this environment."""
        try:
            from docchat.retrieval.chroma_store import _build_chroma_where  # noqa: F401
        except Exception:
            pytest.skip("chromadb not importable in this environment")

    def test_single_filter(self) -> None:
        from docchat.retrieval.chroma_store import _build_chroma_where

        where = _build_chroma_where([MetadataFilter.equals("documentName", "a.pdf")])
        assert where == {"documentName": {"$eq": "a.pdf"}}

    def test_multiple_filters_produce_and(self) -> None:
        from docchat.retrieval.chroma_store import _build_chroma_where

        where = _build_chroma_where(
            [MetadataFilter.equals("documentName", "a.pdf"), MetadataFilter.equals("ownerId", "u1")]
        )
        assert where == {"$and": [{"documentName": {"$eq": "a.pdf"}}, {"ownerId": {"$eq": "u1"}}]}

    def test_none_when_empty(self) -> None:
        from docchat.retrieval.chroma_store import _build_chroma_where

        assert _build_chroma_where([]) is None

    def test_unsupported_operator_raises(self) -> None:
        from docchat.retrieval.chroma_store import _build_chroma_where

        with pytest.raises(ValueError, match="Unsupported filter operator"):
            _build_chroma_where([MetadataFilter(field="x", operator="regex", value=".*")])


class TestChromaVectorStore:
    @pytest.fixture(autouse=True)
    def _skip_if_chroma_broken(self) -> None:
        try:
            from docchat.retrieval.chroma_store import ChromaVectorStore  # noqa: F401
        except Exception:
            pytest.skip("chromadb not importable in this environment")

    @pytest.fixture()
    def collection(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture()
    def client(self, collection: MagicMock) -> MagicMock:
        client = MagicMock()
        client.get_or_create_collection.return_value = collection
        return client

    @pytest.mark.asyncio
    async def test_upsert_sends_flat_metadata_in_batches(
        self, client: MagicMock, collection: MagicMock
    ) -> None:
        from docchat.retrieval.chroma_store import ChromaVectorStore

        store = ChromaVectorStore("chunks", client=client, batch_size=2)
        await store.upsert([_record(f"r{i}", [float(i), 1.0]) for i in range(3)])

        client.get_or_create_collection.assert_called_once_with(
            name="chunks", metadata={"hnsw:space": "cosine"}
        )
        assert collection.upsert.call_count == 2
        first = collection.upsert.call_args_list[0].kwargs
        assert first["ids"] == ["r0", "r1"]
        assert first["documents"] == ["content of r0", "content of r1"]
        # ownerId is None and must not reach Chroma
        assert "ownerId" not in first["metadatas"][0]
        assert first["metadatas"][0]["documentName"] == "report.pdf"

    @pytest.mark.asyncio
    async def test_query_converts_distance_to_score(
        self, client: MagicMock, collection: MagicMock
    ) -> None:
        from docchat.retrieval.chroma_store import ChromaVectorStore

        collection.query.return_value = {
            "ids": [["far", "near"]],
            "documents": [["far text", "near text"]],
            "metadatas": [[{"documentId": "d1"}, {"documentId": "d2"}]],
            "distances": [[0.9, 0.18]],
        }
        store = ChromaVectorStore("chunks", client=client)
        matches = await store.query(
            [1.0, 0.0], top_k=2, filters=[MetadataFilter.equals("ownerId", "u1")]
        )

        assert [m.id for m in matches] == ["near", "far"]
        assert matches[0].score == pytest.approx(0.82)
        assert matches[0].metadata["content"] == "near text"
        assert collection.query.call_args.kwargs["where"] == {"ownerId": {"$eq": "u1"}}
        assert collection.query.call_args.kwargs["n_results"] == 2

    @pytest.mark.asyncio
    async def test_delete_uses_where_clause(self, client: MagicMock, collection: MagicMock) -> None:
        from docchat.retrieval.chroma_store import ChromaVectorStore

        store = ChromaVectorStore("chunks", client=client)
        await store.delete_by_document_name("a.pdf", owner_id="u1")
        collection.delete.assert_called_once_with(
            where={"$and": [{"documentName": {"$eq": "a.pdf"}}, {"ownerId": {"$eq": "u1"}}]}
        )

    @pytest.mark.asyncio
    async def test_unreachable_server_retried_on_next_call(
        self, client: MagicMock, collection: MagicMock
    ) -> None:
        from docchat.retrieval.chroma_store import ChromaVectorStore

        client.get_or_create_collection.side_effect = [ConnectionError("refused"), collection]
        collection.count.return_value = 7
        store = ChromaVectorStore("chunks", client=client)

        with pytest.raises(VectorIndexError):
            await store.count()
        assert await store.count() == 7

    @pytest.mark.asyncio
    async def test_health_check_reports_failure(self, client: MagicMock) -> None:
        from docchat.retrieval.chroma_store import ChromaVectorStore

        client.heartbeat.side_effect = ConnectionError("refused")
        store = ChromaVectorStore("chunks", client=client)
        assert await store.health_check() is False
