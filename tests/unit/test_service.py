"""Unit tests for the document service, the background worker and component wiring."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest
from fakes import FakeEmbedder, FakeExtractor, FlakyVectorStore, sample_text
from pydantic import ValidationError

from docchat.config import Settings, configure_logging
from docchat.errors import ConfigurationError, ExtractionError, ExtractionFailureKind, NotFoundError
from docchat.ingestion.chunker import SentenceBoundarySplitter
from docchat.ingestion.pipeline import IngestionPipeline, IngestionReport
from docchat.ingestion.service import DocumentService
from docchat.ingestion.worker import IngestionWorker
from docchat.services import build_services
from docchat.storage.memory import InMemoryMetadataStore
from docchat.storage.models import DocumentStatus

PDF_BYTES = b"%PDF-1.4 stand-in"


# ── Fixtures ───────────────────────────────────────────────────────────


@pytest.fixture()
def pipeline(
    store: InMemoryMetadataStore, index: FlakyVectorStore, embedder: FakeEmbedder
) -> IngestionPipeline:
    return IngestionPipeline(
        store,
        index,
        embedder,
        extractor=FakeExtractor(sample_text(30), page_count=3),
        splitter=SentenceBoundarySplitter(chunk_size=300, chunk_overlap=50),
    )


@pytest.fixture()
def service(
    store: InMemoryMetadataStore, index: FlakyVectorStore, pipeline: IngestionPipeline
) -> DocumentService:
    worker = IngestionWorker(pipeline, max_concurrent=2)
    return DocumentService(store, index, worker, max_upload_bytes=1024)


class SlowPipeline:
    """Counts how many runs are in flight at once."""

    def __init__(self) -> None:
        self.active = 0
        self.peak = 0
        self.finished: list[str] = []

    async def ingest(self, document_id: str, data: bytes) -> IngestionReport:
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        self.finished.append(document_id)
        return IngestionReport(document_id=document_id, status=DocumentStatus.COMPLETED)


# ── Upload validation ──────────────────────────────────────────────────


class TestUploadValidation:
    @pytest.mark.asyncio
    async def test_empty_upload_rejected(self, service: DocumentService) -> None:
        with pytest.raises(ValueError, match="No file uploaded"):
            await service.upload(b"", "empty.pdf")

    @pytest.mark.asyncio
    async def test_oversized_upload_rejected(self, service: DocumentService) -> None:
        with pytest.raises(ValueError, match="byte limit"):
            await service.upload(b"%PDF-" + b"0" * 2048, "big.pdf")

    @pytest.mark.asyncio
    async def test_non_pdf_rejected(
        self, service: DocumentService, store: InMemoryMetadataStore
    ) -> None:
        with pytest.raises(ExtractionError) as exc_info:
            await service.upload(b"PK\x03\x04 zip", "archive.zip", content_type="application/zip")
        assert exc_info.value.kind is ExtractionFailureKind.UNSUPPORTED_FORMAT
        assert await store.list_documents() == []

    @pytest.mark.asyncio
    async def test_pdf_mime_with_wrong_bytes_rejected(self, service: DocumentService) -> None:
        with pytest.raises(ExtractionError):
            await service.upload(b"not really a pdf", "fake.pdf")


# ── Lifecycle ──────────────────────────────────────────────────────────


class TestDocumentLifecycle:
    @pytest.mark.asyncio
    async def test_upload_returns_immediately_then_completes(
        self, service: DocumentService, store: InMemoryMetadataStore
    ) -> None:
        doc = await service.upload(PDF_BYTES, "report.pdf", owner_id="alice")
        assert doc.status is DocumentStatus.UPLOADING
        assert doc.size_bytes == len(PDF_BYTES)

        await service._worker.drain()

        done = await service.get(doc.id, owner_id="alice")
        assert done.status is DocumentStatus.COMPLETED
        assert done.progress_percent == 100
        assert done.total_pages == 3
        assert done.total_chunk_count == len(await store.get_document_chunks(doc.id))

    @pytest.mark.asyncio
    async def test_other_owner_cannot_see_document(self, service: DocumentService) -> None:
        doc = await service.upload(PDF_BYTES, "report.pdf", owner_id="alice")
        await service._worker.drain()
        with pytest.raises(NotFoundError):
            await service.get(doc.id, owner_id="bob")
        assert await service.list_documents(owner_id="bob") == []
        assert [d.id for d in await service.list_documents(owner_id="alice")] == [doc.id]

    @pytest.mark.asyncio
    async def test_unknown_document(self, service: DocumentService) -> None:
        with pytest.raises(NotFoundError):
            await service.get("missing")

    @pytest.mark.asyncio
    async def test_delete_removes_chunks_and_vectors(
        self, service: DocumentService, store: InMemoryMetadataStore, index: FlakyVectorStore
    ) -> None:
        doc = await service.upload(PDF_BYTES, "report.pdf", owner_id="alice")
        await service._worker.drain()
        assert await index.count() > 0

        await service.delete(doc.id, owner_id="alice")

        assert await store.get_document(doc.id) is None
        assert await store.get_document_chunks(doc.id) == []
        assert await index.count() == 0

    @pytest.mark.asyncio
    async def test_delete_survives_index_outage(
        self, service: DocumentService, store: InMemoryMetadataStore, index: FlakyVectorStore
    ) -> None:
        doc = await service.upload(PDF_BYTES, "report.pdf")
        await service._worker.drain()
        index.fail_delete = True

        await service.delete(doc.id)

        assert await store.get_document(doc.id) is None

    @pytest.mark.asyncio
    async def test_delete_by_other_owner_refused(
        self, service: DocumentService, store: InMemoryMetadataStore
    ) -> None:
        doc = await service.upload(PDF_BYTES, "report.pdf", owner_id="alice")
        await service._worker.drain()
        with pytest.raises(NotFoundError):
            await service.delete(doc.id, owner_id="bob")
        assert await store.get_document(doc.id) is not None


# ── Worker ─────────────────────────────────────────────────────────────


class TestIngestionWorker:
    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self) -> None:
        pipeline = SlowPipeline()
        worker = IngestionWorker(pipeline, max_concurrent=2)  # type: ignore[arg-type]

        for i in range(5):
            worker.submit(f"doc-{i}", PDF_BYTES)
        assert worker.pending == 5
        await worker.drain()

        assert pipeline.peak == 2
        assert sorted(pipeline.finished) == [f"doc-{i}" for i in range(5)]
        assert worker.pending == 0

    @pytest.mark.asyncio
    async def test_submit_returns_report_task(self, pipeline: IngestionPipeline) -> None:
        worker = IngestionWorker(pipeline)
        report = await worker.submit("unknown-doc", PDF_BYTES)
        assert report.status is DocumentStatus.FAILED
        assert report.error == "Document not found"

    @pytest.mark.asyncio
    async def test_drain_without_tasks(self, pipeline: IngestionPipeline) -> None:
        await IngestionWorker(pipeline).drain()


# ── Configuration and wiring ───────────────────────────────────────────


class TestSettings:
    def test_defaults(self) -> None:
        s = Settings()
        assert s.chunk_size == 1000
        assert s.chunk_overlap == 200
        assert s.min_text_length == 50
        assert s.max_concurrent_ingestions == 3

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DOCCHAT_CHUNK_SIZE", "500")
        monkeypatch.setenv("DOCCHAT_CHUNK_OVERLAP", "50")
        s = Settings()
        assert s.chunk_size == 500
        assert s.chunk_overlap == 50

    def test_overlap_must_be_smaller_than_chunk_size(self) -> None:
        with pytest.raises(ValidationError):
            Settings(chunk_size=100, chunk_overlap=100)


class TestBuildServices:
    @pytest.mark.asyncio
    async def test_end_to_end_upload_and_search(
        self, store: InMemoryMetadataStore, index: FlakyVectorStore, embedder: FakeEmbedder
    ) -> None:
        config = Settings(chunk_size=300, chunk_overlap=50, retrieval_top_k=3)
        services = build_services(
            config,
            store=store,
            index=index,
            embedder=embedder,
            extractor=FakeExtractor(sample_text(30)),
        )
        await services.startup()

        doc = await services.documents.upload(PDF_BYTES, "policies.pdf", owner_id="alice")
        await services.shutdown()

        results = await services.retriever.search("warranty policy", owner_id="alice")
        assert 0 < len(results) <= 3
        assert all(r.document.id == doc.id for r in results)

    @pytest.mark.asyncio
    async def test_startup_rejects_oversized_embedding_model(
        self, store: InMemoryMetadataStore, index: FlakyVectorStore
    ) -> None:
        services = build_services(
            Settings(),
            store=store,
            index=index,
            embedder=FakeEmbedder(native_dim=128, dimension=64),
            extractor=FakeExtractor(),
        )
        with pytest.raises(ConfigurationError):
            await services.startup()


def test_configure_logging_uses_requested_level() -> None:
    with patch("docchat.config.logging.basicConfig") as basic_config:
        configure_logging("debug")
    assert basic_config.call_args.kwargs["level"] == "DEBUG"
