"""Document ingestion pipeline.

One *ingestion run* turns the bytes of an uploaded PDF into stored,
embedded chunks::

    extract → clean up previous vectors → chunk → dedupe/embed each chunk
            → upsert vectors → mark completed

Progress is persisted on the :class:`~docchat.storage.models.Document`
after every stage so clients can poll it.  The percentages are fixed:

===========================  =========
stage                        progress
===========================  =========
text extraction              5 → 15
cleanup of earlier versions  20
chunking                     25
per-chunk embedding          25 → 90
vector upload                90 → 98
completed                    100
===========================  =========

A run never raises: any unexpected error marks the document ``failed``
with a sanitized message.  Only problems that make the whole document
unusable fail the run; a chunk that cannot be embedded is skipped and an
unavailable vector index leaves the run relying on the local chunk store.
A run whose document is deleted mid-way stops and removes the chunks and
vectors it already wrote.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field

from docchat.config import settings
from docchat.errors import (
    EmbeddingServiceError,
    ExtractionError,
    ExtractionFailureKind,
    NotFoundError,
    VectorIndexError,
    sanitize_error_message,
)
from docchat.ingestion.chunker import SentenceBoundarySplitter
from docchat.ingestion.embedder import EmbeddingService
from docchat.ingestion.loader import ExtractedText, PdfTextExtractor, TextExtractor
from docchat.retrieval.base import VectorStoreBase
from docchat.retrieval.models import VectorRecord
from docchat.storage.base import MetadataStore
from docchat.storage.models import Chunk, Document, DocumentPatch, DocumentStatus

logger = logging.getLogger(__name__)

PROGRESS_STARTED = 5
PROGRESS_EXTRACTED = 15
PROGRESS_CLEANED = 20
PROGRESS_CHUNKED = 25
PROGRESS_EMBEDDED = 90
PROGRESS_INDEXED = 98
PROGRESS_COMPLETE = 100


def normalize_whitespace(text: str) -> str:
    return " ".join(text.split())


def content_hash(text: str) -> str:
    """SHA-256 of the whitespace-normalised text."""
    return hashlib.sha256(normalize_whitespace(text).encode("utf-8")).hexdigest()


def embedding_progress(position: int, total: int) -> int:
    """Progress after the chunk at *position* (0-based) of *total* is handled."""
    span = PROGRESS_EMBEDDED - PROGRESS_CHUNKED
    return PROGRESS_CHUNKED + ((position + 1) * span) // max(total, 1)


class ProgressReporter:
    """Persists monotonic progress for one ingestion run."""

    def __init__(self, store: MetadataStore, document_id: str) -> None:
        self._store = store
        self._document_id = document_id
        self.current = 0
        self.history: list[int] = []

    async def advance(self, percent: int, stage: str, **fields: int) -> None:
        """Record *percent* (never lower than the last value) and *stage*.

        Raises :class:`NotFoundError` if the document no longer exists.
        """
        percent = max(self.current, min(percent, PROGRESS_COMPLETE))
        self.current = percent
        self.history.append(percent)
        updated = await self._store.update_document_status(
            self._document_id,
            DocumentStatus.PROCESSING,
            DocumentPatch(progress_percent=percent, stage_label=stage, **fields),
        )
        if updated is None:
            raise NotFoundError(f"Document {self._document_id} was deleted during processing")


@dataclass
class IngestionReport:
    """Summary of one ingestion run (also logged)."""

    document_id: str
    status: DocumentStatus = DocumentStatus.PROCESSING
    chunks_emitted: int = 0
    chunks_stored: int = 0
    duplicates_skipped: int = 0
    embedding_failures: int = 0
    vectors_indexed: int = 0
    error: str | None = None
    progress: list[int] = field(default_factory=list)


class IngestionPipeline:
    """Runs ingestion for a single document at a time.

    Parameters
    ----------
    store:
        Metadata store holding the document record and local chunks.
    index:
        Vector index receiving one record per stored chunk.
    embedder:
        Embedding capability; called sequentially, one chunk at a time.
    extractor:
        Text extraction capability (PDF by default).
    splitter:
        Chunker; defaults to :class:`SentenceBoundarySplitter` built from
        the global settings.
    min_text_length:
        Extracted text shorter than this fails the run.
    """

    def __init__(
        self,
        store: MetadataStore,
        index: VectorStoreBase,
        embedder: EmbeddingService,
        *,
        extractor: TextExtractor | None = None,
        splitter: SentenceBoundarySplitter | None = None,
        min_text_length: int = settings.min_text_length,
    ) -> None:
        self._store = store
        self._index = index
        self._embedder = embedder
        self._extractor = extractor or PdfTextExtractor()
        self._splitter = splitter or SentenceBoundarySplitter()
        self.min_text_length = min_text_length

    # -- public API -----------------------------------------------------------

    async def ingest(self, document_id: str, data: bytes) -> IngestionReport:
        """Process *data* for an existing document record.  Never raises."""
        report = IngestionReport(document_id=document_id)
        try:
            document = await self._store.get_document(document_id)
        except Exception as exc:
            logger.exception("Could not load document %s for ingestion", document_id)
            report.status = DocumentStatus.FAILED
            report.error = sanitize_error_message(exc)
            return report
        if document is None:
            logger.warning("Document %s vanished before ingestion started", document_id)
            report.status = DocumentStatus.FAILED
            report.error = "Document not found"
            return report
        if document.status.is_terminal:
            logger.warning(
                "Document %s is already %s; not re-processing", document_id, document.status.value
            )
            report.status = document.status
            return report

        progress = ProgressReporter(self._store, document_id)
        try:
            await self._run(document, data, progress, report)
        except NotFoundError as exc:
            logger.warning("Abandoning ingestion of %s: %s", document_id, exc)
            report.status = DocumentStatus.FAILED
            report.error = str(exc)
            await self._discard_outputs(document_id)
        except Exception as exc:
            logger.exception("Ingestion of %s (%s) failed", document.display_name, document_id)
            await self._mark_failed(document_id, exc, report)
        report.progress = progress.history
        logger.info(
            "Ingestion of %s finished: status=%s stored=%d duplicates=%d failures=%d indexed=%d",
            document_id,
            report.status.value,
            report.chunks_stored,
            report.duplicates_skipped,
            report.embedding_failures,
            report.vectors_indexed,
        )
        return report

    # -- stages ---------------------------------------------------------------

    async def _run(
        self,
        document: Document,
        data: bytes,
        progress: ProgressReporter,
        report: IngestionReport,
    ) -> None:
        await progress.advance(PROGRESS_STARTED, "Extracting text from PDF...")
        extracted = await self._extract(data)
        await progress.advance(
            PROGRESS_EXTRACTED, "Text extracted", total_pages=extracted.page_count
        )

        await self._remove_previous_versions(document)
        await progress.advance(PROGRESS_CLEANED, "Splitting text into chunks...")

        pieces = self._splitter.split_text(extracted.text)
        if not pieces:
            raise ExtractionError("No text chunks could be produced", ExtractionFailureKind.NO_TEXT)
        report.chunks_emitted = len(pieces)
        await progress.advance(
            PROGRESS_CHUNKED,
            f"Split into {len(pieces)} chunks, creating embeddings...",
            total_chunk_count=len(pieces),
        )

        records = await self._embed_chunks(document, extracted, pieces, progress, report)
        if not records:
            raise EmbeddingServiceError("No chunks could be embedded")

        await progress.advance(PROGRESS_EMBEDDED, "Uploading vectors to the index...")
        try:
            report.vectors_indexed = await self._index.upsert(records)
        except VectorIndexError:
            logger.warning(
                "Vector upsert failed for %s; serving from local chunk store",
                document.id,
                exc_info=True,
            )
        else:
            await progress.advance(PROGRESS_INDEXED, "Vectors indexed")

        completed = await self._store.update_document_status(
            document.id,
            DocumentStatus.COMPLETED,
            DocumentPatch(
                progress_percent=PROGRESS_COMPLETE,
                stage_label="Processing complete",
                total_pages=extracted.page_count,
                total_chunk_count=report.chunks_stored,
            ),
        )
        if completed is None:
            raise NotFoundError(f"Document {document.id} was deleted during processing")
        progress.history.append(PROGRESS_COMPLETE)
        report.status = DocumentStatus.COMPLETED

    async def _extract(self, data: bytes) -> ExtractedText:
        extracted = await self._extractor.extract(data)
        if len(extracted.text.strip()) < self.min_text_length:
            raise ExtractionError(
                f"Extracted text is too short or empty ({len(extracted.text.strip())} characters)",
                ExtractionFailureKind.NO_TEXT,
            )
        return extracted

    async def _remove_previous_versions(self, document: Document) -> None:
        """Best-effort removal of vectors/chunks from earlier runs of the same document."""
        try:
            await self._index.delete_by_document_id(document.id)
            await self._index.delete_by_document_name(
                document.display_name, owner_id=document.owner_id
            )
        except VectorIndexError:
            logger.warning(
                "Could not clean previous vectors for %s, continuing", document.display_name,
                exc_info=True,
            )

        try:
            for previous in await self._store.list_documents(document.owner_id):
                if previous.id == document.id or previous.display_name != document.display_name:
                    continue
                removed = await self._store.delete_chunks_by_document(previous.id, document.owner_id)
                logger.info("Removed %d local chunks of earlier upload %s", removed, previous.id)
        except Exception:
            logger.warning(
                "Could not clean previous local chunks for %s, continuing",
                document.display_name,
                exc_info=True,
            )

    async def _embed_chunks(
        self,
        document: Document,
        extracted: ExtractedText,
        pieces: list[str],
        progress: ProgressReporter,
        report: IngestionReport,
    ) -> list[VectorRecord]:
        records: list[VectorRecord] = []
        seen: set[str] = set()
        search_from = 0
        total = len(pieces)

        for position, piece in enumerate(pieces):
            offset = extracted.text.find(piece, search_from)
            if offset >= 0:
                search_from = offset + 1
            content = normalize_whitespace(piece)
            digest = content_hash(content)

            if digest in seen:
                report.duplicates_skipped += 1
                logger.debug("Skipping duplicate chunk %d/%d", position + 1, total)
            else:
                seen.add(digest)
                try:
                    vector = await self._embedder.embed(content)
                except EmbeddingServiceError as exc:
                    report.embedding_failures += 1
                    logger.warning("Skipping chunk %d/%d of %s: %s", position + 1, total, document.id, exc)
                else:
                    chunk = Chunk(
                        document_id=document.id,
                        owner_id=document.owner_id,
                        chunk_index=report.chunks_stored,
                        content=content,
                        page_number=self._page_number(extracted, offset, report.chunks_stored),
                        content_hash=digest,
                        embedding=vector,
                    )
                    await self._store.create_chunk(chunk)
                    records.append(VectorRecord.from_chunk(chunk, document.display_name))
                    report.chunks_stored += 1

            await progress.advance(
                embedding_progress(position, total),
                f"Processed chunk {position + 1}/{total}",
            )
        return records

    @staticmethod
    def _page_number(extracted: ExtractedText, offset: int, chunk_index: int) -> int:
        page = extracted.page_for_offset(offset) if offset >= 0 else None
        if page is None:
            # Rough estimate when page boundaries are unknown.
            page = chunk_index // 3 + 1
            if extracted.page_count:
                page = min(page, extracted.page_count)
        return max(page, 1)

    async def _discard_outputs(self, document_id: str) -> None:
        """Remove chunks and vectors written for a document that no longer exists."""
        try:
            removed = await self._store.delete_chunks_by_document(document_id)
            await self._index.delete_by_document_id(document_id)
        except Exception:
            logger.exception("Could not discard outputs of deleted document %s", document_id)
            return
        logger.info("Discarded %d orphaned chunks of deleted document %s", removed, document_id)

    async def _mark_failed(self, document_id: str, exc: Exception, report: IngestionReport) -> None:
        message = sanitize_error_message(exc)
        report.status = DocumentStatus.FAILED
        report.error = message
        try:
            await self._store.update_document_status(
                document_id,
                DocumentStatus.FAILED,
                DocumentPatch(progress_percent=0, stage_label="Processing failed", error_message=message),
            )
        except Exception:
            logger.exception("Could not record failure of document %s", document_id)
