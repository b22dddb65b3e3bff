"""Document lifecycle facade used by request handlers."""

from __future__ import annotations

import logging

from docchat.config import settings
from docchat.errors import ExtractionError, ExtractionFailureKind, NotFoundError, VectorIndexError
from docchat.ingestion.loader import is_pdf
from docchat.ingestion.worker import IngestionWorker
from docchat.retrieval.base import VectorStoreBase
from docchat.storage.base import MetadataStore
from docchat.storage.models import Document, DocumentCreate

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


class DocumentService:
    """Upload, poll and delete documents.

    Upload returns as soon as the document record exists; processing
    continues in the :class:`IngestionWorker`.  All lookups are scoped to
    ``owner_id`` when one is given: another owner's document behaves as
    if it did not exist.
    """

    def __init__(
        self,
        store: MetadataStore,
        index: VectorStoreBase,
        worker: IngestionWorker,
        *,
        max_upload_bytes: int = settings.max_upload_bytes,
    ) -> None:
        self._store = store
        self._index = index
        self._worker = worker
        self.max_upload_bytes = max_upload_bytes

    async def upload(
        self,
        data: bytes,
        display_name: str,
        *,
        owner_id: str | None = None,
        content_type: str = PDF_MIME_TYPE,
    ) -> Document:
        """Validate and register an upload, then queue its ingestion run.

        Raises
        ------
        ExtractionError
            If the file is not a PDF.
        ValueError
            If the file is empty or larger than ``max_upload_bytes``.
        """
        if not data:
            raise ValueError("No file uploaded")
        if len(data) > self.max_upload_bytes:
            raise ValueError(
                f"File of {len(data)} bytes exceeds the {self.max_upload_bytes} byte limit"
            )
        if content_type != PDF_MIME_TYPE or not is_pdf(data):
            raise ExtractionError(
                f"Only PDF files are allowed (got {content_type})",
                ExtractionFailureKind.UNSUPPORTED_FORMAT,
            )

        document = await self._store.create_document(
            DocumentCreate(
                display_name=display_name,
                size_bytes=len(data),
                owner_id=owner_id,
                mime_type=content_type,
            )
        )
        logger.info("Registered upload %s (%s, %d bytes)", document.id, display_name, len(data))
        self._worker.submit(document.id, data)
        return document

    async def get(self, document_id: str, *, owner_id: str | None = None) -> Document:
        """Return the document (status, progress, stage) or raise :class:`NotFoundError`."""
        document = await self._store.get_document(document_id)
        if document is None or (
            owner_id is not None and document.owner_id is not None and document.owner_id != owner_id
        ):
            raise NotFoundError(f"Document {document_id} not found")
        return document

    async def list_documents(self, *, owner_id: str | None = None) -> list[Document]:
        return await self._store.list_documents(owner_id)

    async def delete(self, document_id: str, *, owner_id: str | None = None) -> None:
        """Delete the document, its local chunks and its vectors.

        Vector removal is best-effort; a stale vector whose document is
        gone is dropped at query time.
        """
        document = await self.get(document_id, owner_id=owner_id)
        await self._store.delete_document(document.id, document.owner_id)
        try:
            await self._index.delete_by_document_id(document.id)
        except VectorIndexError:
            logger.warning("Could not delete vectors of %s", document.id, exc_info=True)
        logger.info("Deleted document %s (%s)", document.id, document.display_name)
