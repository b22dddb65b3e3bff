"""Component wiring.

Everything is constructed once by :func:`build_services` and passed by
reference; no module holds a store or index instance of its own.

Usage::

    services = build_services()
    await services.startup()
    document = await services.documents.upload(pdf_bytes, "report.pdf", owner_id=user_id)
    ...
    results = await services.retriever.search("refund policy", owner_id=user_id)
    await services.shutdown()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from docchat.config import Settings, settings
from docchat.ingestion.chunker import SentenceBoundarySplitter
from docchat.ingestion.embedder import EmbeddingService, HuggingFaceEmbedder
from docchat.ingestion.loader import TextExtractor
from docchat.ingestion.pipeline import IngestionPipeline
from docchat.ingestion.service import DocumentService
from docchat.ingestion.worker import IngestionWorker
from docchat.retrieval.base import VectorStoreBase
from docchat.retrieval.retriever import SemanticRetriever
from docchat.storage.base import MetadataStore
from docchat.storage.memory import InMemoryMetadataStore

logger = logging.getLogger(__name__)


@dataclass
class RAGServices:
    """The process-wide set of ingestion and retrieval components."""

    config: Settings
    store: MetadataStore
    index: VectorStoreBase
    embedder: EmbeddingService
    pipeline: IngestionPipeline
    worker: IngestionWorker
    documents: DocumentService
    retriever: SemanticRetriever

    async def startup(self) -> None:
        """Validate configuration against the live embedding model.

        Raises :class:`~docchat.errors.ConfigurationError` if the model's
        dimension exceeds the index dimension.  An unreachable vector
        index is only logged; it is retried on first use.
        """
        native = await self.embedder.verify_dimension()
        logger.info("Embedding dimension %d (index %d)", native, self.embedder.dimension)
        if not await self.index.health_check():
            logger.warning("Vector index not reachable at startup; local fallback will be used")

    async def shutdown(self) -> None:
        await self.worker.drain()


def build_services(
    config: Settings = settings,
    *,
    store: MetadataStore | None = None,
    index: VectorStoreBase | None = None,
    embedder: EmbeddingService | None = None,
    extractor: TextExtractor | None = None,
) -> RAGServices:
    """Construct and wire all components from *config*.

    Any component can be supplied explicitly; the defaults are an
    in-memory metadata store, a Chroma index and a HuggingFace embedder.
    """
    if store is None:
        store = InMemoryMetadataStore()
    if index is None:
        from docchat.retrieval.chroma_store import ChromaVectorStore

        index = ChromaVectorStore(
            config.chroma_collection,
            host=config.chroma_host,
            port=config.chroma_port,
            batch_size=config.vector_upsert_batch_size,
        )
    if embedder is None:
        embedder = HuggingFaceEmbedder(
            config.embedding_model,
            dimension=config.embedding_dimension,
            max_concurrency=config.max_concurrent_embeddings,
        )

    pipeline = IngestionPipeline(
        store,
        index,
        embedder,
        extractor=extractor,
        splitter=SentenceBoundarySplitter(
            chunk_size=config.chunk_size,
            chunk_overlap=config.chunk_overlap,
            max_iterations=config.chunk_max_iterations,
        ),
        min_text_length=config.min_text_length,
    )
    worker = IngestionWorker(pipeline, max_concurrent=config.max_concurrent_ingestions)
    return RAGServices(
        config=config,
        store=store,
        index=index,
        embedder=embedder,
        pipeline=pipeline,
        worker=worker,
        documents=DocumentService(
            store, index, worker, max_upload_bytes=config.max_upload_bytes
        ),
        retriever=SemanticRetriever(store, index, embedder, default_k=config.retrieval_top_k),
    )
