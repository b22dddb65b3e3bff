"""
Retrieval — vector search, local fallback, and result assembly.

This module wraps the vector store behind a clean interface so that the
ingestion pipeline and answer generation never need to know which
database is backing retrieval.

Public surface
--------------
- :class:`SemanticRetriever` — main entry point for filtered top-k search.
- :class:`VectorStoreBase` — abstract backend (subclass for Pinecone, etc.).
- :class:`ChromaVectorStore` — default Chroma backend.
- :class:`InMemoryVectorStore` — exact in-process backend.
- :class:`SearchResult`, :class:`VectorRecord`, :class:`MetadataFilter` — data models.
- :func:`cosine_similarity`, :func:`has_usable_context` — helpers.
"""

from docchat.retrieval.base import VectorStoreBase
from docchat.retrieval.memory_store import InMemoryVectorStore
from docchat.retrieval.models import (
    MetadataFilter,
    RetrievedChunk,
    SearchResult,
    VectorMatch,
    VectorMetadata,
    VectorRecord,
)
from docchat.retrieval.retriever import SemanticRetriever, has_usable_context
from docchat.retrieval.similarity import cosine_similarity, rank_by_similarity

__all__ = [
    "ChromaVectorStore",
    "InMemoryVectorStore",
    "MetadataFilter",
    "RetrievedChunk",
    "SearchResult",
    "SemanticRetriever",
    "VectorMatch",
    "VectorMetadata",
    "VectorRecord",
    "VectorStoreBase",
    "cosine_similarity",
    "has_usable_context",
    "rank_by_similarity",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from docchat.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
