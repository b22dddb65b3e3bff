"""
Storage — document records and the local chunk store.

The metadata store is the source of truth for document status and the
fallback retrieval path when the vector index is out of sync.
"""

from docchat.storage.base import MetadataStore
from docchat.storage.memory import InMemoryMetadataStore
from docchat.storage.models import (
    Chunk,
    Document,
    DocumentCreate,
    DocumentPatch,
    DocumentStatus,
    ScoredChunk,
)

__all__ = [
    "Chunk",
    "Document",
    "DocumentCreate",
    "DocumentPatch",
    "DocumentStatus",
    "InMemoryMetadataStore",
    "MetadataStore",
    "ScoredChunk",
]
