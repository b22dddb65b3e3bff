"""Embedding generation.

The index stores vectors of a single fixed dimension.  Models that emit
shorter vectors are zero-padded up to that dimension; a model whose
output is *longer* is a configuration error and is rejected by
:meth:`EmbeddingService.verify_dimension` at start-up.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from langchain_huggingface import HuggingFaceEmbeddings

from docchat.config import settings
from docchat.errors import ConfigurationError, EmbeddingServiceError

logger = logging.getLogger(__name__)


def pad_embedding(vector: list[float], dimension: int) -> list[float]:
    """Zero-pad *vector* to *dimension*.

    Raises
    ------
    ConfigurationError
        If *vector* is longer than *dimension*.
    """
    if len(vector) > dimension:
        raise ConfigurationError(
            f"Embedding model produced {len(vector)} dimensions, "
            f"more than the index dimension {dimension}"
        )
    return list(vector) + [0.0] * (dimension - len(vector))


class EmbeddingService(ABC):
    """Converts text into fixed-dimension vectors.

    Parameters
    ----------
    dimension:
        Length of every vector returned by :meth:`embed`.
    max_concurrency:
        Upper bound on simultaneous calls to the underlying model/API.
    """

    def __init__(self, dimension: int, *, max_concurrency: int = 4) -> None:
        self.dimension = dimension
        self._limiter = asyncio.Semaphore(max_concurrency)

    async def embed(self, text: str) -> list[float]:
        """Return the padded embedding of *text*.

        Raises
        ------
        EmbeddingServiceError
            On any backend failure.
        ConfigurationError
            If the backend returns more dimensions than configured.
        """
        async with self._limiter:
            try:
                raw = await self._embed_raw(text)
            except EmbeddingServiceError:
                raise
            except Exception as exc:
                raise EmbeddingServiceError(f"Failed to create embedding: {exc}") from exc
        if not raw:
            raise EmbeddingServiceError("Embedding backend returned an empty vector")
        return pad_embedding(raw, self.dimension)

    async def verify_dimension(self) -> int:
        """Probe the backend once and return its native dimension.

        Raises :class:`ConfigurationError` when it exceeds ``dimension``.
        """
        native = len(await self._embed_raw("dimension probe"))
        if native > self.dimension:
            raise ConfigurationError(
                f"Embedding model dimension {native} exceeds index dimension {self.dimension}"
            )
        if native < self.dimension:
            logger.warning(
                "Embedding model dimension %d will be zero-padded to %d", native, self.dimension
            )
        return native

    @abstractmethod
    async def _embed_raw(self, text: str) -> list[float]:
        """Return the model's native, unpadded vector for *text*."""
        ...


class HuggingFaceEmbedder(EmbeddingService):
    """Sentence-transformer embeddings via ``langchain-huggingface``.

    The model is loaded on first use and runs in a worker thread so the
    event loop is never blocked by inference.
    """

    def __init__(
        self,
        model_name: str = settings.embedding_model,
        *,
        dimension: int = settings.embedding_dimension,
        max_concurrency: int = settings.max_concurrent_embeddings,
    ) -> None:
        super().__init__(dimension, max_concurrency=max_concurrency)
        self.model_name = model_name
        self._model: HuggingFaceEmbeddings | None = None

    def _get_model(self) -> HuggingFaceEmbeddings:
        if self._model is None:
            logger.info("Loading embedding model %s", self.model_name)
            self._model = HuggingFaceEmbeddings(model_name=self.model_name)
        return self._model

    async def _embed_raw(self, text: str) -> list[float]:
        model = await asyncio.to_thread(self._get_model)
        return await asyncio.to_thread(model.embed_query, text)
