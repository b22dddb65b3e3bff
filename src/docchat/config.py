"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

import logging

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Chunking
    chunk_size: int = Field(default=1000, gt=0, description="Maximum characters per chunk")
    chunk_overlap: int = Field(default=200, ge=0, description="Characters shared by consecutive chunks")
    chunk_max_iterations: int = Field(
        default=10_000,
        gt=0,
        description="Safety ceiling on splitter iterations for pathological inputs",
    )

    # Extraction
    min_text_length: int = Field(default=50, description="Minimum extracted characters for a usable PDF")
    max_upload_bytes: int = 50 * 1024 * 1024

    # Embedding
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dimension: int = Field(
        default=1024,
        gt=0,
        description="Dimension of the vector index. Shorter model outputs are zero-padded.",
    )
    max_concurrent_embeddings: int = 4

    # Ingestion
    max_concurrent_ingestions: int = 3

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "docchat_chunks"
    vector_upsert_batch_size: int = 100

    # Retrieval
    retrieval_top_k: int = 5
    min_context_chars: int = 20

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "DOCCHAT_"}

    @model_validator(mode="after")
    def _check_chunking(self) -> Settings:
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be < chunk_size ({self.chunk_size})"
            )
        return self


def configure_logging(level: str | None = None) -> None:
    """Install a basic root handler at the configured level."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Singleton: import `settings` wherever needed.
settings = Settings()
