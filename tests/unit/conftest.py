"""Fixtures shared by the unit tests."""

from __future__ import annotations

import pytest
from fakes import FakeEmbedder, FlakyVectorStore

from docchat.storage.memory import InMemoryMetadataStore


@pytest.fixture()
def store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture()
def index() -> FlakyVectorStore:
    return FlakyVectorStore()


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()
