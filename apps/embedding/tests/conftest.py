"""Pytest fixtures for pipeline unit tests. No network, no Postgres."""

import os

import pytest

# Use deterministic embedding provider in tests (no network)
os.environ.setdefault("ENV", "test")
os.environ["EMBED_PROVIDER"] = "deterministic"

from apps.embedding.services.embedding_provider import EmbeddingProviderRegistry
from apps.embedding.tests.fakes import FakeBatchProvider, FakeDatabase, FakeStore


@pytest.fixture
def store(monkeypatch) -> FakeStore:
    """In-memory gateway patched over apps.embedding.services.repo."""
    s = FakeStore()
    s.install(monkeypatch)
    return s


@pytest.fixture
def db(store) -> FakeDatabase:
    return FakeDatabase(store)


@pytest.fixture
def batch_provider() -> FakeBatchProvider:
    return FakeBatchProvider(model_name="text-embedding-3-small", dimensions=8)


@pytest.fixture
def batch_registry(batch_provider) -> EmbeddingProviderRegistry:
    return EmbeddingProviderRegistry([batch_provider])
