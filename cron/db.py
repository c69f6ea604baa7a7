"""Cron composition root: one Database and one provider registry per process."""

from apps.embedding.db import Database
from apps.embedding.services.embedding_provider import EmbeddingProviderRegistry, build_provider_registry


def get_database() -> Database:
    """Database bound to DATABASE_URL. Caller disposes it when the script ends."""
    return Database()


def get_providers() -> EmbeddingProviderRegistry:
    return build_provider_registry()
