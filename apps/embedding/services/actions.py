"""Trigger actions: the two pipeline cycles, addressable by name (cron, CLI, POST /events)."""

from typing import Callable

from apps.embedding.db import Database
from apps.embedding.services.embedding_provider import EmbeddingProviderRegistry
from apps.embedding.services.generate import generate_embeddings
from apps.embedding.services.reconcile import check_batch_status

GENERATE_EMBEDDINGS = "generate_embeddings"
CHECK_EMBEDDING_STATUS = "check_embedding_status"

ACTIONS: dict[str, Callable[[Database, EmbeddingProviderRegistry], dict]] = {
    GENERATE_EMBEDDINGS: generate_embeddings,
    CHECK_EMBEDDING_STATUS: check_batch_status,
}


class UnknownActionError(ValueError):
    pass


def run_action(action: str, db: Database, providers: EmbeddingProviderRegistry) -> dict:
    """Run one cycle by name. Raises UnknownActionError for anything else."""
    handler = ACTIONS.get((action or "").strip())
    if handler is None:
        raise UnknownActionError(f"Unknown action {action!r}; expected one of {sorted(ACTIONS)}")
    return handler(db, providers)
