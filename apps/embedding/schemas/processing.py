"""In-memory units of work passed between renderer, modes, and providers."""

from dataclasses import dataclass
from typing import Any


@dataclass
class EmbeddingProcessingItem:
    """One entity ready for embedding. entity_id is the embedding row id (provider custom_id)."""

    markdown: str
    entity_id: str
    entity_type: str
    schema_name: str
    record: Any = None


@dataclass
class EmbeddingResult:
    """Provider output for one item.

    embedding set => ready; embedding None and batch_id set => submitted, in flight;
    embedding None and error set => failed item.
    """

    embedding: list[float] | None
    original_text: str
    entity_id: str
    entity_type: str
    schema_name: str
    batch_id: str | None = None
    error: str | None = None

    @property
    def is_ready(self) -> bool:
        return self.embedding is not None

    @property
    def is_submitted(self) -> bool:
        return self.embedding is None and self.batch_id is not None and self.error is None

    @property
    def is_failed(self) -> bool:
        return self.embedding is None and self.error is not None
