"""
Processing modes: direct (synchronous) vs batch (provider-side job).

Both split items into chunks of get_max_batch_size(). Batch mode falls back to direct semantics
when the provider cannot batch.
"""

import logging
from typing import Protocol, runtime_checkable

from apps.embedding.config import config
from apps.embedding.schemas.embedding import EmbeddingConfig
from apps.embedding.schemas.processing import EmbeddingProcessingItem, EmbeddingResult
from apps.embedding.services.embedding_provider import EmbeddingProviderStrategy
from apps.embedding.services.errors import ProviderError

logger = logging.getLogger(__name__)

DIRECT = "direct"
BATCH = "batch"


def chunked(items: list, size: int) -> list[list]:
    """Split items into consecutive chunks of at most size (size >= 1)."""
    size = max(1, int(size))
    return [items[i : i + size] for i in range(0, len(items), size)]


@runtime_checkable
class ProcessingMode(Protocol):
    name: str

    def process_embeddings(
        self, items: list[EmbeddingProcessingItem], provider: EmbeddingProviderStrategy
    ) -> list[EmbeddingResult]:
        ...

    def is_supported_for_provider(self, provider: EmbeddingProviderStrategy) -> bool:
        ...

    def get_max_batch_size(self) -> int:
        ...


class DirectProcessingMode:
    """Synchronous embeddings. A chunk-level ProviderError becomes failed results for that chunk."""

    name = DIRECT

    def __init__(self, max_batch_size: int | None = None) -> None:
        self._max_batch_size = max_batch_size

    def get_max_batch_size(self) -> int:
        return max(1, self._max_batch_size or config.DIRECT_MAX_BATCH_SIZE)

    def is_supported_for_provider(self, provider: EmbeddingProviderStrategy) -> bool:
        return True

    def process_embeddings(
        self, items: list[EmbeddingProcessingItem], provider: EmbeddingProviderStrategy
    ) -> list[EmbeddingResult]:
        results: list[EmbeddingResult] = []
        for chunk in chunked(items, self.get_max_batch_size()):
            try:
                results.extend(provider.generate_embeddings(chunk))
            except ProviderError as e:
                logger.warning("direct chunk failed model=%s size=%d err=%s", provider.model_name, len(chunk), e)
                results.extend(
                    EmbeddingResult(
                        embedding=None,
                        original_text=item.markdown,
                        entity_id=item.entity_id,
                        entity_type=item.entity_type,
                        schema_name=item.schema_name,
                        error=str(e),
                    )
                    for item in chunk
                )
        return results


class BatchProcessingMode:
    """
    One provider batch job per chunk, each with its own batch id.
    A chunk whose submission fails is left out of the results so its rows stay pending for the next pass.
    """

    name = BATCH

    def __init__(self, max_batch_size: int | None = None, fallback: DirectProcessingMode | None = None) -> None:
        self._max_batch_size = max_batch_size
        self._fallback = fallback or DirectProcessingMode()

    def get_max_batch_size(self) -> int:
        return max(1, self._max_batch_size or config.BATCH_MAX_BATCH_SIZE)

    def is_supported_for_provider(self, provider: EmbeddingProviderStrategy) -> bool:
        return bool(provider.supports_batch_processing())

    def process_embeddings(
        self, items: list[EmbeddingProcessingItem], provider: EmbeddingProviderStrategy
    ) -> list[EmbeddingResult]:
        if not self.is_supported_for_provider(provider):
            logger.info("provider=%s model=%s cannot batch, using direct", provider.provider_name, provider.model_name)
            return self._fallback.process_embeddings(items, provider)

        results: list[EmbeddingResult] = []
        for chunk in chunked(items, self.get_max_batch_size()):
            try:
                results.extend(provider.generate_batch_embeddings(chunk))
            except ProviderError as e:
                logger.warning(
                    "batch submission failed model=%s size=%d, rows stay pending err=%s",
                    provider.model_name,
                    len(chunk),
                    e,
                )
        return results


class ProcessingModeRegistry:
    """Mode name -> mode. Unknown name raises KeyError."""

    def __init__(self, modes: list[ProcessingMode] | None = None) -> None:
        direct = DirectProcessingMode()
        modes = modes if modes is not None else [direct, BatchProcessingMode(fallback=direct)]
        self._modes: dict[str, ProcessingMode] = {m.name: m for m in modes}

    def get(self, name: str) -> ProcessingMode:
        try:
            return self._modes[name]
        except KeyError:
            raise KeyError(f"Unknown processing mode {name!r}") from None

    def for_config(self, embedding_config: EmbeddingConfig) -> ProcessingMode:
        return self.get(BATCH if embedding_config.batch_embedding else DIRECT)
