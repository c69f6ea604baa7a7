"""
Embedding provider strategies, one per model name, selected through a registry.

EMBED_PROVIDER=deterministic or ENV=test or PYTEST_CURRENT_TEST => no network, hash-based vectors.
Otherwise OpenAI (REST, direct + Batch API).
"""

import hashlib
import json
import logging
import os
from typing import Iterable, Protocol, runtime_checkable

from apps.embedding.schemas.processing import EmbeddingProcessingItem, EmbeddingResult
from apps.embedding.services.errors import BatchJobFailedError, ProviderError, UnknownEmbeddingModelError
from apps.embedding.services.openai_api import EMBEDDINGS_ENDPOINT, OpenAIClient

logger = logging.getLogger(__name__)

# model name -> vector width
OPENAI_MODELS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
}

BATCH_IN_FLIGHT_STATUSES = frozenset({"validating", "in_progress", "finalizing", "cancelling"})
BATCH_FAILED_STATUSES = frozenset({"failed", "cancelled", "expired"})


@runtime_checkable
class EmbeddingProviderStrategy(Protocol):
    """Protocol for one embedding model. Can be swapped for testing."""

    provider_name: str
    model_name: str

    def generate_embeddings(self, items: list[EmbeddingProcessingItem]) -> list[EmbeddingResult]:
        """Synchronous: one result per item, vector or per-item error."""
        ...

    def generate_batch_embeddings(self, items: list[EmbeddingProcessingItem]) -> list[EmbeddingResult]:
        """Submit one provider batch job. Results carry batch_id and no vector. Raises ProviderError."""
        ...

    def get_batch_embeddings(
        self,
        batch_id: str,
        item_ids: list[str],
        schema_name: str,
        entity_type: str,
    ) -> list[EmbeddingResult]:
        """Finished items only; [] while the batch is in flight. Raises BatchJobFailedError on terminal failure."""
        ...

    def supports_batch_processing(self) -> bool:
        ...


def _result_for(item: EmbeddingProcessingItem, **kwargs) -> EmbeddingResult:
    return EmbeddingResult(
        embedding=kwargs.pop("embedding", None),
        original_text=item.markdown,
        entity_id=item.entity_id,
        entity_type=item.entity_type,
        schema_name=item.schema_name,
        **kwargs,
    )


class OpenAIEmbeddingProvider:
    """OpenAI embeddings: per-item direct calls, JSONL batch submission, batch output parsing."""

    provider_name = "openai"

    def __init__(self, model_name: str, dimensions: int | None = None, client: OpenAIClient | None = None) -> None:
        self.model_name = model_name
        self.dimensions = dimensions or OPENAI_MODELS.get(model_name)
        self._client = client or OpenAIClient()

    def supports_batch_processing(self) -> bool:
        return True

    def generate_embeddings(self, items: list[EmbeddingProcessingItem]) -> list[EmbeddingResult]:
        results: list[EmbeddingResult] = []
        for item in items:
            try:
                vector = self._client.create_embeddings(self.model_name, [item.markdown], self.dimensions)[0]
                results.append(_result_for(item, embedding=vector))
            except ProviderError as e:
                logger.warning(
                    "embedding failed model=%s schema=%s entity_id=%s err=%s",
                    self.model_name,
                    item.schema_name,
                    item.entity_id,
                    e,
                )
                results.append(_result_for(item, error=str(e)))
        return results

    def _request_body(self, text: str) -> dict:
        body = {"model": self.model_name, "input": text, "encoding_format": "float"}
        if self.dimensions:
            body["dimensions"] = self.dimensions
        return body

    def _batch_jsonl(self, items: list[EmbeddingProcessingItem]) -> str:
        lines = [
            json.dumps(
                {
                    "custom_id": item.entity_id,
                    "method": "POST",
                    "url": EMBEDDINGS_ENDPOINT,
                    "body": self._request_body(item.markdown),
                },
                ensure_ascii=False,
            )
            for item in items
        ]
        return "\n".join(lines) + "\n"

    def generate_batch_embeddings(self, items: list[EmbeddingProcessingItem]) -> list[EmbeddingResult]:
        if not items:
            return []
        first = items[0]
        file_id = self._client.upload_batch_file(self._batch_jsonl(items), filename=f"{first.entity_type}.jsonl")
        batch = self._client.create_batch(
            file_id,
            metadata={"schema_name": first.schema_name, "entity_type": first.entity_type},
        )
        batch_id = batch["id"]
        logger.info(
            "batch submitted model=%s schema=%s table=%s batch_id=%s items=%d",
            self.model_name,
            first.schema_name,
            first.entity_type,
            batch_id,
            len(items),
        )
        return [_result_for(item, batch_id=batch_id) for item in items]

    def get_batch_embeddings(
        self,
        batch_id: str,
        item_ids: list[str],
        schema_name: str,
        entity_type: str,
    ) -> list[EmbeddingResult]:
        batch = self._client.retrieve_batch(batch_id)
        status = str(batch.get("status") or "").lower()
        if status in BATCH_IN_FLIGHT_STATUSES:
            logger.info("batch not ready batch_id=%s status=%s", batch_id, status)
            return []
        if status in BATCH_FAILED_STATUSES:
            errors = batch.get("errors")
            errors = (errors.get("data") if isinstance(errors, dict) else None) or []
            detail = "; ".join(str(e.get("message")) for e in errors if isinstance(e, dict)) or None
            raise BatchJobFailedError(batch_id, status, detail and f"batch {batch_id} {status}: {detail}")
        if status != "completed":
            raise ProviderError(f"batch {batch_id} has unexpected status={status!r}")

        wanted = set(item_ids)
        found: dict[str, EmbeddingResult] = {}
        for file_key in ("output_file_id", "error_file_id"):
            file_id = batch.get(file_key)
            if not file_id:
                continue
            for line in self._client.download_file(file_id).splitlines():
                result = self._parse_output_line(line, batch_id, schema_name, entity_type)
                if result is not None and result.entity_id in wanted and result.entity_id not in found:
                    found[result.entity_id] = result

        for entity_id in item_ids:
            if entity_id not in found:
                found[entity_id] = EmbeddingResult(
                    embedding=None,
                    original_text="",
                    entity_id=entity_id,
                    entity_type=entity_type,
                    schema_name=schema_name,
                    batch_id=batch_id,
                    error="missing from batch output",
                )
        return [found[entity_id] for entity_id in item_ids]

    def _parse_output_line(
        self, line: str, batch_id: str, schema_name: str, entity_type: str
    ) -> EmbeddingResult | None:
        line = line.strip()
        if not line:
            return None
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("skipping malformed batch output line batch_id=%s", batch_id)
            return None
        if not isinstance(obj, dict):
            logger.warning("skipping non-object batch output line batch_id=%s", batch_id)
            return None
        custom_id = obj.get("custom_id")
        if not custom_id:
            return None
        base = {
            "original_text": "",
            "entity_id": str(custom_id),
            "entity_type": entity_type,
            "schema_name": schema_name,
            "batch_id": batch_id,
        }
        response = obj.get("response") or {}
        if not isinstance(response, dict):
            return EmbeddingResult(embedding=None, error="malformed response in batch output", **base)
        body = response.get("body") if isinstance(response.get("body"), dict) else {}
        status_code = response.get("status_code") if isinstance(response.get("status_code"), int) else 200
        error = obj.get("error") or body.get("error")
        if error or status_code >= 400:
            message = error.get("message") if isinstance(error, dict) else str(error or "request failed")
            return EmbeddingResult(embedding=None, error=message, **base)
        try:
            vector = body["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError):
            vector = None
        if not isinstance(vector, list):
            return EmbeddingResult(embedding=None, error="no embedding in batch output", **base)
        return EmbeddingResult(embedding=list(vector), **base)


def _hash_to_vector(text: str, dim: int) -> list[float]:
    """Produce deterministic dim-dim vector from text hash. Pure, no randomness."""
    out: list[float] = []
    for i in range(dim):
        h = hashlib.sha256((text + "|" + str(i)).encode()).hexdigest()
        out.append(int(h[:8], 16) / (2**32) * 2 - 1)
    return out


class DeterministicEmbeddingProvider:
    """
    Deterministic provider: vectors from a stable hash of the markdown.
    Pure: no network, no randomness. No batch support, so batch mode falls back to direct.
    """

    provider_name = "deterministic"

    def __init__(self, model_name: str, dimensions: int) -> None:
        self.model_name = model_name
        self.dimensions = dimensions

    def supports_batch_processing(self) -> bool:
        return False

    def generate_embeddings(self, items: list[EmbeddingProcessingItem]) -> list[EmbeddingResult]:
        return [_result_for(item, embedding=_hash_to_vector(item.markdown, self.dimensions)) for item in items]

    def generate_batch_embeddings(self, items: list[EmbeddingProcessingItem]) -> list[EmbeddingResult]:
        raise ProviderError("deterministic provider does not support batch processing")

    def get_batch_embeddings(
        self,
        batch_id: str,
        item_ids: list[str],
        schema_name: str,
        entity_type: str,
    ) -> list[EmbeddingResult]:
        return []


class EmbeddingProviderRegistry:
    """Model name -> provider. Unknown model raises; never guesses a default."""

    def __init__(self, providers: Iterable[EmbeddingProviderStrategy] = ()) -> None:
        self._providers: dict[str, EmbeddingProviderStrategy] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: EmbeddingProviderStrategy) -> None:
        self._providers[provider.model_name] = provider

    def get(self, model_name: str) -> EmbeddingProviderStrategy:
        provider = self._providers.get((model_name or "").strip())
        if provider is None:
            raise UnknownEmbeddingModelError(f"No embedding provider registered for model {model_name!r}")
        return provider

    def model_names(self) -> list[str]:
        return sorted(self._providers)


def _use_deterministic_provider() -> bool:
    """
    True if we should use deterministic providers (no network).
    EMBED_PROVIDER=deterministic => always deterministic.
    EMBED_PROVIDER=openai => always OpenAI.
    Otherwise: ENV=test or PYTEST_CURRENT_TEST => deterministic.
    """
    explicit = (os.getenv("EMBED_PROVIDER") or "").lower().strip()
    if explicit == "deterministic":
        return True
    if explicit == "openai":
        return False
    env = (os.getenv("ENV") or os.getenv("ENVIRONMENT") or "").lower()
    if env == "test":
        return True
    if os.getenv("PYTEST_CURRENT_TEST"):
        return True
    return False


def build_provider_registry(*, client: OpenAIClient | None = None) -> EmbeddingProviderRegistry:
    """Registry with one provider per known model. Deterministic in tests, OpenAI otherwise."""
    if _use_deterministic_provider():
        registry = EmbeddingProviderRegistry(
            DeterministicEmbeddingProvider(name, dim) for name, dim in OPENAI_MODELS.items()
        )
        logger.info("Using deterministic embedding providers (no network) models=%s", ",".join(registry.model_names()))
        return registry
    shared = client or OpenAIClient()
    registry = EmbeddingProviderRegistry(
        OpenAIEmbeddingProvider(name, dim, client=shared) for name, dim in OPENAI_MODELS.items()
    )
    logger.info("Using OpenAI embedding providers models=%s", ",".join(registry.model_names()))
    return registry
