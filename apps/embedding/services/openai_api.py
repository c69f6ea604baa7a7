"""
Thin OpenAI REST client for embeddings and the Batch API.

Uses requests.Session with explicit timeouts. Every failure surfaces as ProviderError.
"""

import logging
from typing import Any

import requests

from apps.embedding.config import config
from apps.embedding.services.errors import MissingProviderCredentialsError, ProviderError

logger = logging.getLogger(__name__)

EMBEDDINGS_ENDPOINT = "/v1/embeddings"
COMPLETION_WINDOW = "24h"


class OpenAIClient:
    """Minimal client: /embeddings, /files, /batches. No retries; the next scheduled pass is the retry."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else config.OPENAI_API_KEY
        self._base_url = (base_url or config.OPENAI_BASE_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else config.OPENAI_TIMEOUT_SECONDS
        self._session = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise MissingProviderCredentialsError("OPENAI_API_KEY is not set")
        return {"Authorization": f"Bearer {self._api_key}"}

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self._base_url}{path}"
        try:
            resp = self._session.request(method, url, headers=self._headers(), timeout=self._timeout, **kwargs)
        except requests.RequestException as e:
            raise ProviderError(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            raise ProviderError(f"{method} {path} returned {resp.status_code}: {resp.text[:500]}")
        return resp

    def _json(self, resp: requests.Response, path: str) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderError(f"{path} returned non-JSON body") from e
        if not isinstance(data, dict):
            raise ProviderError(f"{path} returned unexpected payload type {type(data).__name__}")
        return data

    def create_embeddings(self, model: str, inputs: list[str], dimensions: int | None = None) -> list[list[float]]:
        """POST /embeddings. Returns vectors in input order."""
        body: dict[str, Any] = {"model": model, "input": inputs, "encoding_format": "float"}
        if dimensions:
            body["dimensions"] = dimensions
        data = self._json(self._request("POST", "/embeddings", json=body), "/embeddings").get("data") or []
        if not isinstance(data, list) or len(data) != len(inputs):
            raise ProviderError(f"/embeddings returned an unexpected data field for {len(inputs)} inputs")
        for entry in data:
            if not isinstance(entry, dict) or not isinstance(entry.get("embedding"), list):
                raise ProviderError("/embeddings returned an entry without an embedding list")
        ordered = sorted(data, key=lambda d: d["index"] if isinstance(d.get("index"), int) else 0)
        return [list(d["embedding"]) for d in ordered]

    def upload_batch_file(self, content: str, filename: str = "batch.jsonl") -> str:
        """POST /files (purpose=batch). Returns file id."""
        resp = self._request(
            "POST",
            "/files",
            files={"file": (filename, content.encode("utf-8"), "application/jsonl")},
            data={"purpose": "batch"},
        )
        file_id = self._json(resp, "/files").get("id")
        if not file_id:
            raise ProviderError("/files returned no id")
        return file_id

    def create_batch(self, input_file_id: str, metadata: dict[str, str] | None = None) -> dict[str, Any]:
        """POST /batches for the embeddings endpoint."""
        body: dict[str, Any] = {
            "input_file_id": input_file_id,
            "endpoint": EMBEDDINGS_ENDPOINT,
            "completion_window": COMPLETION_WINDOW,
        }
        if metadata:
            body["metadata"] = metadata
        batch = self._json(self._request("POST", "/batches", json=body), "/batches")
        if not batch.get("id"):
            raise ProviderError("/batches returned no id")
        return batch

    def retrieve_batch(self, batch_id: str) -> dict[str, Any]:
        return self._json(self._request("GET", f"/batches/{batch_id}"), "/batches/{id}")

    def download_file(self, file_id: str) -> str:
        """GET /files/{id}/content. Returns raw text (JSONL for batch output)."""
        return self._request("GET", f"/files/{file_id}/content").text
