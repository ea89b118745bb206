from __future__ import annotations

from typing import Protocol

import httpx


class EmbeddingClientError(RuntimeError):
    pass


class EmbeddingClient(Protocol):
    def embed_text(self, text: str) -> list[float] | None: ...


class OllamaEmbeddingClient:
    """OpenAI-compatible ``/embeddings`` client.

    A response without a vector is a valid outcome and comes back as ``None``;
    transport failures and malformed payloads raise ``EmbeddingClientError``.
    """

    def __init__(self, *, base_url: str, model: str, timeout_seconds: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout_seconds = timeout_seconds

    def embed_text(self, text: str) -> list[float] | None:
        if not text.strip():
            return None

        try:
            response = httpx.post(
                f"{self._base_url}/embeddings",
                json={"model": self._model, "input": text},
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EmbeddingClientError(str(exc)) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise EmbeddingClientError(f"Invalid embeddings payload: {exc}") from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise EmbeddingClientError("Invalid embeddings payload: missing data")
        if not data:
            return None

        first = data[0]
        embedding = first.get("embedding") if isinstance(first, dict) else None
        if embedding is None or embedding == []:
            return None
        if not isinstance(embedding, list):
            raise EmbeddingClientError("Invalid embeddings payload: embedding must be a list")

        try:
            return [float(value) for value in embedding]
        except (TypeError, ValueError) as exc:
            raise EmbeddingClientError("Invalid embeddings payload: non-numeric embedding") from exc
