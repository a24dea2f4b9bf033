"""Ollama embedding backend for fully local indexing."""

from __future__ import annotations

import asyncio
import logging

from history_engine.embeddings.base import AsyncBaseEmbedder
from history_engine.exceptions import EmbeddingError

logger = logging.getLogger(__name__)

MAX_RETRIES = 3


class AsyncOllamaEmbedder(AsyncBaseEmbedder):
    """Embeddings from a local Ollama server via ``/api/embed``.

    Needs no credentials, so browsing text never leaves the machine. The
    server may still be loading the model when the first capture fires;
    connection failures are retried with backoff.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "nomic-embed-text",
        timeout: float = 60.0,
    ):
        try:
            import httpx
        except ImportError:
            raise ImportError(
                "httpx is required for AsyncOllamaEmbedder. "
                "Install with: pip install history-engine[embeddings]"
            )
        self._httpx = httpx
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._client = None

    def _http(self):
        if self._client is None or self._client.is_closed:
            self._client = self._httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, texts: list[str]) -> list[list[float]]:
        httpx = self._httpx
        for attempt in range(MAX_RETRIES):
            try:
                response = await self._http().post(
                    "/api/embed", json={"model": self.model, "input": texts}
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise EmbeddingError(
                    f"Ollama embedding failed: HTTP {e.response.status_code}"
                ) from e
            except httpx.TransportError as e:
                wait = 2 ** attempt
                logger.warning(
                    f"Ollama unreachable at {self.base_url} ({e}), "
                    f"retrying in {wait}s (attempt {attempt + 1})"
                )
                await asyncio.sleep(wait)
                continue
            embeddings = response.json().get("embeddings") or []
            if len(embeddings) != len(texts):
                raise EmbeddingError(f"Ollama returned {len(embeddings)} embeddings for {len(texts)} inputs")
            return embeddings
        raise EmbeddingError(f"Ollama embedding failed after {MAX_RETRIES} retries")

    async def embed(self, text: str) -> list[float]:
        return (await self._request([text]))[0]

    async def embed_query(self, text: str) -> list[float]:
        return await self.embed(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await self._request(texts)
