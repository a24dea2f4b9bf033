"""OpenAI embedding backend."""

from __future__ import annotations

import asyncio
import logging

from history_engine.embeddings.base import AsyncBaseEmbedder
from history_engine.exceptions import EmbeddingError

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
OPENAI_API_BASE = "https://api.openai.com/v1"
DEFAULT_MODEL = "text-embedding-3-small"


class AsyncOpenAIEmbedder(AsyncBaseEmbedder):
    """Page-text embeddings from the OpenAI API.

    Holds one ``httpx.AsyncClient`` for its lifetime. Rate limits (429),
    server errors and transport failures are retried with exponential
    backoff; other HTTP errors fail immediately.

    ``dimensions`` asks text-embedding-3 models for shortened vectors so they
    fit an index built with a smaller dimension.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        dimensions: int | None = None,
        timeout: float = 30.0,
        base_url: str = OPENAI_API_BASE,
    ):
        if not api_key:
            raise EmbeddingError(
                "OpenAI API key is required. "
                "Pass it directly or set OPENAI_API_KEY in your environment."
            )
        try:
            import httpx
        except ImportError:
            raise ImportError(
                "httpx is required for AsyncOpenAIEmbedder. "
                "Install with: pip install history-engine[embeddings]"
            )
        self._httpx = httpx
        self.api_key = api_key
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._client = None

    def _http(self):
        if self._client is None or self._client.is_closed:
            self._client = self._httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, texts: list[str]) -> list[list[float]]:
        httpx = self._httpx
        payload: dict = {"input": texts, "model": self.model}
        if self.dimensions:
            payload["dimensions"] = self.dimensions

        for attempt in range(MAX_RETRIES):
            try:
                response = await self._http().post("/embeddings", json=payload)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status != 429 and status < 500:
                    raise EmbeddingError(f"OpenAI embedding failed: HTTP {status}") from e
                wait = 2 ** (attempt + 1)
                logger.warning(f"OpenAI returned {status}, retrying in {wait}s (attempt {attempt + 1})")
                await asyncio.sleep(wait)
                continue
            except httpx.TransportError as e:
                wait = 2 ** attempt
                logger.warning(f"OpenAI request failed ({e}), retrying in {wait}s (attempt {attempt + 1})")
                await asyncio.sleep(wait)
                continue

            items = response.json().get("data") or []
            if len(items) != len(texts):
                raise EmbeddingError(f"OpenAI returned {len(items)} embeddings for {len(texts)} inputs")
            return [item["embedding"] for item in sorted(items, key=lambda x: x["index"])]

        raise EmbeddingError(f"OpenAI embedding failed after {MAX_RETRIES} retries")

    async def embed(self, text: str) -> list[float]:
        return (await self._request([text]))[0]

    async def embed_query(self, text: str) -> list[float]:
        return await self.embed(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for start in range(0, len(texts), 100):
            vectors.extend(await self._request(texts[start : start + 100]))
        return vectors
