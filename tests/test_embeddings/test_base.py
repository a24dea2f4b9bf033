"""Tests for embedding backends."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from history_engine.embeddings.base import AsyncBaseEmbedder
from history_engine.embeddings.ollama import AsyncOllamaEmbedder
from history_engine.embeddings.openai import AsyncOpenAIEmbedder
from history_engine.exceptions import EmbeddingError


def _response(status, payload, url="https://api.openai.com/v1/embeddings"):
    return httpx.Response(status, json=payload, request=httpx.Request("POST", url))


def test_base_embedder_is_abstract():
    with pytest.raises(TypeError):
        AsyncBaseEmbedder()


def test_openai_requires_api_key():
    with pytest.raises(EmbeddingError, match="API key is required"):
        AsyncOpenAIEmbedder(api_key="")


@pytest.mark.asyncio
async def test_openai_batch_sorted_by_index():
    payload = {"data": [{"index": 1, "embedding": [0.2]}, {"index": 0, "embedding": [0.1]}]}
    embedder = AsyncOpenAIEmbedder(api_key="sk-test")
    with patch("httpx.AsyncClient.post", new=AsyncMock(return_value=_response(200, payload))) as post:
        result = await embedder.embed_batch(["a", "b"])
    assert result == [[0.1], [0.2]]
    assert post.await_args.kwargs["json"]["model"] == "text-embedding-3-small"


@pytest.mark.asyncio
async def test_openai_http_error_raises_embedding_error():
    embedder = AsyncOpenAIEmbedder(api_key="sk-test")
    with patch("httpx.AsyncClient.post", new=AsyncMock(return_value=_response(400, {"error": "bad"}))):
        with pytest.raises(EmbeddingError, match="OpenAI embedding failed"):
            await embedder.embed("hello")


@pytest.mark.asyncio
async def test_openai_requests_shortened_vectors():
    payload = {"data": [{"index": 0, "embedding": [0.5] * 4}]}
    embedder = AsyncOpenAIEmbedder(api_key="sk-test", dimensions=4)
    with patch("httpx.AsyncClient.post", new=AsyncMock(return_value=_response(200, payload))) as post:
        assert await embedder.embed("hello") == [0.5] * 4
    assert post.await_args.args[0] == "/embeddings"
    assert post.await_args.kwargs["json"]["dimensions"] == 4
    await embedder.aclose()


@pytest.mark.asyncio
async def test_openai_retries_rate_limit():
    ok = _response(200, {"data": [{"index": 0, "embedding": [1.0]}]})
    limited = _response(429, {"error": "slow down"})
    embedder = AsyncOpenAIEmbedder(api_key="sk-test")
    with patch("httpx.AsyncClient.post", new=AsyncMock(side_effect=[limited, ok])), patch(
        "history_engine.embeddings.openai.asyncio.sleep", new=AsyncMock()
    ) as sleep:
        assert await embedder.embed("hello") == [1.0]
    sleep.assert_awaited_once_with(2)


@pytest.mark.asyncio
async def test_ollama_embed_batch_in_one_request():
    url = "http://localhost:11434/api/embed"
    embedder = AsyncOllamaEmbedder(base_url="http://localhost:11434/")
    payload = {"embeddings": [[1.0, 2.0], [3.0, 4.0]]}
    with patch("httpx.AsyncClient.post", new=AsyncMock(return_value=_response(200, payload, url))) as post:
        assert await embedder.embed_batch(["a", "b"]) == [[1.0, 2.0], [3.0, 4.0]]
    assert post.await_count == 1
    assert post.await_args.kwargs["json"] == {"model": "nomic-embed-text", "input": ["a", "b"]}
    assert await embedder.embed_batch([]) == []


@pytest.mark.asyncio
async def test_ollama_mismatched_response_raises():
    url = "http://localhost:11434/api/embed"
    embedder = AsyncOllamaEmbedder()
    with patch("httpx.AsyncClient.post", new=AsyncMock(return_value=_response(200, {"embeddings": []}, url))):
        with pytest.raises(EmbeddingError, match="0 embeddings for 1 inputs"):
            await embedder.embed("hello")
