"""Embedding backends with abstract base."""

from history_engine.embeddings.base import AsyncBaseEmbedder
from history_engine.embeddings.ollama import AsyncOllamaEmbedder
from history_engine.embeddings.openai import AsyncOpenAIEmbedder

__all__ = [
    "AsyncBaseEmbedder",
    "AsyncOpenAIEmbedder",
    "AsyncOllamaEmbedder",
]
