"""Abstract base class for embedding backends."""

from __future__ import annotations

from abc import ABC, abstractmethod


class AsyncBaseEmbedder(ABC):
    """Abstract interface for text embedding, awaited from the capture loop."""

    model: str

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed a single document text."""
        ...

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Embed a search query."""
        ...

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed multiple texts."""
        ...

    async def aclose(self) -> None:
        """Release network resources held by the backend."""
        return None
