"""Vector index backends with abstract base."""

from history_engine.vectorstore.base import BaseVectorIndex, SearchResult
from history_engine.vectorstore.chroma import ChromaVectorIndex

__all__ = [
    "BaseVectorIndex",
    "SearchResult",
    "ChromaVectorIndex",
]
