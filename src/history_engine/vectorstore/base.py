"""Abstract base class for the page-embedding ANN index."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class SearchResult:
    """A single nearest-neighbor hit."""

    visit_id: int
    distance: float  # cosine distance, 0.0 = identical direction


class BaseVectorIndex(ABC):
    """Fixed-dimension, fixed-capacity index of vectors keyed by visit id."""

    dimension: int
    max_elements: int

    @abstractmethod
    def add_vector(self, visit_id: int, embedding: list[float]) -> None:
        """Insert or replace the vector of a visit."""
        ...

    @abstractmethod
    def search_with_scores(self, query_embedding: list[float], k: int = 3) -> list[SearchResult]:
        """Up to ``k`` hits by ascending cosine distance; ``[]`` on failure."""
        ...

    def search(self, query_embedding: list[float], k: int = 3) -> list[int]:
        """Up to ``k`` visit ids by ascending cosine distance; ``[]`` on failure."""
        return [hit.visit_id for hit in self.search_with_scores(query_embedding, k)]

    @abstractmethod
    def contains(self, visit_id: int) -> bool:
        ...

    @abstractmethod
    def delete(self, visit_ids: list[int]) -> None:
        ...

    @abstractmethod
    def count(self) -> int:
        """Number of vectors in the index."""
        ...

    @abstractmethod
    def clear(self) -> None:
        """Drop every vector, keeping dimension and capacity."""
        ...
