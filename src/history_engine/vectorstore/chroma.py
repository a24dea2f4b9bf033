"""ChromaDB-backed vector index over page-content embeddings."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from history_engine.exceptions import VectorIndexCapacityError, VectorStoreError
from history_engine.vectorstore.base import BaseVectorIndex, SearchResult

logger = logging.getLogger(__name__)

COLLECTION_NAME = "history_pages"
DEFAULT_DIMENSION = 1536
DEFAULT_MAX_ELEMENTS = 10_000


class ChromaVectorIndex(BaseVectorIndex):
    """Persistent cosine-space HNSW collection keyed by visit id.

    Every insert is written through to disk by ChromaDB. If the persisted
    index cannot be loaded (corruption, dimension or version mismatch) it is
    discarded and a fresh empty index is created; ``recovered`` is then True
    so callers can reconcile their own bookkeeping.
    """

    def __init__(
        self,
        persist_dir: Path,
        dimension: int = DEFAULT_DIMENSION,
        max_elements: int = DEFAULT_MAX_ELEMENTS,
        collection_name: str = COLLECTION_NAME,
    ):
        if dimension <= 0 or max_elements <= 0:
            raise ValueError("dimension and max_elements must be positive")
        try:
            import chromadb
        except ImportError:
            raise ImportError(
                "chromadb is required for ChromaVectorIndex. "
                "Install with: pip install history-engine[vectorstore]"
            )
        self._chromadb = chromadb
        self.persist_dir = persist_dir
        self.dimension = dimension
        self.max_elements = max_elements
        self.collection_name = collection_name
        self.recovered = False
        self._load_or_create()

    def _connect(self) -> None:
        self.persist_dir.mkdir(parents=True, exist_ok=True)
        self.client = self._chromadb.PersistentClient(path=str(self.persist_dir))
        self.collection = self._open_collection()

    def _open_collection(self):
        collection = self.client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine", "dimension": self.dimension},
        )
        stored = (collection.metadata or {}).get("dimension")
        if stored is not None and int(stored) != self.dimension:
            raise VectorStoreError(
                f"Persisted index has dimension {stored}, expected {self.dimension}"
            )
        return collection

    def _load_or_create(self) -> None:
        existed = self.persist_dir.exists()
        try:
            self._connect()
        except Exception as e:
            logger.warning(f"Failed to load vector index at {self.persist_dir}, creating a new one: {e}")
            shutil.rmtree(self.persist_dir, ignore_errors=True)
            self.recovered = True
            try:
                self._connect()
            except Exception as e2:
                raise VectorStoreError(f"Failed to initialize vector index: {e2}") from e2
            return
        if existed:
            logger.info(f"Loaded vector index with {self.count()} vector(s)")
        else:
            logger.info(f"Created new vector index at {self.persist_dir}")

    def add_vector(self, visit_id: int, embedding: list[float]) -> None:
        if len(embedding) != self.dimension:
            raise VectorStoreError(
                f"Embedding has dimension {len(embedding)}, index expects {self.dimension}"
            )
        if not self.contains(visit_id) and self.count() >= self.max_elements:
            raise VectorIndexCapacityError(
                f"Vector index is full ({self.max_elements} vectors); "
                f"cannot add visit {visit_id}"
            )
        try:
            self.collection.upsert(
                ids=[str(visit_id)],
                embeddings=[[float(v) for v in embedding]],
                metadatas=[{"visit_id": int(visit_id)}],
            )
        except Exception as e:
            raise VectorStoreError(f"Failed to add vector for visit {visit_id}: {e}") from e
        logger.debug(f"Added vector for visit {visit_id}")

    def search_with_scores(self, query_embedding: list[float], k: int = 3) -> list[SearchResult]:
        if k <= 0:
            return []
        try:
            if len(query_embedding) != self.dimension:
                raise VectorStoreError(
                    f"Query has dimension {len(query_embedding)}, index expects {self.dimension}"
                )
            total = self.collection.count()
            if total == 0:
                return []
            raw = self.collection.query(
                query_embeddings=[[float(v) for v in query_embedding]],
                n_results=min(k, total),
                include=["distances"],
            )
        except Exception as e:
            logger.error(f"Vector search failed: {e}")
            return []

        results: list[SearchResult] = []
        if raw["ids"] and raw["ids"][0]:
            ids = raw["ids"][0]
            distances = raw["distances"][0] if raw.get("distances") else [0.0] * len(ids)
            for doc_id, dist in zip(ids, distances):
                results.append(SearchResult(visit_id=int(doc_id), distance=float(dist)))
        results.sort(key=lambda r: r.distance)
        return results[:k]

    def contains(self, visit_id: int) -> bool:
        try:
            result = self.collection.get(ids=[str(visit_id)], include=["metadatas"])
        except Exception as e:
            raise VectorStoreError(f"Vector lookup failed: {e}") from e
        return bool(result["ids"])

    def delete(self, visit_ids: list[int]) -> None:
        if not visit_ids:
            return
        try:
            self.collection.delete(ids=[str(v) for v in visit_ids])
        except Exception as e:
            raise VectorStoreError(f"Vector delete failed: {e}") from e

    def count(self) -> int:
        try:
            return self.collection.count()
        except Exception as e:
            raise VectorStoreError(f"Vector count failed: {e}") from e

    def clear(self) -> None:
        try:
            self.client.delete_collection(self.collection_name)
        except Exception as e:
            logger.warning(f"Failed to drop vector collection: {e}")
        try:
            self.collection = self._open_collection()
        except Exception as e:
            raise VectorStoreError(f"Failed to reinitialize vector index: {e}") from e
        logger.info("Cleared and reinitialized vector index")
