"""Query and control facade over the history engine."""

from __future__ import annotations

import logging
import os
from typing import Any, AsyncIterator

from history_engine.capture.pipeline import CapturePipeline
from history_engine.config import EngineConfig
from history_engine.embeddings.base import AsyncBaseEmbedder
from history_engine.exceptions import EmbeddingError, LLMNotConfiguredError, VectorStoreError
from history_engine.history.models import (
    HistoryStats,
    PageVisit,
    PendingInteraction,
    Session,
    VisitDetails,
)
from history_engine.history.settings import HistorySettings
from history_engine.history.store import HistoryStore
from history_engine.vectorstore.base import BaseVectorIndex
from history_engine.workflow.analyzer import WorkflowAnalyzer
from history_engine.workflow.models import Workflow

logger = logging.getLogger(__name__)


def _requested_dimensions(config: EngineConfig) -> int | None:
    # Only text-embedding-3 models accept a shortened output size.
    if config.embedding_model.startswith("text-embedding-3"):
        return config.vector_dimension
    return None


def build_embedder(config: EngineConfig) -> AsyncBaseEmbedder | None:
    """Embedder for the configured provider, or None when it has no credentials."""
    if config.embedding_provider == "ollama":
        from history_engine.embeddings.ollama import AsyncOllamaEmbedder

        return AsyncOllamaEmbedder(base_url=config.ollama_base_url, model=config.embedding_model)
    if config.embedding_provider == "openai":
        from history_engine.embeddings.openai import AsyncOpenAIEmbedder

        try:
            return AsyncOpenAIEmbedder(
                api_key=os.environ.get("OPENAI_API_KEY", ""),
                model=config.embedding_model,
                dimensions=_requested_dimensions(config),
            )
        except EmbeddingError as e:
            logger.warning(f"Semantic indexing disabled: {e}")
            return None
    logger.warning(f"Unknown embedding provider {config.embedding_provider!r}; semantic indexing disabled")
    return None


def build_llm(config: EngineConfig):
    """LLM client for workflow analysis, or None when no API key is set."""
    from history_engine.llm.client import DEFAULT_MODEL, AsyncLLMClient

    try:
        return AsyncLLMClient(model=config.llm_model or DEFAULT_MODEL, timeout=config.analysis_timeout)
    except LLMNotConfiguredError as e:
        logger.info(f"Workflow analysis unavailable: {e}")
        return None


class HistoryService:
    """Wires store, vector index, embedder, capture pipeline and analyzer.

    Read methods never raise for an empty or unavailable store; they return
    empty results. Analysis methods raise the errors documented on
    ``WorkflowAnalyzer``.
    """

    def __init__(
        self,
        store: HistoryStore,
        vector_index: BaseVectorIndex | None = None,
        embedder: AsyncBaseEmbedder | None = None,
        llm=None,
        settings: HistorySettings | None = None,
        config: EngineConfig | None = None,
        pipeline: CapturePipeline | None = None,
    ):
        self.config = config or EngineConfig()
        self.settings = settings or HistorySettings()
        self.store = store
        self.vector_index = vector_index
        self.embedder = embedder
        self.pipeline = pipeline or CapturePipeline(
            store,
            vector_index=vector_index,
            embedder=embedder,
            settings=self.settings,
            config=self.config,
        )
        self.analyzer = WorkflowAnalyzer(store, llm=llm, timeout=self.config.analysis_timeout)

    @classmethod
    def from_config(cls, config: EngineConfig | None = None) -> HistoryService:
        """Build the default stack under ``config.data_dir``.

        A vector index recovered from a corrupt directory is reconciled
        against the store so lost visits can be embedded again.
        """
        config = config or EngineConfig.from_env()
        config.data_dir.mkdir(parents=True, exist_ok=True)
        settings = HistorySettings.load(config.settings_path)
        store = HistoryStore(config.db_path, snapshot_max_chars=config.snapshot_max_chars)

        vector_index = None
        try:
            from history_engine.vectorstore.chroma import ChromaVectorIndex

            vector_index = ChromaVectorIndex(
                config.vector_dir,
                dimension=config.vector_dimension,
                max_elements=config.vector_capacity,
            )
        except VectorStoreError as e:
            logger.error(f"Vector index unavailable, semantic search disabled: {e}")

        service = cls(
            store,
            vector_index=vector_index,
            embedder=build_embedder(config),
            llm=build_llm(config),
            settings=settings,
            config=config,
        )
        if vector_index is not None and getattr(vector_index, "recovered", False):
            service.reconcile_embeddings()
        return service

    # -- capture control ---------------------------------------------------

    def start(self) -> int | None:
        """Start capturing; must be called from the running event loop."""
        return self.pipeline.start()

    def record_interaction(self, interaction: PendingInteraction | dict) -> None:
        self.pipeline.record_interaction(interaction)

    def close(self) -> None:
        self.pipeline.stop()
        self.store.close()

    async def aclose(self) -> None:
        """Like ``close()``, also releasing the embedder's HTTP client."""
        self.close()
        if self.embedder is not None:
            await self.embedder.aclose()

    # -- queries -----------------------------------------------------------

    def get_recent(self, limit: int = 50) -> list[PageVisit]:
        return self.store.get_recent_history(limit)

    def search(self, query: str, limit: int = 50) -> list[PageVisit]:
        return self.store.search_history(query, limit)

    async def semantic_search(self, query: str, k: int = 10) -> list[PageVisit]:
        """Visits whose content is nearest to ``query``, closest first.

        Returns an empty list when semantic indexing is not configured or the
        query cannot be embedded.
        """
        if not query or k <= 0 or self.vector_index is None or self.embedder is None:
            return []
        try:
            vector = await self.embedder.embed_query(query)
        except Exception as e:
            logger.warning(f"Failed to embed search query: {e}")
            return []
        visits = []
        for visit_id in self.vector_index.search(vector, k):
            visit = self.store.get_visit(visit_id)
            if visit is not None:
                visits.append(visit)
        return visits

    def get_by_date_range(self, start_time: int, end_time: int) -> list[PageVisit]:
        return self.store.get_history_by_date_range(start_time, end_time)

    def get_visit_details(self, visit_id: int) -> VisitDetails | None:
        return self.store.get_visit_details(visit_id)

    def get_sessions(self) -> list[Session]:
        return self.store.get_all_sessions()

    def get_current_session(self) -> Session | None:
        return self.store.get_current_session()

    def get_stats(self) -> HistoryStats:
        stats = self.store.get_stats()
        if self.vector_index is not None:
            try:
                stats.vectors = self.vector_index.count()
            except VectorStoreError as e:
                logger.warning(f"Could not count vectors: {e}")
        return stats

    # -- settings ----------------------------------------------------------

    def get_settings(self) -> HistorySettings:
        return self.settings

    def update_settings(self, changes: dict[str, Any]) -> HistorySettings:
        """Apply and persist settings changes.

        Raises:
            ValueError: If a changed value is invalid; nothing is applied.
        """
        settings = self.settings.updated(changes)
        settings.save(self.config.settings_path)
        self.settings = settings
        self.pipeline.apply_settings(settings)
        logger.info("Updated history settings: %s", ", ".join(sorted(changes)))
        return settings

    # -- maintenance -------------------------------------------------------

    def clear_old(self, days: int | None = None) -> int:
        """Delete history older than ``days`` (default: auto_purge_days) and its vectors."""
        days = self.settings.auto_purge_days if days is None else days
        deleted = self.store.delete_old_history(days)
        if deleted and self.vector_index is not None:
            try:
                self.vector_index.delete(deleted)
            except VectorStoreError as e:
                logger.warning(f"Failed to delete vectors of purged visits: {e}")
        return len(deleted)

    def clear_all_vectors(self) -> None:
        """Drop the whole semantic index; visits become eligible for re-embedding."""
        if self.vector_index is not None:
            self.vector_index.clear()
        for visit_id in self.store.get_embedded_visit_ids():
            self.store.delete_embedding(visit_id)

    def reconcile_embeddings(self) -> int:
        """Forget embedding records whose vector is missing from the index.

        Returns how many records were dropped. Dropped visits are embedded
        again the next time they are captured.
        """
        if self.vector_index is None:
            return 0
        dropped = 0
        for visit_id in self.store.get_embedded_visit_ids():
            try:
                present = self.vector_index.contains(visit_id)
            except VectorStoreError as e:
                logger.warning(f"Reconciliation stopped: {e}")
                break
            if not present:
                self.store.delete_embedding(visit_id)
                dropped += 1
        if dropped:
            logger.warning(f"Dropped {dropped} embedding record(s) with no vector in the index")
        return dropped

    # -- workflows ---------------------------------------------------------

    async def analyze_session(self, session_id: int) -> Workflow:
        return await self.analyzer.analyze_session(session_id)

    async def analyze_recent(self, limit: int = 50) -> Workflow:
        return await self.analyzer.analyze_recent_history(limit)

    def stream_analysis(self, session_id: int) -> AsyncIterator[dict[str, Any]]:
        return self.analyzer.stream_workflow_analysis(session_id)

    def get_cached_workflow(self, session_id: int) -> Workflow | None:
        return self.analyzer.get_cached_workflow(session_id)
