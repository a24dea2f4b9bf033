"""Unified exception hierarchy for history-engine."""


class HistoryEngineError(Exception):
    """Base exception for all history-engine errors."""


# Storage
class StorageError(HistoryEngineError):
    """Base exception for history database operations."""


class StorageUnavailableError(StorageError):
    """The history database is not open, so no id can be produced."""


# VectorStore
class VectorStoreError(HistoryEngineError):
    """Base exception for vector index operations."""


class VectorIndexCapacityError(VectorStoreError):
    """The vector index is full."""


# Embeddings
class EmbeddingError(HistoryEngineError):
    """Base exception for embedding operations."""


# LLM
class LLMError(HistoryEngineError):
    """Base exception for LLM client operations."""


class LLMNotConfiguredError(LLMError):
    """No structured-generation capability is configured."""


# Workflow
class WorkflowError(HistoryEngineError):
    """Base exception for workflow analysis."""


class NothingToAnalyzeError(WorkflowError):
    """The requested session or history window holds no page visits."""
