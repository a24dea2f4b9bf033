"""Tests for exception hierarchy."""

from history_engine.exceptions import (
    HistoryEngineError,
    StorageError,
    StorageUnavailableError,
    VectorStoreError,
    VectorIndexCapacityError,
    EmbeddingError,
    LLMError,
    LLMNotConfiguredError,
    WorkflowError,
    NothingToAnalyzeError,
)


def test_all_inherit_from_base():
    for exc_class in [
        StorageError, StorageUnavailableError,
        VectorStoreError, VectorIndexCapacityError,
        EmbeddingError,
        LLMError, LLMNotConfiguredError,
        WorkflowError, NothingToAnalyzeError,
    ]:
        assert issubclass(exc_class, HistoryEngineError)


def test_storage_hierarchy():
    assert issubclass(StorageUnavailableError, StorageError)


def test_vectorstore_hierarchy():
    assert issubclass(VectorIndexCapacityError, VectorStoreError)


def test_llm_and_workflow_hierarchy():
    assert issubclass(LLMNotConfiguredError, LLMError)
    assert issubclass(NothingToAnalyzeError, WorkflowError)
    assert not issubclass(NothingToAnalyzeError, LLMError)


def test_exception_message():
    e = NothingToAnalyzeError("No history to analyze")
    assert str(e) == "No history to analyze"
