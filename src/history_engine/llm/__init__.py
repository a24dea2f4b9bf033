"""LLM client wrapper (Anthropic Claude)."""

from history_engine.llm.client import DEFAULT_MODEL, AsyncLLMClient

__all__ = ["DEFAULT_MODEL", "AsyncLLMClient"]
