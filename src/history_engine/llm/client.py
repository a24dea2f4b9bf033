"""Claude API client for schema-constrained structured generation."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, AsyncIterator

from history_engine.exceptions import LLMError, LLMNotConfiguredError

logger = logging.getLogger(__name__)


DEFAULT_MODEL = os.environ.get("DEFAULT_LLM_MODEL", "claude-haiku-4-5-20251001")


def _object_request(
    model: str,
    system_prompt: str,
    prompt: str,
    schema: dict,
    name: str,
    description: str,
    max_tokens: int,
    temperature: float,
) -> dict:
    """Messages API arguments that force one ``name`` tool call shaped by ``schema``."""
    tool = {
        "name": name,
        "description": description or f"Record the {name} object.",
        "input_schema": schema,
    }
    return {
        "model": model,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "system": system_prompt,
        "messages": [{"role": "user", "content": prompt}],
        "tools": [tool],
        "tool_choice": {"type": "tool", "name": name},
    }


class AsyncLLMClient:
    """Asynchronous wrapper around the Anthropic SDK.

    Structured objects are obtained by forcing a single tool call whose
    ``input_schema`` is the requested JSON schema; the tool input is the
    object.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        max_retries: int = 3,
        timeout: float = 120.0,
    ):
        if not api_key and not os.environ.get("ANTHROPIC_API_KEY"):
            raise LLMNotConfiguredError(
                "Anthropic API key is required. "
                "Pass it directly or set ANTHROPIC_API_KEY in your environment."
            )
        try:
            from anthropic import AsyncAnthropic
        except ImportError:
            raise ImportError(
                "anthropic is required for AsyncLLMClient. "
                "Install with: pip install history-engine[llm]"
            )
        self._client = AsyncAnthropic(api_key=api_key or None, timeout=timeout)
        self.model = model
        self.max_retries = max_retries

    @property
    def client(self):
        """Access the underlying AsyncAnthropic SDK client for advanced usage."""
        return self._client

    async def generate_object(
        self,
        system_prompt: str,
        prompt: str,
        schema: dict,
        name: str,
        description: str = "",
        max_tokens: int = 4096,
        temperature: float = 0.3,
        model: str | None = None,
    ) -> dict:
        """Request one object matching ``schema``.

        Returns:
            dict with keys: object, input_tokens, output_tokens, model
        """
        from anthropic import APIError, APITimeoutError, RateLimitError

        use_model = model or self.model
        request = _object_request(
            use_model, system_prompt, prompt, schema, name, description, max_tokens, temperature
        )
        for attempt in range(self.max_retries):
            try:
                response = await self._client.messages.create(**request)
                for block in response.content:
                    if block.type == "tool_use" and block.name == name:
                        return {
                            "object": dict(block.input),
                            "input_tokens": response.usage.input_tokens,
                            "output_tokens": response.usage.output_tokens,
                            "model": use_model,
                        }
                raise LLMError(f"Claude returned no {name} object (stop_reason={response.stop_reason})")
            except RateLimitError:
                wait = 2 ** (attempt + 1)
                logger.warning(f"Rate limited, retrying in {wait}s (attempt {attempt + 1})")
                await asyncio.sleep(wait)
            except APITimeoutError:
                wait = 2 ** attempt
                logger.warning(f"API timeout, retrying in {wait}s (attempt {attempt + 1})")
                await asyncio.sleep(wait)
            except APIError as e:
                raise LLMError(f"Claude API error: {e}") from e

        raise LLMError(f"Failed after {self.max_retries} retries")

    async def stream_object(
        self,
        system_prompt: str,
        prompt: str,
        schema: dict,
        name: str,
        description: str = "",
        max_tokens: int = 4096,
        temperature: float = 0.3,
        model: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Stream one object matching ``schema`` as growing partial dicts.

        Each yielded dict is a snapshot of everything parsed so far. Retries
        only happen before the first snapshot has been yielded.
        """
        from anthropic import APIError, APITimeoutError, RateLimitError

        request = _object_request(
            model or self.model, system_prompt, prompt, schema, name, description, max_tokens, temperature
        )
        yielded = False
        for attempt in range(self.max_retries):
            try:
                async with self._client.messages.stream(**request) as stream:
                    async for event in stream:
                        if event.type != "input_json":
                            continue
                        snapshot = event.snapshot
                        if isinstance(snapshot, dict) and snapshot:
                            yielded = True
                            yield dict(snapshot)
                return
            except (RateLimitError, APITimeoutError) as e:
                if yielded:
                    raise LLMError(f"Claude stream interrupted: {e}") from e
                wait = 2 ** (attempt + 1)
                logger.warning(f"Stream failed ({e}), retrying in {wait}s (attempt {attempt + 1})")
                await asyncio.sleep(wait)
            except APIError as e:
                raise LLMError(f"Claude API error: {e}") from e

        raise LLMError(f"Failed after {self.max_retries} retries")
