"""Infer repeatable workflows from stored browsing history."""

from __future__ import annotations

import asyncio
import json
import logging
from collections import OrderedDict
from typing import Any, AsyncIterator

from history_engine.exceptions import (
    LLMError,
    LLMNotConfiguredError,
    NothingToAnalyzeError,
    WorkflowError,
)
from history_engine.history.models import Interaction, PageVisit, SessionHistory
from history_engine.history.store import HistoryStore
from history_engine.workflow.models import WORKFLOW_SCHEMA, Workflow

logger = logging.getLogger(__name__)

DEFAULT_ANALYSIS_TIMEOUT = 120.0
DEFAULT_MAX_CONTEXT_CHARS = 30_000
MAX_EXAMPLE_SELECTORS = 3

SYSTEM_PROMPT = (
    "You are an expert at analyzing browsing behavior and identifying "
    "repeatable workflows."
)

ANALYSIS_PROMPT = """Analyze the following browsing activity and identify a repeatable workflow that could be automated:

{context}

Your task:
1. Identify the main workflow or task the user was performing
2. Break down the workflow into clear, actionable steps
3. For each step, specify:
   - The action type (navigate, click, input, scroll, wait)
   - A clear description
   - CSS selector (if clicking or inputting)
   - Expected outcome
4. Assess how repeatable and automatable this workflow is
5. Identify potential errors and how to handle them

Focus on common patterns across page visits, sequences of interactions that
form a coherent task, and steps that are likely to be repeated in the future.

Record the workflow with the record_workflow tool."""

TOOL_NAME = "record_workflow"
TOOL_DESCRIPTION = "Record the detected workflow as a structured object."


def _seconds(duration_ms: int | None) -> str:
    return str(duration_ms // 1000) if duration_ms else "unknown"


def _group_by_type(interactions: list[Interaction]) -> OrderedDict[str, list[Interaction]]:
    groups: OrderedDict[str, list[Interaction]] = OrderedDict()
    for interaction in interactions:
        groups.setdefault(interaction.type, []).append(interaction)
    return groups


class WorkflowAnalyzer:
    """Turns a session (or the latest visits) into a structured ``Workflow``.

    Generation goes through ``AsyncLLMClient.generate_object``: one forced
    tool call whose input schema is ``WORKFLOW_SCHEMA``. The analyzer only
    reads the store, except for caching session analyses.
    """

    def __init__(
        self,
        store: HistoryStore,
        llm=None,
        timeout: float = DEFAULT_ANALYSIS_TIMEOUT,
        max_context_chars: int = DEFAULT_MAX_CONTEXT_CHARS,
    ):
        self.store = store
        self.llm = llm
        self.timeout = timeout
        self.max_context_chars = max_context_chars

    def _require_llm(self):
        if self.llm is None:
            raise LLMNotConfiguredError(
                "Workflow analysis needs an LLM client. Set ANTHROPIC_API_KEY in your environment."
            )
        return self.llm

    def _session_history(self, session_id: int) -> SessionHistory:
        history = self.store.get_session_history(session_id)
        if history is None:
            raise NothingToAnalyzeError(f"Session {session_id} not found")
        if not history.visits:
            raise NothingToAnalyzeError(f"Session {session_id} has no page visits")
        return history

    # -- analysis ----------------------------------------------------------

    async def analyze_session(self, session_id: int) -> Workflow:
        """Analyze one session and cache the result.

        Raises:
            LLMNotConfiguredError: No LLM client is configured.
            NothingToAnalyzeError: Session missing or without visits.
            LLMError: Generation failed or exceeded the timeout.
        """
        llm = self._require_llm()
        history = self._session_history(session_id)
        context = self.build_session_context(history)

        workflow = await self._generate(llm, context)
        self.store.cache_workflow(session_id, json.dumps(workflow.to_dict()))
        logger.info(
            f"Detected workflow {workflow.workflow_name!r} for session {session_id} "
            f"({len(workflow.steps)} steps)"
        )
        return workflow

    async def analyze_recent_history(self, limit: int = 50) -> Workflow:
        """Analyze the ``limit`` most recent visits across sessions (not cached)."""
        llm = self._require_llm()
        visits = self.store.get_recent_history(limit)
        if not visits:
            raise NothingToAnalyzeError("No history to analyze")
        return await self._generate(llm, self.build_visits_context(visits))

    async def stream_workflow_analysis(self, session_id: int) -> AsyncIterator[dict[str, Any]]:
        """Yield growing partial workflow dicts from one streamed request."""
        llm = self._require_llm()
        history = self._session_history(session_id)
        prompt = self.build_analysis_prompt(self.build_session_context(history))
        async for partial in llm.stream_object(
            system_prompt=SYSTEM_PROMPT,
            prompt=prompt,
            schema=WORKFLOW_SCHEMA,
            name=TOOL_NAME,
            description=TOOL_DESCRIPTION,
        ):
            yield partial

    async def _generate(self, llm, context: str) -> Workflow:
        try:
            result = await asyncio.wait_for(
                llm.generate_object(
                    system_prompt=SYSTEM_PROMPT,
                    prompt=self.build_analysis_prompt(context),
                    schema=WORKFLOW_SCHEMA,
                    name=TOOL_NAME,
                    description=TOOL_DESCRIPTION,
                    temperature=0.3,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise LLMError(f"Workflow analysis timed out after {self.timeout}s") from e

        try:
            return Workflow.from_dict(result["object"])
        except WorkflowError as e:
            raise LLMError(f"Model returned an invalid workflow: {e}") from e

    def get_cached_workflow(self, session_id: int) -> Workflow | None:
        entry = self.store.get_workflow_cache(session_id)
        if entry is None:
            return None
        try:
            return Workflow.from_dict(json.loads(entry.workflow_data))
        except (json.JSONDecodeError, WorkflowError) as e:
            logger.warning(f"Ignoring unreadable cached workflow for session {session_id}: {e}")
            return None

    # -- context -----------------------------------------------------------

    def build_session_context(self, history: SessionHistory) -> str:
        session = history.session
        if session.end_time is not None:
            duration = str((session.end_time - session.start_time) // 1000)
        else:
            duration = "ongoing"
        parts = [
            f"Session ID: {session.id}\n",
            f"Duration: {duration} seconds\n\n",
            f"# Page Visits ({len(history.visits)})\n\n",
        ]
        for visit in history.visits:
            parts.append(self._visit_block(visit, with_examples=True))
        if history.tab_events:
            parts.append("\n# Tab Events\n")
            parts.extend(f"- {e.action} tab {e.tab_id}\n" for e in history.tab_events)
        return self._bounded(parts)

    def build_visits_context(self, visits: list[PageVisit]) -> str:
        parts = [f"# Recent Browsing Activity ({len(visits)} visits)\n\n"]
        for visit in visits:
            parts.append(self._visit_block(visit, with_examples=False))
        return self._bounded(parts)

    def _visit_block(self, visit: PageVisit, with_examples: bool) -> str:
        lines = [
            f"## {visit.title}",
            f"URL: {visit.url}",
            f"Duration: {_seconds(visit.duration)} seconds",
        ]
        interactions = self.store.get_visit_interactions(visit.id)
        if interactions:
            lines.append(f"Interactions: {len(interactions)}")
            for kind, group in _group_by_type(interactions).items():
                line = f"  - {kind}: {len(group)}"
                if with_examples:
                    selectors = [i.selector for i in group if i.selector][:MAX_EXAMPLE_SELECTORS]
                    if selectors:
                        line += f" (examples: {', '.join(selectors)})"
                lines.append(line)
        return "\n".join(lines) + "\n\n"

    def _bounded(self, parts: list[str]) -> str:
        out: list[str] = []
        used = 0
        for part in parts:
            if used + len(part) > self.max_context_chars:
                out.append("\n[... truncated ...]\n")
                break
            out.append(part)
            used += len(part)
        return "".join(out)

    def build_analysis_prompt(self, context: str) -> str:
        return ANALYSIS_PROMPT.format(context=context)
