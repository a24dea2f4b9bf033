"""Workflow detection over browsing history."""

from history_engine.workflow.analyzer import WorkflowAnalyzer
from history_engine.workflow.export import generate_agent_prompt, generate_playwright_script
from history_engine.workflow.models import WORKFLOW_SCHEMA, Workflow, WorkflowStep

__all__ = [
    "WorkflowAnalyzer",
    "Workflow",
    "WorkflowStep",
    "WORKFLOW_SCHEMA",
    "generate_agent_prompt",
    "generate_playwright_script",
]
