"""Render workflows for AI agents and browser automation."""

from __future__ import annotations

from history_engine.workflow.models import Workflow


def generate_agent_prompt(workflow: Workflow) -> str:
    """Markdown instructions an AI agent can follow to repeat the workflow."""
    lines = [
        f"# {workflow.workflow_name}",
        "",
        workflow.description,
        "",
        f"**Repeatability Score:** {workflow.repeatability_score:g}/100",
        f"**Automation Potential:** {workflow.automation_potential}",
        "",
        "## Steps",
        "",
    ]
    for step in workflow.steps:
        lines.append(f"### Step {step.step_number}: {step.description}")
        lines.append("")
        lines.append(f"**Action:** {step.action}")
        if step.url:
            lines.append(f"**URL:** {step.url}")
        if step.selector:
            lines.append(f"**Selector:** `{step.selector}`")
        if step.value:
            lines.append(f"**Value:** {step.value}")
        lines.append(f"**Expected Outcome:** {step.expected_outcome}")
        lines.append("")

    if workflow.error_handling:
        lines.append("## Error Handling")
        lines.append("")
        lines.extend(f"- {item}" for item in workflow.error_handling)
        lines.append("")

    if workflow.tags:
        lines.append("## Tags")
        lines.append("")
        lines.append(", ".join(f"`{tag}`" for tag in workflow.tags))

    return "\n".join(lines) + "\n"


def _function_name(name: str) -> str:
    slug = "".join(ch if ch.isalnum() else "_" for ch in name.lower()).strip("_")
    while "__" in slug:
        slug = slug.replace("__", "_")
    return f"test_{slug or 'workflow'}"


def generate_playwright_script(workflow: Workflow) -> str:
    """A pytest-playwright skeleton replaying the workflow's steps.

    Steps missing the selector, url or value they need are emitted as
    comments only.
    """
    lines = [
        "from playwright.sync_api import Page",
        "",
        "",
        f"def {_function_name(workflow.workflow_name)}(page: Page):",
    ]
    body = len(lines)
    for step in workflow.steps:
        lines.append(f"    # Step {step.step_number}: {' '.join(step.description.split())}")
        if step.action == "navigate" and step.url:
            lines.append(f"    page.goto({step.url!r})")
        elif step.action == "click" and step.selector:
            lines.append(f"    page.click({step.selector!r})")
        elif step.action == "input" and step.selector and step.value:
            lines.append(f"    page.fill({step.selector!r}, {step.value!r})")
        elif step.action == "scroll":
            lines.append("    page.mouse.wheel(0, 500)")
        elif step.action == "wait":
            lines.append("    page.wait_for_timeout(1000)")
        lines.append("")

    if not any(line.strip() and not line.lstrip().startswith("#") for line in lines[body:]):
        lines.append("    pass")
    return "\n".join(lines).rstrip() + "\n"
