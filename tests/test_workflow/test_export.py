"""Tests for workflow export."""

import ast

from history_engine.workflow.export import generate_agent_prompt, generate_playwright_script
from history_engine.workflow.models import Workflow, WorkflowStep


def _workflow(steps=None):
    return Workflow(
        workflow_name="Download monthly invoice",
        description="Log in to billing and fetch the latest invoice",
        steps=steps if steps is not None else [
            WorkflowStep(1, "navigate", "Open billing", "Billing page loads", url="https://billing.example.com/"),
            WorkflowStep(2, "input", "Enter account", "Account filled", selector="#acct", value="ACME's"),
            WorkflowStep(3, "click", "Download", "PDF downloads", selector="a.invoice"),
            WorkflowStep(4, "scroll", "Scroll to history", "History visible"),
            WorkflowStep(5, "wait", "Wait for file", "File saved"),
        ],
        repeatability_score=90,
        automation_potential="high",
        tags=["billing", "monthly"],
        error_handling=["Session expired: log in again"],
    )


def test_agent_prompt_contains_steps_and_metadata():
    prompt = generate_agent_prompt(_workflow())
    assert prompt.startswith("# Download monthly invoice\n")
    assert "**Repeatability Score:** 90/100" in prompt
    assert "### Step 2: Enter account" in prompt
    assert "**Selector:** `#acct`" in prompt
    assert "**URL:** https://billing.example.com/" in prompt
    assert "## Error Handling" in prompt
    assert "`billing`, `monthly`" in prompt


def test_agent_prompt_omits_empty_sections():
    workflow = _workflow(steps=[])
    workflow.error_handling = []
    workflow.tags = []
    prompt = generate_agent_prompt(workflow)
    assert "## Error Handling" not in prompt
    assert "## Tags" not in prompt


def test_playwright_script_is_valid_python():
    script = generate_playwright_script(_workflow())
    ast.parse(script)
    assert "def test_download_monthly_invoice(page: Page):" in script
    assert "page.goto('https://billing.example.com/')" in script
    assert 'page.fill(\'#acct\', "ACME\'s")' in script
    assert "page.click('a.invoice')" in script
    assert "page.mouse.wheel(0, 500)" in script
    assert "page.wait_for_timeout(1000)" in script


def test_playwright_script_without_actions_still_parses():
    steps = [WorkflowStep(1, "click", "Click something\nunclear", "Nothing")]
    script = generate_playwright_script(_workflow(steps=steps))
    ast.parse(script)
    assert "    pass" in script
