"""Data models for detected workflows."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from history_engine.exceptions import WorkflowError

STEP_ACTIONS = ("navigate", "click", "input", "scroll", "wait")
AUTOMATION_LEVELS = ("low", "medium", "high")

WORKFLOW_STEP_SCHEMA = {
    "type": "object",
    "properties": {
        "step_number": {"type": "integer", "description": "Step number in the workflow"},
        "action": {
            "type": "string",
            "description": "Type of action: navigate, click, input, scroll, wait",
        },
        "description": {"type": "string", "description": "Human-readable description of the step"},
        "selector": {"type": "string", "description": "CSS selector for the element (if applicable)"},
        "value": {"type": "string", "description": "Value to input (if applicable)"},
        "url": {"type": "string", "description": "URL to navigate to (if applicable)"},
        "expected_outcome": {"type": "string", "description": "What should happen after this step"},
    },
    "required": ["step_number", "action", "description", "expected_outcome"],
}

WORKFLOW_SCHEMA = {
    "type": "object",
    "properties": {
        "workflow_name": {"type": "string", "description": "Descriptive name for the workflow"},
        "description": {
            "type": "string",
            "description": "Brief description of what this workflow accomplishes",
        },
        "steps": {"type": "array", "items": WORKFLOW_STEP_SCHEMA},
        "repeatability_score": {
            "type": "number",
            "minimum": 0,
            "maximum": 100,
            "description": "How repeatable this workflow is (0-100)",
        },
        "automation_potential": {"type": "string", "enum": list(AUTOMATION_LEVELS)},
        "tags": {"type": "array", "items": {"type": "string"}},
        "error_handling": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Potential errors and how to handle them",
        },
    },
    "required": [
        "workflow_name",
        "description",
        "steps",
        "repeatability_score",
        "automation_potential",
        "tags",
        "error_handling",
    ],
}


@dataclass
class WorkflowStep:
    step_number: int
    action: str  # "navigate" | "click" | "input" | "scroll" | "wait"
    description: str
    expected_outcome: str
    selector: str | None = None
    value: str | None = None
    url: str | None = None

    @classmethod
    def from_dict(cls, raw: dict) -> WorkflowStep:
        try:
            return cls(
                step_number=int(raw["step_number"]),
                action=str(raw["action"]),
                description=str(raw["description"]),
                expected_outcome=str(raw.get("expected_outcome", "")),
                selector=raw.get("selector") or None,
                value=raw.get("value") or None,
                url=raw.get("url") or None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise WorkflowError(f"Invalid workflow step: {e}") from e


@dataclass
class Workflow:
    """A repeatable task inferred from browsing activity."""

    workflow_name: str
    description: str
    steps: list[WorkflowStep] = field(default_factory=list)
    repeatability_score: float = 0
    automation_potential: str = "low"
    tags: list[str] = field(default_factory=list)
    error_handling: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: dict) -> Workflow:
        """Validate a generated object into a Workflow.

        Raises:
            WorkflowError: If required fields are missing or out of range.
        """
        if not isinstance(raw, dict):
            raise WorkflowError(f"Workflow must be an object, got {type(raw).__name__}")
        missing = [key for key in WORKFLOW_SCHEMA["required"] if key not in raw]
        if missing:
            raise WorkflowError(f"Workflow is missing fields: {', '.join(missing)}")

        try:
            score = float(raw["repeatability_score"])
        except (TypeError, ValueError) as e:
            raise WorkflowError(f"Invalid repeatability_score: {raw['repeatability_score']!r}") from e
        if not 0 <= score <= 100:
            raise WorkflowError(f"repeatability_score must be within 0-100, got {score}")

        potential = str(raw["automation_potential"]).lower()
        if potential not in AUTOMATION_LEVELS:
            raise WorkflowError(f"Invalid automation_potential: {raw['automation_potential']!r}")

        steps = raw["steps"] or []
        if not isinstance(steps, list):
            raise WorkflowError("steps must be a list")

        return cls(
            workflow_name=str(raw["workflow_name"]),
            description=str(raw["description"]),
            steps=[WorkflowStep.from_dict(s) for s in steps],
            repeatability_score=score,
            automation_potential=potential,
            tags=[str(t) for t in raw["tags"] or []],
            error_handling=[str(e) for e in raw["error_handling"] or []],
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["steps"] = [
            {k: v for k, v in step.items() if v is not None} for step in data["steps"]
        ]
        return data
