# parsing.py
# Text helpers shared by planner and executor: JSON object extraction from
# free-form model replies, truncation for transport, plan rendering.

import json
from typing import Any

from pydantic import ValidationError

from pcap_agent.errors import ExtractionError
from pcap_agent.models import Plan, StepOutput

FENCE = "```"


def extract_json(text: str) -> str:
    """
    Return the span from the first '{' to the last '}' of a model reply.

    A surrounding fenced code block is stripped first; if the line opening
    the fence mentions "json" that line is dropped as well.
    Raises ExtractionError when no object span exists.
    """
    if FENCE in text:
        start = text.index(FENCE)
        end = text.rindex(FENCE)
        if end > start:
            content = text[start + len(FENCE):end]
            newline = content.find("\n")
            if newline != -1 and "json" in content[:newline].lower():
                content = content[newline + 1:]
            text = content

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or start > end:
        raise ExtractionError("no valid json object found")
    return text[start:end + 1]


def _load_object(raw: str) -> dict[str, Any]:
    # strict=False tolerates literal newlines inside strings
    data = json.loads(raw, strict=False)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def parse_plan(text: str) -> Plan:
    """Extract and validate a Plan. Raises ExtractionError or ValueError."""
    raw = extract_json(text)
    try:
        return Plan.model_validate(_load_object(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ValueError(f"plan content is invalid: {exc} | content: {truncate(raw, 1000)}") from exc


def parse_step_output(text: str) -> StepOutput:
    """Extract and validate a normal-step reply. Raises ExtractionError or ValueError."""
    raw = extract_json(text)
    try:
        return StepOutput.model_validate(_load_object(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ValueError(f"step output is invalid: {exc} | content: {truncate(raw, 1000)}") from exc


def truncate(value: str, max_len: int) -> str:
    if len(value) <= max_len:
        return value
    return value[:max_len] + "..."


def format_plan_overview(plan: Plan) -> str:
    """Render a plan as the markdown overview every executor prompt receives."""
    lines = ["## Investigation Plan", "", f"**Planner Thought**: {plan.thought}", ""]
    for step in plan.steps:
        lines.append(f"- **Step {step.step_id}**: {step.intent}")
    return "\n".join(lines) + "\n"
