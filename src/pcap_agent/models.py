# models.py
# Data contracts for the plan-then-execute investigation pipeline and the
# context compactor. No business logic lives here: schema and validation only.

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

# Carried in Message.extras on the assistant message produced by compaction.
SUMMARY_MARKER = "_agent_middleware_summary_message"


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


class Step(BaseModel):
    """A single investigative step in a plan."""

    model_config = {"frozen": True}

    step_id: int = Field(..., description="Planner-assigned id, unique within a plan.")
    intent: str = Field(..., description="What the executor should find out in this step.")


class Plan(BaseModel):
    """A complete investigation plan emitted by the planner."""

    model_config = {"frozen": True}

    thought: str = Field(default="", description="Planner rationale. Advisory only.")
    table_schema: str = Field(default="", description="Opaque context blob handed to executors.")
    steps: list[Step] = Field(default_factory=list)


class StepOutput(BaseModel):
    """Structured reply of a normal executor step."""

    findings: str = ""
    my_actions: str = ""

    @field_validator("findings", "my_actions", mode="before")
    @classmethod
    def _flex_string(cls, value: Any) -> str:
        return flex_string(value)


def flex_string(value: Any) -> str:
    """
    Normalise a field that may arrive as a string or a list of strings.

    Lists are joined with newlines. Anything else keeps its raw JSON text
    rather than failing the decode.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return "\n".join(value)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


class PlanState(BaseModel):
    """Mutable per-run state. Owned by a single Executor run."""

    plan: Plan
    table_schema: str = ""
    current_step_index: int = 0
    research_findings: str = ""
    operation_log: list[str] = Field(default_factory=list)
    end_output: str = ""

    @property
    def remaining(self) -> int:
        return len(self.plan.steps) - self.current_step_index


class Result(BaseModel):
    """Terminal output of one Executor run."""

    model_config = {"frozen": True}

    report: str
    findings: str = ""
    operation_log: str = ""


class SessionHistory(BaseModel):
    """Context folded from every previous round of a session."""

    findings: str = ""
    operation_log: str = ""
    previous_report: str = ""
    all_reports: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.findings or self.operation_log or self.previous_report)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCall(BaseModel):
    id: str = ""
    function_name: str = ""
    arguments: str = ""


class Message(BaseModel):
    """One chat message as exchanged with the collaborator agent."""

    role: Role
    content: str = ""
    name: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: str = ""
    tool_name: str = ""
    extras: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_summary(self) -> bool:
        return self.role is Role.ASSISTANT and SUMMARY_MARKER in self.extras

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: list[ToolCall] | None = None) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tool_calls or [])

    @classmethod
    def tool(cls, content: str, tool_call_id: str = "", tool_name: str = "") -> "Message":
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id, tool_name=tool_name)


class Block(BaseModel):
    """An atomic run of messages the compactor never splits."""

    messages: list[Message] = Field(default_factory=list)
    token_cost: int = 0

    def add(self, message: Message, tokens: int) -> None:
        self.messages.append(message)
        self.token_cost += tokens
