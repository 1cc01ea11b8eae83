# compaction.py
# Context compaction: when the message history handed to the agent grows past
# a token budget, fold the older part into one summary message and keep the
# newest messages verbatim.
#
# Layout of a compacted history:
#   [system] + [leading user messages] + [summary] + [recent blocks...]
#
# An assistant message carrying tool calls and the tool responses answering
# it form one block. Blocks are never split between "older" and "recent".

import logging

from pydantic import BaseModel, Field, model_validator

from pcap_agent.agent import Agent
from pcap_agent.errors import AgentError, CompactionError
from pcap_agent.models import SUMMARY_MARKER, Block, Message, Role
from pcap_agent.prompts import SUMMARY_PROMPT, SUMMARY_USER
from pcap_agent.tokens import TokenCounter

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS_BEFORE_SUMMARY = 128 * 1024
DEFAULT_MAX_TOKENS_FOR_RECENT_MESSAGES = 25 * 1024


class CompactionConfig(BaseModel):
    """Token budgets. Non-positive values fall back to the defaults."""

    max_tokens_before_summary: int = Field(default=DEFAULT_MAX_TOKENS_BEFORE_SUMMARY)
    max_tokens_for_recent_messages: int = Field(default=DEFAULT_MAX_TOKENS_FOR_RECENT_MESSAGES)
    system_prompt: str = Field(default=SUMMARY_PROMPT, description="Summarizer prompt template.")

    @model_validator(mode="after")
    def _apply_defaults(self) -> "CompactionConfig":
        if self.max_tokens_before_summary <= 0:
            self.max_tokens_before_summary = DEFAULT_MAX_TOKENS_BEFORE_SUMMARY
        if self.max_tokens_for_recent_messages <= 0:
            self.max_tokens_for_recent_messages = DEFAULT_MAX_TOKENS_FOR_RECENT_MESSAGES
        if self.max_tokens_for_recent_messages > self.max_tokens_before_summary:
            raise ValueError("max_tokens_for_recent_messages must not exceed max_tokens_before_summary")
        return self


class Partition(BaseModel):
    """A message history split into the blocks compaction reasons about."""

    system: Block = Field(default_factory=Block)
    user: Block = Field(default_factory=Block)
    previous_summary: Block = Field(default_factory=Block)
    tail: list[Block] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Partitioning
# ---------------------------------------------------------------------------


def partition(messages: list[Message], tokens: list[int]) -> Partition:
    """Group messages into system, user, prior-summary and tool-call blocks."""
    result = Partition()
    idx = 0
    total = len(messages)

    if idx < total and messages[idx].role is Role.SYSTEM:
        result.system.add(messages[idx], tokens[idx])
        idx += 1

    while idx < total and messages[idx].role is Role.USER:
        result.user.add(messages[idx], tokens[idx])
        idx += 1

    if idx < total and messages[idx].is_summary:
        result.previous_summary.add(messages[idx], tokens[idx])
        idx += 1

    while idx < total:
        message = messages[idx]
        block = Block()
        block.add(message, tokens[idx])
        idx += 1

        if message.role is Role.ASSISTANT and message.tool_calls:
            call_ids = {call.id for call in message.tool_calls}
            while idx < total and messages[idx].role is Role.TOOL:
                response = messages[idx]
                # Unlabelled responses stay with the open call to keep ordering.
                if response.tool_call_id and response.tool_call_id not in call_ids:
                    break
                block.add(response, tokens[idx])
                idx += 1

        result.tail.append(block)

    return result


def split_recent(blocks: list[Block], budget: int) -> tuple[list[Block], list[Block]]:
    """
    Split blocks into (older, recent) scanning newest to oldest.

    The first block that would push the recent total past the budget, and
    every block before it, is older. Recent is always a contiguous suffix.
    """
    recent_tokens = 0
    cut = len(blocks)
    for i in range(len(blocks) - 1, -1, -1):
        if recent_tokens + blocks[i].token_cost > budget:
            break
        recent_tokens += blocks[i].token_cost
        cut = i
    return blocks[:cut], blocks[cut:]


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_message(message: Message) -> str:
    """Flatten a message to '[role]' + content + any tool-call names/arguments."""
    lines: list[str] = []
    if message.role is Role.TOOL:
        lines.append(f"[tool:{message.tool_name}]" if message.tool_name else "[tool]")
    else:
        lines.append(f"[{message.role.value}]")
    if message.content:
        lines.append(message.content)
    if message.role is Role.ASSISTANT:
        for call in message.tool_calls:
            if call.function_name:
                lines.append(f"tool_call: {call.function_name}")
            if call.arguments:
                lines.append(f"args: {call.arguments}")
    return "\n".join(lines) + "\n"


def render_blocks(blocks: list[Block]) -> str:
    return "".join(render_message(m) + "\n" for block in blocks for m in block.messages)


# ---------------------------------------------------------------------------
# Compactor
# ---------------------------------------------------------------------------


class ContextCompactor:
    """
    Keeps an agent's working memory under a token budget.

    Stateless across calls: whether a message is a previous summary is read
    from the marker on the message itself.
    """

    def __init__(self, summarizer: Agent, counter: TokenCounter, config: CompactionConfig | None = None) -> None:
        self._summarizer = summarizer
        self._counter = counter
        self._config = config or CompactionConfig()

    @property
    def config(self) -> CompactionConfig:
        return self._config

    def count(self, messages: list[Message]) -> list[int]:
        try:
            tokens = self._counter.count(messages)
        except Exception as exc:
            raise CompactionError(f"[compaction] token counting failed: {exc}") from exc
        if len(tokens) != len(messages):
            raise CompactionError(
                f"[compaction] token count mismatch, msgNum={len(messages)}, tokenCountNum={len(tokens)}"
            )
        return list(tokens)

    def compact(self, messages: list[Message]) -> list[Message]:
        """Return messages unchanged when under budget, else the compacted history."""
        if not messages:
            return messages

        tokens = self.count(messages)
        total = sum(tokens)
        if total <= self._config.max_tokens_before_summary:
            return messages

        parts = partition(messages, tokens)
        older, recent = split_recent(parts.tail, self._config.max_tokens_for_recent_messages)

        if not older and not parts.previous_summary.messages:
            logger.warning(
                "[compaction] %d tokens over budget but nothing older to fold; leaving history as is",
                total - self._config.max_tokens_before_summary,
            )
            return messages

        logger.info(
            "[compaction] total=%d budget=%d older_blocks=%d recent_blocks=%d",
            total,
            self._config.max_tokens_before_summary,
            len(older),
            len(recent),
        )

        summary = self._summarize(parts, older, recent)

        compacted: list[Message] = []
        compacted.extend(parts.system.messages)
        compacted.extend(parts.user.messages)
        compacted.append(summary)
        for block in recent:
            compacted.extend(block.messages)
        return compacted

    def _summarize(self, parts: Partition, older: list[Block], recent: list[Block]) -> Message:
        prompt = self._config.system_prompt.format(
            system_prompt=render_blocks([parts.system]),
            user_messages=render_blocks([parts.user]),
            previous_summary=render_blocks([parts.previous_summary]),
            older_messages=render_blocks(older),
            recent_messages=render_blocks(recent),
        )
        try:
            reply = self._summarizer.generate([Message.system(prompt), Message.user(SUMMARY_USER)])
        except AgentError as exc:
            raise CompactionError(f"[compaction] summarize failed: {exc}") from exc

        return Message(
            role=Role.ASSISTANT,
            content=reply.content,
            name="summary",
            extras={SUMMARY_MARKER: True},
        )
