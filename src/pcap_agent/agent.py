# agent.py
# The collaborator agent seam. Planner and executor only ever see the Agent
# protocol; OpenAIChatAgent adapts any OpenAI-compatible endpoint to it.

import json
import logging
import threading
import time
from typing import Any, Callable, Protocol

from openai import OpenAI, OpenAIError

from pcap_agent.errors import AgentError, Cancelled
from pcap_agent.models import Message, Role, ToolCall

logger = logging.getLogger(__name__)

MessageRewriter = Callable[[list[Message]], list[Message]]


class Agent(Protocol):
    def generate(self, messages: list[Message]) -> Message:
        """Return the agent's reply to a message list. Raises AgentError."""
        ...


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class CancelToken:
    """
    Cooperative cancellation with an optional deadline.

    Checked at every agent invocation boundary; the agent call itself is the
    only long-running operation in a round.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self, where: str = "") -> None:
        if self._event.is_set():
            raise Cancelled(f"cancelled{' during ' + where if where else ''}")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise Cancelled(f"deadline exceeded{' during ' + where if where else ''}")


def invoke(agent: Agent, messages: list[Message], label: str, cancel: CancelToken | None = None) -> Message:
    """Call the agent between two cancellation checkpoints, logging latency."""
    if cancel is not None:
        cancel.raise_if_cancelled(label)
    logger.info("[%s] input messages count: %d", label, len(messages))
    started = time.monotonic()
    try:
        reply = agent.generate(messages)
    except AgentError:
        logger.error("[%s] agent failed after %dms", label, (time.monotonic() - started) * 1000)
        raise
    elapsed_ms = int((time.monotonic() - started) * 1000)
    logger.info("[%s] output (%dms) length=%d", label, elapsed_ms, len(reply.content))
    if cancel is not None:
        cancel.raise_if_cancelled(label)
    return reply


# ---------------------------------------------------------------------------
# OpenAI-compatible adapter
# ---------------------------------------------------------------------------


def to_openai(message: Message) -> dict[str, Any]:
    """Convert a Message to a chat-completions message dict."""
    payload: dict[str, Any] = {"role": message.role.value, "content": message.content}
    if message.name:
        payload["name"] = message.name
    if message.role is Role.ASSISTANT and message.tool_calls:
        payload["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.function_name, "arguments": call.arguments},
            }
            for call in message.tool_calls
        ]
    if message.role is Role.TOOL:
        payload["tool_call_id"] = message.tool_call_id
    return payload


def from_openai(choice_message: Any) -> Message:
    """Convert a chat-completions response message back into a Message."""
    tool_calls = [
        ToolCall(
            id=call.id or "",
            function_name=call.function.name or "",
            arguments=call.function.arguments or "",
        )
        for call in (getattr(choice_message, "tool_calls", None) or [])
    ]
    return Message(
        role=Role.ASSISTANT,
        content=(choice_message.content or "").strip(),
        tool_calls=tool_calls,
    )


class OpenAIChatAgent:
    """
    Agent backed by an OpenAI-compatible chat-completions endpoint.

    Example:
        agent = OpenAIChatAgent(
            model="anthropic/claude-3.5-haiku",
            base_url="https://openrouter.ai/api/v1",
            api_key=os.getenv("OPENROUTER_API_KEY"),
        )
        reply = agent.generate([Message.user("hello")])

    An optional message_rewriter (typically ContextCompactor.compact) runs on
    every message list before it is sent.
    """

    def __init__(
        self,
        model: str,
        base_url: str | None = None,
        api_key: str | None = None,
        client: OpenAI | None = None,
        tools: list[dict[str, Any]] | None = None,
        message_rewriter: MessageRewriter | None = None,
    ) -> None:
        self._model = model
        self._client = client or OpenAI(base_url=base_url, api_key=api_key)
        self._tools = tools or []
        self._rewriter = message_rewriter

    @property
    def model(self) -> str:
        return self._model

    def generate(self, messages: list[Message]) -> Message:
        if self._rewriter is not None:
            messages = self._rewriter(messages)

        request: dict[str, Any] = {
            "model": self._model,
            "messages": [to_openai(m) for m in messages],
        }
        if self._tools:
            request["tools"] = self._tools

        try:
            response = self._client.chat.completions.create(**request)
        except OpenAIError as exc:
            raise AgentError(f"chat completion failed ({self._model}): {exc}") from exc

        if not response.choices:
            raise AgentError(f"chat completion returned no choices ({self._model})")

        reply = from_openai(response.choices[0].message)
        if reply.tool_calls:
            logger.debug(
                "tool calls requested: %s",
                json.dumps([call.function_name for call in reply.tool_calls]),
            )
        return reply
