# tokens.py
# Per-message token estimators used by the context compactor.

from typing import Protocol

import tiktoken

from pcap_agent.models import Message


class TokenCounter(Protocol):
    def count(self, messages: list[Message]) -> list[int]:
        """Return one token count per message, in order."""
        ...


def _message_text(message: Message) -> str:
    """Role, content and tool-call name/arguments: everything the model is billed for."""
    parts: list[str] = []
    if message.role:
        parts.append(message.role.value)
    if message.content:
        parts.append(message.content)
    for call in message.tool_calls:
        if call.function_name:
            parts.append(call.function_name)
        if call.arguments:
            parts.append(call.arguments)
    if not parts:
        return ""
    return "\n".join(parts) + "\n"


class TiktokenCounter:
    """Counts tokens with a tiktoken encoding (cl100k_base by default)."""

    def __init__(self, encoding: str = "cl100k_base") -> None:
        self._encoding_name = encoding
        self._encoding: tiktoken.Encoding | None = None

    def _get_encoding(self) -> tiktoken.Encoding:
        if self._encoding is None:
            self._encoding = tiktoken.get_encoding(self._encoding_name)
        return self._encoding

    def count(self, messages: list[Message]) -> list[int]:
        encoding = self._get_encoding()
        counts: list[int] = []
        for message in messages:
            text = _message_text(message)
            counts.append(len(encoding.encode(text, disallowed_special=())) if text else 0)
        return counts


class CharRatioCounter:
    """
    Approximate counter: ~4 characters per token plus a per-message overhead.

    Tends to slightly overcount, which is the safe side for a budget check.
    """

    def __init__(self, chars_per_token: int = 4, overhead: int = 4) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self._ratio = chars_per_token
        self._overhead = overhead

    def count(self, messages: list[Message]) -> list[int]:
        counts: list[int] = []
        for message in messages:
            text = _message_text(message)
            counts.append(self._overhead + len(text) // self._ratio if text else 0)
        return counts
