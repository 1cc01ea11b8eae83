# config.py
# Settings from the environment (and a .env file, if present).

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from pcap_agent.compaction import (
    DEFAULT_MAX_TOKENS_BEFORE_SUMMARY,
    DEFAULT_MAX_TOKENS_FOR_RECENT_MESSAGES,
    CompactionConfig,
)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "anthropic/claude-3.5-haiku"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str) -> float | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


class Settings(BaseModel):
    api_key: str | None = None
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    db_path: str = "pcap_agent.db"
    max_tokens_before_summary: int = Field(default=DEFAULT_MAX_TOKENS_BEFORE_SUMMARY)
    max_tokens_for_recent: int = Field(default=DEFAULT_MAX_TOKENS_FOR_RECENT_MESSAGES)
    event_log: str | None = Field(default=None, description="JSONL telemetry file, disabled when unset.")
    timeout: float | None = Field(default=None, description="Per-round deadline in seconds.")

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            api_key=(
                os.getenv("PCAP_AGENT_API_KEY")
                or os.getenv("OPENROUTER_API_KEY")
                or os.getenv("OPENAI_API_KEY")
            ),
            base_url=os.getenv("PCAP_AGENT_BASE_URL") or DEFAULT_BASE_URL,
            model=os.getenv("PCAP_AGENT_MODEL") or DEFAULT_MODEL,
            db_path=os.getenv("PCAP_AGENT_DB_PATH") or "pcap_agent.db",
            max_tokens_before_summary=_env_int(
                "PCAP_AGENT_MAX_TOKENS_BEFORE_SUMMARY", DEFAULT_MAX_TOKENS_BEFORE_SUMMARY
            ),
            max_tokens_for_recent=_env_int(
                "PCAP_AGENT_MAX_TOKENS_FOR_RECENT", DEFAULT_MAX_TOKENS_FOR_RECENT_MESSAGES
            ),
            event_log=os.getenv("PCAP_AGENT_EVENT_LOG") or None,
            timeout=_env_float("PCAP_AGENT_TIMEOUT"),
        )

    def compaction(self) -> CompactionConfig:
        return CompactionConfig(
            max_tokens_before_summary=self.max_tokens_before_summary,
            max_tokens_for_recent_messages=self.max_tokens_for_recent,
        )
