# events.py
# Lifecycle events for observers (terminal printer, telemetry sinks).
#
# Publication is best-effort: each subscriber owns a bounded queue and events
# are dropped for a subscriber that cannot keep up. The producer never blocks,
# and nothing an observer does can change the outcome of a round.

import json
import logging
import queue
import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_BUFFER = 256
FINDINGS_TRANSPORT_LIMIT = 2000
REPORT_TRANSPORT_LIMIT = 5000


class EventType(str, Enum):
    PLAN_CREATED = "plan.created"
    PLAN_ERROR = "plan.error"
    STEP_STARTED = "step.started"
    STEP_FINDINGS = "step.findings"
    STEP_COMPLETED = "step.completed"
    STEP_ERROR = "step.error"
    REPORT_GENERATED = "report.generated"
    INFO = "info"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class StepInfo(BaseModel):
    step_id: int
    intent: str


class PlanCreatedData(BaseModel):
    thought: str
    total_steps: int
    steps: list[StepInfo]


class StepStartedData(BaseModel):
    step_id: int
    intent: str
    total_steps: int
    final: bool = False


class StepFindingsData(BaseModel):
    step_id: int
    intent: str
    findings: str
    actions: str


class StepCompletedData(BaseModel):
    step_id: int
    next_index: int


class ReportData(BaseModel):
    report: str
    content_length: int
    total_steps: int
    duration_ms: int


class ErrorData(BaseModel):
    phase: str
    message: str
    step_id: int | None = None


class InfoData(BaseModel):
    message: str


class Event(BaseModel):
    """Unified event structure delivered to every subscriber."""

    type: EventType
    session_id: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def create(cls, event_type: EventType, payload: BaseModel, session_id: str = "") -> "Event":
        return cls(type=event_type, session_id=session_id, data=payload.model_dump())


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

_CLOSED = object()


class Subscription:
    """A subscriber's view of the channel. Iterating ends when the channel closes."""

    def __init__(self, buffer: int) -> None:
        self._queue: queue.Queue = queue.Queue(maxsize=buffer)
        self.dropped = 0

    def _offer(self, event: Event) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1

    def _close(self) -> None:
        # The sentinel must get through even when the buffer is full.
        while True:
            try:
                self._queue.put_nowait(_CLOSED)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def get(self, timeout: float | None = None) -> Event | None:
        """Next event, or None once the channel has closed. Raises queue.Empty on timeout."""
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            self._close()
            return None
        return item

    def __iter__(self) -> Iterator[Event]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event


class EventChannel:
    """Fan-out publisher. Thread-safe; emit() never blocks."""

    def __init__(self, buffer: int = DEFAULT_BUFFER) -> None:
        self._buffer = buffer if buffer > 0 else DEFAULT_BUFFER
        self._subscribers: list[Subscription] = []
        self._lock = threading.Lock()
        self._closed = False

    def emit(self, event: Event) -> None:
        with self._lock:
            if self._closed:
                return
            subscribers = list(self._subscribers)
        for sub in subscribers:
            sub._offer(event)

    def publish(self, event_type: EventType, payload: BaseModel, session_id: str = "") -> None:
        self.emit(Event.create(event_type, payload, session_id))

    def subscribe(self, buffer: int | None = None) -> Subscription:
        sub = Subscription(buffer or self._buffer)
        with self._lock:
            if self._closed:
                sub._close()
            else:
                self._subscribers.append(sub)
        return sub

    def bind(self, session_id: str) -> "BoundChannel":
        return BoundChannel(self, session_id)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscribers = list(self._subscribers)
        for sub in subscribers:
            sub._close()

    @property
    def closed(self) -> bool:
        return self._closed


class BoundChannel:
    """Stamps a session id on everything published through it."""

    def __init__(self, channel: EventChannel, session_id: str) -> None:
        self._channel = channel
        self.session_id = session_id

    def publish(self, event_type: EventType, payload: BaseModel, session_id: str = "") -> None:
        self._channel.publish(event_type, payload, session_id or self.session_id)

    def emit(self, event: Event) -> None:
        if not event.session_id:
            event = event.model_copy(update={"session_id": self.session_id})
        self._channel.emit(event)


class NullChannel:
    """Discards everything."""

    def publish(self, event_type: EventType, payload: BaseModel, session_id: str = "") -> None:
        return None

    def emit(self, event: Event) -> None:
        return None


# ---------------------------------------------------------------------------
# Telemetry sink
# ---------------------------------------------------------------------------


class JsonlEventSink:
    """
    Appends every event as one JSON line to a file, on a daemon thread.

    A failed write degrades to a logged warning; the round carries on.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._thread: threading.Thread | None = None
        self.written = 0

    def start(self, channel: EventChannel) -> None:
        sub = channel.subscribe()
        self._thread = threading.Thread(target=self._drain, args=(sub,), name="jsonl-event-sink", daemon=True)
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _drain(self, sub: Subscription) -> None:
        for event in sub:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as fh:
                    fh.write(json.dumps(event.model_dump(mode="json"), ensure_ascii=False) + "\n")
                self.written += 1
            except OSError as exc:
                logger.warning("[JsonlEventSink] failed to write event (type=%s): %s", event.type.value, exc)
