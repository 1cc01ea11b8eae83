# pipeline.py
# One round of an investigation: load history → plan → execute → save.
#
# Rounds of a session run one after another; the save of round N completes
# before round N+1 reads history.

import logging

from pydantic import BaseModel

from pcap_agent.agent import CancelToken
from pcap_agent.errors import LedgerError, PcapAgentError
from pcap_agent.events import ErrorData, EventType, InfoData, NullChannel
from pcap_agent.executor import Executor
from pcap_agent.ledger import Session
from pcap_agent.models import Plan, Result

logger = logging.getLogger(__name__)


class RoundOutcome(BaseModel):
    """What the caller sees after a round. report is None when the round failed."""

    query: str
    report: str | None = None
    plan: Plan | None = None
    result: Result | None = None
    round_num: int | None = None
    error: str | None = None
    ledger_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.report is not None


class Investigation:
    """Drives the rounds of one session."""

    def __init__(self, planner, executor: Executor, session: Session, channel=None) -> None:
        self._planner = planner
        self._executor = executor
        self._session = session
        self._channel = channel or NullChannel()

    @property
    def session(self) -> Session:
        return self._session

    def run_round(self, query: str, cancel: CancelToken | None = None) -> RoundOutcome:
        """
        Run one full round. Never raises for a failed round: the outcome
        carries the cause instead. A round that fails before a report exists
        is not saved.
        """
        try:
            history = self._session.history()
            plan = self._planner.run(query, self._session.pcap_path, history, cancel)
            result = self._executor.run(plan, query, self._session.pcap_path, cancel)
        except PcapAgentError as exc:
            message = f"no report produced for this query: {exc}"
            logger.error("[Round] %s", message)
            self._channel.publish(EventType.ERROR, ErrorData(phase="round", message=str(exc)))
            return RoundOutcome(query=query, error=message)

        outcome = RoundOutcome(query=query, report=result.report, plan=plan, result=result)
        try:
            outcome.round_num = self._session.save_round(query, plan, result)
        except LedgerError as exc:
            logger.error("[Round] report produced but not saved: %s", exc)
            self._channel.publish(EventType.ERROR, ErrorData(phase="ledger", message=str(exc)))
            outcome.ledger_error = str(exc)
        else:
            self._channel.publish(EventType.INFO, InfoData(message=f"round {outcome.round_num} saved"))
        return outcome
