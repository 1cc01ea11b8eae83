# planner.py
# Turns a user query (plus the context of earlier rounds) into a Plan with a
# single agent call. Each run is independent; nothing is kept between calls.

import logging

from pcap_agent.agent import Agent, CancelToken, invoke
from pcap_agent.errors import AgentError, Cancelled, CompactionError, ExtractionError, PlanError
from pcap_agent.events import EventType, ErrorData, NullChannel, PlanCreatedData, StepInfo
from pcap_agent.models import Message, Plan, SessionHistory
from pcap_agent.parsing import parse_plan, truncate
from pcap_agent.prompts import HISTORY_HEADER, PLANNER_PROMPT, PLANNER_USER

logger = logging.getLogger(__name__)


def build_history_section(history: SessionHistory | None) -> str:
    """Format earlier rounds as a markdown section. Empty when there is nothing to say."""
    if history is None:
        return ""

    parts: list[str] = []
    if history.findings:
        parts.append("## Previous Research Findings\n\n" + history.findings)
    if history.operation_log:
        parts.append("## Previous Operation Log\n\n" + history.operation_log)
    if history.previous_report:
        parts.append("## Most Recent Report\n\n" + history.previous_report)

    if not parts:
        return ""
    return f"{HISTORY_HEADER}\n\n" + "\n\n---\n\n".join(parts)


class Planner:
    def __init__(self, agent: Agent, channel=None) -> None:
        self._agent = agent
        self._channel = channel or NullChannel()

    def build_messages(self, user_query: str, pcap_path: str, history: SessionHistory | None = None) -> list[Message]:
        user_input = user_query
        section = build_history_section(history)
        if section:
            user_input = f"{section}\n\n---\n\n**Current Query:**\n{user_query}"
        return [
            Message.system(PLANNER_PROMPT.format(pcap_path=pcap_path)),
            Message.user(PLANNER_USER.format(user_input=user_input)),
        ]

    def run(
        self,
        user_query: str,
        pcap_path: str,
        history: SessionHistory | None = None,
        cancel: CancelToken | None = None,
    ) -> Plan:
        """
        Produce a plan for the query.

        Raises PlanError when the agent or the compactor fails, or when its
        reply holds no decodable plan. Cancellation propagates unchanged.
        """
        messages = self.build_messages(user_query, pcap_path, history)
        try:
            reply = invoke(self._agent, messages, "Planner", cancel)
            plan = parse_plan(reply.content)
        except Cancelled as exc:
            self._fail(str(exc))
            raise
        except AgentError as exc:
            self._fail(str(exc))
            raise PlanError(f"[planner] agent invocation failed: {exc}") from exc
        except CompactionError as exc:
            self._fail(str(exc))
            raise PlanError(f"[planner] context compaction failed: {exc}") from exc
        except ExtractionError as exc:
            self._fail(f"extract json failed: {exc}")
            raise PlanError(
                f"[planner] extract json from planner output: {exc} | content: {truncate(reply.content, 1000)}"
            ) from exc
        except ValueError as exc:
            self._fail(f"unmarshal plan failed: {exc}")
            raise PlanError(f"[planner] unmarshal plan: {exc}") from exc

        logger.info("[Planner] plan parsed: %d steps", len(plan.steps))
        self._channel.publish(
            EventType.PLAN_CREATED,
            PlanCreatedData(
                thought=plan.thought,
                total_steps=len(plan.steps),
                steps=[StepInfo(step_id=s.step_id, intent=s.intent) for s in plan.steps],
            ),
        )
        return plan

    def _fail(self, message: str) -> None:
        logger.error("[Planner] %s", message)
        self._channel.publish(EventType.PLAN_ERROR, ErrorData(phase="planner", message=message))
