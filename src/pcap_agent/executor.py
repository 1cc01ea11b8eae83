# executor.py
# Plan execution as an explicit state machine.
#
#   LOOP_CHECK ── remaining > 1 ──▶ NORMAL_STEP ──┐
#        ▲                                        │
#        └────────────────────────────────────────┘
#   LOOP_CHECK ── remaining == 1 ─▶ FINAL_STEP ──▶ DONE
#
# A single PlanState is threaded through every transition and is the only
# source of truth; the Result is derived from its terminal values. Steps run
# strictly in order because each prompt carries the findings of all earlier
# steps.

import logging
import time
from enum import Enum

from pcap_agent.agent import Agent, CancelToken, invoke
from pcap_agent.errors import AgentError, Cancelled, CompactionError, ExtractionError, PcapAgentError, StepError
from pcap_agent.events import (
    FINDINGS_TRANSPORT_LIMIT,
    REPORT_TRANSPORT_LIMIT,
    ErrorData,
    EventType,
    NullChannel,
    ReportData,
    StepCompletedData,
    StepFindingsData,
    StepStartedData,
)
from pcap_agent.models import Message, Plan, PlanState, Result, Step
from pcap_agent.parsing import format_plan_overview, parse_step_output, truncate
from pcap_agent.prompts import (
    FINAL_EMPTY_FINDINGS,
    FINAL_EMPTY_LOG,
    FINAL_EXECUTOR_PROMPT,
    MISSING_TABLE_SCHEMA,
    NORMAL_EMPTY_FINDINGS,
    NORMAL_EMPTY_LOG,
    NORMAL_EXECUTOR_PROMPT,
)

logger = logging.getLogger(__name__)

OPERATION_LOG_SEPARATOR = "\n---\n"

# Transition ceiling: generous multiple of the plan length plus slack, enforced
# regardless of what the plan contains.
TRANSITIONS_PER_STEP = 5
TRANSITION_SLACK = 10


class State(str, Enum):
    LOOP_CHECK = "loop-check"
    NORMAL_STEP = "normal-step"
    FINAL_STEP = "final-step"
    DONE = "done"


class Executor:
    """
    Walks a Plan one step at a time and synthesizes the final report.

    Every step but the last goes through NORMAL_STEP, whose reply must be a
    JSON object with "findings" and "my_actions". The last step goes through
    FINAL_STEP, whose raw reply is the report.
    """

    def __init__(self, agent: Agent, channel=None) -> None:
        self._agent = agent
        self._channel = channel or NullChannel()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, plan: Plan, user_query: str, pcap_path: str, cancel: CancelToken | None = None) -> Result:
        """
        Execute every step of the plan and return the report with its findings.

        Raises StepError for an empty plan, an out-of-range step index, an
        undecodable step reply, or an agent or compaction failure. Cancelled
        propagates. Nothing partial is returned on failure.
        """
        started = time.monotonic()
        try:
            if not plan.steps:
                raise StepError("plan has no steps", phase="executor")
            state = self._new_state(plan)
            self._drive(state, user_query, pcap_path, cancel)
        except PcapAgentError as exc:
            self._channel.publish(EventType.ERROR, ErrorData(phase="executor", message=str(exc)))
            raise

        elapsed_ms = int((time.monotonic() - started) * 1000)
        result = Result(
            report=state.end_output,
            findings=state.research_findings,
            operation_log=OPERATION_LOG_SEPARATOR.join(state.operation_log),
        )
        self._channel.publish(
            EventType.REPORT_GENERATED,
            ReportData(
                report=truncate(result.report, REPORT_TRANSPORT_LIMIT),
                content_length=len(result.report),
                total_steps=len(plan.steps),
                duration_ms=elapsed_ms,
            ),
        )
        logger.info("[Executor] completed in %dms, report length=%d", elapsed_ms, len(result.report))
        return result

    @staticmethod
    def _new_state(plan: Plan) -> PlanState:
        return PlanState(plan=plan, table_schema=plan.table_schema or MISSING_TABLE_SCHEMA)

    def _drive(self, state: PlanState, user_query: str, pcap_path: str, cancel: CancelToken | None) -> None:
        ceiling = TRANSITIONS_PER_STEP * len(state.plan.steps) + TRANSITION_SLACK
        current = State.LOOP_CHECK
        transitions = 0

        while current is not State.DONE:
            transitions += 1
            if transitions > ceiling:
                raise StepError(f"transition ceiling of {ceiling} exceeded in state {current.value}")

            if current is State.LOOP_CHECK:
                current = self._loop_check(state)
            elif current is State.NORMAL_STEP:
                self._normal_step(state, user_query, pcap_path, cancel)
                current = State.LOOP_CHECK
            elif current is State.FINAL_STEP:
                self._final_step(state, user_query, pcap_path, cancel)
                current = State.DONE

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    @staticmethod
    def _loop_check(state: PlanState) -> State:
        remaining = state.remaining
        logger.info(
            "[Executor] loop check: currentIndex=%d, remaining=%d, isLast=%s",
            state.current_step_index,
            remaining,
            remaining == 1,
        )
        if remaining <= 0:
            raise StepError(
                f"step index {state.current_step_index} out of range (total {len(state.plan.steps)})",
                phase="loop-check",
            )
        return State.FINAL_STEP if remaining == 1 else State.NORMAL_STEP

    def _normal_step(self, state: PlanState, user_query: str, pcap_path: str, cancel: CancelToken | None) -> None:
        step = self._current_step(state, "executor")
        total = len(state.plan.steps)
        logger.info("[Executor] step %d start: %s", step.step_id, step.intent)
        self._channel.publish(
            EventType.STEP_STARTED,
            StepStartedData(step_id=step.step_id, intent=step.intent, total_steps=total),
        )

        context = self._render_context(state, user_query, pcap_path, final=False)
        context["current_step"] = f"Step {step.step_id}: {step.intent}"
        messages = [
            Message.system(NORMAL_EXECUTOR_PROMPT.format(**context)),
            Message.user(f"Carry out {context['current_step']}"),
        ]

        reply = self._invoke(messages, step, "executor", cancel)

        try:
            output = parse_step_output(reply.content)
        except (ExtractionError, ValueError) as exc:
            message = f"extract json failed for step {step.step_id}: {exc}"
            self._channel.publish(
                EventType.STEP_ERROR,
                ErrorData(phase="executor", message=message, step_id=step.step_id),
            )
            raise StepError(f"parse executor output: {exc}", step_id=step.step_id) from exc

        if output.findings:
            state.research_findings += f"\n\n### Step {step.step_id}: {step.intent}\n{output.findings}"
        if output.my_actions:
            state.operation_log.append(f"[Step {step.step_id} - {step.intent}]\n{output.my_actions}")

        state.current_step_index += 1
        logger.info(
            "[Executor] step %d completed, advancing to index %d", step.step_id, state.current_step_index
        )

        self._channel.publish(
            EventType.STEP_FINDINGS,
            StepFindingsData(
                step_id=step.step_id,
                intent=step.intent,
                findings=truncate(output.findings, FINDINGS_TRANSPORT_LIMIT),
                actions=truncate(output.my_actions, FINDINGS_TRANSPORT_LIMIT),
            ),
        )
        self._channel.publish(
            EventType.STEP_COMPLETED,
            StepCompletedData(step_id=step.step_id, next_index=state.current_step_index),
        )

    def _final_step(self, state: PlanState, user_query: str, pcap_path: str, cancel: CancelToken | None) -> None:
        step = self._current_step(state, "final")
        logger.info("[Executor] final step %d start: %s", step.step_id, step.intent)
        self._channel.publish(
            EventType.STEP_STARTED,
            StepStartedData(step_id=step.step_id, intent=step.intent, total_steps=len(state.plan.steps), final=True),
        )

        context = self._render_context(state, user_query, pcap_path, final=True)
        messages = [
            Message.system(FINAL_EXECUTOR_PROMPT.format(**context)),
            Message.user(f"Write the final report. Final step {step.step_id}: {step.intent}"),
        ]

        reply = self._invoke(messages, step, "final", cancel)
        state.end_output = reply.content
        state.current_step_index += 1
        logger.info("[FinalExecutor] output (length=%d)", len(reply.content))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _current_step(state: PlanState, phase: str) -> Step:
        idx = state.current_step_index
        if idx < 0 or idx >= len(state.plan.steps):
            raise StepError(f"step index {idx} out of range (total {len(state.plan.steps)})", phase=phase)
        return state.plan.steps[idx]

    @staticmethod
    def _render_context(state: PlanState, user_query: str, pcap_path: str, final: bool) -> dict[str, str]:
        operation_log = OPERATION_LOG_SEPARATOR.join(state.operation_log)
        if not operation_log:
            operation_log = FINAL_EMPTY_LOG if final else NORMAL_EMPTY_LOG
        findings = state.research_findings
        if not findings:
            findings = FINAL_EMPTY_FINDINGS if final else NORMAL_EMPTY_FINDINGS
        return {
            "user_query": user_query,
            "pcap_path": pcap_path,
            "plan_overview": format_plan_overview(state.plan),
            "research_findings": findings,
            "operation_log": operation_log,
            "table_schema": state.table_schema,
        }

    def _invoke(self, messages: list[Message], step: Step, phase: str, cancel: CancelToken | None) -> Message:
        label = "ReAct-FinalExecutor" if phase == "final" else "ReAct-NormalExecutor"
        try:
            return invoke(self._agent, messages, label, cancel)
        except Cancelled:
            raise
        except AgentError as exc:
            self._channel.publish(
                EventType.STEP_ERROR,
                ErrorData(phase=phase, message=str(exc), step_id=step.step_id),
            )
            raise StepError(f"agent invocation failed: {exc}", step_id=step.step_id, phase=phase) from exc
        except CompactionError as exc:
            self._channel.publish(
                EventType.STEP_ERROR,
                ErrorData(phase=phase, message=str(exc), step_id=step.step_id),
            )
            raise StepError(f"context compaction failed: {exc}", step_id=step.step_id, phase=phase) from exc
