# errors.py
# Exception taxonomy. Every error raised to a caller carries the phase it
# came from; step-level errors also carry the offending step id.


class PcapAgentError(Exception):
    """Base class for all pipeline errors."""


class PlanError(PcapAgentError):
    """Planner failed: agent error, no extractable object, or an undecodable plan."""


class StepError(PcapAgentError):
    """A step could not be executed. Always fatal to the Executor run."""

    def __init__(self, message: str, step_id: int | None = None, phase: str = "executor") -> None:
        self.step_id = step_id
        self.phase = phase
        prefix = f"[{phase}] step {step_id}: " if step_id is not None else f"[{phase}] "
        super().__init__(prefix + message)


class CompactionError(PcapAgentError):
    """Token counting failed or disagreed with the message count."""


class LedgerError(PcapAgentError):
    """Reading or writing the round ledger failed."""


class AgentError(PcapAgentError):
    """The collaborator agent failed to produce a reply."""


class Cancelled(AgentError):
    """The round was cancelled or ran past its deadline."""


class ExtractionError(PcapAgentError):
    """No JSON object could be located in a model reply."""
