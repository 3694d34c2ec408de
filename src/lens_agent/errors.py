"""Exception taxonomy for the analysis pipeline.

Contract violations are programming errors and propagate to the caller.
Stage failures are expected outcomes: the stage runner captures them into
an ``AgentResult`` and the orchestrator never lets them escape.
"""


class LensAgentError(Exception):
    """Base class for all LensAgent errors."""


class ContractViolation(LensAgentError):
    """Raised when a caller breaks an API contract."""


class ContextFrozenError(ContractViolation):
    """Raised when an IssueContext is mutated after freeze()."""


class AlreadyAttachedError(ContractViolation):
    """Raised when a set-once IssueContext field is attached twice."""


class StageFailure(LensAgentError):
    """Base class for expected failures of one pipeline stage."""

    kind = "error"


class ValidationFailure(StageFailure):
    """Malformed stage input or payload. Never retried."""

    kind = "validation"


class TransientFailure(StageFailure):
    """Timeout or transport problem. Retried up to the configured bound."""

    kind = "transient"


class FatalDependencyFailure(StageFailure):
    """The mandatory locate stage failed; downstream stages cannot run."""

    kind = "fatal_dependency"

    def __init__(self, role: str, cause: str | None) -> None:
        self.role = role
        self.cause = cause or "unknown error"
        super().__init__(f"{role} stage failed: {self.cause}")


class StageCancelled(StageFailure):
    """The pipeline deadline passed or the caller cancelled the run."""

    kind = "cancelled"
