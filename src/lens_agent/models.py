"""Typed records shared by the analysis pipeline.

Input records (RawBugReport and its parts) are immutable once created.
Derived records (ParsedBugReport, CorrelationResult, AgentResult,
OrchestratorResult) are produced once per pipeline invocation and never
mutated afterwards.
"""

from datetime import UTC, datetime
from enum import IntEnum
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator

Role = Literal["locate", "investigate", "explain", "review"]
ROLES: tuple[Role, ...] = ("locate", "investigate", "explain", "review")

FailureKind = Literal["validation", "transient", "timeout", "cancelled", "error"]

PayloadT = TypeVar("PayloadT")

_FROZEN = {"frozen": True}


def to_epoch_ms(value: Any) -> float:
    """Convert an epoch-ms number, numeric string or ISO-8601 string to epoch ms."""
    if isinstance(value, bool):
        raise ValueError("timestamp must be a number or ISO-8601 string")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            return float(text)
        except ValueError:
            pass
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    else:
        raise ValueError(f"unsupported timestamp: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.timestamp() * 1000.0


def format_epoch_ms(value: float) -> str:
    """Render epoch ms as an ISO-8601 UTC string with millisecond precision."""
    dt = datetime.fromtimestamp(value / 1000.0, tz=UTC)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# --- Raw input ---


class LogEntry(BaseModel):
    """One captured console log line."""

    model_config = _FROZEN

    level: Literal["info", "warn", "error"] = "info"
    message: str
    timestamp: float | None = None  # epoch ms
    stack: str | None = None
    type: str | None = None  # NETWORK, ERROR, ... as tagged by the capture layer

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> str:
        level = str(v or "info").strip().lower()
        if level in ("error", "fatal", "critical"):
            return "error"
        if level in ("warn", "warning"):
            return "warn"
        return "info"

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> float | None:
        if v is None or v == "":
            return None
        return to_epoch_ms(v)

    @property
    def is_error(self) -> bool:
        return self.level == "error" or (self.type or "").upper() == "ERROR"


class UserAction(BaseModel):
    """One captured user interaction."""

    model_config = _FROZEN

    action: str  # click, input, submit, navigation, ...
    target: str = ""
    timestamp: float  # epoch ms

    @field_validator("action", mode="before")
    @classmethod
    def normalize_action(cls, v: Any) -> str:
        return str(v).strip().lower()

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> float:
        return to_epoch_ms(v)


class NavigationEntry(BaseModel):
    """One captured page navigation."""

    model_config = _FROZEN

    type: str = "navigation"  # pageload, pushstate, popstate, ...
    from_url: str = ""
    to_url: str = ""
    timestamp: float

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> float:
        return to_epoch_ms(v)


class PerformanceSnapshot(BaseModel):
    """Web vitals captured at report time. Times in ms."""

    model_config = _FROZEN

    lcp: float | None = None
    fid: float | None = None
    cls: float | None = None
    ttfb: float | None = None
    dom_loaded: float | None = None
    load_complete: float | None = None


class RawBugReport(BaseModel):
    """Unprocessed bug report as delivered by the capture layer (already masked)."""

    model_config = _FROZEN

    title: str = ""
    description: str = ""
    url: str = ""
    user_agent: str = ""
    logs: list[LogEntry] = Field(default_factory=list)
    actions: list[UserAction] = Field(default_factory=list)
    navigations: list[NavigationEntry] = Field(default_factory=list)
    performance: PerformanceSnapshot | None = None


class IssueRef(BaseModel):
    """Identifies the tracker issue a report belongs to."""

    model_config = _FROZEN

    number: int = 0
    owner: str = ""
    repo: str = ""


# --- Parsed report ---


class StackFrame(BaseModel):
    """One frame extracted from a stack trace."""

    model_config = _FROZEN

    file: str
    line: int | None = None
    column: int | None = None
    function: str | None = None


class DetectedError(BaseModel):
    """An error extracted from the captured logs."""

    model_config = _FROZEN

    message: str
    stack_frames: list[StackFrame] = Field(default_factory=list)
    timestamp: float | None = None  # epoch ms


class ParsedBugReport(BaseModel):
    """Structured extraction from a RawBugReport."""

    model_config = _FROZEN

    errors: list[DetectedError] = Field(default_factory=list)
    summary: str = ""
    keywords: frozenset[str] = frozenset()
    route: str | None = None


# --- Correlation ---


class TriggerAction(BaseModel):
    """A user action judged causally prior to an error."""

    model_config = _FROZEN

    action: str
    target: str
    delta_ms: float = Field(ge=0.0)  # error.timestamp - action.timestamp


class CorrelatedError(BaseModel):
    """One detected error plus its best-matching trigger."""

    model_config = _FROZEN

    error: DetectedError
    trigger: TriggerAction | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    preceding_actions: list[UserAction] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_untriggered_confidence(self) -> "CorrelatedError":
        if self.trigger is None and self.confidence != 0.0:
            raise ValueError("confidence must be 0 when there is no trigger action")
        return self


class Breadcrumb(BaseModel):
    """Entry in the unified session timeline."""

    model_config = _FROZEN

    timestamp: float
    type: Literal["navigation", "user", "error", "network", "console"]
    category: str
    message: str
    level: Literal["error", "warning", "info"] = "info"
    data: dict[str, Any] | None = None


class PerformanceStatus(BaseModel):
    """Rating of one web vital against its thresholds."""

    model_config = _FROZEN

    metric: str
    value: float
    unit: str
    status: Literal["good", "needs_improvement", "poor"]


class UserJourney(BaseModel):
    """Aggregate statistics over the captured session."""

    model_config = _FROZEN

    total_actions: int = 0
    unique_targets: int = 0
    session_duration_s: float = 0.0
    navigation_count: int = 0
    error_rate: float = 0.0  # errors per action


class CorrelationResult(BaseModel):
    """Correlation output, errors ordered by confidence desc then timestamp asc."""

    model_config = _FROZEN

    errors: list[CorrelatedError] = Field(default_factory=list)
    breadcrumbs: list[Breadcrumb] = Field(default_factory=list)
    performance: list[PerformanceStatus] = Field(default_factory=list)
    journey: UserJourney = Field(default_factory=UserJourney)

    @property
    def has_trigger(self) -> bool:
        return any(item.trigger is not None for item in self.errors)

    @property
    def top(self) -> CorrelatedError | None:
        return self.errors[0] if self.errors else None


# --- Analysis ---


class AnalysisLevel(IntEnum):
    """Pipeline depth."""

    FAST = 1
    THOROUGH = 2


class Hypothesis(BaseModel):
    """A candidate root cause with an independent likelihood estimate."""

    id: str = ""
    summary: str
    explanation: str = ""
    likelihood: float = Field(ge=0.0, le=100.0)
    supporting_evidence: list[str] = Field(default_factory=list)
    contra_evidence: list[str] = Field(default_factory=list)


class RootCause(BaseModel):
    summary: str
    explanation: str
    affected_files: list[str] = Field(default_factory=list)
    evidence_chain: list[str] = Field(default_factory=list)


class CodeChange(BaseModel):
    file: str
    line: int | None = None
    description: str
    before: str | None = None
    after: str


class SuggestedFix(BaseModel):
    steps: list[str] = Field(default_factory=list)
    code_changes: list[CodeChange] = Field(default_factory=list)


class Analysis(BaseModel):
    """Human-facing explanation of the defect."""

    is_valid_report: bool
    invalid_reason: str | None = None
    severity: Literal["critical", "high", "medium", "low", "none"]
    category: Literal[
        "runtime_error",
        "logic_error",
        "performance",
        "security",
        "ui_ux",
        "configuration",
        "invalid_report",
        "unknown",
    ]
    root_cause: RootCause
    suggested_fix: SuggestedFix = Field(default_factory=SuggestedFix)
    prevention: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=100.0)
    additional_context: str | None = None


class AgentResult(BaseModel, Generic[PayloadT]):
    """Outcome of one stage."""

    model_config = _FROZEN

    role: Role
    success: bool
    payload: PayloadT | None = None
    duration_ms: float = 0.0
    error: str | None = None
    failure_kind: FailureKind | None = None
    attempts: int = 1

    @model_validator(mode="after")
    def check_outcome(self) -> "AgentResult[PayloadT]":
        if self.success and self.payload is None:
            raise ValueError("successful stage requires a payload")
        if not self.success and self.payload is not None:
            raise ValueError("failed stage must not retain a payload")
        return self


class OrchestratorResult(BaseModel):
    """Terminal pipeline output."""

    model_config = _FROZEN

    level: AnalysisLevel
    agent_results: dict[Role, AgentResult] = Field(default_factory=dict)
    total_duration_ms: float = 0.0
    final_analysis: Analysis | None = None
    fatal_error: str | None = None
    cancelled: bool = False

    @model_validator(mode="after")
    def check_locate_present(self) -> "OrchestratorResult":
        if "locate" not in self.agent_results:
            raise ValueError("orchestrator result must include the locate stage")
        return self

    def get(self, role: Role) -> AgentResult | None:
        return self.agent_results.get(role)

    def succeeded(self, role: Role) -> bool:
        result = self.agent_results.get(role)
        return result is not None and result.success
