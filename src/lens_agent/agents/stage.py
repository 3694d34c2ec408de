"""Types exchanged between the orchestrator, the stage runner and the roles."""

from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from lens_agent.config import LensAgentConfig, get_config
from lens_agent.context import IssueContext
from lens_agent.models import AnalysisLevel, Role


class AnalysisOptions(BaseModel):
    """Per-invocation pipeline options."""

    model_config = {"frozen": True}

    analysis_level: Literal["auto", 1, 2] = "auto"
    enable_reviewer: bool = True
    language: str = "en"
    max_files: int = Field(default=25, ge=1)
    # Overall deadline for this invocation (seconds); None falls back to
    # pipeline_timeout from the configuration.
    deadline_seconds: float | None = Field(default=None, gt=0)

    @field_validator("analysis_level", mode="before")
    @classmethod
    def coerce_level(cls, v: Any) -> Any:
        if isinstance(v, str) and v.strip() in ("1", "2"):
            return int(v.strip())
        return v

    @classmethod
    def from_config(cls, settings: LensAgentConfig | None = None) -> "AnalysisOptions":
        cfg = settings or get_config()
        return cls(
            analysis_level=cfg.analysis_level,
            enable_reviewer=cfg.enable_reviewer,
            language=cfg.output_language,
            max_files=max(cfg.max_files, 1),
        )


class StagePrompt(BaseModel):
    """What a model invoker receives for one stage call."""

    model_config = {"frozen": True}

    system: str
    user: str
    # JSON schema of the expected payload.
    json_schema: dict[str, Any] = Field(default_factory=dict)
    language: str = "en"


# Produces the raw JSON payload for a role.  Raise TransientFailure for
# retryable problems and ValidationFailure for unusable output.
ModelInvoker = Callable[[Role, StagePrompt], Awaitable[dict[str, Any]]]


class StageInput(BaseModel):
    """Read-only view a stage gets of the invocation."""

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    context: IssueContext
    level: AnalysisLevel
    options: AnalysisOptions
    # Validated payloads of the stages that already succeeded.
    previous: Mapping[Role, BaseModel] = Field(default_factory=dict)
    # Checkout of the reported application; None disables code discovery.
    project_root: Path | None = None

    def payload(self, role: Role) -> Any:
        return self.previous.get(role)
