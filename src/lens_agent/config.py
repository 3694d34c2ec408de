"""Configuration management for LensAgent."""

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings


class LensAgentConfig(BaseSettings):
    """Configuration loaded from environment variables.

    All fields may be overridden via environment variable (case-insensitive)
    or via a `.env` file in the working directory.  ``ANALYSIS_LEVEL`` accepts
    ``auto``, ``1`` or ``2``.
    """

    # -------------------------------------------------------------------------
    # model_config — LLM / Model Parameters
    # -------------------------------------------------------------------------

    llm_api_key: str = ""  # Required in production for openai/anthropic providers.
    # Model name for cloud providers or model filename for local vLLM/Ollama.
    llm_model: str = "gpt-4o-mini"
    # Request timeout handed to the chat model client (seconds).
    llm_timeout: int = 120
    # Env var: LLM_PROVIDER — selects LLM backend.
    # "openai": ChatOpenAI using llm_api_key + llm_model
    # "anthropic": ChatAnthropic using llm_api_key + llm_model
    # "local": ChatOpenAI with base_url for an OpenAI-compatible server
    llm_provider: Literal["openai", "anthropic", "local"] = "openai"
    # Env var: LLM_BASE_URL — OpenAI-compatible base URL for the local provider.
    llm_base_url: str = ""
    # Sampling temperature.  Near-zero maximises determinism for structured JSON output.
    llm_temperature: float = 0.2

    # -------------------------------------------------------------------------
    # stage_config — Per-role Timeouts and Retry Logic
    # -------------------------------------------------------------------------

    # Per-attempt deadline for each stage (seconds).  Past the deadline the
    # in-flight call is cancelled and the attempt counts as a timeout.
    locate_timeout: float = 60.0
    investigate_timeout: float = 60.0
    explain_timeout: float = 90.0
    review_timeout: float = 60.0

    # Retries on transient failures (timeouts, transport errors).  First attempt
    # + stage_max_retries retries.  Validation failures are never retried.
    stage_max_retries: int = 2
    # Exponential backoff: retry n waits stage_retry_backoff * 2**(n-1) seconds.
    stage_retry_backoff: float = 1.0

    # Overall pipeline deadline (seconds).  0 disables the deadline.
    pipeline_timeout: float = 300.0

    # -------------------------------------------------------------------------
    # pipeline_config — Default Analysis Options
    # -------------------------------------------------------------------------

    # "auto" lets the level selector decide; 1 or 2 forces the depth.
    analysis_level: Literal["auto", 1, 2] = "auto"
    # Gates the review stage (thorough level only).
    enable_reviewer: bool = True
    # Output-locale tag passed through to narrative generation.
    output_language: str = "en"
    # Cap on candidate source locations returned by the locate stage.
    max_files: int = 25
    # Env var: PROJECT_ROOT — checkout of the reported application.  When set,
    # the locate stage searches it for candidate files and code excerpts, and
    # the explanation's file references are checked against it.
    project_root: str = ""

    # -------------------------------------------------------------------------
    # correlation_config — Error-to-Action Correlation
    # -------------------------------------------------------------------------

    # Look-back window before an error in which an action may be its trigger.
    correlation_window_ms: float = 5000.0
    # Recency decay constant: confidence falls by 1/e every decay_ms of delta.
    correlation_decay_ms: float = 2000.0
    # Share of confidence granted regardless of target similarity.
    correlation_base_weight: float = 0.6

    # -------------------------------------------------------------------------
    # level_config — Analysis Depth Selection
    # -------------------------------------------------------------------------

    # Best trigger confidence below this counts as an ambiguous trigger.
    level_trigger_confidence: float = 0.5
    # Fewer keywords than this counts as a sparse report.
    level_min_keywords: int = 3
    # More correlated errors than this counts as a complex report.
    level_max_errors: int = 5
    # Accumulated score at or above which the thorough level is chosen.
    level_thorough_score: int = 2

    # -------------------------------------------------------------------------
    # hint_config — Performance-derived Category Hints
    # -------------------------------------------------------------------------

    lcp_hint_ms: float = 2500.0
    fid_hint_ms: float = 100.0
    cls_hint: float = 0.1
    ttfb_hint_ms: float = 600.0

    # -------------------------------------------------------------------------
    # server_config / observability_config
    # -------------------------------------------------------------------------

    server_host: str = "0.0.0.0"
    server_port: int = 8000
    log_level: str = "INFO"

    langsmith_project: str = "lens-agent"
    langsmith_api_key: str = ""

    # Application version returned in API metadata endpoints.
    # Should match pyproject.toml; update on each release.
    app_version: str = "0.4.0"

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "env_file": ".env",           # load from .env if present
        "env_file_encoding": "utf-8",
        "extra": "ignore",            # ignore unknown keys in .env file
    }

    @field_validator(
        "locate_timeout",
        "investigate_timeout",
        "explain_timeout",
        "review_timeout",
        "correlation_window_ms",
        "correlation_decay_ms",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate timeouts and windows are positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("stage_max_retries", "max_files")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Validate counters are not negative."""
        if v < 0:
            raise ValueError("value must not be negative")
        return v

    @field_validator("correlation_base_weight", "level_trigger_confidence")
    @classmethod
    def validate_unit_interval(cls, v: float) -> float:
        """Validate weights lie in [0, 1]."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("value must be between 0.0 and 1.0")
        return v

    @field_validator("analysis_level", mode="before")
    @classmethod
    def coerce_analysis_level(cls, v: Any) -> Any:
        """Accept "1"/"2" strings from the environment."""
        if isinstance(v, str) and v.strip() in ("1", "2"):
            return int(v.strip())
        return v

    @field_validator("project_root")
    @classmethod
    def validate_project_root(cls, v: str) -> str:
        """Validate the project root, when given, is a directory."""
        if v and not Path(v).expanduser().is_dir():
            raise ValueError(f"project_root {v!r} is not a directory")
        return v

    @property
    def source_root(self) -> Path | None:
        """Resolved project root, or None when code discovery is off."""
        return Path(self.project_root).expanduser().resolve() if self.project_root else None

    def stage_timeout(self, role: str) -> float:
        """Per-attempt timeout for a pipeline role."""
        return float(getattr(self, f"{role}_timeout"))


@lru_cache(maxsize=1)
def get_config() -> LensAgentConfig:
    """Get singleton configuration instance."""
    return LensAgentConfig()


def get_config_dict() -> dict[str, Any]:
    """Get configuration as dictionary (for testing)."""
    return get_config().model_dump()
