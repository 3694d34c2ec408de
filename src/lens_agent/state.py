"""Shared state object for the stages of the analysis pipeline."""

from typing import TypedDict

from lens_agent.models import AgentResult, Analysis


class PipelineState(TypedDict):
    # Input
    level: int  # AnalysisLevel value
    enable_reviewer: bool

    # Stage outputs, keyed by role, in execution order
    agent_results: dict[str, AgentResult]

    # Control flow
    cancelled: bool  # True once a stage was aborted by deadline or cancel event

    # Finalize outputs
    final_analysis: Analysis | None
    fatal_error: str | None
