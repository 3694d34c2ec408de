"""Agent implementations for the LensAgent pipeline."""

from lens_agent.agents.stage import AnalysisOptions, ModelInvoker, StageInput, StagePrompt
from lens_agent.agents import explain_agent, investigate_agent, locate_agent, review_agent  # noqa: I001
from lens_agent.agents.roles import ROLE_REGISTRY, RoleSpec
from lens_agent.agents.runner import run_stage

__all__ = [
    "AnalysisOptions",
    "ModelInvoker",
    "StageInput",
    "StagePrompt",
    "locate_agent",
    "investigate_agent",
    "explain_agent",
    "review_agent",
    "ROLE_REGISTRY",
    "RoleSpec",
    "run_stage",
]
