"""Role registry: how each pipeline role prompts, validates and post-processes."""

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel

from lens_agent.agents import explain_agent, investigate_agent, locate_agent, review_agent
from lens_agent.agents.stage import StageInput, StagePrompt
from lens_agent.models import Role


class RoleSpec(BaseModel):
    """Everything the stage runner needs to drive one role."""

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    role: Role
    build_prompt: Callable[[StageInput], StagePrompt]
    output_model: type[BaseModel]
    postprocess: Callable[[Any, StageInput], BaseModel]
    # Config attribute holding the per-attempt timeout.
    timeout_setting: str


ROLE_REGISTRY: dict[Role, RoleSpec] = {
    "locate": RoleSpec(
        role="locate",
        build_prompt=locate_agent.build_prompt,
        output_model=locate_agent.LocateOutput,
        postprocess=locate_agent.postprocess,
        timeout_setting="locate_timeout",
    ),
    "investigate": RoleSpec(
        role="investigate",
        build_prompt=investigate_agent.build_prompt,
        output_model=investigate_agent.InvestigateOutput,
        postprocess=investigate_agent.postprocess,
        timeout_setting="investigate_timeout",
    ),
    "explain": RoleSpec(
        role="explain",
        build_prompt=explain_agent.build_prompt,
        output_model=explain_agent.ExplainOutput,
        postprocess=explain_agent.postprocess,
        timeout_setting="explain_timeout",
    ),
    "review": RoleSpec(
        role="review",
        build_prompt=review_agent.build_prompt,
        output_model=review_agent.ReviewOutput,
        postprocess=review_agent.postprocess,
        timeout_setting="review_timeout",
    ),
}


def get_role_spec(role: Role) -> RoleSpec:
    return ROLE_REGISTRY[role]
