"""LangGraph workflow definition for LensAgent.

This module defines the state machine that drives the analysis stages.
The compiled graph is built per invocation from closures over that
invocation's runtime (context, options, invokers, deadline), so concurrent
invocations share no mutable state.

Pipeline:
    START → locate → [ok?] → investigate → [ok?] → explain
    explain → [thorough + reviewer enabled + ok?] → review
    every stage → finalize → END on failure or when no further stage applies
"""

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine, Mapping
from typing import Any, Literal

from langgraph.graph import END, START, StateGraph
from langsmith import traceable
from pydantic import BaseModel

from lens_agent.agents.review_agent import apply_review
from lens_agent.agents.runner import run_stage
from lens_agent.agents.stage import AnalysisOptions, ModelInvoker, StageInput
from lens_agent.analysis.correlation import analyze_correlation
from lens_agent.analysis.level import resolve_level
from lens_agent.analysis.parser import (
    build_report_digest,
    extract_keywords,
    infer_category_hint,
    parse_report,
)
from lens_agent.config import LensAgentConfig, get_config
from lens_agent.context import IssueContext, build_issue_context
from lens_agent.errors import ContractViolation, FatalDependencyFailure
from lens_agent.models import (
    ROLES,
    AnalysisLevel,
    IssueRef,
    OrchestratorResult,
    RawBugReport,
    Role,
)
from lens_agent.state import PipelineState

logger = logging.getLogger(__name__)

Invokers = ModelInvoker | Mapping[Role, ModelInvoker]


class PipelineRuntime(BaseModel):
    """Per-invocation collaborators captured by the graph nodes."""

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    context: IssueContext
    options: AnalysisOptions
    invokers: dict[str, Any]
    settings: LensAgentConfig
    deadline: float | None = None  # time.monotonic() based
    cancel_event: asyncio.Event | None = None


# --- Context preparation ---


def prepare_context(
    report: RawBugReport,
    issue: IssueRef | None = None,
    settings: LensAgentConfig | None = None,
) -> IssueContext:
    """Parse, correlate and enrich; returns an unfrozen IssueContext."""
    cfg = settings or get_config()
    issue = issue or IssueRef()
    parsed = parse_report(report)
    title = report.title or "Bug report"

    context = build_issue_context(
        title=title,
        body=build_report_digest(report),
        issue_number=issue.number,
        owner=issue.owner,
        repo=issue.repo,
    )
    context.merge_keywords(extract_keywords(f"{title} {report.description}"))
    context.merge_keywords(parsed.keywords)
    context.set_category_hint(infer_category_hint(report.performance, cfg))
    context.attach_parsed_report(parsed)
    context.attach_correlation(analyze_correlation(report, parsed, cfg))
    return context


def resolve_invokers(
    invoke: Invokers,
    level: AnalysisLevel,
    options: AnalysisOptions,
) -> dict[str, ModelInvoker]:
    """Expand a single invoker to every role; check a mapping covers the roles that can run."""
    if not isinstance(invoke, Mapping):
        return {role: invoke for role in ROLES}
    required: list[Role] = ["locate", "investigate", "explain"]
    if level == AnalysisLevel.THOROUGH and options.enable_reviewer:
        required.append("review")
    missing = [role for role in required if role not in invoke]
    if missing:
        raise ContractViolation(f"no model invoker for role(s): {', '.join(missing)}")
    return dict(invoke)


# --- Routing ---


def _succeeded(state: PipelineState, role: Role) -> bool:
    result = state["agent_results"].get(role)
    return result is not None and result.success


def route_after_locate(state: PipelineState) -> Literal["investigate", "finalize"]:
    """Locate is mandatory: without it nothing downstream can run."""
    return "investigate" if _succeeded(state, "locate") else "finalize"


def route_after_investigate(state: PipelineState) -> Literal["explain", "finalize"]:
    return "explain" if _succeeded(state, "investigate") else "finalize"


def route_after_explain(state: PipelineState) -> Literal["review", "finalize"]:
    """Review only at the thorough level, when enabled, on a successful explanation."""
    if (
        state["level"] == AnalysisLevel.THOROUGH
        and state["enable_reviewer"]
        and _succeeded(state, "explain")
    ):
        return "review"
    return "finalize"


# --- Nodes ---


def make_stage_node(
    role: Role,
    runtime: PipelineRuntime,
) -> Callable[[PipelineState], Coroutine[Any, Any, dict[str, Any]]]:
    """Build the graph node running one role through the stage runner."""
    cfg = runtime.settings

    @traceable(name=f"{role}_agent")
    async def stage_node(state: PipelineState) -> dict[str, Any]:
        previous = {
            name: result.payload
            for name, result in state["agent_results"].items()
            if result.success
        }
        stage_input = StageInput(
            context=runtime.context,
            level=AnalysisLevel(state["level"]),
            options=runtime.options,
            previous=previous,
            project_root=cfg.source_root,
        )
        result = await run_stage(
            role,
            stage_input,
            runtime.invokers[role],
            timeout=cfg.stage_timeout(role),
            max_retries=cfg.stage_max_retries,
            backoff_seconds=cfg.stage_retry_backoff,
            deadline=runtime.deadline,
            cancel_event=runtime.cancel_event,
        )
        update: dict[str, Any] = {"agent_results": {**state["agent_results"], role: result}}
        if result.failure_kind == "cancelled":
            update["cancelled"] = True
        return update

    return stage_node


def finalize_result(state: PipelineState) -> dict[str, Any]:
    """Pick the final analysis and record a fatal locate failure."""
    results = state["agent_results"]
    fatal_error = None
    locate = results.get("locate")
    if locate is not None and not locate.success:
        fatal_error = str(FatalDependencyFailure("locate", locate.error))

    final_analysis = None
    explain = results.get("explain")
    if explain is not None and explain.success:
        final_analysis = explain.payload.analysis
        review = results.get("review")
        if review is not None and review.success:
            final_analysis = apply_review(final_analysis, review.payload)
        elif review is not None:
            logger.warning("Reviewer failed, using unreviewed analysis")

    return {"final_analysis": final_analysis, "fatal_error": fatal_error}


def create_workflow(runtime: PipelineRuntime) -> Any:
    """Create the LensAgent LangGraph workflow.

    Returns:
        Compiled LangGraph workflow ready for execution.
    """
    workflow = StateGraph(PipelineState)

    for role in ROLES:
        workflow.add_node(role, make_stage_node(role, runtime))
    workflow.add_node("finalize", finalize_result)

    workflow.add_edge(START, "locate")

    workflow.add_conditional_edges(
        "locate",
        route_after_locate,
        {"investigate": "investigate", "finalize": "finalize"},
    )
    workflow.add_conditional_edges(
        "investigate",
        route_after_investigate,
        {"explain": "explain", "finalize": "finalize"},
    )
    workflow.add_conditional_edges(
        "explain",
        route_after_explain,
        {"review": "review", "finalize": "finalize"},
    )
    workflow.add_edge("review", "finalize")

    workflow.add_edge("finalize", END)

    return workflow.compile()


def get_initial_state(level: AnalysisLevel, options: AnalysisOptions) -> PipelineState:
    """Create the initial pipeline state.

    Returns:
        Initialized PipelineState ready for workflow execution.
    """
    return PipelineState(
        level=int(level),
        enable_reviewer=options.enable_reviewer,
        agent_results={},
        cancelled=False,
        final_analysis=None,
        fatal_error=None,
    )


# --- Entry points ---


async def arun_analysis(
    context: IssueContext,
    level: AnalysisLevel,
    options: AnalysisOptions,
    invoke: Invokers,
    *,
    settings: LensAgentConfig | None = None,
    cancel_event: asyncio.Event | None = None,
) -> OrchestratorResult:
    """Run the stages over a prepared context. Freezes the context first.

    Stage failures are recorded in the result; only contract violations raise.
    """
    cfg = settings or get_config()
    invokers = resolve_invokers(invoke, level, options)
    context.freeze()

    started = time.perf_counter()
    deadline_seconds = options.deadline_seconds or cfg.pipeline_timeout or None
    deadline = time.monotonic() + deadline_seconds if deadline_seconds else None

    runtime = PipelineRuntime(
        context=context,
        options=options,
        invokers=invokers,
        settings=cfg,
        deadline=deadline,
        cancel_event=cancel_event,
    )
    logger.info(
        f"Starting analysis of '{context.title}' at level {int(level)} "
        f"({level.name.lower()}), reviewer={'on' if options.enable_reviewer else 'off'}"
    )

    workflow = create_workflow(runtime)
    final_state = await workflow.ainvoke(get_initial_state(level, options))

    result = OrchestratorResult(
        level=level,
        agent_results=final_state["agent_results"],
        total_duration_ms=(time.perf_counter() - started) * 1000,
        final_analysis=final_state.get("final_analysis"),
        fatal_error=final_state.get("fatal_error"),
        cancelled=final_state.get("cancelled", False),
    )
    logger.info(
        f"Analysis complete in {result.total_duration_ms:.0f}ms: "
        f"stages={list(result.agent_results)}, fatal={result.fatal_error is not None}, "
        f"cancelled={result.cancelled}"
    )
    return result


async def arun_pipeline(
    report: RawBugReport,
    options: AnalysisOptions | None = None,
    invoke: Invokers | None = None,
    *,
    issue: IssueRef | None = None,
    cancel_event: asyncio.Event | None = None,
    settings: LensAgentConfig | None = None,
) -> OrchestratorResult:
    """Full pipeline: parse, correlate, select level, run the stages."""
    cfg = settings or get_config()
    options = options or AnalysisOptions.from_config(cfg)
    if invoke is None:
        from lens_agent.llm.client import LangChainInvoker  # deferred: pulls in langchain

        invoke = LangChainInvoker.from_config(cfg)

    context = prepare_context(report, issue, cfg)
    level = resolve_level(context, options.analysis_level, cfg)
    return await arun_analysis(
        context,
        level,
        options,
        invoke,
        settings=cfg,
        cancel_event=cancel_event,
    )


def run_pipeline(
    report: RawBugReport,
    options: AnalysisOptions | None = None,
    invoke: Invokers | None = None,
    *,
    issue: IssueRef | None = None,
    settings: LensAgentConfig | None = None,
) -> OrchestratorResult:
    """Synchronous wrapper around arun_pipeline."""
    return asyncio.run(arun_pipeline(report, options, invoke, issue=issue, settings=settings))
