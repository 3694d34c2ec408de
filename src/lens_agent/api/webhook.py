"""FastAPI endpoints for bug report analysis."""

import logging
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from lens_agent import __version__
from lens_agent.agents.stage import AnalysisOptions, ModelInvoker
from lens_agent.analysis.issue_markdown import is_bug_report_markdown, parse_issue_markdown
from lens_agent.config import get_config
from lens_agent.graph import arun_pipeline
from lens_agent.models import IssueRef, OrchestratorResult, RawBugReport
from lens_agent.report import SummarySection, render_markdown, summarize

logger = logging.getLogger(__name__)

app = FastAPI(
    title="LensAgent",
    description="Multi-stage bug report analysis: error correlation, hypotheses, reviewed explanation",
    version=__version__,
)

# CORS middleware for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_invoker() -> ModelInvoker:
    """Shared model invoker; the chat model is created on first use."""
    from lens_agent.llm.client import LangChainInvoker

    return LangChainInvoker.from_config(get_config())


class AnalyzeRequest(BaseModel):
    """Structured bug report as captured by the browser widget."""

    report: RawBugReport
    options: AnalysisOptions | None = None
    issue: IssueRef | None = None


class IssueAnalyzeRequest(BaseModel):
    """Tracker issue whose body was generated by the browser widget."""

    title: str = ""
    body: str
    number: int = 0
    owner: str = ""
    repo: str = ""
    options: AnalysisOptions | None = None


class AnalyzeResponse(BaseModel):
    """Pipeline result plus rendered summary."""

    result: dict[str, Any]
    summary: list[SummarySection]
    markdown: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    llm_provider: str
    llm_model: str


def _build_response(result: OrchestratorResult) -> AnalyzeResponse:
    sections = summarize(result)
    return AnalyzeResponse(
        result=result.model_dump(mode="json"),
        summary=sections,
        markdown=render_markdown(sections),
    )


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint for container liveness checks."""
    cfg = get_config()
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        llm_provider=cfg.llm_provider,
        llm_model=cfg.llm_model,
    )


@app.post("/analyze", response_model=AnalyzeResponse)
async def analyze_report(
    payload: AnalyzeRequest,
    invoke: ModelInvoker = Depends(get_invoker),
) -> AnalyzeResponse:
    """Analyze a structured bug report."""
    logger.info(
        f"Received report: logs={len(payload.report.logs)}, "
        f"actions={len(payload.report.actions)}, url={payload.report.url or 'n/a'}"
    )
    result = await arun_pipeline(payload.report, payload.options, invoke, issue=payload.issue)
    return _build_response(result)


@app.post("/analyze/issue", response_model=AnalyzeResponse)
async def analyze_issue(
    payload: IssueAnalyzeRequest,
    invoke: ModelInvoker = Depends(get_invoker),
) -> AnalyzeResponse:
    """Analyze an issue whose body was produced by the reporting widget."""
    if not is_bug_report_markdown(payload.body):
        raise HTTPException(status_code=422, detail="Issue body is not a bug report")

    report = parse_issue_markdown(payload.body, title=payload.title)
    issue = IssueRef(number=payload.number, owner=payload.owner, repo=payload.repo)
    logger.info(f"Received issue {payload.owner}/{payload.repo}#{payload.number}")
    result = await arun_pipeline(report, payload.options, invoke, issue=issue)
    return _build_response(result)


@app.get("/")
async def root() -> dict[str, Any]:
    """Root endpoint with API info."""
    return {
        "name": "LensAgent",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "analyze": "/analyze",
        "analyze_issue": "/analyze/issue",
    }
