"""Tests for the result summary renderer."""

from typing import Any

from lens_agent.agents.explain_agent import ExplainOutput
from lens_agent.agents.investigate_agent import InvestigateOutput, postprocess
from lens_agent.agents.locate_agent import LocateOutput
from lens_agent.agents.review_agent import ReviewOutput
from lens_agent.agents.stage import AnalysisOptions, StageInput
from lens_agent.context import build_issue_context
from lens_agent.models import AgentResult, AnalysisLevel, OrchestratorResult
from lens_agent.report import render_markdown, summarize


def _ok(role: str, payload: Any, duration_ms: float = 120.0) -> AgentResult:
    return AgentResult(role=role, success=True, payload=payload, duration_ms=duration_ms)


def _investigate(payload: dict[str, Any]) -> InvestigateOutput:
    stage_input = StageInput(
        context=build_issue_context("t", "b", 1, "o", "r"),
        level=AnalysisLevel.THOROUGH,
        options=AnalysisOptions(),
    )
    return postprocess(InvestigateOutput.model_validate(payload), stage_input)


def _titles(result: OrchestratorResult) -> list[str]:
    return [section.title for section in summarize(result)]


class TestSummarize:
    """Sections reflect what the pipeline produced."""

    def test_full_thorough_run(
        self,
        stage_payloads: dict[str, Any],
    ) -> None:
        result = OrchestratorResult(
            level=AnalysisLevel.THOROUGH,
            total_duration_ms=2345.0,
            agent_results={
                "locate": _ok("locate", LocateOutput.model_validate(stage_payloads["locate"])),
                "investigate": _ok("investigate", _investigate(stage_payloads["investigate"])),
                "explain": _ok("explain", ExplainOutput.model_validate(stage_payloads["explain"]), 1500.0),
                "review": _ok("review", ReviewOutput.model_validate(stage_payloads["review"])),
            },
        )
        sections = {s.title: s for s in summarize(result)}

        assert sections["Analysis Level"].text == "Level 2 (thorough)"
        assert sections["Total Duration"].text == "2.3s"
        assert sections["Agent Timing"].lines == [
            "locate: 120ms (ok)",
            "investigate: 120ms (ok)",
            "explain: 1.5s (ok)",
            "review: 120ms (ok)",
        ]
        assert sections["Reviewer Issues"].lines == ["Race hypothesis not ruled out"]
        assert sections["Reviewer Suggestions"].lines == ["Check the cart loading state"]
        assert sections["Alternative Hypotheses"].lines == ["Race between cart load and submit (35%)"]

    def test_reviewer_without_entries_adds_no_sections(self, locate_payload: dict[str, Any]) -> None:
        result = OrchestratorResult(
            level=AnalysisLevel.THOROUGH,
            agent_results={
                "locate": _ok("locate", LocateOutput.model_validate(locate_payload)),
                "review": _ok("review", ReviewOutput(approved=True)),
            },
        )
        titles = _titles(result)
        assert "Reviewer Issues" not in titles
        assert "Reviewer Suggestions" not in titles

    def test_locate_failure(self) -> None:
        result = OrchestratorResult(
            level=AnalysisLevel.FAST,
            total_duration_ms=80.0,
            agent_results={
                "locate": AgentResult(role="locate", success=False, error="timeout", duration_ms=80.0)
            },
            fatal_error="locate stage failed: timeout",
        )
        sections = {s.title: s for s in summarize(result)}
        assert sections["Analysis Level"].text == "Level 1 (fast)"
        assert sections["Agent Timing"].lines == ["locate: 80ms (failed: timeout)"]
        assert sections["Hypotheses"].lines == ["No hypotheses available."]
        assert "Alternative Hypotheses" not in sections

    def test_alternatives_survive_colliding_ids(self, locate_payload: dict[str, Any]) -> None:
        investigate = _investigate(
            {
                "hypotheses": [
                    {"summary": "A", "likelihood": 70},
                    {"id": "h1", "summary": "B", "likelihood": 40},
                ]
            }
        )
        result = OrchestratorResult(
            level=AnalysisLevel.FAST,
            agent_results={
                "locate": _ok("locate", LocateOutput.model_validate(locate_payload)),
                "investigate": _ok("investigate", investigate),
            },
        )
        sections = {s.title: s for s in summarize(result)}
        assert sections["Alternative Hypotheses"].lines == ["B (40%)"]

    def test_alternatives_without_postprocessing(self, locate_payload: dict[str, Any]) -> None:
        investigate = InvestigateOutput(
            hypotheses=[
                {"id": "h", "summary": "A", "likelihood": 70},
                {"id": "h", "summary": "B", "likelihood": 40},
            ]
        )
        result = OrchestratorResult(
            level=AnalysisLevel.FAST,
            agent_results={
                "locate": _ok("locate", LocateOutput.model_validate(locate_payload)),
                "investigate": _ok("investigate", investigate),
            },
        )
        sections = {s.title: s for s in summarize(result)}
        assert sections["Alternative Hypotheses"].lines == ["B (40%)"]


class TestRenderMarkdown:
    """Single-line sections render inline, others as bullet lists."""

    def test_render(self, locate_payload: dict[str, Any]) -> None:
        result = OrchestratorResult(
            level=AnalysisLevel.FAST,
            total_duration_ms=500.0,
            agent_results={"locate": _ok("locate", LocateOutput.model_validate(locate_payload))},
        )
        markdown = render_markdown(summarize(result))
        assert "**Analysis Level:** Level 1 (fast)" in markdown
        assert "**Total Duration:** 500ms" in markdown
        assert "**Hypotheses:** No hypotheses available." in markdown
