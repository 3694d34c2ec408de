"""End-to-end pipeline runs with a scripted model invoker.

No network: the invoker replays canned payloads, so these tests exercise
ingest, parsing, correlation, level selection, the LangGraph workflow and
the summary renderer together.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from lens_agent.agents.stage import AnalysisOptions
from lens_agent.analysis.issue_markdown import parse_issue_markdown
from lens_agent.config import LensAgentConfig
from lens_agent.graph import run_pipeline
from lens_agent.models import AnalysisLevel, IssueRef, RawBugReport
from lens_agent.report import render_markdown, summarize


class TestStructuredReport:
    """Structured report straight from the capture layer."""

    def test_thorough_run(
        self,
        sample_report: RawBugReport,
        make_invoker: Callable[..., Any],
        settings: LensAgentConfig,
    ) -> None:
        invoker = make_invoker()
        result = run_pipeline(
            sample_report,
            AnalysisOptions(analysis_level=2),
            invoker,
            issue=IssueRef(number=3, owner="acme", repo="shop"),
            settings=settings,
        )

        assert result.level == AnalysisLevel.THOROUGH
        assert invoker.calls == ["locate", "investigate", "explain", "review"]
        assert result.final_analysis.confidence == 60.0

        # Correlation evidence reaches the prompts
        locate_prompt = invoker.prompts["locate"].user
        assert "after click on submit-button" in locate_prompt
        assert "+50ms" in locate_prompt

        # Stack frame files are merged into the candidates
        locate = result.agent_results["locate"].payload
        paths = [c.path for c in locate.candidates]
        assert paths.count("src/cart/total.ts") == 1

        markdown = render_markdown(summarize(result))
        assert "Level 2 (thorough)" in markdown
        assert "Race hypothesis not ruled out" in markdown

    def test_project_root_feeds_real_code(
        self,
        sample_report: RawBugReport,
        make_invoker: Callable[..., Any],
        settings: LensAgentConfig,
        source_tree: Path,
    ) -> None:
        invoker = make_invoker()
        result = run_pipeline(
            sample_report,
            AnalysisOptions(analysis_level=2),
            invoker,
            settings=settings.model_copy(update={"project_root": str(source_tree)}),
        )

        locate = result.agent_results["locate"].payload
        paths = [c.path for c in locate.candidates]
        assert "src/cart/format.ts" in paths
        assert not any("node_modules" in p for p in paths)

        for role in ("investigate", "explain"):
            prompt = invoker.prompts[role].user
            assert "### src/cart/total.ts" in prompt
            assert "return formatPrice(cart.total);" in prompt

        # The analysis only names files that exist, so confidence is untouched
        assert result.final_analysis.confidence == 60.0


class TestIssueMarkdown:
    """Issue body from the reporting widget."""

    def test_widget_issue_end_to_end(
        self,
        sample_issue_body: str,
        make_invoker: Callable[..., Any],
        settings: LensAgentConfig,
    ) -> None:
        report = parse_issue_markdown(sample_issue_body, title="Checkout broken")
        invoker = make_invoker()
        result = run_pipeline(report, AnalysisOptions(), invoker, settings=settings)

        # LCP 3200ms above the hint threshold gives a performance hint; with a
        # clear trigger and plenty of keywords the fast pipeline is enough.
        assert result.level == AnalysisLevel.FAST
        assert "review" not in result.agent_results
        assert result.final_analysis is not None

        locate_prompt = invoker.prompts["locate"].user
        assert "button.submit-order" in locate_prompt

        explain_prompt = invoker.prompts["explain"].user
        assert "suggests category: performance" in explain_prompt

    @pytest.mark.parametrize("language", ["en", "ko"])
    def test_language_forwarded(
        self,
        sample_issue_body: str,
        make_invoker: Callable[..., Any],
        settings: LensAgentConfig,
        language: str,
    ) -> None:
        invoker = make_invoker()
        run_pipeline(
            parse_issue_markdown(sample_issue_body),
            AnalysisOptions(language=language),
            invoker,
            settings=settings,
        )
        assert {prompt.language for prompt in invoker.prompts.values()} == {language}


class TestDegradedRuns:
    """Stage failures never escape the pipeline."""

    def test_everything_fails_gracefully(
        self,
        sample_report: RawBugReport,
        make_invoker: Callable[..., Any],
        settings: LensAgentConfig,
    ) -> None:
        invoker = make_invoker(locate={"candidates": "not a list"})
        result = run_pipeline(sample_report, AnalysisOptions(analysis_level=2), invoker, settings=settings)

        assert list(result.agent_results) == ["locate"]
        assert result.agent_results["locate"].failure_kind == "validation"
        assert result.fatal_error is not None
        assert result.final_analysis is None
        assert "No hypotheses available." in render_markdown(summarize(result))
