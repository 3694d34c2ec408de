"""Render an OrchestratorResult as structured text sections.

Consumers (issue comment posting, the HTTP API) compose the final report
body from these sections; nothing here decides where the text goes.
"""

from pydantic import BaseModel

from lens_agent.models import ROLES, AnalysisLevel, OrchestratorResult

_LEVEL_LABELS = {
    AnalysisLevel.FAST: "Level 1 (fast)",
    AnalysisLevel.THOROUGH: "Level 2 (thorough)",
}


class SummarySection(BaseModel):
    """One titled block of summary text."""

    model_config = {"frozen": True}

    title: str
    lines: list[str]

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


def _format_duration(ms: float) -> str:
    if ms < 1000:
        return f"{ms:.0f}ms"
    return f"{ms / 1000:.1f}s"


def summarize(result: OrchestratorResult) -> list[SummarySection]:
    """Analysis level, durations, reviewer feedback and alternative hypotheses.

    Reviewer sections appear only when the reviewer produced entries.  When
    no hypotheses are available a "Hypotheses" note says so instead of an
    empty "Alternative Hypotheses" section.
    """
    sections = [
        SummarySection(title="Analysis Level", lines=[_LEVEL_LABELS[result.level]]),
        SummarySection(title="Total Duration", lines=[_format_duration(result.total_duration_ms)]),
    ]

    timing = []
    for role in ROLES:
        stage = result.get(role)
        if stage is None:
            continue
        status = "ok" if stage.success else f"failed: {stage.error}"
        timing.append(f"{role}: {_format_duration(stage.duration_ms)} ({status})")
    sections.append(SummarySection(title="Agent Timing", lines=timing))

    review = result.get("review")
    if review is not None and review.success:
        if review.payload.issues:
            sections.append(SummarySection(title="Reviewer Issues", lines=list(review.payload.issues)))
        if review.payload.suggestions:
            sections.append(
                SummarySection(title="Reviewer Suggestions", lines=list(review.payload.suggestions))
            )

    investigate = result.get("investigate")
    if investigate is not None and investigate.success:
        alternatives = [
            f"{h.summary} ({h.likelihood:.0f}%)" for h in investigate.payload.alternatives
        ]
        if alternatives:
            sections.append(SummarySection(title="Alternative Hypotheses", lines=alternatives))
    else:
        sections.append(SummarySection(title="Hypotheses", lines=["No hypotheses available."]))

    return sections


def render_markdown(sections: list[SummarySection]) -> str:
    blocks = []
    for section in sections:
        if len(section.lines) == 1:
            blocks.append(f"**{section.title}:** {section.lines[0]}")
        else:
            body = "\n".join(f"- {line}" for line in section.lines)
            blocks.append(f"**{section.title}:**\n{body}")
    return "\n\n".join(blocks)
