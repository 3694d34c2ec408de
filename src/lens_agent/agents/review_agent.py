"""ReviewAgent: validate the explanation and calibrate its confidence.

Thorough level only, and only when the reviewer is enabled.  A failed
review never invalidates the analysis; the unreviewed analysis is used.
"""

import json
import logging

from pydantic import BaseModel, Field

from lens_agent.agents.explain_agent import ExplainOutput
from lens_agent.agents.investigate_agent import InvestigateOutput
from lens_agent.agents.locate_agent import LocateOutput
from lens_agent.agents.stage import StageInput, StagePrompt
from lens_agent.errors import ValidationFailure
from lens_agent.models import Analysis

logger = logging.getLogger(__name__)


class ReviewOutput(BaseModel):
    """Structured output of the review stage."""

    approved: bool
    confidence_adjustment: float = Field(default=0.0, ge=-50.0, le=20.0)
    issues: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    verified_claims: list[str] = Field(default_factory=list)
    counter_evidence: list[str] = Field(default_factory=list)


SYSTEM_PROMPT = """\
You are a senior code review expert validating bug analysis reports.

Review the analysis and validate:
1. Evidence quality: are claims backed by code references?
2. Logic soundness: does the root cause explanation make sense?
3. Counter-evidence: is there evidence that contradicts the conclusion?
4. Fix validity: would the suggested fixes actually work?

Approve when the root cause is identified with code evidence, fixes are specific and
actionable, no major counter-evidence exists and confidence is calibrated.
Reject when claims lack evidence, the explanation has logical flaws, counter-evidence
is ignored or fixes are vague.

Confidence adjustment (-50 to +20):
- +10 to +20: exceptionally thorough, all claims verified
- 0: acceptable as-is
- -10 to -20: minor issues, some claims unverified
- -30 to -50: major issues, significant counter-evidence or logical flaws

Always respond with valid JSON only, no markdown formatting."""

REVIEW_PROMPT_TEMPLATE = """\
Review this bug analysis for accuracy and quality.

## Analysis
{analysis_json}

## Candidate Locations
{candidates}

## Hypotheses Considered
{hypotheses}

Return a JSON object:
{{
  "approved": true,
  "confidence_adjustment": <-50 to 20>,
  "issues": ["..."],
  "suggestions": ["..."],
  "verified_claims": ["..."],
  "counter_evidence": ["..."]
}}

Write narrative fields in language: {language}.
"""


def build_prompt(stage_input: StageInput) -> StagePrompt:
    explain: ExplainOutput | None = stage_input.payload("explain")
    if explain is None:
        raise ValidationFailure("review requires a successful explain stage")
    locate: LocateOutput | None = stage_input.payload("locate")
    investigate: InvestigateOutput | None = stage_input.payload("investigate")

    candidates = (
        "\n".join(f"- {c.path}" for c in locate.candidates)
        if locate is not None and locate.candidates
        else "None."
    )
    hypotheses = (
        "\n".join(f"- {h.summary} ({h.likelihood:.0f}%)" for h in investigate.hypotheses)
        if investigate is not None
        else "None."
    )
    user = REVIEW_PROMPT_TEMPLATE.format(
        analysis_json=json.dumps(explain.analysis.model_dump(), indent=2, ensure_ascii=False),
        candidates=candidates,
        hypotheses=hypotheses,
        language=stage_input.options.language,
    )
    return StagePrompt(
        system=SYSTEM_PROMPT,
        user=user,
        json_schema=ReviewOutput.model_json_schema(),
        language=stage_input.options.language,
    )


def postprocess(payload: ReviewOutput, stage_input: StageInput) -> ReviewOutput:
    logger.info(
        f"ReviewAgent: approved={payload.approved}, "
        f"adjustment={payload.confidence_adjustment:+.0f}, issues={len(payload.issues)}"
    )
    return payload


def apply_review(analysis: Analysis, review: ReviewOutput) -> Analysis:
    """Adjust confidence (clamped to 0-100) and append reviewer notes."""
    confidence = max(0.0, min(100.0, analysis.confidence + review.confidence_adjustment))

    notes = [
        "**Review status:** approved"
        if review.approved
        else "**Review status:** issues found during review"
    ]
    if review.issues:
        notes.append("\n**Issues found:**\n" + "\n".join(f"- {i}" for i in review.issues))
    if review.suggestions:
        notes.append("\n**Suggestions:**\n" + "\n".join(f"- {s}" for s in review.suggestions))
    if review.verified_claims:
        notes.append(
            "\n**Verified claims:**\n" + "\n".join(f"- {c}" for c in review.verified_claims)
        )
    if review.counter_evidence:
        notes.append(
            "\n**Counter-evidence:**\n" + "\n".join(f"- {c}" for c in review.counter_evidence)
        )

    existing = analysis.additional_context or ""
    context = f"{existing}\n\n---\n\n## Reviewer Notes\n\n" + "\n".join(notes)
    return analysis.model_copy(
        update={"confidence": confidence, "additional_context": context.strip()}
    )
