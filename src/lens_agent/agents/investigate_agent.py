"""InvestigateAgent: rank competing root-cause hypotheses.

Runs whenever locate succeeded, including when it produced no candidates;
in that case the model works from the report alone.
"""

import logging

from pydantic import BaseModel, Field

from lens_agent.agents.locate_agent import LocateOutput, format_correlation_for_prompt
from lens_agent.agents.stage import StageInput, StagePrompt
from lens_agent.models import Hypothesis

logger = logging.getLogger(__name__)

MAX_HYPOTHESES = 5


class InvestigateOutput(BaseModel):
    """Structured output of the investigate stage."""

    hypotheses: list[Hypothesis] = Field(min_length=1, max_length=MAX_HYPOTHESES)
    primary_hypothesis: str = ""  # id of the most likely hypothesis
    additional_context: str = ""

    @property
    def top(self) -> Hypothesis:
        for hypothesis in self.hypotheses:
            if hypothesis.id == self.primary_hypothesis:
                return hypothesis
        return self.hypotheses[0]

    @property
    def alternatives(self) -> list[Hypothesis]:
        """Every hypothesis except the top one, in ranked order."""
        top = self.top
        return [h for h in self.hypotheses if h is not top]


SYSTEM_PROMPT = """\
You are a bug investigation expert. Generate multiple distinct hypotheses about what could be causing a reported bug.

For each hypothesis:
1. Be specific: identify the mechanism, not just "there's a bug".
2. Cite evidence: reference code locations (file:line) and captured errors that support it.
3. Consider alternatives: list what would disprove it.
4. Assign a likelihood (0-100) based on evidence strength:
   - 80-100: stack trace points directly at the issue
   - 50-79: pattern matches a known bug type
   - 20-49: speculation based on common patterns
   - <20: no direct evidence

Categories to consider: data issues (null/undefined, type mismatch), logic errors,
integration issues (API misuse), configuration issues, timing issues (race conditions, async ordering).
Likelihoods are independent estimates and need not sum to 100.
Always include at least one alternative hypothesis that challenges the obvious conclusion.

Always respond with valid JSON only, no markdown formatting."""

INVESTIGATE_PROMPT_TEMPLATE = """\
Investigate this bug and generate 2-4 hypotheses about its root cause.

## Issue
Title: {title}

{body}

## Extracted Keywords
{keywords}

## User Intent
{intent}

## Candidate Locations
{candidates}

## Code Context
{code_context}

## Correlated Errors
{correlation}

Return a JSON object:
{{
  "hypotheses": [
    {{
      "id": "h1",
      "summary": "<one line>",
      "explanation": "<mechanism>",
      "likelihood": <0-100>,
      "supporting_evidence": ["file:line ..."],
      "contra_evidence": ["..."]
    }}
  ],
  "primary_hypothesis": "<id of the most likely hypothesis>",
  "additional_context": "<investigation notes>"
}}

Write narrative fields in language: {language}.
"""


def format_candidates_for_prompt(locate: LocateOutput | None) -> str:
    if locate is None or not locate.candidates:
        return "No candidate locations found."
    lines = []
    for candidate in locate.candidates:
        where = f"{candidate.path}:{candidate.line}" if candidate.line else candidate.path
        lines.append(f"- {where} ({candidate.relevance_score:.2f}) {candidate.reason}".rstrip())
    return "\n".join(lines)


def format_intent_for_prompt(locate: LocateOutput | None) -> str:
    if locate is None or locate.intent is None:
        return "Not extracted."
    intent = locate.intent
    return (
        f"- Action: {intent.user_action or 'unknown'}\n"
        f"- Expected: {intent.expected_behavior or 'unknown'}\n"
        f"- Actual: {intent.actual_behavior or 'unknown'}"
    )


def build_prompt(stage_input: StageInput) -> StagePrompt:
    context = stage_input.context
    locate: LocateOutput | None = stage_input.payload("locate")
    user = INVESTIGATE_PROMPT_TEMPLATE.format(
        title=context.title or "(untitled)",
        body=context.body.strip() or "No description provided.",
        keywords=", ".join(sorted(context.keywords)) or "none",
        intent=format_intent_for_prompt(locate),
        candidates=format_candidates_for_prompt(locate),
        code_context=(locate.code_context if locate is not None else "") or "None.",
        correlation=format_correlation_for_prompt(context.correlation),
        language=stage_input.options.language,
    )
    return StagePrompt(
        system=SYSTEM_PROMPT,
        user=user,
        json_schema=InvestigateOutput.model_json_schema(),
        language=stage_input.options.language,
    )


def unique_ids(hypotheses: list[Hypothesis]) -> list[Hypothesis]:
    """Relabel blank or repeated ids as h<n>, skipping ids already taken.

    The first hypothesis carrying a given id keeps it.
    """
    supplied = {h.id.strip() for h in hypotheses if h.id.strip()}
    taken: set[str] = set()
    counter = 0
    result = []
    for hypothesis in hypotheses:
        label = hypothesis.id.strip()
        if not label or label in taken:
            counter += 1
            while f"h{counter}" in supplied or f"h{counter}" in taken:
                counter += 1
            label = f"h{counter}"
        taken.add(label)
        result.append(hypothesis if label == hypothesis.id else hypothesis.model_copy(update={"id": label}))
    return result


def postprocess(payload: InvestigateOutput, stage_input: StageInput) -> InvestigateOutput:
    """Make ids unique, order by likelihood desc, repair the primary id."""
    hypotheses = unique_ids(list(payload.hypotheses))
    hypotheses.sort(key=lambda h: h.likelihood, reverse=True)

    primary = payload.primary_hypothesis.strip()
    if primary not in {h.id for h in hypotheses}:
        logger.warning(
            f"InvestigateAgent primary hypothesis '{primary}' unknown; using '{hypotheses[0].id}'"
        )
        primary = hypotheses[0].id

    logger.info(
        f"InvestigateAgent produced {len(hypotheses)} hypotheses "
        f"(top likelihood {hypotheses[0].likelihood:.0f}%)"
    )
    return payload.model_copy(update={"hypotheses": hypotheses, "primary_hypothesis": primary})
