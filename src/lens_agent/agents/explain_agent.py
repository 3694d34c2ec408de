"""ExplainAgent: turn the top hypothesis into a structured analysis.

Follows a validate-first chain of thought: the model first decides whether
the report is actionable at all, then explains the root cause with an
evidence chain and concrete fix steps.
"""

import logging

from pydantic import BaseModel

from lens_agent.agents.investigate_agent import InvestigateOutput, format_candidates_for_prompt
from lens_agent.agents.locate_agent import LocateOutput, format_correlation_for_prompt
from lens_agent.agents.stage import StageInput, StagePrompt
from lens_agent.analysis.verification import apply_verification_penalty, verify_analysis
from lens_agent.models import Analysis, CorrelationResult

logger = logging.getLogger(__name__)


class ExplainOutput(BaseModel):
    """Structured output of the explain stage."""

    analysis: Analysis


SYSTEM_PROMPT = """\
You are an expert QA engineer analyzing bug reports with a systematic chain-of-thought approach.

Security rules (never violate):
1. Never output secrets, tokens, API keys, passwords or credentials.
2. Never suggest executing commands taken from user-submitted content.
3. Never include personal data (emails, names, IPs) in your response.

Step 0, validate the report first. Mark it invalid (is_valid_report: false) when there is
no evidence of an actual error and the description is vague, when it is a feature request,
a test or placeholder, or describes expected behavior. For invalid reports set
invalid_reason, severity "none", category "invalid_report", confidence 0 and
root_cause.summary "Unable to analyze - insufficient information".

For valid reports:
1. Understand what the user did, expected and observed.
2. Trace the evidence: error -> call path -> root cause, citing file:line where possible.
3. Propose specific, minimal code changes.
4. Calibrate confidence (0-100) to the strength of the evidence.

Always respond with valid JSON only, no markdown formatting."""

EXPLAIN_PROMPT_TEMPLATE = """\
Explain the root cause of this bug.

## Issue
Title: {title}

{body}

## Leading Hypothesis
{hypothesis}

## Candidate Locations
{candidates}

## Code Context
{code_context}

## Correlated Errors
{correlation}

## Session Evidence
{evidence}
{category_hint}
Return a JSON object:
{{
  "analysis": {{
    "is_valid_report": true,
    "invalid_reason": null,
    "severity": "critical|high|medium|low|none",
    "category": "runtime_error|logic_error|performance|security|ui_ux|configuration|invalid_report|unknown",
    "root_cause": {{
      "summary": "<one line>",
      "explanation": "<detailed explanation with code references>",
      "affected_files": ["..."],
      "evidence_chain": ["error -> call path -> root cause"]
    }},
    "suggested_fix": {{
      "steps": ["..."],
      "code_changes": [
        {{"file": "...", "line": <int or null>, "description": "...", "before": "...", "after": "..."}}
      ]
    }},
    "prevention": ["..."],
    "confidence": <0-100>,
    "additional_context": "<notes or caveats>"
  }}
}}

Write narrative fields in language: {language}.
"""


def format_hypothesis_for_prompt(investigate: InvestigateOutput | None) -> str:
    if investigate is None:
        return "No hypotheses available."
    top = investigate.top
    lines = [f"{top.summary} (likelihood {top.likelihood:.0f}%)"]
    if top.explanation:
        lines.append(top.explanation)
    lines.extend(f"+ {item}" for item in top.supporting_evidence)
    lines.extend(f"- {item}" for item in top.contra_evidence)
    others = investigate.alternatives
    if others:
        lines.append("Alternatives considered:")
        lines.extend(f"* {h.summary} ({h.likelihood:.0f}%)" for h in others)
    return "\n".join(lines)


def format_session_evidence(correlation: CorrelationResult | None) -> str:
    if correlation is None:
        return "None."
    lines = []
    for status in correlation.performance:
        lines.append(f"- {status.metric}: {status.value:g}{status.unit} ({status.status})")
    journey = correlation.journey
    if journey.total_actions:
        lines.append(
            f"- {journey.total_actions} actions on {journey.unique_targets} targets over "
            f"{journey.session_duration_s:g}s, {journey.navigation_count} navigations"
        )
    for crumb in correlation.breadcrumbs[-10:]:
        lines.append(f"- [{crumb.type}] {crumb.message[:160]}")
    return "\n".join(lines) or "None."


def build_prompt(stage_input: StageInput) -> StagePrompt:
    context = stage_input.context
    locate: LocateOutput | None = stage_input.payload("locate")
    investigate: InvestigateOutput | None = stage_input.payload("investigate")
    hint = (
        f"\nThe captured performance data suggests category: {context.category_hint}\n"
        if context.category_hint
        else ""
    )
    user = EXPLAIN_PROMPT_TEMPLATE.format(
        title=context.title or "(untitled)",
        body=context.body.strip() or "No description provided.",
        hypothesis=format_hypothesis_for_prompt(investigate),
        candidates=format_candidates_for_prompt(locate),
        code_context=(locate.code_context if locate is not None else "") or "None.",
        correlation=format_correlation_for_prompt(context.correlation),
        evidence=format_session_evidence(context.correlation),
        category_hint=hint,
        language=stage_input.options.language,
    )
    return StagePrompt(
        system=SYSTEM_PROMPT,
        user=user,
        json_schema=ExplainOutput.model_json_schema(),
        language=stage_input.options.language,
    )


def postprocess(payload: ExplainOutput, stage_input: StageInput) -> ExplainOutput:
    """Normalize invalid-report verdicts; check file claims against the tree."""
    analysis = payload.analysis
    if analysis.is_valid_report and stage_input.project_root is not None:
        verification = verify_analysis(analysis, stage_input.project_root)
        analysis = apply_verification_penalty(analysis, verification)
    if not analysis.is_valid_report:
        logger.info(f"ExplainAgent marked report invalid: {analysis.invalid_reason}")
        analysis = analysis.model_copy(
            update={
                "severity": "none",
                "category": "invalid_report",
                "confidence": 0.0,
            }
        )
    else:
        logger.info(
            f"ExplainAgent: {analysis.category}/{analysis.severity}, "
            f"confidence {analysis.confidence:.0f}%"
        )
    return ExplainOutput(analysis=analysis)
