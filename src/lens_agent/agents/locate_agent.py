"""LocateAgent: extract the reporter's intent and candidate code locations.

Mandatory first stage.  The model reads the report digest, correlation
evidence and keywords; files referenced by captured stack traces are merged
into the candidates so they are never lost to the model's ranking.

With a project root configured, candidates are also discovered from the
source tree, every path is mapped onto a real file, and real code excerpts
replace guesswork in ``code_context``.
"""

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field

from lens_agent.agents.stage import StageInput, StagePrompt
from lens_agent.analysis.codebase import (
    basename,
    build_code_context,
    expand_with_imports,
    find_relevant_files,
    list_source_files,
    resolve_source_path,
)
from lens_agent.models import CorrelationResult, StackFrame

logger = logging.getLogger(__name__)

# Relevance given to files named by a stack frame of a detected error.
STACK_FRAME_RELEVANCE = 0.9
# Discovery scores map onto relevance as score / scale, capped below the
# stack-frame relevance.
DISCOVERY_SCORE_SCALE = 100.0
DISCOVERED_MAX_RELEVANCE = 0.85
# Relevance multiplier for candidates naming a file the tree does not have.
MISSING_FILE_FACTOR = 0.5

# --- Pydantic Models ---


class ExtractedIntent(BaseModel):
    """What the reporter was doing and what went wrong."""

    user_action: str = ""
    expected_behavior: str = ""
    actual_behavior: str = ""
    inferred_features: list[str] = Field(default_factory=list)
    ui_elements: list[str] = Field(default_factory=list)
    error_patterns: list[str] = Field(default_factory=list)
    page_context: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)


class CandidateLocation(BaseModel):
    """A source file worth investigating."""

    path: str = Field(min_length=1)
    reason: str = ""
    relevance_score: float = Field(default=0.5, ge=0.0, le=1.0)
    line: int | None = None


class LocateOutput(BaseModel):
    """Structured output of the locate stage."""

    intent: ExtractedIntent | None = None
    candidates: list[CandidateLocation] = Field(default_factory=list)
    search_keywords: list[str] = Field(default_factory=list)
    code_context: str = ""


# --- LLM Prompt Template ---

SYSTEM_PROMPT = """\
You are a code search expert helping to locate the source of a reported web application bug.
The report may be written in ANY language; understand it regardless of language.

Your task:
1. Extract the user's intent: what they were doing, what they expected, what happened instead.
2. Identify the source files most likely involved (components, handlers, hooks, API routes, services).
3. Rank candidates by relevance (0.0-1.0). Prefer files named by stack traces and error messages.

Always respond with valid JSON only, no markdown formatting."""

LOCATE_PROMPT_TEMPLATE = """\
Locate the code relevant to this bug report.

## Issue
Title: {title}

{digest}

## Correlated Errors
{correlation_formatted}

## Extracted Keywords
{keywords}

Return at most {max_files} candidates as a JSON object:
{{
  "intent": {{
    "user_action": "...",
    "expected_behavior": "...",
    "actual_behavior": "...",
    "inferred_features": ["..."],
    "ui_elements": ["..."],
    "error_patterns": ["..."],
    "page_context": "<route or page name, or null>",
    "confidence": <0-100>
  }},
  "candidates": [
    {{"path": "src/...", "reason": "...", "relevance_score": <0.0-1.0>, "line": <int or null>}}
  ],
  "search_keywords": ["..."],
  "code_context": "<short notes about the code areas involved>"
}}

Write narrative fields in language: {language}.
"""


def format_correlation_for_prompt(correlation: CorrelationResult | None) -> str:
    if correlation is None or not correlation.errors:
        return "No errors detected."
    lines = []
    for item in correlation.errors:
        message = item.error.message.splitlines()[0][:200]
        if item.trigger is not None:
            lines.append(
                f"- {message} (after {item.trigger.action} on {item.trigger.target}, "
                f"+{item.trigger.delta_ms:.0f}ms, confidence {item.confidence:.2f})"
            )
        else:
            lines.append(f"- {message} (no trigger action)")
        for frame in item.error.stack_frames[:3]:
            where = f"{frame.file}:{frame.line}" if frame.line is not None else frame.file
            lines.append(f"    at {frame.function or '<anonymous>'} ({where})")
    return "\n".join(lines)


def build_prompt(stage_input: StageInput) -> StagePrompt:
    context = stage_input.context
    digest = context.body.strip()
    if context.parsed_report is not None and context.parsed_report.summary:
        digest = f"{digest}\n\n## Summary\n{context.parsed_report.summary}"
    user = LOCATE_PROMPT_TEMPLATE.format(
        title=context.title or "(untitled)",
        digest=digest or "No description provided.",
        correlation_formatted=format_correlation_for_prompt(context.correlation),
        keywords=", ".join(sorted(context.keywords)) or "none",
        max_files=stage_input.options.max_files,
        language=stage_input.options.language,
    )
    return StagePrompt(
        system=SYSTEM_PROMPT,
        user=user,
        json_schema=LocateOutput.model_json_schema(),
        language=stage_input.options.language,
    )


def stack_frame_candidates(stage_input: StageInput) -> list[CandidateLocation]:
    parsed = stage_input.context.parsed_report
    if parsed is None:
        return []
    candidates = []
    for error in parsed.errors:
        for frame in error.stack_frames:
            candidates.append(
                CandidateLocation(
                    path=frame.file,
                    reason=f"referenced by stack trace of: {error.message.splitlines()[0][:80]}",
                    relevance_score=STACK_FRAME_RELEVANCE,
                    line=frame.line,
                )
            )
    return candidates


def _same_file(a: str, b: str) -> bool:
    """Equal paths, or a bare file name and a path ending in it."""
    if a == b:
        return True
    if "/" in a and "/" in b:
        return False
    return basename(a) == basename(b)


def _combine(existing: CandidateLocation, candidate: CandidateLocation) -> CandidateLocation:
    if candidate.relevance_score > existing.relevance_score:
        best, other = candidate, existing
    else:
        best, other = existing, candidate
    path = max(existing.path, candidate.path, key=lambda p: p.count("/"))
    line = best.line if best.line is not None else other.line
    return best.model_copy(update={"path": path, "line": line})


def merge_candidates(
    inferred: list[CandidateLocation],
    discovered: list[CandidateLocation],
    max_files: int,
) -> list[CandidateLocation]:
    """Dedupe by file keeping the highest relevance; sort desc; cap at max_files.

    A bare file name from a stack frame folds into a full path naming the
    same file, and the full path is kept.
    """
    merged: list[CandidateLocation] = []
    for candidate in [*inferred, *discovered]:
        candidate = candidate.model_copy(update={"path": candidate.path.strip()})
        for index, existing in enumerate(merged):
            if _same_file(existing.path, candidate.path):
                merged[index] = _combine(existing, candidate)
                break
        else:
            merged.append(candidate)
    ranked = sorted(merged, key=lambda c: c.relevance_score, reverse=True)
    return ranked[:max_files]


# --- Source tree grounding ---


def _frames(stage_input: StageInput) -> list[StackFrame]:
    parsed = stage_input.context.parsed_report
    if parsed is None:
        return []
    return [frame for error in parsed.errors for frame in error.stack_frames]


def ground_candidate(candidate: CandidateLocation, root: Path, tree: list[str]) -> CandidateLocation:
    """Rewrite the path to the tree file it names; demote it when there is none."""
    resolved = resolve_source_path(root, candidate.path, tree)
    if resolved is not None:
        return candidate.model_copy(update={"path": resolved})
    logger.info(f"LocateAgent candidate '{candidate.path}' not found under {root}")
    return candidate.model_copy(
        update={
            "relevance_score": round(candidate.relevance_score * MISSING_FILE_FACTOR, 4),
            "reason": f"{candidate.reason} (not found in source tree)".strip(),
        }
    )


def discover_candidates(
    payload: LocateOutput,
    stage_input: StageInput,
    root: Path,
    tree: list[str],
) -> list[CandidateLocation]:
    """Candidates ranked from the tree by keywords, stack frames and error text."""
    context = stage_input.context
    keywords = set(context.keywords) | set(payload.search_keywords)
    if payload.intent is not None:
        keywords.update(payload.intent.inferred_features)
        keywords.update(payload.intent.ui_elements)
    frames = _frames(stage_input)
    parsed = context.parsed_report
    messages = [e.message.splitlines()[0] for e in parsed.errors if e.message] if parsed else []

    files = find_relevant_files(
        root, sorted(keywords), frames, messages, stage_input.options.max_files, tree
    )
    files = expand_with_imports(root, files)

    lines = {basename(f.file).lower(): f.line for f in frames if f.line is not None}
    candidates = []
    for file in files:
        if file.score <= 0:
            continue
        candidates.append(
            CandidateLocation(
                path=file.path,
                reason=f"matched {', '.join(file.matched[:3])}" if file.matched else "",
                relevance_score=round(min(DISCOVERED_MAX_RELEVANCE, file.score / DISCOVERY_SCORE_SCALE), 4),
                line=lines.get(basename(file.path).lower()),
            )
        )
    logger.info(f"LocateAgent discovered {len(candidates)} file(s) under {root}")
    return candidates


def postprocess(payload: LocateOutput, stage_input: StageInput) -> LocateOutput:
    inferred = list(payload.candidates)
    discovered = stack_frame_candidates(stage_input)
    root = stage_input.project_root
    tree: list[str] = []
    if root is not None:
        tree = list_source_files(root)
        inferred = [ground_candidate(c, root, tree) for c in inferred]
        discovered = [ground_candidate(c, root, tree) for c in discovered]
        discovered += discover_candidates(payload, stage_input, root, tree)

    candidates = merge_candidates(inferred, discovered, stage_input.options.max_files)
    if not candidates:
        logger.warning("LocateAgent found no candidate locations")
    if payload.intent is not None:
        logger.debug(f"LocateAgent intent: {json.dumps(payload.intent.model_dump())[:300]}")

    code_context = payload.code_context
    if root is not None:
        known = set(tree)
        excerpts = build_code_context(
            root, [c.path for c in candidates if c.path in known], _frames(stage_input)
        )
        code_context = "\n\n".join(part for part in (code_context.strip(), excerpts) if part)
    return payload.model_copy(update={"candidates": candidates, "code_context": code_context})
