"""Check an analysis against the project tree.

No LLM. Files named in the root cause and in the suggested code changes
must exist; ``file:line`` references must point inside the file; "before"
snippets of code changes must appear in the file they patch.  Unverified
claims lower the analysis confidence.
"""

import logging
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from lens_agent.analysis.codebase import list_source_files, read_source, resolve_source_path
from lens_agent.models import Analysis

logger = logging.getLogger(__name__)

# A critical miss caps confidence here.
CRITICAL_CONFIDENCE_CAP = 30.0
WARNING_PENALTY = 10.0
MAX_WARNING_PENALTY = 30.0

_LINE_REFERENCE = re.compile(
    r"([\w./-]+\.(?:tsx|ts|jsx|js|mjs|vue|svelte|py|go|rs|java|kt)):(\d+)"
)


class VerificationCheck(BaseModel):
    """One claim from the analysis and whether the tree backs it."""

    kind: Literal["file", "line_reference", "code_citation"]
    claim: str
    verified: bool
    severity: Literal["critical", "warning", "info"]
    details: str = ""


class VerificationResult(BaseModel):
    checks: list[VerificationCheck] = Field(default_factory=list)

    @property
    def critical_failures(self) -> list[VerificationCheck]:
        return [c for c in self.checks if not c.verified and c.severity == "critical"]

    @property
    def warning_failures(self) -> list[VerificationCheck]:
        return [c for c in self.checks if not c.verified and c.severity == "warning"]

    @property
    def score(self) -> float:
        """100 minus 25 per critical and 10 per warning failure, floored at 0."""
        return max(0.0, 100.0 - 25 * len(self.critical_failures) - 10 * len(self.warning_failures))


def _squash(code: str) -> str:
    return " ".join(code.split()).lower()


def verify_analysis(
    analysis: Analysis,
    root: Path,
    tree: Sequence[str] | None = None,
) -> VerificationResult:
    tree = tree if tree is not None else list_source_files(root)
    checks: list[VerificationCheck] = []
    resolved: dict[str, str | None] = {}

    def check_file(path: str) -> str | None:
        if path not in resolved:
            resolved[path] = resolve_source_path(root, path, tree)
            found = resolved[path] is not None
            checks.append(
                VerificationCheck(
                    kind="file",
                    claim=path,
                    verified=found,
                    severity="info" if found else "critical",
                    details=f"found at {resolved[path]}" if found else "not in the project tree",
                )
            )
        return resolved[path]

    for path in analysis.root_cause.affected_files:
        check_file(path)

    for change in analysis.suggested_fix.code_changes:
        target = check_file(change.file)
        if target is None or not change.before or not change.before.strip():
            continue
        found = _squash(change.before) in _squash(read_source(root, target))
        checks.append(
            VerificationCheck(
                kind="code_citation",
                claim=f"before code in {change.file}",
                verified=found,
                severity="info" if found else "warning",
                details="" if found else "snippet does not appear in the file",
            )
        )

    seen: set[tuple[str, int]] = set()
    text = "\n".join([analysis.root_cause.explanation, *analysis.root_cause.evidence_chain])
    for m in _LINE_REFERENCE.finditer(text):
        path, line = m.group(1), int(m.group(2))
        if (path, line) in seen:
            continue
        seen.add((path, line))
        target = resolve_source_path(root, path, tree)
        if target is None:
            checks.append(
                VerificationCheck(
                    kind="line_reference",
                    claim=f"{path}:{line}",
                    verified=False,
                    severity="warning",
                    details="file not in the project tree",
                )
            )
            continue
        length = len(read_source(root, target).splitlines())
        checks.append(
            VerificationCheck(
                kind="line_reference",
                claim=f"{path}:{line}",
                verified=1 <= line <= length,
                severity="info" if 1 <= line <= length else "critical",
                details=f"{target} has {length} lines",
            )
        )

    return VerificationResult(checks=checks)


def apply_verification_penalty(analysis: Analysis, result: VerificationResult) -> Analysis:
    """Cap confidence on critical misses, subtract for warnings, note what failed."""
    critical = result.critical_failures
    warnings = result.warning_failures
    if not critical and not warnings:
        return analysis

    confidence = analysis.confidence
    notes = []
    if critical:
        confidence = min(confidence, CRITICAL_CONFIDENCE_CAP)
        notes.append(
            f"- {len(critical)} claim(s) not backed by the source tree "
            f"(confidence capped at {CRITICAL_CONFIDENCE_CAP:.0f}%)"
        )
        notes.extend(f"  - {c.kind}: {c.claim} ({c.details})" for c in critical[:3])
    if warnings:
        penalty = min(WARNING_PENALTY * len(warnings), MAX_WARNING_PENALTY)
        confidence -= penalty
        notes.append(f"- {len(warnings)} unverified reference(s) (-{penalty:.0f}%)")
    confidence = float(round(max(0.0, min(100.0, confidence))))

    logger.warning(
        f"Verification: {len(critical)} critical, {len(warnings)} warning failure(s); "
        f"confidence {analysis.confidence:.0f}% -> {confidence:.0f}%"
    )
    existing = analysis.additional_context or ""
    context = f"{existing}\n\n## Source Verification\n\n" + "\n".join(notes)
    return analysis.model_copy(
        update={"confidence": confidence, "additional_context": context.strip()}
    )
