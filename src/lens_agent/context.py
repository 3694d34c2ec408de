"""IssueContext: the normalized record handed to the orchestrator.

The context is built empty, enriched additively from heterogeneous sources
(structured payload fields, free-text parsing, correlation), then frozen
before the first stage runs.  Any mutation after freeze() is a contract
violation.
"""

from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, PrivateAttr

from lens_agent.errors import AlreadyAttachedError, ContextFrozenError
from lens_agent.models import CorrelationResult, ParsedBugReport


class IssueContext(BaseModel):
    """Analysis input, mutable until freeze()."""

    title: str
    body: str
    issue_number: int
    owner: str
    repo: str
    keywords: frozenset[str] = frozenset()
    category_hint: str | None = None
    parsed_report: ParsedBugReport | None = None
    correlation: CorrelationResult | None = None

    _frozen: bool = PrivateAttr(default=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if name != "_frozen" and self._frozen:
            raise ContextFrozenError(
                f"IssueContext is frozen; cannot set '{name}' once orchestration started"
            )
        super().__setattr__(name, value)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> "IssueContext":
        """Mark orchestration as started. Idempotent."""
        self._frozen = True
        return self

    def merge_keywords(self, extra: Iterable[str]) -> "IssueContext":
        """Union extra keywords into the keyword set."""
        cleaned = {k.strip() for k in extra if k and k.strip()}
        self.keywords = self.keywords | cleaned
        return self

    def set_category_hint(self, hint: str | None) -> "IssueContext":
        """Override the category hint; empty hints are ignored."""
        if hint and hint.strip():
            self.category_hint = hint.strip()
        elif self._frozen:
            raise ContextFrozenError("IssueContext is frozen; cannot set 'category_hint'")
        return self

    def attach_parsed_report(self, parsed: ParsedBugReport) -> "IssueContext":
        if self.parsed_report is not None:
            raise AlreadyAttachedError("parsed report already attached to IssueContext")
        self.parsed_report = parsed
        return self

    def attach_correlation(self, correlation: CorrelationResult) -> "IssueContext":
        if self.correlation is not None:
            raise AlreadyAttachedError("correlation result already attached to IssueContext")
        self.correlation = correlation
        return self


def build_issue_context(
    title: str,
    body: str,
    issue_number: int,
    owner: str,
    repo: str,
) -> IssueContext:
    """Create an empty, unfrozen IssueContext."""
    return IssueContext(
        title=title,
        body=body,
        issue_number=issue_number,
        owner=owner,
        repo=repo,
    )
