"""Analysis depth selection.

Sparse or ambiguous reports get the thorough pipeline (with review); reports
with a clear trigger, a category hint and enough keywords get the fast one.
"""

import logging
from typing import Literal

from lens_agent.config import LensAgentConfig, get_config
from lens_agent.context import IssueContext
from lens_agent.models import AnalysisLevel

logger = logging.getLogger(__name__)


def thoroughness_score(context: IssueContext, settings: LensAgentConfig | None = None) -> int:
    """Accumulate evidence that the report needs the thorough pipeline."""
    cfg = settings or get_config()
    correlation = context.correlation
    score = 0

    top = correlation.top if correlation is not None else None
    if top is None or top.trigger is None:
        score += 2
    elif top.confidence < cfg.level_trigger_confidence:
        score += 1

    if not context.category_hint:
        score += 2

    if len(context.keywords) < cfg.level_min_keywords:
        score += 1

    if correlation is not None and len(correlation.errors) > cfg.level_max_errors:
        score += 2

    return score


def select_level(context: IssueContext, settings: LensAgentConfig | None = None) -> AnalysisLevel:
    cfg = settings or get_config()
    score = thoroughness_score(context, cfg)
    level = AnalysisLevel.THOROUGH if score >= cfg.level_thorough_score else AnalysisLevel.FAST
    logger.info(f"Level selector: score={score} -> {level.name}")
    return level


def resolve_level(
    context: IssueContext,
    forced: Literal["auto", 1, 2] | AnalysisLevel | str | int = "auto",
    settings: LensAgentConfig | None = None,
) -> AnalysisLevel:
    """Honour a forced level (1 or 2); fall back to select_level for "auto"."""
    if isinstance(forced, str) and forced.strip() in ("1", "2"):
        forced = int(forced.strip())
    if forced in (1, 2):
        return AnalysisLevel(int(forced))
    return select_level(context, settings)
