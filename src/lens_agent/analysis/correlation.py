"""Error-to-action correlation.

No LLM. For every detected error, find the user action that most likely
triggered it: the nearest action preceding the error inside a bounded
look-back window.  Confidence decays exponentially with the time delta and
grows with how strongly the action's target descriptor is referenced by the
error text.

Also builds the session timeline (breadcrumbs), web-vitals ratings and
journey statistics that accompany the correlation in prompts.
"""

import logging
import math
import re
from collections.abc import Sequence

from lens_agent.config import LensAgentConfig, get_config
from lens_agent.models import (
    Breadcrumb,
    CorrelatedError,
    CorrelationResult,
    DetectedError,
    ParsedBugReport,
    PerformanceSnapshot,
    PerformanceStatus,
    RawBugReport,
    TriggerAction,
    UserAction,
    UserJourney,
)

logger = logging.getLogger(__name__)

# Core Web Vitals thresholds: (good, needs_improvement) upper bounds.
PERFORMANCE_THRESHOLDS: dict[str, tuple[float, float]] = {
    "lcp": (2500.0, 4000.0),
    "fid": (100.0, 300.0),
    "cls": (0.1, 0.25),
    "ttfb": (800.0, 1800.0),
}

_INTERACTIVE_HINTS = ("button", "btn", "submit", "form", "input", "modal", "dialog", "link")
_TOKEN_SPLIT = re.compile(r"[.#\s>:\[\]=\"'()_-]+")


def target_similarity(target: str, error: DetectedError) -> float:
    """Score in [0, 1] of how strongly the error references the action target.

    Half of the score comes from any descriptor token (id, class, tag) being
    mentioned by the error message or its stack frames; the other half from
    the target being an interactive element.
    """
    if not target:
        return 0.0
    target_lower = target.lower()
    haystack = " ".join(
        [error.message]
        + [f"{f.file} {f.function or ''}" for f in error.stack_frames]
    ).lower()

    score = 0.0
    tokens = [t for t in _TOKEN_SPLIT.split(target_lower) if len(t) > 2]
    if any(token in haystack for token in tokens):
        score += 0.5
    if any(hint in target_lower for hint in _INTERACTIVE_HINTS):
        score += 0.5
    return score


def trigger_confidence(
    delta_ms: float,
    similarity: float,
    decay_ms: float,
    base_weight: float,
) -> float:
    """Strictly decreasing in delta_ms for fixed similarity; within (0, 1]."""
    recency = math.exp(-delta_ms / decay_ms)
    return recency * (base_weight + (1.0 - base_weight) * similarity)


def find_preceding_actions(
    actions: Sequence[UserAction],
    error_ts: float,
    window_ms: float,
) -> list[UserAction]:
    """Actions within [error_ts - window_ms, error_ts], in input order."""
    start = error_ts - window_ms
    return [a for a in actions if start <= a.timestamp <= error_ts]


def nearest_preceding(candidates: Sequence[UserAction]) -> UserAction | None:
    """Latest candidate; on equal timestamps the last in input order wins."""
    best: UserAction | None = None
    for action in candidates:
        if best is None or action.timestamp >= best.timestamp:
            best = action
    return best


def _sort_key(item: CorrelatedError) -> tuple[float, float]:
    ts = item.error.timestamp
    return (-item.confidence, ts if ts is not None else math.inf)


def correlate(
    parsed: ParsedBugReport,
    actions: Sequence[UserAction],
    *,
    window_ms: float | None = None,
    decay_ms: float | None = None,
    base_weight: float | None = None,
) -> CorrelationResult:
    """Match each detected error to its most likely trigger action.

    Every detected error appears in the result; those without a qualifying
    action carry no trigger and confidence 0.  Ordered by confidence desc,
    then error timestamp asc.
    """
    cfg = get_config() if None in (window_ms, decay_ms, base_weight) else None
    window = window_ms if window_ms is not None else cfg.correlation_window_ms  # type: ignore[union-attr]
    decay = decay_ms if decay_ms is not None else cfg.correlation_decay_ms  # type: ignore[union-attr]
    base = base_weight if base_weight is not None else cfg.correlation_base_weight  # type: ignore[union-attr]

    correlated: list[CorrelatedError] = []
    for error in parsed.errors:
        if error.timestamp is None:
            correlated.append(CorrelatedError(error=error))
            continue

        preceding = find_preceding_actions(actions, error.timestamp, window)
        action = nearest_preceding(preceding)
        if action is None:
            correlated.append(CorrelatedError(error=error))
            continue

        delta = error.timestamp - action.timestamp
        similarity = target_similarity(action.target, error)
        correlated.append(
            CorrelatedError(
                error=error,
                trigger=TriggerAction(action=action.action, target=action.target, delta_ms=delta),
                confidence=trigger_confidence(delta, similarity, decay, base),
                preceding_actions=preceding,
            )
        )

    correlated.sort(key=_sort_key)
    return CorrelationResult(errors=correlated)


def _log_breadcrumb_kind(level: str, log_type: str | None) -> tuple[str, str]:
    if (log_type or "").upper() == "NETWORK":
        return "network", "error" if level == "error" else "info"
    if level == "error":
        return "error", "error"
    if level == "warn":
        return "console", "warning"
    return "console", "info"


def build_breadcrumbs(report: RawBugReport) -> list[Breadcrumb]:
    """Unified, time-ordered timeline of navigations, actions and logs."""
    crumbs: list[Breadcrumb] = []
    for nav in report.navigations:
        crumbs.append(
            Breadcrumb(
                timestamp=nav.timestamp,
                type="navigation",
                category=nav.type,
                message=f"{nav.from_url} -> {nav.to_url}",
                data={"from": nav.from_url, "to": nav.to_url},
            )
        )
    for action in report.actions:
        crumbs.append(
            Breadcrumb(
                timestamp=action.timestamp,
                type="user",
                category=f"ui.{action.action}",
                message=f"{action.action.upper()} on {action.target}",
                data={"target": action.target, "action": action.action},
            )
        )
    for log in report.logs:
        if log.timestamp is None:
            continue
        kind, level = _log_breadcrumb_kind(log.level, log.type)
        crumbs.append(
            Breadcrumb(
                timestamp=log.timestamp,
                type=kind,  # type: ignore[arg-type]
                category=log.type or log.level,
                message=log.message,
                level=level,  # type: ignore[arg-type]
            )
        )
    crumbs.sort(key=lambda c: c.timestamp)
    return crumbs


def _rate(metric: str, value: float, unit: str) -> PerformanceStatus:
    good, needs_improvement = PERFORMANCE_THRESHOLDS[metric]
    if value <= good:
        status = "good"
    elif value <= needs_improvement:
        status = "needs_improvement"
    else:
        status = "poor"
    return PerformanceStatus(metric=metric.upper(), value=value, unit=unit, status=status)


def evaluate_performance(performance: PerformanceSnapshot | None) -> list[PerformanceStatus]:
    """Rate the captured web vitals against Core Web Vitals thresholds."""
    if performance is None:
        return []
    results = []
    for metric, unit in (("lcp", "ms"), ("fid", "ms"), ("cls", ""), ("ttfb", "ms")):
        value = getattr(performance, metric)
        if value is not None:
            results.append(_rate(metric, value, unit))
    return results


def summarize_journey(report: RawBugReport) -> UserJourney:
    actions = report.actions
    error_count = sum(1 for log in report.logs if log.is_error)
    duration = 0.0
    if len(actions) >= 2:
        stamps = [a.timestamp for a in actions]
        duration = round((max(stamps) - min(stamps)) / 1000.0, 3)
    return UserJourney(
        total_actions=len(actions),
        unique_targets=len({a.target for a in actions}),
        session_duration_s=duration,
        navigation_count=len(report.navigations),
        error_rate=error_count / len(actions) if actions else 0.0,
    )


def analyze_correlation(
    report: RawBugReport,
    parsed: ParsedBugReport,
    settings: LensAgentConfig | None = None,
) -> CorrelationResult:
    """correlate() plus timeline, web-vitals ratings and journey statistics."""
    cfg = settings or get_config()
    result = correlate(
        parsed,
        report.actions,
        window_ms=cfg.correlation_window_ms,
        decay_ms=cfg.correlation_decay_ms,
        base_weight=cfg.correlation_base_weight,
    )
    result = result.model_copy(
        update={
            "breadcrumbs": build_breadcrumbs(report),
            "performance": evaluate_performance(report.performance),
            "journey": summarize_journey(report),
        }
    )
    top = result.top
    if top is not None and top.trigger is not None:
        logger.info(
            f"Correlated {len(result.errors)} errors; likely trigger: "
            f"{top.trigger.action} on {top.trigger.target} "
            f"(delta={top.trigger.delta_ms:.0f}ms, confidence={top.confidence:.2f})"
        )
    else:
        logger.info(f"Correlated {len(result.errors)} errors; no trigger action found")
    return result
