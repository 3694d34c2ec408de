"""Report parser: RawBugReport -> ParsedBugReport.

No LLM. Extracts detected errors with stack frames, a short summary and a
keyword set used by the locate stage to search the codebase.
"""

import logging
import re
from urllib.parse import urlparse

from lens_agent.config import LensAgentConfig, get_config
from lens_agent.models import (
    DetectedError,
    LogEntry,
    ParsedBugReport,
    PerformanceSnapshot,
    RawBugReport,
    StackFrame,
    format_epoch_ms,
)

logger = logging.getLogger(__name__)

_SOURCE_EXT = r"(?:tsx|ts|jsx|js|mjs|vue|svelte|py|go|rs|java|kt)"

# Node/Chrome: "at fn (http://host/path/file.js:10:5)" or "at path/file.js:10:5"
_NODE_FRAME = re.compile(
    r"at\s+(?:([\w$.<>\[\]]+)\s+)?\(?(?:https?://[^/\s]+)?([^:()\s]+):(\d+):(\d+)\)?"
)
# Firefox/Safari: "fn@http://host/path/file.js:10:5"
_FIREFOX_FRAME = re.compile(r"([\w$.]+)@(?:https?://[^/\s]+)?([^:@\s]+):(\d+):(\d+)")
# Python: 'File "app/views.py", line 42, in handler'
_PYTHON_FRAME = re.compile(r'File\s+"([^"]+)",\s+line\s+(\d+)(?:,\s+in\s+([\w<>]+))?')
# Generic "src/foo.ts:12[:3]"
_GENERIC_FRAME = re.compile(rf"([\w./-]+\.{_SOURCE_EXT}):(\d+)(?::(\d+))?")

_FILE_PATH = re.compile(rf"(?:[\w-]+/)*[\w-]+\.{_SOURCE_EXT}\b")
_ERROR_TYPE = re.compile(r"\b\w*(?:Error|Exception)\b")
_IDENTIFIER = re.compile(r"\b[A-Z][a-zA-Z0-9]{2,}\b|\b[a-z]+[A-Z][a-zA-Z0-9]*\b")
_CAPITALIZED = re.compile(r"\b[A-Z][a-zA-Z0-9]*\b")
_CSS_CLASS = re.compile(r"\.([a-zA-Z][\w-]*)")
_NETWORK_URL = re.compile(r"(?:GET|POST|PUT|DELETE|PATCH)\s+(https?://\S+)", re.IGNORECASE)

_COMPONENT_TAGS = {"form", "button", "input", "dialog", "modal", "section", "main"}

# Utility-class prefixes (Tailwind and friends) carry no information about
# which component rendered the element.
_UTILITY_CLASS_PREFIXES = (
    "flex", "grid", "block", "inline", "hidden",
    "w-", "h-", "m-", "p-", "mt-", "mb-", "ml-", "mr-", "mx-", "my-",
    "pt-", "pb-", "pl-", "pr-", "px-", "py-",
    "text-", "font-", "bg-", "border-", "rounded-", "shadow-",
    "hover:", "focus:", "active:", "dark:", "sm:", "md:", "lg:", "xl:",
    "gap-", "space-", "justify-", "items-", "self-",
    "overflow-", "z-", "opacity-", "transition-", "duration-",
    "min-", "max-", "top-", "bottom-", "left-", "right-",
    "absolute", "relative", "fixed", "sticky",
)

_MAX_IDENTIFIERS = 15
_SUMMARY_CHARS = 280


def _basename(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1]


def extract_error_locations(text: str) -> list[StackFrame]:
    """Extract frames from Node/Chrome, Firefox, Python and generic traces.

    Each file (by base name) appears once, at its first occurrence.
    """
    frames: list[StackFrame] = []
    seen: set[str] = set()

    def add(file: str, line: str | None, column: str | None, function: str | None) -> None:
        name = _basename(file) if file else ""
        if not name or name in seen:
            return
        seen.add(name)
        frames.append(
            StackFrame(
                file=name,
                line=int(line) if line else None,
                column=int(column) if column else None,
                function=function or None,
            )
        )

    for m in _NODE_FRAME.finditer(text):
        add(m.group(2), m.group(3), m.group(4), m.group(1))
    for m in _FIREFOX_FRAME.finditer(text):
        add(m.group(2), m.group(3), m.group(4), m.group(1))
    for m in _PYTHON_FRAME.finditer(text):
        add(m.group(1), m.group(2), None, m.group(3))
    for m in _GENERIC_FRAME.finditer(text):
        add(m.group(1), m.group(2), m.group(3), None)
    return frames


def extract_keywords(text: str) -> set[str]:
    """Free-text keywords: file paths, error type names, code identifiers."""
    keywords: set[str] = set(_FILE_PATH.findall(text))
    keywords.update(_ERROR_TYPE.findall(text))
    keywords.update(_IDENTIFIER.findall(text)[:_MAX_IDENTIFIERS])
    return {k for k in keywords if len(k) > 2}


def is_utility_class(name: str) -> bool:
    return any(
        name.startswith(prefix) or name == prefix.rstrip("-")
        for prefix in _UTILITY_CLASS_PREFIXES
    )


def route_from_url(url: str) -> str | None:
    if not url:
        return None
    path = urlparse(url).path
    return path or "/"


def extract_search_keywords(report: RawBugReport) -> set[str]:
    """Keywords recovered from structured capture data."""
    keywords: set[str] = set()

    route = route_from_url(report.url)
    if route is not None:
        segments = [s for s in route.split("/") if s]
        keywords.update(segments)
        if not segments:
            keywords.update({"index", "home", "page", "main"})

    for action in report.actions:
        for cls in _CSS_CLASS.findall(action.target):
            if len(cls) > 2 and not is_utility_class(cls):
                keywords.add(cls)
        for part in re.split(r"\s*>\s*", action.target):
            tag = re.match(r"^(\w+)", part)
            if tag and tag.group(1).lower() in _COMPONENT_TAGS:
                keywords.add(tag.group(1).lower())

    for log in report.logs:
        if log.is_error:
            keywords.update(i for i in _CAPITALIZED.findall(log.message) if len(i) > 2)
        url_match = _NETWORK_URL.search(log.message)
        if url_match:
            path = urlparse(url_match.group(1)).path
            keywords.update(s for s in path.split("/") if len(s) > 2)

    return {k for k in keywords if len(k) > 2}


def detect_errors(logs: list[LogEntry]) -> list[DetectedError]:
    """Promote error-level log entries to DetectedError records."""
    errors: list[DetectedError] = []
    for log in logs:
        if not log.is_error:
            continue
        trace_text = log.stack if log.stack else log.message
        errors.append(
            DetectedError(
                message=log.message,
                stack_frames=extract_error_locations(trace_text),
                timestamp=log.timestamp,
            )
        )
    return errors


def summarize_report(report: RawBugReport, errors: list[DetectedError]) -> str:
    description = " ".join(report.description.split())
    if len(description) > _SUMMARY_CHARS:
        description = description[: _SUMMARY_CHARS - 3] + "..."
    if not description:
        description = report.title or "No description provided."
    if errors:
        first = errors[0].message.splitlines()[0][:120]
        return f"{description} ({len(errors)} error(s); first: {first})"
    return description


def parse_report(report: RawBugReport) -> ParsedBugReport:
    """Parse a raw report into detected errors, summary and keywords."""
    errors = detect_errors(report.logs)
    keywords = extract_search_keywords(report)
    for error in errors:
        keywords.update(extract_keywords(error.message))
    parsed = ParsedBugReport(
        errors=errors,
        summary=summarize_report(report, errors),
        keywords=frozenset(keywords),
        route=route_from_url(report.url),
    )
    logger.debug(
        f"Parsed report: errors={len(parsed.errors)}, keywords={len(parsed.keywords)}"
    )
    return parsed


def infer_category_hint(
    performance: PerformanceSnapshot | None,
    settings: LensAgentConfig | None = None,
) -> str | None:
    """Category hint from web vitals, or None when nothing stands out."""
    if performance is None:
        return None
    cfg = settings or get_config()
    if performance.lcp is not None and performance.lcp > cfg.lcp_hint_ms:
        return "performance"
    if performance.fid is not None and performance.fid > cfg.fid_hint_ms:
        return "performance"
    if performance.cls is not None and performance.cls > cfg.cls_hint:
        return "ui_ux"
    if performance.ttfb is not None and performance.ttfb > cfg.ttfb_hint_ms:
        return "performance"
    return None


def build_report_digest(report: RawBugReport) -> str:
    """Compact, prompt-ready rendering of the captured signals."""
    sections: list[str] = []

    if report.description:
        sections.append(f"## User Description\n{report.description}")

    if report.url or report.user_agent:
        sections.append(
            "## Environment\n"
            f"- URL: {report.url or 'N/A'}\n"
            f"- User Agent: {report.user_agent or 'N/A'}"
        )

    perf = report.performance
    if perf is not None:
        metrics = [
            f"LCP: {perf.lcp}ms" if perf.lcp is not None else None,
            f"FID: {perf.fid}ms" if perf.fid is not None else None,
            f"CLS: {perf.cls}" if perf.cls is not None else None,
            f"TTFB: {perf.ttfb}ms" if perf.ttfb is not None else None,
            f"DOM Loaded: {perf.dom_loaded}ms" if perf.dom_loaded is not None else None,
            f"Load Complete: {perf.load_complete}ms" if perf.load_complete is not None else None,
        ]
        present = [m for m in metrics if m]
        if present:
            sections.append("## Performance Metrics\n" + " | ".join(present))

    if report.logs:
        lines = []
        for log in report.logs:
            stamp = f"[{format_epoch_ms(log.timestamp)}] " if log.timestamp is not None else ""
            lines.append(f"{stamp}[{log.level.upper()}] {log.message}")
            if log.stack:
                lines.append(log.stack)
        sections.append("## Console Logs\n```\n" + "\n".join(lines) + "\n```")

    if report.actions:
        lines = [
            f"[{format_epoch_ms(a.timestamp)}] {a.action.upper()} on {a.target}"
            for a in report.actions
        ]
        sections.append(
            f"## User Actions (Last {len(report.actions)})\n```\n" + "\n".join(lines) + "\n```"
        )

    if report.navigations:
        lines = [
            f"[{format_epoch_ms(n.timestamp)}] {n.type}: {n.from_url} -> {n.to_url}"
            for n in report.navigations
        ]
        sections.append("## Navigation History\n```\n" + "\n".join(lines) + "\n```")

    return "\n\n---\n\n".join(sections)
