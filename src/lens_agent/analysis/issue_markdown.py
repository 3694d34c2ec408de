"""Issue markdown ingest: tracker issue body -> RawBugReport.

Understands the body layout produced by the browser reporting widget:
a ``## Bug Report`` description followed by ``---``-separated sections
(Environment table, Performance line, Console Logs / User Actions /
Navigation History code blocks).  Section headers may be markdown
headings or ``<summary><b>...</b></summary>`` blocks.
"""

import logging
import re
from typing import Any

from lens_agent.models import (
    LogEntry,
    NavigationEntry,
    PerformanceSnapshot,
    RawBugReport,
    UserAction,
)

logger = logging.getLogger(__name__)

_MARKERS = (
    "## Bug Report",
    "inner-lens",
    "### Environment",
    "Console Logs",
    "User Actions",
)

_SECTION_END = re.compile(r"\n---\s*\n|\n#{2,3}\s|\n<details>|$")
_CODE_BLOCK = re.compile(r"```[\w-]*\s*\r?\n([\s\S]*?)\r?\n?```")
_TABLE_ROW = re.compile(r"^\|\s*([^|]+?)\s*\|\s*([^|]+?)\s*\|", re.MULTILINE)
_ISO_IN_BRACKETS = re.compile(r"\[(\d{4}-\d{2}-\d{2}T[\d:.]+Z?)\]")
_LOG_LINE = re.compile(r"^\[(\w+)\](?:\s*\[(\w+)\])?\s*(.*)$")
_ACTION_LINE = re.compile(r"^\[([\dT:.Z-]+)\]\s*(\w+)\s+on\s+(.+)$", re.IGNORECASE)
_NAV_LINE = re.compile(r"^\[([\dT:.Z-]+)\]\s*(\w+):\s*(.+?)\s*(?:→|->)\s*(.+)$")
_PERF_METRIC = re.compile(r"([A-Za-z][A-Za-z ]*?):\s*([\d.]+)\s*(?:ms)?", re.IGNORECASE)

_PERF_FIELDS = {
    "lcp": "lcp",
    "fid": "fid",
    "cls": "cls",
    "ttfb": "ttfb",
    "dom loaded": "dom_loaded",
    "domloaded": "dom_loaded",
    "load complete": "load_complete",
    "loadcomplete": "load_complete",
}


def is_bug_report_markdown(body: str) -> bool:
    """True when at least three widget markers are present."""
    return sum(1 for marker in _MARKERS if marker in body) >= 3


def extract_section(body: str, name: str) -> str:
    """Return the text under a section header, up to the next separator."""
    escaped = re.escape(name)
    header = re.compile(
        rf"(?:#{{2,3}}\s*{escaped}[^\n]*|<summary>\s*(?:<b>)?\s*{escaped}[^\n]*)\n",
        re.IGNORECASE,
    )
    match = header.search(body)
    if not match:
        return ""
    rest = body[match.end():]
    code = re.match(r"\s*(?:</?\w+>\s*)*```", rest)
    if code:
        # Code blocks may contain separators; take the whole block.
        block = _CODE_BLOCK.search(rest)
        if block:
            return block.group(0).strip()
    end = _SECTION_END.search(rest)
    return rest[: end.start()].strip() if end else rest.strip()


def extract_code_block(section: str) -> str:
    match = _CODE_BLOCK.search(section)
    return match.group(1).strip() if match else section.strip()


def extract_description(body: str) -> str:
    match = re.search(r"##\s*Bug Report\s*\n([\s\S]*?)(?=\n---)", body, re.IGNORECASE)
    if match:
        return match.group(1).strip()
    first = re.match(r"^([^#\n].+?)(?=\n\n|$)", body.strip())
    return first.group(1).strip() if first else ""


def parse_environment(section: str) -> tuple[str, str]:
    url = ""
    user_agent = ""
    for field, value in _TABLE_ROW.findall(section):
        key = field.strip().lower()
        if key.startswith("-"):
            continue
        if "url" in key:
            url = value.strip()
        elif "user agent" in key:
            user_agent = value.strip()
    return url, user_agent


def parse_performance(section: str) -> PerformanceSnapshot | None:
    values: dict[str, float] = {}
    for chunk in section.split("|"):
        match = _PERF_METRIC.search(chunk.strip())
        if not match:
            continue
        field = _PERF_FIELDS.get(match.group(1).strip().lower())
        if field:
            values[field] = float(match.group(2))
    return PerformanceSnapshot(**values) if values else None


def parse_console_logs(section: str) -> list[LogEntry]:
    """Parse ``[LEVEL] [TYPE] message`` lines.

    Continuation lines belong to the previous entry: they extend the message
    of NETWORK entries (Status/Duration lines) and form the stack otherwise.
    """
    entries: list[dict[str, Any]] = []
    for raw_line in extract_code_block(section).splitlines():
        line = raw_line.strip()
        if not line:
            continue
        match = _LOG_LINE.match(line)
        if match:
            level, log_type, message = match.groups()
            stamp = _ISO_IN_BRACKETS.search(message)
            if stamp:
                message = message[: stamp.start()] + message[stamp.end():]
            entries.append({
                "level": level,
                "type": log_type.upper() if log_type else None,
                "message": message.strip(),
                "timestamp": stamp.group(1) if stamp else None,
                "stack": [],
            })
        elif entries:
            previous = entries[-1]
            if previous["type"] == "NETWORK":
                previous["message"] = f"{previous['message']} {line}"
            else:
                previous["stack"].append(line)

    return [
        LogEntry(
            level=entry["level"],
            type=entry["type"],
            message=entry["message"],
            timestamp=entry["timestamp"],
            stack="\n".join(entry["stack"]) or None,
        )
        for entry in entries
    ]


def parse_user_actions(section: str) -> list[UserAction]:
    actions: list[UserAction] = []
    for line in extract_code_block(section).splitlines():
        match = _ACTION_LINE.match(line.strip())
        if match:
            actions.append(
                UserAction(
                    timestamp=match.group(1),
                    action=match.group(2),
                    target=match.group(3).strip(),
                )
            )
    return actions


def parse_navigation_history(section: str) -> list[NavigationEntry]:
    navigations: list[NavigationEntry] = []
    for line in extract_code_block(section).splitlines():
        match = _NAV_LINE.match(line.strip())
        if match:
            navigations.append(
                NavigationEntry(
                    timestamp=match.group(1),
                    type=match.group(2).lower(),
                    from_url=match.group(3).strip(),
                    to_url=match.group(4).strip(),
                )
            )
    return navigations


def parse_issue_markdown(body: str, title: str = "") -> RawBugReport:
    """Parse a widget-generated issue body into a RawBugReport."""
    url, user_agent = parse_environment(extract_section(body, "Environment"))
    report = RawBugReport(
        title=title,
        description=extract_description(body),
        url=url,
        user_agent=user_agent,
        logs=parse_console_logs(extract_section(body, "Console Logs")),
        actions=parse_user_actions(extract_section(body, "User Actions")),
        navigations=parse_navigation_history(extract_section(body, "Navigation History")),
        performance=parse_performance(extract_section(body, "Performance")),
    )
    logger.info(
        f"Parsed issue markdown: logs={len(report.logs)}, "
        f"actions={len(report.actions)}, navigations={len(report.navigations)}"
    )
    return report
