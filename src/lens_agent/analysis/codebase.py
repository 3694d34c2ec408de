"""Source tree discovery for the locate stage.

No LLM. Given the project checkout, rank source files by how strongly their
path and content match the report (stack frames, error messages, keywords),
pull in files imported by the best matches, and render line-numbered code
excerpts for the prompts.

All paths handed out are repo-relative and use forward slashes.
"""

import logging
import os
import re
from collections.abc import Iterable, Sequence
from pathlib import Path

from pydantic import BaseModel, Field

from lens_agent.models import StackFrame

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Walk limits
# ---------------------------------------------------------------------------
IGNORE_DIRS: set[str] = {
    "node_modules", "dist", "build", "coverage", "vendor",
    "__pycache__", ".next", ".nuxt", ".venv", "venv",
}
SOURCE_EXTENSIONS = (
    ".ts", ".tsx", ".js", ".jsx", ".mjs", ".vue", ".svelte",
    ".py", ".go", ".rs", ".java", ".kt",
)
MAX_DEPTH = 6
MAX_SCANNED_FILES = 2000

# Only the best files by path score get their content read.
CONTENT_SCAN_LIMIT = 50
MAX_READ_CHARS = 50_000

# Imported files inherit this share of the importer's score.
IMPORT_SCORE_SHARE = 0.6
MAX_IMPORT_PARSE = 20
MAX_IMPORT_EXPANSION = 10

# Code context budget.
MAX_CONTEXT_CHARS = 60_000
MAX_CONTEXT_FILES = 15
FRAME_CONTEXT_LINES = 20
HEAD_EXCERPT_CHARS = 3000

# (path markers, points): files in these roles are more often where bugs live.
_PATH_HINTS: tuple[tuple[tuple[str, ...], int], ...] = (
    (("error", "exception"), 10),
    (("handler", "controller"), 8),
    (("api/", "route"), 7),
    (("page.tsx", "page.ts", "page.vue"), 6),
    (("component",), 5),
    (("hook", "use"), 4),
    (("store", "state"), 4),
    (("util", "lib", "helper"), 3),
    (("service", "client"), 3),
    (("config", "setting"), 2),
)
_TEST_MARKERS = (".test.", ".spec.", "__tests__", "/test_")
_TEST_PENALTY = 10

_IMPORT_PATTERNS = (
    re.compile(
        r"""import\s+(?:(?:\{[^}]*\}|\*\s+as\s+\w+|\w+(?:\s*,\s*\{[^}]*\})?)\s+from\s+)?['"]([^'"]+)['"]"""
    ),
    re.compile(r"""require\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""import\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""export\s+(?:\{[^}]*\}|\*)\s+from\s+['"]([^'"]+)['"]"""),
)
_IMPORT_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs")


class SourceFile(BaseModel):
    """A file in the project tree with its relevance to the report."""

    path: str
    path_score: float = 0.0
    content_score: float = 0.0
    score: float = 0.0
    matched: list[str] = Field(default_factory=list)


def basename(path: str) -> str:
    return path.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]


def read_source(root: Path, rel_path: str, limit: int | None = None) -> str:
    """File text, or "" when it cannot be read."""
    try:
        text = (root / rel_path).read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug(f"Cannot read {rel_path}: {e}")
        return ""
    return text if limit is None else text[:limit]


# ===================================================================
# Tree walk and path resolution
# ===================================================================


def list_source_files(root: Path, max_files: int = MAX_SCANNED_FILES) -> list[str]:
    """Repo-relative source files in walk order, skipping hidden and build dirs."""
    root = root.resolve()
    files: list[str] = []
    for current, dirs, names in os.walk(root):
        rel_dir = Path(current).relative_to(root)
        if len(rel_dir.parts) >= MAX_DEPTH:
            dirs[:] = []
        else:
            dirs[:] = sorted(d for d in dirs if not d.startswith(".") and d not in IGNORE_DIRS)
        for name in sorted(names):
            if not name.endswith(SOURCE_EXTENSIONS):
                continue
            files.append((rel_dir / name).as_posix())
            if len(files) >= max_files:
                logger.warning(f"Source scan of {root} stopped at {max_files} files")
                return files
    return files


def _normalize(path: str) -> str:
    normalized = path.strip().replace("\\", "/")
    while normalized.startswith(("./", "/")):
        normalized = normalized[1:] if normalized.startswith("/") else normalized[2:]
    return normalized


def _inside(root: Path, path: Path) -> bool:
    return path.resolve().is_relative_to(root.resolve())


def resolve_source_path(root: Path, path: str, tree: Sequence[str] | None = None) -> str | None:
    """Map a path as written by a report or a model onto a file in the tree.

    Tries the path as given, then under src/, then any tree file ending with
    it (so a bare file name matches wherever the file lives).
    """
    normalized = _normalize(path)
    if not normalized:
        return None
    for candidate in (normalized, f"src/{normalized}"):
        full = root / candidate
        if full.is_file() and _inside(root, full):
            return full.resolve().relative_to(root.resolve()).as_posix()
    suffix = f"/{normalized}"
    for rel in tree if tree is not None else list_source_files(root):
        if rel.endswith(suffix):
            return rel
    return None


# ===================================================================
# Relevance scoring
# ===================================================================


def path_relevance(path: str, keywords: Iterable[str]) -> float:
    lower = path.lower()
    score = sum(15 for keyword in keywords if len(keyword) >= 2 and keyword.lower() in lower)
    score += sum(points for markers, points in _PATH_HINTS if any(m in lower for m in markers))
    if any(marker in f"/{lower}" for marker in _TEST_MARKERS):
        score -= _TEST_PENALTY
    return float(score)


def content_relevance(
    path: str,
    text: str,
    frames: Sequence[StackFrame],
    error_messages: Sequence[str],
    keywords: Iterable[str],
) -> tuple[float, list[str]]:
    """Score file content against the report; returns (score, matched terms)."""
    content = text.lower()
    name = basename(path).lower()
    score = 0.0
    matched: list[str] = []

    for frame in frames:
        if basename(frame.file).lower() != name:
            continue
        score += 50
        matched.append(f"stacktrace:{frame.file}")
        if frame.function and frame.function.lower() in content:
            score += 20
            matched.append(f"function:{frame.function}")

    functions = sorted({f.function.rsplit(".", 1)[-1] for f in frames if f.function})
    for function in functions:
        fn = function.lower()
        patterns = (f"function {fn}", f"const {fn}", f"def {fn}", f"{fn}(", f"{fn} =")
        if any(p in content for p in patterns):
            score += 25
            matched.append(f"function:{function}")

    for message in error_messages:
        words = [w for w in message.lower().split() if len(w) > 3]
        hits = sum(1 for w in words if w in content)
        if hits >= 2 or (len(words) == 1 and hits == 1):
            score += 15
            matched.append(f"error:{message[:30]}")

    for keyword in keywords:
        key = keyword.lower()
        if len(key) < 3:
            continue
        count = content.count(key)
        if count:
            score += min(count * 5, 20)
            matched.append(keyword)

    return score, list(dict.fromkeys(matched))


def find_relevant_files(
    root: Path,
    keywords: Sequence[str],
    frames: Sequence[StackFrame] = (),
    error_messages: Sequence[str] = (),
    max_files: int = 25,
    tree: Sequence[str] | None = None,
) -> list[SourceFile]:
    """Rank tree files: path score for all, content score for the best.

    Files named by a stack frame always get a content scan.  The combined
    score weighs content twice as much as the path.
    """
    paths = tree if tree is not None else list_source_files(root)
    files = [SourceFile(path=rel, path_score=path_relevance(rel, keywords)) for rel in paths]
    files.sort(key=lambda f: f.path_score, reverse=True)

    frame_names = {basename(f.file).lower() for f in frames}
    scanned = files[:CONTENT_SCAN_LIMIT] + [
        f for f in files[CONTENT_SCAN_LIMIT:] if basename(f.path).lower() in frame_names
    ]
    for file in scanned:
        text = read_source(root, file.path, MAX_READ_CHARS)
        file.content_score, file.matched = content_relevance(
            file.path, text, frames, error_messages, keywords
        )
        file.score = file.path_score + 2 * file.content_score

    ranked = sorted((f for f in scanned if f.score > 0), key=lambda f: f.score, reverse=True)
    for file in ranked[:5]:
        logger.debug(f"  {file.path} (score {file.score:.0f}: {', '.join(file.matched[:3])})")
    return ranked[:max_files]


# ===================================================================
# Import graph
# ===================================================================


def parse_imports(content: str) -> list[str]:
    """Module specifiers from ES imports, re-exports, require() and import()."""
    sources: list[str] = []
    for pattern in _IMPORT_PATTERNS:
        sources.extend(m.group(1) for m in pattern.finditer(content))
    return list(dict.fromkeys(sources))


def resolve_import(source: str, from_file: str, root: Path) -> str | None:
    """Resolve a relative specifier to a tree file; packages and aliases give None."""
    if not source.startswith((".", "/")):
        return None
    base = root / source.lstrip("/") if source.startswith("/") else (root / from_file).parent / source
    candidates = [Path(f"{base}{ext}") for ext in _IMPORT_EXTENSIONS]
    candidates += [base / f"index{ext}" for ext in _IMPORT_EXTENSIONS]
    candidates.append(base)
    for candidate in candidates:
        if candidate.is_file() and candidate.name.endswith(SOURCE_EXTENSIONS) and _inside(root, candidate):
            return candidate.resolve().relative_to(root.resolve()).as_posix()
    return None


def expand_with_imports(root: Path, files: list[SourceFile]) -> list[SourceFile]:
    """Append files imported by the best matches, scored from their importer."""
    known = {f.path for f in files}
    added: list[SourceFile] = []
    for importer in files[:MAX_IMPORT_PARSE]:
        if len(added) >= MAX_IMPORT_EXPANSION:
            break
        for source in parse_imports(read_source(root, importer.path)):
            resolved = resolve_import(source, importer.path, root)
            if resolved is None or resolved in known:
                continue
            known.add(resolved)
            added.append(
                SourceFile(
                    path=resolved,
                    score=float(int(importer.score * IMPORT_SCORE_SHARE)),
                    matched=[f"imported-by:{basename(importer.path)}"],
                )
            )
            if len(added) >= MAX_IMPORT_EXPANSION:
                break
    if added:
        logger.info(f"Import graph added {len(added)} file(s)")
    added.sort(key=lambda f: f.score, reverse=True)
    return [*files, *added]


# ===================================================================
# Code excerpts
# ===================================================================


def read_excerpt(
    root: Path,
    rel_path: str,
    line: int | None = None,
    context_lines: int = FRAME_CONTEXT_LINES,
    max_chars: int = HEAD_EXCERPT_CHARS,
) -> str:
    """Markdown excerpt: a window around ``line`` (marked >>>), else the file head."""
    text = read_source(root, rel_path).rstrip("\n")
    if not text:
        return ""
    lines = text.splitlines()
    total = len(lines)

    if line is not None and 1 <= line <= total:
        start = max(1, line - context_lines)
        end = min(total, line + context_lines)
        body = "\n".join(
            f"{'>>>' if n == line else '   '} {n:4d}: {lines[n - 1]}" for n in range(start, end + 1)
        )
        return f"### {rel_path} (lines {start}-{end} of {total}, error at line {line})\n```\n{body}\n```"

    if len(text) <= max_chars:
        return f"### {rel_path} ({total} lines)\n```\n{text}\n```"
    head = text[:max_chars]
    shown = len(head.splitlines())
    return f"### {rel_path} (showing {shown}/{total} lines)\n```\n{head}\n... (truncated)\n```"


def build_code_context(
    root: Path,
    paths: Sequence[str],
    frames: Sequence[StackFrame] = (),
    max_chars: int = MAX_CONTEXT_CHARS,
) -> str:
    """Excerpts for stack-frame files first (around the frame line), then the rest."""
    parts: list[str] = []
    done: set[str] = set()
    total = 0

    for frame in frames:
        if total >= max_chars:
            break
        name = basename(frame.file).lower()
        match = next((p for p in paths if basename(p).lower() == name), None)
        if match is None or match in done:
            continue
        done.add(match)
        excerpt = read_excerpt(root, match, frame.line)
        if excerpt:
            parts.append(excerpt)
            total += len(excerpt)

    for rel in paths:
        if total >= max_chars or len(done) >= MAX_CONTEXT_FILES:
            break
        if rel in done:
            continue
        done.add(rel)
        excerpt = read_excerpt(root, rel)
        if excerpt:
            parts.append(excerpt)
            total += len(excerpt)

    return "\n\n".join(parts)
