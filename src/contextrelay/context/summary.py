import re
from dataclasses import dataclass
from pathlib import PurePath
from typing import List, Optional

from ..models import ContextFile
from .planner import split_lines

_FUNCTION_RE = re.compile(r"^\s*(?:(?:async\s+)?def\s|(?:local\s+)?function\b)")
_CLASS_RE = re.compile(r"^\s*class\s+")


@dataclass
class FileSummary:
    """Structural counts for one context file."""

    name: str
    path: str
    extension: str
    lines: int
    size: int
    functions: int
    classes: int


def file_extension(path: str) -> str:
    """Extension without the dot, used as the code fence language tag."""
    return PurePath(path).suffix.lstrip(".")


def summarize_file(context_file: ContextFile) -> FileSummary:
    lines = split_lines(context_file.content)
    functions = 0
    classes = 0
    for line in lines:
        if _FUNCTION_RE.match(line):
            functions += 1
        elif _CLASS_RE.match(line):
            classes += 1

    return FileSummary(
        name=PurePath(context_file.path).name,
        path=context_file.path,
        extension=file_extension(context_file.path),
        lines=len(lines),
        size=len(context_file.content.encode("utf-8")),
        functions=functions,
        classes=classes,
    )


def create_context_summary(files: List[ContextFile]) -> Optional[str]:
    """Human-readable overview sent ahead of part 1. None when there are no files."""
    if not files:
        return None

    summaries = [summarize_file(f) for f in files]
    parts = [
        "=== CONTEXT SUMMARY ===",
        f"Total files: {len(summaries)}",
        f"Total lines: {sum(s.lines for s in summaries)}",
        f"Total size: {sum(s.size for s in summaries)} bytes",
        "",
        "Files included:",
    ]
    for info in summaries:
        parts.append(
            f"- {info.name} ({info.lines} lines, {info.functions} functions, {info.classes} classes)"
        )
    return "\n".join(parts)
