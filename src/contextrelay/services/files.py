import logging
import os
from pathlib import Path
from typing import Iterable, List

from ..models import ContextFile

logger = logging.getLogger(__name__)


def normalize_path(path: str) -> str:
    """Absolute path with forward slashes."""
    return Path(path).expanduser().resolve().as_posix()


def display_path(path: str) -> str:
    """Path relative to the working directory when possible."""
    normalized = normalize_path(path)
    try:
        return Path(os.path.relpath(normalized)).as_posix()
    except ValueError:
        # Different drive on Windows
        return normalized


def read_file(path: str) -> str | None:
    """Return the file's text, or None if it cannot be read as UTF-8."""
    try:
        return Path(normalize_path(path)).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read %s: %s", path, e)
        return None


def load_context_files(paths: Iterable[str]) -> List[ContextFile]:
    """Snapshot readable files in the given order; duplicates and unreadable files are skipped."""
    seen: set[str] = set()
    files: List[ContextFile] = []
    for path in paths:
        normalized = normalize_path(path)
        if normalized in seen:
            continue
        seen.add(normalized)
        content = read_file(normalized)
        if content is None:
            continue
        files.append(ContextFile(path=display_path(normalized), content=content))
    return files
