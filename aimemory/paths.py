"""Project root detection and contained path resolution.

The project root is whatever directory holds a root marker. Every memory
file path is resolved relative to it and must stay inside it.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Parent directories to walk before giving up
MAX_TRAVERSAL_DEPTH = 5

# Checked in order at each level; first match wins
ROOT_MARKERS = (".git", "package.json")

# Project-relative layout
MEMORY_DIR = "memory"
LOG_FILE = "memory/GLOBAL_DAILY_LOG.md"
LOG_FILENAME = "GLOBAL_DAILY_LOG.md"
WORKFLOWS_DIR = "memory/workflows"
PROJECTS_DIR = "memory/projects"
ARCHIVE_DIR = "memory/archive"
POLICY_FILE = "memory-strategies.yaml"

TIER1_FILES = (
    "memory/USER.md",
    "memory/WAITING_ON.md",
    "memory/ai/COMMON_MISTAKES.md",
)

# (path, label) for the assistant rule files
RULE_FILES = (
    (".cursor/rules/memory.mdc", "always-on"),
    (".cursor/rules/memory-ops.mdc", "agent-requested"),
    (".cursor/rules/memory-logs.mdc", "on-demand"),
)

MEMORY_DIRS = (
    "memory",
    "memory/ai",
    "memory/projects",
    "memory/workflows",
    "memory/archive",
    ".cursor/rules",
)

# Work-unit files must contain this and end with SPRINT_SUFFIX
SPRINT_MARKER = "_sprint_"
SPRINT_SUFFIX = ".md"


class PathEscapeError(ValueError):
    """Raised when a relative path resolves outside the project root."""


@dataclass(frozen=True)
class ProjectRoot:
    root: Path
    marker: str


def _require_path(value: object, name: str) -> Path:
    if isinstance(value, Path):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty path")
    return Path(value)


def _has_marker(directory: Path, marker: str) -> bool:
    candidate = directory / marker
    try:
        if marker == ".git":
            # .git is a file in worktrees and submodules
            return candidate.is_dir() or candidate.is_file()
        return candidate.is_file()
    except OSError as exc:
        logger.debug("Could not probe %s: %s", candidate, exc)
        return False


def find_project_root(start_dir: str | Path) -> ProjectRoot | None:
    """Walk upward from ``start_dir`` looking for a root marker.

    Checks at most ``MAX_TRAVERSAL_DEPTH`` directories (``start_dir`` and
    its parents). Returns None if no marker is found within that bound or
    the filesystem root is reached first.
    """
    current = _require_path(start_dir, "start_dir").resolve()

    for _ in range(MAX_TRAVERSAL_DEPTH):
        for marker in ROOT_MARKERS:
            if _has_marker(current, marker):
                return ProjectRoot(root=current, marker=marker)

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def _case_insensitive_fs() -> bool:
    return sys.platform == "win32" or sys.platform == "darwin"


def resolve_memory_path(project_root: str | Path, relative_path: str | Path) -> Path:
    """Resolve ``relative_path`` against ``project_root``.

    Raises PathEscapeError if the result is not the root itself or nested
    under it.
    """
    root = _require_path(project_root, "project_root")
    rel = _require_path(relative_path, "relative_path")

    normalized_root = Path(os.path.abspath(root))
    resolved = Path(os.path.abspath(normalized_root / rel))

    root_str = str(normalized_root)
    resolved_str = str(resolved)
    if _case_insensitive_fs():
        root_str = root_str.lower()
        resolved_str = resolved_str.lower()

    root_with_sep = root_str if root_str.endswith(os.sep) else root_str + os.sep
    if resolved_str != root_str and not resolved_str.startswith(root_with_sep):
        raise PathEscapeError(
            f"path '{relative_path}' escapes project root '{project_root}'"
        )

    return resolved
