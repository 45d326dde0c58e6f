"""Scaffold the memory system into a project.

Creates the directory layout, renders starter files from the bundled
Jinja2 templates, and keeps the archive out of version control and
assistant indexing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader

from aimemory.config import DEFAULTS, MAX_RETENTION_DAYS, MIN_RETENTION_DAYS
from aimemory.fileio import ensure_directory, ensure_line_present, write_template
from aimemory.parse import HEADER_SEPARATOR
from aimemory.paths import (
    ARCHIVE_DIR,
    LOG_FILE,
    MEMORY_DIR,
    MEMORY_DIRS,
    POLICY_FILE,
    SPRINT_MARKER,
    TIER1_FILES,
    WORKFLOWS_DIR,
)

_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

IGNORE_FILES = (".gitignore", ".cursorignore")

ARCHIVE_IGNORE_LINE = f"{ARCHIVE_DIR}/"

_TIER1_PURPOSES = (
    "preferences, stack, and conventions",
    "current state, blockers, and next steps",
    "corrections learned so far",
)

# Target path (relative to project root) -> template name
TEMPLATES: dict[str, str] = {
    ".cursor/rules/memory.mdc": "memory.mdc",
    ".cursor/rules/memory-ops.mdc": "memory-ops.mdc",
    ".cursor/rules/memory-logs.mdc": "memory-logs.mdc",
    "memory/USER.md": "USER.md",
    "memory/WAITING_ON.md": "WAITING_ON.md",
    "memory/ai/COMMON_MISTAKES.md": "COMMON_MISTAKES.md",
    LOG_FILE: "GLOBAL_DAILY_LOG.md",
    "AGENTS.md": "AGENTS.md",
    POLICY_FILE: "memory-strategies.yaml",
}


def _get_env() -> Environment:
    """Create a Jinja2 environment loading from aimemory/templates/."""
    return Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )


def _template_vars() -> dict[str, Any]:
    return {
        "memory_dir": MEMORY_DIR,
        "log_file": LOG_FILE,
        "archive_dir": ARCHIVE_DIR,
        "workflows_dir": WORKFLOWS_DIR,
        "policy_file": POLICY_FILE,
        "sprint_marker": SPRINT_MARKER,
        "separator": HEADER_SEPARATOR,
        "tier1": list(zip(TIER1_FILES, _TIER1_PURPOSES)),
        "waiting_on": TIER1_FILES[1],
        "common_mistakes": TIER1_FILES[2],
        "defaults": DEFAULTS,
        "min_retention_days": MIN_RETENTION_DAYS,
        "max_retention_days": MAX_RETENTION_DAYS,
    }


def render_template(target: str) -> str:
    """Render the starter content for ``target`` (a key of TEMPLATES)."""
    template = _get_env().get_template(TEMPLATES[target])
    return template.render(**_template_vars())


@dataclass
class ScaffoldResult:
    already_initialized: bool = False
    # (relative dir, created?)
    directories: list[tuple[str, bool]] = field(default_factory=list)
    # (relative path, "created" | "skipped" | "overwritten")
    files: list[tuple[str, str]] = field(default_factory=list)
    # (ignore file, "added" | "unchanged")
    ignores: list[tuple[str, str]] = field(default_factory=list)

    def count(self, action: str) -> int:
        return sum(1 for _, a in self.files if a == action)


def is_initialized(project_root: Path) -> bool:
    memory_dir = Path(project_root) / MEMORY_DIR
    return (memory_dir / "USER.md").is_file() or (memory_dir / "WAITING_ON.md").is_file()


def scaffold(project_root: Path, force: bool = False) -> ScaffoldResult:
    """Create the memory layout under ``project_root``.

    Existing files are kept unless ``force``. Returns early without writing
    if a memory system is already present and ``force`` is not set.
    """
    root = Path(project_root)
    result = ScaffoldResult()

    if is_initialized(root) and not force:
        result.already_initialized = True
        return result

    for rel in MEMORY_DIRS:
        path = root / rel
        existed = path.is_dir()
        ensure_directory(path)
        result.directories.append((rel, not existed))

    for rel in TEMPLATES:
        action = write_template(render_template(rel), root / rel, overwrite=force)
        result.files.append((rel, action))

    for name in IGNORE_FILES:
        result.ignores.append((name, ensure_line_present(root / name, ARCHIVE_IGNORE_LINE)))

    return result
