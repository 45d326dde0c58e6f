"""Sweep completed sprint files out of ``memory/workflows/``.

A sprint file whose status line reads COMPLETED or ARCHIVED is copied to
``memory/archive/<today>/workflows/<project>/`` and then removed. Read and
listing failures are isolated to the item that failed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

from aimemory.archive.log import utc_today
from aimemory.fileio import atomic_write, ensure_directory, list_directory, read_text
from aimemory.paths import ARCHIVE_DIR, SPRINT_MARKER, SPRINT_SUFFIX, WORKFLOWS_DIR

logger = logging.getLogger(__name__)

# Whole trimmed line: "## Status: COMPLETED" / "## status: archived"
STATUS_DONE_RE = re.compile(r'##\s+Status:\s*(COMPLETED|ARCHIVED)', re.IGNORECASE)


@dataclass
class CleanupFailure:
    path: Path
    archived_to: Path
    error: str


@dataclass
class SweepResult:
    archived: list[Path] = field(default_factory=list)
    cleanup_failures: list[CleanupFailure] = field(default_factory=list)
    skipped: list[tuple[Path, str]] = field(default_factory=list)
    dry_run: bool = False


def is_sprint_file(path: Path) -> bool:
    return SPRINT_MARKER in path.name and path.name.endswith(SPRINT_SUFFIX)


def is_sprint_completed(content: str) -> bool:
    """True if any line, trimmed, is a COMPLETED or ARCHIVED status line."""
    return any(STATUS_DONE_RE.fullmatch(line.strip()) for line in content.split("\n"))


def sweep_destination(project_root: Path, project: str, filename: str, today: date) -> Path:
    return (
        Path(project_root) / ARCHIVE_DIR / today.isoformat()
        / "workflows" / project / filename
    )


def _archive_sprint(
    sprint: Path,
    project_root: Path,
    today: date,
    result: SweepResult,
) -> None:
    read = read_text(sprint)
    if not read.ok:
        logger.warning("Could not process %s: %s", sprint.name, read.error)
        result.skipped.append((sprint, read.error or "unreadable"))
        return

    content = read.value or ""
    if not is_sprint_completed(content):
        return

    destination = sweep_destination(project_root, sprint.parent.name, sprint.name, today)

    if result.dry_run:
        result.archived.append(destination)
        return

    ensure_directory(destination.parent)
    atomic_write(destination, content)

    try:
        sprint.unlink()
    except OSError as exc:
        # The archived copy stays; the original is now a duplicate
        logger.warning(
            "Archived but could not delete original: %s (%s)", sprint, exc
        )
        result.cleanup_failures.append(
            CleanupFailure(path=sprint, archived_to=destination, error=str(exc))
        )

    logger.info("Archived %s -> %s", sprint, destination)
    result.archived.append(destination)


def sweep_completed_sprints(
    project_root: Path,
    today: date | None = None,
    dry_run: bool = False,
) -> SweepResult:
    """Archive every completed sprint file under the workflows tree.

    Only files directly inside each project directory are considered.
    Write failures propagate; read failures are logged and skipped.
    """
    root = Path(project_root)
    day = today or utc_today()
    result = SweepResult(dry_run=dry_run)

    workflows_dir = root / WORKFLOWS_DIR
    if not workflows_dir.is_dir():
        return result

    listing = list_directory(workflows_dir)
    if not listing.ok:
        logger.warning("Could not read workflows directory: %s", listing.error)
        result.skipped.append((workflows_dir, listing.error or "unreadable"))
        return result

    for project_dir in listing.entries:
        try:
            if not project_dir.is_dir():
                continue
        except OSError as exc:
            logger.warning("Could not inspect %s: %s", project_dir.name, exc)
            result.skipped.append((project_dir, str(exc)))
            continue

        files = list_directory(project_dir)
        if not files.ok:
            logger.warning(
                "Could not read project directory %s: %s", project_dir.name, files.error
            )
            result.skipped.append((project_dir, files.error or "unreadable"))
            continue

        for sprint in files.entries:
            if not is_sprint_file(sprint):
                continue
            try:
                if not sprint.is_file():
                    continue
            except OSError as exc:
                logger.warning("Could not inspect %s: %s", sprint.name, exc)
                result.skipped.append((sprint, str(exc)))
                continue
            _archive_sprint(sprint, root, day, result)

    return result
