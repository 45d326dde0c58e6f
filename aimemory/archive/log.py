"""Daily log rotation: move sections older than the retention window
into ``memory/archive/<date>/GLOBAL_DAILY_LOG.md``.

Archive files are written before the live log is rewritten, so an
interrupted run leaves a section in both places, never in neither.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from aimemory.fileio import atomic_write, ensure_directory, read_text
from aimemory.parse import ParsedLog, is_expired, parse_log
from aimemory.paths import ARCHIVE_DIR, LOG_FILENAME

logger = logging.getLogger(__name__)


@dataclass
class RotationPlan:
    """Partition of a parsed log into kept sections and dated buckets."""

    header: str
    kept: list[str] = field(default_factory=list)
    buckets: dict[str, list[str]] = field(default_factory=dict)

    @property
    def archived_count(self) -> int:
        return sum(len(entries) for entries in self.buckets.values())


@dataclass
class LogRotationResult:
    archived: int
    before_lines: int
    after_lines: int
    cutoff: date
    archive_files: list[Path] = field(default_factory=list)
    dry_run: bool = False


def utc_today() -> date:
    """Current calendar date in UTC. Heading dates are read as UTC days."""
    return datetime.now(timezone.utc).date()


def cutoff_date(retention_days: int, today: date | None = None) -> date:
    """Sections dated before the returned day are expired."""
    if isinstance(retention_days, bool) or not isinstance(retention_days, int):
        raise ValueError("retention_days must be an integer")
    if retention_days < 0:
        raise ValueError("retention_days must not be negative")
    return (today or utc_today()) - timedelta(days=retention_days)


def plan_log_rotation(parsed: ParsedLog, cutoff: date) -> RotationPlan:
    """Split sections into kept text and expired text bucketed by date.

    Encounter order is preserved in both the kept list and each bucket.
    """
    plan = RotationPlan(header=parsed.header)

    for section in parsed.sections:
        if is_expired(section, cutoff):
            key = section["date"].isoformat()  # type: ignore[union-attr]
            plan.buckets.setdefault(key, []).append(section["text"])
        else:
            plan.kept.append(section["text"])

    return plan


def render_log(plan: RotationPlan) -> str:
    """Render the live log from the header and kept sections."""
    if not plan.kept:
        return plan.header + "\n"

    body = "\n\n".join(plan.kept) + "\n"
    if not plan.header:
        return body
    return plan.header + "\n\n" + body


def archive_path_for(project_root: Path, date_str: str) -> Path:
    return Path(project_root) / ARCHIVE_DIR / date_str / LOG_FILENAME


def flush_buckets(buckets: dict[str, list[str]], project_root: Path) -> list[Path]:
    """Write each bucket to its dated archive file.

    New entries go ahead of whatever is already archived for that date.
    If an existing archive file cannot be read the run aborts rather
    than overwrite it.
    """
    written: list[Path] = []

    for date_str, entries in buckets.items():
        archive_path = archive_path_for(project_root, date_str)
        ensure_directory(archive_path.parent)

        existing = read_text(archive_path)
        if not existing.ok and not existing.missing:
            raise OSError(
                f"could not read existing archive '{archive_path}': {existing.error}"
            )

        content = "\n\n".join(entries)
        if existing.value:
            content += "\n\n" + existing.value

        atomic_write(archive_path, content)
        logger.info("Archived %d section(s) to %s", len(entries), archive_path)
        written.append(archive_path)

    return written


def rotate_log(
    log_path: Path,
    project_root: Path,
    retention_days: int,
    today: date | None = None,
    dry_run: bool = False,
) -> LogRotationResult:
    """Archive log sections older than ``retention_days``.

    When nothing is expired the log file is not written at all. With
    ``dry_run`` the plan is computed and reported but nothing is written.
    Read failure of the live log and any write failure propagate.
    """
    content = Path(log_path).read_text(encoding="utf-8")
    before_lines = len(content.split("\n"))
    cutoff = cutoff_date(retention_days, today)

    plan = plan_log_rotation(parse_log(content), cutoff)

    if plan.archived_count == 0:
        return LogRotationResult(
            archived=0,
            before_lines=before_lines,
            after_lines=before_lines,
            cutoff=cutoff,
            dry_run=dry_run,
        )

    new_content = render_log(plan)
    after_lines = len(new_content.split("\n"))

    if dry_run:
        return LogRotationResult(
            archived=plan.archived_count,
            before_lines=before_lines,
            after_lines=after_lines,
            cutoff=cutoff,
            archive_files=[archive_path_for(project_root, d) for d in plan.buckets],
            dry_run=True,
        )

    archive_files = flush_buckets(plan.buckets, project_root)
    atomic_write(log_path, new_content)

    return LogRotationResult(
        archived=plan.archived_count,
        before_lines=before_lines,
        after_lines=after_lines,
        cutoff=cutoff,
        archive_files=archive_files,
    )
