"""Archive subsystem: daily log rotation and completed sprint sweep.

``run_archive`` performs one sequential pass: rotate the log (archive
buckets first, then the live rewrite), then sweep sprint files.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from pathlib import Path

from aimemory.archive.log import (
    LogRotationResult,
    cutoff_date,
    flush_buckets,
    plan_log_rotation,
    render_log,
    rotate_log,
    utc_today,
)
from aimemory.archive.workflows import (
    SweepResult,
    is_sprint_completed,
    sweep_completed_sprints,
)
from aimemory.config import RetentionPolicy
from aimemory.paths import LOG_FILE

__all__ = [
    "ArchiveResult",
    "LogRotationResult",
    "SweepResult",
    "cutoff_date",
    "flush_buckets",
    "is_sprint_completed",
    "plan_log_rotation",
    "render_log",
    "rotate_log",
    "run_archive",
    "sweep_completed_sprints",
    "utc_today",
]


@dataclass
class ArchiveResult:
    # None when the log file does not exist
    log: LogRotationResult | None
    # None when the policy disables the sweep
    sprints: SweepResult | None


def run_archive(
    project_root: Path,
    policy: RetentionPolicy,
    today: date | None = None,
    dry_run: bool = False,
) -> ArchiveResult:
    root = Path(project_root)
    day = today or utc_today()

    log_path = root / LOG_FILE
    log_result = None
    if log_path.is_file():
        log_result = rotate_log(
            log_path, root, policy.log_retention_days, today=day, dry_run=dry_run
        )

    sprint_result = None
    if policy.archive_completed_sprints:
        sprint_result = sweep_completed_sprints(root, today=day, dry_run=dry_run)

    return ArchiveResult(log=log_result, sprints=sprint_result)
