"""Memory system health: file sizes, token estimates, staleness, budgets.

Read-only. Every read failure is logged and treated as an empty result
so one unreadable file never hides the rest of the report.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from aimemory.archive.workflows import is_sprint_file
from aimemory.config import RetentionPolicy
from aimemory.fileio import list_directory, read_text
from aimemory.paths import (
    LOG_FILE,
    PROJECTS_DIR,
    RULE_FILES,
    TIER1_FILES,
    WORKFLOWS_DIR,
)

logger = logging.getLogger(__name__)

# Files above this are not read
MAX_ANALYZE_BYTES = 10 * 1024 * 1024

# Rough heuristic for English markdown
CHARS_PER_TOKEN = 4

STALE_GENERAL = timedelta(days=7)
STALE_WAITING = timedelta(days=2)


@dataclass
class FileStats:
    exists: bool = False
    lines: int = 0
    characters: int = 0
    estimated_tokens: int = 0
    last_modified: datetime | None = None
    age: str = "n/a"
    warning: str | None = None


@dataclass
class FileReport:
    relative_path: str
    stats: FileStats


@dataclass
class Tier1Budget:
    files: list[FileReport]
    total_tokens: int
    over_budget: bool
    budget: float


@dataclass
class LogHealth:
    exists: bool
    lines: int
    estimated_tokens: int
    needs_archive: bool
    warn_lines: float
    age: str
    warning: str | None = None


@dataclass
class HealthReport:
    tier1: Tier1Budget
    log: LogHealth
    rules: list[dict[str, Any]] = field(default_factory=list)
    projects: list[str] = field(default_factory=list)
    sprints: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable form (datetimes as ISO strings)."""
        data = asdict(self)
        for entry in data["tier1"]["files"]:
            modified = entry["stats"]["last_modified"]
            entry["stats"]["last_modified"] = modified.isoformat() if modified else None
        return data


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def format_age(timestamp: datetime | None, now: datetime | None = None) -> str:
    """Human-readable age: ``5d ago``, ``3h ago``, ``2m ago``, ``just now``."""
    if timestamp is None:
        return "n/a"

    seconds = int((_now(now) - timestamp).total_seconds())
    if seconds < 0:
        return "just now"

    minutes, hours, days = seconds // 60, seconds // 3600, seconds // 86400
    if days > 0:
        return f"{days}d ago"
    if hours > 0:
        return f"{hours}h ago"
    if minutes > 0:
        return f"{minutes}m ago"
    return "just now"


def get_file_stats(path: Path, now: datetime | None = None) -> FileStats:
    """Line, character and token-estimate stats for one file."""
    path = Path(path)
    if not path.is_file():
        return FileStats()

    try:
        st = path.stat()
    except OSError as exc:
        logger.warning("Could not stat %s: %s", path, exc)
        return FileStats()

    modified = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)

    if st.st_size > MAX_ANALYZE_BYTES:
        return FileStats(
            exists=True,
            lines=-1,
            characters=st.st_size,
            estimated_tokens=math.ceil(st.st_size / CHARS_PER_TOKEN),
            last_modified=modified,
            age=format_age(modified, now),
            warning="File too large to analyze",
        )

    result = read_text(path)
    if not result.ok:
        logger.warning("Could not read %s: %s", path, result.error)
        return FileStats()

    content = result.value or ""
    return FileStats(
        exists=True,
        lines=len(content.split("\n")),
        characters=len(content),
        estimated_tokens=math.ceil(len(content) / CHARS_PER_TOKEN),
        last_modified=modified,
        age=format_age(modified, now),
    )


def staleness(
    relative_path: str,
    last_modified: datetime | None,
    now: datetime | None = None,
) -> str | None:
    """Return a staleness note, or None if the file is fresh enough.

    WAITING_ON.md tracks live state and goes stale sooner.
    """
    if last_modified is None:
        return None

    age = _now(now) - last_modified
    if "WAITING_ON" in relative_path and age > STALE_WAITING:
        return "may be outdated (>2d)"
    if age > STALE_GENERAL:
        return f"stale ({age.days}d ago)"
    return None


def check_tier1_budget(
    project_root: Path,
    budget: float = 4000,
    now: datetime | None = None,
) -> Tier1Budget:
    """Sum token estimates across the always-on memory files."""
    if isinstance(budget, bool) or not isinstance(budget, (int, float)) \
            or not math.isfinite(budget) or budget <= 0:
        raise ValueError("budget must be a positive finite number")

    root = Path(project_root)
    files = [
        FileReport(relative_path=rel, stats=get_file_stats(root / rel, now))
        for rel in TIER1_FILES
    ]
    total = sum(f.stats.estimated_tokens for f in files)
    return Tier1Budget(files=files, total_tokens=total, over_budget=total > budget, budget=budget)


def check_log_health(
    project_root: Path,
    warn_lines: float = 500,
    now: datetime | None = None,
) -> LogHealth:
    stats = get_file_stats(Path(project_root) / LOG_FILE, now)
    return LogHealth(
        exists=stats.exists,
        lines=stats.lines,
        estimated_tokens=stats.estimated_tokens,
        needs_archive=stats.lines > warn_lines,
        warn_lines=warn_lines,
        age=stats.age,
        warning=stats.warning,
    )


def list_subdirectories(directory: Path) -> list[str]:
    directory = Path(directory)
    if not directory.is_dir():
        return []

    listing = list_directory(directory)
    if not listing.ok:
        logger.warning("Could not read directory %s: %s", directory, listing.error)
        return []
    return sorted(p.name for p in listing.entries if p.is_dir())


def find_sprint_files(project_root: Path) -> list[str]:
    """Relative paths of sprint files, one level under each project."""
    root = Path(project_root)
    workflows_dir = root / WORKFLOWS_DIR
    found: list[str] = []

    for project in list_subdirectories(workflows_dir):
        listing = list_directory(workflows_dir / project)
        if not listing.ok:
            logger.warning("Could not read directory %s: %s", workflows_dir / project, listing.error)
            continue
        for path in listing.entries:
            if path.is_file() and is_sprint_file(path):
                found.append(f"{WORKFLOWS_DIR}/{project}/{path.name}")

    return sorted(found)


def collect_warnings(
    tier1: Tier1Budget,
    log: LogHealth,
    missing_rules: list[str],
    now: datetime | None = None,
) -> list[str]:
    warnings: list[str] = []

    if tier1.over_budget:
        warnings.append(
            f"Tier 1 exceeds token budget: ~{tier1.total_tokens} tokens "
            f"(budget: {tier1.budget:g}). Trim memory/USER.md or "
            "memory/ai/COMMON_MISTAKES.md to reduce."
        )

    if log.needs_archive:
        warnings.append(
            f"GLOBAL_DAILY_LOG.md exceeds {log.warn_lines:g} lines. "
            "Run 'aimemory archive' to clean up."
        )

    for report in tier1.files:
        if not report.stats.exists:
            warnings.append(f"Missing Tier 1 file: {report.relative_path}")
        elif report.stats.warning:
            warnings.append(f"{report.relative_path}: {report.stats.warning}")

    if log.warning:
        warnings.append(f"GLOBAL_DAILY_LOG.md: {log.warning}")

    for rule in missing_rules:
        warnings.append(f"Missing assistant rule: {rule}")

    waiting = next((f for f in tier1.files if "WAITING_ON" in f.relative_path), None)
    if waiting and waiting.stats.last_modified is not None:
        if _now(now) - waiting.stats.last_modified > STALE_WAITING:
            warnings.append("WAITING_ON.md has not been updated in over 2 days.")

    return warnings


def build_report(
    project_root: Path,
    policy: RetentionPolicy | None = None,
    now: datetime | None = None,
) -> HealthReport:
    """Gather the full health report for ``project_root``."""
    root = Path(project_root)
    policy = policy or RetentionPolicy()

    tier1 = check_tier1_budget(root, policy.warn_tier1_tokens, now)
    log = check_log_health(root, policy.warn_log_lines, now)

    rules = [
        {"path": rel, "label": label, "exists": (root / rel).is_file()}
        for rel, label in RULE_FILES
    ]
    missing_rules = [r["path"] for r in rules if not r["exists"]]

    return HealthReport(
        tier1=tier1,
        log=log,
        rules=rules,
        projects=list_subdirectories(root / PROJECTS_DIR),
        sprints=find_sprint_files(root),
        warnings=collect_warnings(tier1, log, missing_rules, now),
    )
