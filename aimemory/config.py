"""Load and validate memory-strategies.yaml."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from aimemory.fileio import read_text
from aimemory.paths import POLICY_FILE

logger = logging.getLogger(__name__)

# Default policy values
DEFAULTS: dict[str, Any] = {
    "log_retention_days": 14,
    "archive_completed_sprints": True,
    "warn_tier1_tokens": 4000,
    "warn_log_lines": 500,
}

MIN_RETENTION_DAYS = 1
MAX_RETENTION_DAYS = 365


@dataclass(frozen=True)
class RetentionPolicy:
    """Retention and budget settings. Every field has a usable default."""

    log_retention_days: int = DEFAULTS["log_retention_days"]
    archive_completed_sprints: bool = DEFAULTS["archive_completed_sprints"]
    warn_tier1_tokens: float = DEFAULTS["warn_tier1_tokens"]
    warn_log_lines: float = DEFAULTS["warn_log_lines"]


def _is_number(value: Any) -> bool:
    # bool is an int subclass; `true` is not a number here
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _retention_days(value: Any) -> int:
    if _is_number(value) and MIN_RETENTION_DAYS <= value <= MAX_RETENTION_DAYS:
        return int(math.floor(value))
    return DEFAULTS["log_retention_days"]


def _positive(value: Any, key: str) -> float:
    if _is_number(value) and value > 0:
        return value
    return DEFAULTS[key]


def _flag(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    return DEFAULTS[key]


def policy_from_mapping(raw: dict[str, Any]) -> RetentionPolicy:
    """Build a policy from a parsed mapping.

    Each field is validated on its own; a bad value falls back to its
    default without affecting the others. Unknown keys are ignored.
    """
    return RetentionPolicy(
        log_retention_days=_retention_days(raw.get("log_retention_days")),
        archive_completed_sprints=_flag(
            raw.get("archive_completed_sprints"), "archive_completed_sprints"
        ),
        warn_tier1_tokens=_positive(raw.get("warn_tier1_tokens"), "warn_tier1_tokens"),
        warn_log_lines=_positive(raw.get("warn_log_lines"), "warn_log_lines"),
    )


def load_policy(project_root: Path) -> RetentionPolicy:
    """Load the retention policy from ``project_root``.

    A missing file silently yields defaults. An unreadable or malformed
    file logs a warning and yields defaults.
    """
    policy_path = Path(project_root) / POLICY_FILE
    result = read_text(policy_path)

    if result.missing:
        return RetentionPolicy()
    if not result.ok:
        logger.warning(
            "Could not read %s: %s. Using default settings.", POLICY_FILE, result.error
        )
        return RetentionPolicy()

    try:
        raw = yaml.safe_load(result.value or "")
    except yaml.YAMLError as exc:
        logger.warning(
            "Could not parse %s: %s. Using default settings.", POLICY_FILE, exc
        )
        return RetentionPolicy()

    if not isinstance(raw, dict):
        logger.warning(
            "%s must be a YAML mapping, got %s. Using default settings.",
            POLICY_FILE,
            type(raw).__name__,
        )
        return RetentionPolicy()

    return policy_from_mapping(raw)
