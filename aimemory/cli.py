"""CLI entry point for aimemory."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import click

from aimemory import __version__

logger = logging.getLogger(__name__)

_ACTION_SYMBOLS = {"created": "+", "skipped": "✓", "overwritten": "↻"}
_ACTION_LABELS = {"created": "", "skipped": " (exists, skipped)", "overwritten": " (overwritten)"}


def _resolve_root(project_root: str) -> Path:
    """Walk up from ``project_root`` to the directory holding a root marker.

    Falls back to ``project_root`` itself, with a warning, if none is found.
    """
    from aimemory.paths import MAX_TRAVERSAL_DEPTH, find_project_root

    start = Path(project_root)
    found = find_project_root(start)
    if found is None:
        logger.warning(
            "No .git or package.json found within %d directories. Using %s",
            MAX_TRAVERSAL_DEPTH,
            start,
        )
        return start
    logger.info("Project root: %s (found %s)", found.root, found.marker)
    return found.root


@click.group()
@click.version_option(__version__, prog_name="aimemory")
@click.option("-v", "--verbose", is_flag=True, help="Log progress details to stderr.")
def cli(verbose: bool) -> None:
    """aimemory: scaffold and maintain persistent memory for AI coding assistants."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )


@cli.command()
@click.option(
    "--project-root",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    default=".",
    help="Directory to start project root detection from (default: cwd).",
)
@click.option("--force", is_flag=True, help="Overwrite existing memory files.")
def init(project_root: str, force: bool) -> None:
    """Scaffold the memory system into the project."""
    from aimemory.scaffold import scaffold

    root = _resolve_root(project_root)
    result = scaffold(root, force=force)

    if result.already_initialized:
        click.echo(
            f"Memory system already exists at {root / 'memory'}\n"
            "Use --force to overwrite, or run 'aimemory status' to check health."
        )
        return

    click.echo("Creating directories:")
    for rel, created in result.directories:
        click.echo(f"  + {rel}/" if created else f"  ✓ {rel}/ (exists)")

    click.echo("\nWriting templates:")
    for rel, action in result.files:
        click.echo(f"  {_ACTION_SYMBOLS[action]} {rel}{_ACTION_LABELS[action]}")

    click.echo("\nUpdating ignore files:")
    for name, outcome in result.ignores:
        if outcome == "added":
            click.echo(f"  + {name}: added memory/archive/")
        else:
            click.echo(f"  ✓ {name}: memory/archive/ already present")

    click.echo(
        f"\nFiles: {result.count('created')} created, {result.count('skipped')} skipped, "
        f"{result.count('overwritten')} overwritten"
    )
    click.echo("\nMemory system initialized. Edit memory/USER.md with your preferences.")


@cli.command()
@click.option(
    "--project-root",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    default=".",
    help="Directory to start project root detection from (default: cwd).",
)
@click.option("--json", "as_json", is_flag=True, help="Output the report as JSON.")
def status(project_root: str, as_json: bool) -> None:
    """Report memory system health."""
    from aimemory.config import load_policy
    from aimemory.health import build_report, staleness

    root = _resolve_root(project_root)
    if not (root / "memory").is_dir():
        click.echo('No memory system found. Run "aimemory init" to set one up.')
        return

    report = build_report(root, load_policy(root))

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        return

    click.echo("aimemory status report")
    click.echo("======================\n")

    click.echo("Tier 1 (Always-On):")
    for entry in report.tier1.files:
        s = entry.stats
        if not s.exists:
            click.echo(f"  ✗ {entry.relative_path:<35} MISSING")
            continue
        stale = staleness(entry.relative_path, s.last_modified)
        mark = "⚠" if stale else "✓"
        lines = "File too large" if s.lines == -1 else f"{s.lines} lines"
        suffix = f"  ⚠ {stale}" if stale else ""
        click.echo(
            f"  {mark} {entry.relative_path:<35} {lines:>10}   "
            f"{'~' + str(s.estimated_tokens) + ' tokens':>12}   Modified: {s.age}{suffix}"
        )
    budget_status = "⚠ OVER BUDGET" if report.tier1.over_budget else "✓ OK"
    click.echo(
        f"  Tier 1 total: ~{report.tier1.total_tokens} tokens "
        f"(budget: {report.tier1.budget:g})  {budget_status}\n"
    )

    click.echo("Tier 2 (On-Demand):")
    log = report.log
    if log.exists:
        mark = "⚠" if log.needs_archive else "✓"
        lines = "File too large" if log.lines == -1 else f"{log.lines} lines"
        click.echo(
            f"  {mark} {'memory/GLOBAL_DAILY_LOG.md':<35} {lines:>10}   "
            f"{'~' + str(log.estimated_tokens) + ' tokens':>12}   Modified: {log.age}"
        )
    else:
        click.echo(f"  ✗ {'memory/GLOBAL_DAILY_LOG.md':<35} MISSING")

    click.echo("\nAssistant Rules:")
    for rule in report.rules:
        if rule["exists"]:
            click.echo(f"  ✓ {rule['path']:<35} ({rule['label']})")
        else:
            click.echo(f"  ✗ {rule['path']:<35} MISSING")

    click.echo(f"\nProjects: {len(report.projects)} detected")
    for name in report.projects:
        click.echo(f"  memory/projects/{name}/")
    if not report.projects:
        click.echo("  (none)")

    click.echo(f"\nActive Sprints: {len(report.sprints)}")
    for sprint in report.sprints:
        click.echo(f"  {sprint}")
    if not report.sprints:
        click.echo("  (none)")

    if report.warnings:
        click.echo("\nWarnings:")
        for warning in report.warnings:
            click.echo(f"  ⚠ {warning}")


@cli.command()
@click.option(
    "--project-root",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    default=".",
    help="Directory to start project root detection from (default: cwd).",
)
@click.option("--dry-run", is_flag=True, help="Show what would be archived without writing.")
def archive(project_root: str, dry_run: bool) -> None:
    """Archive old log entries and completed sprint files."""
    from aimemory.archive import run_archive
    from aimemory.config import load_policy

    root = _resolve_root(project_root)
    if not (root / "memory").is_dir():
        click.echo('No memory system found. Run "aimemory init" to set one up.')
        return

    policy = load_policy(root)
    click.echo("aimemory archive" + (" (dry run)" if dry_run else ""))
    click.echo(f"Retention: {policy.log_retention_days} days\n")

    try:
        result = run_archive(root, policy, dry_run=dry_run)
    except OSError as exc:
        raise click.ClickException(f"Archive aborted: {exc}") from exc

    verb = "Would archive" if dry_run else "Archived"

    if result.log is None:
        click.echo("No GLOBAL_DAILY_LOG.md found; skipping log archive.")
    elif result.log.archived > 0:
        for path in result.log.archive_files:
            click.echo(f"  → {path.relative_to(root).as_posix()}")
        click.echo(
            f"{verb} {result.log.archived} log entries "
            f"(before {result.log.cutoff.isoformat()})"
        )
        click.echo(
            f"  GLOBAL_DAILY_LOG.md: {result.log.before_lines} → "
            f"{result.log.after_lines} lines"
        )
    else:
        click.echo("No log entries old enough to archive.")

    if result.sprints is not None:
        for path in result.sprints.archived:
            click.echo(f"  → {path.relative_to(root).as_posix()}")
        if result.sprints.archived:
            click.echo(f"{verb} {len(result.sprints.archived)} completed sprint(s)")
        else:
            click.echo("No completed sprints to archive.")
        if result.sprints.cleanup_failures:
            click.echo(
                f"  {len(result.sprints.cleanup_failures)} archived sprint(s) could not be "
                "removed from memory/workflows/ (see warnings)"
            )


@cli.command()
@click.option(
    "--project-root",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    default=".",
    help="Directory to start project root detection from (default: cwd).",
)
@click.option(
    "--date",
    "entry_date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Entry date (YYYY-MM-DD). Defaults to today (UTC).",
)
@click.argument("message")
def log(project_root: str, entry_date: object, message: str) -> None:
    """Add a dated entry to the top of GLOBAL_DAILY_LOG.md."""
    from aimemory.archive.log import utc_today
    from aimemory.fileio import insert_after_header
    from aimemory.paths import LOG_FILE, resolve_memory_path

    root = _resolve_root(project_root)
    day = entry_date.date() if entry_date else utc_today()  # type: ignore[union-attr]
    log_path = resolve_memory_path(root, LOG_FILE)

    try:
        insert_after_header(log_path, f"## {day.isoformat()}\n\n- {message.strip()}")
    except FileNotFoundError as exc:
        raise click.ClickException(f"{exc}. Run 'aimemory init' first.") from exc

    click.echo(f"Added entry for {day.isoformat()} to {LOG_FILE}")
