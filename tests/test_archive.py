"""Tests for aimemory.archive: log rotation, sprint sweep, and the
combined archive run.
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from aimemory.archive import ArchiveResult, run_archive
from aimemory.archive import log as log_module
from aimemory.archive import workflows as workflows_module
from aimemory.archive.log import (
    archive_path_for,
    cutoff_date,
    flush_buckets,
    plan_log_rotation,
    render_log,
    rotate_log,
    utc_today,
)
from aimemory.archive.workflows import (
    is_sprint_completed,
    is_sprint_file,
    sweep_completed_sprints,
)
from aimemory.config import RetentionPolicy
from aimemory.fileio import DirListing, ReadResult
from aimemory.parse import parse_log


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

TODAY = date(2020, 6, 1)

HEADER = "# Session Log\n\nReverse-chronological log of work sessions.\n\n---"


def make_log(*days: str, header: str = HEADER) -> str:
    sections = [f"## {d}\n\n### proj — work on {d}\n- **Completed**: item" for d in days]
    body = "\n\n".join(sections) + "\n"
    return f"{header}\n\n{body}" if header else body


def section_text(day: str) -> str:
    return f"## {day}\n\n### proj — work on {day}\n- **Completed**: item"


@pytest.fixture
def project(tmp_path: Path) -> Path:
    (tmp_path / "memory" / "archive").mkdir(parents=True)
    return tmp_path


@pytest.fixture
def log_path(project: Path) -> Path:
    return project / "memory" / "GLOBAL_DAILY_LOG.md"


def write_sprint(project: Path, proj: str, name: str, content: str) -> Path:
    path = project / "memory" / "workflows" / proj / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


# 05:00 UTC on 2026-10-18 is still 2026-10-17 eleven hours west of UTC
FROZEN_UTC = datetime(2026, 10, 18, 5, 0, tzinfo=timezone.utc)


class FrozenDatetime(datetime):
    @classmethod
    def now(cls, tz=None):  # type: ignore[override]
        return FROZEN_UTC.astimezone(tz) if tz else FROZEN_UTC.astimezone().replace(tzinfo=None)


@pytest.fixture
def west_of_utc(monkeypatch: pytest.MonkeyPatch):
    """Local clock at UTC-11 with the wall time frozen at FROZEN_UTC."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is POSIX only")
    monkeypatch.setenv("TZ", "SST11")
    time.tzset()
    monkeypatch.setattr(log_module, "datetime", FrozenDatetime)
    yield
    monkeypatch.undo()
    time.tzset()


# ---------------------------------------------------------------------------
# cutoff_date
# ---------------------------------------------------------------------------

class TestCutoffDate:
    def test_whole_days(self) -> None:
        assert cutoff_date(14, TODAY) == date(2020, 5, 18)

    def test_defaults_to_today(self) -> None:
        assert cutoff_date(0) == utc_today()

    @pytest.mark.parametrize("bad", [True, -1, 1.5, "14"])
    def test_invalid(self, bad: object) -> None:
        with pytest.raises(ValueError):
            cutoff_date(bad, TODAY)  # type: ignore[arg-type]


class TestUtcToday:
    def test_cutoff_uses_utc_date(self, west_of_utc: None) -> None:
        assert FrozenDatetime.now().date() == date(2026, 10, 17)
        assert utc_today() == date(2026, 10, 18)
        assert cutoff_date(1) == date(2026, 10, 17)

    def test_sweep_folder_uses_utc_date(self, project: Path, west_of_utc: None) -> None:
        write_sprint(project, "api", "dev_sprint_1.md", "## Status: COMPLETED\n")

        result = run_archive(project, RetentionPolicy())

        assert result.sprints is not None
        [archived] = result.sprints.archived
        assert archived.relative_to(project / "memory" / "archive").parts[0] == "2026-10-18"


# ---------------------------------------------------------------------------
# plan_log_rotation / render_log
# ---------------------------------------------------------------------------

DAYS = ["2020-06-01", "2019-12-31", "2020-05-18", "2020-05-17", "2020-01-01", "2020-05-30"]


class TestPlanLogRotation:
    def test_old_entry_expires_recent_kept(self) -> None:
        plan = plan_log_rotation(parse_log(make_log("2020-01-01", "2020-06-01")), cutoff_date(14, TODAY))
        assert list(plan.buckets) == ["2020-01-01"]
        assert plan.kept == [section_text("2020-06-01")]

    @pytest.mark.parametrize("retention", [1, 2, 14, 15, 30, 152, 365])
    def test_partition_is_complete_and_ordered(self, retention: int) -> None:
        parsed = parse_log(make_log(*DAYS))
        plan = plan_log_rotation(parsed, cutoff_date(retention, TODAY))

        assert len(plan.kept) + plan.archived_count == len(DAYS)
        expected_kept = [s["text"] for s in parsed.sections if s["text"] in plan.kept]
        assert plan.kept == expected_kept

    def test_cutoff_day_is_kept(self) -> None:
        plan = plan_log_rotation(parse_log(make_log("2020-05-18", "2020-05-17")), date(2020, 5, 18))
        assert plan.kept == [section_text("2020-05-18")]
        assert list(plan.buckets) == ["2020-05-17"]

    def test_same_date_sections_bucketed_in_order(self) -> None:
        content = f"{HEADER}\n\n## 2020-01-01 — a\n- first\n\n## 2020-01-01 — b\n- second\n"
        plan = plan_log_rotation(parse_log(content), TODAY)
        assert plan.buckets == {
            "2020-01-01": ["## 2020-01-01 — a\n- first", "## 2020-01-01 — b\n- second"],
        }

    def test_undated_sections_kept(self) -> None:
        content = f"{HEADER}\n\n## Notes\n- keep me\n\n## 2020-01-01\n- old\n"
        plan = plan_log_rotation(parse_log(content), TODAY)
        assert plan.kept == ["## Notes\n- keep me"]
        assert plan.archived_count == 1


class TestRenderLog:
    def test_header_and_kept(self) -> None:
        plan = plan_log_rotation(parse_log(make_log("2020-06-01")), TODAY)
        assert render_log(plan) == f"{HEADER}\n\n{section_text('2020-06-01')}\n"

    def test_nothing_kept(self) -> None:
        plan = plan_log_rotation(parse_log(make_log("2020-01-01")), TODAY)
        assert render_log(plan) == HEADER + "\n"

    def test_no_header(self) -> None:
        plan = plan_log_rotation(parse_log(make_log("2020-01-01", "2020-06-01", header="")), TODAY)
        assert render_log(plan) == section_text("2020-06-01") + "\n"


# ---------------------------------------------------------------------------
# flush_buckets
# ---------------------------------------------------------------------------

class TestFlushBuckets:
    def test_writes_entries_verbatim(self, project: Path) -> None:
        written = flush_buckets({"2020-01-01": [section_text("2020-01-01")]}, project)
        target = archive_path_for(project, "2020-01-01")
        assert written == [target]
        assert target.read_text() == section_text("2020-01-01")

    def test_prepends_to_existing_archive(self, project: Path) -> None:
        target = archive_path_for(project, "2020-01-01")
        target.parent.mkdir(parents=True)
        target.write_text("## 2020-01-01 — earlier\n- archived before")

        flush_buckets({"2020-01-01": ["## 2020-01-01 — new\n- x"]}, project)

        assert target.read_text() == (
            "## 2020-01-01 — new\n- x\n\n## 2020-01-01 — earlier\n- archived before"
        )

    def test_unreadable_existing_archive_aborts(
        self, project: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        target = archive_path_for(project, "2020-01-01")
        target.parent.mkdir(parents=True)
        target.write_text("precious")

        monkeypatch.setattr(
            log_module, "read_text", lambda p: ReadResult(ok=False, error="Permission denied")
        )
        with pytest.raises(OSError, match="Permission denied"):
            flush_buckets({"2020-01-01": ["## 2020-01-01\n- x"]}, project)
        assert target.read_text() == "precious"


# ---------------------------------------------------------------------------
# rotate_log
# ---------------------------------------------------------------------------

class TestRotateLog:
    def test_long_retention_leaves_log_untouched(self, project: Path, log_path: Path) -> None:
        content = make_log("2020-06-01", "2020-01-01")
        log_path.write_text(content)
        mtime = log_path.stat().st_mtime_ns

        result = rotate_log(log_path, project, 365, today=TODAY)

        assert result.archived == 0
        assert result.before_lines == result.after_lines == len(content.split("\n"))
        assert log_path.read_text() == content
        assert log_path.stat().st_mtime_ns == mtime
        assert list((project / "memory" / "archive").iterdir()) == []

    def test_short_retention_archives_old_entry(self, project: Path, log_path: Path) -> None:
        content = make_log("2020-06-01", "2020-01-01")
        log_path.write_text(content)

        result = rotate_log(log_path, project, 1, today=TODAY)

        assert result.archived == 1
        assert result.cutoff == date(2020, 5, 31)
        assert log_path.read_text() == f"{HEADER}\n\n{section_text('2020-06-01')}\n"
        assert result.after_lines == len(log_path.read_text().split("\n"))
        assert result.before_lines > result.after_lines
        archived = archive_path_for(project, "2020-01-01")
        assert result.archive_files == [archived]
        assert archived.read_text() == section_text("2020-01-01")

    def test_header_preserved_when_everything_expires(self, project: Path, log_path: Path) -> None:
        log_path.write_text(make_log("2020-01-01", "2020-02-01"))
        rotate_log(log_path, project, 14, today=TODAY)
        assert log_path.read_text() == HEADER + "\n"

    def test_second_run_is_a_no_op(self, project: Path, log_path: Path) -> None:
        log_path.write_text(make_log("2020-06-01", "2020-01-01"))
        rotate_log(log_path, project, 14, today=TODAY)
        after_first = log_path.read_text()
        archived_first = archive_path_for(project, "2020-01-01").read_text()

        result = rotate_log(log_path, project, 14, today=TODAY)

        assert result.archived == 0
        assert log_path.read_text() == after_first
        assert archive_path_for(project, "2020-01-01").read_text() == archived_first

    def test_archive_written_before_log(
        self, project: Path, log_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        log_path.write_text(make_log("2020-06-01", "2020-01-01", "2019-12-31"))
        order: list[str] = []
        real_write = log_module.atomic_write

        def recording_write(path: Path, content: str) -> None:
            order.append(Path(path).name if Path(path) == log_path else "archive")
            real_write(path, content)

        monkeypatch.setattr(log_module, "atomic_write", recording_write)
        rotate_log(log_path, project, 14, today=TODAY)

        assert order == ["archive", "archive", "GLOBAL_DAILY_LOG.md"]

    def test_failed_archive_write_leaves_log_intact(
        self, project: Path, log_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        content = make_log("2020-06-01", "2020-01-01")
        log_path.write_text(content)

        def failing_write(path: Path, text: str) -> None:
            raise OSError("disk full")

        monkeypatch.setattr(log_module, "atomic_write", failing_write)
        with pytest.raises(OSError, match="disk full"):
            rotate_log(log_path, project, 14, today=TODAY)
        assert log_path.read_text() == content

    def test_dry_run_writes_nothing(self, project: Path, log_path: Path) -> None:
        content = make_log("2020-06-01", "2020-01-01")
        log_path.write_text(content)

        result = rotate_log(log_path, project, 14, today=TODAY, dry_run=True)

        assert result.dry_run
        assert result.archived == 1
        assert result.archive_files == [archive_path_for(project, "2020-01-01")]
        assert not result.archive_files[0].exists()
        assert log_path.read_text() == content

    def test_log_without_header(self, project: Path, log_path: Path) -> None:
        log_path.write_text("## 2020-01-01\n- a\n\n## 2020-06-01\n- b\n")
        rotate_log(log_path, project, 1, today=TODAY)
        assert log_path.read_text() == "## 2020-06-01\n- b\n"


# ---------------------------------------------------------------------------
# Sprint sweep
# ---------------------------------------------------------------------------

class TestIsSprintCompleted:
    @pytest.mark.parametrize("line", [
        "## Status: COMPLETED",
        "## Status: ARCHIVED",
        "## status: completed",
        "## Status: Completed   ",
        "   ## Status:COMPLETED",
        "##   Status:   archived",
    ])
    def test_done_markers(self, line: str) -> None:
        assert is_sprint_completed(f"# Sprint 3\n\n{line}\n\n- notes\n")

    @pytest.mark.parametrize("line", [
        "## Status: IN_PROGRESS",
        "## Status: COMPLETED soon",
        "Status: COMPLETED",
        "### Status: COMPLETED",
        "- ## Status: COMPLETED",
    ])
    def test_not_done(self, line: str) -> None:
        assert not is_sprint_completed(f"# Sprint 3\n{line}\n")


class TestIsSprintFile:
    @pytest.mark.parametrize("name,expected", [
        ("dev_sprint_1.md", True),
        ("qa_sprint_2026-02.md", True),
        ("notes.md", False),
        ("dev_sprint_1.txt", False),
        ("dev-sprint-1.md", False),
    ])
    def test_names(self, name: str, expected: bool) -> None:
        assert is_sprint_file(Path(name)) is expected


class TestSweepCompletedSprints:
    def test_archives_completed_sprint(self, project: Path) -> None:
        content = "# Sprint 1\n\n## Status: COMPLETED\n\n- shipped\n"
        original = write_sprint(project, "api", "dev_sprint_1.md", content)

        result = sweep_completed_sprints(project, today=TODAY)

        dest = project / "memory" / "archive" / "2020-06-01" / "workflows" / "api" / "dev_sprint_1.md"
        assert result.archived == [dest]
        assert dest.read_text() == content
        assert not original.exists()

    def test_in_progress_not_swept(self, project: Path) -> None:
        original = write_sprint(project, "api", "dev_sprint_2.md", "## Status: IN_PROGRESS\n")
        result = sweep_completed_sprints(project, today=TODAY)
        assert result.archived == []
        assert original.exists()

    def test_mixed_case_with_trailing_whitespace_swept_once(self, project: Path) -> None:
        write_sprint(project, "api", "dev_sprint_3.md", "## status: completed  \n")
        first = sweep_completed_sprints(project, today=TODAY)
        second = sweep_completed_sprints(project, today=TODAY)
        assert len(first.archived) == 1
        assert second.archived == []

    def test_only_sprint_markdown_files_considered(self, project: Path) -> None:
        done = "## Status: COMPLETED\n"
        kept = [
            write_sprint(project, "api", "notes.md", done),
            write_sprint(project, "api", "dev_sprint_1.txt", done),
            write_sprint(project, "api", "deep/dev_sprint_9.md", done),
        ]
        loose = project / "memory" / "workflows" / "dev_sprint_0.md"
        loose.write_text(done)

        result = sweep_completed_sprints(project, today=TODAY)

        assert result.archived == []
        assert all(p.exists() for p in kept + [loose])

    def test_multiple_projects(self, project: Path) -> None:
        write_sprint(project, "api", "dev_sprint_1.md", "## Status: COMPLETED\n")
        write_sprint(project, "web", "ux_sprint_1.md", "## Status: ARCHIVED\n")
        write_sprint(project, "web", "ux_sprint_2.md", "## Status: IN_PROGRESS\n")

        result = sweep_completed_sprints(project, today=TODAY)

        assert sorted(p.parent.name + "/" + p.name for p in result.archived) == [
            "api/dev_sprint_1.md",
            "web/ux_sprint_1.md",
        ]

    def test_missing_workflows_dir(self, project: Path) -> None:
        result = sweep_completed_sprints(project, today=TODAY)
        assert result.archived == []
        assert result.skipped == []

    def test_delete_failure_keeps_archive_and_warns(
        self, project: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        content = "## Status: COMPLETED\n"
        original = write_sprint(project, "api", "dev_sprint_1.md", content)

        def denied(self: Path, missing_ok: bool = False) -> None:
            raise PermissionError("read-only filesystem")

        monkeypatch.setattr(Path, "unlink", denied)
        with caplog.at_level(logging.WARNING, logger="aimemory.archive.workflows"):
            result = sweep_completed_sprints(project, today=TODAY)
        monkeypatch.undo()

        assert len(result.archived) == 1
        assert result.archived[0].read_text() == content
        assert original.exists()
        assert len(result.cleanup_failures) == 1
        failure = result.cleanup_failures[0]
        assert failure.path == original
        assert "read-only filesystem" in failure.error
        assert "could not delete original" in caplog.text
        assert str(original) in caplog.text

    def test_unreadable_project_does_not_block_others(
        self, project: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        write_sprint(project, "broken", "dev_sprint_1.md", "## Status: COMPLETED\n")
        write_sprint(project, "ok", "dev_sprint_1.md", "## Status: COMPLETED\n")
        real_list = workflows_module.list_directory

        def flaky_list(path: Path) -> DirListing:
            if Path(path).name == "broken":
                return DirListing(ok=False, error="Permission denied")
            return real_list(path)

        monkeypatch.setattr(workflows_module, "list_directory", flaky_list)
        with caplog.at_level(logging.WARNING, logger="aimemory.archive.workflows"):
            result = sweep_completed_sprints(project, today=TODAY)

        assert [p.parent.name for p in result.archived] == ["ok"]
        assert [p.name for p, _ in result.skipped] == ["broken"]
        assert "broken" in caplog.text

    def test_unreadable_file_does_not_block_siblings(
        self, project: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        write_sprint(project, "api", "a_sprint_1.md", "## Status: COMPLETED\n")
        write_sprint(project, "api", "b_sprint_1.md", "## Status: COMPLETED\n")
        real_read = workflows_module.read_text

        def flaky_read(path: Path) -> ReadResult:
            if Path(path).name == "a_sprint_1.md":
                return ReadResult(ok=False, error="Permission denied")
            return real_read(path)

        monkeypatch.setattr(workflows_module, "read_text", flaky_read)
        with caplog.at_level(logging.WARNING, logger="aimemory.archive.workflows"):
            result = sweep_completed_sprints(project, today=TODAY)

        assert [p.name for p in result.archived] == ["b_sprint_1.md"]
        assert "a_sprint_1.md" in caplog.text

    def test_unreadable_workflows_root(
        self, project: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        write_sprint(project, "api", "dev_sprint_1.md", "## Status: COMPLETED\n")
        monkeypatch.setattr(
            workflows_module, "list_directory", lambda p: DirListing(ok=False, error="EACCES")
        )
        with caplog.at_level(logging.WARNING, logger="aimemory.archive.workflows"):
            result = sweep_completed_sprints(project, today=TODAY)
        assert result.archived == []
        assert "workflows directory" in caplog.text

    def test_uninspectable_project_does_not_block_others(
        self, project: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        write_sprint(project, "locked", "dev_sprint_1.md", "## Status: COMPLETED\n")
        write_sprint(project, "ok", "dev_sprint_1.md", "## Status: COMPLETED\n")
        real_is_dir = Path.is_dir

        def no_traverse(self: Path) -> bool:
            if self.name == "locked":
                raise PermissionError("Permission denied")
            return real_is_dir(self)

        monkeypatch.setattr(Path, "is_dir", no_traverse)
        with caplog.at_level(logging.WARNING, logger="aimemory.archive.workflows"):
            result = sweep_completed_sprints(project, today=TODAY)
        monkeypatch.undo()

        assert [p.parent.name for p in result.archived] == ["ok"]
        assert [p.name for p, _ in result.skipped] == ["locked"]
        assert "locked" in caplog.text

    def test_uninspectable_file_does_not_block_siblings(
        self, project: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        locked = write_sprint(project, "api", "a_sprint_1.md", "## Status: COMPLETED\n")
        write_sprint(project, "api", "b_sprint_1.md", "## Status: COMPLETED\n")
        real_is_file = Path.is_file

        def no_stat(self: Path) -> bool:
            if self.name == "a_sprint_1.md":
                raise PermissionError("Permission denied")
            return real_is_file(self)

        monkeypatch.setattr(Path, "is_file", no_stat)
        with caplog.at_level(logging.WARNING, logger="aimemory.archive.workflows"):
            result = sweep_completed_sprints(project, today=TODAY)
        monkeypatch.undo()

        assert [p.name for p in result.archived] == ["b_sprint_1.md"]
        assert result.skipped == [(locked, "Permission denied")]
        assert locked.exists()

    def test_dry_run_moves_nothing(self, project: Path) -> None:
        original = write_sprint(project, "api", "dev_sprint_1.md", "## Status: COMPLETED\n")
        result = sweep_completed_sprints(project, today=TODAY, dry_run=True)
        assert len(result.archived) == 1
        assert not result.archived[0].exists()
        assert original.exists()


# ---------------------------------------------------------------------------
# run_archive
# ---------------------------------------------------------------------------

class TestRunArchive:
    def test_rotates_and_sweeps(self, project: Path, log_path: Path) -> None:
        log_path.write_text(make_log("2020-06-01", "2020-01-01"))
        write_sprint(project, "api", "dev_sprint_1.md", "## Status: COMPLETED\n")

        result = run_archive(project, RetentionPolicy(), today=TODAY)

        assert isinstance(result, ArchiveResult)
        assert result.log is not None and result.log.archived == 1
        assert result.sprints is not None and len(result.sprints.archived) == 1

    def test_sweep_disabled_by_policy(self, project: Path, log_path: Path) -> None:
        log_path.write_text(make_log("2020-06-01"))
        sprint = write_sprint(project, "api", "dev_sprint_1.md", "## Status: COMPLETED\n")

        result = run_archive(
            project, RetentionPolicy(archive_completed_sprints=False), today=TODAY
        )

        assert result.sprints is None
        assert sprint.exists()

    def test_missing_log_skipped(self, project: Path) -> None:
        result = run_archive(project, RetentionPolicy(), today=TODAY)
        assert result.log is None
        assert result.sprints is not None
