"""Safe file operations: atomic writes, directory creation, line-once
appends, and non-raising reads for multi-item scans.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from aimemory.parse import find_header_end

logger = logging.getLogger(__name__)


class AtomicWriteError(OSError):
    """Raised when an atomic write fails. Carries the target path."""

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(f"failed to write '{path}': {message}")
        self.path = path


class SymlinkWriteError(AtomicWriteError):
    """Raised instead of writing through an existing symbolic link."""

    def __init__(self, path: Path) -> None:
        super().__init__(path, "refusing to write through symlink")


@dataclass(frozen=True)
class ReadResult:
    """Outcome of reading a text file.

    ``missing`` distinguishes "not there" from "there but unreadable".
    """

    ok: bool
    value: str | None = None
    error: str | None = None
    missing: bool = False


@dataclass(frozen=True)
class DirListing:
    ok: bool
    entries: list[Path] = field(default_factory=list)
    error: str | None = None


def _require_path(value: object, name: str) -> Path:
    if isinstance(value, Path):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty path")
    return Path(value)


def read_text(path: Path) -> ReadResult:
    """Read a UTF-8 file without raising on I/O errors."""
    try:
        return ReadResult(ok=True, value=Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return ReadResult(ok=False, error="file not found", missing=True)
    except (OSError, UnicodeDecodeError) as exc:
        return ReadResult(ok=False, error=str(exc))


def list_directory(path: Path) -> DirListing:
    """List a directory's entries sorted by name, without raising."""
    try:
        entries = sorted(Path(path).iterdir(), key=lambda p: p.name)
    except OSError as exc:
        return DirListing(ok=False, error=str(exc))
    return DirListing(ok=True, entries=entries)


def ensure_directory(path: str | Path) -> Path:
    """Create ``path`` and any missing parents. No-op if it exists."""
    directory = _require_path(path, "path")
    if directory.exists() and not directory.is_dir():
        raise NotADirectoryError(f"not a directory: '{directory}'")
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def atomic_write(path: str | Path, content: str) -> None:
    """Write ``content`` to ``path`` via a sibling temp file and rename.

    The temp name is randomized so a pre-planted symlink at a predictable
    name cannot redirect the write.
    """
    target = _require_path(path, "path")
    if not isinstance(content, str):
        raise ValueError("content must be a string")

    ensure_directory(target.parent)

    if target.is_symlink():
        raise SymlinkWriteError(target)

    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            newline="",
            dir=target.parent,
            prefix=f".{target.name}.",
            suffix=".tmp",
            delete=False,
        ) as fh:
            tmp_path = Path(fh.name)
            fh.write(content)
        os.replace(tmp_path, target)
    except OSError as exc:
        if tmp_path is not None:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError as cleanup_exc:
                logger.debug("Could not remove temp file %s: %s", tmp_path, cleanup_exc)
        raise AtomicWriteError(target, str(exc)) from exc

    logger.debug("Wrote %s (%d chars)", target, len(content))


def ensure_line_present(path: str | Path, line: str) -> Literal["added", "unchanged"]:
    """Append ``line`` to ``path`` unless a trimmed copy is already there.

    Used for ignore files. Creates the file if it does not exist.
    """
    target = _require_path(path, "path")
    if not isinstance(line, str):
        raise ValueError("line must be a string")

    wanted = line.strip()
    existing = ""
    if target.exists():
        existing = target.read_text(encoding="utf-8")
        if any(current.strip() == wanted for current in existing.split("\n")):
            return "unchanged"

    separator = "\n" if existing and not existing.endswith("\n") else ""
    atomic_write(target, f"{existing}{separator}{wanted}\n")
    return "added"


def insert_after_header(path: str | Path, content: str) -> None:
    """Insert ``content`` right after the header of a log document.

    The header is everything up to and including the first ``---`` line,
    so new entries land newest-first. Without a separator the content is
    prepended. Raises FileNotFoundError if the document does not exist.
    """
    target = _require_path(path, "path")
    if not isinstance(content, str):
        raise ValueError("content must be a string")
    if not target.is_file():
        raise FileNotFoundError(f"log document does not exist: '{target}'")

    existing = target.read_text(encoding="utf-8")
    lines = existing.split("\n")
    header_end = find_header_end(lines)

    if header_end >= 0:
        header = "\n".join(lines[: header_end + 1])
        # Strip leading blank lines so repeated inserts don't accumulate them
        body = "\n".join(lines[header_end + 1 :]).lstrip()
        updated = f"{header}\n\n{content.strip()}\n"
        if body:
            updated += f"\n{body}"
    else:
        updated = f"{content.strip()}\n\n{existing}"

    atomic_write(target, updated)


def write_template(
    content: str,
    target: str | Path,
    overwrite: bool = False,
) -> Literal["created", "skipped", "overwritten"]:
    """Write template ``content`` to ``target`` unless it already exists."""
    path = _require_path(target, "target")
    existed = path.exists()
    if existed and not overwrite:
        return "skipped"

    atomic_write(path, content)
    return "overwritten" if existed else "created"
