"""Daily log parsing: header boundary, dated H2 sections, heading dates.

Shared by the archive engine and ``fileio.insert_after_header``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import TypedDict

HEADER_SEPARATOR = "---"

HEADING_PREFIX = "## "

# Matches an ISO date at the start of a heading: "## 2026-02-06 api work"
HEADING_DATE_RE = re.compile(r'^##\s+(\d{4}-\d{2}-\d{2})')


class LogSection(TypedDict):
    """A dated H2 section of the daily log."""
    heading: str
    date: date | None
    text: str


@dataclass
class ParsedLog:
    header: str
    sections: list[LogSection] = field(default_factory=list)


def find_header_end(lines: list[str]) -> int:
    """Index of the first line that is exactly ``---`` once trimmed, or -1."""
    for i, line in enumerate(lines):
        if line.strip() == HEADER_SEPARATOR:
            return i
    return -1


def is_heading(line: str) -> bool:
    return line.startswith(HEADING_PREFIX)


def parse_heading_date(heading: str) -> date | None:
    """Parse the ISO date that opens a heading.

    Returns None for headings without a date and for impossible dates
    like ``2020-13-45``.
    """
    m = HEADING_DATE_RE.match(heading.strip())
    if not m:
        return None
    try:
        return date.fromisoformat(m.group(1))
    except ValueError:
        return None


def split_sections(body_lines: list[str]) -> list[LogSection]:
    """Segment body lines into sections at each ``## `` heading.

    Lines before the first heading belong to no section and are dropped.
    """
    sections: list[LogSection] = []
    current: list[str] | None = None

    for line in body_lines:
        if is_heading(line):
            if current is not None:
                sections.append(_make_section(current))
            current = [line]
        elif current is not None:
            current.append(line)

    if current is not None:
        sections.append(_make_section(current))

    return sections


def _make_section(lines: list[str]) -> LogSection:
    heading = lines[0]
    return LogSection(
        heading=heading,
        date=parse_heading_date(heading),
        text="\n".join(lines).strip(),
    )


def parse_log(content: str) -> ParsedLog:
    """Parse a daily log into its header and ordered sections.

    The header runs through the first ``---`` line and is kept verbatim.
    With no separator the header is empty and the whole document is body.
    """
    lines = content.split("\n")
    header_end = find_header_end(lines)

    if header_end >= 0:
        header = "\n".join(lines[: header_end + 1])
        body_lines = lines[header_end + 1 :]
    else:
        header = ""
        body_lines = lines

    return ParsedLog(header=header, sections=split_sections(body_lines))


def is_expired(section: LogSection, cutoff: date) -> bool:
    """True if the section's date is strictly before ``cutoff``.

    Undated sections are never expired.
    """
    section_date = section["date"]
    return section_date is not None and section_date < cutoff
