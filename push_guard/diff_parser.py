"""Unified diff hunk parsing for added-line extraction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from re import Match, compile

logger = logging.getLogger(__name__)

HUNK_MARKER = "@@"
DIFF_ADDED_LINE = "+"
DIFF_REMOVED_LINE = "-"
DIFF_CONTEXT_LINE = " "
END_OF_DIFF = "\\"

HUNK_HEADER_RE = compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? "
    r"\+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@(?P<section>.*)$"
)


@dataclass(slots=True)
class HunkHeader:
    """Parsed hunk header values."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    section: str


@dataclass(slots=True)
class DiffChunk:
    """Consecutive added lines of one hunk, tagged with their blob."""

    id: str
    data: str | bytes
    offset: int


def parse_added_chunks(patch: str, blob_id: str) -> list[DiffChunk]:
    """Group the added lines of a patch into chunks keyed by new-file line offset.

    Context lines advance the line counter and close the current chunk; removed
    lines and ``\\ No newline at end of file`` markers are skipped without
    advancing it. A single malformed hunk header invalidates the whole patch.
    """
    lines = patch.split("\n")

    invalid_header = next(
        (
            line
            for line in lines
            if line.startswith(HUNK_MARKER) and HUNK_HEADER_RE.match(line) is None
        ),
        None,
    )
    if invalid_header is not None:
        logger.error(
            "Could not process hunk header: %s, skipped parsing diff: %s",
            invalid_header.strip(),
            blob_id,
            extra={"event": "invalid_hunk_header", "blob_id": blob_id},
        )
        return []

    chunks: list[DiffChunk] = []
    added: list[str] = []
    offset: int | None = None
    current_line_number = 0

    def flush() -> None:
        nonlocal added, offset
        if added and offset is not None:
            chunks.append(DiffChunk(id=blob_id, data="\n".join(added), offset=offset))
        added = []
        offset = None

    for line in lines:
        if line.startswith(HUNK_MARKER):
            flush()
            current_line_number = parse_hunk_header(line).new_start - 1
        elif line.startswith(DIFF_ADDED_LINE):
            added.append(line[1:])
            current_line_number += 1
            if offset is None:
                offset = current_line_number
        elif line.startswith(DIFF_CONTEXT_LINE):
            flush()
            current_line_number += 1

    flush()
    return chunks


def parse_hunk_header(header: str) -> HunkHeader:
    """Parse a ``@@ -a,b +c,d @@`` header; omitted counts default to 1."""
    match: Match[str] | None = HUNK_HEADER_RE.match(header)
    if match is None:
        raise ValueError(f"Invalid hunk header: {header}")

    old_count = int(match.group("old_count")) if match.group("old_count") else 1
    new_count = int(match.group("new_count")) if match.group("new_count") else 1
    section = match.group("section").strip()

    return HunkHeader(
        old_start=int(match.group("old_start")),
        old_count=old_count,
        new_start=int(match.group("new_start")),
        new_count=new_count,
        section=section,
    )
