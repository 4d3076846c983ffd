"""Changed-path collection and the blob provenance lookup map."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from push_guard.git import RepositoryDiffSource
from push_guard.models import (
    SCANNABLE_STATUSES,
    ChangedPathEntry,
    LookupMap,
    PathOccurrence,
    PushContext,
)

logger = logging.getLogger(__name__)

POPULATED_LOOKUP_MAP_MESSAGE = (
    "Populated the lookup map used to associate a finding to commit sha + file path"
)


class ChangedPathCollector:
    """Enumerates the scannable paths introduced by a push."""

    def __init__(self, source: RepositoryDiffSource) -> None:
        self.source = source

    def new_commits(self, context: PushContext) -> list[str]:
        try:
            return self.source.new_commits(context.changes)
        except Exception:
            logger.error(
                "new_commits call failed with args: %r",
                context.changes,
                extra={"event": "repository_diff_failure", "call": "new_commits"},
            )
            raise

    def collect(self, context: PushContext) -> list[ChangedPathEntry]:
        """Return changed paths for the push, excluding deletions and submodules."""
        commits = self.new_commits(context)
        if not commits:
            return []

        statuses = sorted(SCANNABLE_STATUSES, key=lambda status: status.value)
        try:
            paths = self.source.find_changed_paths(commits, statuses)
        except Exception:
            logger.error(
                "find_changed_paths call failed with args: commits=%r statuses=%r",
                commits,
                [status.value for status in statuses],
                extra={"event": "repository_diff_failure", "call": "find_changed_paths"},
            )
            raise

        return [entry for entry in paths if not (entry.is_deletion or entry.is_submodule)]


def build_lookup_map(entries: Iterable[ChangedPathEntry]) -> LookupMap:
    """Group every (commit, path) occurrence under the blob it introduced.

    Occurrences with a blank commit or path are kept; the response handler
    decides what to do with them.
    """
    lookup_map: LookupMap = {}
    for entry in entries:
        if entry.is_deletion:
            continue
        lookup_map.setdefault(entry.new_blob_id.strip(), []).append(
            PathOccurrence(commit_id=(entry.commit_id or "").strip(), path=entry.path or "")
        )
    return lookup_map


def lookup_map_stats(lookup_map: LookupMap) -> dict[str, int]:
    return {
        "total_payloads": len(lookup_map),
        "total_changed_path_entries": sum(len(items) for items in lookup_map.values()),
    }
