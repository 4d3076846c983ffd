"""In-memory collaborators for pipeline tests."""

from __future__ import annotations

from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
from typing import Any

from push_guard.errors import InvalidBlobArgumentError, RepositoryDiffError
from push_guard.models import (
    BlobPair,
    ChangedPathEntry,
    DiffBlob,
    DiffStatus,
    RefChange,
    is_blank_blob_id,
)

OLD_REV = "1" * 40
NEW_REV = "2" * 40


def push_change(ref: str = "refs/heads/main") -> RefChange:
    return RefChange(oldrev=OLD_REV, newrev=NEW_REV, ref=ref)


def entry(
    path: str,
    new_blob_id: str,
    *,
    commit_id: str = "c1",
    old_blob_id: str = "0" * 40,
    status: DiffStatus | None = DiffStatus.ADDED,
    new_mode: str = "100644",
) -> ChangedPathEntry:
    return ChangedPathEntry(
        path=path,
        status=status,
        old_blob_id=old_blob_id,
        new_blob_id=new_blob_id,
        commit_id=commit_id,
        new_mode=new_mode,
    )


@dataclass
class FakeDiffSource:
    """RepositoryDiffSource serving canned commits, paths and patches."""

    commits: list[str] = field(default_factory=lambda: ["c1"])
    messages: dict[str, str] = field(default_factory=dict)
    paths: list[ChangedPathEntry] = field(default_factory=list)
    patches: dict[str, str] = field(default_factory=dict)
    binary: set[str] = field(default_factory=set)
    unreadable: set[str] = field(default_factory=set)
    fail_on: str | None = None
    diff_calls: list[list[BlobPair]] = field(default_factory=list)
    status_filters: list[list[DiffStatus]] = field(default_factory=list)

    def new_commits(self, changes: list[RefChange]) -> list[str]:
        if self.fail_on == "new_commits":
            raise RepositoryDiffError("rev-list failed")
        return list(self.commits)

    def commit_messages(self, commits: list[str]) -> list[str]:
        return [self.messages.get(commit, "") for commit in commits]

    def find_changed_paths(
        self, commits: list[str], statuses: Collection[DiffStatus]
    ) -> list[ChangedPathEntry]:
        if self.fail_on == "find_changed_paths":
            raise RepositoryDiffError("diff-tree failed")
        self.status_filters.append(list(statuses))
        return list(self.paths)

    def diff_blobs(self, pairs: list[BlobPair], *, patch_bytes_limit: int) -> list[DiffBlob]:
        if self.fail_on == "diff_blobs":
            raise RepositoryDiffError("diff failed")
        self.diff_calls.append(list(pairs))
        for pair in pairs:
            if pair.right_blob_id in self.unreadable:
                raise InvalidBlobArgumentError(f"bad file {pair.right_blob_id}")
        results: list[DiffBlob] = []
        for pair in pairs:
            patch = self.patches.get(pair.right_blob_id, "")
            if pair.right_blob_id in self.binary:
                results.append(DiffBlob(pair.left_blob_id, pair.right_blob_id, "", binary=True))
            elif len(patch.encode("utf-8")) > patch_bytes_limit:
                results.append(
                    DiffBlob(
                        pair.left_blob_id,
                        pair.right_blob_id,
                        "",
                        over_patch_bytes_limit=True,
                    )
                )
            elif is_blank_blob_id(pair.right_blob_id):
                continue
            else:
                results.append(DiffBlob(pair.left_blob_id, pair.right_blob_id, patch))
        return results


@dataclass
class RecordingTracker:
    """EventTracker that keeps every event and counter in memory."""

    events: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    metrics: list[str] = field(default_factory=list)
    fail: bool = False

    def log_event(self, name: str, properties: Mapping[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("tracker unavailable")
        self.events.append((name, dict(properties)))

    def track_metric(self, counter_name: str) -> None:
        if self.fail:
            raise RuntimeError("tracker unavailable")
        self.metrics.append(counter_name)

    def event_names(self) -> list[str]:
        return [name for name, _ in self.events]
