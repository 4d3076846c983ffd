"""Data model shared by the scanning pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

BLANK_BLOB_ID = "0" * 40
SUBMODULE_MODE = "160000"


def is_blank_blob_id(value: str | None) -> bool:
    """Return True for missing, empty or all-zero blob identifiers."""
    if value is None:
        return True
    stripped = value.strip()
    return not stripped or stripped == BLANK_BLOB_ID


class DiffStatus(enum.Enum):
    """Change status of a path between two tree versions."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"
    COPIED = "copied"
    TYPE_CHANGED = "type_changed"

    @classmethod
    def from_git_letter(cls, letter: str) -> DiffStatus | None:
        """Map a raw git status letter (``R100`` style scores included)."""
        if not letter:
            return None
        return _GIT_STATUS_LETTERS.get(letter[0].upper())


_GIT_STATUS_LETTERS: dict[str, DiffStatus] = {
    "A": DiffStatus.ADDED,
    "M": DiffStatus.MODIFIED,
    "D": DiffStatus.DELETED,
    "R": DiffStatus.RENAMED,
    "C": DiffStatus.COPIED,
    "T": DiffStatus.TYPE_CHANGED,
}

SCANNABLE_STATUSES: frozenset[DiffStatus] = frozenset(
    {
        DiffStatus.ADDED,
        DiffStatus.MODIFIED,
        DiffStatus.TYPE_CHANGED,
        DiffStatus.COPIED,
        DiffStatus.RENAMED,
    }
)


@dataclass(slots=True)
class ChangedPathEntry:
    """One file touched by a commit in the push."""

    path: str
    status: DiffStatus | None
    old_blob_id: str
    new_blob_id: str
    commit_id: str
    old_path: str = ""
    old_mode: str = "000000"
    new_mode: str = "000000"

    @property
    def is_deletion(self) -> bool:
        return is_blank_blob_id(self.new_blob_id)

    @property
    def is_submodule(self) -> bool:
        """Gitlink entries point at a commit, not a blob."""
        return self.new_mode == SUBMODULE_MODE

    @property
    def is_self_pair(self) -> bool:
        return self.old_blob_id == self.new_blob_id


@dataclass(frozen=True, slots=True)
class PathOccurrence:
    """A commit and path where a blob was introduced."""

    commit_id: str
    path: str

    @property
    def is_usable(self) -> bool:
        return bool(self.commit_id.strip()) and bool(self.path.strip())


LookupMap = dict[str, list[PathOccurrence]]


@dataclass(frozen=True, slots=True)
class BlobPair:
    """Old and new blob identifiers to diff."""

    left_blob_id: str
    right_blob_id: str


@dataclass(slots=True)
class DiffBlob:
    """Patch between two blobs as returned by the repository-diff source."""

    left_blob_id: str
    right_blob_id: str
    patch: str
    binary: bool = False
    over_patch_bytes_limit: bool = False


@dataclass(frozen=True, slots=True)
class ScanPayload:
    """Unit of text submitted to the detection engine."""

    id: str
    data: str
    offset: int

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "data": self.data, "offset": self.offset}


class ScanStatus(enum.IntEnum):
    """Status codes used by the detection engine for responses and findings."""

    UNSPECIFIED = 0
    FOUND = 1
    FOUND_WITH_ERRORS = 2
    SCAN_TIMEOUT = 3
    PAYLOAD_TIMEOUT = 4
    SCAN_ERROR = 5
    INPUT_ERROR = 6
    NOT_FOUND = 7
    AUTH_ERROR = 8

    @classmethod
    def parse(cls, value: Any) -> ScanStatus | None:
        """Resolve an integer or name into a status, or None when unrecognized."""
        if isinstance(value, ScanStatus):
            return value
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                return None
        if isinstance(value, str):
            name = value.strip().upper()
            if name.startswith("STATUS_"):
                name = name[len("STATUS_") :]
            return cls.__members__.get(name)
        return None


@dataclass(slots=True)
class Finding:
    """One result reported by the detection engine."""

    blob_reference: str
    status: ScanStatus | int
    line_number: int | None = None
    detector_id: str = ""
    description: str = ""


class ExclusionType(enum.Enum):
    """Kinds of exclusion a project can configure."""

    RULE = "rule"
    PATH = "path"
    RAW_VALUE = "raw_value"


@dataclass(frozen=True, slots=True)
class Exclusion:
    """A project-level rule, path or raw value excluded from blocking."""

    type: ExclusionType
    value: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type.value, "value": self.value}


@dataclass(slots=True)
class ScanResponse:
    """Verdict of the detection engine for one batch of payloads."""

    status: ScanStatus | int
    results: list[Finding] = field(default_factory=list)
    metadata: dict[str, Any] | None = None
    applied_exclusions: list[Exclusion] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class RefChange:
    """A single ref update received by the server."""

    oldrev: str
    newrev: str
    ref: str

    @property
    def is_branch_deletion(self) -> bool:
        return is_blank_blob_id(self.newrev)

    @property
    def is_branch_creation(self) -> bool:
        return is_blank_blob_id(self.oldrev)

    @property
    def branch_name(self) -> str:
        prefix = "refs/heads/"
        if self.ref.startswith(prefix):
            return self.ref[len(prefix) :]
        return self.ref


@dataclass(slots=True)
class PushContext:
    """Everything known about one push when the check runs."""

    changes: list[RefChange]
    commit_messages: list[str] = field(default_factory=list)
    push_options: list[str] = field(default_factory=list)
    user: str | None = None
    project: str | None = None

    @property
    def revisions(self) -> list[str]:
        return [change.newrev for change in self.changes if not change.is_branch_deletion]

    @property
    def deletes_branch(self) -> bool:
        return bool(self.changes) and self.changes[0].is_branch_deletion
