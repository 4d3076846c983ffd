"""Error types raised by the scanning pipeline."""

from __future__ import annotations


class PushGuardError(RuntimeError):
    """Base class for push-guard failures."""


class RepositoryDiffError(PushGuardError):
    """Raised when the repository-diff source fails."""


class InvalidBlobArgumentError(RepositoryDiffError):
    """Raised when a blob pair cannot be diffed because an id is not a readable blob."""


class TooManyChangedPathsError(PushGuardError):
    """Raised when a push touches more paths than a single scan accepts."""

    def __init__(self, count: int, limit: int) -> None:
        self.count = count
        self.limit = limit
        super().__init__(
            f"Push contains {count} changed paths, which exceeds the limit of {limit}. "
            "Split the push into smaller pushes."
        )


class TooManyLinesError(PushGuardError):
    """Raised when the added lines of a push exceed the per-request limit."""

    def __init__(self, count: int, limit: int) -> None:
        self.count = count
        self.limit = limit
        super().__init__(
            f"Push adds {count} lines to scan, which exceeds the limit of {limit}. "
            "Split the push into smaller pushes."
        )


class PushBlockedError(PushGuardError):
    """Raised by callers that reject a push through exceptions."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)
