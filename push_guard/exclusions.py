"""Project exclusions applied before and during scanning."""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable

from push_guard.events import AuditLogger
from push_guard.models import Exclusion, ExclusionType

MAX_PATH_EXCLUSIONS_DEPTH = 20
MAX_PATH_EXCLUSIONS_PER_PROJECT = 10


class ExclusionsManager:
    """Groups configured exclusions by type and matches path exclusions."""

    def __init__(self, exclusions: Iterable[Exclusion], audit: AuditLogger | None = None) -> None:
        self.audit = audit
        self.active_exclusions: dict[ExclusionType, list[Exclusion]] = {}
        for exclusion in exclusions:
            self.active_exclusions.setdefault(exclusion.type, []).append(exclusion)

    @property
    def all(self) -> list[Exclusion]:
        return [item for group in self.active_exclusions.values() for item in group]

    def of_type(self, exclusion_type: ExclusionType) -> list[Exclusion]:
        return list(self.active_exclusions.get(exclusion_type, []))

    def matches_excluded_path(self, path: str) -> bool:
        """Return True when a path exclusion matches; paths deeper than the limit never match."""
        if path.count("/") > MAX_PATH_EXCLUSIONS_DEPTH:
            return False

        path_exclusions = self.of_type(ExclusionType.PATH)[:MAX_PATH_EXCLUSIONS_PER_PROJECT]
        for exclusion in path_exclusions:
            if path_matches(path, exclusion.value):
                if self.audit is not None:
                    self.audit.log_exclusion_audit_event(exclusion)
                return True
        return False


def path_matches(path: str, pattern: str) -> bool:
    """Match a repository path against a glob.

    ``*``, ``?`` and ``[...]`` never cross ``/``, a ``**/`` segment spans zero or
    more directories, leading dots are matched like any other character and
    ``{a,b}`` alternatives are expanded.
    """
    path_parts = path.split("/")
    return any(
        _match_segments(path_parts, candidate.split("/"))
        for candidate in expand_braces(pattern)
    )


def expand_braces(pattern: str) -> list[str]:
    """Expand ``{a,b}`` alternatives, nested groups included."""
    start = pattern.find("{")
    while start != -1:
        end, options = _brace_group(pattern, start)
        if end != -1 and len(options) > 1:
            prefix, suffix = pattern[:start], pattern[end + 1 :]
            expanded: list[str] = []
            for option in options:
                expanded.extend(expand_braces(prefix + option + suffix))
            return expanded
        start = pattern.find("{", start + 1)
    return [pattern]


def _brace_group(pattern: str, start: int) -> tuple[int, list[str]]:
    depth = 0
    options: list[str] = []
    current = start + 1
    for index in range(start, len(pattern)):
        char = pattern[index]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                options.append(pattern[current:index])
                return index, options
        elif char == "," and depth == 1:
            options.append(pattern[current:index])
            current = index + 1
    return -1, []


def _match_segments(path_parts: list[str], pattern_parts: list[str]) -> bool:
    if not pattern_parts:
        return not path_parts

    head, rest = pattern_parts[0], pattern_parts[1:]
    if head == "**" and rest:
        return any(
            _match_segments(path_parts[index:], rest) for index in range(len(path_parts) + 1)
        )
    if not path_parts:
        return False
    return fnmatch.fnmatchcase(path_parts[0], head) and _match_segments(path_parts[1:], rest)
