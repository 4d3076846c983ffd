"""Turns a push into scan payloads plus the blob provenance lookup map."""

from __future__ import annotations

import logging
from collections import Counter

from push_guard.changed_paths import (
    POPULATED_LOOKUP_MAP_MESSAGE,
    ChangedPathCollector,
    build_lookup_map,
    lookup_map_stats,
)
from push_guard.config import ThresholdsConfig
from push_guard.diff_parser import parse_added_chunks
from push_guard.errors import (
    InvalidBlobArgumentError,
    TooManyChangedPathsError,
    TooManyLinesError,
)
from push_guard.events import AuditLogger
from push_guard.exclusions import ExclusionsManager
from push_guard.git import RepositoryDiffSource
from push_guard.models import (
    BLANK_BLOB_ID,
    BlobPair,
    ChangedPathEntry,
    DiffBlob,
    LookupMap,
    PushContext,
    ScanPayload,
    is_blank_blob_id,
)
from push_guard.payloads import build_payloads

logger = logging.getLogger(__name__)


class PayloadProcessor:
    """Collects changed paths, fetches their diffs and builds scan payloads."""

    def __init__(
        self,
        source: RepositoryDiffSource,
        *,
        thresholds: ThresholdsConfig | None = None,
        exclusions: ExclusionsManager | None = None,
        audit: AuditLogger | None = None,
    ) -> None:
        self.source = source
        self.thresholds = thresholds or ThresholdsConfig()
        self.audit = audit or AuditLogger()
        self.exclusions = exclusions or ExclusionsManager([], audit=self.audit)
        self.collector = ChangedPathCollector(source)

    def standardize_payloads(
        self, context: PushContext
    ) -> tuple[list[ScanPayload] | None, LookupMap]:
        """Return ``(payloads, lookup_map)`` for the push.

        ``(None, {})`` means the push has no diff content at all, and
        ``(None, lookup_map)`` means diffs existed but none produced a valid
        payload. Threshold violations raise before anything is submitted.
        """
        changed_paths = [
            entry
            for entry in self.collector.collect(context)
            if not self.exclusions.matches_excluded_path(entry.path)
        ]

        limit = self.thresholds.max_changed_paths
        if len(changed_paths) > limit:
            raise TooManyChangedPathsError(len(changed_paths), limit)

        lookup_map = build_lookup_map(changed_paths)
        self.audit.track_changed_paths_calculated(len(changed_paths))
        self._log_changed_paths_breakdown(changed_paths)
        self._log_lookup_map(lookup_map)

        diffs = self._fetch_diffs(changed_paths)
        if not diffs:
            return None, {}

        payloads: list[ScanPayload] = []
        for diff in diffs:
            payloads.extend(build_payloads(parse_added_chunks(diff.patch, diff.right_blob_id)))

        total_lines = sum(_line_count(payload) for payload in payloads)
        self._log_total_lines(payloads, total_lines)
        if total_lines > self.thresholds.max_lines_per_request:
            raise TooManyLinesError(total_lines, self.thresholds.max_lines_per_request)

        if not payloads:
            return None, lookup_map
        return payloads, lookup_map

    def _fetch_diffs(self, changed_paths: list[ChangedPathEntry]) -> list[DiffBlob]:
        pairs = _unique_pairs(changed_paths)
        batch_size = self.thresholds.paths_batch_size
        diffs: list[DiffBlob] = []
        for start in range(0, len(pairs), batch_size):
            batch = pairs[start : start + batch_size]
            try:
                results = self.source.diff_blobs(
                    batch, patch_bytes_limit=self.thresholds.payload_bytes_limit
                )
            except InvalidBlobArgumentError as exc:
                self.audit.track_exception(exc, step="diff_blobs", batch_size=len(batch))
                continue
            except Exception:
                logger.error(
                    "diff_blobs call failed with args: %r",
                    batch,
                    extra={"event": "repository_diff_failure", "call": "diff_blobs"},
                )
                raise
            for diff in results:
                if diff.binary or diff.over_patch_bytes_limit:
                    logger.debug(
                        "Skipping diff for blob %s",
                        diff.right_blob_id,
                        extra={
                            "event": "diff_skipped",
                            "binary": diff.binary,
                            "over_patch_bytes_limit": diff.over_patch_bytes_limit,
                        },
                    )
                    continue
                if diff.patch:
                    diffs.append(diff)
        return diffs

    def _log_changed_paths_breakdown(self, changed_paths: list[ChangedPathEntry]) -> None:
        try:
            breakdown = Counter(
                entry.status.value if entry.status is not None else "unknown"
                for entry in changed_paths
            )
            logger.info(
                "Changed paths breakdown",
                extra={
                    "event": "changed_paths_breakdown",
                    "total_paths": len(changed_paths),
                    "paths_breakdown": dict(breakdown),
                },
            )
        except Exception as exc:  # noqa: BLE001
            self.audit.track_exception(exc, step="changed_paths_breakdown")

    def _log_lookup_map(self, lookup_map: LookupMap) -> None:
        try:
            logger.info(
                POPULATED_LOOKUP_MAP_MESSAGE,
                extra={"event": "lookup_map_populated", **lookup_map_stats(lookup_map)},
            )
        except Exception as exc:  # noqa: BLE001
            self.audit.track_exception(exc, step="lookup_map_populated")

    def _log_total_lines(self, payloads: list[ScanPayload], total_lines: int) -> None:
        try:
            logger.info(
                "Total lines to scan: %d",
                total_lines,
                extra={
                    "event": "total_lines",
                    "total_lines": total_lines,
                    "total_payload_bytes": sum(
                        len(payload.data.encode("utf-8")) for payload in payloads
                    ),
                },
            )
        except Exception as exc:  # noqa: BLE001
            self.audit.track_exception(exc, step="total_lines")


def _unique_pairs(changed_paths: list[ChangedPathEntry]) -> list[BlobPair]:
    pairs: list[BlobPair] = []
    seen: set[BlobPair] = set()
    for entry in changed_paths:
        if entry.is_self_pair:
            continue
        left = BLANK_BLOB_ID if is_blank_blob_id(entry.old_blob_id) else entry.old_blob_id
        pair = BlobPair(left_blob_id=left, right_blob_id=entry.new_blob_id)
        if pair not in seen:
            seen.add(pair)
            pairs.append(pair)
    return pairs


def _line_count(payload: ScanPayload) -> int:
    return payload.data.count("\n") + 1
