"""Interpretation of scan responses into allow or block outcomes."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from push_guard.config import DEFAULT_DOCS_URL
from push_guard.errors import PushBlockedError
from push_guard.events import AuditLogger
from push_guard.models import Finding, LookupMap, ScanResponse, ScanStatus

logger = logging.getLogger(__name__)

DEADLINE_EXCEEDED_MARKER = "DEADLINE_EXCEEDED"

SECRETS_NOT_FOUND = "Secret detection scan completed with no findings."
FOUND_SECRETS = "\nPUSH BLOCKED: Secrets detected in code changes"
FOUND_SECRETS_WITH_ERRORS = (
    "Secret detection scan completed with one or more findings "
    "but some errors occurred during the scan."
)
OCCURRENCE_HEADER = "\n\nSecret push protection found the following secrets in commit: {sha}"
OCCURRENCE_PATH = "\n-- {path}:"
OCCURRENCE_LINE = "{line_number} | {description}"
BLOB_FINDING = "\n\nSecret leaked in blob: {blob_id}\n  -- line:{line_number} | {description}"
FAILED_TO_SCAN_REGEX_ERROR = "\n    - Failed to scan blob(id: {blob_id}) due to regex error."
BLOB_TIMED_OUT_ERROR = "\n    - Scanning blob(id: {blob_id}) timed out."
FOUND_SECRETS_POST_MESSAGE = "\n\nTo push your changes you must remove the identified secrets."
FOUND_SECRETS_DOCS_LINK = "\nFor guidance, see {path}"
SKIP_SECRET_DETECTION = (
    "\n\nTo skip secret push protection, add the following Git push option "
    "to your push command: `-o secret_push_protection.skip_all`"
)
FOUND_SECRETS_FOOTER = "\n--------------------------------------------------\n\n"

SCAN_TIMEOUT_ERROR = "Secret detection scan timed out."
INVALID_INPUT_ERROR = "Secret detection scan failed due to invalid input."
INVALID_SCAN_STATUS_CODE_ERROR = "Invalid secret detection scan status, check passed."
UNMAPPED_BLOB_WARNING = "Secret Push Protection could not map blob %s to commit and path"


@dataclass(frozen=True, slots=True)
class Occurrence:
    """One reported secret location; commit and path are None for blob-only reports."""

    blob_id: str
    line_number: int | None
    detector_id: str
    description: str
    commit_id: str | None = None
    path: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "blob_id": self.blob_id,
            "commit_id": self.commit_id,
            "path": self.path,
            "line_number": self.line_number,
            "detector_id": self.detector_id,
            "description": self.description,
        }


@dataclass(frozen=True, slots=True)
class ScanNote:
    """A payload that was not fully scanned."""

    blob_id: str
    status: ScanStatus

    @property
    def message(self) -> str:
        template = (
            BLOB_TIMED_OUT_ERROR
            if self.status is ScanStatus.PAYLOAD_TIMEOUT
            else FAILED_TO_SCAN_REGEX_ERROR
        )
        return template.format(blob_id=self.blob_id)


@dataclass(frozen=True, slots=True)
class Allowed:
    """The push may proceed."""

    reason: str


@dataclass(frozen=True, slots=True)
class Blocked:
    """The push must be rejected with ``message``."""

    message: str
    occurrences: list[Occurrence] = field(default_factory=list)
    notes: list[ScanNote] = field(default_factory=list)
    with_errors: bool = False


def timed_out(response: ScanResponse) -> bool:
    """Return True for a SCAN_ERROR response whose metadata reports an expired deadline."""
    if ScanStatus.parse(response.status) is not ScanStatus.SCAN_ERROR:
        return False
    metadata = response.metadata
    if not isinstance(metadata, Mapping):
        return False
    message = metadata.get("message")
    return isinstance(message, str) and DEADLINE_EXCEEDED_MARKER in message


def raise_if_blocked(outcome: Allowed | Blocked) -> None:
    if isinstance(outcome, Blocked):
        raise PushBlockedError(outcome.message)


class ResponseHandler:
    """Maps a scan response onto the push outcome and the user-facing report."""

    def __init__(self, audit: AuditLogger | None = None, docs_url: str = DEFAULT_DOCS_URL) -> None:
        self.audit = audit or AuditLogger()
        self.docs_url = docs_url

    def format_response(self, response: ScanResponse, lookup_map: LookupMap) -> Allowed | Blocked:
        status = ScanStatus.parse(response.status)
        if status is ScanStatus.SCAN_ERROR and timed_out(response):
            status = ScanStatus.SCAN_TIMEOUT

        occurrences: list[Occurrence] = []
        notes: list[ScanNote] = []
        if status in (ScanStatus.FOUND, ScanStatus.FOUND_WITH_ERRORS):
            occurrences, notes = self.transform_findings(response.results, lookup_map)
            if not occurrences:
                for note in notes:
                    logger.warning(
                        "%s",
                        note.message.strip(),
                        extra={"event": "scan_note", "blob_id": note.blob_id},
                    )
                status = ScanStatus.NOT_FOUND

        if status is ScanStatus.NOT_FOUND:
            logger.info(SECRETS_NOT_FOUND, extra={"event": "secrets_not_found"})
            self.audit.track_scan_passed()
            return Allowed(SECRETS_NOT_FOUND)

        if status in (ScanStatus.FOUND, ScanStatus.FOUND_WITH_ERRORS):
            with_errors = status is ScanStatus.FOUND_WITH_ERRORS
            message = self.build_secrets_found_message(occurrences, notes, with_errors=with_errors)
            logger.info(
                FOUND_SECRETS_WITH_ERRORS if with_errors else FOUND_SECRETS.strip(),
                extra={"event": "secrets_found", "occurrences": len(occurrences)},
            )
            self.audit.track_push_blocked(len(occurrences), with_errors=with_errors)
            return Blocked(
                message=message,
                occurrences=occurrences,
                notes=notes,
                with_errors=with_errors,
            )

        if status is ScanStatus.SCAN_TIMEOUT:
            logger.error(SCAN_TIMEOUT_ERROR, extra={"event": "scan_timeout"})
            self.audit.track_scan_timeout()
            return Allowed(SCAN_TIMEOUT_ERROR)

        if status is ScanStatus.INPUT_ERROR:
            logger.error(INVALID_INPUT_ERROR, extra={"event": "invalid_input"})
            self.audit.track_invalid_input()
            return Allowed(INVALID_INPUT_ERROR)

        logger.error(
            INVALID_SCAN_STATUS_CODE_ERROR,
            extra={"event": "invalid_status_code", "status": str(response.status)},
        )
        self.audit.track_invalid_status_code(response.status)
        return Allowed(INVALID_SCAN_STATUS_CODE_ERROR)

    def transform_findings(
        self, findings: list[Finding], lookup_map: LookupMap
    ) -> tuple[list[Occurrence], list[ScanNote]]:
        """Expand FOUND findings over every usable location of their blob.

        Blobs without a usable commit and path are reported once, blob-only.
        SCAN_ERROR and PAYLOAD_TIMEOUT findings become notes.
        """
        occurrences: list[Occurrence] = []
        notes: list[ScanNote] = []
        for finding in findings:
            finding_status = ScanStatus.parse(finding.status)
            if finding_status in (ScanStatus.SCAN_ERROR, ScanStatus.PAYLOAD_TIMEOUT):
                notes.append(ScanNote(blob_id=finding.blob_reference, status=finding_status))
                continue
            if finding_status is not ScanStatus.FOUND:
                continue

            description = finding.description or finding.detector_id
            locations = [
                item for item in lookup_map.get(finding.blob_reference, []) if item.is_usable
            ]
            if not locations:
                logger.warning(
                    UNMAPPED_BLOB_WARNING,
                    finding.blob_reference,
                    extra={"event": "unmapped_blob", "blob_id": finding.blob_reference},
                )
                occurrences.append(
                    Occurrence(
                        blob_id=finding.blob_reference,
                        line_number=finding.line_number,
                        detector_id=finding.detector_id,
                        description=description,
                    )
                )
                continue

            for location in locations:
                occurrences.append(
                    Occurrence(
                        blob_id=finding.blob_reference,
                        line_number=finding.line_number,
                        detector_id=finding.detector_id,
                        description=description,
                        commit_id=location.commit_id,
                        path=location.path,
                    )
                )
        return occurrences, notes

    def build_secrets_found_message(
        self,
        occurrences: list[Occurrence],
        notes: list[ScanNote],
        *,
        with_errors: bool = False,
    ) -> str:
        message = FOUND_SECRETS_WITH_ERRORS if with_errors else FOUND_SECRETS

        by_commit: dict[str, list[Occurrence]] = {}
        blob_only: list[Occurrence] = []
        for occurrence in occurrences:
            if occurrence.commit_id is None:
                blob_only.append(occurrence)
            else:
                by_commit.setdefault(occurrence.commit_id, []).append(occurrence)

        for sha, commit_occurrences in by_commit.items():
            message += OCCURRENCE_HEADER.format(sha=sha)
            for occurrence in commit_occurrences:
                self.audit.track_secret_found(occurrence.description)
                message += OCCURRENCE_PATH.format(path=occurrence.path)
                message += OCCURRENCE_LINE.format(
                    line_number=occurrence.line_number,
                    description=occurrence.description,
                )

        for occurrence in blob_only:
            self.audit.track_secret_found(occurrence.description)
            message += BLOB_FINDING.format(
                blob_id=occurrence.blob_id,
                line_number=occurrence.line_number,
                description=occurrence.description,
            )

        for note in notes:
            message += note.message

        message += FOUND_SECRETS_POST_MESSAGE
        message += FOUND_SECRETS_DOCS_LINK.format(path=self.docs_url)
        message += SKIP_SECRET_DETECTION
        message += FOUND_SECRETS_FOOTER
        return message
