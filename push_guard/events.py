"""Audit events, usage metrics and exception tracking for scans."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from push_guard.models import Exclusion, PushContext

logger = logging.getLogger(__name__)
events_logger = logging.getLogger("push_guard.events")

SKIP_EVENT = "skip_secret_push_protection"
SECRET_FOUND_EVENT = "detect_secret_type_on_push"
SCAN_EXECUTED_EVENT = "secret_scan_executed"
SCAN_PASSED_EVENT = "secret_scan_passed"
PUSH_BLOCKED_EVENT = "secret_push_blocked_secrets_found"
PUSH_BLOCKED_WITH_ERRORS_EVENT = "secret_push_blocked_secrets_found_with_errors"
SCAN_TIMEOUT_EVENT = "secret_scan_timeout"
INVALID_INPUT_EVENT = "secret_scan_invalid_input"
INVALID_STATUS_EVENT = "secret_scan_invalid_status_code"
CHANGED_PATHS_EVENT = "secret_scan_changed_paths_calculated"
EXCLUSION_APPLIED_EVENT = "project_security_exclusion_applied"


class EventTracker(Protocol):
    """Sink for audit events and usage counters."""

    def log_event(self, name: str, properties: Mapping[str, Any]) -> None:
        """Record a named event with properties."""

    def track_metric(self, counter_name: str) -> None:
        """Increment a usage counter."""


class LoggingEventTracker:
    """Event tracker that writes events and counters to the events logger."""

    def log_event(self, name: str, properties: Mapping[str, Any]) -> None:
        events_logger.info(name, extra={"event": name, "properties": dict(properties)})

    def track_metric(self, counter_name: str) -> None:
        events_logger.info(
            "metric %s",
            counter_name,
            extra={"event": "metric", "counter": counter_name},
        )


class AuditLogger:
    """Fire-and-forget facade over an EventTracker for one push.

    Nothing here raises into the scan: tracker failures are logged and dropped.
    """

    def __init__(
        self, tracker: EventTracker | None = None, context: PushContext | None = None
    ) -> None:
        self.tracker = tracker or LoggingEventTracker()
        self.context = context

    def log_skip_audit_event(self, skip_method: str) -> None:
        branch = ""
        if self.context is not None and self.context.changes:
            branch = self.context.changes[0].branch_name
        self._log_event(
            SKIP_EVENT,
            {
                "message": f"Secret push protection skipped via {skip_method} on branch {branch}",
                "target_details": self._target_details(),
            },
        )

    def track_skipped(self, skip_method: str) -> None:
        self._log_event(SKIP_EVENT, {"label": skip_method})
        self._track_metric(f"count_total_{SKIP_EVENT}")

    def log_exclusion_audit_event(self, exclusion: Exclusion) -> None:
        self._log_event(
            EXCLUSION_APPLIED_EVENT,
            {
                "message": (
                    f"An exclusion of type ({exclusion.type.value}) with value "
                    f"({exclusion.value}) was applied in Secret push protection"
                ),
            },
        )

    def log_applied_exclusions_audit_events(self, exclusions: list[Exclusion]) -> None:
        for exclusion in exclusions:
            self.log_exclusion_audit_event(exclusion)

    def track_secret_found(self, secret_type: str) -> None:
        self._log_event(SECRET_FOUND_EVENT, {"label": secret_type})
        self._track_metric(f"count_total_{SECRET_FOUND_EVENT}")

    def track_scan_executed(self, scan_type: str) -> None:
        self._log_event(SCAN_EXECUTED_EVENT, {"label": scan_type})
        self._track_metric(f"count_total_{SCAN_EXECUTED_EVENT}")

    def track_changed_paths_calculated(self, total_paths: int) -> None:
        self._log_event(CHANGED_PATHS_EVENT, {"value": total_paths})

    def track_scan_passed(self) -> None:
        self._log_event(SCAN_PASSED_EVENT, {})
        self._track_metric(f"count_total_{SCAN_PASSED_EVENT}")

    def track_push_blocked(self, findings_count: int, *, with_errors: bool = False) -> None:
        name = PUSH_BLOCKED_WITH_ERRORS_EVENT if with_errors else PUSH_BLOCKED_EVENT
        self._log_event(name, {"value": findings_count})
        self._track_metric(f"count_total_{name}")

    def track_scan_timeout(self) -> None:
        self._log_event(SCAN_TIMEOUT_EVENT, {})
        self._track_metric(f"count_total_{SCAN_TIMEOUT_EVENT}")

    def track_invalid_input(self) -> None:
        self._log_event(INVALID_INPUT_EVENT, {})
        self._track_metric(f"count_total_{INVALID_INPUT_EVENT}")

    def track_invalid_status_code(self, status: object) -> None:
        self._log_event(INVALID_STATUS_EVENT, {"label": str(status)})
        self._track_metric(f"count_total_{INVALID_STATUS_EVENT}")

    def track_exception(self, exc: BaseException, **context: Any) -> None:
        """Record a handled exception without re-raising it."""
        logger.error(
            "Tracked exception: %s",
            exc,
            exc_info=exc,
            extra={"event": "tracked_exception", "details": context},
        )

    def _target_details(self) -> str:
        if self.context is None or not self.context.changes:
            return ""
        old_rev = self.context.changes[0].oldrev
        new_rev = self.context.changes[-1].newrev
        project = self.context.project or ""
        return f"{project}/compare/{old_rev}...{new_rev}" if project else f"{old_rev}...{new_rev}"

    def _log_event(self, name: str, properties: dict[str, Any]) -> None:
        if self.context is not None:
            properties.setdefault("user", self.context.user)
            properties.setdefault("project", self.context.project)
        try:
            self.tracker.log_event(name, properties)
        except Exception as exc:  # noqa: BLE001
            self.track_exception(exc, event=name)

    def _track_metric(self, counter_name: str) -> None:
        try:
            self.tracker.track_metric(counter_name)
        except Exception as exc:  # noqa: BLE001
            self.track_exception(exc, counter=counter_name)
