"""Secret push protection check for a single push."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import httpx

from push_guard.changed_paths import ChangedPathCollector
from push_guard.config import AppConfig, EligibilityConfig
from push_guard.detection import DetectionServiceClient, LocalDetectionEngine
from push_guard.eligibility import (
    EligibilityInputs,
    ScanProfileTrigger,
    commit_message_requests_skip,
    push_option_requests_skip,
    should_scan,
    skip_reason,
)
from push_guard.events import AuditLogger, EventTracker
from push_guard.exclusions import ExclusionsManager
from push_guard.git import RepositoryDiffSource
from push_guard.models import PushContext
from push_guard.processor import PayloadProcessor
from push_guard.response_handler import Allowed, Blocked, ResponseHandler

logger = logging.getLogger(__name__)

SECRETS_CHECK_MESSAGE = "Detecting secrets..."
NOTHING_TO_SCAN = "No new content to scan."
NO_VERDICT = "Secret detection returned no verdict, check passed."


@dataclass(frozen=True, slots=True)
class Skipped:
    """The push was not scanned."""

    reason: str


CheckOutcome = Skipped | Allowed | Blocked


def build_eligibility_inputs(
    settings: EligibilityConfig,
    context: PushContext,
    latest_commit_messages: list[str],
) -> EligibilityInputs:
    trigger = (
        ScanProfileTrigger(settings.profile_trigger)
        if settings.profile_trigger is not None
        else None
    )
    return EligibilityInputs(
        global_enabled=settings.global_enabled,
        project_enabled=settings.project_enabled,
        licensed=settings.licensed,
        profile_entitled=settings.profile_entitled,
        public_project=settings.public_project,
        public_auto_enable=settings.public_auto_enable,
        profile_trigger=trigger,
        skip_push_option=push_option_requests_skip(context.push_options),
        skip_commit_message=commit_message_requests_skip(latest_commit_messages),
        branch_deletion=context.deletes_branch,
    )


class SecretsCheck:
    """Runs eligibility, payload extraction, detection and response handling for a push."""

    def __init__(
        self,
        source: RepositoryDiffSource,
        config: AppConfig | None = None,
        *,
        tracker: EventTracker | None = None,
        engine: LocalDetectionEngine | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.source = source
        self.config = config or AppConfig()
        self.tracker = tracker
        self.engine = engine or LocalDetectionEngine()
        self.transport = transport

    def validate(self, context: PushContext) -> CheckOutcome:
        audit = AuditLogger(self.tracker, context)

        latest_messages = [] if context.deletes_branch else self._latest_commit_messages(context)
        inputs = build_eligibility_inputs(self.config.eligibility, context, latest_messages)
        if not should_scan(inputs):
            return self._skipped(inputs, audit)

        logger.info(SECRETS_CHECK_MESSAGE, extra={"event": "secrets_check"})
        started = time.monotonic()

        exclusions = ExclusionsManager(self.config.exclusions, audit=audit)
        processor = PayloadProcessor(
            self.source,
            thresholds=self.config.thresholds,
            exclusions=exclusions,
            audit=audit,
        )
        payloads, lookup_map = processor.standardize_payloads(context)
        if payloads is None:
            logger.info(NOTHING_TO_SCAN, extra={"event": "nothing_to_scan"})
            return Allowed(NOTHING_TO_SCAN)

        client = DetectionServiceClient(
            self.config.detection, audit=audit, transport=self.transport
        )
        if client.use_remote_detection():
            scan_type = "remote"
            response = client.send(payloads, exclusions.active_exclusions)
        else:
            scan_type = "local"
            response = self.engine.scan(
                payloads,
                exclusions.all,
                timeout=self.config.detection.local_timeout_seconds,
            )

        if response is None:
            logger.error(NO_VERDICT, extra={"event": "no_verdict", "scan_type": scan_type})
            return Allowed(NO_VERDICT)

        audit.log_applied_exclusions_audit_events(response.applied_exclusions)
        audit.track_scan_executed(scan_type)

        outcome = ResponseHandler(audit, docs_url=self.config.docs_url).format_response(
            response, lookup_map
        )
        logger.debug(
            "Secrets check finished in %.3fs",
            time.monotonic() - started,
            extra={"event": "secrets_check_finished", "scan_type": scan_type},
        )
        return outcome

    def _latest_commit_messages(self, context: PushContext) -> list[str]:
        if context.commit_messages:
            return context.commit_messages[-1:]
        commits = ChangedPathCollector(self.source).new_commits(context)
        if not commits:
            return []
        return self.source.commit_messages(commits[-1:])

    def _skipped(self, inputs: EligibilityInputs, audit: AuditLogger) -> Skipped:
        if inputs.branch_deletion:
            return Skipped("branch deletion")

        method = skip_reason(inputs)
        if method is not None:
            audit.log_skip_audit_event(method)
            audit.track_skipped(method)
            return Skipped(f"skipped via {method}")

        return Skipped("secret push protection is not enabled for this project")
