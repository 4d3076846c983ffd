"""Tests for the end-to-end secrets check with in-memory collaborators."""

from dataclasses import dataclass, field

import httpx
import pytest

from push_guard.check import NO_VERDICT, NOTHING_TO_SCAN, SecretsCheck, Skipped
from push_guard.config import AppConfig, DetectionConfig, EligibilityConfig, ThresholdsConfig
from push_guard.errors import TooManyChangedPathsError
from push_guard.models import (
    BLANK_BLOB_ID,
    Exclusion,
    ExclusionType,
    Finding,
    PushContext,
    RefChange,
    ScanPayload,
    ScanResponse,
    ScanStatus,
)
from push_guard.response_handler import Allowed, Blocked
from tests.fakes import FakeDiffSource, RecordingTracker, entry, push_change

BLOB = "b" * 40


@dataclass
class StubEngine:
    response: ScanResponse
    calls: list[list[ScanPayload]] = field(default_factory=list)

    def scan(
        self,
        payloads: list[ScanPayload],
        exclusions: object = (),
        timeout: float | None = None,
    ) -> ScanResponse:
        self.calls.append(list(payloads))
        return self.response


def _source() -> FakeDiffSource:
    return FakeDiffSource(
        commits=["c1"],
        paths=[entry("config/settings.py", BLOB, commit_id="c1")],
        patches={BLOB: "@@ -0,0 +1,2 @@\n+DEBUG = True\n+TOKEN = 'glpat-example'\n"},
    )


def _found_response() -> ScanResponse:
    return ScanResponse(
        ScanStatus.FOUND,
        results=[
            Finding(
                blob_reference=BLOB,
                status=ScanStatus.FOUND,
                line_number=2,
                detector_id="gitlab_pat",
                description="GitLab personal access token",
            )
        ],
        applied_exclusions=[Exclusion(ExclusionType.RULE, "AWS Access Key")],
    )


def test_found_secret_blocks_push_and_tracks_events() -> None:
    tracker = RecordingTracker()
    engine = StubEngine(_found_response())
    check = SecretsCheck(
        _source(), AppConfig(), tracker=tracker, engine=engine  # type: ignore[arg-type]
    )

    outcome = check.validate(PushContext(changes=[push_change()]))

    assert isinstance(outcome, Blocked)
    assert "-- config/settings.py:2 | GitLab personal access token" in outcome.message
    assert engine.calls[0][0].offset == 1
    names = tracker.event_names()
    assert "project_security_exclusion_applied" in names
    assert "secret_scan_executed" in names
    assert ("secret_scan_executed", {"label": "local", "user": None, "project": None}) in (
        tracker.events
    )


def test_branch_deletion_is_skipped_without_repository_access() -> None:
    source = FakeDiffSource(fail_on="new_commits")
    context = PushContext(
        changes=[RefChange(oldrev="1" * 40, newrev=BLANK_BLOB_ID, ref="refs/heads/old")]
    )
    assert SecretsCheck(source).validate(context) == Skipped("branch deletion")


def test_push_option_skip_is_audited() -> None:
    tracker = RecordingTracker()
    context = PushContext(
        changes=[push_change()], push_options=["secret_push_protection.skip_all"]
    )

    outcome = SecretsCheck(_source(), tracker=tracker).validate(context)

    assert outcome == Skipped("skipped via push option")
    assert tracker.event_names() == [
        "skip_secret_push_protection",
        "skip_secret_push_protection",
    ]
    assert tracker.metrics == ["count_total_skip_secret_push_protection"]


def test_latest_commit_message_skip() -> None:
    source = _source()
    source.commits = ["c0", "c1"]
    source.messages = {"c0": "[skip secret push protection]", "c1": "regular change"}
    engine = StubEngine(_found_response())
    outcome = SecretsCheck(source, engine=engine).validate(  # type: ignore[arg-type]
        PushContext(changes=[push_change()])
    )
    assert isinstance(outcome, Blocked)

    source.messages = {"c0": "regular change", "c1": "wip [skip secret push protection]"}
    outcome = SecretsCheck(source).validate(PushContext(changes=[push_change()]))
    assert outcome == Skipped("skipped via commit message")


def test_disabled_project_is_skipped() -> None:
    config = AppConfig(eligibility=EligibilityConfig(project_enabled=False))
    outcome = SecretsCheck(_source(), config).validate(PushContext(changes=[push_change()]))
    assert outcome == Skipped("secret push protection is not enabled for this project")


def test_nothing_to_scan_is_allowed() -> None:
    source = FakeDiffSource(paths=[])
    engine = StubEngine(_found_response())
    outcome = SecretsCheck(source, engine=engine).validate(  # type: ignore[arg-type]
        PushContext(changes=[push_change()])
    )
    assert outcome == Allowed(NOTHING_TO_SCAN)
    assert engine.calls == []


def test_fatal_threshold_errors_propagate() -> None:
    config = AppConfig(thresholds=ThresholdsConfig(max_changed_paths=1))
    source = _source()
    source.paths.append(entry("other.py", "c" * 40))
    with pytest.raises(TooManyChangedPathsError):
        SecretsCheck(source, config).validate(PushContext(changes=[push_change()]))


def _remote_config() -> AppConfig:
    return AppConfig(
        detection=DetectionConfig(
            remote_enabled=True,
            managed_tier=True,
            service_url="https://sds.example.com",
        )
    )


def test_remote_detection_is_used_when_enabled() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "NOT_FOUND"})

    engine = StubEngine(_found_response())
    check = SecretsCheck(
        _source(),
        _remote_config(),
        engine=engine,  # type: ignore[arg-type]
        transport=httpx.MockTransport(handler),
    )

    outcome = check.validate(PushContext(changes=[push_change()]))

    assert isinstance(outcome, Allowed)
    assert engine.calls == []


def test_remote_failure_fails_open() -> None:
    check = SecretsCheck(
        _source(),
        _remote_config(),
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )
    assert check.validate(PushContext(changes=[push_change()])) == Allowed(NO_VERDICT)
