"""Decides whether a push has to be scanned."""

from __future__ import annotations

import enum
import re
from collections.abc import Iterable
from dataclasses import dataclass

SKIP_PUSH_OPTION = "secret_push_protection.skip_all"
SKIP_COMMIT_MESSAGE_RE = re.compile(r"\[skip secret push protection\]", re.IGNORECASE)

SKIP_METHOD_PUSH_OPTION = "push option"
SKIP_METHOD_COMMIT_MESSAGE = "commit message"


class ScanProfileTrigger(enum.Enum):
    """Event type a security scan profile rule is attached to."""

    PUSH = "push"
    PIPELINE = "pipeline"
    SCHEDULE = "schedule"


@dataclass(frozen=True, slots=True)
class EligibilityInputs:
    """Resolved settings, entitlements and push facts for one push."""

    global_enabled: bool = False
    project_enabled: bool = False
    licensed: bool = False
    profile_entitled: bool = False
    public_project: bool = False
    public_auto_enable: bool = False
    profile_trigger: ScanProfileTrigger | None = None
    skip_push_option: bool = False
    skip_commit_message: bool = False
    branch_deletion: bool = False


def should_scan(inputs: EligibilityInputs) -> bool:
    """Apply the eligibility rules in order; the first matching rule decides."""
    if inputs.branch_deletion:
        return False
    if skip_reason(inputs) is not None:
        return False

    setting_active = inputs.global_enabled and inputs.project_enabled
    profile_active = inputs.profile_trigger is ScanProfileTrigger.PUSH
    if not (setting_active or profile_active):
        return False

    entitled = (
        inputs.licensed
        or inputs.profile_entitled
        or (inputs.public_project and inputs.public_auto_enable)
    )
    return entitled


def skip_reason(inputs: EligibilityInputs) -> str | None:
    if inputs.skip_push_option:
        return SKIP_METHOD_PUSH_OPTION
    if inputs.skip_commit_message:
        return SKIP_METHOD_COMMIT_MESSAGE
    return None


def push_option_requests_skip(push_options: Iterable[str]) -> bool:
    """Return True when ``-o secret_push_protection.skip_all`` was given."""
    for option in push_options:
        key, _, value = option.strip().partition("=")
        if key != SKIP_PUSH_OPTION:
            continue
        if value.lower() in {"", "true", "1"}:
            return True
    return False


def commit_message_requests_skip(messages: Iterable[str]) -> bool:
    return any(SKIP_COMMIT_MESSAGE_RE.search(message or "") for message in messages)
