"""Output rendering."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

import click

from push_guard import __version__
from push_guard.check import CheckOutcome, Skipped
from push_guard.models import RefChange
from push_guard.response_handler import Blocked, ScanNote


def render_human(outcome: CheckOutcome) -> str:
    """Render the outcome for a terminal or a git remote message."""
    if isinstance(outcome, Blocked):
        lines = [outcome.message.rstrip("\n")]
        lines.append(
            click.style(
                f"{len(outcome.occurrences)} secret occurrence(s) blocked this push.",
                fg="red",
                bold=True,
            )
        )
        return "\n".join(lines)

    if isinstance(outcome, Skipped):
        return click.style(f"Secret push protection skipped: {outcome.reason}", fg="yellow")

    return click.style(f"Push allowed: {outcome.reason}", fg="green", bold=True)


def render_json(
    outcome: CheckOutcome,
    *,
    input_source: str,
    changes: list[RefChange] | None = None,
) -> str:
    """Render stable JSON output for CI and automation."""
    payload = build_json_payload(outcome, input_source=input_source, changes=changes)
    return json.dumps(payload, sort_keys=True)


def build_json_payload(
    outcome: CheckOutcome,
    *,
    input_source: str,
    changes: list[RefChange] | None = None,
) -> dict[str, Any]:
    meta: dict[str, Any] = {
        "generated_at": datetime.now(tz=UTC)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z"),
        "input_source": input_source,
        "refs": [_serialize_change(change) for change in changes or []],
        "version": __version__,
    }

    if isinstance(outcome, Blocked):
        return {
            "outcome": "blocked",
            "message": outcome.message,
            "with_errors": outcome.with_errors,
            "occurrences": [item.to_dict() for item in outcome.occurrences],
            "notes": [_serialize_note(note) for note in outcome.notes],
            "meta": meta,
        }

    return {
        "outcome": "skipped" if isinstance(outcome, Skipped) else "allowed",
        "reason": outcome.reason,
        "occurrences": [],
        "notes": [],
        "meta": meta,
    }


def _serialize_change(change: RefChange) -> dict[str, str]:
    return {"oldrev": change.oldrev, "newrev": change.newrev, "ref": change.ref}


def _serialize_note(note: ScanNote) -> dict[str, Any]:
    return {"blob_id": note.blob_id, "status": note.status.name}
