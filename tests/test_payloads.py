"""Tests for scan payload construction."""

import logging

import pytest

from push_guard.diff_parser import DiffChunk
from push_guard.models import ScanPayload
from push_guard.payloads import build_payload, build_payloads


def test_valid_chunk_keeps_id_data_and_offset() -> None:
    payload = build_payload(DiffChunk(id="abc", data="secret = 1\nother \U0001f511", offset=12))
    assert payload == ScanPayload(id="abc", data="secret = 1\nother \U0001f511", offset=12)


def test_existing_payload_is_returned_unchanged() -> None:
    payload = ScanPayload(id="abc", data="x", offset=1)
    assert build_payload(payload) is payload


def test_utf8_bytes_are_decoded() -> None:
    payload = build_payload(DiffChunk(id="abc", data="naïve".encode(), offset=3))
    assert payload is not None
    assert payload.data == "naïve"


def test_invalid_bytes_are_dropped_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)
    assert build_payload(DiffChunk(id="abc", data=b"\xff\xfe broken", offset=1)) is None
    assert "Could not convert data to UTF-8 from binary" in caplog.text


def test_surrogate_escaped_text_is_dropped(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING)
    text = b"latin1 \xe9".decode("utf-8", errors="surrogateescape")
    assert build_payload(DiffChunk(id="abc", data=text, offset=1)) is None
    assert "Could not convert data to UTF-8 from utf-8" in caplog.text


def test_build_payloads_drops_invalid_chunks_only() -> None:
    payloads = build_payloads(
        [
            DiffChunk(id="a", data="ok", offset=1),
            DiffChunk(id="b", data=b"\xff", offset=2),
            ScanPayload(id="c", data="kept", offset=5),
        ]
    )
    assert [payload.id for payload in payloads] == ["a", "c"]
