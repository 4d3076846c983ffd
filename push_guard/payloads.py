"""Conversion of parsed diff chunks into scan payloads."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from push_guard.diff_parser import DiffChunk
from push_guard.models import ScanPayload

logger = logging.getLogger(__name__)

INVALID_ENCODING_MESSAGE = "Could not convert data to UTF-8 from %s"


def build_payload(chunk: DiffChunk | ScanPayload) -> ScanPayload | None:
    """Return a payload for the chunk, or None when its data is not valid UTF-8."""
    if isinstance(chunk, ScanPayload):
        return chunk

    data = chunk.data
    if isinstance(data, bytes):
        encoding = "binary"
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            text = None
    else:
        encoding = "utf-8"
        text = data if _encodes_as_utf8(data) else None

    if text is None:
        logger.warning(
            INVALID_ENCODING_MESSAGE,
            encoding,
            extra={"event": "invalid_encoding", "blob_id": chunk.id, "encoding": encoding},
        )
        return None

    return ScanPayload(id=chunk.id, data=text, offset=chunk.offset)


def build_payloads(chunks: Iterable[DiffChunk | ScanPayload]) -> list[ScanPayload]:
    """Build payloads for all chunks, dropping those that fail validation."""
    payloads: list[ScanPayload] = []
    for chunk in chunks:
        payload = build_payload(chunk)
        if payload is not None:
            payloads.append(payload)
    return payloads


def _encodes_as_utf8(text: str) -> bool:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True
