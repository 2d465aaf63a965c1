"""Event parser - turn decoded text frames into typed stream events.

Pure functions, independent of I/O. A frame is split into ``event:`` and
``data:`` lines; the joined data is JSON-decoded and dispatched by event
type. Malformed frames are dropped rather than raised so that a garbled
block never takes down the pipeline.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from codoc.chatbot.streaming.events import (
    ErrorEvent,
    FinalEvent,
    StatusEvent,
    StreamEvent,
    StreamStatus,
    TokenEvent,
    normalize_status,
)
from codoc.exceptions import ChatbotStreamError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

logger = logging.getLogger(__name__)

DEFAULT_EVENT_TYPE = "message"

# Only LF and CRLF end a line; other Unicode line separators may appear
# unescaped inside JSON strings.
_LINE_BREAK = re.compile(r"\r?\n")


@dataclass(frozen=True)
class Frame:
    """One wire frame.

    Attributes:
        event_type: Value of the last ``event:`` line, or ``message``.
        data: The ``data:`` lines joined with newlines.
    """

    event_type: str
    data: str


def parse_frame(block: str) -> Frame | None:
    """Split a block into its event type and data payload.

    Returns None when the block carries no data.
    """
    event_type = DEFAULT_EVENT_TYPE
    data_lines: list[str] = []

    for line in _LINE_BREAK.split(block):
        if line.startswith("event:"):
            event_type = line[len("event:") :].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:") :].strip(" \t"))

    data = "\n".join(data_lines)
    if not data:
        return None
    return Frame(event_type=event_type or DEFAULT_EVENT_TYPE, data=data)


def decode_payload(data: str) -> dict[str, Any] | None:
    """JSON-decode a frame payload; None if it is not a JSON object."""
    try:
        payload = json.loads(data)
    except (ValueError, RecursionError):
        logger.debug("Dropping frame with undecodable payload: %s", data[:200])
        return None
    if not isinstance(payload, dict):
        logger.debug("Dropping frame with non-object payload: %s", data[:200])
        return None
    return payload


def _result(payload: dict[str, Any]) -> dict[str, Any]:
    result = payload.get("result")
    return result if isinstance(result, dict) else {}


# Upstream events carry their status in different places depending on
# event type. Checked in this order; the first recognized value wins.
STATUS_EXTRACTORS: tuple[Callable[[dict[str, Any]], Any], ...] = (
    lambda payload: _result(payload).get("status"),
    lambda payload: _result(payload).get("code"),
    lambda payload: payload.get("status"),
    lambda payload: payload.get("code"),
)


def resolve_status(
    payload: dict[str, Any],
    extractors: Sequence[Callable[[dict[str, Any]], Any]] = STATUS_EXTRACTORS,
) -> StreamStatus | None:
    """Resolve the status of a payload by probing each extractor in order.

    Args:
        payload: Decoded frame payload.
        extractors: Ordered field lookups.

    Returns:
        The first non-empty recognized status, or None.
    """
    for extract in extractors:
        status = normalize_status(extract(payload))
        if status is not None:
            return status
    return None


def extract_token_text(payload: dict[str, Any]) -> str:
    """Token text from ``result.text``, falling back to top-level ``text``."""
    text = _result(payload).get("text")
    if text is None:
        text = payload.get("text")
    return text if isinstance(text, str) else ""


def parse_event(event_type: str, payload: dict[str, Any]) -> list[StreamEvent]:
    """Dispatch one decoded payload by event type.

    A resolved ``FAILED`` status anywhere in the payload takes precedence
    over the frame's normal handling.

    Args:
        event_type: ``token``, ``status``, ``error``, ``final`` or other.
        payload: Decoded JSON object.

    Returns:
        Zero or more events, in the order they must be applied.
    """
    status = resolve_status(payload)
    if status is StreamStatus.FAILED:
        return [StatusEvent(status, payload)]

    if event_type == "token":
        text = extract_token_text(payload)
        return [TokenEvent(text)] if text else []

    if event_type == "status":
        return [StatusEvent(status, payload)] if status else []

    if event_type == "error":
        if status:
            return [StatusEvent(status, payload)]
        return [ErrorEvent(ChatbotStreamError("Stream error event"))]

    if event_type == "final":
        events: list[StreamEvent] = [FinalEvent(payload)]
        if status:
            events.append(StatusEvent(status, payload))
        return events

    logger.debug("Ignoring frame with event type %r", event_type)
    return []


def parse_block(block: str) -> list[StreamEvent]:
    """Parse a raw text block into typed events (empty if malformed)."""
    frame = parse_frame(block)
    if frame is None:
        return []
    payload = decode_payload(frame.data)
    if payload is None:
        return []
    return parse_event(frame.event_type, payload)
