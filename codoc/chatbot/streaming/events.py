"""Stream event types for the chatbot streaming pipeline.

The parser turns each decoded frame into one or more of these events;
the stream session forwards them, in order, to the conversation
state machine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

STREAM_RATE_LIMIT_CODE = "CHATBOT_STREAM_RATE_LIMIT_EXCEEDED"


class StreamStatus(StrEnum):
    """Recognized conversation statuses reported by the backend."""

    ACCEPTED = "ACCEPTED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    RATE_LIMITED = STREAM_RATE_LIMIT_CODE


def normalize_status(value: Any) -> StreamStatus | None:
    """Map a raw status value to a recognized status, or None."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return StreamStatus(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class TokenEvent:
    """An incremental fragment of assistant text."""

    text: str


@dataclass(frozen=True)
class StatusEvent:
    """A recognized status transition.

    Attributes:
        status: The resolved status.
        payload: The decoded frame payload the status was found in.
    """

    status: StreamStatus
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FinalEvent:
    """The authoritative final assistant payload."""

    payload: dict[str, Any]


@dataclass(frozen=True)
class ErrorEvent:
    """A stream failure: an ``error`` frame without status, or a transport error."""

    error: Exception


StreamEvent = TokenEvent | StatusEvent | FinalEvent | ErrorEvent
