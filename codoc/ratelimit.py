"""Rate-limit governor and Retry-After handling.

Two independent rate-limit channels exist:

1. Global: HTTP 429 on an ordinary request. The shared
   ``RateLimitGovernor`` records ``is_limited`` and an absolute
   ``retry_at``; the whole application renders a single notice until the
   user retries, which clears the state.
2. Stream-scoped: a 429 when opening a chatbot stream, or an in-band
   ``CHATBOT_STREAM_RATE_LIMIT_EXCEEDED`` status. This never touches the
   governor; it produces a conversation-local message instead.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any

from codoc.chatbot.streaming.events import STREAM_RATE_LIMIT_CODE

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

logger = logging.getLogger(__name__)

_NUMERIC = re.compile(r"-?\d+(?:\.\d+)?")
_LATEST = datetime.max.replace(tzinfo=UTC)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class RateLimitState:
    """Snapshot of the global rate-limit state."""

    is_limited: bool = False
    retry_at: datetime | None = None


class RateLimitGovernor:
    """Shared, mutable handle on the global rate-limit state.

    One instance is created per process and injected into both the
    request path and the stream path. Mutation is a single synchronous
    assignment, so no locking is required.
    """

    def __init__(self) -> None:
        self._state = RateLimitState()
        self._listeners: list[Callable[[RateLimitState], None]] = []

    def get(self) -> RateLimitState:
        return self._state

    @property
    def is_limited(self) -> bool:
        return self._state.is_limited

    def set(self, retry_at: datetime | None) -> None:
        """Engage the global rate limit until ``retry_at`` (or indefinitely)."""
        self._state = RateLimitState(is_limited=True, retry_at=retry_at)
        logger.warning("Global rate limit engaged (retry_at=%s)", retry_at)
        self._notify()

    def clear(self) -> None:
        """Release the global rate limit (explicit user retry)."""
        self._state = RateLimitState()
        logger.info("Global rate limit cleared")
        self._notify()

    def subscribe(self, listener: Callable[[RateLimitState], None]) -> Callable[[], None]:
        """Register a listener called after every change; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._state)


# =============================================================================
# RETRY-AFTER PARSING
# =============================================================================


def _parse_http_date(value: str) -> datetime | None:
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def parse_retry_after(
    value: str | float | None,
    *,
    now: Callable[[], datetime] = _utcnow,
) -> datetime | None:
    """Convert a Retry-After value into an absolute timestamp.

    Args:
        value: Whole or fractional seconds, or an HTTP-date string.
        now: Clock returning an aware datetime.

    Returns:
        The absolute retry time, or None if the value is missing or unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        seconds: float | None = float(value)
    else:
        text = value.strip()
        if not text:
            return None
        try:
            seconds = float(text)
        except ValueError:
            seconds = None
    if seconds is not None:
        if not math.isfinite(seconds):
            return None
        try:
            return now() + timedelta(seconds=max(0.0, seconds))
        except OverflowError:
            return _LATEST
    return _parse_http_date(text)


def retry_after_seconds(
    value: Any,
    *,
    now: Callable[[], datetime] = _utcnow,
) -> int | None:
    """Coerce a retry hint into a non-negative whole number of seconds.

    Accepts numbers, HTTP-date strings, and strings containing a number
    anywhere (``"30"``, ``"30s"``, ``"retry in 30s"``). Fractions round up.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        if not math.isfinite(value):
            return None
        return max(0, math.ceil(value))
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    # Dates contain digits too, so they are tried before the number search
    retry_at = _parse_http_date(text)
    if retry_at is not None:
        return max(0, math.ceil((retry_at - now()).total_seconds()))

    match = _NUMERIC.search(text)
    if match is None:
        return None
    seconds = float(match.group(0))
    if not math.isfinite(seconds):
        return None
    return max(0, math.ceil(seconds))


def get_retry_after_header(headers: Mapping[str, str] | None) -> str | None:
    """Read the Retry-After header (case-insensitive)."""
    if not headers:
        return None
    value = headers.get("Retry-After")
    if value is None:
        value = headers.get("retry-after")
    return value


# =============================================================================
# STREAM-SCOPED RATE LIMIT
# =============================================================================


def _nested(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key)
    return value if isinstance(value, dict) else {}


def _hint(container: str | None, name: str) -> Callable[[dict[str, Any]], Any]:
    def extract(payload: dict[str, Any]) -> Any:
        source = _nested(payload, container) if container else payload
        return source.get(name)

    return extract


_HINT_FIELDS = ("retryAfterSeconds", "retry_after_seconds", "retryAfter", "retry_after")

# Ordered lookups for a numeric wait hint in a stream rate-limit payload.
RETRY_HINT_EXTRACTORS: tuple[Callable[[dict[str, Any]], Any], ...] = tuple(
    _hint(container, name) for container in (None, "result", "data") for name in _HINT_FIELDS
)


def resolve_retry_hint(
    payload: dict[str, Any] | None,
    *,
    header: str | None = None,
    extractors: Sequence[Callable[[dict[str, Any]], Any]] = RETRY_HINT_EXTRACTORS,
    now: Callable[[], datetime] = _utcnow,
) -> int | None:
    """Best available wait hint, in seconds.

    The Retry-After header is tried first, then each payload extractor in
    order. The first value that coerces to a non-negative integer wins.
    """
    seconds = retry_after_seconds(header, now=now)
    if seconds is not None:
        return seconds
    for extract in extractors:
        seconds = retry_after_seconds(extract(payload or {}), now=now)
        if seconds is not None:
            return seconds
    return None


def get_rate_limit_code(payload: dict[str, Any] | None) -> str | None:
    """Rate-limit code from ``code``, ``data.code`` or ``errorCode``."""
    if not payload:
        return None
    return payload.get("code") or _nested(payload, "data").get("code") or payload.get("errorCode")


def is_stream_rate_limit_payload(payload: dict[str, Any] | None) -> bool:
    return get_rate_limit_code(payload) == STREAM_RATE_LIMIT_CODE


def stream_rate_limit_message(
    seconds: int | None,
    payload: dict[str, Any] | None,
    *,
    retry_template: str,
    default_message: str,
) -> str:
    """Conversation-local message for a stream-scoped rate limit.

    Uses the wait time when known, then the server's own message, then
    the generic default.
    """
    if seconds is not None:
        return retry_template.format(seconds=seconds)
    if payload:
        message = payload.get("message") or _nested(payload, "data").get("message")
        if isinstance(message, str) and message.strip():
            return message
    return default_message
