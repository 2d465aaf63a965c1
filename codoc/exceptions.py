"""Codoc exception hierarchy.

Base exceptions for the client and streaming layers with correlation ID support.

Usage:
    from codoc.exceptions import ChatbotStreamError, RateLimitedError

    try:
        await client.send_message(problem_id, text)
    except RateLimitedError as e:
        logger.warning("Rate limited until %s (correlation_id=%s)", e.retry_at, e.correlation_id)
"""

import uuid
from datetime import datetime
from typing import Any


class CodocError(Exception):
    """Base exception for all Codoc application errors.

    Carries a correlation_id for tracing errors across layers.
    """

    def __init__(self, message: str, *, correlation_id: str | None = None):
        self.correlation_id = correlation_id or str(uuid.uuid4())
        super().__init__(message)


class APIClientError(CodocError):
    """Errors from ordinary (non-stream) backend requests.

    Raised for non-2xx responses and transport failures, with the
    request path and HTTP status for diagnostics.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        path: str | None = None,
        correlation_id: str | None = None,
    ):
        self.status_code = status_code
        self.path = path
        super().__init__(message, correlation_id=correlation_id)


class RateLimitedError(APIClientError):
    """HTTP 429 on an ordinary request.

    The global rate-limit governor has already been engaged when this is
    raised; ``retry_at`` mirrors the value recorded there.
    """

    def __init__(self, message: str, *, retry_at: datetime | None = None, **kwargs: Any):
        self.retry_at = retry_at
        kwargs.setdefault("status_code", 429)
        super().__init__(message, **kwargs)


class ChatbotStreamError(CodocError):
    """Errors from a chatbot event stream.

    Covers non-OK stream-open responses, read failures, and ``error``
    frames that carry no recognized status.
    """

    def __init__(self, message: str, *, status_code: int | None = None, **kwargs: Any):
        self.status_code = status_code
        super().__init__(message, **kwargs)


class StreamRateLimitedError(ChatbotStreamError):
    """Stream-scoped rate limit. Never engages the global governor."""

    def __init__(
        self,
        message: str,
        *,
        retry_after_seconds: int | None = None,
        payload: dict[str, Any] | None = None,
        **kwargs: Any,
    ):
        self.retry_after_seconds = retry_after_seconds
        self.payload = payload or {}
        kwargs.setdefault("status_code", 429)
        super().__init__(message, **kwargs)


class ConfigurationError(CodocError):
    """Errors from application configuration."""

    pass
