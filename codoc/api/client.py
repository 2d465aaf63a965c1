"""HTTP client for the Codoc chatbot API.

Provides the credential-bearing send-turn request and the stream-open
request. Ordinary requests report HTTP 429 to the shared rate-limit
governor; stream-open 429s stay scoped to the conversation.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx

from codoc.api.schemas import SendMessageRequest, SendMessageResponse
from codoc.exceptions import (
    APIClientError,
    ChatbotStreamError,
    ConfigurationError,
    RateLimitedError,
    StreamRateLimitedError,
)
from codoc.ratelimit import (
    get_retry_after_header,
    is_stream_rate_limit_payload,
    parse_retry_after,
    resolve_retry_hint,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from datetime import datetime

    from codoc.ratelimit import RateLimitGovernor

logger = logging.getLogger(__name__)

MESSAGES_PATH = "/api/chatbot/messages"


def _json_or_none(response: httpx.Response) -> dict[str, Any] | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


class ChatbotClient:
    """Async client for the chatbot endpoints.

    Usage::

        client = ChatbotClient(base_url, governor=governor, token_supplier=lambda: token)
        response = await client.send_message(42, "hello")
        async with client.open_stream(response.conversation_id) as stream:
            async for chunk in stream.aiter_bytes():
                ...
        await client.close()
    """

    def __init__(
        self,
        base_url: str,
        *,
        governor: RateLimitGovernor,
        token_supplier: Callable[[], str | None] | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Backend base URL; a trailing slash is ignored.
            governor: Shared global rate-limit handle.
            token_supplier: Returns the current bearer token, or None.
            timeout: Timeout in seconds for ordinary requests.
            transport: Optional httpx transport (tests inject a MockTransport).
            now: Clock used to resolve Retry-After values.
        """
        if not base_url:
            raise ConfigurationError("Chatbot API base URL is not configured")
        self.base_url = base_url.rstrip("/")
        self.governor = governor
        self._token_supplier = token_supplier
        self._timeout = timeout
        self._transport = transport
        self._now = now
        self._http_client: httpx.AsyncClient | None = None

    def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the shared httpx.AsyncClient.

        Created lazily on first use and reused across requests and streams.
        """
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                transport=self._transport,
                limits=httpx.Limits(
                    max_keepalive_connections=20,
                    max_connections=100,
                ),
            )
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client and release connections."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _headers(self) -> dict[str, str]:
        token = self._token_supplier() if self._token_supplier else None
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _clock_kwargs(self) -> dict[str, Any]:
        return {"now": self._now} if self._now else {}

    async def _request(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        params: dict | None = None,
    ) -> Any:
        """Make an ordinary request and return the decoded JSON body.

        Raises:
            RateLimitedError: HTTP 429; the global governor is engaged first.
            StreamRateLimitedError: HTTP 429 carrying the stream rate-limit code.
            APIClientError: Any other non-2xx response or transport failure.
        """
        client = self._get_http_client()
        try:
            response = await client.request(
                method,
                path,
                headers=self._headers(),
                json=json,
                params=params,
            )
        except httpx.TimeoutException as e:
            raise APIClientError(f"{method} {path}: Timeout", path=path) from e
        except httpx.HTTPError as e:
            raise APIClientError(f"{method} {path}: {type(e).__name__}", path=path) from e

        if response.status_code == 429:
            payload = _json_or_none(response)
            header = get_retry_after_header(response.headers)
            if is_stream_rate_limit_payload(payload):
                raise StreamRateLimitedError(
                    "Chatbot stream rate limit exceeded",
                    retry_after_seconds=resolve_retry_hint(payload, header=header, **self._clock_kwargs()),
                    payload=payload,
                )
            retry_at = parse_retry_after(header, **self._clock_kwargs())
            self.governor.set(retry_at)
            raise RateLimitedError(f"{method} {path}: HTTP 429", retry_at=retry_at, path=path)

        if not response.is_success:
            raise APIClientError(
                f"{method} {path}: HTTP {response.status_code}",
                status_code=response.status_code,
                path=path,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise APIClientError(f"{method} {path}: invalid JSON body", path=path) from e

    async def send_message(self, problem_id: int | str, message: str) -> SendMessageResponse:
        """Submit a user turn.

        Returns:
            A terminal status, or a pending status plus the conversation id to stream.
        """
        request = SendMessageRequest(problem_id=problem_id, message=message)
        body = await self._request("POST", MESSAGES_PATH, json=request.model_dump(by_alias=True))
        response = SendMessageResponse.from_envelope(body)
        logger.debug(
            "Sent chatbot message for problem %s: status=%s conversation=%s",
            problem_id,
            response.status,
            response.conversation_id,
        )
        return response

    @asynccontextmanager
    async def open_stream(self, conversation_id: str) -> AsyncIterator[httpx.Response]:
        """Open the live event stream for a conversation.

        No read timeout is applied; the stream ends when the server closes it.

        Raises:
            StreamRateLimitedError: HTTP 429 at open time (never global).
            ChatbotStreamError: Any other non-OK response or connection failure.
        """
        client = self._get_http_client()
        path = f"{MESSAGES_PATH}/{conversation_id}/stream"
        headers = {"Accept": "text/event-stream", **self._headers()}
        timeout = httpx.Timeout(self._timeout, read=None)

        try:
            async with client.stream("GET", path, headers=headers, timeout=timeout) as response:
                if response.status_code == 429:
                    await response.aread()
                    payload = _json_or_none(response)
                    seconds = resolve_retry_hint(
                        payload,
                        header=get_retry_after_header(response.headers),
                        **self._clock_kwargs(),
                    )
                    raise StreamRateLimitedError(
                        "Chatbot stream rate limit exceeded",
                        retry_after_seconds=seconds,
                        payload=payload,
                    )
                if not response.is_success:
                    raise ChatbotStreamError(
                        f"Stream error: {response.status_code}",
                        status_code=response.status_code,
                    )
                logger.info("Opened chatbot stream for conversation %s", conversation_id)
                yield response
        except httpx.HTTPError as e:
            raise ChatbotStreamError(f"Stream transport failed: {type(e).__name__}") from e
