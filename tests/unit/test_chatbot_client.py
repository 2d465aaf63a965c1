"""Unit tests for ChatbotClient request handling."""

import json
from datetime import timedelta
from email.utils import format_datetime

import httpx
import pytest

from codoc.api.client import ChatbotClient
from codoc.chatbot.streaming.events import StreamStatus
from codoc.exceptions import (
    APIClientError,
    ChatbotStreamError,
    ConfigurationError,
    RateLimitedError,
    StreamRateLimitedError,
)
from tests.conftest import FIXED_NOW
from tests.helpers.sse import ScriptedBackend, stream_of, token_frame


class TestSendMessage:
    """Tests for the send-turn request."""

    @pytest.mark.asyncio
    async def test_posts_body_with_bearer_token(self, client, backend):
        response = await client.send_message(7, "hello")

        request = backend.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "http://testserver/api/chatbot/messages"
        assert json.loads(request.content) == {"problemId": 7, "message": "hello"}
        assert request.headers["Authorization"] == "Bearer test-token"
        assert response.conversation_id == "c1"
        assert response.status is StreamStatus.ACCEPTED
        assert response.is_terminal is False

    @pytest.mark.asyncio
    async def test_numeric_conversation_id_is_stringified(self, client, backend):
        backend.send_response = httpx.Response(
            200, json={"data": {"conversationId": 42, "status": "PROCESSING"}}
        )
        response = await client.send_message(1, "hi")
        assert response.conversation_id == "42"

    @pytest.mark.asyncio
    async def test_terminal_status(self, client, backend):
        backend.send_response = httpx.Response(200, json={"data": {"status": "COMPLETED"}})
        response = await client.send_message(1, "hi")
        assert response.status is StreamStatus.COMPLETED
        assert response.is_terminal is True
        assert response.conversation_id is None

    @pytest.mark.asyncio
    async def test_missing_envelope(self, client, backend):
        backend.send_response = httpx.Response(200, json={"unexpected": True})
        response = await client.send_message(1, "hi")
        assert response.conversation_id is None
        assert response.status is None

    @pytest.mark.asyncio
    async def test_no_token_sends_no_authorization(self, governor, test_settings):
        backend = ScriptedBackend()
        client = ChatbotClient(
            test_settings.api_base_url,
            governor=governor,
            token_supplier=lambda: None,
            transport=backend.transport(),
        )
        try:
            await client.send_message(1, "hi")
        finally:
            await client.close()
        assert "Authorization" not in backend.requests[0].headers


class TestSendMessageErrors:
    """Tests for non-success responses."""

    @pytest.mark.asyncio
    async def test_server_error(self, client, backend, governor):
        backend.send_response = httpx.Response(500)
        with pytest.raises(APIClientError) as exc_info:
            await client.send_message(1, "hi")
        assert exc_info.value.status_code == 500
        assert exc_info.value.path == "/api/chatbot/messages"
        assert governor.is_limited is False

    @pytest.mark.asyncio
    async def test_invalid_json_body(self, client, backend):
        backend.send_response = httpx.Response(200, content=b"<html>")
        with pytest.raises(APIClientError):
            await client.send_message(1, "hi")

    @pytest.mark.asyncio
    async def test_global_429_with_seconds(self, client, backend, governor):
        backend.send_response = httpx.Response(429, headers={"Retry-After": "120"})

        with pytest.raises(RateLimitedError) as exc_info:
            await client.send_message(1, "hi")

        expected = FIXED_NOW + timedelta(seconds=120)
        assert exc_info.value.retry_at == expected
        assert exc_info.value.status_code == 429
        assert governor.get().is_limited is True
        assert governor.get().retry_at == expected

    @pytest.mark.asyncio
    async def test_global_429_with_http_date(self, client, backend, governor):
        target = FIXED_NOW + timedelta(seconds=60)
        backend.send_response = httpx.Response(
            429, headers={"Retry-After": format_datetime(target, usegmt=True)}
        )

        with pytest.raises(RateLimitedError):
            await client.send_message(1, "hi")

        assert governor.get().retry_at == target

    @pytest.mark.asyncio
    async def test_global_429_without_header(self, client, backend, governor):
        backend.send_response = httpx.Response(429)

        with pytest.raises(RateLimitedError):
            await client.send_message(1, "hi")

        assert governor.is_limited is True
        assert governor.get().retry_at is None

    @pytest.mark.asyncio
    async def test_stream_rate_limit_code_is_not_global(self, client, backend, governor):
        backend.send_response = httpx.Response(
            429,
            json={"code": "CHATBOT_STREAM_RATE_LIMIT_EXCEEDED", "data": {"retryAfterSeconds": 9}},
        )

        with pytest.raises(StreamRateLimitedError) as exc_info:
            await client.send_message(1, "hi")

        assert exc_info.value.retry_after_seconds == 9
        assert governor.is_limited is False

    @pytest.mark.asyncio
    async def test_transport_failure(self, governor, test_settings):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        client = ChatbotClient(
            test_settings.api_base_url,
            governor=governor,
            transport=httpx.MockTransport(refuse),
        )
        try:
            with pytest.raises(APIClientError, match="ConnectError"):
                await client.send_message(1, "hi")
        finally:
            await client.close()


class TestOpenStream:
    """Tests for the stream-open request."""

    @pytest.mark.asyncio
    async def test_yields_response(self, client, backend):
        backend.stream_response = stream_of(token_frame("hi"))

        async with client.open_stream("c9") as response:
            body = b"".join([chunk async for chunk in response.aiter_bytes()])

        request = backend.requests[-1]
        assert request.url.path == "/api/chatbot/messages/c9/stream"
        assert request.headers["Accept"] == "text/event-stream"
        assert body == token_frame("hi")

    @pytest.mark.asyncio
    async def test_open_429_payload_hint(self, client, backend, governor):
        backend.stream_response = httpx.Response(429, json={"retryAfter": 15})

        with pytest.raises(StreamRateLimitedError) as exc_info:
            async with client.open_stream("c1"):
                pass

        assert exc_info.value.retry_after_seconds == 15
        assert governor.is_limited is False

    @pytest.mark.asyncio
    async def test_open_non_ok(self, client, backend):
        backend.stream_response = httpx.Response(403)

        with pytest.raises(ChatbotStreamError) as exc_info:
            async with client.open_stream("c1"):
                pass

        assert exc_info.value.status_code == 403
        assert not isinstance(exc_info.value, StreamRateLimitedError)


class TestClientConfiguration:
    def test_empty_base_url(self, governor):
        with pytest.raises(ConfigurationError):
            ChatbotClient("", governor=governor)

    def test_trailing_slash_ignored(self, governor):
        client = ChatbotClient("http://example.test/", governor=governor)
        assert client.base_url == "http://example.test"

    @pytest.mark.asyncio
    async def test_http_client_reused_and_closed(self, governor):
        client = ChatbotClient("http://example.test", governor=governor)
        first = client._get_http_client()
        assert client._get_http_client() is first
        await client.close()
        assert client._http_client is None
