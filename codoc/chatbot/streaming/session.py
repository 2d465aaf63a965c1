"""Stream session - one live chatbot event stream.

A reader task pulls byte chunks from the open response, decodes them
into frames, parses the frames into events and puts the events on a
queue. A dispatcher task drains the queue, in arrival order, into the
handler. ``close()`` stops both immediately and is safe to call more
than once.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Protocol

import httpx

from codoc.chatbot.streaming.decoder import FrameDecoder
from codoc.chatbot.streaming.events import ErrorEvent, StreamEvent
from codoc.chatbot.streaming.parser import parse_block
from codoc.exceptions import ChatbotStreamError

if TYPE_CHECKING:
    from codoc.api.client import ChatbotClient

logger = logging.getLogger(__name__)


class StreamEventHandler(Protocol):
    """Receiver of a stream session's events."""

    def handle_event(self, event: StreamEvent) -> None: ...

    def handle_end(self) -> None: ...


class _EndOfStream:
    """Queue sentinel: the server closed the stream cleanly."""


_END = _EndOfStream()


class StreamSession:
    """Owns one live connection and its decode/parse/dispatch pipeline.

    Usage::

        session = StreamSession(client, "c1", handler)
        session.start()
        ...
        session.close()
        await session.wait_closed()
    """

    def __init__(
        self,
        client: ChatbotClient,
        conversation_id: str,
        handler: StreamEventHandler,
    ) -> None:
        self._client = client
        self.conversation_id = conversation_id
        self._handler = handler
        self._queue: asyncio.Queue[StreamEvent | _EndOfStream] = asyncio.Queue()
        self._reader: asyncio.Task[None] | None = None
        self._dispatcher: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start the reader and dispatcher tasks."""
        if self._reader is not None or self._closed:
            return
        self._reader = asyncio.create_task(
            self._read(), name=f"chatbot-stream-reader-{self.conversation_id}"
        )
        self._dispatcher = asyncio.create_task(
            self._dispatch(), name=f"chatbot-stream-dispatch-{self.conversation_id}"
        )

    async def _read(self) -> None:
        decoder = FrameDecoder()
        try:
            async with self._client.open_stream(self.conversation_id) as response:
                async for chunk in response.aiter_bytes():
                    for block in decoder.feed(chunk):
                        for event in parse_block(block):
                            self._queue.put_nowait(event)
            decoder.finish()
        except ChatbotStreamError as e:
            self._queue.put_nowait(ErrorEvent(e))
        except httpx.HTTPError as e:
            self._queue.put_nowait(
                ErrorEvent(ChatbotStreamError(f"Stream read failed: {type(e).__name__}"))
            )
        finally:
            self._queue.put_nowait(_END)

    async def _dispatch(self) -> None:
        while not self._closed:
            item = await self._queue.get()
            if self._closed:
                return
            if isinstance(item, _EndOfStream):
                logger.debug("Chatbot stream %s ended", self.conversation_id)
                self._handler.handle_end()
                return
            self._handler.handle_event(item)

    def close(self) -> None:
        """Stop all further event processing. Idempotent.

        Already-applied state changes are not undone.
        """
        if self._closed:
            return
        self._closed = True
        current = asyncio.current_task()
        for task in (self._reader, self._dispatcher):
            if task is not None and task is not current and not task.done():
                task.cancel()
        logger.info("Closed chatbot stream for conversation %s", self.conversation_id)

    async def wait_closed(self) -> None:
        """Wait until both tasks have finished."""
        current = asyncio.current_task()
        for task in (self._reader, self._dispatcher):
            if task is None or task is current:
                continue
            with contextlib.suppress(asyncio.CancelledError):
                await task
