"""Token coalescer - batch streamed tokens into one mutation per tick.

Tokens can arrive far faster than the UI should repaint. Appended text
is buffered, and at most one flush is scheduled per tick regardless of
how many tokens arrive in that interval.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class TokenCoalescer:
    """Buffer token text for one target message and flush it at a bounded rate.

    The ``apply`` callback receives ``(target_id, text)`` and is
    responsible for dropping the text if ``target_id`` is no longer the
    conversation's pending assistant message.

    Usage::

        coalescer = TokenCoalescer("msg-1", apply=append_text, interval=1 / 60)
        coalescer.append("Hi")
        coalescer.append(" there")
        # ... one tick later, append_text("msg-1", "Hi there") runs once
    """

    def __init__(
        self,
        target_id: str,
        *,
        apply: Callable[[str, str], None],
        interval: float,
    ) -> None:
        self.target_id = target_id
        self._apply = apply
        self._interval = interval
        self._buffer = ""
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> str:
        """Buffered text not yet flushed."""
        return self._buffer

    @property
    def is_scheduled(self) -> bool:
        return self._handle is not None

    def append(self, text: str) -> None:
        """Buffer text and make sure a flush is scheduled."""
        if not text:
            return
        self._buffer += text
        self.schedule_flush()

    def schedule_flush(self) -> None:
        """Schedule a flush on the next tick. No-op if one is already scheduled."""
        if self._handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._interval, self._on_tick)

    def _on_tick(self) -> None:
        self._handle = None
        self.flush()

    def flush(self) -> str:
        """Apply all buffered text in one mutation and return it."""
        self._cancel_scheduled()
        chunk = self._buffer
        if not chunk:
            return ""
        self._buffer = ""
        self._apply(self.target_id, chunk)
        return chunk

    def discard(self) -> None:
        """Drop buffered text without applying it."""
        if self._buffer:
            logger.debug("Discarding %d buffered characters for %s", len(self._buffer), self.target_id)
        self._buffer = ""
        self._cancel_scheduled()

    def _cancel_scheduled(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
