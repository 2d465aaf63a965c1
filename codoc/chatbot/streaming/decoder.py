"""Frame decoder - split a raw byte stream into blank-line-delimited blocks.

Bytes are decoded incrementally as UTF-8, so multi-byte characters split
across chunk boundaries are reassembled. Complete blocks are emitted in
arrival order; the trailing incomplete fragment is retained until the
next chunk arrives.
"""

from __future__ import annotations

import codecs
import re

# A blank line in either LF or CRLF form (mixed endings included)
_BLOCK_SEPARATOR = re.compile(r"\r?\n\r?\n")


class FrameDecoder:
    """Incremental decoder from byte chunks to text frames.

    Usage::

        decoder = FrameDecoder()
        async for chunk in response.aiter_bytes():
            for block in decoder.feed(chunk):
                handle(block)
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._remainder = ""

    @property
    def remainder(self) -> str:
        """Text received after the last complete block."""
        return self._remainder

    def feed(self, chunk: bytes) -> list[str]:
        """Consume one chunk and return every block it completes.

        Whitespace-only blocks are skipped.
        """
        self._remainder += self._decoder.decode(chunk)
        parts = _BLOCK_SEPARATOR.split(self._remainder)
        self._remainder = parts.pop()
        return [part for part in parts if part.strip()]

    def finish(self) -> None:
        """Mark end of stream.

        A dangling partial block has no terminating blank line and is
        discarded without emitting anything.
        """
        self._decoder.decode(b"", final=True)
        self._remainder = ""
