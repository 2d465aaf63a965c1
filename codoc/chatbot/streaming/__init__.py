"""Streaming pipeline: frame decoder, event parser, token coalescer, stream session."""

from codoc.chatbot.streaming.coalescer import TokenCoalescer
from codoc.chatbot.streaming.decoder import FrameDecoder
from codoc.chatbot.streaming.events import (
    ErrorEvent,
    FinalEvent,
    StatusEvent,
    StreamEvent,
    StreamStatus,
    TokenEvent,
)
from codoc.chatbot.streaming.parser import parse_block, parse_event, parse_frame, resolve_status
from codoc.chatbot.streaming.session import StreamSession

__all__ = [
    "ErrorEvent",
    "FinalEvent",
    "FrameDecoder",
    "StatusEvent",
    "StreamEvent",
    "StreamSession",
    "StreamStatus",
    "TokenCoalescer",
    "TokenEvent",
    "parse_block",
    "parse_event",
    "parse_frame",
    "resolve_status",
]
