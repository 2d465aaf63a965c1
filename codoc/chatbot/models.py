"""Conversation data model.

Sessions and messages are immutable snapshots; every store mutation
produces a new ``ConversationSession`` via ``model_copy``.
"""

import random
import string
import time
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

INTRO_MESSAGE_ID = "assistant-intro"

_ID_ALPHABET = string.ascii_lowercase + string.digits


class MessageRole(StrEnum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"


class ConversationStatus(StrEnum):
    """State of a conversation's send/stream cycle."""

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


class MessageMeta(BaseModel):
    """Optional presentation flags on a message."""

    model_config = ConfigDict(frozen=True)

    show_summary_cta: bool = Field(
        default=False,
        description="Offer the follow-up action to the problem summary card",
    )


class Message(BaseModel):
    """A single chat message."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: MessageRole
    content: str = ""
    meta: MessageMeta | None = None


class ConversationSession(BaseModel):
    """Per-problem conversation state."""

    model_config = ConfigDict(frozen=True)

    messages: tuple[Message, ...] = ()
    draft_input: str = ""
    conversation_id: str | None = None
    pending_assistant_message_id: str | None = None
    is_streaming: bool = False
    status: ConversationStatus = ConversationStatus.IDLE
    last_error: str | None = None

    def find_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None


def build_message_id() -> str:
    """Client-generated message id: ``msg-<epoch ms>-<6 base36 chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=6))
    return f"msg-{int(time.time() * 1000)}-{suffix}"


def intro_message(content: str) -> Message:
    """The assistant message every new session is seeded with."""
    return Message(id=INTRO_MESSAGE_ID, role=MessageRole.ASSISTANT, content=content)
