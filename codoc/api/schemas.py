"""Wire models for the chatbot send-turn endpoint."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from codoc.chatbot.streaming.events import StreamStatus, normalize_status


class SendMessageRequest(BaseModel):
    """Body of ``POST /api/chatbot/messages``."""

    model_config = ConfigDict(populate_by_name=True)

    problem_id: int | str = Field(..., alias="problemId")
    message: str = Field(..., min_length=1)


class SendMessageResponse(BaseModel):
    """Normalized send-turn result.

    Either a terminal status (COMPLETED/FAILED) with nothing further to
    do, or ACCEPTED/PROCESSING plus a conversation id to stream.
    """

    conversation_id: str | None = None
    status: StreamStatus | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (StreamStatus.COMPLETED, StreamStatus.FAILED)

    @classmethod
    def from_envelope(cls, body: Any) -> "SendMessageResponse":
        """Map the ``{"data": {...}}`` response envelope."""
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            data = {}
        conversation_id = data.get("conversationId")
        return cls(
            conversation_id=str(conversation_id) if conversation_id not in (None, "") else None,
            status=normalize_status(data.get("status")),
        )
