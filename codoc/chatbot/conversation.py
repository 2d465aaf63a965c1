"""Chatbot engine - per-problem conversation state machine.

Orchestrates a chat turn end to end:

    IDLE -> SENDING -> {STREAMING | COMPLETED | FAILED}
    STREAMING -> {COMPLETED | FAILED}
    any terminal state -> SENDING on the next send

A send first performs the send-turn request. A terminal status in that
response ends the turn without a stream; otherwise a ``StreamSession``
is bound to a freshly created pending assistant message. Every stream
callback checks that its target message is still the conversation's
``pending_assistant_message_id`` before it mutates the store, so a
cancelled or superseded stream can never write into the live one.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from codoc.chatbot.models import (
    ConversationStatus,
    Message,
    MessageMeta,
    MessageRole,
    build_message_id,
    intro_message,
)
from codoc.chatbot.streaming.coalescer import TokenCoalescer
from codoc.chatbot.streaming.events import (
    ErrorEvent,
    FinalEvent,
    StatusEvent,
    StreamEvent,
    StreamStatus,
    TokenEvent,
)
from codoc.chatbot.streaming.session import StreamSession
from codoc.exceptions import CodocError, StreamRateLimitedError
from codoc.ratelimit import resolve_retry_hint, stream_rate_limit_message

if TYPE_CHECKING:
    from codoc.api.client import ChatbotClient
    from codoc.chatbot.models import ConversationSession
    from codoc.chatbot.store import SessionStore
    from codoc.settings import Settings

logger = logging.getLogger(__name__)

SUMMARY_READY_NODE = "RULE"


def _first_of(source: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = source.get(key)
        if value is not None:
            return value
    return None


def final_message_text(payload: dict[str, Any]) -> str | None:
    """Authoritative assistant text of a ``final`` payload."""
    result = payload.get("result")
    if not isinstance(result, dict):
        return None
    text = _first_of(result, "ai_message", "aiMessage")
    return text if isinstance(text, str) and text else None


def is_summary_ready(payload: dict[str, Any]) -> bool:
    """True when the learner answered correctly at the rule step."""
    result = payload.get("result")
    if not isinstance(result, dict):
        return False
    is_correct = _first_of(result, "is_correct", "isCorrect")
    current_node = _first_of(result, "current_node", "currentNode")
    return is_correct is True and current_node == SUMMARY_READY_NODE


class _StreamBinding:
    """Binds one StreamSession to one pending assistant message."""

    def __init__(self, engine: ChatbotEngine, key: str, target_id: str, conversation_id: str):
        self.engine = engine
        self.key = key
        self.target_id = target_id
        self.active = True
        self.final_received = False
        self.completion_held = False
        self.coalescer = TokenCoalescer(
            target_id,
            apply=self._apply_tokens,
            interval=engine.settings.stream_flush_interval,
        )
        self.stream = StreamSession(engine.client, conversation_id, self)

    def _apply_tokens(self, target_id: str, text: str) -> None:
        if not self.active or self.stream.closed:
            logger.debug("Dropping %d characters for closed stream %s", len(text), target_id)
            return
        self.engine._append_to_message(self.key, target_id, text)

    def handle_event(self, event: StreamEvent) -> None:
        if not self.active:
            return
        if isinstance(event, TokenEvent):
            self.coalescer.append(event.text)
        elif isinstance(event, FinalEvent):
            self._handle_final(event.payload)
        elif isinstance(event, StatusEvent):
            self._handle_status(event)
        elif isinstance(event, ErrorEvent):
            self._handle_error(event.error)

    def handle_end(self) -> None:
        if not self.active:
            return
        if self.final_received or self.completion_held:
            self.engine._stop(self, status=ConversationStatus.COMPLETED)
            return
        logger.warning("Chatbot stream for %s ended without a terminal status", self.key)
        self.engine._stop(self, failure_message=self.engine.settings.stream_failed_message)

    def _handle_final(self, payload: dict[str, Any]) -> None:
        self.final_received = True
        text = final_message_text(payload)
        if text is not None:
            self.coalescer.discard()
            self.engine._replace_message(self.key, self.target_id, text)
        if is_summary_ready(payload):
            self.engine._mark_summary_ready(self.key, self.target_id)
        if self.completion_held:
            self.engine._stop(self, status=ConversationStatus.COMPLETED)

    def _handle_status(self, event: StatusEvent) -> None:
        status = event.status
        if status is StreamStatus.FAILED:
            self.engine._stop(self, failure_message=self.engine.settings.stream_failed_message)
        elif status is StreamStatus.RATE_LIMITED:
            seconds = resolve_retry_hint(event.payload)
            self.engine._stop(self, failure_message=self.engine._rate_limit_message(seconds, event.payload))
        elif status is StreamStatus.COMPLETED:
            if self.final_received:
                self.engine._stop(self, status=ConversationStatus.COMPLETED)
            else:
                self.completion_held = True
        else:
            logger.debug("Chatbot stream for %s reported %s", self.key, status)

    def _handle_error(self, error: Exception) -> None:
        if isinstance(error, StreamRateLimitedError):
            message = self.engine._rate_limit_message(error.retry_after_seconds, error.payload)
            self.engine._stop(self, failure_message=message)
            return
        logger.warning("Chatbot stream for %s failed: %s", self.key, error)
        self.engine._stop(self, failure_message=self.engine.settings.stream_failed_message)


class ChatbotEngine:
    """Multiplexed chatbot conversations, one session per problem.

    Usage::

        engine = ChatbotEngine(client, store, settings=get_settings())
        engine.open(42)
        engine.set_draft(42, "hello")
        await engine.send(42)
        await engine.wait(42)
    """

    def __init__(self, client: ChatbotClient, store: SessionStore, *, settings: Settings):
        self.client = client
        self.store = store
        self.settings = settings
        self._streams: dict[str, _StreamBinding] = {}
        self._active_problem: str | None = None

    # ========== Session lifecycle ==========

    def open(self, problem_id: Any) -> ConversationSession | None:
        """Lazily create a problem's session, seeded with the intro message."""
        return self.store.init(problem_id, [intro_message(self.settings.intro_message)])

    def set_draft(self, problem_id: Any, text: str) -> None:
        self.store.patch(problem_id, draft_input=text[: self.settings.max_input_length])

    def is_streaming(self, problem_id: Any) -> bool:
        return str(problem_id) in self._streams

    def navigate(self, problem_id: Any | None) -> None:
        """Called by the navigation layer when the current problem changes.

        Leaving a problem's study flow closes every live stream and
        discards every session.
        """
        key = None if problem_id is None or problem_id == "" else str(problem_id)
        if self._active_problem is not None and key != self._active_problem:
            logger.info("Leaving study flow for problem %s", self._active_problem)
            for binding in list(self._streams.values()):
                self._detach(binding)
            self.store.clear_all()
        self._active_problem = key

    def close(self, problem_id: Any) -> None:
        """Cancel a problem's live stream, keeping the text already shown."""
        binding = self._streams.get(str(problem_id))
        if binding is not None:
            self._stop(binding, status=ConversationStatus.IDLE)

    async def wait(self, problem_id: Any) -> None:
        """Wait for a problem's live stream (if any) to finish."""
        binding = self._streams.get(str(problem_id))
        if binding is not None:
            await binding.stream.wait_closed()

    async def shutdown(self) -> None:
        """Close every stream and the HTTP client."""
        bindings = list(self._streams.values())
        for binding in bindings:
            self._stop(binding, status=ConversationStatus.IDLE)
        for binding in bindings:
            await binding.stream.wait_closed()
        await self.client.close()

    # ========== Sending ==========

    async def send(self, problem_id: Any, text: str | None = None) -> ConversationSession | None:
        """Send a user turn and, if accepted, start streaming the reply.

        Args:
            problem_id: Problem whose conversation receives the turn.
            text: Message text; defaults to the session's draft input.

        Returns:
            The session snapshot after the send settled.
        """
        key = str(problem_id)
        session = self.store.get(key) or self.open(key)
        if session is None:
            return None
        message = (session.draft_input if text is None else text)[: self.settings.max_input_length].strip()
        if not message or session.status is ConversationStatus.SENDING:
            return session

        previous = self._streams.get(key)
        if previous is not None:
            logger.info("Superseding live stream for problem %s", key)
            self._stop(previous, status=ConversationStatus.IDLE)
            session = self.store.get(key) or session

        user_message = Message(id=build_message_id(), role=MessageRole.USER, content=message)
        assistant_id = build_message_id()
        self.store.patch(
            key,
            draft_input="",
            conversation_id=None,
            last_error=None,
            messages=[*session.messages, user_message, Message(id=assistant_id, role=MessageRole.ASSISTANT)],
            pending_assistant_message_id=assistant_id,
            is_streaming=False,
            status=ConversationStatus.SENDING,
        )

        try:
            response = await self.client.send_message(problem_id, message)
        except StreamRateLimitedError as e:
            return self._end_turn(
                key,
                assistant_id,
                failure_message=self._rate_limit_message(e.retry_after_seconds, e.payload),
            )
        except CodocError as e:
            logger.warning("Sending chatbot message for problem %s failed: %s", key, e)
            return self._end_turn(key, assistant_id, failure_message=self.settings.stream_failed_message)
        except (Exception, asyncio.CancelledError):
            # Leave no turn stuck in SENDING
            logger.exception("Unexpected error sending chatbot message for problem %s", key)
            self._end_turn(key, assistant_id, failure_message=self.settings.stream_failed_message)
            raise

        if not self._is_live(key, assistant_id):
            logger.debug("Send for problem %s settled after its session moved on", key)
            return self.store.get(key)

        if response.status is StreamStatus.COMPLETED:
            return self._end_turn(key, assistant_id, status=ConversationStatus.COMPLETED)
        if response.status is StreamStatus.FAILED or not response.conversation_id:
            return self._end_turn(key, assistant_id, failure_message=self.settings.stream_failed_message)

        binding = _StreamBinding(self, key, assistant_id, response.conversation_id)
        self._streams[key] = binding
        session = self.store.patch(
            key,
            conversation_id=response.conversation_id,
            is_streaming=True,
            status=ConversationStatus.STREAMING,
        )
        binding.stream.start()
        return session

    # ========== Mutations (guarded by the pending message id) ==========

    def _is_live(self, key: str, target_id: str) -> bool:
        session = self.store.get(key)
        return session is not None and session.pending_assistant_message_id == target_id

    def _update_message(self, key: str, target_id: str, update: dict[str, Any]) -> None:
        if not self._is_live(key, target_id):
            logger.debug("Dropping stale update for message %s", target_id)
            return
        session = self.store.get(key)
        messages = [
            message.model_copy(update=update) if message.id == target_id else message
            for message in session.messages
        ]
        self.store.patch(key, messages=messages)

    def _append_to_message(self, key: str, target_id: str, text: str) -> None:
        session = self.store.get(key)
        target = session.find_message(target_id) if session else None
        if target is None:
            return
        self._update_message(key, target_id, {"content": target.content + text})

    def _replace_message(self, key: str, target_id: str, text: str) -> None:
        self._update_message(key, target_id, {"content": text})

    def _mark_summary_ready(self, key: str, target_id: str) -> None:
        self._update_message(key, target_id, {"meta": MessageMeta(show_summary_cta=True)})

    def _rate_limit_message(self, seconds: int | None, payload: dict[str, Any] | None) -> str:
        return stream_rate_limit_message(
            seconds,
            payload,
            retry_template=self.settings.rate_limit_retry_message,
            default_message=self.settings.rate_limit_default_message,
        )

    # ========== Stopping ==========

    def _detach(self, binding: _StreamBinding) -> None:
        binding.active = False
        binding.coalescer.discard()
        binding.stream.close()
        if self._streams.get(binding.key) is binding:
            del self._streams[binding.key]

    def _stop(
        self,
        binding: _StreamBinding,
        *,
        status: ConversationStatus = ConversationStatus.FAILED,
        failure_message: str | None = None,
    ) -> None:
        """Leave STREAMING: flush, unbind the stream and settle the placeholder."""
        if not binding.active:
            return
        if failure_message is None:
            binding.coalescer.flush()
        self._detach(binding)
        self._end_turn(binding.key, binding.target_id, status=status, failure_message=failure_message)

    def _end_turn(
        self,
        key: str,
        target_id: str,
        *,
        status: ConversationStatus = ConversationStatus.FAILED,
        failure_message: str | None = None,
    ) -> ConversationSession | None:
        """Settle the pending assistant message and clear the streaming fields.

        On failure a placeholder that already shows text gets the failure
        message; an empty placeholder is removed in every case.
        """
        if not self._is_live(key, target_id):
            return self.store.get(key)
        session = self.store.get(key)
        messages: list[Message] = []
        for message in session.messages:
            if message.id == target_id and message.role is MessageRole.ASSISTANT:
                if not message.content.strip():
                    continue
                if failure_message is not None:
                    message = message.model_copy(update={"content": failure_message})
            messages.append(message)

        fields: dict[str, Any] = {
            "messages": messages,
            "is_streaming": False,
            "pending_assistant_message_id": None,
            "status": ConversationStatus.FAILED if failure_message is not None else status,
        }
        if failure_message is not None:
            fields["last_error"] = failure_message
        return self.store.patch(key, **fields)
