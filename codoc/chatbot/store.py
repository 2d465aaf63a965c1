"""Session store - per-problem conversation sessions.

A mapping from problem identifier to ``ConversationSession`` snapshots.
All mutations are synchronous and last-writer-wins; subscribers are
notified after each mutation, in mutation order.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from codoc.chatbot.models import ConversationSession

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from codoc.chatbot.models import Message

logger = logging.getLogger(__name__)


def _normalize_key(key: Any) -> str | None:
    if key is None or key == "":
        return None
    return str(key)


class SessionStore:
    """In-memory store of conversation sessions keyed by problem id.

    Usage::

        store = SessionStore()
        store.init(42, [intro])
        store.patch(42, draft_input="hello")
        store.get(42).draft_input  # "hello"
    """

    def __init__(self) -> None:
        self._sessions: dict[str, ConversationSession] = {}
        self._listeners: list[Callable[[str, ConversationSession | None], None]] = []

    def get(self, key: Any) -> ConversationSession | None:
        normalized = _normalize_key(key)
        if normalized is None:
            return None
        return self._sessions.get(normalized)

    def sessions(self) -> dict[str, ConversationSession]:
        return dict(self._sessions)

    def init(self, key: Any, seed_messages: Iterable[Message] = ()) -> ConversationSession | None:
        """Create a session seeded with ``seed_messages`` only if absent."""
        normalized = _normalize_key(key)
        if normalized is None:
            return None
        existing = self._sessions.get(normalized)
        if existing is not None:
            return existing
        return self._set(normalized, ConversationSession(messages=tuple(seed_messages)))

    def patch(self, key: Any, **fields: Any) -> ConversationSession | None:
        """Shallow-merge fields into a session, creating a default one if missing."""
        normalized = _normalize_key(key)
        if normalized is None:
            return None
        previous = self._sessions.get(normalized) or ConversationSession()
        if "messages" in fields:
            fields["messages"] = tuple(fields["messages"])
        return self._set(normalized, previous.model_copy(update=fields))

    def reset(self, key: Any) -> ConversationSession | None:
        """Replace a session with a fresh default, discarding its history."""
        normalized = _normalize_key(key)
        if normalized is None:
            return None
        return self._set(normalized, ConversationSession())

    def clear_all(self) -> None:
        """Discard every session."""
        keys = list(self._sessions)
        self._sessions = {}
        logger.debug("Cleared %d chatbot sessions", len(keys))
        for key in keys:
            self._notify(key, None)

    def subscribe(
        self, listener: Callable[[str, ConversationSession | None], None]
    ) -> Callable[[], None]:
        """Register a change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set(self, key: str, session: ConversationSession) -> ConversationSession:
        self._sessions[key] = session
        self._notify(key, session)
        return session

    def _notify(self, key: str, session: ConversationSession | None) -> None:
        for listener in list(self._listeners):
            listener(key, session)
