"""Unit tests for SessionStore."""

from codoc.chatbot.models import (
    ConversationSession,
    ConversationStatus,
    Message,
    MessageRole,
    build_message_id,
    intro_message,
)
from codoc.chatbot.store import SessionStore


def _intro():
    return intro_message("Welcome!")


class TestSessionStoreInit:
    """Tests for init()."""

    def test_creates_seeded_session(self):
        store = SessionStore()
        session = store.init(1, [_intro()])
        assert session.messages == (_intro(),)
        assert session.status is ConversationStatus.IDLE
        assert session.is_streaming is False
        assert session.pending_assistant_message_id is None

    def test_is_idempotent(self):
        store = SessionStore()
        store.init(1, [_intro()])
        store.patch(1, draft_input="keep me")
        session = store.init(1, [])
        assert session.draft_input == "keep me"
        assert len(session.messages) == 1

    def test_keys_are_normalized(self):
        store = SessionStore()
        store.init(7)
        assert store.get("7") is store.get(7)

    def test_empty_key_ignored(self):
        store = SessionStore()
        assert store.init(None) is None
        assert store.init("") is None
        assert store.sessions() == {}


class TestSessionStorePatch:
    """Tests for patch()."""

    def test_shallow_merge(self):
        store = SessionStore()
        store.init(1, [_intro()])
        session = store.patch(1, draft_input="hi", last_error="oops")
        assert session.draft_input == "hi"
        assert session.last_error == "oops"
        assert session.messages == (_intro(),)

    def test_creates_default_session_when_missing(self):
        store = SessionStore()
        session = store.patch("new", draft_input="x")
        assert session.draft_input == "x"
        assert session.messages == ()

    def test_messages_list_stored_as_tuple(self):
        store = SessionStore()
        message = Message(id="m1", role=MessageRole.USER, content="hello")
        session = store.patch(1, messages=[message])
        assert session.messages == (message,)

    def test_previous_snapshot_unchanged(self):
        store = SessionStore()
        before = store.init(1)
        store.patch(1, draft_input="changed")
        assert before.draft_input == ""


class TestSessionStoreResetAndClear:
    """Tests for reset() and clear_all()."""

    def test_reset_discards_history(self):
        store = SessionStore()
        store.init(1, [_intro()])
        session = store.reset(1)
        assert session == ConversationSession()

    def test_clear_all(self):
        store = SessionStore()
        store.init(1)
        store.init(2)
        store.clear_all()
        assert store.sessions() == {}
        assert store.get(1) is None


class TestSessionStoreSubscribe:
    """Tests for change notification."""

    def test_listener_sees_mutations_in_order(self):
        store = SessionStore()
        seen = []
        store.subscribe(lambda key, session: seen.append((key, session.draft_input if session else None)))

        store.init(1)
        store.patch(1, draft_input="a")
        store.patch(1, draft_input="b")
        store.clear_all()

        assert seen == [("1", ""), ("1", "a"), ("1", "b"), ("1", None)]

    def test_unsubscribe(self):
        store = SessionStore()
        seen = []
        unsubscribe = store.subscribe(lambda key, session: seen.append(key))
        unsubscribe()
        unsubscribe()
        store.init(1)
        assert seen == []


class TestModels:
    """Tests for message helpers."""

    def test_message_ids_are_unique(self):
        ids = {build_message_id() for _ in range(200)}
        assert len(ids) == 200
        assert all(message_id.startswith("msg-") for message_id in ids)

    def test_find_message(self):
        message = Message(id="m1", role=MessageRole.ASSISTANT, content="x")
        session = ConversationSession(messages=(message,))
        assert session.find_message("m1") is message
        assert session.find_message("missing") is None
