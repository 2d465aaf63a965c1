"""Shared test fixtures for Codoc.

Provides settings, clock, governor, store and engine fixtures used
across the unit tests.
"""

from datetime import UTC, datetime

import pytest

from codoc.chatbot.store import SessionStore
from codoc.ratelimit import RateLimitGovernor
from codoc.settings import Settings
from tests.helpers.sse import ScriptedBackend, make_test_settings

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


# =============================================================================
# SETTINGS
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Provide test settings with safe defaults."""
    return make_test_settings()


# =============================================================================
# CLOCK / RATE LIMIT
# =============================================================================


@pytest.fixture
def fixed_now():
    """Deterministic clock for Retry-After tests."""
    return lambda: FIXED_NOW


@pytest.fixture
def governor() -> RateLimitGovernor:
    return RateLimitGovernor()


# =============================================================================
# CHATBOT
# =============================================================================


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def backend() -> ScriptedBackend:
    """Scripted backend; tests assign ``stream_response`` / ``send_response``."""
    return ScriptedBackend()


@pytest.fixture
async def client(backend, governor, test_settings, fixed_now):
    """ChatbotClient wired to the scripted backend."""
    from codoc.api.client import ChatbotClient

    client = ChatbotClient(
        test_settings.api_base_url,
        governor=governor,
        token_supplier=lambda: "test-token",
        timeout=test_settings.request_timeout,
        transport=backend.transport(),
        now=fixed_now,
    )
    yield client
    await client.close()


@pytest.fixture
async def engine(client, store, test_settings):
    """ChatbotEngine over the scripted backend."""
    from codoc.chatbot.conversation import ChatbotEngine

    engine = ChatbotEngine(client, store, settings=test_settings)
    yield engine
    await engine.shutdown()
