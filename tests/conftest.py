"""
Shared test fixtures for the TableDM test suite.

Provides:
- MockLLMProvider: deterministic LLM stub (no API keys needed)
- Database fixtures: fresh in-memory SQLite per test
- Session fixtures: a lobby session with a roster, ready for combat
"""

import os
from collections import deque
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

# Set test environment BEFORE any tabledm imports
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ANTHROPIC_API_KEY", "test-key")

from pydantic import BaseModel

import tabledm.core.combat_service as combat_service_module
import tabledm.core.events as events_module
from tabledm.core.combat import EnemySpec
from tabledm.core.combat_service import CombatService
from tabledm.core.events import CombatBroadcaster
from tabledm.db.combat_store import CombatStore
from tabledm.db.session import get_engine, init_db, reset_engine
from tabledm.db.session_store import SessionStore
from tabledm.llm.provider import LLMProvider

# ---------------------------------------------------------------------------
# MockLLMProvider: deterministic stub
# ---------------------------------------------------------------------------

class MockLLMProvider(LLMProvider):
    """Provider that answers structured calls from a queue.

    Usage:
        provider = MockLLMProvider()
        provider.queue_schema_response(NarrationOutput(narrative="..."))
        result = await provider.complete_with_schema(messages=[...], schema=NarrationOutput)

    With nothing queued, the schema's defaults come back unvalidated.
    """

    name = "mock"
    default_model = "mock-model"

    def __init__(self):
        super().__init__(api_key="mock-key", max_retries=0)
        self._queue: deque[BaseModel | Exception] = deque()
        self.call_history: list[dict[str, Any]] = []

    def queue_schema_response(self, instance: BaseModel):
        self._queue.append(instance)

    def queue_schema_error(self, error: Exception):
        """Make the next structured call raise ``error``."""
        self._queue.append(error)

    def _create_client(self):
        return None

    async def complete_with_schema(self, messages, schema, system=None, model=None, max_tokens=1024):
        self.call_history.append({
            "messages": messages,
            "schema": schema,
            "system": system,
            "model": model,
            "max_tokens": max_tokens,
        })
        if not self._queue:
            return schema.model_construct()
        queued = self._queue.popleft()
        if isinstance(queued, Exception):
            raise queued
        return queued


# ---------------------------------------------------------------------------
# Fixtures: LLM
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_provider():
    """Fresh MockLLMProvider instance."""
    return MockLLMProvider()


@pytest.fixture
def mock_llm_manager(mock_provider):
    """Patch get_llm_manager to return a manager using MockLLMProvider."""
    manager = MagicMock()
    manager.get_provider.return_value = mock_provider
    manager.get_provider_for_agent.return_value = (mock_provider, "mock-model")
    manager.primary_provider = "mock"

    with patch("tabledm.llm.manager.get_llm_manager", return_value=manager):
        # Also patch agents.base where it's imported directly
        with patch("tabledm.agents.base.get_llm_manager", return_value=manager):
            yield manager


# ---------------------------------------------------------------------------
# Fixtures: database and services
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def fresh_db():
    """Give every test a brand-new in-memory database and fresh singletons."""
    reset_engine()
    combat_service_module.reset_combat_service()
    events_module._broadcaster = None
    init_db()
    yield get_engine()
    reset_engine()


@pytest.fixture
def session_store():
    return SessionStore()


@pytest.fixture
def combat_store():
    return CombatStore()


@pytest.fixture
def broadcaster():
    return CombatBroadcaster()


@pytest.fixture
def combat_service(combat_store, session_store, broadcaster):
    return CombatService(
        combat_store=combat_store,
        session_store=session_store,
        broadcaster=broadcaster,
    )


@pytest.fixture
def game_session(session_store):
    """A lobby session hosted by 'host-1' with two characters on the roster."""
    created = session_store.create(campaign_name="Lost Mine", host_id="host-1")
    session_store.add_character(created["id"], character_id="char-aria", name="Aria", max_hp=20, armor_class=15)
    session_store.add_character(created["id"], character_id="char-bram", name="Bram", max_hp=12, armor_class=13)
    return session_store.get(created["id"])


@pytest.fixture
def solo_session(session_store):
    """A session with a single 20 HP character."""
    created = session_store.create(campaign_name="Solo Run", host_id="host-1")
    session_store.add_character(created["id"], character_id="char-aria", name="Aria", max_hp=20, armor_class=15)
    return session_store.get(created["id"])


@pytest.fixture
def goblins():
    return [EnemySpec(name="Goblin", count=2, hp=7, ac=9, attack_bonus=4, damage_dice="1d6+2")]
