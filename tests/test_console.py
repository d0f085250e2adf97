"""Tests for the rich host console."""

from unittest.mock import patch

import pytest
from rich.console import Console

from tabledm.config import Config
from tabledm.core.combat import InitiativeEntry
from tabledm.core.errors import NotFound
from tabledm.main import _resolve_session_id, print_provider_info, render_combat


def _render(renderable) -> str:
    console = Console(record=True, width=100)
    console.print(renderable)
    return console.export_text()


class TestRenderCombat:
    def test_idle(self, combat_service, solo_session):
        state = combat_service.get_state(solo_session["id"]).state
        assert "No combat in progress" in _render(render_combat(state))

    def test_awaiting_initiative_lists_everyone(self, combat_service, game_session, goblins):
        state = combat_service.start_combat(game_session["id"], goblins).state
        text = _render(render_combat(state))

        assert "Awaiting initiative" in text
        for name in ("Aria", "Bram", "Goblin #1", "Goblin #2"):
            assert name in text

    def test_turn_marker_and_hp(self, combat_service, solo_session, goblins):
        sid = solo_session["id"]
        combat_service.start_combat(sid, goblins)
        state = combat_service.record_initiative(sid, [
            InitiativeEntry(id="char-aria", initiative=15),
            InitiativeEntry(id="goblin_1", initiative=10),
            InitiativeEntry(id="goblin_2", initiative=8),
        ]).state
        lines = _render(render_combat(state)).splitlines()

        assert any("Round 1" in line for line in lines)
        aria = next(line for line in lines if "Aria" in line)
        assert ">" in aria
        assert "20/20" in aria


class TestResolveSession:
    def test_by_id_or_code(self, game_session):
        assert _resolve_session_id(game_session["id"]) == game_session["id"]
        assert _resolve_session_id(game_session["session_code"].lower()) == game_session["id"]

    def test_unknown(self):
        with pytest.raises(NotFound):
            _resolve_session_id("nope")


class TestProviderInfo:
    def test_configured(self):
        assert print_provider_info() is True

    def test_no_key(self):
        with patch.object(Config, "ANTHROPIC_API_KEY", ""):
            assert print_provider_info() is False
