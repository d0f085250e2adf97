"""Tests for SessionStore: session creation, roster and host lifecycle."""

import pytest

from tabledm.core.combat import CombatState, start_combat
from tabledm.core.errors import Forbidden, InvalidRequest, NotFound
from tabledm.db.session_store import _CODE_ALPHABET, generate_session_code


# ---------------------------------------------------------------------------
# Tests: creation
# ---------------------------------------------------------------------------

class TestCreate:
    def test_code_format(self):
        code = generate_session_code()
        assert len(code) == 7 and code[3] == "-"
        assert all(c in _CODE_ALPHABET for c in code.replace("-", ""))

    def test_create_starts_in_lobby_with_idle_combat(self, session_store, combat_store):
        created = session_store.create(campaign_name="  Lost Mine ", host_id="host-1")

        assert created["status"] == "lobby"
        assert created["campaign_name"] == "Lost Mine"
        assert created["characters"] == []

        stored = combat_store.load(created["id"])
        assert stored.state == CombatState()
        assert stored.version == 0

    def test_lookup_by_code(self, session_store):
        created = session_store.create(campaign_name="Lost Mine", host_id="host-1")
        found = session_store.get_by_code(created["session_code"].lower())
        assert found["id"] == created["id"]

    @pytest.mark.parametrize("kwargs", [
        {"campaign_name": "", "host_id": "host-1"},
        {"campaign_name": "X", "host_id": ""},
        {"campaign_name": "X", "host_id": "host-1", "max_players": 0},
    ])
    def test_create_validation(self, session_store, kwargs):
        with pytest.raises(InvalidRequest):
            session_store.create(**kwargs)

    def test_unknown_session(self, session_store):
        with pytest.raises(NotFound):
            session_store.get("missing")


# ---------------------------------------------------------------------------
# Tests: roster
# ---------------------------------------------------------------------------

class TestRoster:
    def test_roster_defaults_to_full_hp(self, session_store, game_session):
        roster = session_store.get_roster(game_session["id"])
        assert [(r.character_id, r.ac, r.current_hp) for r in roster] == [
            ("char-aria", 15, None), ("char-bram", 13, None),
        ]
        assert game_session["characters"][0]["current_hp"] == 20

    def test_duplicate_character_rejected(self, session_store, game_session):
        with pytest.raises(InvalidRequest):
            session_store.add_character(game_session["id"], "char-aria", "Aria again", max_hp=5)

    def test_full_session_rejected(self, session_store):
        created = session_store.create(campaign_name="Duo", host_id="host-1", max_players=1)
        session_store.add_character(created["id"], "c1", "One", max_hp=5)
        with pytest.raises(InvalidRequest):
            session_store.add_character(created["id"], "c2", "Two", max_hp=5)

    def test_non_positive_hp_rejected(self, session_store, game_session):
        with pytest.raises(InvalidRequest):
            session_store.add_character(game_session["id"], "c3", "Ghost", max_hp=0)


# ---------------------------------------------------------------------------
# Tests: lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:
    def test_only_host_can_start(self, session_store, game_session):
        with pytest.raises(Forbidden):
            session_store.start(game_session["id"], "someone-else")

    def test_start_resets_hp(self, session_store, game_session):
        started = session_store.start(game_session["id"], "host-1")
        assert started["status"] == "active"
        assert started["started_at"] is not None
        assert [r.current_hp for r in session_store.get_roster(game_session["id"])] == [20, 12]

    def test_cannot_start_twice(self, session_store, game_session):
        session_store.start(game_session["id"], "host-1")
        with pytest.raises(InvalidRequest):
            session_store.start(game_session["id"], "host-1")

    def test_pause_and_resume(self, session_store, game_session):
        session_store.start(game_session["id"], "host-1")
        assert session_store.pause(game_session["id"], "host-1")["status"] == "paused"
        assert session_store.resume(game_session["id"], "host-1")["status"] == "active"

    def test_cannot_pause_lobby(self, session_store, game_session):
        with pytest.raises(InvalidRequest):
            session_store.pause(game_session["id"], "host-1")

    def test_end_is_idempotent(self, session_store, game_session):
        first = session_store.end(game_session["id"], "host-1")
        second = session_store.end(game_session["id"], "host-1")
        assert first["status"] == second["status"] == "ended"
        assert first["ended_at"] == second["ended_at"]

    def test_no_characters_after_end(self, session_store, game_session):
        session_store.end(game_session["id"], "host-1")
        with pytest.raises(InvalidRequest):
            session_store.add_character(game_session["id"], "c9", "Late", max_hp=8)

    def test_end_clears_running_combat(self, session_store, combat_store, game_session, goblins):
        sid = game_session["id"]
        started = start_combat(session_store.get_roster(sid), goblins)
        assert combat_store.save(sid, started.state, 0) == 1

        session_store.end(sid, "host-1")

        stored = combat_store.load(sid)
        assert stored.state == CombatState()
        assert stored.state.active is False
        assert stored.version == 2

    def test_end_without_combat_keeps_version(self, session_store, combat_store, game_session):
        session_store.end(game_session["id"], "host-1")
        assert combat_store.load(game_session["id"]).version == 0
