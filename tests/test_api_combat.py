"""Tests for the combat HTTP routes (FastAPI TestClient)."""

import json

import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.routes.combat import stream_combat
from tabledm.core.combat import InitiativeEntry
from tabledm.core.combat_service import CombatService
from tabledm.core.errors import NotFound
from tabledm.core.events import CombatEvent
from tabledm.enums import CombatEventType


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def session_id(client):
    created = client.post("/api/sessions", json={"campaign_name": "Lost Mine", "host_id": "host-1"}).json()
    client.post(f"/api/sessions/{created['id']}/characters", json={
        "character_id": "char-aria", "name": "Aria", "max_hp": 20, "armor_class": 15,
    })
    return created["id"]


GOBLINS = [{"name": "Goblin", "count": 2, "hp": 7, "ac": 9, "attack_bonus": 4, "damage_dice": "1d6+2"}]


def _init_and_roll(client, session_id):
    client.post("/api/combat/init", json={"session_id": session_id, "enemies": GOBLINS})
    return client.post("/api/combat/initiative", json={"session_id": session_id, "initiatives": [
        {"id": "char-aria", "initiative": 15, "type": "player"},
        {"id": "goblin_1", "initiative": 10, "type": "enemy"},
        {"id": "goblin_2", "initiative": 8, "type": "enemy"},
    ]})


# ---------------------------------------------------------------------------
# Tests: full encounter over HTTP
# ---------------------------------------------------------------------------

class TestCombatFlow:
    def test_init(self, client, session_id):
        resp = client.post("/api/combat/init", json={"session_id": session_id, "enemies": GOBLINS})

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Combat initialized with 1 players and 2 enemies"
        enemies = body["combat_state"]["combatants"]["enemies"]
        assert [e["id"] for e in enemies] == ["goblin_1", "goblin_2"]
        assert body["combat_state"]["initiative_order"] == []

    def test_partial_then_complete_initiative(self, client, session_id):
        client.post("/api/combat/init", json={"session_id": session_id, "enemies": GOBLINS})

        partial = client.post("/api/combat/initiative", json={
            "session_id": session_id,
            "initiatives": [{"id": "char-aria", "initiative": 15, "type": "player"}],
        }).json()
        assert partial["initiative_complete"] is False
        assert partial["turn_order"] is None

        complete = client.post("/api/combat/initiative", json={
            "session_id": session_id,
            "initiatives": [{"id": "goblin_1", "initiative": 10}, {"id": "goblin_2", "initiative": 8}],
        }).json()
        assert complete["initiative_complete"] is True
        assert [r["id"] for r in complete["turn_order"]] == ["char-aria", "goblin_1", "goblin_2"]
        assert complete["combat_state"]["round"] == 1

    def test_roll_enemies(self, client, session_id):
        client.post("/api/combat/init", json={"session_id": session_id, "enemies": GOBLINS})
        client.post("/api/combat/initiative", json={
            "session_id": session_id, "initiatives": [{"id": "char-aria", "initiative": 12}],
        })

        body = client.post("/api/combat/initiative/roll-enemies", json={"session_id": session_id}).json()

        assert body["initiative_complete"] is True
        assert len(body["turn_order"]) == 3

    def test_update_until_combat_ends(self, client, session_id):
        _init_and_roll(client, session_id)

        first = client.post("/api/combat/update", json={
            "session_id": session_id,
            "changes": {"damage_dealt": [{"target_id": "goblin_1", "amount": 7}]},
        }).json()
        assert first["combat_ended"] is False

        second = client.post("/api/combat/update", json={
            "session_id": session_id,
            "changes": {"damage_dealt": [{"target_id": "goblin_2", "amount": 7}]},
            "advance_turn": True,
        }).json()
        assert second["combat_ended"] is True
        assert second["combat_state"]["active"] is False

    def test_update_mirrors_hp_to_session(self, client, session_id):
        _init_and_roll(client, session_id)
        client.post("/api/combat/update", json={
            "session_id": session_id,
            "changes": {"damage_dealt": [{"target_id": "char-aria", "amount": 25}]},
        })

        session = client.get(f"/api/sessions/{session_id}").json()
        assert session["characters"][0]["current_hp"] == 0

    def test_unknown_target_is_warning(self, client, session_id):
        _init_and_roll(client, session_id)
        body = client.post("/api/combat/update", json={
            "session_id": session_id,
            "changes": {"healing": [{"target_id": "nobody", "amount": 3}]},
        }).json()
        assert body["success"] is True
        assert body["warnings"]

    def test_get_state(self, client, session_id):
        _init_and_roll(client, session_id)
        body = client.get(f"/api/combat/{session_id}").json()
        assert body["phase"] == "resolving"
        assert body["version"] == 2

    def test_end_twice(self, client, session_id):
        _init_and_roll(client, session_id)
        first = client.post("/api/combat/end", json={"session_id": session_id})
        second = client.post("/api/combat/end", json={"session_id": session_id})

        assert first.json() == second.json() == {"success": True, "message": "Combat ended"}
        assert client.get(f"/api/combat/{session_id}").json()["phase"] == "idle"


# ---------------------------------------------------------------------------
# Tests: error mapping
# ---------------------------------------------------------------------------

class TestCombatErrors:
    def test_init_without_enemies(self, client, session_id):
        resp = client.post("/api/combat/init", json={"session_id": session_id, "enemies": []})
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_missing_session_id_is_400(self, client):
        resp = client.post("/api/combat/update", json={"changes": {}})
        assert resp.status_code == 400
        assert "session_id" in resp.json()["error"]

    def test_initiative_without_combat(self, client, session_id):
        resp = client.post("/api/combat/initiative", json={
            "session_id": session_id, "initiatives": [{"id": "char-aria", "initiative": 3}],
        })
        assert resp.status_code == 400
        assert resp.json()["error"] == "No active combat in this session"

    def test_negative_damage(self, client, session_id):
        _init_and_roll(client, session_id)
        resp = client.post("/api/combat/update", json={
            "session_id": session_id,
            "changes": {"damage_dealt": [{"target_id": "goblin_1", "amount": -3}]},
        })
        assert resp.status_code == 400

    def test_unknown_session(self, client):
        resp = client.get("/api/combat/missing")
        assert resp.status_code == 404
        assert client.get("/api/combat/missing/stream").status_code == 404

    def test_paused_session_is_409(self, client, session_id):
        _init_and_roll(client, session_id)
        client.post(f"/api/sessions/{session_id}/start", json={"user_id": "host-1"})
        client.post(f"/api/sessions/{session_id}/pause", json={"user_id": "host-1"})

        resp = client.post("/api/combat/update", json={"session_id": session_id, "advance_turn": True})
        assert resp.status_code == 409

        assert client.post("/api/combat/end", json={"session_id": session_id}).status_code == 200

    def test_ending_session_ends_combat(self, client, session_id):
        _init_and_roll(client, session_id)
        resp = client.post(f"/api/sessions/{session_id}/end", json={"user_id": "host-1"})
        assert resp.json()["status"] == "ended"

        state = client.get(f"/api/combat/{session_id}").json()
        assert state["combat_state"]["active"] is False
        assert state["phase"] == "idle"


# ---------------------------------------------------------------------------
# Tests: SSE stream
# ---------------------------------------------------------------------------

class StartsCombatOnFirstRead(CombatService):
    """Commits a change between the stream subscribing and reading its snapshot."""

    def __init__(self, enemies, **kwargs):
        super().__init__(**kwargs)
        self.enemies = enemies
        self.reads = 0

    def get_state(self, session_id):
        self.reads += 1
        if self.reads == 1:
            self.start_combat(session_id, self.enemies)
        return super().get_state(session_id)


def _frame_data(frame):
    assert frame.startswith("event: combat\ndata: ")
    return json.loads(frame.split("data: ", 1)[1])


class TestCombatStream:
    async def test_snapshot_then_changes(self, combat_store, session_store, broadcaster, solo_session, goblins):
        sid = solo_session["id"]
        service = StartsCombatOnFirstRead(
            goblins, combat_store=combat_store, session_store=session_store, broadcaster=broadcaster,
        )

        response = await stream_combat(sid, service=service)
        assert broadcaster.subscriber_count(sid) == 1

        # Committed before the client starts reading
        service.record_initiative(sid, [InitiativeEntry(id="char-aria", initiative=12)])

        body = response.body_iterator
        try:
            assert await body.__anext__() == ": connected\n\n"

            snapshot = _frame_data(await body.__anext__())
            assert snapshot["event"] == "snapshot"
            assert snapshot["version"] == 1
            assert snapshot["combat_state"]["active"] is True

            # The start event queued before the snapshot is already covered by it
            change = _frame_data(await body.__anext__())
            assert change["event"] == "initiative"
            assert change["version"] == 2
        finally:
            await body.aclose()

        assert broadcaster.subscriber_count(sid) == 0

    async def test_stale_events_are_skipped(self, combat_service, broadcaster, solo_session, goblins):
        sid = solo_session["id"]
        combat_service.start_combat(sid, goblins)

        response = await stream_combat(sid, service=combat_service)
        body = response.body_iterator
        try:
            await body.__anext__()
            assert _frame_data(await body.__anext__())["version"] == 1

            broadcaster.publish(CombatEvent(
                session_id=sid, event_type=CombatEventType.UPDATED,
                combat_state={}, version=1, phase="awaiting_initiative",
            ))
            combat_service.end_combat(sid)

            ended = _frame_data(await body.__anext__())
            assert (ended["event"], ended["version"], ended["phase"]) == ("ended", 2, "idle")
        finally:
            await body.aclose()

    async def test_unknown_session_leaves_no_subscriber(self, combat_service, broadcaster):
        with pytest.raises(NotFound):
            await stream_combat("missing", service=combat_service)
        assert broadcaster.subscriber_count("missing") == 0
