"""
Combat Service: the public operation contract for combat.

Every caller (host, players submitting rolls, the narration oracle) goes
through these methods. Each one performs a read → mutate → write of the
session's combat document with two layers of protection against lost
updates:

1. A per-session lock serializes mutations within this process.
2. The stored version is checked on write (compare-and-swap); if another
   process wrote in between, the whole read-mutate-write is replayed.

The engine in ``tabledm.core.combat`` does the actual state transitions.
"""

import logging
import threading
import weakref
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

from ..config import Config
from ..db.combat_store import CombatStore, StoredCombat, get_combat_store
from ..db.session_store import SessionStore, get_session_store
from ..enums import CombatEventType, SessionStatus
from . import combat
from .combat import (
    CombatState,
    CombatUpdate,
    EndOutcome,
    EnemySpec,
    InitiativeEntry,
    InitiativeOutcome,
    StartOutcome,
    UpdateOutcome,
)
from .errors import ConcurrentUpdate, InvalidRequest, SessionPaused
from .events import CombatBroadcaster, CombatEvent, get_broadcaster

logger = logging.getLogger(__name__)


class _HasState(Protocol):
    state: CombatState


OutcomeT = TypeVar("OutcomeT", bound=_HasState)


class CombatService:
    """Serialized, versioned combat mutations for every session."""

    def __init__(
        self,
        combat_store: CombatStore | None = None,
        session_store: SessionStore | None = None,
        broadcaster: CombatBroadcaster | None = None,
        max_attempts: int | None = None,
    ):
        self.combat_store = combat_store or get_combat_store()
        self.session_store = session_store or get_session_store()
        self.broadcaster = broadcaster or get_broadcaster()
        self.max_attempts = max(1, max_attempts or Config.COMBAT_WRITE_RETRIES)

        # Dropped once no in-flight operation holds a reference
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # ── Operations ─────────────────────────────────────────────────────

    def get_state(self, session_id: str) -> StoredCombat:
        """Current combat state and version (read only)."""
        self._require_session_id(session_id)
        return self.combat_store.load(session_id)

    def start_combat(self, session_id: str, enemies: list[EnemySpec]) -> StartOutcome:
        """Start (or restart) an encounter; initiative comes next."""
        self._require_session_id(session_id)
        with self._session_lock(session_id):
            self._ensure_combat_allowed(session_id)

            def _start(state: CombatState) -> StartOutcome:
                # Re-read on every attempt; a replay must see the current roster
                return combat.start_combat(self.session_store.get_roster(session_id), enemies)

            return self._commit(session_id, CombatEventType.STARTED, _start)

    def record_initiative(self, session_id: str, entries: list[InitiativeEntry]) -> InitiativeOutcome:
        """Apply initiative rolls; locks turn order once everyone has rolled."""
        self._require_session_id(session_id)
        with self._session_lock(session_id):
            self._ensure_combat_allowed(session_id)
            return self._commit(
                session_id,
                CombatEventType.INITIATIVE,
                lambda state: combat.record_initiative(state, entries),
            )

    def roll_enemy_initiative(self, session_id: str) -> InitiativeOutcome:
        """Roll d20 initiative for every enemy that hasn't rolled yet."""
        self._require_session_id(session_id)
        with self._session_lock(session_id):
            self._ensure_combat_allowed(session_id)

            def _roll_and_record(state: CombatState) -> InitiativeOutcome:
                entries = combat.enemy_initiative_entries(state)
                if not entries and state.active:
                    return InitiativeOutcome(
                        state=state,
                        initiative_complete=bool(state.initiative_order),
                        turn_order=state.initiative_order or None,
                        warnings=["every enemy has already rolled initiative"],
                    )
                return combat.record_initiative(state, entries)

            return self._commit(session_id, CombatEventType.INITIATIVE, _roll_and_record)

    def apply_update(
        self,
        session_id: str,
        changes: CombatUpdate | None = None,
        advance_turn: bool = False,
    ) -> UpdateOutcome:
        """Apply damage/healing/conditions/kills and optionally advance the turn.

        Player HP is mirrored onto the session roster in the same write.
        """
        self._require_session_id(session_id)
        with self._session_lock(session_id):
            self._ensure_combat_allowed(session_id)
            outcome = self._commit(
                session_id,
                CombatEventType.UPDATED,
                lambda state: combat.apply_combat_update(state, changes, advance_turn),
                mirror_player_hp=True,
            )
            if outcome.combat_ended:
                logger.info(f"Combat in session {session_id} has ended")
            return outcome

    def end_combat(self, session_id: str) -> EndOutcome:
        """Clear combat. Always succeeds, including while paused or ended."""
        self._require_session_id(session_id)
        with self._session_lock(session_id):
            return self._commit(session_id, CombatEventType.ENDED, combat.end_combat)

    def end_session(self, session_id: str, user_id: str) -> dict[str, Any]:
        """End the session (host only); a running encounter ends with it."""
        self._require_session_id(session_id)
        with self._session_lock(session_id):
            before = self.combat_store.load(session_id)
            session = self.session_store.end(session_id, user_id)
            after = self.combat_store.load(session_id)
            if after.version != before.version:
                self._publish(session_id, CombatEventType.ENDED, after.state, after.version)
            return session

    # ── Internals ──────────────────────────────────────────────────────

    @staticmethod
    def _require_session_id(session_id: str) -> None:
        if not session_id:
            raise InvalidRequest("session_id is required")

    def _session_lock(self, session_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_id] = lock
            return lock

    def _ensure_combat_allowed(self, session_id: str) -> None:
        """Paused sessions freeze combat; ended sessions reject it."""
        status = self.session_store.get_status(session_id)
        if status == SessionStatus.PAUSED:
            raise SessionPaused()
        if status == SessionStatus.ENDED:
            raise InvalidRequest("Session has ended")

    def _commit(
        self,
        session_id: str,
        event_type: CombatEventType,
        operation: Callable[[CombatState], OutcomeT],
        mirror_player_hp: bool = False,
    ) -> OutcomeT:
        """Read, apply ``operation``, compare-and-swap write; replay on conflict.

        The operation must be pure: it may run more than once.
        """
        for attempt in range(1, self.max_attempts + 1):
            stored = self.combat_store.load(session_id)
            outcome = operation(stored.state)

            if outcome.state == stored.state:
                # Nothing changed; skip the write and the event
                return outcome

            version = self.combat_store.save(
                session_id,
                outcome.state,
                stored.version,
                mirror_player_hp=mirror_player_hp,
            )
            if version is not None:
                self._publish(session_id, event_type, outcome.state, version)
                return outcome

            logger.warning(
                f"Combat write conflict for {session_id} "
                f"(attempt {attempt}/{self.max_attempts}), replaying"
            )

        raise ConcurrentUpdate(
            "Combat state kept changing underneath this request; please retry"
        )

    def _publish(
        self,
        session_id: str,
        event_type: CombatEventType,
        state: CombatState,
        version: int,
    ) -> None:
        self.broadcaster.publish(CombatEvent(
            session_id=session_id,
            event_type=event_type,
            combat_state=state.model_dump(mode="json"),
            version=version,
            phase=state.phase.value,
        ))


# Singleton instance
_combat_service: CombatService | None = None


def get_combat_service() -> CombatService:
    """Get the global combat service."""
    global _combat_service
    if _combat_service is None:
        _combat_service = CombatService()
    return _combat_service


def reset_combat_service() -> None:
    """Drop the global combat service (tests, config reloads)."""
    global _combat_service
    _combat_service = None
