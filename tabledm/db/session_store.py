"""Session Store: SQLAlchemy persistence for game sessions and their rosters.

A game session owns three kinds of rows: the session itself, its roster
(session_characters) and a single game_states row that holds the combat
document alongside other per-session mutable fields.
"""

import logging
import random
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session as SQLAlchemySession

from ..core.combat import CombatState, RosterEntry
from ..core.errors import Forbidden, InvalidRequest, NotFound
from ..enums import SessionStatus
from .models import GameSession, GameState, SessionCharacter
from .session import storage_session

logger = logging.getLogger(__name__)

# No 0/O or 1/I so codes survive being read aloud at the table
_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
_MAX_CODE_ATTEMPTS = 20


def generate_session_code() -> str:
    """Random join code like "K7Q-M2X"."""
    left = "".join(random.choice(_CODE_ALPHABET) for _ in range(3))
    right = "".join(random.choice(_CODE_ALPHABET) for _ in range(3))
    return f"{left}-{right}"


def _get_session_row(db: SQLAlchemySession, session_id: str) -> GameSession:
    session = db.query(GameSession).filter(GameSession.id == session_id).first()
    if session is None:
        raise NotFound(f"Session not found: {session_id}")
    return session


def _require_host(session: GameSession, user_id: str, action: str) -> None:
    if session.host_id != user_id:
        raise Forbidden(f"Only the host can {action} the session")


def _serialize(session: GameSession) -> dict[str, Any]:
    return {
        "id": session.id,
        "session_code": session.session_code,
        "campaign_name": session.campaign_name,
        "host_id": session.host_id,
        "max_players": session.max_players,
        "dm_language": session.dm_language,
        "status": SessionStatus(session.status).value,
        "created_at": session.created_at.isoformat() if session.created_at else None,
        "started_at": session.started_at.isoformat() if session.started_at else None,
        "ended_at": session.ended_at.isoformat() if session.ended_at else None,
        "characters": [
            {
                "character_id": c.character_id,
                "name": c.name,
                "armor_class": c.armor_class,
                "max_hp": c.max_hp,
                "current_hp": c.current_hp if c.current_hp is not None else c.max_hp,
            }
            for c in session.characters
        ],
    }


class SessionStore:
    """Persists game sessions, rosters and their game-state rows."""

    def create(
        self,
        campaign_name: str,
        host_id: str,
        max_players: int = 6,
        dm_language: str = "english",
    ) -> dict[str, Any]:
        """Create a session in the lobby, with an idle combat state.

        Returns:
            Serialized session dict
        """
        if not campaign_name or not campaign_name.strip():
            raise InvalidRequest("campaign_name is required")
        if not host_id:
            raise InvalidRequest("host_id is required")
        if max_players < 1:
            raise InvalidRequest("max_players must be at least 1")

        with storage_session("create session") as db:
            code = generate_session_code()
            attempts = 1
            while db.query(GameSession.id).filter(GameSession.session_code == code).first():
                if attempts >= _MAX_CODE_ATTEMPTS:
                    raise InvalidRequest("Could not allocate a unique session code, try again")
                code = generate_session_code()
                attempts += 1

            session = GameSession(
                campaign_name=campaign_name.strip(),
                host_id=host_id,
                session_code=code,
                max_players=max_players,
                dm_language=dm_language,
                status=SessionStatus.LOBBY,
            )
            db.add(session)
            db.flush()

            db.add(GameState(
                session_id=session.id,
                combat_state=CombatState().model_dump(mode="json"),
                combat_version=0,
            ))
            db.flush()

            logger.info(f"Created session {session.id} ({code}) for host {host_id}")
            return _serialize(session)

    def get(self, session_id: str) -> dict[str, Any]:
        """Load a session with its roster.

        Raises:
            NotFound: unknown session id
        """
        with storage_session("load session") as db:
            return _serialize(_get_session_row(db, session_id))

    def get_by_code(self, session_code: str) -> dict[str, Any]:
        with storage_session("load session") as db:
            session = (
                db.query(GameSession)
                .filter(GameSession.session_code == session_code.strip().upper())
                .first()
            )
            if session is None:
                raise NotFound(f"No session with code {session_code}")
            return _serialize(session)

    def get_status(self, session_id: str) -> SessionStatus:
        with storage_session("load session") as db:
            return SessionStatus(_get_session_row(db, session_id).status)

    def add_character(
        self,
        session_id: str,
        character_id: str,
        name: str,
        max_hp: int,
        armor_class: int = 10,
        added_by: str | None = None,
    ) -> dict[str, Any]:
        """Put a character on the session roster.

        Raises:
            NotFound: unknown session
            InvalidRequest: bad stats, duplicate character, full roster, ended session
        """
        if not character_id or not name:
            raise InvalidRequest("character_id and name are required")
        if max_hp <= 0:
            raise InvalidRequest(f"max_hp must be positive, got {max_hp}")

        with storage_session("add character") as db:
            session = _get_session_row(db, session_id)
            if session.status == SessionStatus.ENDED:
                raise InvalidRequest("Cannot add characters to an ended session")
            if any(c.character_id == character_id for c in session.characters):
                raise InvalidRequest(f"Character {character_id} is already in this session")
            if len(session.characters) >= (session.max_players or 0):
                raise InvalidRequest("Session is full")

            session.characters.append(SessionCharacter(
                character_id=character_id,
                name=name,
                armor_class=armor_class,
                max_hp=max_hp,
                current_hp=None,
                added_by=added_by,
            ))
            db.flush()
            return _serialize(session)

    def get_roster(self, session_id: str) -> list[RosterEntry]:
        """The roster as combat sees it."""
        with storage_session("load roster") as db:
            session = _get_session_row(db, session_id)
            return [
                RosterEntry(
                    character_id=c.character_id,
                    name=c.name,
                    max_hp=c.max_hp,
                    ac=c.armor_class,
                    current_hp=c.current_hp,
                )
                for c in session.characters
            ]

    # ── Lifecycle (host only) ──────────────────────────────────────────

    def start(self, session_id: str, user_id: str) -> dict[str, Any]:
        """Lobby → active. Every roster character starts at full HP."""
        with storage_session("start session") as db:
            session = _get_session_row(db, session_id)
            _require_host(session, user_id, "start")
            if session.status != SessionStatus.LOBBY:
                raise InvalidRequest(f"Session is {session.status}, only a lobby can be started")

            session.status = SessionStatus.ACTIVE
            session.started_at = datetime.utcnow()
            for character in session.characters:
                character.current_hp = character.max_hp

            logger.info(f"Session {session_id} started with {len(session.characters)} characters")
            return _serialize(session)

    def pause(self, session_id: str, user_id: str) -> dict[str, Any]:
        """Active → paused. Combat is frozen while paused."""
        return self._transition(session_id, user_id, "pause", SessionStatus.ACTIVE, SessionStatus.PAUSED)

    def resume(self, session_id: str, user_id: str) -> dict[str, Any]:
        """Paused → active."""
        return self._transition(session_id, user_id, "resume", SessionStatus.PAUSED, SessionStatus.ACTIVE)

    def end(self, session_id: str, user_id: str) -> dict[str, Any]:
        """Any state → ended. Ending twice is harmless.

        A running encounter is cleared in the same transaction, and its
        version bumped so concurrent combat writers lose their swap.
        """
        with storage_session("end session") as db:
            session = _get_session_row(db, session_id)
            _require_host(session, user_id, "end")
            if session.status != SessionStatus.ENDED:
                session.status = SessionStatus.ENDED
                session.ended_at = datetime.utcnow()
                logger.info(f"Session {session_id} ended")

            game_state = db.query(GameState).filter(GameState.session_id == session_id).first()
            cleared = CombatState()
            if game_state is not None and CombatState.from_stored(game_state.combat_state) != cleared:
                game_state.combat_state = cleared.model_dump(mode="json")
                game_state.combat_version = (game_state.combat_version or 0) + 1
                logger.info(f"Combat in session {session_id} cleared with the session")
            return _serialize(session)

    def _transition(
        self,
        session_id: str,
        user_id: str,
        action: str,
        expected: SessionStatus,
        target: SessionStatus,
    ) -> dict[str, Any]:
        with storage_session(f"{action} session") as db:
            session = _get_session_row(db, session_id)
            _require_host(session, user_id, action)
            if session.status != expected:
                raise InvalidRequest(f"Cannot {action} a session that is {session.status}")
            session.status = target
            logger.info(f"Session {session_id}: {expected} -> {target}")
            return _serialize(session)


# Singleton instance
_session_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    """Get the global session store instance."""
    global _session_store
    if _session_store is None:
        _session_store = SessionStore()
    return _session_store
