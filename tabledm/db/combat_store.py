"""Combat Store: versioned persistence of the per-session combat document.

The combat state lives in ``game_states.combat_state`` next to unrelated
per-session fields, so writes are partial-field UPDATEs that touch only
``combat_state`` and ``combat_version``. The version column is a
compare-and-swap token: a write only lands if nobody else wrote since
our read.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update

from ..core.combat import CombatState
from ..core.errors import NotFound
from .models import GameState, SessionCharacter
from .session import storage_session

logger = logging.getLogger(__name__)


@dataclass
class StoredCombat:
    """A combat state together with the version it was read at."""
    session_id: str
    state: CombatState
    version: int


class CombatStore:
    """Reads and compare-and-swap writes of combat state."""

    def load(self, session_id: str) -> StoredCombat:
        """Read the combat state and its version.

        Raises:
            NotFound: the session has no game-state row
            StorageFailure: the read failed
        """
        with storage_session("load combat state") as db:
            row = (
                db.query(GameState.combat_state, GameState.combat_version)
                .filter(GameState.session_id == session_id)
                .first()
            )
            if row is None:
                raise NotFound(f"Session not found: {session_id}")

            return StoredCombat(
                session_id=session_id,
                state=CombatState.from_stored(row.combat_state),
                version=row.combat_version or 0,
            )

    def save(
        self,
        session_id: str,
        state: CombatState,
        expected_version: int,
        mirror_player_hp: bool = False,
    ) -> int | None:
        """Write the combat state if nobody else has since ``expected_version``.

        Player HP mirroring into the roster happens in the same transaction,
        so either both land or neither does.

        Args:
            session_id: Owning session
            state: The full new combat state
            expected_version: Version the caller read
            mirror_player_hp: Copy each player's current_hp onto the roster

        Returns:
            The new version, or None if the version check failed (nothing written)

        Raises:
            StorageFailure: the write failed (nothing written)
        """
        with storage_session("save combat state") as db:
            result = db.execute(
                update(GameState)
                .where(
                    GameState.session_id == session_id,
                    GameState.combat_version == expected_version,
                )
                .values(
                    combat_state=state.model_dump(mode="json"),
                    combat_version=expected_version + 1,
                    updated_at=datetime.utcnow(),
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                logger.warning(
                    f"Combat state for {session_id} changed since version {expected_version}; not written"
                )
                return None

            if mirror_player_hp:
                for player in state.combatants.players:
                    (
                        db.query(SessionCharacter)
                        .filter(
                            SessionCharacter.session_id == session_id,
                            SessionCharacter.character_id == player.character_id,
                        )
                        .update({"current_hp": player.current_hp}, synchronize_session=False)
                    )

            logger.debug(f"Combat state for {session_id} saved at version {expected_version + 1}")
            return expected_version + 1


# Singleton instance
_combat_store: CombatStore | None = None


def get_combat_store() -> CombatStore:
    """Get the global combat store instance."""
    global _combat_store
    if _combat_store is None:
        _combat_store = CombatStore()
    return _combat_store
