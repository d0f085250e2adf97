"""
Canonical string enumerations for TableDM.

StrEnum values serialize as plain strings, so they're
drop-in replacements for raw string literals. No migration is
needed for database columns, JSON payloads, or LLM schemas.
"""

from enum import StrEnum


# ── Combat ─────────────────────────────────────────────────────────────

class CombatantKind(StrEnum):
    """Which side of the encounter a participant belongs to."""
    PLAYER = "player"
    ENEMY = "enemy"


class CombatPhase(StrEnum):
    """Derived phase of the combat state machine (never stored)."""
    IDLE = "idle"                                # active=false
    AWAITING_INITIATIVE = "awaiting_initiative"  # active, initiative_order empty
    RESOLVING = "resolving"                      # active, initiative_order populated


class CombatEventType(StrEnum):
    """Events pushed to realtime observers after a committed mutation."""
    STARTED = "started"
    INITIATIVE = "initiative"
    UPDATED = "updated"
    ENDED = "ended"
    SNAPSHOT = "snapshot"  # first frame on a new stream, never published


# ── Sessions ───────────────────────────────────────────────────────────

class SessionStatus(StrEnum):
    """Lifecycle of a game session (lobby → active ⇄ paused → ended)."""
    LOBBY = "lobby"
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"
