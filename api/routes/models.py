"""Pydantic request/response models for the TableDM API."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from tabledm.core.combat import CombatUpdate, EnemySpec, InitiativeEntry, ParticipantRef


# === Combat ===

class CombatInitRequest(BaseModel):
    """Start an encounter."""
    session_id: str = Field(min_length=1)
    enemies: List[EnemySpec] = []


class CombatInitResponse(BaseModel):
    success: bool = True
    combat_state: Dict[str, Any]
    message: str


class InitiativeRequest(BaseModel):
    """Submit one or more initiative rolls."""
    session_id: str = Field(min_length=1)
    initiatives: List[InitiativeEntry] = []


class SessionIdRequest(BaseModel):
    session_id: str = Field(min_length=1)


class InitiativeResponse(BaseModel):
    success: bool = True
    combat_state: Dict[str, Any]
    initiative_complete: bool
    turn_order: Optional[List[ParticipantRef]] = None
    warnings: List[str] = []


class CombatUpdateRequest(BaseModel):
    """Apply a batch of combat changes."""
    session_id: str = Field(min_length=1)
    changes: Optional[CombatUpdate] = None
    advance_turn: bool = False


class CombatUpdateResponse(BaseModel):
    success: bool = True
    combat_state: Dict[str, Any]
    combat_ended: bool
    warnings: List[str] = []


class CombatEndResponse(BaseModel):
    success: bool = True
    message: str


class CombatStateResponse(BaseModel):
    """Current combat state (read only)."""
    combat_state: Dict[str, Any]
    phase: str
    version: int


# === Sessions ===

class CreateSessionRequest(BaseModel):
    campaign_name: str
    host_id: str
    max_players: int = 6
    dm_language: str = "english"


class AddCharacterRequest(BaseModel):
    character_id: str
    name: str
    max_hp: int
    armor_class: int = 10
    added_by: Optional[str] = None


class HostActionRequest(BaseModel):
    """Lifecycle actions carry the acting user, checked against the host."""
    user_id: str


class RosterCharacter(BaseModel):
    character_id: str
    name: str
    armor_class: int
    max_hp: int
    current_hp: int


class SessionResponse(BaseModel):
    id: str
    session_code: str
    campaign_name: str
    host_id: str
    max_players: int
    dm_language: str
    status: str
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    characters: List[RosterCharacter] = []


# === Narration ===

class NarrateRequest(BaseModel):
    action: str


class NarrateResponse(BaseModel):
    narrative: str
    applied: List[str] = []
    suggestion_error: Optional[str] = None
    warnings: List[str] = []
    combat_state: Optional[Dict[str, Any]] = None
