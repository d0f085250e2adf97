"""Session lobby routes: create, join roster, and host lifecycle actions."""

import logging

from fastapi import APIRouter, Depends

from tabledm.core.combat_service import CombatService, get_combat_service
from tabledm.db.session_store import SessionStore, get_session_store

from .models import (
    AddCharacterRequest,
    CreateSessionRequest,
    HostActionRequest,
    SessionResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=SessionResponse)
def create_session(request: CreateSessionRequest, store: SessionStore = Depends(get_session_store)):
    """Create a session in the lobby with a fresh join code."""
    return store.create(
        campaign_name=request.campaign_name,
        host_id=request.host_id,
        max_players=request.max_players,
        dm_language=request.dm_language,
    )


@router.get("/code/{session_code}", response_model=SessionResponse)
def get_session_by_code(session_code: str, store: SessionStore = Depends(get_session_store)):
    return store.get_by_code(session_code)


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    return store.get(session_id)


@router.post("/{session_id}/characters", response_model=SessionResponse)
def add_character(
    session_id: str,
    request: AddCharacterRequest,
    store: SessionStore = Depends(get_session_store),
):
    """Put a character on the roster."""
    return store.add_character(
        session_id,
        character_id=request.character_id,
        name=request.name,
        max_hp=request.max_hp,
        armor_class=request.armor_class,
        added_by=request.added_by,
    )


@router.post("/{session_id}/start", response_model=SessionResponse)
def start_session(session_id: str, request: HostActionRequest, store: SessionStore = Depends(get_session_store)):
    """Host only: lobby → active, every character back to full HP."""
    return store.start(session_id, request.user_id)


@router.post("/{session_id}/pause", response_model=SessionResponse)
def pause_session(session_id: str, request: HostActionRequest, store: SessionStore = Depends(get_session_store)):
    return store.pause(session_id, request.user_id)


@router.post("/{session_id}/resume", response_model=SessionResponse)
def resume_session(session_id: str, request: HostActionRequest, store: SessionStore = Depends(get_session_store)):
    return store.resume(session_id, request.user_id)


@router.post("/{session_id}/end", response_model=SessionResponse)
def end_session(
    session_id: str,
    request: HostActionRequest,
    service: CombatService = Depends(get_combat_service),
):
    """End the session; any running encounter is cleared and announced."""
    return service.end_session(session_id, request.user_id)
