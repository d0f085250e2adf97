"""Combat routes: the host's and players' combat operations, plus an SSE feed."""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from tabledm.config import Config
from tabledm.core.combat_service import CombatService, get_combat_service
from tabledm.core.events import CombatEvent
from tabledm.enums import CombatEventType

from .models import (
    CombatEndResponse,
    CombatInitRequest,
    CombatInitResponse,
    CombatStateResponse,
    CombatUpdateRequest,
    CombatUpdateResponse,
    InitiativeRequest,
    InitiativeResponse,
    SessionIdRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/init", response_model=CombatInitResponse)
def init_combat(request: CombatInitRequest, service: CombatService = Depends(get_combat_service)):
    """Start an encounter against the given enemy templates."""
    outcome = service.start_combat(request.session_id, request.enemies)
    return CombatInitResponse(
        combat_state=outcome.state.model_dump(mode="json"),
        message=outcome.message,
    )


@router.post("/initiative", response_model=InitiativeResponse)
def submit_initiative(request: InitiativeRequest, service: CombatService = Depends(get_combat_service)):
    """Record initiative rolls; the response says whether the order is locked."""
    outcome = service.record_initiative(request.session_id, request.initiatives)
    return InitiativeResponse(
        combat_state=outcome.state.model_dump(mode="json"),
        initiative_complete=outcome.initiative_complete,
        turn_order=outcome.turn_order,
        warnings=outcome.warnings,
    )


@router.post("/initiative/roll-enemies", response_model=InitiativeResponse)
def roll_enemy_initiative(request: SessionIdRequest, service: CombatService = Depends(get_combat_service)):
    """Roll d20 initiative for every enemy that hasn't rolled."""
    outcome = service.roll_enemy_initiative(request.session_id)
    return InitiativeResponse(
        combat_state=outcome.state.model_dump(mode="json"),
        initiative_complete=outcome.initiative_complete,
        turn_order=outcome.turn_order,
        warnings=outcome.warnings,
    )


@router.post("/update", response_model=CombatUpdateResponse)
def update_combat(request: CombatUpdateRequest, service: CombatService = Depends(get_combat_service)):
    outcome = service.apply_update(request.session_id, request.changes, request.advance_turn)
    return CombatUpdateResponse(
        combat_state=outcome.state.model_dump(mode="json"),
        combat_ended=outcome.combat_ended,
        warnings=outcome.warnings,
    )


@router.post("/end", response_model=CombatEndResponse)
def end_combat(request: SessionIdRequest, service: CombatService = Depends(get_combat_service)):
    outcome = service.end_combat(request.session_id)
    return CombatEndResponse(message=outcome.message)


@router.get("/{session_id}", response_model=CombatStateResponse)
def get_combat_state(session_id: str, service: CombatService = Depends(get_combat_service)):
    """Current combat state, its derived phase and storage version."""
    stored = service.get_state(session_id)
    return CombatStateResponse(
        combat_state=stored.state.model_dump(mode="json"),
        phase=stored.state.phase.value,
        version=stored.version,
    )


def _sse_frame(event: CombatEvent) -> str:
    return f"event: combat\ndata: {json.dumps(event.to_dict())}\n\n"


@router.get("/{session_id}/stream")
async def stream_combat(session_id: str, service: CombatService = Depends(get_combat_service)):
    """Stream committed combat changes for a session via SSE.

    The first frame is a snapshot of the current state so a client that
    connects mid-fight never has to poll. The subscription opens before the
    snapshot is read, so a change committed in between is still delivered;
    queued events at or below the snapshot version are dropped.
    """
    broadcaster = service.broadcaster
    queue, callback = broadcaster.open_queue(session_id)
    try:
        # Raises NotFound before the stream opens
        stored = await asyncio.to_thread(service.get_state, session_id)
    except BaseException:
        broadcaster.unsubscribe(session_id, callback)
        raise
    logger.info(f"Combat stream opened for {session_id} ({broadcaster.subscriber_count(session_id)} listeners)")

    async def event_generator():
        try:
            yield ": connected\n\n"
            yield _sse_frame(CombatEvent(
                session_id=session_id,
                event_type=CombatEventType.SNAPSHOT,
                combat_state=stored.state.model_dump(mode="json"),
                version=stored.version,
                phase=stored.state.phase.value,
            ))

            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=Config.SSE_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if event.version <= stored.version:
                    continue
                yield _sse_frame(event)
        finally:
            broadcaster.unsubscribe(session_id, callback)
            logger.info(f"Combat stream closed for {session_id}")

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
        # The generator may never start if the client leaves first
        background=BackgroundTask(broadcaster.unsubscribe, session_id, callback),
    )
