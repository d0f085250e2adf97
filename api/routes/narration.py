"""Narration route: the LLM narrator describes an action and suggests combat changes."""

import logging

from fastapi import APIRouter

from tabledm.agents.narrator import narrate_action

from .models import NarrateRequest, NarrateResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{session_id}/narrate", response_model=NarrateResponse)
async def narrate(session_id: str, request: NarrateRequest):
    """Narrate a player action.

    A suggestion the combat service rejects is reported in
    ``suggestion_error``; the narrative is still returned.
    """
    result = await narrate_action(session_id, request.action)
    logger.info(
        f"Narrated action in {session_id}: applied={result.applied or 'nothing'}"
        + (f", rejected: {result.suggestion_error}" if result.suggestion_error else "")
    )
    return NarrateResponse(
        narrative=result.narrative,
        applied=result.applied,
        suggestion_error=result.suggestion_error,
        warnings=result.warnings,
        combat_state=result.combat_state,
    )
