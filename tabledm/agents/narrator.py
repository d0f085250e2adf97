"""Narrator Agent - describe the scene and suggest combat bookkeeping.

The narrator is an untrusted client of the combat service: whatever it
suggests goes through the same public operations a human host would call,
with the same validation. A rejected suggestion never loses the narrative.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from ..core.combat import CombatUpdate, EnemySpec
from ..core.combat_service import CombatService, get_combat_service
from ..core.errors import InvalidRequest, NoActiveCombat, OracleFailure, SessionPaused
from .base import BaseAgent

logger = logging.getLogger(__name__)


class NarrationOutput(BaseModel):
    """Structured output for one narration beat."""

    narrative: str = Field(
        description="What happens next, told to the players in second person"
    )
    start_combat: list[EnemySpec] | None = Field(
        default=None,
        description="Enemies to start a new encounter with. Only when combat is not already active."
    )
    combat_update: CombatUpdate | None = Field(
        default=None,
        description="Damage, healing, conditions and kills that happened in this beat. Use combatant ids from the combat state."
    )
    advance_turn: bool = Field(
        default=False,
        description="True when the current combatant's turn is over"
    )
    end_combat: bool = Field(
        default=False,
        description="True when the fight ends without every enemy dying (surrender, escape)"
    )


_SYSTEM_PROMPT = """You are the Dungeon Master for a tabletop role-playing game shared by several players.

Narrate the outcome of the player's action vividly in two to four sentences.

You also keep the combat bookkeeping honest:
- Only reference combatants by the ids that appear in the combat state.
- Report damage and healing as positive amounts.
- Start combat only when hostilities actually begin and no combat is active.
- Never invent hit points; the engine clamps and tracks them.

Respond by calling the 'respond' tool."""


class NarratorAgent(BaseAgent):
    """Narrates player actions and proposes combat state changes."""

    agent_name = "narrator"

    @property
    def output_schema(self):
        return NarrationOutput

    @property
    def system_prompt(self) -> str:
        return _SYSTEM_PROMPT


@dataclass
class NarrationResult:
    """What a narrate request produced."""
    narrative: str
    applied: list[str] = field(default_factory=list)
    suggestion_error: str | None = None
    combat_state: dict[str, Any] | None = None
    warnings: list[str] = field(default_factory=list)


async def narrate_action(
    session_id: str,
    action: str,
    service: CombatService | None = None,
    agent: NarratorAgent | None = None,
) -> NarrationResult:
    """Narrate a player action and apply the narrator's combat suggestion.

    Raises:
        NotFound: unknown session
        InvalidRequest: empty action
        OracleFailure: the LLM call failed (nothing applied)
    """
    if not action or not action.strip():
        raise InvalidRequest("action is required")

    service = service or get_combat_service()
    agent = agent or NarratorAgent()

    # Combat service calls block on the database; keep them off the event loop
    stored = await asyncio.to_thread(service.get_state, session_id)

    try:
        output = await agent.call(
            action.strip(),
            combat_state=json.dumps(stored.state.model_dump(mode="json"), indent=2),
        )
    except Exception as e:
        logger.error(f"Narrator failed for session {session_id}: {e}")
        raise OracleFailure(f"Narration failed: {e}") from e

    result = NarrationResult(narrative=output.narrative)

    try:
        await asyncio.to_thread(_apply_suggestion, session_id, output, service, result)
    except (InvalidRequest, NoActiveCombat, SessionPaused) as e:
        logger.warning(f"Narrator suggestion rejected for session {session_id}: {e.message}")
        result.suggestion_error = e.message

    current = await asyncio.to_thread(service.get_state, session_id)
    result.combat_state = current.state.model_dump(mode="json")
    return result


def _apply_suggestion(
    session_id: str,
    output: NarrationOutput,
    service: CombatService,
    result: NarrationResult,
) -> None:
    if output.end_combat:
        service.end_combat(session_id)
        result.applied.append("end_combat")
        return

    if output.start_combat:
        service.start_combat(session_id, output.start_combat)
        result.applied.append("start_combat")
        return

    has_changes = output.combat_update is not None and not output.combat_update.is_empty()
    if has_changes or output.advance_turn:
        outcome = service.apply_update(session_id, output.combat_update, output.advance_turn)
        result.applied.append("combat_update")
        result.warnings.extend(outcome.warnings)
        if outcome.combat_ended:
            result.applied.append("combat_ended")
