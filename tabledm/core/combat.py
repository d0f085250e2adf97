"""
Combat state engine for TableDM.

Owns the shape of the single combat-state document stored per session and
the pure, synchronous operations over it:

- start_combat: expand enemy templates, seed players from the roster
- record_initiative: apply rolls, lock the turn order once everyone rolled
- apply_combat_update: damage → healing → conditions → kills → turn
  advance → end-of-combat check, in that fixed order
- end_combat: clear the encounter

Nothing here touches storage. Every operation works on a deep copy and
returns an outcome object holding the new state, so a rejected request
leaves the caller's state untouched and the caller decides what to persist.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from pydantic import AliasChoices, BaseModel, Field

from ..enums import CombatantKind, CombatPhase
from .dice import RollResult, parse_dice_notation, roll_initiative
from .errors import InvalidRequest, NoActiveCombat

logger = logging.getLogger(__name__)


# ── Data model ─────────────────────────────────────────────────────────

class ParticipantRef(BaseModel):
    """Lightweight entry in the initiative order.

    Not the source of truth for HP/AC; those live on the combatant
    records and are looked up by id.
    """
    id: str
    name: str
    initiative: int
    kind: CombatantKind


class PlayerCombatant(BaseModel):
    """A player character inside an encounter."""
    character_id: str
    name: str
    current_hp: int
    max_hp: int
    ac: int
    initiative: Optional[int] = None  # None = not rolled yet
    conditions: list[str] = Field(default_factory=list)

    @property
    def is_conscious(self) -> bool:
        return self.current_hp > 0


class EnemyCombatant(BaseModel):
    """A single enemy generated from an EnemySpec template."""
    id: str                 # e.g. "goblin_1"
    name: str               # e.g. "Goblin #1"
    current_hp: int
    max_hp: int
    ac: int
    initiative: Optional[int] = None
    attack_bonus: int = 0
    damage_dice: str = "1d4"
    is_alive: bool = True   # stored redundantly; always == current_hp > 0
    conditions: list[str] = Field(default_factory=list)


class Combatants(BaseModel):
    players: list[PlayerCombatant] = Field(default_factory=list)
    enemies: list[EnemyCombatant] = Field(default_factory=list)


class CombatState(BaseModel):
    """The combat-state document. One per session, replaced on write."""
    active: bool = False
    round: int = 0
    turn_index: int = 0
    initiative_order: list[ParticipantRef] = Field(default_factory=list)
    combatants: Combatants = Field(default_factory=Combatants)

    @classmethod
    def from_stored(cls, data: Optional[dict[str, Any]]) -> "CombatState":
        """Load from a stored JSON blob; a missing blob means idle."""
        if not data:
            return cls()
        return cls.model_validate(data)

    @property
    def phase(self) -> CombatPhase:
        if not self.active:
            return CombatPhase.IDLE
        if not self.initiative_order:
            return CombatPhase.AWAITING_INITIATIVE
        return CombatPhase.RESOLVING

    @property
    def current_participant(self) -> Optional[ParticipantRef]:
        """Whose turn it is, or None before initiative is locked."""
        if not self.initiative_order:
            return None
        return self.initiative_order[self.turn_index]

    def find_player(self, character_id: str) -> Optional[PlayerCombatant]:
        for player in self.combatants.players:
            if player.character_id == character_id:
                return player
        return None

    def find_enemy(self, enemy_id: str) -> Optional[EnemyCombatant]:
        for enemy in self.combatants.enemies:
            if enemy.id == enemy_id:
                return enemy
        return None

    def find_combatant(self, target_id: str) -> Optional[PlayerCombatant | EnemyCombatant]:
        return self.find_player(target_id) or self.find_enemy(target_id)


# ── Request shapes ─────────────────────────────────────────────────────

class EnemySpec(BaseModel):
    """An enemy template; expanded into ``count`` individual enemies."""
    name: str
    count: int = 1
    hp: int
    ac: int
    attack_bonus: int = 0
    damage_dice: str = "1d4"


class RosterEntry(BaseModel):
    """The character-sheet snapshot combat needs for one roster member."""
    character_id: str
    name: str
    max_hp: int
    ac: int
    current_hp: Optional[int] = None  # None = never damaged this session


class InitiativeEntry(BaseModel):
    id: str
    initiative: int
    # Clients send this as "type"
    kind: Optional[CombatantKind] = Field(
        default=None, validation_alias=AliasChoices("kind", "type")
    )


class HpChange(BaseModel):
    target_id: str
    amount: int


class ConditionChange(BaseModel):
    target_id: str
    conditions: list[str] = Field(default_factory=list)


class CombatUpdate(BaseModel):
    """A batch of combat mutations, usually suggested by the narrator."""
    damage_dealt: list[HpChange] = Field(
        default_factory=list, validation_alias=AliasChoices("damage_dealt", "damage")
    )
    healing: list[HpChange] = Field(default_factory=list)
    conditions_added: list[ConditionChange] = Field(default_factory=list)
    conditions_removed: list[ConditionChange] = Field(default_factory=list)
    enemies_killed: list[str] = Field(default_factory=list)
    turn_complete: bool = False

    def is_empty(self) -> bool:
        return not (
            self.damage_dealt or self.healing or self.conditions_added
            or self.conditions_removed or self.enemies_killed or self.turn_complete
        )


# ── Outcomes ───────────────────────────────────────────────────────────

@dataclass
class StartOutcome:
    state: CombatState
    message: str


@dataclass
class InitiativeOutcome:
    state: CombatState
    initiative_complete: bool
    turn_order: Optional[list[ParticipantRef]]
    warnings: list[str] = field(default_factory=list)


@dataclass
class UpdateOutcome:
    state: CombatState
    combat_ended: bool
    warnings: list[str] = field(default_factory=list)


@dataclass
class EndOutcome:
    state: CombatState
    message: str


# ── StartCombat ────────────────────────────────────────────────────────

_WHITESPACE = re.compile(r"\s+")


def enemy_slug(name: str) -> str:
    """Id prefix for an enemy template: "Giant Rat" -> "giant_rat"."""
    return _WHITESPACE.sub("_", name.strip().lower())


def _validate_enemy_specs(enemy_specs: list[EnemySpec]) -> None:
    if not enemy_specs:
        raise InvalidRequest("enemies are required to start combat")

    for spec in enemy_specs:
        if not spec.name or not spec.name.strip():
            raise InvalidRequest("every enemy needs a name")
        if spec.count <= 0:
            raise InvalidRequest(f"enemy '{spec.name}' count must be positive, got {spec.count}")
        if spec.hp <= 0:
            raise InvalidRequest(f"enemy '{spec.name}' hp must be positive, got {spec.hp}")
        if parse_dice_notation(spec.damage_dice) is None:
            raise InvalidRequest(
                f"enemy '{spec.name}' has invalid damage dice '{spec.damage_dice}'"
            )


def build_enemies(enemy_specs: list[EnemySpec]) -> list[EnemyCombatant]:
    """Expand templates into individual enemies with unique ids.

    Numbering continues across templates that share a slug, so two
    "Goblin" templates of 2 and 1 produce goblin_1, goblin_2, goblin_3.
    """
    counters: dict[str, int] = {}
    enemies: list[EnemyCombatant] = []

    for spec in enemy_specs:
        slug = enemy_slug(spec.name)
        for _ in range(spec.count):
            counters[slug] = counters.get(slug, 0) + 1
            n = counters[slug]
            enemies.append(EnemyCombatant(
                id=f"{slug}_{n}",
                name=f"{spec.name.strip()} #{n}",
                current_hp=spec.hp,
                max_hp=spec.hp,
                ac=spec.ac,
                attack_bonus=spec.attack_bonus,
                damage_dice=spec.damage_dice,
            ))

    return enemies


def build_players(roster: Iterable[RosterEntry]) -> list[PlayerCombatant]:
    """Seed player combatants from the session roster."""
    players = []
    for entry in roster:
        max_hp = max(1, entry.max_hp)
        current = entry.current_hp if entry.current_hp is not None else max_hp
        players.append(PlayerCombatant(
            character_id=entry.character_id,
            name=entry.name,
            current_hp=_clamp(current, 0, max_hp),
            max_hp=max_hp,
            ac=entry.ac,
        ))
    return players


def start_combat(roster: list[RosterEntry], enemy_specs: list[EnemySpec]) -> StartOutcome:
    """Create a fresh encounter, awaiting initiative.

    Replaces any previous combat state.

    Raises:
        InvalidRequest: no enemies, a non-positive count or hp, unparseable
            damage dice, or nobody on the roster able to fight
    """
    _validate_enemy_specs(enemy_specs)

    players = build_players(roster)
    if not any(p.is_conscious for p in players):
        raise InvalidRequest("session has no conscious characters to fight")

    enemies = build_enemies(enemy_specs)

    state = CombatState(
        active=True,
        round=0,
        turn_index=0,
        initiative_order=[],
        combatants=Combatants(players=players, enemies=enemies),
    )

    message = f"Combat initialized with {len(players)} players and {len(enemies)} enemies"
    logger.info(message)
    return StartOutcome(state=state, message=message)


# ── RecordInitiative ───────────────────────────────────────────────────

def _all_rolled(state: CombatState) -> bool:
    return (
        all(p.initiative is not None for p in state.combatants.players)
        and all(e.initiative is not None for e in state.combatants.enemies)
    )


def build_initiative_order(state: CombatState) -> list[ParticipantRef]:
    """Players (roster order) then enemies, stable-sorted by initiative, high first."""
    participants = [
        ParticipantRef(id=p.character_id, name=p.name, initiative=p.initiative, kind=CombatantKind.PLAYER)
        for p in state.combatants.players
    ] + [
        ParticipantRef(id=e.id, name=e.name, initiative=e.initiative, kind=CombatantKind.ENEMY)
        for e in state.combatants.enemies
    ]
    # sorted() is stable, so ties keep insertion order
    return sorted(participants, key=lambda ref: ref.initiative, reverse=True)


def record_initiative(state: CombatState, entries: list[InitiativeEntry]) -> InitiativeOutcome:
    """Apply initiative rolls and lock the turn order once everyone has rolled.

    Unmatched ids are ignored (late or partial data is normal). Once the
    order is locked it never changes for the rest of the encounter, so
    entries arriving afterwards are ignored too.

    Raises:
        NoActiveCombat: combat isn't active
        InvalidRequest: no entries supplied
    """
    if not state.active:
        raise NoActiveCombat()
    if not entries:
        raise InvalidRequest("initiatives are required")

    state = state.model_copy(deep=True)
    warnings: list[str] = []

    if state.initiative_order:
        warnings.append("initiative order is already locked for this encounter; rolls ignored")
        return InitiativeOutcome(
            state=state,
            initiative_complete=True,
            turn_order=state.initiative_order,
            warnings=warnings,
        )

    for entry in entries:
        target = None
        if entry.kind in (None, CombatantKind.PLAYER):
            target = state.find_player(entry.id)
        if target is None and entry.kind in (None, CombatantKind.ENEMY):
            target = state.find_enemy(entry.id)

        if target is None:
            kind = entry.kind.value if entry.kind else "combatant"
            warnings.append(f"initiative ignored: no {kind} with id '{entry.id}'")
            continue
        target.initiative = entry.initiative

    if not _all_rolled(state):
        return InitiativeOutcome(state=state, initiative_complete=False, turn_order=None, warnings=warnings)

    state.initiative_order = build_initiative_order(state)
    state.turn_index = 0
    state.round = 1  # combat officially starts

    logger.info(
        "Initiative complete: "
        + ", ".join(f"{ref.name}({ref.initiative})" for ref in state.initiative_order)
    )
    return InitiativeOutcome(
        state=state,
        initiative_complete=True,
        turn_order=state.initiative_order,
        warnings=warnings,
    )


def enemy_initiative_entries(
    state: CombatState,
    roller: Callable[[], RollResult] = roll_initiative,
) -> list[InitiativeEntry]:
    """Roll initiative for every enemy that hasn't rolled yet (the DM's side)."""
    return [
        InitiativeEntry(id=enemy.id, initiative=roller().total, kind=CombatantKind.ENEMY)
        for enemy in state.combatants.enemies
        if enemy.initiative is None
    ]


# ── ApplyCombatUpdate ──────────────────────────────────────────────────

def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _validate_update(changes: CombatUpdate) -> None:
    """Reject the whole update before anything is applied."""
    for label, items in (("damage", changes.damage_dealt), ("healing", changes.healing)):
        for item in items:
            if not item.target_id:
                raise InvalidRequest(f"{label} entry is missing target_id")
            if item.amount < 0:
                raise InvalidRequest(
                    f"{label} amount for '{item.target_id}' must not be negative, got {item.amount}"
                )
    for label, items in (
        ("conditions_added", changes.conditions_added),
        ("conditions_removed", changes.conditions_removed),
    ):
        for item in items:
            if not item.target_id:
                raise InvalidRequest(f"{label} entry is missing target_id")
    for enemy_id in changes.enemies_killed:
        if not enemy_id:
            raise InvalidRequest("enemies_killed contains an empty id")


def _apply_damage(state: CombatState, changes: CombatUpdate, warnings: list[str]) -> None:
    for hit in changes.damage_dealt:
        target = state.find_combatant(hit.target_id)
        if target is None:
            warnings.append(f"damage ignored: no combatant with id '{hit.target_id}'")
            continue
        target.current_hp = max(0, target.current_hp - hit.amount)
        if isinstance(target, EnemyCombatant) and target.current_hp == 0:
            target.is_alive = False


def _apply_healing(state: CombatState, changes: CombatUpdate, warnings: list[str]) -> None:
    for heal in changes.healing:
        target = state.find_combatant(heal.target_id)
        if target is None:
            warnings.append(f"healing ignored: no combatant with id '{heal.target_id}'")
            continue
        if isinstance(target, EnemyCombatant) and not target.is_alive:
            warnings.append(f"healing ignored: enemy '{heal.target_id}' is already dead")
            continue
        target.current_hp = min(target.max_hp, target.current_hp + heal.amount)


def _apply_conditions(
    state: CombatState,
    items: list[ConditionChange],
    add: bool,
    warnings: list[str],
) -> None:
    for item in items:
        target = state.find_combatant(item.target_id)
        if target is None:
            verb = "added" if add else "removed"
            warnings.append(f"conditions not {verb}: no combatant with id '{item.target_id}'")
            continue
        wanted = [c.strip() for c in item.conditions if c and c.strip()]
        if add:
            for condition in wanted:
                if condition not in target.conditions:
                    target.conditions.append(condition)
        else:
            target.conditions = [c for c in target.conditions if c not in wanted]


def _apply_kills(state: CombatState, changes: CombatUpdate, warnings: list[str]) -> None:
    for enemy_id in changes.enemies_killed:
        enemy = state.find_enemy(enemy_id)
        if enemy is None:
            if state.find_player(enemy_id) is not None:
                warnings.append(f"kill ignored: '{enemy_id}' is a player, not an enemy")
            else:
                warnings.append(f"kill ignored: no enemy with id '{enemy_id}'")
            continue
        enemy.is_alive = False
        enemy.current_hp = 0


def _step_turn(state: CombatState) -> None:
    state.turn_index += 1
    if state.turn_index >= len(state.initiative_order):
        state.turn_index = 0
        state.round += 1


def advance_turn(state: CombatState, warnings: Optional[list[str]] = None) -> None:
    """Move to the next participant in place, skipping dead enemies.

    Players are never skipped, even at 0 HP (unconscious, not removed).
    The skip loop covers the order at most once.
    """
    if not state.initiative_order:
        if warnings is not None:
            warnings.append("turn advance ignored: initiative has not been rolled yet")
        return

    _step_turn(state)
    for _ in range(len(state.initiative_order)):
        current = state.initiative_order[state.turn_index]
        if current.kind == CombatantKind.ENEMY:
            enemy = state.find_enemy(current.id)
            if enemy is not None and not enemy.is_alive:
                _step_turn(state)
                continue
        break


def is_combat_over(state: CombatState) -> bool:
    """True when every enemy is dead or every player is down."""
    all_enemies_dead = all(not e.is_alive for e in state.combatants.enemies)
    all_players_down = all(p.current_hp == 0 for p in state.combatants.players)
    return all_enemies_dead or all_players_down


def apply_combat_update(
    state: CombatState,
    changes: Optional[CombatUpdate] = None,
    advance: bool = False,
) -> UpdateOutcome:
    """Apply one batch of combat mutations as a single logical step.

    Order is fixed: damage, healing, conditions added, conditions removed,
    explicit kills, turn advance (if ``advance`` or ``changes.turn_complete``),
    then the end-of-combat check, which runs unconditionally.

    Raises:
        NoActiveCombat: combat isn't active
        InvalidRequest: negative amounts or missing target ids (nothing applied)
    """
    if not state.active:
        raise NoActiveCombat()

    changes = changes or CombatUpdate()
    _validate_update(changes)

    state = state.model_copy(deep=True)
    warnings: list[str] = []

    _apply_damage(state, changes, warnings)
    _apply_healing(state, changes, warnings)
    _apply_conditions(state, changes.conditions_added, True, warnings)
    _apply_conditions(state, changes.conditions_removed, False, warnings)
    _apply_kills(state, changes, warnings)

    if advance or changes.turn_complete:
        advance_turn(state, warnings)

    if is_combat_over(state):
        state.active = False
        logger.info(f"Combat over after round {state.round}")

    for warning in warnings:
        logger.warning(f"Combat update: {warning}")

    return UpdateOutcome(state=state, combat_ended=not state.active, warnings=warnings)


# ── EndCombat ──────────────────────────────────────────────────────────

def end_combat(state: Optional[CombatState] = None) -> EndOutcome:
    """Clear the encounter. Always succeeds; ending twice is the same as once."""
    if state is not None and state.active:
        logger.info(f"Combat ended explicitly in round {state.round}")
    return EndOutcome(state=CombatState(), message="Combat ended")
