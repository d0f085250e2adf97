"""Dice engine: notation parsing and random rolls."""

import random
import re
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel


class RollType(Enum):
    """Roll advantage/disadvantage type."""
    NORMAL = "normal"
    ADVANTAGE = "advantage"      # Roll 2d20, take higher
    DISADVANTAGE = "disadvantage" # Roll 2d20, take lower


class DiceExpression(BaseModel):
    """A parsed dice notation such as ``1d6+2``."""
    count: int
    sides: int
    modifier: int = 0

    def __str__(self) -> str:
        if self.modifier > 0:
            return f"{self.count}d{self.sides}+{self.modifier}"
        if self.modifier < 0:
            return f"{self.count}d{self.sides}{self.modifier}"
        return f"{self.count}d{self.sides}"


class RollResult(BaseModel):
    """Complete result of a roll."""
    notation: str
    rolls: List[int] = []
    modifier: int = 0
    total: int


_DICE_PATTERN = re.compile(r"^\s*(\d*)\s*[dD]\s*(\d+)\s*(?:([+-])\s*(\d+))?\s*$")

# Sanity bounds so an LLM-suggested "9999d9999" can't stall a request
MAX_DICE_COUNT = 100
MAX_DICE_SIDES = 1000


def parse_dice_notation(notation: str) -> Optional[DiceExpression]:
    """Parse dice notation (e.g. "2d6", "d20", "1d8-1").

    Args:
        notation: The dice string

    Returns:
        DiceExpression, or None if the string isn't valid notation
    """
    if not notation:
        return None
    match = _DICE_PATTERN.match(notation)
    if not match:
        return None

    count = int(match.group(1)) if match.group(1) else 1
    sides = int(match.group(2))
    modifier = 0
    if match.group(3):
        modifier = int(match.group(4))
        if match.group(3) == "-":
            modifier = -modifier

    if not (1 <= count <= MAX_DICE_COUNT) or not (2 <= sides <= MAX_DICE_SIDES):
        return None

    return DiceExpression(count=count, sides=sides, modifier=modifier)


def roll_d20() -> int:
    """Roll a d20."""
    return random.randint(1, 20)


def roll_with_advantage(roll_type: RollType = RollType.NORMAL) -> Tuple[int, List[int]]:
    """Roll d20 with advantage or disadvantage.

    Args:
        roll_type: NORMAL, ADVANTAGE, or DISADVANTAGE

    Returns:
        Tuple of (result, all_rolls)
    """
    if roll_type == RollType.NORMAL:
        roll = roll_d20()
        return roll, [roll]

    rolls = [roll_d20(), roll_d20()]

    if roll_type == RollType.ADVANTAGE:
        return max(rolls), rolls
    else:  # DISADVANTAGE
        return min(rolls), rolls


def roll_initiative(modifier: int = 0, roll_type: RollType = RollType.NORMAL) -> RollResult:
    """Roll initiative: d20 plus a modifier.

    The natural roll is always 1-20, so the result is only below 1 when
    the modifier is negative enough.
    """
    raw, all_rolls = roll_with_advantage(roll_type)
    return RollResult(
        notation="1d20" if modifier == 0 else str(DiceExpression(count=1, sides=20, modifier=modifier)),
        rolls=all_rolls,
        modifier=modifier,
        total=raw + modifier,
    )
