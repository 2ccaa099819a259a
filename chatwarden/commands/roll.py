# -*- coding: utf-8 -*-
"""Location: ./chatwarden/commands/roll.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Dice rolling built-in: ``roll [N]d<S>[+|-M]``.

Examples:
    >>> parse_dice("2d6+3")
    DiceExpression(count=2, sides=6, modifier=3)
    >>> parse_dice("d20")
    DiceExpression(count=1, sides=20, modifier=0)
    >>> parse_dice("banana") is None
    True
"""

# Future
from __future__ import annotations

# Standard
from dataclasses import dataclass
import random
import re
from typing import Optional, Tuple

# First-Party
from chatwarden.errors import CommandUsageError
from chatwarden.services.command_registry import BuiltinCommandSpec, CommandContext

_DICE_PATTERN = re.compile(r"^(\d*)d(\d+)(?:\s*([+-])\s*(\d+))?$", re.IGNORECASE)

MAX_DICE = 100
MIN_SIDES = 2
MAX_SIDES = 1000
MAX_MODIFIER = 10000


@dataclass(frozen=True)
class DiceExpression:
    """Parsed dice notation."""

    count: int
    sides: int
    modifier: int

    def __str__(self) -> str:
        base = f"{self.count}d{self.sides}" if self.count > 1 else f"d{self.sides}"
        if self.modifier > 0:
            return f"{base}+{self.modifier}"
        if self.modifier < 0:
            return f"{base}{self.modifier}"
        return base


@dataclass(frozen=True)
class DiceResult:
    """Individual rolls and total of one expression."""

    expression: DiceExpression
    rolls: Tuple[int, ...]
    total: int

    def format_summary(self) -> str:
        """One-line summary, e.g. ``2d6+3 -> [4, 5] + 3 = 12``."""
        rolls = ", ".join(str(r) for r in self.rolls)
        mod = self.expression.modifier
        if mod > 0:
            return f"\U0001f3b2 {self.expression} → [{rolls}] + {mod} = {self.total}"
        if mod < 0:
            return f"\U0001f3b2 {self.expression} → [{rolls}] - {abs(mod)} = {self.total}"
        return f"\U0001f3b2 {self.expression} → [{rolls}] = {self.total}"


def parse_dice(notation: str) -> Optional[DiceExpression]:
    """Parse dice notation.

    Args:
        notation: Text such as ``"2d6+3"``.

    Returns:
        Optional[DiceExpression]: None if the text is not dice notation.

    Raises:
        CommandUsageError: If the notation breaks a limit.
    """
    match = _DICE_PATTERN.match(notation.strip())
    if match is None:
        return None
    count_str, sides_str, operator, mod_str = match.groups()
    count = int(count_str) if count_str else 1
    sides = int(sides_str)
    modifier = int(mod_str) if mod_str else 0
    if operator == "-":
        modifier = -modifier

    if not 1 <= count <= MAX_DICE:
        raise CommandUsageError(f"Dice count must be between 1 and {MAX_DICE}, got {count}")
    if not MIN_SIDES <= sides <= MAX_SIDES:
        raise CommandUsageError(f"Die sides must be between {MIN_SIDES} and {MAX_SIDES}, got {sides}")
    if abs(modifier) > MAX_MODIFIER:
        raise CommandUsageError(f"Modifier must be between -{MAX_MODIFIER} and +{MAX_MODIFIER}")
    return DiceExpression(count=count, sides=sides, modifier=modifier)


def roll_dice(expression: DiceExpression, rng: Optional[random.Random] = None) -> DiceResult:
    """Roll an expression.

    Args:
        expression: What to roll.
        rng: Random source; the module generator when omitted.

    Returns:
        DiceResult: The outcome.
    """
    source = rng or random
    rolls = tuple(source.randint(1, expression.sides) for _ in range(expression.count))
    return DiceResult(expression=expression, rolls=rolls, total=sum(rolls) + expression.modifier)


async def handle_roll(context: CommandContext) -> Optional[str]:
    """Roll the dice named in the arguments (``d6`` by default)."""
    notation = context.invocation.raw_args or "d6"
    expression = parse_dice(notation)
    if expression is None:
        raise CommandUsageError(f"Not dice notation: {notation}. Try `roll 2d6+3`.")
    return roll_dice(expression).format_summary()


SPEC = BuiltinCommandSpec(name="roll", handler=handle_roll, summary="Roll dice", usage="[N]d<S>[+|-M]")
