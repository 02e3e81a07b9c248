"""Intervention selection per safety level."""

from __future__ import annotations

from typing import Iterable, Optional

from safegate.config import InterventionTable
from safegate.models import Intervention, Level, Signal, State

_DEFAULT_TABLE = InterventionTable()


def select_interventions(
    level: Level,
    state: State,
    signals: Iterable[Signal] = (),
    table: Optional[InterventionTable] = None,
) -> list[Intervention]:
    """Ordered interventions for the UI; the first one is the default action."""
    table = table or _DEFAULT_TABLE
    rows = table.by_level.get(level)
    if rows is None:
        rows = _DEFAULT_TABLE.by_level[level]
    interventions = list(rows)

    if (
        level == Level.ORANGE
        and state.dysregulation_level >= table.bubble_breathing_dysregulation
        and Intervention.BUBBLE_BREATHING not in interventions
    ):
        interventions.insert(0, Intervention.BUBBLE_BREATHING)

    if level == Level.RED:
        # An adult must always be reachable at RED, whatever the table says.
        if Intervention.CALL_GROWNUP in interventions:
            interventions.remove(Intervention.CALL_GROWNUP)
        interventions.insert(0, Intervention.CALL_GROWNUP)

    return interventions
