"""Safety level assessment: GREEN -> YELLOW -> ORANGE -> RED.

Levels are recomputed from the current State and signals on every event,
with no memory of earlier levels, so recovery is immediate once the
triggers clear.
"""

from __future__ import annotations

from typing import Iterable, Optional

from safegate.config import LevelThresholds
from safegate.models import DISTRESS_SIGNALS, Level, Signal, State

_DEFAULT_THRESHOLDS = LevelThresholds()

# Frustration alone never escalates to RED.
_ACUTE_DISTRESS = DISTRESS_SIGNALS - {Signal.FRUSTRATION}


def is_red(state: State, signals: set[Signal], t: LevelThresholds) -> bool:
    if state.dysregulation_level >= t.red_dysregulation:
        return True
    if t.red_dysregulation_with_distress is not None:
        return bool(signals & _ACUTE_DISTRESS) and (
            state.dysregulation_level >= t.red_dysregulation_with_distress
        )
    return False


def is_orange(state: State, signals: set[Signal], t: LevelThresholds) -> bool:
    return (
        state.consecutive_errors >= t.orange_consecutive_errors
        or bool(signals & set(t.orange_signals))
        or state.dysregulation_level >= t.orange_dysregulation
        or (t.orange_fatigue is not None and state.fatigue_level >= t.orange_fatigue)
    )


def is_yellow(state: State, signals: set[Signal], t: LevelThresholds) -> bool:
    return (
        state.consecutive_errors >= t.yellow_consecutive_errors
        or bool(signals & set(t.yellow_signals))
        or state.engagement_level <= t.yellow_engagement_max
        or (
            t.yellow_dysregulation is not None
            and state.dysregulation_level >= t.yellow_dysregulation
        )
        or (t.yellow_fatigue is not None and state.fatigue_level >= t.yellow_fatigue)
    )


def assess_level(
    state: State,
    signals: Iterable[Signal],
    thresholds: Optional[LevelThresholds] = None,
) -> Level:
    """Return the most severe level whose trigger holds."""
    t = thresholds or _DEFAULT_THRESHOLDS
    signal_set = set(signals)
    if is_red(state, signal_set, t):
        return Level.RED
    if is_orange(state, signal_set, t):
        return Level.ORANGE
    if is_yellow(state, signal_set, t):
        return Level.YELLOW
    return Level.GREEN
