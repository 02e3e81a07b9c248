"""Session planning: pacing and tone knobs per safety level."""

from __future__ import annotations

from typing import Optional

from safegate.config import SessionConfigTable
from safegate.models import Level, SessionConfig, State

_DEFAULT_SESSION_TABLE = SessionConfigTable()

PROMPT_INTENSITY_LABELS = ("Minimal", "Low", "Medium", "High")


def adapt_session_config(
    level: Level, table: Optional[SessionConfigTable] = None
) -> SessionConfig:
    table = table or _DEFAULT_SESSION_TABLE
    config = table.by_level.get(level)
    if config is None:
        # Operator tables may omit a level; fall back to the built-in row.
        config = _DEFAULT_SESSION_TABLE.by_level[level]
    return config


def prompt_intensity_label(intensity: int) -> str:
    index = max(0, min(len(PROMPT_INTENSITY_LABELS) - 1, intensity))
    return PROMPT_INTENSITY_LABELS[index]


def should_trigger_scheduled_break(state: State, session_duration: float) -> bool:
    """Break every third of the planned session."""
    if session_duration <= 0:
        return False
    return state.time_since_break >= session_duration / 3
