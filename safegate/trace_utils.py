"""Helpers for reading recorded pipeline traces."""

from __future__ import annotations

from typing import Any, Iterable

from safegate.models import Level


def condense_level_timeline(trace: Iterable[dict[str, Any]]) -> list[str]:
    """Return the level sequence with consecutive duplicates removed."""
    timeline: list[str] = []
    for event in trace:
        level = str(event.get("level", "")).strip()
        if not level:
            continue
        if not timeline or timeline[-1] != level:
            timeline.append(level)
    return timeline


def count_fallbacks(trace: Iterable[dict[str, Any]]) -> int:
    return sum(1 for event in trace if event.get("used_fallback"))


def extract_state_metrics(trace: Iterable[dict[str, Any]]) -> list[dict[str, float]]:
    """Per-event engagement/dysregulation/fatigue, for charting."""
    metrics: list[dict[str, float]] = []
    for event in trace:
        if "engagement" not in event:
            continue
        metrics.append(
            {
                "turn": float(len(metrics) + 1),
                "engagement": float(event["engagement"]),
                "dysregulation": float(event.get("dysregulation", 0.0)),
                "fatigue": float(event.get("fatigue", 0.0)),
            }
        )
    return metrics


def find_first_escalation(
    trace: Iterable[dict[str, Any]], level: Level = Level.YELLOW
) -> dict[str, Any] | None:
    """Return the first event at or above ``level``."""
    for event in trace:
        name = event.get("level")
        if name in Level.__members__ and Level[name] >= level:
            return event
    return None
