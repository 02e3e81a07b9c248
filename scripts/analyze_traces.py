#!/usr/bin/env python3
"""Summarize recorded safety-gate traces: level timelines and fallback rates."""

import sys
from pathlib import Path

from safegate.config import settings
from safegate.models import Level
from safegate.services.trace_store import TraceStore
from safegate.trace_utils import (
    condense_level_timeline,
    count_fallbacks,
    extract_state_metrics,
    find_first_escalation,
)

_COLORS = {
    "GREEN": "\033[92m",
    "YELLOW": "\033[93m",
    "ORANGE": "\033[33m",
    "RED": "\033[91m",
}


def _colored(level: str) -> str:
    return f"{_COLORS.get(level, '')}{level}\033[0m"


def analyze_traces(path: str = settings.TRACE_PATH):
    if not Path(path).exists():
        print(f"No traces found at {path}. Replay a session first.")
        return

    traces = TraceStore(path).load()
    if not traces:
        print("No sessions recorded yet.")
        return

    print(f"\n{'='*60}")
    print(f"TRACE ANALYSIS ({len(traces)} sessions)")
    print(f"{'='*60}\n")

    print(f"{'Session':<14} {'Events':<7} {'Fallback':<9} {'Peak dys':<9} Levels")
    print("-" * 60)

    total_events = 0
    total_fallbacks = 0
    for session_id, trace in traces.items():
        fallbacks = count_fallbacks(trace)
        total_events += len(trace)
        total_fallbacks += fallbacks
        metrics = extract_state_metrics(trace)
        peak = max((m["dysregulation"] for m in metrics), default=0.0)
        timeline = " > ".join(_colored(level) for level in condense_level_timeline(trace))
        print(f"{session_id[:13]:<14} {len(trace):<7} {fallbacks:<9} {peak:<9.1f} {timeline}")

    print("-" * 60)

    if total_events:
        print(f"\nFallback rate: {total_fallbacks / total_events:.0%} of {total_events} events")

    red_sessions = [
        session_id
        for session_id, trace in traces.items()
        if find_first_escalation(trace, Level.RED) is not None
    ]
    if red_sessions:
        print(f"\nSessions that reached RED: {', '.join(red_sessions)}")
        for session_id in red_sessions:
            first = find_first_escalation(traces[session_id], Level.RED)
            print(f"   {session_id}: child said {first.get('child_said')!r} ({first.get('signals')})")

    print(f"\n{'='*60}\n")


if __name__ == "__main__":
    analyze_traces(*sys.argv[1:2])
