"""JSON persistence for per-session pipeline traces."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

from safegate.models import BackendResponse, UIPackage

log = logging.getLogger(__name__)

Trace = list[dict[str, Any]]


def trace_record(response: BackendResponse, ui_package: UIPackage) -> dict[str, Any]:
    """One trace entry: what was decided and what the child heard."""
    return {
        "timestamp": response.timestamp.isoformat(),
        "what_happened": response.context.what_happened,
        "child_said": response.context.child_said,
        "level": response.level.name,
        "signals": [s.value for s in response.signals],
        "interventions": [i.value for i in response.interventions],
        "decision": response.decision,
        "engagement": response.state.engagement_level,
        "dysregulation": response.state.dysregulation_level,
        "fatigue": response.state.fatigue_level,
        "consecutive_errors": response.state.consecutive_errors,
        "speech": ui_package.speech.text,
        "used_fallback": ui_package.used_fallback,
    }


class TraceStore:
    """Session traces in one JSON file, keyed by session id."""

    def __init__(self, path: str | Path = "data/pipeline_traces.json"):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def load(self) -> dict[str, Trace]:
        if not self.path.exists():
            return {}
        try:
            data: Any = json.loads(self.path.read_text())
        except json.JSONDecodeError:
            log.warning(f"Trace file {self.path} is not valid JSON, starting fresh")
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, traces: dict[str, Trace]) -> None:
        self.path.write_text(json.dumps(traces, indent=2))

    def get(self, session_id: str) -> Trace:
        return self.load().get(session_id, [])

    def append_events(self, session_id: str, events: Trace) -> dict[str, Trace]:
        """Append events to a session's trace and return merged data.

        Rewrites the whole file, so the cost grows with the stored traces.
        """
        with self._lock:
            traces = self.load()
            traces.setdefault(session_id, [])
            traces[session_id].extend(events)
            self.save(traces)
        return traces
