"""Per-session state reducer.

Owns the only mutable piece of the pipeline. It consumes precomputed
signals and never re-reads the raw response text; every delta comes from
the injected StateModifiers.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Deque, Iterable, Optional

from safegate.config import StateModifiers
from safegate.models import (
    DISTRESS_SIGNALS,
    ChildInactiveEvent,
    ChildResponseEvent,
    Event,
    Signal,
    State,
)

log = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StateReducer:
    """Applies events and signals to one session's State.

    Not safe for concurrent use; callers serialize events per session.
    """

    def __init__(
        self,
        modifiers: Optional[StateModifiers] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.modifiers = modifiers or StateModifiers()
        self._clock = clock
        self._errors: Deque[datetime] = deque(maxlen=self.modifiers.error_history_size)
        # Fatigue added by signals since the last break (carry_signal_fatigue).
        self._signal_fatigue = 0.0
        self._state = State(last_activity_timestamp=clock())

    def get_state(self) -> State:
        return self._state

    def process_event(self, event: Event, signals: Iterable[Signal]) -> State:
        """Advance the state by one event. Returns a frozen snapshot."""
        signals = list(signals)
        now = self._clock()
        values = self._state.model_dump()

        self._advance_time(values, now)

        if isinstance(event, ChildResponseEvent):
            self._apply_response(values, event, now)
        elif isinstance(event, ChildInactiveEvent):
            self._bump(values, "engagement_level", self.modifiers.responses.inactive_engagement)

        self._apply_signals(values, signals)

        if isinstance(event, ChildResponseEvent):
            self._apply_baseline_decay(values, signals)

        values["fatigue_level"] = self._fatigue(values)
        values["error_frequency"] = self._error_frequency(now)

        self._state = State(**values)
        return self._state

    def reset_for_break(self) -> State:
        deltas = self.modifiers.break_taken
        values = self._state.model_dump()
        values["time_since_break"] = 0.0
        self._bump(values, "dysregulation_level", deltas.dysregulation)
        self._bump(values, "fatigue_level", deltas.fatigue)
        self._signal_fatigue = 0.0
        self._state = State(**values)
        log.info(
            f"Break taken: dysregulation={self._state.dysregulation_level:.1f} "
            f"fatigue={self._state.fatigue_level:.1f}"
        )
        return self._state

    # ------------------------------------------------------------------

    def _bump(self, values: dict, field: str, delta: float) -> None:
        values[field] = self.modifiers.bounds.clamp(values[field] + delta)

    def _advance_time(self, values: dict, now: datetime) -> None:
        delta = (now - values["last_activity_timestamp"]).total_seconds()
        delta = max(0.0, delta)  # clock skew must not run time backwards
        values["time_in_session"] += delta
        values["time_since_break"] += delta
        values["last_activity_timestamp"] = now

    def _apply_response(self, values: dict, event: ChildResponseEvent, now: datetime) -> None:
        deltas = self.modifiers.responses
        if event.correct is True:
            values["consecutive_errors"] = 0
            self._bump(values, "engagement_level", deltas.correct_engagement)
            self._bump(values, "dysregulation_level", deltas.correct_dysregulation)
        elif event.correct is False:
            values["consecutive_errors"] += 1
            self._errors.append(now)
            self._bump(values, "engagement_level", deltas.incorrect_engagement)

    def _apply_signals(self, values: dict, signals: list[Signal]) -> None:
        for signal in signals:
            effect = self.modifiers.signals.get(signal)
            if effect is None:
                continue
            self._bump(values, "dysregulation_level", effect.dysregulation)
            self._bump(values, "engagement_level", effect.engagement)
            self._bump(values, "fatigue_level", effect.fatigue)
            self._signal_fatigue += effect.fatigue
            log.debug(
                f"{signal.value}: dysregulation={values['dysregulation_level']:.1f} "
                f"engagement={values['engagement_level']:.1f}"
            )

        stacking = self.modifiers.stacking
        if stacking.enabled:
            distress_count = sum(1 for s in signals if s in DISTRESS_SIGNALS)
            bonus = 0.0
            if distress_count >= 3:
                bonus = stacking.three_or_more
            elif distress_count == 2:
                bonus = stacking.two_signals
            if bonus:
                self._bump(values, "dysregulation_level", bonus)
                log.debug(f"Stacking bonus +{bonus} for {distress_count} distress signals")

    def _apply_baseline_decay(self, values: dict, signals: list[Signal]) -> None:
        if any(s in DISTRESS_SIGNALS for s in signals):
            return
        floor = self.modifiers.decay_floor
        if values["dysregulation_level"] > floor:
            values["dysregulation_level"] = max(
                floor, values["dysregulation_level"] - self.modifiers.decay_rate
            )

    def _fatigue(self, values: dict) -> float:
        minutes = values["time_in_session"] / 60
        fatigue = minutes / 2 + values["dysregulation_level"] * 0.1
        if self.modifiers.carry_signal_fatigue:
            fatigue += self._signal_fatigue
        return self.modifiers.bounds.clamp(fatigue)

    def _error_frequency(self, now: datetime) -> int:
        window = self.modifiers.error_frequency_window_ms / 1000
        return sum(1 for ts in self._errors if (now - ts).total_seconds() < window)
