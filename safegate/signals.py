"""Signal interpretation: maps an Event to the behavioural cues it carries."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from safegate.config import SignalRules
from safegate.models import ChildResponseEvent, Event, Signal

log = logging.getLogger(__name__)

TEXT_SIGNALS = frozenset(
    {Signal.WANTS_BREAK, Signal.WANTS_QUIT, Signal.FRUSTRATION, Signal.DISTRESS}
)

_PUNCTUATION = re.compile(r"[,!?.;:]+")
_WHITESPACE = re.compile(r"\s+")

_DEFAULT_RULES = SignalRules()


def normalize_text(text: str) -> str:
    """Lowercase and collapse punctuation so "No, no, NO!" reads "no no no"."""
    text = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


def audio_signals(event: Event) -> list[Signal]:
    flags = event.signals
    if flags is None:
        return []
    found: list[Signal] = []
    if flags.screaming:
        found.append(Signal.SCREAMING)
    if flags.crying:
        found.append(Signal.CRYING)
    if flags.prolonged_silence:
        found.append(Signal.PROLONGED_SILENCE)
    return found


def is_repetitive(event: Event) -> bool:
    """Three identical responses in a row."""
    if not isinstance(event, ChildResponseEvent):
        return False
    response = event.response.strip().lower()
    if not response:
        return False
    previous = (event.previous_response or "").strip().lower()
    before = (event.previous_previous_response or "").strip().lower()
    return response == previous == before


def keyword_signals(text: str, rules: Optional[SignalRules] = None) -> list[Signal]:
    rules = rules or _DEFAULT_RULES
    normalized = normalize_text(text)
    if not normalized:
        return []
    return [
        signal
        for signal, keywords in rules.keywords.items()
        if any(keyword.lower() in normalized for keyword in keywords)
    ]


def interpret_signals(
    event: Event,
    rules: Optional[SignalRules] = None,
    text_signals: Optional[Iterable[Signal]] = None,
) -> list[Signal]:
    """Return the duplicate-free set of signals carried by ``event``.

    ``text_signals`` lets an external classifier replace the keyword rules;
    audio flags and the repetition rule always apply.
    """
    found = audio_signals(event)
    if is_repetitive(event):
        found.append(Signal.REPETITIVE_RESPONSE)
    if isinstance(event, ChildResponseEvent):
        if text_signals is None:
            found.extend(keyword_signals(event.response, rules))
        else:
            found.extend(s for s in text_signals if s in TEXT_SIGNALS)

    signals = list(dict.fromkeys(found))
    if signals:
        log.debug(f"Signals for {event.type}: {[s.value for s in signals]}")
    return signals
