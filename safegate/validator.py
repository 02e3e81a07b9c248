"""Checks AI replies against LLMConstraints and supplies the fallback reply."""

from __future__ import annotations

import logging
import re

from safegate.models import Level, LLMConstraints, LLMReply, ValidationResult
from safegate.prompts import CHOICE_PROMPT

log = logging.getLogger(__name__)

MAX_WORDS = 30

CONTAINS_JUDGMENTAL_LANGUAGE = "CONTAINS_JUDGMENTAL_LANGUAGE"
CONTAINS_PRESSURE_LANGUAGE = "CONTAINS_PRESSURE_LANGUAGE"
TOO_LONG = "TOO_LONG"
MISSING_CHOICES = "MISSING_CHOICES"

JUDGMENTAL_PATTERNS = [
    re.compile(r"that'?s\s+(wrong|incorrect|bad)", re.I),
    re.compile(r"why\s+(did|didn'?t)\s+you", re.I),
    re.compile(r"focus\s+better", re.I),
]

PRESSURE_PATTERNS = [
    re.compile(r"try\s+harder", re.I),
    re.compile(r"you\s+(should|must|need\s+to|have\s+to)", re.I),
    re.compile(r"say\s+it\s+again", re.I),
    re.compile(r"hurry", re.I),
]

# Check name -> reason reported when it fails, in priority order.
_REASONS = (
    ("no_forbidden_words", CONTAINS_JUDGMENTAL_LANGUAGE),
    ("non_judgmental", CONTAINS_JUDGMENTAL_LANGUAGE),
    ("no_pressure", CONTAINS_PRESSURE_LANGUAGE),
    ("sentences_within_limit", TOO_LONG),
    ("length_appropriate", TOO_LONG),
    ("choices_included", MISSING_CHOICES),
)


def count_sentences(text: str) -> int:
    return len([s for s in re.split(r"[.!?]+", text) if s.strip()])


def _has_forbidden_word(text: str, forbidden_words: list[str]) -> bool:
    lowered = text.lower()
    return any(
        re.search(rf"\b{re.escape(word.lower())}\b", lowered) for word in forbidden_words if word
    )


def _without_echo(text: str, child_said: str) -> str:
    """Drop the quoted echo of the child's own word ("I heard 'no'")."""
    if not child_said.strip():
        return text
    return re.sub(rf"['\"]{re.escape(child_said.strip())}['\"]", "", text, flags=re.IGNORECASE)


def validate(
    reply: LLMReply, constraints: LLMConstraints, child_said: str = ""
) -> ValidationResult:
    """Never raises; a malformed reply is reported as invalid.

    Forbidden words match whole words only, and the child's echoed word is
    not scanned for them.
    """
    try:
        coach_line = reply.coach_line or ""
        choices = reply.choice_presentation or ""
        spoken = f"{coach_line} {choices}"
        scanned = _without_echo(spoken, child_said)

        checks = {
            "no_forbidden_words": not _has_forbidden_word(scanned, constraints.forbidden_words),
            "non_judgmental": not any(p.search(spoken) for p in JUDGMENTAL_PATTERNS),
            "no_pressure": not any(p.search(spoken) for p in PRESSURE_PATTERNS),
            "sentences_within_limit": count_sentences(coach_line) <= constraints.max_sentences,
            "length_appropriate": 0 < len(coach_line.split()) <= MAX_WORDS,
            "choices_included": bool(choices.strip()) or not constraints.must_offer_choices,
        }
    except Exception as e:
        log.warning(f"Reply validation error: {e}")
        return ValidationResult(valid=False, reason=CONTAINS_JUDGMENTAL_LANGUAGE, checks={})

    for check, reason in _REASONS:
        if not checks[check]:
            return ValidationResult(valid=False, reason=reason, checks=checks)
    return ValidationResult(valid=True, reason=None, checks=checks)


def fallback_reply(level: Level, what_happened: str) -> LLMReply:
    """Deterministic, pre-validated reply used when the AI is unavailable."""
    if what_happened == "correct_response":
        text = "Great job! You got it!"
    elif what_happened == "child_inactive":
        if level >= Level.YELLOW:
            text = f"Are you still there? Take your time! {CHOICE_PROMPT}"
        else:
            text = "Are you still there? Take your time!"
    elif level >= Level.YELLOW:
        text = f"I heard you! Good try! {CHOICE_PROMPT}"
    else:
        text = "I heard you! Let's try again!"
    return LLMReply(coach_line=text, choice_presentation=CHOICE_PROMPT)
