"""Guardrails and context for the conversational AI."""

from __future__ import annotations

from typing import Optional, Sequence

from safegate.models import (
    ChildResponseEvent,
    Event,
    Intervention,
    Level,
    LLMConstraints,
    ResponseContext,
    Signal,
    State,
    TaskContext,
)

DEFAULT_FORBIDDEN_WORDS = ("wrong", "incorrect", "bad", "no", "try harder", "focus")


def build_constraints(
    level: Level,
    state: State,
    forbidden_words: Optional[Sequence[str]] = None,
) -> LLMConstraints:
    """Tighten the reply rules as the level escalates."""
    words = list(forbidden_words if forbidden_words is not None else DEFAULT_FORBIDDEN_WORDS)
    # Judgmental terms are always forbidden, even with an operator list.
    for word in DEFAULT_FORBIDDEN_WORDS:
        if word not in words:
            words.append(word)

    return LLMConstraints(
        must_be_brief=True,
        must_not_judge=True,
        must_not_pressure=True,
        must_offer_choices=level >= Level.YELLOW,
        must_validate_feelings=level >= Level.ORANGE,
        # GREEN: "I heard X. Let's try again!"
        # YELLOW+: "I heard X. Almost there! What would you like to do?"
        max_sentences=3 if level >= Level.YELLOW else 2,
        forbidden_words=words,
        required_approach=(
            "acknowledge_feelings_offer_choices"
            if level >= Level.ORANGE
            else "describe_what_heard_offer_support"
        ),
    )


def build_response_context(
    event: Event, state: State, task_context: Optional[TaskContext] = None
) -> ResponseContext:
    if isinstance(event, ChildResponseEvent):
        what_happened = "correct_response" if event.correct else "incorrect_response"
        child_said = event.response
    else:
        what_happened = "child_inactive"
        child_said = ""

    return ResponseContext(
        what_happened=what_happened,
        child_said=child_said,
        target_was=task_context.target_answer if task_context else "",
        attempt_number=state.consecutive_errors + 1,
        card_context=task_context,
    )


def determine_decision(level: Level, interventions: Sequence[Intervention]) -> str:
    if level == Level.RED:
        return "CALL_GROWNUP_IMMEDIATELY"
    if Intervention.BUBBLE_BREATHING in interventions:
        return "TRIGGER_REGULATION_WITH_CHOICES"
    if level >= Level.YELLOW:
        return "ADAPT_AND_CONTINUE"
    return "CONTINUE_NORMAL"


def build_reasoning(
    level: Level, signals: Sequence[Signal], interventions: Sequence[Intervention]
) -> list[str]:
    signal_names = ", ".join(s.value for s in signals) or "none"
    reasons = [f"Level {level.name} with signals: {signal_names}"]
    if interventions:
        reasons.append(f"Applying: {', '.join(i.value for i in interventions)}")
    else:
        reasons.append("No interventions needed")
    return reasons
