"""Pydantic models for the safety-gate pipeline.

Flow: Event -> Signals -> State -> Level -> Interventions -> SessionConfig
-> LLM constraints -> UIPackage.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

log = logging.getLogger(__name__)


class WireModel(BaseModel):
    """Accepts camelCase (client payloads) and snake_case field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenWireModel(WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Signal(str, Enum):
    # Audio (voice layer)
    SCREAMING = "SCREAMING"
    CRYING = "CRYING"
    PROLONGED_SILENCE = "PROLONGED_SILENCE"
    # Text
    DISTRESS = "DISTRESS"
    FRUSTRATION = "FRUSTRATION"
    WANTS_BREAK = "WANTS_BREAK"
    WANTS_QUIT = "WANTS_QUIT"
    # Event pattern
    REPETITIVE_RESPONSE = "REPETITIVE_RESPONSE"


DISTRESS_SIGNALS = frozenset(
    {Signal.SCREAMING, Signal.CRYING, Signal.DISTRESS, Signal.FRUSTRATION}
)


class Level(IntEnum):
    GREEN = 0  # Normal operation
    YELLOW = 1  # Minor adaptation
    ORANGE = 2  # Significant adaptation
    RED = 3  # Adult needed


class Intervention(str, Enum):
    RETRY_CARD = "RETRY_CARD"
    SKIP_CARD = "SKIP_CARD"
    BUBBLE_BREATHING = "BUBBLE_BREATHING"
    START_BREAK = "START_BREAK"
    CALL_GROWNUP = "CALL_GROWNUP"


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------


class AudioFlags(FrozenWireModel):
    """Cues pre-detected by the voice layer."""

    screaming: bool = False
    crying: bool = False
    prolonged_silence: bool = False


class ChildResponseEvent(FrozenWireModel):
    type: Literal["CHILD_RESPONSE"] = "CHILD_RESPONSE"
    response: str = ""
    # None means the answer was not judged; the reducer makes no assumption.
    correct: Optional[bool] = None
    previous_response: Optional[str] = None
    previous_previous_response: Optional[str] = None
    signals: Optional[AudioFlags] = None


class ChildInactiveEvent(FrozenWireModel):
    type: Literal["CHILD_INACTIVE"] = "CHILD_INACTIVE"
    signals: Optional[AudioFlags] = None


Event = Annotated[
    Union[ChildResponseEvent, ChildInactiveEvent], Field(discriminator="type")
]

_EVENT_ADAPTER = TypeAdapter(Event)
_EVENT_TYPES = {
    "CHILD_RESPONSE": ChildResponseEvent,
    "CHILD_INACTIVE": ChildInactiveEvent,
}


def parse_event(payload: dict[str, Any]) -> Optional[Event]:
    """Build an Event from an inbound dict.

    Unknown types return None. A known type with malformed fields falls
    back to a neutral event of that type (no signals, no correctness).
    """
    event_type = payload.get("type") if isinstance(payload, dict) else None
    model = _EVENT_TYPES.get(event_type) if isinstance(event_type, str) else None
    if model is None:
        log.warning(f"Ignoring event with unknown type: {event_type!r}")
        return None
    try:
        return _EVENT_ADAPTER.validate_python(payload)
    except ValidationError as e:
        log.warning(
            f"Malformed {event_type} event, using neutral defaults: "
            f"{e.error_count()} validation errors"
        )
        response = payload.get("response")
        if model is ChildResponseEvent and isinstance(response, str):
            return ChildResponseEvent(response=response)
        return model()


class TaskContext(FrozenWireModel):
    """Current card, owned by the activity layer."""

    card_type: str = "single-answer"
    category: str = ""
    question: str = ""
    target_answer: str = ""
    image_labels: List[str] = []


class CardContext(FrozenWireModel):
    """Card as shown to the child, possibly with several accepted answers."""

    category: str = ""
    question: str = ""
    target_answers: List[str] = []
    image_labels: List[str] = []

    def to_task_context(self) -> TaskContext:
        return TaskContext(
            category=self.category,
            question=self.question,
            target_answer=", ".join(self.target_answers),
            image_labels=list(self.image_labels),
        )


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class State(FrozenWireModel):
    """Snapshot of a child's modelled condition. Bounded levels are 0-10."""

    engagement_level: float = 8.0
    dysregulation_level: float = 1.0
    fatigue_level: float = 1.0
    error_frequency: int = 0
    consecutive_errors: int = 0
    time_in_session: float = 0.0
    time_since_break: float = 0.0
    last_activity_timestamp: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Adaptation outputs
# ---------------------------------------------------------------------------


class SessionConfig(FrozenWireModel):
    prompt_intensity: int = Field(2, ge=0, le=3)
    avatar_tone: Literal["warm", "calm", "neutral"] = "warm"
    max_task_time: int = 60  # seconds on a card
    inactivity_timeout: int = 30  # seconds before "are you there?"
    show_visual_cues: bool = True
    enable_audio_support: bool = False


class LLMConstraints(FrozenWireModel):
    """Guardrails for the conversational AI. Tone lives in SessionConfig."""

    must_be_brief: bool = True
    must_not_judge: bool = True
    must_not_pressure: bool = True
    must_offer_choices: bool = False
    must_validate_feelings: bool = False
    max_sentences: int = 2
    forbidden_words: List[str] = []
    required_approach: str = "describe_what_heard_offer_support"


class ResponseContext(FrozenWireModel):
    what_happened: Literal["correct_response", "incorrect_response", "child_inactive"]
    child_said: str = ""
    target_was: str = ""
    attempt_number: int = 1
    card_context: Optional[TaskContext] = None


class BackendResponse(FrozenWireModel):
    """Everything decided for one event. Built once, never mutated."""

    level: Level
    signals: List[Signal]
    state: State
    interventions: List[Intervention]
    session_config: SessionConfig
    task_context: Optional[TaskContext] = None
    context: ResponseContext
    constraints: LLMConstraints
    decision: str
    reasoning: List[str] = []
    timestamp: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# LLM output and validation
# ---------------------------------------------------------------------------


class LLMReply(BaseModel):
    """Reply expected from the conversational AI (JSON object)."""

    coach_line: str
    choice_presentation: str = ""


class ValidationResult(BaseModel):
    valid: bool
    reason: Optional[str] = None
    checks: Dict[str, bool] = {}


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class Overlay(FrozenWireModel):
    signals: List[Signal]
    state: State
    safety_level: Level


class Speech(FrozenWireModel):
    text: str


class UIPackage(FrozenWireModel):
    overlay: Overlay
    interventions: List[Intervention]
    session_config: SessionConfig
    speech: Speech
    choice_message: str = ""
    used_fallback: bool = False


class SafetyGateResult(WireModel):
    """What a session hands back to the activity client for one response."""

    ui_package: UIPackage
    should_speak: bool = True
    is_correct: bool = False
    attempt_number: int = 0
    child_said: str = ""
    response_history: List[str] = []
    task_time_exceeded: bool = False
    break_due: bool = False
