"""Configuration from .env file, plus the safety-gate tuning tables."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from safegate.models import Intervention, Level, SessionConfig, Signal


class Settings(BaseSettings):
    # Without a key the AI stages are skipped and the fallback reply is used.
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_CLASSIFIER_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_SECONDS: float = 8.0
    LLM_MAX_TOKENS: int = 500

    # Replace the keyword rules for text signals with the LLM classifier.
    USE_LLM_SIGNAL_CLASSIFIER: bool = False
    SIMILARITY_CACHE_SIZE: int = 1024

    # Optional JSON file overriding SafetyGateConfig defaults.
    SAFETY_GATE_CONFIG_PATH: str | None = None
    TRACE_PATH: str = "data/pipeline_traces.json"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()


# ---------------------------------------------------------------------------
# State reducer deltas
# ---------------------------------------------------------------------------


class Bounds(BaseModel):
    min: float = 0.0
    max: float = 10.0

    def clamp(self, value: float) -> float:
        return max(self.min, min(self.max, value))


class SignalEffect(BaseModel):
    """Deltas applied to the state when a signal is present."""

    dysregulation: float = 0.0
    engagement: float = 0.0
    fatigue: float = 0.0


def _default_signal_effects() -> Dict[Signal, SignalEffect]:
    return {
        Signal.SCREAMING: SignalEffect(dysregulation=4),
        Signal.CRYING: SignalEffect(dysregulation=3),
        Signal.DISTRESS: SignalEffect(dysregulation=2),
        Signal.FRUSTRATION: SignalEffect(dysregulation=1),
        Signal.WANTS_QUIT: SignalEffect(engagement=-2),
        Signal.WANTS_BREAK: SignalEffect(fatigue=1),
        Signal.REPETITIVE_RESPONSE: SignalEffect(dysregulation=2, engagement=-1),
        Signal.PROLONGED_SILENCE: SignalEffect(),
    }


class ResponseDeltas(BaseModel):
    correct_engagement: float = 1.0
    correct_dysregulation: float = -0.5
    incorrect_engagement: float = -0.5
    inactive_engagement: float = -2.0


class BreakDeltas(BaseModel):
    dysregulation: float = -2.0
    fatigue: float = -2.0


class StackingBonus(BaseModel):
    """Extra dysregulation when several distress signals arrive together."""

    enabled: bool = False
    two_signals: float = 1.0
    three_or_more: float = 2.0


class StateModifiers(BaseModel):
    bounds: Bounds = Bounds()
    signals: Dict[Signal, SignalEffect] = Field(default_factory=_default_signal_effects)
    responses: ResponseDeltas = ResponseDeltas()
    break_taken: BreakDeltas = BreakDeltas()
    stacking: StackingBonus = StackingBonus()
    # Keep signal fatigue (WANTS_BREAK) on top of the recompute until a break.
    carry_signal_fatigue: bool = False
    decay_rate: float = 0.5
    decay_floor: float = 1.0
    error_frequency_window_ms: int = 60_000
    error_history_size: int = 100

    def model_post_init(self, __context) -> None:
        # Fill any signal the operator left out so every Signal has an entry.
        defaults = _default_signal_effects()
        for signal, effect in defaults.items():
            self.signals.setdefault(signal, effect)


# ---------------------------------------------------------------------------
# Signal interpretation
# ---------------------------------------------------------------------------


class SignalRules(BaseModel):
    """Case-insensitive substrings that map a response to text signals."""

    keywords: Dict[Signal, List[str]] = {
        Signal.WANTS_BREAK: ["break", "stop", "tired"],
        Signal.WANTS_QUIT: ["done", "quit", "no more"],
        Signal.FRUSTRATION: ["frustrat", "mad", "angry"],
        Signal.DISTRESS: ["scream", "ahhh", "no no no"],
    }


# ---------------------------------------------------------------------------
# Level assessment
# ---------------------------------------------------------------------------


class LevelThresholds(BaseModel):
    yellow_consecutive_errors: int = 3
    yellow_engagement_max: float = 3.0
    yellow_signals: List[Signal] = [Signal.WANTS_BREAK, Signal.WANTS_QUIT]

    orange_consecutive_errors: int = 5
    orange_dysregulation: float = 7.0
    orange_signals: List[Signal] = [Signal.REPETITIVE_RESPONSE, Signal.DISTRESS]

    red_dysregulation: float = 9.0

    # Alternative triggers seen in older rule sets; None disables them.
    yellow_dysregulation: Optional[float] = None
    yellow_fatigue: Optional[float] = None
    orange_fatigue: Optional[float] = None
    red_dysregulation_with_distress: Optional[float] = None


# ---------------------------------------------------------------------------
# Intervention selection and session planning
# ---------------------------------------------------------------------------


class InterventionTable(BaseModel):
    by_level: Dict[Level, List[Intervention]] = {
        Level.GREEN: [Intervention.RETRY_CARD],
        Level.YELLOW: [Intervention.SKIP_CARD, Intervention.RETRY_CARD],
        Level.ORANGE: [Intervention.SKIP_CARD],
        Level.RED: [
            Intervention.CALL_GROWNUP,
            Intervention.BUBBLE_BREATHING,
            Intervention.SKIP_CARD,
        ],
    }
    # Prepended at ORANGE once dysregulation reaches this value.
    bubble_breathing_dysregulation: float = 6.0


class SessionConfigTable(BaseModel):
    by_level: Dict[Level, SessionConfig] = {
        Level.GREEN: SessionConfig(
            prompt_intensity=2, avatar_tone="warm", max_task_time=60, inactivity_timeout=30
        ),
        Level.YELLOW: SessionConfig(
            prompt_intensity=1, avatar_tone="calm", max_task_time=45, inactivity_timeout=25
        ),
        Level.ORANGE: SessionConfig(
            prompt_intensity=0,
            avatar_tone="calm",
            max_task_time=30,
            inactivity_timeout=20,
            enable_audio_support=True,
        ),
        Level.RED: SessionConfig(
            prompt_intensity=0,
            avatar_tone="calm",
            max_task_time=30,
            inactivity_timeout=15,
            enable_audio_support=True,
        ),
    }


class SafetyGateConfig(BaseModel):
    state: StateModifiers = StateModifiers()
    signal_rules: SignalRules = SignalRules()
    levels: LevelThresholds = LevelThresholds()
    interventions: InterventionTable = InterventionTable()
    session: SessionConfigTable = SessionConfigTable()
    forbidden_words: List[str] = ["wrong", "incorrect", "bad", "no", "try harder", "focus"]


def load_safety_config(path: str | Path | None = None) -> SafetyGateConfig:
    """Load tuning from a JSON file, or the defaults when no file is given."""
    path = path or settings.SAFETY_GATE_CONFIG_PATH
    if not path:
        return SafetyGateConfig()
    return SafetyGateConfig.model_validate_json(Path(path).read_text())
