"""Tests for event parsing and safety-gate configuration."""

from safegate.config import SafetyGateConfig, load_safety_config, settings
from safegate.models import (
    CardContext,
    ChildInactiveEvent,
    ChildResponseEvent,
    Level,
    Signal,
    TaskContext,
    parse_event,
)


def test_parse_event_accepts_camel_case():
    event = parse_event(
        {
            "type": "CHILD_RESPONSE",
            "response": "cat",
            "correct": True,
            "previousResponse": "dog",
            "previousPreviousResponse": "bird",
            "signals": {"screaming": True, "prolongedSilence": True},
        }
    )

    assert isinstance(event, ChildResponseEvent)
    assert event.previous_response == "dog"
    assert event.previous_previous_response == "bird"
    assert event.signals.screaming and event.signals.prolonged_silence
    assert not event.signals.crying


def test_parse_event_defaults_missing_fields():
    event = parse_event({"type": "CHILD_RESPONSE"})

    assert event.response == ""
    assert event.correct is None
    assert event.signals is None


def test_parse_event_unknown_type_is_ignored():
    assert parse_event({"type": "CHILD_DANCED"}) is None
    assert parse_event({}) is None
    assert parse_event({"type": ["CHILD_RESPONSE"]}) is None


def test_parse_event_malformed_fields_become_neutral():
    event = parse_event({"type": "CHILD_RESPONSE", "response": "cat", "correct": "maybe"})

    assert isinstance(event, ChildResponseEvent)
    assert event.response == "cat"
    assert event.correct is None

    inactive = parse_event({"type": "CHILD_INACTIVE", "signals": "loud"})
    assert isinstance(inactive, ChildInactiveEvent)
    assert inactive.signals is None


def test_parse_event_ignores_unknown_audio_flags():
    event = parse_event({"type": "CHILD_INACTIVE", "signals": {"giggling": True}})

    assert isinstance(event, ChildInactiveEvent)
    assert not any(event.signals.model_dump().values())


def test_task_context_from_camel_case():
    context = TaskContext.model_validate(
        {"cardType": "single-answer", "targetAnswer": "cold", "imageLabels": ["ice"]}
    )

    assert context.target_answer == "cold"
    assert context.image_labels == ["ice"]


def test_card_context_to_task_context():
    card = CardContext(category="Opposites", question="Hot?", target_answers=["cold", "chilly"])

    assert card.to_task_context().target_answer == "cold, chilly"


def test_default_config_covers_every_signal():
    config = SafetyGateConfig()

    assert set(config.state.signals) == set(Signal)
    assert set(config.interventions.by_level) == set(Level)
    assert set(config.session.by_level) == set(Level)


def test_load_safety_config_from_json(tmp_path):
    path = tmp_path / "safety.json"
    path.write_text(
        '{"levels": {"orange_dysregulation": 6},'
        ' "state": {"signals": {"SCREAMING": {"dysregulation": 5}}}}'
    )

    config = load_safety_config(path)

    assert config.levels.orange_dysregulation == 6
    assert config.state.signals[Signal.SCREAMING].dysregulation == 5
    # Signals left out keep their defaults
    assert config.state.signals[Signal.CRYING].dysregulation == 3
    assert config.levels.red_dysregulation == 9


def test_load_safety_config_defaults_without_path(monkeypatch):
    monkeypatch.setattr(settings, "SAFETY_GATE_CONFIG_PATH", None)

    assert load_safety_config() == SafetyGateConfig()
