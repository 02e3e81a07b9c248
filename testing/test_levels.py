"""Tests for level assessment, run through the reducer where scenarios need it."""

from datetime import datetime, timezone

import pytest

from safegate.config import LevelThresholds
from safegate.interventions import select_interventions
from safegate.levels import assess_level
from safegate.models import ChildResponseEvent, Intervention, Level, Signal, State
from safegate.signals import interpret_signals
from safegate.state import StateReducer


def fixed_clock():
    return datetime(2024, 1, 1, tzinfo=timezone.utc)


def run(responses):
    """Feed (text, correct) pairs through signals + reducer, return the last level."""
    reducer = StateReducer(clock=fixed_clock)
    level, signals = Level.GREEN, []
    for text, correct in responses:
        event = ChildResponseEvent(response=text, correct=correct)
        signals = interpret_signals(event)
        state = reducer.process_event(event, signals)
        level = assess_level(state, signals)
    return level, state, signals


def test_g1_one_correct_response_is_green():
    level, _, _ = run([("cat", True)])

    assert level == Level.GREEN


def test_y1_three_errors_is_yellow_with_skip():
    level, state, signals = run([("dog", False)] * 3)

    assert level == Level.YELLOW
    assert Intervention.SKIP_CARD in select_interventions(level, state, signals)


def test_o1_five_errors_is_orange_with_skip():
    responses = [("dog", False), ("bird", False), ("fish", False), ("cow", False), ("pig", False)]

    level, state, signals = run(responses)

    assert level == Level.ORANGE
    assert Intervention.SKIP_CARD in select_interventions(level, state, signals)


def test_o5_screaming_text_is_orange():
    level, _, signals = run([("ahhhhh", False)])

    assert Signal.DISTRESS in signals
    assert level == Level.ORANGE


def test_r1_high_dysregulation_is_red_with_grownup():
    state = State(dysregulation_level=9)

    level = assess_level(state, [])

    assert level == Level.RED
    assert Intervention.CALL_GROWNUP in select_interventions(level, state, [])


@pytest.mark.parametrize(
    "state,signals,expected",
    [
        (State(), [Signal.WANTS_BREAK], Level.YELLOW),
        (State(), [Signal.WANTS_QUIT], Level.YELLOW),
        (State(engagement_level=3), [], Level.YELLOW),
        (State(), [Signal.REPETITIVE_RESPONSE], Level.ORANGE),
        (State(dysregulation_level=7), [], Level.ORANGE),
        (State(dysregulation_level=6.9), [], Level.GREEN),
        (State(), [Signal.FRUSTRATION], Level.GREEN),
        (State(), [Signal.SCREAMING], Level.GREEN),
    ],
)
def test_triggers(state, signals, expected):
    assert assess_level(state, signals) == expected


def test_most_severe_trigger_wins():
    state = State(dysregulation_level=9.5, consecutive_errors=6)

    assert assess_level(state, [Signal.WANTS_BREAK, Signal.DISTRESS]) == Level.RED


def test_level_is_pure_function_of_state_and_signals():
    state = State(consecutive_errors=4, engagement_level=5)
    signals = [Signal.WANTS_QUIT]

    results = {assess_level(state, signals) for _ in range(5)}

    assert results == {Level.YELLOW}


def test_recovery_is_immediate_once_triggers_clear():
    reducer = StateReducer(clock=fixed_clock)
    for _ in range(5):
        reducer.process_event(ChildResponseEvent(response="x", correct=False), [])
    assert assess_level(reducer.get_state(), []) == Level.ORANGE

    state = reducer.process_event(ChildResponseEvent(response="cat", correct=True), [])

    assert assess_level(state, []) == Level.GREEN


def test_optional_triggers_are_off_by_default_and_configurable():
    tired = State(fatigue_level=8)
    assert assess_level(tired, []) == Level.GREEN

    thresholds = LevelThresholds(orange_fatigue=8, red_dysregulation_with_distress=7)
    assert assess_level(tired, [], thresholds) == Level.ORANGE
    upset = State(dysregulation_level=7)
    assert assess_level(upset, [Signal.CRYING], thresholds) == Level.RED
    assert assess_level(upset, [Signal.FRUSTRATION], thresholds) == Level.ORANGE
