"""Tests for child sessions and the session manager."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from safegate.config import SafetyGateConfig
from safegate.models import AudioFlags, CardContext, Level, Signal
from safegate.orchestrator import Orchestrator
from safegate.prompts import CHOICE_PROMPT
from safegate.services.answer_check import AnswerChecker
from safegate.session import ChildSession, SessionManager, with_choice_prompt

CARD = CardContext(
    category="Adjectives - Opposites",
    question="What is the opposite of hot?",
    target_answers=["cold"],
    image_labels=["ice cube"],
)


def fixed_clock():
    return datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_orchestrator(session_id: str = "default") -> Orchestrator:
    return Orchestrator(config=SafetyGateConfig(), clock=fixed_clock, session_id=session_id)


def make_session(**kwargs) -> ChildSession:
    return ChildSession(make_orchestrator(), AnswerChecker(llm=None), **kwargs)


def test_correct_answer_stops_timer():
    async def scenario():
        session = make_session()
        session.set_current_card(CARD)
        assert session.waiting_for_response

        result = await session.process_child_response("It's cold!")

        assert result.is_correct
        assert result.attempt_number == 1
        assert not session.waiting_for_response
        session.close()
        return result

    result = asyncio.run(scenario())

    assert result.ui_package.overlay.safety_level == Level.GREEN
    assert result.response_history == ["It's cold!"]


def test_wrong_answer_at_green_keeps_waiting():
    async def scenario():
        session = make_session()
        session.set_current_card(CARD)
        result = await session.process_child_response("warm")
        waiting = session.waiting_for_response
        session.close()
        return result, waiting

    result, waiting = asyncio.run(scenario())

    assert not result.is_correct
    assert waiting
    assert not result.ui_package.speech.text.endswith(CHOICE_PROMPT)


def test_yellow_appends_choice_prompt_and_stops_timer():
    async def scenario():
        session = make_session()
        session.set_current_card(CARD)
        for word in ("warm", "hot", "sunny"):
            result = await session.process_child_response(word)
        waiting = session.waiting_for_response
        session.close()
        return result, waiting

    result, waiting = asyncio.run(scenario())

    assert result.ui_package.overlay.safety_level == Level.YELLOW
    assert result.ui_package.speech.text.endswith(CHOICE_PROMPT)
    assert result.ui_package.choice_message == CHOICE_PROMPT
    assert result.attempt_number == 3
    assert result.response_history == ["warm", "hot", "sunny"]
    assert not waiting


def test_repeated_answer_is_flagged_from_history():
    async def scenario():
        session = make_session()
        session.set_current_card(CARD)
        for _ in range(3):
            result = await session.process_child_response("pizza")
        session.close()
        return result

    result = asyncio.run(scenario())

    assert Signal.REPETITIVE_RESPONSE in result.ui_package.overlay.signals
    assert result.ui_package.overlay.safety_level == Level.ORANGE


def test_audio_flags_reach_the_pipeline():
    async def scenario():
        session = make_session()
        session.set_current_card(CARD)
        result = await session.process_child_response("cold", AudioFlags(crying=True))
        session.close()
        return result

    result = asyncio.run(scenario())

    assert Signal.CRYING in result.ui_package.overlay.signals


def test_no_card_does_not_judge_answer():
    async def scenario():
        session = make_session()
        return await session.process_child_response("banana")

    result = asyncio.run(scenario())

    assert not result.is_correct
    assert result.ui_package.overlay.state.consecutive_errors == 0


def test_handle_choice_manages_timer_and_break():
    async def scenario():
        session = make_session()
        session.set_current_card(CARD)

        session.handle_choice("SKIP_CARD")
        after_skip = session.waiting_for_response
        session.handle_choice("RETRY_CARD")
        after_retry = session.waiting_for_response
        session.handle_choice("DANCE")
        after_unknown = session.waiting_for_response

        # 1 + 4 (screaming) + 2 (distress text)
        await session.process_child_response("ahhhh", AudioFlags(screaming=True))
        session.handle_choice("START_BREAK")
        state = session.orchestrator.state
        session.close()
        return after_skip, after_retry, after_unknown, state

    after_skip, after_retry, after_unknown, state = asyncio.run(scenario())

    assert not after_skip
    assert after_retry
    assert not after_unknown
    assert state.dysregulation_level == 5
    assert state.time_since_break == 0


def test_inactivity_fires_event_and_callback():
    async def scenario():
        session = make_session()
        session.inactivity_timeout = 0.01
        received = []
        session.set_inactivity_callback(received.append)
        session.set_current_card(CARD)
        await asyncio.sleep(0.05)
        # GREEN after one inactive event, so the timer is running again
        waiting = session.waiting_for_response
        session.close()
        return received, waiting

    received, waiting = asyncio.run(scenario())

    assert len(received) == 1
    result = received[0]
    assert result.child_said == "[INACTIVE]"
    assert result.ui_package.speech.text == "Are you still there? Take your time!"
    assert result.ui_package.overlay.state.engagement_level == 6
    assert waiting


def test_inactivity_callback_errors_are_contained():
    async def scenario():
        session = make_session()
        session.inactivity_timeout = 0.01

        async def broken(result):
            raise RuntimeError("socket closed")

        session.set_inactivity_callback(broken)
        session.set_current_card(CARD)
        await asyncio.sleep(0.05)
        session.close()
        return session.orchestrator.state

    state = asyncio.run(scenario())

    assert state.engagement_level < 8


def test_resume_session_restarts_timer_only_with_card():
    async def scenario():
        session = make_session()
        session.resume_session()
        without_card = session.waiting_for_response
        session.set_current_card(CARD)
        session.stop_inactivity_timer()
        session.resume_session()
        with_card = session.waiting_for_response
        session.close()
        return without_card, with_card

    without_card, with_card = asyncio.run(scenario())

    assert not without_card
    assert with_card


def test_with_choice_prompt_does_not_duplicate():
    async def scenario():
        session = make_session()
        result = await session.process_child_response("cat")
        return result.ui_package

    ui = asyncio.run(scenario())
    once = with_choice_prompt(ui)
    twice = with_choice_prompt(once)

    assert once.speech.text.endswith(f"! {CHOICE_PROMPT}")
    assert twice.speech.text == once.speech.text


def test_session_manager_isolates_sessions():
    async def scenario():
        manager = SessionManager(
            orchestrator_factory=make_orchestrator, answer_checker=AnswerChecker(llm=None)
        )
        a = manager.create("child-a")
        b = manager.create("child-b")
        a.set_current_card(CARD)
        b.set_current_card(CARD)

        await asyncio.gather(
            *(manager.process("child-a", "warm") for _ in range(3)),
            manager.process("child-b", "cold"),
        )
        states = (a.orchestrator.state, b.orchestrator.state)
        same = manager.create("child-a") is a
        manager.close_all()
        return states, same, manager.active_count

    (state_a, state_b), same, remaining = asyncio.run(scenario())

    assert state_a.consecutive_errors == 3
    assert state_b.consecutive_errors == 0
    assert same
    assert remaining == 0


def test_session_manager_serializes_a_childs_events():
    async def scenario():
        manager = SessionManager(
            orchestrator_factory=make_orchestrator, answer_checker=AnswerChecker(llm=None)
        )
        session = manager.create("child-a")
        session.set_current_card(CARD)
        results = await asyncio.gather(*(manager.process("child-a", w) for w in ("a1", "b2", "c3")))
        manager.remove("child-a")
        return results, manager.get("child-a")

    results, gone = asyncio.run(scenario())

    assert sorted(r.attempt_number for r in results) == [1, 2, 3]
    assert sorted(r.ui_package.overlay.state.consecutive_errors for r in results) == [1, 2, 3]
    assert gone is None


def test_recreated_session_waits_for_in_flight_event():
    async def scenario():
        manager = SessionManager(
            orchestrator_factory=make_orchestrator, answer_checker=AnswerChecker(llm=None)
        )
        first = manager.create("child-a")
        await first.lock.acquire()
        manager.remove("child-a")
        second = manager.create("child-a")
        shared = second.lock is first.lock
        first.lock.release()

        manager.remove("child-a")
        third = manager.create("child-a")
        return shared, third.lock is first.lock

    shared, reused_after_release = asyncio.run(scenario())

    assert shared
    assert not reused_after_release
