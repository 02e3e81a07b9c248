"""Child sessions: answer checking, response history and the inactivity timer.

SessionManager maps session_id -> ChildSession. Each session owns its own
orchestrator (and so its own state reducer); nothing is shared between
children except the answer checker's verdict cache.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
import time
import uuid
from typing import Any, Callable, Dict, Optional

from safegate.models import (
    AudioFlags,
    CardContext,
    ChildInactiveEvent,
    ChildResponseEvent,
    Intervention,
    Level,
    SafetyGateResult,
    SessionConfig,
    Speech,
    UIPackage,
)
from safegate.orchestrator import Orchestrator
from safegate.planner import should_trigger_scheduled_break
from safegate.prompts import CHOICE_PROMPT
from safegate.services.answer_check import AnswerChecker

log = logging.getLogger(__name__)

InactivityCallback = Callable[[SafetyGateResult], Any]


def with_choice_prompt(ui_package: UIPackage) -> UIPackage:
    """Make sure the spoken line ends by asking the child to pick a choice."""
    text = ui_package.speech.text
    if CHOICE_PROMPT.lower() not in text.lower():
        stem = re.sub(r"[.!?]+$", "", text.strip())
        text = f"{stem}! {CHOICE_PROMPT}"
    return ui_package.model_copy(
        update={
            "speech": Speech(text=text),
            "choice_message": ui_package.choice_message or CHOICE_PROMPT,
        }
    )


class ChildSession:
    def __init__(
        self,
        orchestrator: Orchestrator,
        answer_checker: Optional[AnswerChecker] = None,
        session_id: str = "default",
        lock: Optional[asyncio.Lock] = None,
        planned_duration: Optional[float] = None,
    ):
        self.orchestrator = orchestrator
        self.answer_checker = answer_checker or AnswerChecker(llm=orchestrator.llm)
        self.session_id = session_id
        self.lock = lock or asyncio.Lock()
        self.planned_duration = planned_duration

        self.current_card: Optional[CardContext] = None
        # Persist across cards for the whole session.
        self.attempt_count = 0
        self.response_history: list[str] = []

        self.inactivity_timeout = float(SessionConfig().inactivity_timeout)
        self.max_task_time = float(SessionConfig().max_task_time)
        self._card_started: Optional[float] = None
        self._inactivity_task: Optional[asyncio.Task] = None
        self._on_inactivity: Optional[InactivityCallback] = None

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    def set_current_card(self, card: CardContext) -> None:
        self.current_card = card
        self._card_started = time.monotonic()
        self.start_inactivity_timer()
        log.debug(f"[{self.session_id}] Card set {card.question!r}, waiting for answer")

    def reset_for_new_card(self) -> None:
        self.current_card = None
        self._card_started = None
        self.attempt_count = 0
        self.response_history = []

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    async def process_child_response(
        self, transcription: str, audio: Optional[AudioFlags] = None
    ) -> SafetyGateResult:
        """Run one spoken answer through the safety gate."""
        async with self.lock:
            return await self._process_child_response(transcription, audio)

    async def _process_child_response(
        self, transcription: str, audio: Optional[AudioFlags]
    ) -> SafetyGateResult:
        # The child answered, so any pending "are you there?" is void.
        self.stop_inactivity_timer()
        card = self.current_card

        is_correct: Optional[bool] = None
        if card is None:
            log.warning(f"[{self.session_id}] No card set, answer is not judged")
        else:
            is_correct = await self.answer_checker.check(
                transcription, card.target_answers, card.category, card.question
            )

        self.attempt_count += 1
        self.response_history.append(transcription)
        history = self.response_history
        event = ChildResponseEvent(
            response=transcription,
            correct=is_correct,
            previous_response=history[-2] if len(history) >= 2 else None,
            previous_previous_response=history[-3] if len(history) >= 3 else None,
            signals=audio if audio is not None and any(audio.model_dump().values()) else None,
        )

        task_context = card.to_task_context() if card is not None else None
        ui_package = await self.orchestrator.process_event(event, task_context)
        self._adopt_session_config(ui_package)

        level = ui_package.overlay.safety_level
        if is_correct:
            log.debug(f"[{self.session_id}] Correct answer, timer stopped")
        elif level >= Level.YELLOW:
            # Choices are on screen; the child picks one instead of answering.
            ui_package = with_choice_prompt(ui_package)
            log.debug(f"[{self.session_id}] Choices shown at {level.name}, timer stopped")
        elif card is not None:
            self.start_inactivity_timer()

        return SafetyGateResult(
            ui_package=ui_package,
            is_correct=bool(is_correct),
            attempt_number=self.attempt_count,
            child_said=transcription,
            response_history=list(self.response_history),
            task_time_exceeded=self._task_time_exceeded(),
            break_due=self._break_due(),
        )

    # ------------------------------------------------------------------
    # Choices
    # ------------------------------------------------------------------

    def handle_choice(self, action: str) -> None:
        """React to a choice the child picked from the menu."""
        log.info(f"[{self.session_id}] Choice selected: {action}")
        if action == Intervention.RETRY_CARD.value:
            self.start_inactivity_timer()
        elif action == Intervention.START_BREAK.value:
            self.stop_inactivity_timer()
            self.orchestrator.reset_for_break()
        elif action in Intervention.__members__:
            # Skip waits for the next card; breathing and adult help pause the session.
            self.stop_inactivity_timer()
        else:
            log.warning(f"[{self.session_id}] Unknown choice {action!r}, timer stopped")
            self.stop_inactivity_timer()

    def resume_session(self) -> None:
        """Back to cards after a break, breathing or adult help."""
        log.debug(f"[{self.session_id}] Session resumed")
        if self.current_card is not None:
            self.start_inactivity_timer()

    # ------------------------------------------------------------------
    # Inactivity
    # ------------------------------------------------------------------

    def set_inactivity_callback(self, callback: InactivityCallback) -> None:
        self._on_inactivity = callback

    @property
    def waiting_for_response(self) -> bool:
        return self._inactivity_task is not None and not self._inactivity_task.done()

    def start_inactivity_timer(self) -> None:
        self.stop_inactivity_timer()
        self._inactivity_task = asyncio.create_task(
            self._inactivity_countdown(self.inactivity_timeout)
        )

    def stop_inactivity_timer(self) -> None:
        if self._inactivity_task is not None:
            self._inactivity_task.cancel()
            self._inactivity_task = None

    async def _inactivity_countdown(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        # Detach first so stopping the timer from here does not cancel us.
        self._inactivity_task = None
        log.info(f"[{self.session_id}] No answer after {timeout:.0f}s, sending CHILD_INACTIVE")
        try:
            result = await self.handle_inactivity()
            if self._on_inactivity is None:
                log.warning(f"[{self.session_id}] No inactivity callback registered")
                return
            outcome = self._on_inactivity(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            log.exception(f"[{self.session_id}] Inactivity handling failed")

    async def handle_inactivity(self) -> SafetyGateResult:
        async with self.lock:
            task_context = self.current_card.to_task_context() if self.current_card else None
            ui_package = await self.orchestrator.process_event(ChildInactiveEvent(), task_context)
            self._adopt_session_config(ui_package)

            if ui_package.overlay.safety_level < Level.YELLOW and self.current_card is not None:
                self.start_inactivity_timer()
            else:
                self.stop_inactivity_timer()

            return SafetyGateResult(
                ui_package=ui_package,
                is_correct=False,
                attempt_number=self.attempt_count,
                child_said="[INACTIVE]",
                response_history=list(self.response_history),
                break_due=self._break_due(),
            )

    # ------------------------------------------------------------------

    def close(self) -> None:
        self.stop_inactivity_timer()
        log.debug(f"[{self.session_id}] Session closed")

    def _adopt_session_config(self, ui_package: UIPackage) -> None:
        # Check-in gets more frequent as the level rises.
        self.inactivity_timeout = float(ui_package.session_config.inactivity_timeout)
        self.max_task_time = float(ui_package.session_config.max_task_time)

    def _task_time_exceeded(self) -> bool:
        if self._card_started is None:
            return False
        return time.monotonic() - self._card_started > self.max_task_time

    def _break_due(self) -> bool:
        if not self.planned_duration:
            return False
        return should_trigger_scheduled_break(self.orchestrator.state, self.planned_duration)


class SessionManager:
    """Active child sessions, one lock each so a child's events never interleave."""

    def __init__(
        self,
        orchestrator_factory: Optional[Callable[[str], Orchestrator]] = None,
        answer_checker: Optional[AnswerChecker] = None,
    ):
        self._orchestrator_factory = orchestrator_factory or (
            lambda session_id: Orchestrator.from_settings(session_id=session_id)
        )
        self._answer_checker = answer_checker
        self._sessions: Dict[str, ChildSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def create(self, session_id: Optional[str] = None) -> ChildSession:
        session_id = session_id or str(uuid.uuid4())[:12]
        if session_id in self._sessions:
            return self._sessions[session_id]
        orchestrator = self._orchestrator_factory(session_id)
        if self._answer_checker is None:
            self._answer_checker = AnswerChecker(llm=orchestrator.llm)
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        session = ChildSession(
            orchestrator, self._answer_checker, session_id=session_id, lock=lock
        )
        self._sessions[session_id] = session
        log.info(f"Created session {session_id} (total: {len(self._sessions)})")
        return session

    def get(self, session_id: str) -> Optional[ChildSession]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        lock = self._locks.get(session_id)
        # A held lock stays registered so a re-created session waits on it.
        if lock is not None and not lock.locked():
            del self._locks[session_id]
        if session is not None:
            session.close()
            log.info(f"Removed session {session_id} (total: {len(self._sessions)})")

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.remove(session_id)

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    async def process(
        self,
        session_id: str,
        transcription: str,
        audio: Optional[AudioFlags] = None,
    ) -> SafetyGateResult:
        session = self.get(session_id) or self.create(session_id)
        return await session.process_child_response(transcription, audio)
