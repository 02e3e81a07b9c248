"""Safety-gate pipeline for one session.

Signals -> state -> level -> interventions + session config -> constraints
-> AI reply (validated, with fallback) -> UIPackage.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from safegate.config import SafetyGateConfig, load_safety_config, settings
from safegate.constraints import (
    build_constraints,
    build_reasoning,
    build_response_context,
    determine_decision,
)
from safegate.interventions import select_interventions
from safegate.levels import assess_level
from safegate.models import (
    BackendResponse,
    ChildInactiveEvent,
    ChildResponseEvent,
    Event,
    LLMReply,
    Overlay,
    Signal,
    Speech,
    State,
    TaskContext,
    UIPackage,
)
from safegate.planner import adapt_session_config
from safegate.prompts import CHOICE_PROMPT, build_system_prompt
from safegate.services.llm import LLMService
from safegate.services.trace_store import TraceStore, trace_record
from safegate.signals import interpret_signals
from safegate.state import Clock, StateReducer, utc_now
from safegate.validator import fallback_reply, validate

log = logging.getLogger(__name__)


class Orchestrator:
    """Runs every event of one session through the pipeline.

    ``llm`` needs ``generate_reply(system_prompt)``; ``classifier`` needs
    ``classify_signals(text)``. Either may be None, in which case the
    fallback reply and the keyword rules are used.
    """

    def __init__(
        self,
        config: Optional[SafetyGateConfig] = None,
        llm=None,
        classifier=None,
        trace_store: Optional[TraceStore] = None,
        session_id: str = "default",
        clock: Clock = utc_now,
        timeout: Optional[float] = None,
    ):
        self.config = config or load_safety_config()
        self.reducer = StateReducer(self.config.state, clock=clock)
        self.llm = llm
        self.classifier = classifier
        self.trace_store = trace_store
        self.session_id = session_id
        self.timeout = timeout or settings.LLM_TIMEOUT_SECONDS
        self.last_response: Optional[BackendResponse] = None

    @classmethod
    def from_settings(
        cls, session_id: str = "default", trace_store: Optional[TraceStore] = None
    ) -> "Orchestrator":
        llm = LLMService.from_settings()
        classifier = llm if llm is not None and settings.USE_LLM_SIGNAL_CLASSIFIER else None
        return cls(llm=llm, classifier=classifier, trace_store=trace_store, session_id=session_id)

    @property
    def state(self) -> State:
        return self.reducer.get_state()

    def reset_for_break(self) -> State:
        return self.reducer.reset_for_break()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def process_event(
        self, event: Event, task_context: Optional[TaskContext] = None
    ) -> UIPackage:
        text_signals = await self._classify(event)
        response = self.decide(event, task_context, text_signals)

        if isinstance(event, ChildInactiveEvent):
            reply, used_fallback = fallback_reply(response.level, "child_inactive"), False
        else:
            reply, used_fallback = await self._generate_reply(response)

        ui_package = self._build_ui_package(response, reply, used_fallback)
        log.info(
            f"[{self.session_id}] {event.type} -> {response.level.name} "
            f"signals={[s.value for s in response.signals]} "
            f"interventions={[i.value for i in response.interventions]} "
            f"fallback={used_fallback}"
        )
        if self.trace_store is not None:
            # File I/O runs off the event loop
            await asyncio.to_thread(
                self.trace_store.append_events,
                self.session_id,
                [trace_record(response, ui_package)],
            )
        return ui_package

    def decide(
        self,
        event: Event,
        task_context: Optional[TaskContext] = None,
        text_signals: Optional[list[Signal]] = None,
    ) -> BackendResponse:
        """The deterministic half of the pipeline; no AI involved."""
        signals = interpret_signals(event, self.config.signal_rules, text_signals)
        state = self.reducer.process_event(event, signals)
        level = assess_level(state, signals, self.config.levels)
        interventions = select_interventions(level, state, signals, self.config.interventions)
        session_config = adapt_session_config(level, self.config.session)

        response = BackendResponse(
            level=level,
            signals=signals,
            state=state,
            interventions=interventions,
            session_config=session_config,
            task_context=task_context,
            context=build_response_context(event, state, task_context),
            constraints=build_constraints(level, state, self.config.forbidden_words),
            decision=determine_decision(level, interventions),
            reasoning=build_reasoning(level, signals, interventions),
        )
        self.last_response = response
        return response

    async def _classify(self, event: Event) -> Optional[list[Signal]]:
        if self.classifier is None or not isinstance(event, ChildResponseEvent):
            return None
        if not event.response.strip():
            return None
        try:
            return await asyncio.wait_for(
                self.classifier.classify_signals(event.response), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            log.warning(f"Signal classifier timed out after {self.timeout}s, using keywords")
        except Exception as e:
            log.warning(f"Signal classifier failed, using keywords: {e}")
        return None

    async def _generate_reply(self, response: BackendResponse) -> tuple[LLMReply, bool]:
        """Return (reply, used_fallback)."""
        fallback = fallback_reply(response.level, response.context.what_happened)
        if self.llm is None:
            return fallback, True

        prompt = build_system_prompt(response)
        try:
            reply = await asyncio.wait_for(
                self.llm.generate_reply(prompt), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            log.warning(f"AI reply timed out after {self.timeout}s, using fallback")
            return fallback, True
        except Exception as e:
            log.warning(f"AI reply failed, using fallback: {e}")
            return fallback, True

        result = validate(reply, response.constraints, response.context.child_said)
        if not result.valid:
            log.warning(f"AI reply rejected ({result.reason}): {reply.coach_line!r}")
            return fallback, True
        return reply, False

    def _build_ui_package(
        self, response: BackendResponse, reply: LLMReply, used_fallback: bool
    ) -> UIPackage:
        choice_message = ""
        if response.constraints.must_offer_choices:
            choice_message = reply.choice_presentation or CHOICE_PROMPT
        return UIPackage(
            overlay=Overlay(
                signals=response.signals,
                state=response.state,
                safety_level=response.level,
            ),
            interventions=response.interventions,
            session_config=response.session_config,
            speech=Speech(text=reply.coach_line),
            choice_message=choice_message,
            used_fallback=used_fallback,
        )
