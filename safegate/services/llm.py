"""OpenAI LLM service: coach replies, signal classification, answer similarity."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

import httpx
from openai import AsyncOpenAI

from safegate.config import settings
from safegate.models import LLMReply, Signal
from safegate.prompts import ANSWER_SIMILARITY, SIGNAL_CLASSIFIER

log = logging.getLogger(__name__)

REPLY_INSTRUCTION = (
    "Generate your response following the system prompt instructions. "
    "Respond with valid JSON only."
)


class LLMResponseError(ValueError):
    """The model answered, but not with usable JSON."""


def parse_json_object(raw_text: str) -> dict[str, Any]:
    """Parse a JSON object, tolerating markdown fences and stray escapes."""
    try:
        data = json.loads(raw_text)
    except json.JSONDecodeError:
        json_match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", raw_text)
        if json_match:
            raw_text = json_match.group(1)
        raw_text = re.sub(r'\\(?!["\\/bfnrtu])', r"\\\\", raw_text)
        try:
            data = json.loads(raw_text)
        except json.JSONDecodeError as e:
            raise LLMResponseError(f"Invalid JSON from model: {e}") from e
    if not isinstance(data, dict):
        raise LLMResponseError("Model returned JSON that is not an object")
    return data


class LLMService:
    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        classifier_model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.timeout = timeout or settings.LLM_TIMEOUT_SECONDS
        # One attempt per call: a failed call goes to the fallback, never a retry.
        self.client = client or AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            timeout=httpx.Timeout(self.timeout),
            max_retries=0,
        )
        self.model = model or settings.OPENAI_MODEL
        self.classifier_model = classifier_model or settings.OPENAI_CLASSIFIER_MODEL

    @classmethod
    def from_settings(cls) -> Optional["LLMService"]:
        """Return a service, or None when no API key is configured."""
        if not settings.OPENAI_API_KEY:
            log.info("OPENAI_API_KEY not set - AI replies disabled, using fallback")
            return None
        return cls()

    async def _complete_json(
        self, model: str, messages: list[dict[str, str]], max_tokens: int, **kwargs
    ) -> dict[str, Any]:
        response = await self.client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
            **kwargs,
        )
        text = response.choices[0].message.content if response.choices else None
        if not text:
            raise LLMResponseError("Model returned an empty response")
        return parse_json_object(text)

    async def generate_reply(self, system_prompt: str) -> LLMReply:
        """Ask the coach model for a reply. Raises on any failure."""
        data = await self._complete_json(
            self.model,
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": REPLY_INSTRUCTION},
            ],
            max_tokens=settings.LLM_MAX_TOKENS,
        )
        if not data.get("coach_line"):
            raise LLMResponseError("Model reply is missing coach_line")
        return LLMReply(
            coach_line=str(data["coach_line"]),
            choice_presentation=str(data.get("choice_presentation") or ""),
        )

    async def classify_signals(self, text: str) -> list[Signal]:
        """Text-based signals judged by the classifier model."""
        data = await self._complete_json(
            self.classifier_model,
            [
                {"role": "system", "content": SIGNAL_CLASSIFIER},
                {"role": "user", "content": f'Child said: "{text}"'},
            ],
            max_tokens=100,
        )
        log.debug(f"Classifier for {text!r}: {data}")
        mapping = {
            "break_request": Signal.WANTS_BREAK,
            "quit_request": Signal.WANTS_QUIT,
            "frustration": Signal.FRUSTRATION,
            "distress": Signal.DISTRESS,
        }
        return [signal for key, signal in mapping.items() if data.get(key) is True]

    async def judge_similarity(
        self, child: str, target: str, category: str = "", question: str = ""
    ) -> bool:
        """True if the child's word describes the same quality as the target."""
        prompt = ANSWER_SIMILARITY.format(
            category=category or "unknown",
            question=question or "unknown",
            target=target,
            child=child,
        )
        data = await self._complete_json(
            self.classifier_model,
            [{"role": "user", "content": prompt}],
            max_tokens=20,
            temperature=0.1,
        )
        return data.get("similar") is True
