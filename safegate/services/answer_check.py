"""Decides whether a child's transcribed answer matches the card."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Optional, Sequence

from openai import APIError

from safegate.config import settings

log = logging.getLogger(__name__)

# Common speech-recognition substitutions, keyed by the target word.
PHONETIC_VARIATIONS: dict[str, list[str]] = {
    "cold": ["called", "coal"],
    "hot": ["hat", "hut"],
    "big": ["beg", "bag"],
    "small": ["smell", "mall"],
    "fast": ["fist", "fest"],
    "slow": ["slew"],
    "sad": ["said", "sat"],
    "tall": ["toll", "tale"],
    "short": ["shirt", "shot"],
    "light": ["lite", "lit"],
    "dark": ["dock", "dork"],
    "hard": ["heart"],
    "soft": ["sought"],
    "clean": ["clene"],
    "dirty": ["thirty"],
    "new": ["knew", "nu"],
    "old": ["owed"],
    "wet": ["what"],
    "dry": ["dri", "try"],
    "full": ["fool"],
    "empty": ["empti"],
    "loud": ["allowed"],
    "quiet": ["quite"],
    "heavy": ["heave"],
    "open": ["opened"],
    "closed": ["close"],
    "down": ["downed"],
    "good": ["could", "wood"],
    "bad": ["bed", "bat"],
}

# Describing-word categories where a synonym is an acceptable answer.
AI_CATEGORIES = (
    "Adjectives - Opposites",
    "Descriptive Words - Opposites",
    "Antonyms",
    "Antonym Name One - Middle",
    "Synonym Name One - Elementary",
    "Synonym-Name One - Middle",
    "Synonyms Level 1",
)


def phonetic_variations(word: str) -> list[str]:
    normalized = word.lower().strip()
    return [normalized, *PHONETIC_VARIATIONS.get(normalized, [])]


def matches_answer(transcription: str, targets: Sequence[str]) -> bool:
    """Exact, contains, reverse-contains or phonetic match against any target."""
    normalized = transcription.lower().strip()
    if not normalized:
        return False
    for target in targets:
        normalized_target = target.lower().strip()
        if not normalized_target:
            continue
        if normalized == normalized_target or normalized_target in normalized:
            return True
        # "the cold" accepts "cold", but not a stray "co"
        if len(normalized) >= 3 and normalized in normalized_target:
            return True
        if any(v in normalized for v in phonetic_variations(normalized_target)):
            return True
    return False


class AnswerChecker:
    """Sync matching first, then an AI similarity check for describing words.

    Similarity verdicts are memoized in a bounded LRU cache.
    """

    def __init__(
        self,
        llm=None,
        cache_size: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.llm = llm
        self.cache_size = cache_size or settings.SIMILARITY_CACHE_SIZE
        self.timeout = timeout or settings.LLM_TIMEOUT_SECONDS
        self._cache: OrderedDict[tuple[str, str], bool] = OrderedDict()

    @property
    def cache_size_used(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def check(
        self,
        transcription: str,
        targets: Sequence[str],
        category: str = "",
        question: str = "",
    ) -> bool:
        if matches_answer(transcription, targets):
            return True
        if self.llm is None or category not in AI_CATEGORIES or not targets:
            return False
        log.debug(f"Sync match failed for {transcription!r}, trying AI similarity")
        return await self.similar(transcription, targets[0], category, question)

    async def similar(
        self, child: str, target: str, category: str = "", question: str = ""
    ) -> bool:
        key = (child.lower().strip(), target.lower().strip())
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]

        try:
            result = await asyncio.wait_for(
                self.llm.judge_similarity(child, target, category, question),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            log.warning(f"Similarity check timed out after {self.timeout}s")
            return False
        except (APIError, ValueError) as e:
            log.warning(f"Similarity check failed: {e}")
            return False

        self._cache[key] = result
        if len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        if result:
            log.info(f"AI accepted {child!r} as equivalent to {target!r}")
        return result
