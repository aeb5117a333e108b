"""
Word sources for the word-guessing game.

``HttpWordSource`` asks a dictionary service for a random entry; entries whose
lemma is not a single plain word are skipped and another one is requested.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

import aiohttp

from ..core.errors import ExternalServiceError

logger = logging.getLogger(__name__)

DEFAULT_WORD_SOURCE_URL = "https://kbbi.raf555.dev/api/v1/entry/_random"

_REJECTED_CHARS = (" ", "-", ",", ".")


@dataclass(frozen=True)
class WordEntry:
    word: str
    hint: str


class WordSource(Protocol):
    async def random_word(self) -> WordEntry:
        ...


DEFAULT_WORDS: tuple[WordEntry, ...] = (
    WordEntry("kucing", "hewan peliharaan yang suka mengeong"),
    WordEntry("harimau", "kucing besar bergaris dari hutan Sumatra"),
    WordEntry("jendela", "lubang berdaun pada dinding untuk cahaya dan udara"),
    WordEntry("pelangi", "lengkung warna di langit setelah hujan"),
    WordEntry("keyboard", "input device made of rows of keys"),
    WordEntry("python", "a large snake, or a programming language"),
    WordEntry("galaxy", "a system of billions of stars"),
    WordEntry("sepeda", "kendaraan beroda dua yang dikayuh"),
)


def is_plain_word(lemma: str) -> bool:
    if not lemma or any(ch in lemma for ch in _REJECTED_CHARS):
        return False
    return lemma.isascii() and lemma.isalpha()


class StaticWordSource:
    def __init__(self, words: Sequence[WordEntry] = DEFAULT_WORDS, rng: random.Random | None = None):
        if not words:
            raise ValueError("StaticWordSource needs at least one word")
        self._words = list(words)
        self._rng = rng or random.Random()

    async def random_word(self) -> WordEntry:
        entry = self._rng.choice(self._words)
        return WordEntry(entry.word.lower(), entry.hint)


class HttpWordSource:
    def __init__(
        self,
        url: str = DEFAULT_WORD_SOURCE_URL,
        timeout_total_seconds: float = 5.0,
        timeout_connect_seconds: float = 2.0,
        max_attempts: int = 10,
    ) -> None:
        self.url = url
        self.timeout_total_seconds = float(timeout_total_seconds)
        self.timeout_connect_seconds = float(timeout_connect_seconds)
        self.max_attempts = max(1, int(max_attempts))

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.timeout_total_seconds,
            connect=self.timeout_connect_seconds,
        )

    async def random_word(self) -> WordEntry:
        async with aiohttp.ClientSession(timeout=self._timeout()) as session:
            for attempt in range(1, self.max_attempts + 1):
                data = await self._fetch(session)
                entry = self._parse(data)
                if entry is not None:
                    return entry
                logger.debug("Skipping unusable dictionary entry (attempt %s/%s)", attempt, self.max_attempts)
        raise ExternalServiceError(f"no usable word after {self.max_attempts} attempts")

    async def _fetch(self, session: aiohttp.ClientSession) -> Any:
        try:
            async with session.get(self.url) as resp:
                if resp.status < 200 or resp.status >= 300:
                    raise ExternalServiceError(f"word service HTTP {resp.status}")
                return await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise ExternalServiceError("word service timeout") from e
        except aiohttp.ClientError as e:
            raise ExternalServiceError("word service connection error") from e
        except ValueError as e:
            raise ExternalServiceError("word service returned invalid JSON") from e

    @staticmethod
    def _parse(data: Any) -> Optional[WordEntry]:
        if not isinstance(data, dict):
            return None
        lemma = str(data.get("lemma") or "").strip()
        if not is_plain_word(lemma):
            return None
        hint = ""
        try:
            hint = str(data["entries"][0]["definitions"][0]["definition"])
        except (KeyError, IndexError, TypeError):
            pass
        return WordEntry(lemma.lower(), hint or "-")
