from __future__ import annotations

import asyncio
import logging
import math
import threading
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from .clock import utcnow
from .errors import DurableStoreUnavailable
from .ports import CooldownBackend
from .types import CooldownEntry

logger = logging.getLogger(__name__)


class CooldownTracker:
    """Per (participant, command) usage windows."""

    def __init__(
        self,
        backend: CooldownBackend | None = None,
        *,
        max_age_seconds: int = 86400,
        clock: Callable[[], datetime] | None = None,
    ):
        self._backend = backend
        self._max_age = timedelta(seconds=max_age_seconds)
        self._clock = clock or utcnow
        self._entries: dict[tuple[str, str], CooldownEntry] = {}
        self._lock = threading.Lock()

    def load(self) -> int:
        """Restore windows from the backend, dropping rows older than ``max_age``."""
        if self._backend is None:
            return 0
        try:
            rows = self._backend.load_all()
        except DurableStoreUnavailable as exc:
            logger.warning("Durable cooldown store unavailable, running memory-only: %s", exc)
            self._backend = None
            return 0

        now = self._clock()
        loaded = 0
        stale: list[tuple[str, str]] = []
        with self._lock:
            for participant_id, command_name, entry in rows:
                if now - entry.window_started_at > self._max_age:
                    stale.append((participant_id, command_name))
                    continue
                self._entries[(participant_id, command_name)] = entry
                loaded += 1
        for participant_id, command_name in stale:
            self._forget(participant_id, command_name)
        logger.info("Loaded %s cooldowns from durable store (%s stale)", loaded, len(stale))
        return loaded

    def check_and_record(
        self,
        participant_id: str,
        command_name: str,
        cooldown_ms: int,
        max_uses: int = 1,
    ) -> bool:
        """Record one use and return True when the command is on cooldown.

        The first use of a key opens a window. Uses inside the window bump the
        counter even when rejected; once the window has elapsed it restarts
        with a count of one.
        """
        key = (participant_id, command_name)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._elapsed_ms(entry, now) > cooldown_ms:
                entry = CooldownEntry(window_started_at=now, use_count=1)
                self._entries[key] = entry
                on_cooldown = False
            else:
                entry.use_count += 1
                on_cooldown = entry.use_count > max(1, max_uses)
            snapshot = CooldownEntry(entry.window_started_at, entry.use_count)
        self._persist(participant_id, command_name, snapshot)
        return on_cooldown

    def get_remaining_seconds(self, participant_id: str, command_name: str, cooldown_ms: int) -> int:
        with self._lock:
            entry = self._entries.get((participant_id, command_name))
            if entry is None:
                return 0
            remaining_ms = cooldown_ms - self._elapsed_ms(entry, self._clock())
        return max(0, math.ceil(remaining_ms / 1000))

    def get(self, participant_id: str, command_name: str) -> CooldownEntry | None:
        with self._lock:
            entry = self._entries.get((participant_id, command_name))
            if entry is None:
                return None
            return CooldownEntry(entry.window_started_at, entry.use_count)

    def reset(self, participant_id: str, command_name: str) -> None:
        with self._lock:
            self._entries.pop((participant_id, command_name), None)
        self._forget(participant_id, command_name)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [key for key, entry in self._entries.items() if now - entry.window_started_at > self._max_age]
            for key in stale:
                del self._entries[key]
        for participant_id, command_name in stale:
            self._forget(participant_id, command_name)
        if stale:
            logger.debug("Cleaned up %s expired cooldowns", len(stale))
        return len(stale)

    async def run_sweeper(
        self,
        interval_seconds: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        while True:
            await sleep(interval_seconds)
            try:
                self.sweep()
            except Exception:
                logger.exception("Cooldown sweep failed")

    @staticmethod
    def _elapsed_ms(entry: CooldownEntry, now: datetime) -> float:
        return (now - entry.window_started_at).total_seconds() * 1000

    def _forget(self, participant_id: str, command_name: str) -> None:
        if self._backend is None:
            return
        try:
            self._backend.delete(participant_id, command_name)
        except DurableStoreUnavailable:
            logger.warning("Failed to delete cooldown %s/%s", participant_id, command_name, exc_info=True)

    def _persist(self, participant_id: str, command_name: str, entry: CooldownEntry) -> None:
        if self._backend is None:
            return
        try:
            self._backend.save(participant_id, command_name, entry)
        except DurableStoreUnavailable:
            logger.warning("Failed to persist cooldown %s/%s", participant_id, command_name, exc_info=True)
