from __future__ import annotations

import asyncio
import copy
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from .clock import utcnow
from .errors import DurableStoreUnavailable
from .ports import SessionBackend
from .types import Session

logger = logging.getLogger(__name__)


class SessionStore:
    """(conversation, participant) -> :class:`Session` with inactivity expiry.

    The in-memory map is the read path. Every mutation is written through to
    the optional durable backend; when the backend is unreachable the store
    keeps working from memory alone.
    """

    def __init__(
        self,
        backend: SessionBackend | None = None,
        *,
        ttl_seconds: int = 3600,
        max_sessions_per_conversation: int = 5,
        clock: Callable[[], datetime] | None = None,
    ):
        self._backend = backend
        self._ttl = timedelta(seconds=ttl_seconds)
        self._max_sessions = max_sessions_per_conversation
        self._clock = clock or utcnow
        self._sessions: dict[str, dict[str, Session]] = {}
        self._lock = threading.RLock()

    @property
    def durable(self) -> bool:
        return self._backend is not None

    def load(self) -> int:
        if self._backend is None:
            return 0
        try:
            rows = self._backend.load_all()
        except DurableStoreUnavailable as exc:
            logger.warning("Durable session store unavailable, running memory-only: %s", exc)
            self._backend = None
            return 0

        now = self._clock()
        loaded = 0
        stale: list[tuple[str, str]] = []
        with self._lock:
            for row in rows:
                if self._expired(row, now):
                    stale.append((row.conversation_id, row.participant_id))
                    continue
                self._sessions.setdefault(row.conversation_id, {})[row.participant_id] = row
                loaded += 1
        if stale:
            self._persist_delete_many(stale)
        logger.info("Loaded %s sessions from durable store (%s expired)", loaded, len(stale))
        return loaded

    def get(self, conversation_id: str, participant_id: str) -> Session | None:
        """Return a copy of the live session and refresh its activity time.

        The refresh stays in memory; only ``set`` writes the durable row. After
        a restart a session that was only read is aged from its last write.
        """
        with self._lock:
            bucket = self._sessions.get(conversation_id)
            if not bucket:
                return None
            session = bucket.get(participant_id)
            if session is None:
                return None
            now = self._clock()
            if self._expired(session, now):
                self._drop(conversation_id, participant_id)
                expired = True
            else:
                session.last_activity_at = now
                expired = False
                result = self._copy(session)
        if expired:
            self._persist_delete(conversation_id, participant_id)
            return None
        return result

    def set(self, conversation_id: str, participant_id: str, kind: str, payload: dict[str, Any]) -> bool:
        now = self._clock()
        with self._lock:
            evicted = self._evict_expired(conversation_id, now)
            bucket = self._sessions.get(conversation_id, {})
            if participant_id not in bucket and len(bucket) >= self._max_sessions:
                logger.info(
                    "Session limit reached in %s (%s sessions); refusing %s",
                    conversation_id,
                    len(bucket),
                    participant_id,
                )
                rejected = True
            else:
                rejected = False
                session = Session(
                    conversation_id=conversation_id,
                    participant_id=participant_id,
                    kind=kind,
                    payload=copy.deepcopy(payload),
                    last_activity_at=now,
                )
                self._sessions.setdefault(conversation_id, {})[participant_id] = session
                stored = self._copy(session)
        if evicted:
            self._persist_delete_many(evicted)
        if rejected:
            return False
        self._persist_upsert(stored)
        return True

    def clear(self, conversation_id: str, participant_id: str) -> None:
        with self._lock:
            self._drop(conversation_id, participant_id)
        self._persist_delete(conversation_id, participant_id)

    def list_all_in_conversation(self, conversation_id: str) -> list[Session]:
        now = self._clock()
        with self._lock:
            evicted = self._evict_expired(conversation_id, now)
            bucket = self._sessions.get(conversation_id, {})
            result = [self._copy(s) for s in bucket.values()]
        if evicted:
            self._persist_delete_many(evicted)
        return result

    def list_all_conversation_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions.keys())

    def sweep_expired(self) -> int:
        now = self._clock()
        evicted: list[tuple[str, str]] = []
        with self._lock:
            for conversation_id in list(self._sessions.keys()):
                evicted.extend(self._evict_expired(conversation_id, now))
        if evicted:
            self._persist_delete_many(evicted)
            logger.debug("Swept %s expired sessions", len(evicted))
        return len(evicted)

    async def run_sweeper(
        self,
        interval_seconds: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        while True:
            await sleep(interval_seconds)
            try:
                self.sweep_expired()
            except Exception:
                logger.exception("Session sweep failed")

    def _expired(self, session: Session, now: datetime) -> bool:
        return now - session.last_activity_at > self._ttl

    def _evict_expired(self, conversation_id: str, now: datetime) -> list[tuple[str, str]]:
        bucket = self._sessions.get(conversation_id)
        if not bucket:
            return []
        expired = [pid for pid, s in bucket.items() if self._expired(s, now)]
        for pid in expired:
            del bucket[pid]
        if not bucket:
            self._sessions.pop(conversation_id, None)
        return [(conversation_id, pid) for pid in expired]

    def _drop(self, conversation_id: str, participant_id: str) -> None:
        bucket = self._sessions.get(conversation_id)
        if not bucket:
            return
        bucket.pop(participant_id, None)
        if not bucket:
            self._sessions.pop(conversation_id, None)

    @staticmethod
    def _copy(session: Session) -> Session:
        return Session(
            conversation_id=session.conversation_id,
            participant_id=session.participant_id,
            kind=session.kind,
            payload=copy.deepcopy(session.payload),
            last_activity_at=session.last_activity_at,
        )

    def _persist_upsert(self, session: Session) -> None:
        if self._backend is None:
            return
        try:
            self._backend.upsert(session)
        except DurableStoreUnavailable:
            logger.warning(
                "Failed to persist session %s/%s",
                session.conversation_id,
                session.participant_id,
                exc_info=True,
            )

    def _persist_delete(self, conversation_id: str, participant_id: str) -> None:
        if self._backend is None:
            return
        try:
            self._backend.delete(conversation_id, participant_id)
        except DurableStoreUnavailable:
            logger.warning("Failed to delete session %s/%s", conversation_id, participant_id, exc_info=True)

    def _persist_delete_many(self, keys: list[tuple[str, str]]) -> None:
        if self._backend is None:
            return
        try:
            self._backend.delete_many(keys)
        except DurableStoreUnavailable:
            logger.warning("Failed to delete %s expired sessions", len(keys), exc_info=True)
