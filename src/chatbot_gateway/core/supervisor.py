from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .dispatcher import CommandDispatcher
from .ports import CredentialStore, TransportConnection, TransportConnector
from .types import ConnectionClosed, ConnectionOpened, InboundMessage

logger = logging.getLogger(__name__)

BASE_DELAY_SECONDS = 3.0
BACKOFF_MULTIPLIER = 1.5
MAX_DELAY_SECONDS = 60.0
MAX_RECONNECT_ATTEMPTS = 5
RESET_COOLDOWN_SECONDS = 5.0

STATE_IDLE = "idle"
STATE_CONNECTING = "connecting"
STATE_CONNECTED = "connected"
STATE_BACKOFF = "backoff"
STATE_RESETTING = "resetting"
STATE_STOPPED = "stopped"


@dataclass
class SupervisorStatus:
    state: str
    attempts: int
    self_id: Optional[str] = None
    last_disconnect_reason: Optional[str] = None


class ConnectionSupervisor:
    """Keeps exactly one transport connection alive and feeds it to the dispatcher.

    Disconnects are retried with exponential backoff. Once the attempt budget
    is spent, or the transport reports a logout, stored credentials are purged
    and a fresh connection cycle starts after a short cooldown.
    """

    def __init__(
        self,
        connector: TransportConnector,
        dispatcher: CommandDispatcher,
        credentials: CredentialStore,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        base_delay: float = BASE_DELAY_SECONDS,
        multiplier: float = BACKOFF_MULTIPLIER,
        max_delay: float = MAX_DELAY_SECONDS,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        reset_cooldown: float = RESET_COOLDOWN_SECONDS,
    ):
        self._connector = connector
        self._dispatcher = dispatcher
        self._credentials = credentials
        self._sleep = sleep
        self._base_delay = base_delay
        self._multiplier = multiplier
        self._max_delay = max_delay
        self._max_attempts = max_attempts
        self._reset_cooldown = reset_cooldown

        self._state = STATE_IDLE
        self._attempts = 0
        self._self_id: Optional[str] = None
        self._last_reason: Optional[str] = None
        self._connection: Optional[TransportConnection] = None
        self._stopping = False
        self._tasks: set[asyncio.Task] = set()

    def next_delay(self, attempt: int) -> float:
        delay = self._base_delay * (self._multiplier ** max(0, attempt - 1))
        return min(delay, self._max_delay)

    def status(self) -> SupervisorStatus:
        return SupervisorStatus(
            state=self._state,
            attempts=self._attempts,
            self_id=self._self_id,
            last_disconnect_reason=self._last_reason,
        )

    async def run(self) -> None:
        self._stopping = False
        while not self._stopping:
            self._state = STATE_CONNECTING
            try:
                connection = await self._connector.connect()
            except Exception as exc:
                logger.warning("Connection attempt failed: %s", exc)
                self._last_reason = str(exc) or exc.__class__.__name__
                await self._schedule_reconnect()
                continue

            self._connection = connection
            try:
                closed = await self._pump(connection)
            except Exception as exc:
                logger.warning("Transport event stream failed", exc_info=True)
                closed = ConnectionClosed(reason=str(exc) or exc.__class__.__name__)
            finally:
                self._connection = None

            self._last_reason = closed.reason
            if self._stopping:
                break
            if closed.logged_out:
                logger.warning("Transport reported logout (%s); purging credentials", closed.reason)
                await self._reset_credentials()
                continue
            logger.info("Connection closed: %s", closed.reason or "no reason given")
            await self._schedule_reconnect()

        self._state = STATE_STOPPED
        logger.info("Connection supervisor stopped")

    async def stop(self) -> None:
        self._stopping = True
        connection = self._connection
        if connection is None:
            return
        try:
            await connection.close()
        except Exception:
            logger.warning("Failed to close transport connection", exc_info=True)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _pump(self, connection: TransportConnection) -> ConnectionClosed:
        async for event in connection.events():
            if isinstance(event, ConnectionOpened):
                self._on_opened(event)
            elif isinstance(event, InboundMessage):
                self._spawn(event, connection)
            elif isinstance(event, ConnectionClosed):
                return event
            if self._stopping:
                return ConnectionClosed(reason="supervisor stopped")
        return ConnectionClosed(reason="event stream ended")

    def _on_opened(self, event: ConnectionOpened) -> None:
        self._state = STATE_CONNECTED
        self._attempts = 0
        if event.self_id:
            self._self_id = event.self_id
            self._dispatcher.self_id = event.self_id
        logger.info("Connected as %s", self._self_id or "unknown")

    def _spawn(self, message: InboundMessage, connection: TransportConnection) -> None:
        task = asyncio.create_task(self._dispatcher.handle_inbound(message, connection))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Inbound message handling failed", exc_info=exc)

    async def _schedule_reconnect(self) -> None:
        if self._stopping:
            return
        self._attempts += 1
        if self._attempts > self._max_attempts:
            logger.warning("Reconnect attempts exhausted (%s); resetting credentials", self._max_attempts)
            await self._reset_credentials()
            return
        delay = self.next_delay(self._attempts)
        self._state = STATE_BACKOFF
        logger.info("Reconnecting in %.1fs (attempt %s/%s)", delay, self._attempts, self._max_attempts)
        await self._sleep(delay)

    async def _reset_credentials(self) -> None:
        self._state = STATE_RESETTING
        self._self_id = None
        try:
            await self._credentials.purge()
        except Exception:
            logger.exception("Failed to purge stored credentials")
        self._attempts = 0
        await self._sleep(self._reset_cooldown)
