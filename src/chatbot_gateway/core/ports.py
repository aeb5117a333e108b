from __future__ import annotations

from typing import AsyncIterator, Iterable, Optional, Protocol, Union

from .config import BotConfig
from .types import (
    CommandContext,
    ConnectionClosed,
    ConnectionOpened,
    CooldownEntry,
    GameStatView,
    InboundMessage,
    Session,
    StatDelta,
    UsageStat,
)

ConnectionEvent = Union[ConnectionOpened, InboundMessage, ConnectionClosed]


class Transport(Protocol):
    """Outbound side of a connection; sends raise TransportClosedError once it is gone."""

    async def send_message(
        self,
        conversation_id: str,
        text: str,
        *,
        mentions: Optional[list[str]] = None,
    ) -> None:
        ...

    async def send_presence(self, conversation_id: str, presence: str) -> None:
        ...


class TransportConnection(Transport, Protocol):
    def events(self) -> AsyncIterator[ConnectionEvent]:
        ...

    async def close(self) -> None:
        ...


class TransportConnector(Protocol):
    async def connect(self) -> TransportConnection:
        ...


class CredentialStore(Protocol):
    async def purge(self) -> None:
        ...


class Command(Protocol):
    async def handle(self, ctx: CommandContext) -> None:
        ...


class SessionBackend(Protocol):
    def load_all(self) -> list[Session]:
        ...

    def upsert(self, session: Session) -> None:
        ...

    def delete(self, conversation_id: str, participant_id: str) -> None:
        ...

    def delete_many(self, keys: Iterable[tuple[str, str]]) -> None:
        ...


class CooldownBackend(Protocol):
    def load_all(self) -> list[tuple[str, str, CooldownEntry]]:
        ...

    def save(self, participant_id: str, command_name: str, entry: CooldownEntry) -> None:
        ...

    def delete(self, participant_id: str, command_name: str) -> None:
        ...


class LeaderboardSink(Protocol):
    def get_user_stat(self, participant_id: str, game: str) -> GameStatView | None:
        ...

    def update_user_stat(self, participant_id: str, game: str, delta: StatDelta) -> GameStatView:
        ...

    def get_top_n(self, game: str, n: int = 10) -> list[GameStatView]:
        ...


class UsageStatsSink(Protocol):
    def increment(self, command: str, participant_id: str) -> None:
        ...

    def get_all(self) -> list[UsageStat]:
        ...


class ConfigSource(Protocol):
    def get_current_config(self) -> BotConfig:
        ...
