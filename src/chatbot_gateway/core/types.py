from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Optional

if TYPE_CHECKING:
    from .config import BotConfig
    from .ports import Command, LeaderboardSink, Transport
    from .sessions import SessionStore


CATEGORY_GAME = "game"
CATEGORY_GENERAL = "general"
CATEGORY_ADMIN = "admin"
CATEGORY_UTILITY = "utility"
COMMAND_CATEGORIES = (CATEGORY_GAME, CATEGORY_GENERAL, CATEGORY_ADMIN, CATEGORY_UTILITY)

LINK_SUFFIX = "_link"


def link_kind(game: str) -> str:
    return f"{game}{LINK_SUFFIX}"


def game_family(kind: str) -> str:
    if kind.endswith(LINK_SUFFIX):
        return kind[: -len(LINK_SUFFIX)]
    return kind


@dataclass
class Session:
    conversation_id: str
    participant_id: str
    kind: str
    payload: dict[str, Any]
    last_activity_at: datetime


@dataclass
class CooldownEntry:
    window_started_at: datetime
    use_count: int


@dataclass
class CommandDescriptor:
    name: str
    description: str
    category: str
    handler_factory: Optional[Callable[[], "Command"]]
    aliases: list[str] = field(default_factory=list)
    cooldown_ms: Optional[int] = None
    max_uses: Optional[int] = None
    required_roles: frozenset[str] = frozenset()
    disabled: bool = False
    disabled_reason: Optional[str] = None
    help_text: Optional[str] = None
    usage_examples: list[str] = field(default_factory=list)


@dataclass
class InboundMessage:
    conversation_id: str
    participant_id: str
    text: str
    is_group: bool = False
    is_from_self: bool = False
    raw: Any = None


@dataclass
class ConnectionOpened:
    self_id: Optional[str] = None


@dataclass
class ConnectionClosed:
    reason: str = ""
    logged_out: bool = False


@dataclass
class ParsedCommand:
    prefix: str
    name: str
    args: list[str]


@dataclass
class StatDelta:
    score: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0


@dataclass
class GameStatView:
    participant_id: str
    game: str
    score: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    last_played_at: Optional[datetime] = None


@dataclass
class UsageStat:
    command: str
    participant_id: str
    count: int
    last_used_at: Optional[datetime] = None


@dataclass
class CommandContext:
    command_name: str
    args: list[str]
    conversation_id: str
    participant_id: str
    transport: "Transport"
    sessions: "SessionStore"
    message: InboundMessage
    config: "BotConfig"
    leaderboard: Optional["LeaderboardSink"] = None

    @property
    def is_group(self) -> bool:
        return self.message.is_group

    async def reply(self, text: str, mentions: Optional[list[str]] = None) -> None:
        await self.transport.send_message(self.conversation_id, text, mentions=mentions)

    async def send(self, conversation_id: str, text: str, mentions: Optional[list[str]] = None) -> None:
        await self.transport.send_message(conversation_id, text, mentions=mentions)
