from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import pytest

from chatbot_gateway.core.config import BotConfig, StaticConfigSource
from chatbot_gateway.core.cooldowns import CooldownTracker
from chatbot_gateway.core.dispatcher import CommandDispatcher
from chatbot_gateway.core.errors import TransportClosedError
from chatbot_gateway.core.registry import CommandRegistry
from chatbot_gateway.core.sessions import SessionStore
from chatbot_gateway.core.types import CommandContext, InboundMessage
from chatbot_gateway.persistence.sqlalchemy.db import build_engine, build_session_factory, create_schema
from chatbot_gateway.persistence.sqlalchemy.uow import SQLAlchemyUnitOfWork


class MutableClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingTransport:
    def __init__(self, fail_sends: bool = False):
        self.sent: list[tuple[str, str, Optional[list[str]]]] = []
        self.presences: list[tuple[str, str]] = []
        self.fail_sends = fail_sends

    async def send_message(self, conversation_id: str, text: str, *, mentions: Optional[list[str]] = None) -> None:
        if self.fail_sends:
            raise TransportClosedError("transport closed")
        self.sent.append((conversation_id, text, mentions))

    async def send_presence(self, conversation_id: str, presence: str) -> None:
        self.presences.append((conversation_id, presence))

    def texts(self, conversation_id: str | None = None) -> list[str]:
        return [text for conv, text, _ in self.sent if conversation_id is None or conv == conversation_id]

    def last(self, conversation_id: str | None = None) -> str:
        texts = self.texts(conversation_id)
        assert texts, f"nothing was sent to {conversation_id}"
        return texts[-1]

    def clear(self) -> None:
        self.sent.clear()
        self.presences.clear()


@pytest.fixture()
def session_factory():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    create_schema(engine)
    return build_session_factory(engine)


@pytest.fixture()
def uow_factory(session_factory):
    def _factory():
        return SQLAlchemyUnitOfWork(session_factory)

    return _factory


@pytest.fixture()
def clock():
    return MutableClock()


@pytest.fixture()
def transport():
    return RecordingTransport()


@pytest.fixture()
def config():
    return BotConfig(database_url="sqlite+pysqlite:///:memory:")


@pytest.fixture()
def sessions(clock):
    return SessionStore(ttl_seconds=3600, max_sessions_per_conversation=5, clock=clock)


@pytest.fixture()
def make_ctx(sessions, transport, config):
    """Build a CommandContext for calling a handler directly."""

    def _make(
        conversation_id: str,
        participant_id: str,
        args: list[str],
        *,
        command_name: str = "test",
        is_group: bool | None = None,
        leaderboard=None,
    ) -> CommandContext:
        if is_group is None:
            is_group = conversation_id.endswith("@g.us")
        message = InboundMessage(
            conversation_id=conversation_id,
            participant_id=participant_id,
            text=" ".join([command_name, *args]),
            is_group=is_group,
        )
        return CommandContext(
            command_name=command_name,
            args=list(args),
            conversation_id=conversation_id,
            participant_id=participant_id,
            transport=transport,
            sessions=sessions,
            message=message,
            config=config,
            leaderboard=leaderboard,
        )

    return _make


@pytest.fixture()
def make_dispatcher(sessions, clock, config):
    def _make(registry: CommandRegistry | None = None, **kwargs) -> CommandDispatcher:
        return CommandDispatcher(
            registry or CommandRegistry(),
            sessions,
            CooldownTracker(clock=clock),
            StaticConfigSource(config),
            **kwargs,
        )

    return _make
