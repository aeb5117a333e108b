from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .clients.words import HttpWordSource, StaticWordSource, WordSource
from .commands import admin_descriptors, default_descriptors
from .core.config import BotConfig, StaticConfigSource, load_config
from .core.cooldowns import CooldownTracker
from .core.dispatcher import CommandDispatcher
from .core.ports import LeaderboardSink, UsageStatsSink
from .core.registry import CommandRegistry
from .core.sessions import SessionStore
from .games import hangman, rps
from .games.base import GameSessionEngine
from .persistence.sqlalchemy import (
    SQLAlchemyCooldownBackend,
    SQLAlchemyLeaderboard,
    SQLAlchemySessionBackend,
    SQLAlchemyUnitOfWork,
    SQLAlchemyUsageStats,
    build_engine,
    build_session_factory,
    create_schema,
)

logger = logging.getLogger(__name__)


@dataclass
class Gateway:
    config_source: StaticConfigSource
    sessions: SessionStore
    cooldowns: CooldownTracker
    registry: CommandRegistry
    dispatcher: CommandDispatcher
    hangman: GameSessionEngine
    rps: GameSessionEngine
    leaderboard: Optional[LeaderboardSink] = None
    usage_stats: Optional[UsageStatsSink] = None

    def start(self) -> int:
        """Load durable sessions and cooldowns, then rebuild the game indexes."""
        self.sessions.load()
        self.cooldowns.load()
        return GameSessionEngine.recover_all([self.hangman, self.rps])


def build_uow_factory(database_url: str) -> Callable[[], SQLAlchemyUnitOfWork]:
    engine = build_engine(database_url)
    create_schema(engine)
    session_factory = build_session_factory(engine)
    return lambda: SQLAlchemyUnitOfWork(session_factory)


def default_word_source(config: BotConfig) -> WordSource:
    if config.word_source_url:
        return HttpWordSource(
            config.word_source_url,
            timeout_total_seconds=config.http_timeout_seconds,
            timeout_connect_seconds=config.http_connect_timeout_seconds,
            max_attempts=config.http_max_attempts,
        )
    return StaticWordSource()


def build_gateway(
    config: BotConfig | None = None,
    *,
    uow_factory: Callable[[], SQLAlchemyUnitOfWork] | None = None,
    durable: bool = True,
    words: WordSource | None = None,
    rng: random.Random | None = None,
    clock: Callable[[], datetime] | None = None,
    private_conversation_for: Callable[[str], str] | None = None,
) -> Gateway:
    if config is None:
        config = load_config()
    config_source = StaticConfigSource(config, loader=load_config)

    if durable and uow_factory is None:
        uow_factory = build_uow_factory(config.database_url)

    session_backend = SQLAlchemySessionBackend(uow_factory) if uow_factory else None
    cooldown_backend = SQLAlchemyCooldownBackend(uow_factory) if uow_factory else None
    leaderboard = SQLAlchemyLeaderboard(uow_factory) if uow_factory else None
    usage_stats = SQLAlchemyUsageStats(uow_factory) if uow_factory else None

    sessions = SessionStore(
        session_backend,
        ttl_seconds=config.session_ttl_seconds,
        max_sessions_per_conversation=config.max_sessions_per_conversation,
        clock=clock,
    )
    cooldowns = CooldownTracker(cooldown_backend, max_age_seconds=config.cooldown_max_age_seconds, clock=clock)

    hangman_engine = hangman.build_engine(
        sessions,
        leaderboard=leaderboard,
        private_conversation_for=private_conversation_for,
    )
    rps_engine = rps.build_engine(
        sessions,
        leaderboard=leaderboard,
        private_conversation_for=private_conversation_for,
    )

    registry = CommandRegistry()
    accepted = registry.register_many(
        default_descriptors(hangman_engine, rps_engine, words or default_word_source(config), rng)
        + admin_descriptors(config_source, cooldowns)
    )
    logger.info("Registered %s commands", accepted)

    dispatcher = CommandDispatcher(
        registry,
        sessions,
        cooldowns,
        config_source,
        usage_stats=usage_stats,
        leaderboard=leaderboard,
    )
    return Gateway(
        config_source=config_source,
        sessions=sessions,
        cooldowns=cooldowns,
        registry=registry,
        dispatcher=dispatcher,
        hangman=hangman_engine,
        rps=rps_engine,
        leaderboard=leaderboard,
        usage_stats=usage_stats,
    )
