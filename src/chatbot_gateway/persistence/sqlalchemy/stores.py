"""Durable-store adapters for the core ports, each running one unit of work per call.

Any database error surfaces as :class:`DurableStoreUnavailable` so callers can
decide whether to degrade or report.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator

from sqlalchemy.exc import SQLAlchemyError

from ...core.clock import utcnow
from ...core.errors import DurableStoreUnavailable
from ...core.normalize import dump_json, parse_json_dict
from ...core.types import CooldownEntry, GameStatView, Session, StatDelta, UsageStat
from ..interfaces import UnitOfWork
from .models import CommandUsage, GameStat

logger = logging.getLogger(__name__)

UowFactory = Callable[[], UnitOfWork]


@contextmanager
def _unit_of_work(uow_factory: UowFactory, action: str) -> Iterator[UnitOfWork]:
    try:
        with uow_factory() as uow:
            yield uow
    except SQLAlchemyError as exc:
        raise DurableStoreUnavailable(f"{action} failed: {exc}") from exc


def _stat_view(row: GameStat) -> GameStatView:
    return GameStatView(
        participant_id=row.participant_id,
        game=row.game,
        score=row.score,
        wins=row.wins,
        losses=row.losses,
        draws=row.draws,
        last_played_at=row.last_played_at,
    )


def _usage_view(row: CommandUsage) -> UsageStat:
    return UsageStat(
        command=row.command,
        participant_id=row.participant_id,
        count=row.count,
        last_used_at=row.last_used_at,
    )


class SQLAlchemySessionBackend:
    def __init__(self, uow_factory: UowFactory):
        self._uow_factory = uow_factory

    def load_all(self) -> list[Session]:
        with _unit_of_work(self._uow_factory, "session load") as uow:
            rows = uow.sessions.list_all()
            return [
                Session(
                    conversation_id=row.conversation_id,
                    participant_id=row.participant_id,
                    kind=row.kind,
                    payload=parse_json_dict(row.payload_json),
                    last_activity_at=row.last_activity_at,
                )
                for row in rows
            ]

    def upsert(self, session: Session) -> None:
        with _unit_of_work(self._uow_factory, "session upsert") as uow:
            uow.sessions.upsert(
                session.conversation_id,
                session.participant_id,
                session.kind,
                dump_json(session.payload),
                session.last_activity_at,
            )
            uow.commit()

    def delete(self, conversation_id: str, participant_id: str) -> None:
        with _unit_of_work(self._uow_factory, "session delete") as uow:
            uow.sessions.delete(conversation_id, participant_id)
            uow.commit()

    def delete_many(self, keys: Iterable[tuple[str, str]]) -> None:
        keys = list(keys)
        if not keys:
            return
        with _unit_of_work(self._uow_factory, "session bulk delete") as uow:
            deleted = uow.sessions.delete_many(keys)
            uow.commit()
        logger.debug("Deleted %s of %s session rows", deleted, len(keys))


class SQLAlchemyCooldownBackend:
    def __init__(self, uow_factory: UowFactory):
        self._uow_factory = uow_factory

    def load_all(self) -> list[tuple[str, str, CooldownEntry]]:
        with _unit_of_work(self._uow_factory, "cooldown load") as uow:
            return [
                (row.participant_id, row.command_name, CooldownEntry(row.window_started_at, row.use_count))
                for row in uow.cooldowns.list_all()
            ]

    def save(self, participant_id: str, command_name: str, entry: CooldownEntry) -> None:
        with _unit_of_work(self._uow_factory, "cooldown save") as uow:
            uow.cooldowns.upsert(participant_id, command_name, entry.window_started_at, entry.use_count)
            uow.commit()

    def delete(self, participant_id: str, command_name: str) -> None:
        with _unit_of_work(self._uow_factory, "cooldown delete") as uow:
            uow.cooldowns.delete(participant_id, command_name)
            uow.commit()


class SQLAlchemyLeaderboard:
    def __init__(self, uow_factory: UowFactory):
        self._uow_factory = uow_factory

    def get_user_stat(self, participant_id: str, game: str) -> GameStatView | None:
        with _unit_of_work(self._uow_factory, "leaderboard read") as uow:
            row = uow.game_stats.get(participant_id, game)
            return _stat_view(row) if row is not None else None

    def update_user_stat(self, participant_id: str, game: str, delta: StatDelta) -> GameStatView:
        with _unit_of_work(self._uow_factory, "leaderboard update") as uow:
            row = uow.game_stats.add_delta(
                participant_id,
                game,
                score=delta.score,
                wins=delta.wins,
                losses=delta.losses,
                draws=delta.draws,
                played_at=utcnow(),
            )
            view = _stat_view(row)
            uow.commit()
            return view

    def get_top_n(self, game: str, n: int = 10) -> list[GameStatView]:
        with _unit_of_work(self._uow_factory, "leaderboard top") as uow:
            return [_stat_view(row) for row in uow.game_stats.top(game, n)]


class SQLAlchemyUsageStats:
    def __init__(self, uow_factory: UowFactory):
        self._uow_factory = uow_factory

    def increment(self, command: str, participant_id: str) -> None:
        with _unit_of_work(self._uow_factory, "usage increment") as uow:
            uow.usage.increment(command, participant_id, utcnow())
            uow.commit()

    def get_all(self) -> list[UsageStat]:
        with _unit_of_work(self._uow_factory, "usage read") as uow:
            return [_usage_view(row) for row in uow.usage.list_all()]

    def get_for_command(self, command: str) -> list[UsageStat]:
        with _unit_of_work(self._uow_factory, "usage read") as uow:
            return [_usage_view(row) for row in uow.usage.list_for_command(command)]
