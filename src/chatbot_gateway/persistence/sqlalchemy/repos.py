from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.orm import Session

from ...core.clock import utcnow
from .models import CommandUsage, CooldownRecord, GameStat, SessionRecord


class SessionRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, conversation_id: str, participant_id: str) -> SessionRecord | None:
        stmt = (
            select(SessionRecord)
            .where(SessionRecord.conversation_id == conversation_id)
            .where(SessionRecord.participant_id == participant_id)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_all(self) -> list[SessionRecord]:
        stmt = select(SessionRecord).order_by(SessionRecord.conversation_id.asc(), SessionRecord.id.asc())
        return list(self.session.execute(stmt).scalars().all())

    def upsert(
        self,
        conversation_id: str,
        participant_id: str,
        kind: str,
        payload_json: str,
        last_activity_at: datetime,
    ) -> SessionRecord:
        row = self.get(conversation_id, participant_id)
        if row is None:
            row = SessionRecord(conversation_id=conversation_id, participant_id=participant_id)
            self.session.add(row)
        row.kind = kind
        row.payload_json = payload_json
        row.last_activity_at = last_activity_at
        self.session.flush()
        return row

    def delete(self, conversation_id: str, participant_id: str) -> int:
        stmt = (
            delete(SessionRecord)
            .where(SessionRecord.conversation_id == conversation_id)
            .where(SessionRecord.participant_id == participant_id)
        )
        return int(self.session.execute(stmt).rowcount or 0)

    def delete_many(self, keys: Iterable[tuple[str, str]]) -> int:
        clauses = [
            and_(SessionRecord.conversation_id == conversation_id, SessionRecord.participant_id == participant_id)
            for conversation_id, participant_id in keys
        ]
        if not clauses:
            return 0
        stmt = delete(SessionRecord).where(or_(*clauses))
        return int(self.session.execute(stmt).rowcount or 0)


class CooldownRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, participant_id: str, command_name: str) -> CooldownRecord | None:
        stmt = (
            select(CooldownRecord)
            .where(CooldownRecord.participant_id == participant_id)
            .where(CooldownRecord.command_name == command_name)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_all(self) -> list[CooldownRecord]:
        stmt = select(CooldownRecord).order_by(CooldownRecord.id.asc())
        return list(self.session.execute(stmt).scalars().all())

    def upsert(self, participant_id: str, command_name: str, window_started_at: datetime, use_count: int) -> CooldownRecord:
        row = self.get(participant_id, command_name)
        if row is None:
            row = CooldownRecord(participant_id=participant_id, command_name=command_name)
            self.session.add(row)
        row.window_started_at = window_started_at
        row.use_count = use_count
        self.session.flush()
        return row

    def delete(self, participant_id: str, command_name: str) -> int:
        stmt = (
            delete(CooldownRecord)
            .where(CooldownRecord.participant_id == participant_id)
            .where(CooldownRecord.command_name == command_name)
        )
        return int(self.session.execute(stmt).rowcount or 0)


class GameStatRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, participant_id: str, game: str) -> GameStat | None:
        stmt = (
            select(GameStat)
            .where(GameStat.participant_id == participant_id)
            .where(GameStat.game == game)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def add_delta(
        self,
        participant_id: str,
        game: str,
        score: int = 0,
        wins: int = 0,
        losses: int = 0,
        draws: int = 0,
        played_at: datetime | None = None,
    ) -> GameStat:
        row = self.get(participant_id, game)
        if row is None:
            row = GameStat(participant_id=participant_id, game=game, score=0, wins=0, losses=0, draws=0)
            self.session.add(row)
        row.score += score
        row.wins += wins
        row.losses += losses
        row.draws += draws
        row.last_played_at = played_at or utcnow()
        self.session.flush()
        return row

    def top(self, game: str, limit: int) -> list[GameStat]:
        stmt = (
            select(GameStat)
            .where(GameStat.game == game)
            .order_by(GameStat.score.desc(), GameStat.wins.desc(), GameStat.id.asc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())


class UsageRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, command: str, participant_id: str) -> CommandUsage | None:
        stmt = (
            select(CommandUsage)
            .where(CommandUsage.command == command)
            .where(CommandUsage.participant_id == participant_id)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def increment(self, command: str, participant_id: str, used_at: datetime | None = None) -> CommandUsage:
        row = self.get(command, participant_id)
        if row is None:
            row = CommandUsage(command=command, participant_id=participant_id, count=0)
            self.session.add(row)
        row.count += 1
        row.last_used_at = used_at or utcnow()
        self.session.flush()
        return row

    def list_all(self) -> list[CommandUsage]:
        stmt = select(CommandUsage).order_by(CommandUsage.count.desc(), CommandUsage.id.asc())
        return list(self.session.execute(stmt).scalars().all())

    def list_for_command(self, command: str) -> list[CommandUsage]:
        stmt = (
            select(CommandUsage)
            .where(CommandUsage.command == command)
            .order_by(CommandUsage.count.desc(), CommandUsage.id.asc())
        )
        return list(self.session.execute(stmt).scalars().all())
