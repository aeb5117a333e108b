from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol


class SessionRepo(Protocol):
    def get(self, conversation_id: str, participant_id: str): ...
    def list_all(self): ...
    def upsert(
        self,
        conversation_id: str,
        participant_id: str,
        kind: str,
        payload_json: str,
        last_activity_at: datetime,
    ): ...
    def delete(self, conversation_id: str, participant_id: str) -> int: ...
    def delete_many(self, keys: Iterable[tuple[str, str]]) -> int: ...


class CooldownRepo(Protocol):
    def get(self, participant_id: str, command_name: str): ...
    def list_all(self): ...
    def upsert(self, participant_id: str, command_name: str, window_started_at: datetime, use_count: int): ...
    def delete(self, participant_id: str, command_name: str) -> int: ...


class LeaderboardRepo(Protocol):
    def get(self, participant_id: str, game: str): ...
    def add_delta(
        self,
        participant_id: str,
        game: str,
        score: int = 0,
        wins: int = 0,
        losses: int = 0,
        draws: int = 0,
        played_at: datetime | None = None,
    ): ...
    def top(self, game: str, limit: int): ...


class UsageRepo(Protocol):
    def get(self, command: str, participant_id: str): ...
    def increment(self, command: str, participant_id: str, used_at: datetime | None = None): ...
    def list_all(self): ...
    def list_for_command(self, command: str): ...


class UnitOfWork(Protocol):
    sessions: SessionRepo
    cooldowns: CooldownRepo
    game_stats: LeaderboardRepo
    usage: UsageRepo

    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def commit(self) -> None: ...
    def rollback(self) -> None: ...
