from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from chatbot_gateway.core.cooldowns import CooldownTracker
from chatbot_gateway.core.errors import DurableStoreUnavailable
from chatbot_gateway.core.sessions import SessionStore
from chatbot_gateway.core.types import CooldownEntry, Session, StatDelta
from chatbot_gateway.persistence.sqlalchemy import (
    SQLAlchemyCooldownBackend,
    SQLAlchemyLeaderboard,
    SQLAlchemySessionBackend,
    SQLAlchemyUnitOfWork,
    SQLAlchemyUsageStats,
)
from chatbot_gateway.persistence.sqlalchemy.db import build_engine, build_session_factory

WHEN = datetime(2024, 1, 1, 12, 0, 0)


def test_session_backend_round_trip(uow_factory):
    backend = SQLAlchemySessionBackend(uow_factory)
    backend.upsert(Session("g1", "abc123", "hangman", {"game_id": "abc123", "players": ["alice"]}, WHEN))
    backend.upsert(Session("alice", "alice", "hangman_link", {"game_id": "abc123"}, WHEN))
    backend.upsert(Session("g1", "abc123", "hangman", {"game_id": "abc123", "players": ["alice", "bob"]}, WHEN))

    rows = {(s.conversation_id, s.participant_id): s for s in backend.load_all()}
    assert len(rows) == 2
    assert rows[("g1", "abc123")].payload["players"] == ["alice", "bob"]
    assert rows[("alice", "alice")].last_activity_at == WHEN

    backend.delete("alice", "alice")
    backend.delete_many([("g1", "abc123"), ("missing", "nobody")])
    backend.delete_many([])
    assert backend.load_all() == []


def test_session_store_survives_restart(uow_factory, clock):
    store = SessionStore(SQLAlchemySessionBackend(uow_factory), clock=clock)
    store.set("g1", "alice", "rps", {"mode": "ai"})
    store.set("g1", "bob", "rps", {"mode": "ai"})
    store.clear("g1", "bob")

    restarted = SessionStore(SQLAlchemySessionBackend(uow_factory), clock=clock)
    assert restarted.load() == 1
    assert restarted.durable is True
    assert restarted.get("g1", "alice").payload == {"mode": "ai"}


def test_reads_refresh_activity_in_memory_only(uow_factory, clock):
    store = SessionStore(SQLAlchemySessionBackend(uow_factory), ttl_seconds=3600, clock=clock)
    store.set("g1", "alice", "hangman", {"game_id": "abc123"})
    clock.advance(minutes=50)
    assert store.get("g1", "alice") is not None
    clock.advance(minutes=20)

    assert store.get("g1", "alice") is not None
    with uow_factory() as uow:
        assert uow.sessions.get("g1", "alice").last_activity_at == clock() - timedelta(minutes=70)

    restarted = SessionStore(SQLAlchemySessionBackend(uow_factory), ttl_seconds=3600, clock=clock)
    assert restarted.load() == 0
    assert restarted.get("g1", "alice") is None


def test_cooldown_backend_mirrors_tracker(uow_factory, clock):
    tracker = CooldownTracker(SQLAlchemyCooldownBackend(uow_factory), clock=clock)
    tracker.check_and_record("alice", "rps", 3000, max_uses=3)
    tracker.check_and_record("alice", "rps", 3000, max_uses=3)

    with uow_factory() as uow:
        row = uow.cooldowns.get("alice", "rps")
        assert row.use_count == 2
        assert row.window_started_at == clock()

    tracker.reset("alice", "rps")
    with uow_factory() as uow:
        assert uow.cooldowns.get("alice", "rps") is None


def test_cooldowns_survive_restart(uow_factory, clock):
    tracker = CooldownTracker(SQLAlchemyCooldownBackend(uow_factory), clock=clock)
    tracker.check_and_record("alice", "rps", 3000, max_uses=3)
    tracker.check_and_record("alice", "rps", 3000, max_uses=3)
    clock.advance(seconds=1)

    restarted = CooldownTracker(SQLAlchemyCooldownBackend(uow_factory), clock=clock)
    assert restarted.load() == 1
    entry = restarted.get("alice", "rps")
    assert entry.use_count == 2
    assert entry.window_started_at == clock() - timedelta(seconds=1)
    assert restarted.get_remaining_seconds("alice", "rps", 3000) == 2
    assert restarted.check_and_record("alice", "rps", 3000, max_uses=3) is False
    assert restarted.check_and_record("alice", "rps", 3000, max_uses=3) is True


def test_cooldown_backend_upserts_existing_row(uow_factory):
    backend = SQLAlchemyCooldownBackend(uow_factory)
    backend.save("alice", "rps", CooldownEntry(WHEN, 1))
    backend.save("alice", "rps", CooldownEntry(WHEN, 4))

    with uow_factory() as uow:
        assert uow.cooldowns.get("alice", "rps").use_count == 4


def test_leaderboard_accumulates_and_orders(uow_factory):
    board = SQLAlchemyLeaderboard(uow_factory)
    assert board.get_user_stat("alice", "rps") is None

    board.update_user_stat("alice", "rps", StatDelta(score=3, wins=1))
    board.update_user_stat("alice", "rps", StatDelta(losses=1))
    board.update_user_stat("bob", "rps", StatDelta(score=3, wins=1))
    board.update_user_stat("bob", "rps", StatDelta(score=1, draws=1))
    board.update_user_stat("carol", "rps", StatDelta(score=3, wins=1))
    board.update_user_stat("dave", "hangman", StatDelta(score=9, wins=1))

    alice = board.get_user_stat("alice", "rps")
    assert (alice.score, alice.wins, alice.losses, alice.draws) == (3, 1, 1, 0)
    assert alice.last_played_at is not None

    top = board.get_top_n("rps", 10)
    assert [row.participant_id for row in top] == ["bob", "alice", "carol"]
    assert [row.participant_id for row in board.get_top_n("rps", 1)] == ["bob"]
    assert board.get_top_n("chess") == []


def test_usage_stats(uow_factory):
    usage = SQLAlchemyUsageStats(uow_factory)
    usage.increment("hangman", "alice")
    usage.increment("hangman", "alice")
    usage.increment("hangman", "bob")
    usage.increment("rps", "alice")

    rows = usage.get_all()
    assert (rows[0].command, rows[0].participant_id, rows[0].count) == ("hangman", "alice", 2)
    assert sum(row.count for row in rows) == 4
    assert [row.participant_id for row in usage.get_for_command("hangman")] == ["alice", "bob"]


def test_database_errors_become_store_unavailable():
    engine = build_engine("sqlite+pysqlite:///:memory:")
    factory = build_session_factory(engine)

    def uow_factory():
        return SQLAlchemyUnitOfWork(factory)

    with pytest.raises(DurableStoreUnavailable):
        SQLAlchemySessionBackend(uow_factory).load_all()
    with pytest.raises(DurableStoreUnavailable):
        SQLAlchemyLeaderboard(uow_factory).update_user_stat("alice", "rps", StatDelta(wins=1))

    store = SessionStore(SQLAlchemySessionBackend(uow_factory))
    assert store.load() == 0
    assert store.durable is False


def test_unit_of_work_rolls_back_on_error(uow_factory):
    with pytest.raises(RuntimeError):
        with uow_factory() as uow:
            uow.usage.increment("hangman", "alice", WHEN)
            raise RuntimeError("handler failed")

    assert SQLAlchemyUsageStats(uow_factory).get_all() == []
