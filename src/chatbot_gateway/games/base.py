from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Protocol

from ..core.ports import LeaderboardSink
from ..core.sessions import SessionStore
from ..core.types import CommandContext, Session, StatDelta, link_kind

logger = logging.getLogger(__name__)


@dataclass
class GameRecord:
    """Master record of one multiplayer game, stored in the group conversation."""

    game_id: str
    game: str
    conversation_id: str
    host_id: str
    players: list[str] = field(default_factory=list)
    scores: dict[str, int] = field(default_factory=dict)
    state: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "game_id": self.game_id,
            "conversation_id": self.conversation_id,
            "host_id": self.host_id,
            "players": list(self.players),
            "scores": dict(self.scores),
            "state": dict(self.state),
        }

    @classmethod
    def from_session(cls, session: Session) -> "GameRecord":
        payload = session.payload
        players = [str(p) for p in payload.get("players") or []]
        scores = {str(k): int(v) for k, v in (payload.get("scores") or {}).items()}
        return cls(
            game_id=str(payload.get("game_id") or session.participant_id),
            game=session.kind,
            conversation_id=session.conversation_id,
            host_id=str(payload.get("host_id") or (players[0] if players else "")),
            players=players,
            scores=scores,
            state=dict(payload.get("state") or {}),
        )


@dataclass
class LinkRecord:
    """Pointer from a player's private conversation back to a master record."""

    game: str
    participant_id: str
    private_conversation_id: str
    game_id: str
    conversation_id: str


@dataclass
class LeaveResult:
    removed: bool
    new_host: Optional[str] = None
    ended: bool = False


def is_master_session(session: Session, game: str) -> bool:
    return session.kind == game and session.payload.get("game_id") == session.participant_id


class GameRepository(Protocol):
    def get(self, game_id: str) -> GameRecord | None:
        ...

    def save(self, record: GameRecord) -> bool:
        ...

    def delete(self, game_id: str) -> None:
        ...

    def ids(self) -> set[str]:
        ...

    def index(self, record: GameRecord) -> None:
        ...

    def in_conversation(self, conversation_id: str) -> list[GameRecord]:
        ...


class SessionGameRepository:
    """Game records kept as sessions keyed by (group conversation, game id).

    The game id -> conversation index lives for as long as the repository;
    the records themselves are whatever the Session Store holds.
    """

    def __init__(self, game: str, sessions: SessionStore):
        self.game = game
        self._sessions = sessions
        self._index: dict[str, str] = {}

    def get(self, game_id: str) -> GameRecord | None:
        conversation_id = self._index.get(game_id)
        if conversation_id is None:
            return None
        session = self._sessions.get(conversation_id, game_id)
        if session is None or not is_master_session(session, self.game):
            self._index.pop(game_id, None)
            return None
        return GameRecord.from_session(session)

    def save(self, record: GameRecord) -> bool:
        ok = self._sessions.set(record.conversation_id, record.game_id, self.game, record.to_payload())
        if ok:
            self._index[record.game_id] = record.conversation_id
        return ok

    def delete(self, game_id: str) -> None:
        conversation_id = self._index.pop(game_id, None)
        if conversation_id is not None:
            self._sessions.clear(conversation_id, game_id)

    def ids(self) -> set[str]:
        return set(self._index)

    def index(self, record: GameRecord) -> None:
        self._index[record.game_id] = record.conversation_id

    def in_conversation(self, conversation_id: str) -> list[GameRecord]:
        return [
            GameRecord.from_session(session)
            for session in self._sessions.list_all_in_conversation(conversation_id)
            if is_master_session(session, self.game)
        ]


class GameSessionEngine:
    """Coordinates one game's master records and per-player link records.

    Master and link records live under different conversation keys and are
    never written atomically. Every mutation that touches both undoes its
    first write when the second one fails, and readers treat a link without
    a master (or a master that no longer lists the player) as stale and
    delete it.
    """

    def __init__(
        self,
        game: str,
        sessions: SessionStore,
        repository: GameRepository | None = None,
        *,
        leaderboard: LeaderboardSink | None = None,
        private_conversation_for: Callable[[str], str] | None = None,
        id_factory: Callable[[], str] | None = None,
        completeness: Callable[[GameRecord], int] | None = None,
        normalize: Callable[[GameRecord], None] | None = None,
    ):
        self.game = game
        self.sessions = sessions
        self.repository = repository or SessionGameRepository(game, sessions)
        self.leaderboard = leaderboard
        self._private_conversation_for = private_conversation_for or (lambda participant_id: participant_id)
        self._id_factory = id_factory or (lambda: secrets.token_hex(3))
        self._completeness = completeness or (lambda record: len(record.players))
        self._normalize = normalize

    @property
    def link_kind(self) -> str:
        return link_kind(self.game)

    def private_conversation(self, participant_id: str) -> str:
        return self._private_conversation_for(participant_id)

    def new_game_id(self) -> str:
        taken = self.repository.ids()
        game_id = self._id_factory()
        while game_id in taken:
            game_id = self._id_factory()
        return game_id

    def create(self, conversation_id: str, host_id: str, state: dict[str, Any]) -> GameRecord | None:
        record = GameRecord(
            game_id=self.new_game_id(),
            game=self.game,
            conversation_id=conversation_id,
            host_id=host_id,
            players=[host_id],
            scores={host_id: 0},
            state=state,
        )
        if not self.repository.save(record):
            logger.info("Could not store %s game in %s (session limit?)", self.game, conversation_id)
            return None
        if not self.write_link(host_id, record):
            logger.warning("Link write failed for host %s; rolling back game %s", host_id, record.game_id)
            self.repository.delete(record.game_id)
            return None
        logger.info("Started %s game %s in %s (host %s)", self.game, record.game_id, conversation_id, host_id)
        return record

    def load(self, game_id: str) -> GameRecord | None:
        return self.repository.get(game_id)

    def save(self, record: GameRecord) -> bool:
        return self.repository.save(record)

    def find_link(self, participant_id: str) -> LinkRecord | None:
        private_id = self.private_conversation(participant_id)
        session = self.sessions.get(private_id, participant_id)
        if session is None or session.kind != self.link_kind:
            return None
        return LinkRecord(
            game=self.game,
            participant_id=participant_id,
            private_conversation_id=private_id,
            game_id=str(session.payload.get("game_id", "")),
            conversation_id=str(session.payload.get("conversation_id", "")),
        )

    def write_link(self, participant_id: str, record: GameRecord) -> bool:
        return self.sessions.set(
            self.private_conversation(participant_id),
            participant_id,
            self.link_kind,
            {"game_id": record.game_id, "conversation_id": record.conversation_id},
        )

    def clear_link(self, participant_id: str, game_id: str | None = None) -> None:
        link = self.find_link(participant_id)
        if link is None:
            return
        if game_id is not None and link.game_id != game_id:
            return
        self.sessions.clear(link.private_conversation_id, participant_id)

    def resolve_linked_game(self, participant_id: str) -> tuple[LinkRecord | None, GameRecord | None]:
        """Follow a participant's link to its master record.

        A dangling link is deleted and reported as ``(link, None)`` so the
        caller can tell the participant their game is gone.
        """
        link = self.find_link(participant_id)
        if link is None:
            return None, None
        record = self.load(link.game_id)
        if record is None or participant_id not in record.players:
            logger.info(
                "Removing dangling %s link for %s (game %s)",
                self.game,
                participant_id,
                link.game_id,
            )
            self.sessions.clear(link.private_conversation_id, participant_id)
            return link, None
        return link, record

    def occupied_slot(self, participant_id: str) -> Session | None:
        """Session blocking the participant's private link slot, after healing."""
        private_id = self.private_conversation(participant_id)
        session = self.sessions.get(private_id, participant_id)
        if session is None:
            return None
        if session.kind == self.link_kind:
            _, record = self.resolve_linked_game(participant_id)
            if record is None:
                return None
        return session

    def join(self, record: GameRecord, participant_id: str) -> bool:
        if participant_id in record.players:
            return self.write_link(participant_id, record)
        record.players.append(participant_id)
        record.scores[participant_id] = 0
        if not self.repository.save(record):
            self._forget_player(record, participant_id)
            return False
        if not self.write_link(participant_id, record):
            logger.warning(
                "Link write failed for %s; rolling back join of %s game %s",
                participant_id,
                self.game,
                record.game_id,
            )
            self._forget_player(record, participant_id)
            self.repository.save(record)
            return False
        return True

    def leave(self, record: GameRecord, participant_id: str) -> LeaveResult:
        if participant_id not in record.players:
            return LeaveResult(removed=False)
        self._forget_player(record, participant_id)
        self.clear_link(participant_id, record.game_id)
        if not record.players:
            self.teardown(record)
            return LeaveResult(removed=True, ended=True)
        new_host = None
        if record.host_id == participant_id:
            record.host_id = record.players[0]
            new_host = record.host_id
        self.repository.save(record)
        return LeaveResult(removed=True, new_host=new_host)

    def teardown(self, record: GameRecord) -> None:
        self.repository.delete(record.game_id)
        for participant_id in record.players:
            self.clear_link(participant_id, record.game_id)
        logger.info("Tore down %s game %s in %s", self.game, record.game_id, record.conversation_id)

    def recover(self) -> int:
        """Rebuild the game index from sessions that survived a restart.

        When one game id shows up under several conversations the record
        with the most progress wins and the others are removed. Derived
        display state is recomputed before the record is indexed.
        """
        best: dict[str, GameRecord] = {}
        discarded: list[GameRecord] = []
        for conversation_id in self.sessions.list_all_conversation_ids():
            for session in self.sessions.list_all_in_conversation(conversation_id):
                if not is_master_session(session, self.game):
                    continue
                record = GameRecord.from_session(session)
                current = best.get(record.game_id)
                if current is None:
                    best[record.game_id] = record
                elif self._completeness(record) > self._completeness(current):
                    discarded.append(current)
                    best[record.game_id] = record
                else:
                    discarded.append(record)

        for record in discarded:
            self.sessions.clear(record.conversation_id, record.game_id)

        for record in best.values():
            if self._normalize is not None:
                self._normalize(record)
                self.repository.save(record)
            self.repository.index(record)

        if best or discarded:
            logger.info("Recovered %s %s games (%s duplicates dropped)", len(best), self.game, len(discarded))
        return len(best)

    @staticmethod
    def recover_all(engines: Iterable["GameSessionEngine"]) -> int:
        return sum(engine.recover() for engine in engines)

    def report_results(self, deltas: dict[str, StatDelta]) -> None:
        if self.leaderboard is None:
            return
        for participant_id, delta in deltas.items():
            try:
                self.leaderboard.update_user_stat(participant_id, self.game, delta)
            except Exception:
                logger.warning(
                    "Failed to update %s leaderboard for %s",
                    self.game,
                    participant_id,
                    exc_info=True,
                )

    @staticmethod
    def _forget_player(record: GameRecord, participant_id: str) -> None:
        if participant_id in record.players:
            record.players.remove(participant_id)
        record.scores.pop(participant_id, None)


async def announce(
    ctx: CommandContext,
    record: GameRecord,
    text: str,
    mentions: Optional[list[str]] = None,
    ack: str | None = None,
) -> None:
    """Post ``text`` to the game's group and reply once to the triggering conversation."""
    if ctx.conversation_id == record.conversation_id:
        await ctx.reply(text, mentions=mentions)
        return
    await ctx.send(record.conversation_id, text, mentions=mentions)
    await ctx.reply(ack or f"Done. Game *{record.game_id}* was updated in the group.")
