from __future__ import annotations

import logging
import random
from typing import Callable, Optional

from ..core.normalize import format_mention
from ..core.ports import LeaderboardSink
from ..core.sessions import SessionStore
from ..core.types import CommandContext, StatDelta, game_family
from .base import GameRecord, GameSessionEngine, announce

logger = logging.getLogger(__name__)

GAME_NAME = "rps"
MODE_AI = "ai"
MODE_MULTIPLAYER = "multiplayer"
REQUIRED_PLAYERS = 2

MOVES = {
    "rock": "rock",
    "paper": "paper",
    "scissors": "scissors",
    "batu": "rock",
    "kertas": "paper",
    "gunting": "scissors",
}

BEATS = {
    "rock": "scissors",
    "paper": "rock",
    "scissors": "paper",
}

MOVE_LABELS = {
    "rock": "✊ Rock",
    "paper": "✋ Paper",
    "scissors": "✌️ Scissors",
}

_MULTIPLAYER_ALIASES = {"multiplayer", "multi", "mp", "pvp"}


def determine_outcome(first: str, second: str) -> str:
    """``win``, ``lose`` or ``draw`` from the point of view of ``first``."""
    if first == second:
        return "draw"
    return "win" if BEATS[first] == second else "lose"


def result_deltas(first_id: str, second_id: str, outcome: str) -> dict[str, StatDelta]:
    if outcome == "draw":
        return {
            first_id: StatDelta(score=1, draws=1),
            second_id: StatDelta(score=1, draws=1),
        }
    winner, loser = (first_id, second_id) if outcome == "win" else (second_id, first_id)
    return {
        winner: StatDelta(score=3, wins=1),
        loser: StatDelta(losses=1),
    }


def normalize_record(record: GameRecord) -> None:
    moves = record.state.get("moves") or {}
    record.state["moves"] = {pid: move for pid, move in moves.items() if pid in record.players and move in BEATS}
    record.state["mode"] = MODE_MULTIPLAYER


def build_engine(
    sessions: SessionStore,
    *,
    leaderboard: LeaderboardSink | None = None,
    private_conversation_for: Callable[[str], str] | None = None,
    id_factory: Callable[[], str] | None = None,
) -> GameSessionEngine:
    return GameSessionEngine(
        GAME_NAME,
        sessions,
        leaderboard=leaderboard,
        private_conversation_for=private_conversation_for,
        id_factory=id_factory,
        completeness=lambda record: len(record.state.get("moves") or {}),
        normalize=normalize_record,
    )


class RockPaperScissorsCommand:
    def __init__(self, engine: GameSessionEngine, rng: random.Random | None = None):
        self.engine = engine
        self.rng = rng or random.Random()

    async def handle(self, ctx: CommandContext) -> None:
        args = ctx.args
        sub = args[0].lower() if args else ""

        if not args or sub == "help":
            await ctx.reply(self._help(ctx))
        elif sub == "start":
            mode = args[1].lower() if len(args) > 1 else MODE_AI
            if mode in _MULTIPLAYER_ALIASES:
                await self._start_multiplayer(ctx)
            elif mode == MODE_AI:
                await self._start_ai(ctx)
            else:
                await ctx.reply(f"Unknown mode '{mode}'. Use {ctx.config.prefix}rps start ai|multiplayer.")
        elif sub == "join":
            await self._join(ctx, args[1] if len(args) > 1 else None)
        elif sub in MOVES:
            await self._move(ctx, MOVES[sub])
        elif sub == "stop":
            await self._stop(ctx)
        elif sub == "leave":
            await self._leave(ctx)
        else:
            await ctx.reply(f"Invalid command. Type {ctx.config.prefix}rps help for help.")

    async def _start_ai(self, ctx: CommandContext) -> None:
        existing = ctx.sessions.get(ctx.conversation_id, ctx.participant_id)
        if existing is not None and existing.kind == GAME_NAME:
            await ctx.reply(f"You are already playing RPS against the AI. Send your move or {ctx.config.prefix}rps stop.")
            return
        if existing is not None:
            await ctx.reply(
                f"You are in a multiplayer RPS game. Finish it or leave it first ({ctx.config.prefix}rps leave)."
            )
            return
        if not ctx.sessions.set(ctx.conversation_id, ctx.participant_id, GAME_NAME, {"mode": MODE_AI}):
            await ctx.reply("Could not start a game against the AI (too many active sessions here?).")
            return
        p = ctx.config.prefix
        await ctx.reply(
            "Game vs AI started! Pick your move:\n"
            f"{p}rps rock/batu\n{p}rps paper/kertas\n{p}rps scissors/gunting"
        )

    async def _start_multiplayer(self, ctx: CommandContext) -> None:
        if not ctx.is_group:
            await ctx.reply("Multiplayer mode can only be started in a group.")
            return

        running = self.engine.repository.in_conversation(ctx.conversation_id)
        if running:
            record = running[0]
            await ctx.reply(
                f"A multiplayer RPS game is already running in this group "
                f"(started by {format_mention(record.host_id)}, ID *{record.game_id}*).",
                mentions=[record.host_id],
            )
            return

        blocked = self._blocked_reason(ctx)
        if blocked:
            await ctx.reply(blocked)
            return

        record = self.engine.create(ctx.conversation_id, ctx.participant_id, {"mode": MODE_MULTIPLAYER, "moves": {}})
        if record is None:
            await ctx.reply("Could not start the multiplayer game (session limit reached?).")
            return

        p = ctx.config.prefix
        await ctx.reply(
            f"🎮 Multiplayer Rock Paper Scissors started by {format_mention(ctx.participant_id)}! "
            f"(ID: *{record.game_id}*)\n\n"
            f"Second player, type {p}rps join in this group, "
            f"then both send your move to the bot in a *private chat*: {p}rps <move>",
            mentions=[ctx.participant_id],
        )

    async def _join(self, ctx: CommandContext, game_id: Optional[str]) -> None:
        p = ctx.config.prefix
        if not ctx.is_group:
            await ctx.reply("The join command can only be used in a group.")
            return

        record = self._group_game(ctx.conversation_id, game_id)
        if record is None:
            await ctx.reply(f"There is no multiplayer RPS game in this group. Start one with {p}rps start multiplayer")
            return
        if ctx.participant_id == record.host_id:
            await ctx.reply("You are the host of this game and cannot also be the second player.")
            return
        if ctx.participant_id in record.players:
            self.engine.write_link(ctx.participant_id, record)
            await ctx.reply(f"You already joined this game. Send your move to the bot privately: {p}rps <move>")
            return
        if len(record.players) >= REQUIRED_PLAYERS:
            opponent = next(pid for pid in record.players if pid != record.host_id)
            await ctx.reply(
                f"This game already has a second player ({format_mention(opponent)}). "
                "Wait for it to finish or start a new one.",
                mentions=[opponent],
            )
            return

        blocked = self._blocked_reason(ctx)
        if blocked:
            await ctx.reply(blocked)
            return

        if not self.engine.join(record, ctx.participant_id):
            await ctx.reply("Could not join the game. Please try again.")
            return

        await ctx.reply(
            f"✅ {format_mention(ctx.participant_id)} joined as player 2! "
            f"{format_mention(record.host_id)} vs {format_mention(ctx.participant_id)}\n\n"
            f"Both players, send your move to the bot in a *private chat*: {p}rps <move>",
            mentions=list(record.players),
        )

    async def _move(self, ctx: CommandContext, move: str) -> None:
        session = ctx.sessions.get(ctx.conversation_id, ctx.participant_id)
        if session is not None and session.kind == GAME_NAME and session.payload.get("mode") == MODE_AI:
            await self._play_ai(ctx, move)
            return

        p = ctx.config.prefix
        if ctx.is_group:
            if self.engine.repository.in_conversation(ctx.conversation_id):
                await ctx.reply(f"For multiplayer games, send your move ({p}rps <move>) to the bot in a *private chat*.")
            else:
                await ctx.reply(f"There is no active RPS game for you here. Start one with {p}rps start")
            return

        link, record = self.engine.resolve_linked_game(ctx.participant_id)
        if link is not None and record is None:
            await ctx.reply("The linked multiplayer game was not found or has already ended.")
            return
        if record is None:
            await ctx.reply(
                f"You have no active RPS game. Start one against the AI ({p}rps start ai) "
                "or start a multiplayer game from a group."
            )
            return

        moves: dict[str, str] = record.state.setdefault("moves", {})
        if ctx.participant_id in moves:
            await ctx.reply("You already submitted your move. Waiting for the other player...")
            return

        moves[ctx.participant_id] = move
        if len(record.players) == REQUIRED_PLAYERS and all(pid in moves for pid in record.players):
            await self._finish(ctx, record)
            return

        if not self.engine.save(record):
            await ctx.reply("Something went wrong while saving your move. Please try again.")
            return
        await ctx.reply(f"You picked {MOVE_LABELS[move]}. Waiting for the other player...")

    async def _play_ai(self, ctx: CommandContext, move: str) -> None:
        ai_move = self.rng.choice(sorted(BEATS))
        outcome = determine_outcome(move, ai_move)
        ctx.sessions.clear(ctx.conversation_id, ctx.participant_id)
        verdict = {"win": "🎉 You win!", "lose": "😢 You lose!", "draw": "🤝 It's a draw!"}[outcome]
        await ctx.reply(f"You: {MOVE_LABELS[move]}\nAI: {MOVE_LABELS[ai_move]}\n\n{verdict}")

    async def _finish(self, ctx: CommandContext, record: GameRecord) -> None:
        first, second = record.players[0], record.players[1]
        moves = record.state["moves"]
        outcome = determine_outcome(moves[first], moves[second])
        if outcome == "draw":
            verdict = "🤝 It's a draw!"
        else:
            winner = first if outcome == "win" else second
            verdict = f"🏆 Winner: {format_mention(winner)}!"

        text = (
            "🎮 *Rock Paper Scissors result*:\n\n"
            f"{format_mention(first)}: {MOVE_LABELS[moves[first]]}\n"
            f"{format_mention(second)}: {MOVE_LABELS[moves[second]]}\n\n"
            f"{verdict}"
        )
        self.engine.teardown(record)
        self.engine.report_results(result_deltas(first, second, outcome))
        await announce(
            ctx,
            record,
            text,
            mentions=[first, second],
            ack=f"You picked {MOVE_LABELS[moves[ctx.participant_id]]}. The result was announced in the group.",
        )

    async def _stop(self, ctx: CommandContext) -> None:
        session = ctx.sessions.get(ctx.conversation_id, ctx.participant_id)
        if session is not None and session.kind == GAME_NAME and session.payload.get("mode") == MODE_AI:
            ctx.sessions.clear(ctx.conversation_id, ctx.participant_id)
            await ctx.reply("RPS game vs AI stopped.")
            return

        _, record = self.engine.resolve_linked_game(ctx.participant_id)
        if record is None and ctx.is_group:
            record = self._group_game(ctx.conversation_id, None)
        if record is None:
            await ctx.reply("There is no active RPS game to stop.")
            return
        if record.host_id != ctx.participant_id:
            await ctx.reply(
                f"Only the host ({format_mention(record.host_id)}) can stop this multiplayer game.",
                mentions=[record.host_id],
            )
            return

        self.engine.teardown(record)
        await announce(
            ctx,
            record,
            f"🛑 Multiplayer RPS game stopped by the host ({format_mention(ctx.participant_id)}).",
            mentions=[ctx.participant_id],
            ack="Multiplayer game stopped.",
        )

    async def _leave(self, ctx: CommandContext) -> None:
        _, record = self.engine.resolve_linked_game(ctx.participant_id)
        if record is None and ctx.is_group:
            candidate = self._group_game(ctx.conversation_id, None)
            if candidate is not None and ctx.participant_id in candidate.players:
                record = candidate
        if record is None:
            await ctx.reply("You are not in a multiplayer RPS game.")
            return

        record.state.get("moves", {}).pop(ctx.participant_id, None)
        old_host = record.host_id
        result = self.engine.leave(record, ctx.participant_id)
        lines = [f"👋 {format_mention(ctx.participant_id)} left the RPS game *{record.game_id}*."]
        if result.ended:
            lines.append("The game ended because no players are left.")
        elif result.new_host:
            lines.append(f"Host {format_mention(old_host)} left. The new host is {format_mention(result.new_host)}.")
        await announce(
            ctx,
            record,
            "\n".join(lines),
            mentions=[ctx.participant_id, *record.players],
            ack="You left the multiplayer game.",
        )

    def _group_game(self, conversation_id: str, game_id: Optional[str]) -> GameRecord | None:
        records = self.engine.repository.in_conversation(conversation_id)
        if game_id:
            records = [r for r in records if r.game_id == game_id]
        return records[0] if records else None

    def _blocked_reason(self, ctx: CommandContext) -> Optional[str]:
        session = self.engine.occupied_slot(ctx.participant_id)
        if session is None:
            return None
        if session.kind == self.engine.link_kind:
            return (
                f"You are already in another multiplayer game ({session.payload.get('conversation_id', '')}). "
                f"Finish it or stop it first ({ctx.config.prefix}rps stop)."
            )
        return ctx.config.render("game_in_progress", game=game_family(session.kind))

    @staticmethod
    def _help(ctx: CommandContext) -> str:
        p = ctx.config.prefix
        return (
            "🎮 *How to play Rock Paper Scissors*:\n\n"
            "*Vs AI*:\n"
            f"{p}rps start ai - Play against the AI (group or private chat)\n"
            f"{p}rps <move> - Send your move\n\n"
            "*Multiplayer (groups only)*:\n"
            f"{p}rps start multiplayer - Start a game in the group\n"
            f"{p}rps join - Join as player 2\n"
            f"Both players send {p}rps <move> to the bot in a *private chat*\n"
            "The result is announced in the group\n\n"
            "*Moves*: rock/batu, paper/kertas, scissors/gunting\n\n"
            "*General*:\n"
            f"{p}rps leave - Leave the multiplayer game\n"
            f"{p}rps stop - Stop your game (vs AI, or multiplayer if you are the host)"
        )
