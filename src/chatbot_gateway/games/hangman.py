from __future__ import annotations

import logging
import re
from typing import Any, Callable, Optional

from ..clients.words import WordSource
from ..core.errors import ExternalServiceError
from ..core.normalize import format_mention, unique
from ..core.ports import LeaderboardSink
from ..core.sessions import SessionStore
from ..core.types import CommandContext, StatDelta, game_family
from .base import GameRecord, GameSessionEngine, announce

logger = logging.getLogger(__name__)

GAME_NAME = "hangman"
MAX_ATTEMPTS = 6
MASK_CHAR = "#"

_LETTER_RE = re.compile(r"^[a-zA-Z]$")


def mask_word(word: str, guessed: list[str]) -> str:
    return "".join(ch if ch in guessed else MASK_CHAR for ch in word)


def wrong_guesses(word: str, guessed: list[str]) -> int:
    return sum(1 for letter in guessed if letter not in word)


def normalize_record(record: GameRecord) -> None:
    """Recompute the mask and remaining attempts from the guessed letters."""
    state = record.state
    word = str(state.get("word") or "").lower()
    guessed = unique(str(g).lower() for g in state.get("guessed") or [])
    state["word"] = word
    state["guessed"] = guessed
    state["masked"] = mask_word(word, guessed)
    state["attempts_left"] = max(0, MAX_ATTEMPTS - wrong_guesses(word, guessed))


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
        completeness=lambda record: len(record.state.get("guessed") or []),
        normalize=normalize_record,
    )


class HangmanCommand:
    """Multiplayer word guessing: players take turns revealing letters of one word."""

    def __init__(self, engine: GameSessionEngine, words: WordSource):
        self.engine = engine
        self.words = words

    async def handle(self, ctx: CommandContext) -> None:
        args = ctx.args
        sub = args[0].lower() if args else ""

        if sub == "start":
            await self._start(ctx)
        elif sub == "join" and len(args) > 1:
            await self._join(ctx, args[1])
        elif sub == "stop" and len(args) > 1:
            await self._stop(ctx, args[1])
        elif sub == "leave" and len(args) > 1:
            await self._leave(ctx, args[1])
        elif sub == "guess" and len(args) > 2:
            await self._guess(ctx, args[1], args[2])
        elif len(args) == 1 and len(args[0]) == 1:
            await self._guess_linked(ctx, args[0])
        elif sub == "status" and len(args) > 1:
            await self._status(ctx, args[1])
        elif not args:
            await self._linked_status(ctx)
        else:
            await ctx.reply(self._usage(ctx))

    async def _start(self, ctx: CommandContext) -> None:
        blocked = self._blocked_reason(ctx)
        if blocked:
            await ctx.reply(blocked)
            return

        try:
            entry = await self.words.random_word()
        except ExternalServiceError as exc:
            logger.warning("Word source failed: %s", exc)
            await ctx.reply(ctx.config.render("service_unavailable"))
            return

        word = entry.word.lower()
        state: dict[str, Any] = {
            "word": word,
            "hint": entry.hint,
            "guessed": [],
            "attempts_left": MAX_ATTEMPTS,
            "masked": mask_word(word, []),
        }
        record = self.engine.create(ctx.conversation_id, ctx.participant_id, state)
        if record is None:
            await ctx.reply("Could not start a Hangman game here right now (too many active sessions?).")
            return

        p = ctx.config.prefix
        text = (
            f"🎮 Multiplayer Hangman started! (ID: *{record.game_id}*)\n\n"
            f"Word ({len(word)} letters): {state['masked']}\n"
            f"Attempts: {'❤️' * MAX_ATTEMPTS}\n"
            f"Hint: {entry.hint}\n\n"
            f"Players:\n{self._player_list(record)}\n\n"
            f"Guess a letter with: {p}hangman <letter>\n"
            f"Join with: {p}hangman join {record.game_id}"
        )
        await ctx.reply(text, mentions=[ctx.participant_id])

    async def _join(self, ctx: CommandContext, game_id: str) -> None:
        record = self.engine.load(game_id)
        if record is None:
            await ctx.reply(f"Hangman game *{game_id}* was not found or has already ended.")
            return

        if ctx.participant_id in record.players:
            self.engine.write_link(ctx.participant_id, record)
            await ctx.reply(f"You already joined Hangman game *{game_id}*.")
            return

        blocked = self._blocked_reason(ctx)
        if blocked:
            await ctx.reply(blocked)
            return

        if not self.engine.join(record, ctx.participant_id):
            await ctx.reply(f"Could not join Hangman game *{game_id}*. Please try again.")
            return

        text = (
            f"👋 {format_mention(ctx.participant_id)} joined Hangman game *{game_id}*! "
            f"({len(record.players)} players)\n\n"
            f"Players:\n{self._player_list(record)}\n\n"
            f"{self._status_text(ctx, record)}"
        )
        await announce(ctx, record, text, unique([ctx.participant_id, *record.players]))

    async def _leave(self, ctx: CommandContext, game_id: str) -> None:
        record = self.engine.load(game_id)
        if record is None:
            self.engine.clear_link(ctx.participant_id, game_id)
            await ctx.reply(f"Hangman game *{game_id}* seems to have ended already.")
            return
        if ctx.participant_id not in record.players:
            await ctx.reply(f"You are not in Hangman game *{game_id}*.")
            return

        old_host = record.host_id
        result = self.engine.leave(record, ctx.participant_id)
        lines = [f"👋 {format_mention(ctx.participant_id)} left Hangman game *{game_id}*."]
        mentions = [ctx.participant_id]
        if result.ended:
            lines.append(f"Game *{game_id}* ended because every player has left.")
        else:
            if result.new_host:
                lines.append(
                    f"Host {format_mention(old_host)} left. The new host is {format_mention(result.new_host)}."
                )
                mentions.append(result.new_host)
            lines.append("")
            lines.append(self._status_text(ctx, record))
        await announce(ctx, record, "\n".join(lines), unique(mentions + record.players))

    async def _stop(self, ctx: CommandContext, game_id: str) -> None:
        record = self.engine.load(game_id)
        if record is None:
            await ctx.reply(f"Hangman game *{game_id}* was not found or has already ended.")
            return
        if record.host_id != ctx.participant_id:
            await ctx.reply(
                f"Only the host ({format_mention(record.host_id)}) can stop game *{game_id}*. "
                f"Use {ctx.config.prefix}hangman leave {game_id} to leave."
            )
            return

        self.engine.teardown(record)
        text = (
            f"🛑 Hangman game *{game_id}* was stopped by the host ({format_mention(ctx.participant_id)}).\n"
            f"The word was: {record.state.get('word', '')}"
        )
        await announce(ctx, record, text, unique([ctx.participant_id, *record.players]))

    async def _guess_linked(self, ctx: CommandContext, letter: str) -> None:
        link, record = self.engine.resolve_linked_game(ctx.participant_id)
        if link is not None and record is None:
            await ctx.reply(
                f"Your Hangman game *{link.game_id}* no longer exists. "
                f"Start a new one with {ctx.config.prefix}hangman start."
            )
            return
        if record is None:
            p = ctx.config.prefix
            await ctx.reply(f"You are not in a Hangman game. Use {p}hangman start or {p}hangman join <id>.")
            return
        await self._apply_guess(ctx, record, letter)

    async def _guess(self, ctx: CommandContext, game_id: str, letter: str) -> None:
        record = self.engine.load(game_id)
        if record is None:
            self.engine.clear_link(ctx.participant_id, game_id)
            await ctx.reply(f"Hangman game *{game_id}* was not found or has already ended.")
            return
        if ctx.participant_id not in record.players:
            await ctx.reply(
                f"You are not part of Hangman game *{game_id}*. "
                f"Use {ctx.config.prefix}hangman join {game_id}"
            )
            return
        if self.engine.find_link(ctx.participant_id) is None and self.engine.occupied_slot(ctx.participant_id) is None:
            self.engine.write_link(ctx.participant_id, record)
        await self._apply_guess(ctx, record, letter)

    async def _apply_guess(self, ctx: CommandContext, record: GameRecord, guess: str) -> None:
        game_id = record.game_id
        if not _LETTER_RE.match(guess or ""):
            await ctx.reply(f"Invalid guess ({guess}). Send a single letter (A-Z) for game *{game_id}*.")
            return

        letter = guess.lower()
        state = record.state
        word: str = state["word"]
        guessed: list[str] = state["guessed"]
        if letter in guessed:
            await ctx.reply(f'The letter "{letter}" was already guessed in game *{game_id}*.')
            return

        guessed.append(letter)
        guesser = ctx.participant_id
        if letter in word:
            points = word.count(letter)
            record.scores[guesser] = record.scores.get(guesser, 0) + points
            state["masked"] = mask_word(word, guessed)
            if MASK_CHAR not in state["masked"]:
                await self._finish(ctx, record, solved=True)
                return
            self.engine.save(record)
            text = (
                f'✅ {format_mention(guesser)} guessed "{letter}" correctly in game *{game_id}*! '
                f"(+{points} points)\n\n{self._status_text(ctx, record)}"
            )
        else:
            state["attempts_left"] = int(state.get("attempts_left", MAX_ATTEMPTS)) - 1
            if state["attempts_left"] <= 0:
                await self._finish(ctx, record, solved=False)
                return
            self.engine.save(record)
            text = (
                f'❌ {format_mention(guesser)} guessed "{letter}" (wrong) in game *{game_id}*. '
                f"Attempts left: {state['attempts_left']}\n\n{self._status_text(ctx, record)}"
            )
        await announce(ctx, record, text, unique([guesser, *record.players]))

    async def _finish(self, ctx: CommandContext, record: GameRecord, solved: bool) -> None:
        word = record.state["word"]
        scoreboard = self._scoreboard(record)
        if solved:
            ranked = sorted(record.scores.items(), key=lambda item: item[1], reverse=True)
            winner, best = ranked[0]
            text = (
                f'🎉 Game *{record.game_id}* finished! The word "{word}" was solved by '
                f"{format_mention(ctx.participant_id)}!\n\n"
                f"📊 FINAL SCORES:\n{scoreboard}\n\n"
                f"🏆 Winner: {format_mention(winner)} with {best} points!"
            )
            deltas = {p: StatDelta(score=record.scores.get(p, 0), wins=1) for p in record.players}
        else:
            text = (
                f"😢 Game over for game *{record.game_id}*! You ran out of attempts.\n"
                f"The word was: {word}\n\n"
                f"📊 FINAL SCORES:\n{scoreboard}"
            )
            deltas = {p: StatDelta(score=record.scores.get(p, 0), losses=1) for p in record.players}

        self.engine.teardown(record)
        self.engine.report_results(deltas)
        await announce(ctx, record, text, unique([ctx.participant_id, *record.players]))

    async def _status(self, ctx: CommandContext, game_id: str) -> None:
        record = self.engine.load(game_id)
        if record is None:
            await ctx.reply(f"No active Hangman game with ID *{game_id}* was found.")
            return
        await ctx.reply(self._status_text(ctx, record), mentions=unique([record.host_id, *record.players]))

    async def _linked_status(self, ctx: CommandContext) -> None:
        link, record = self.engine.resolve_linked_game(ctx.participant_id)
        if record is None:
            if link is not None:
                await ctx.reply(f"Your Hangman game *{link.game_id}* no longer exists.")
            else:
                await ctx.reply(self._usage(ctx))
            return
        await ctx.reply(self._status_text(ctx, record), mentions=unique([record.host_id, *record.players]))

    def _blocked_reason(self, ctx: CommandContext) -> Optional[str]:
        session = self.engine.occupied_slot(ctx.participant_id)
        if session is None:
            return None
        p = ctx.config.prefix
        if session.kind == self.engine.link_kind:
            game_id = session.payload.get("game_id", "")
            return (
                f"You are already in Hangman game *{game_id}*. "
                f"Use {p}hangman leave {game_id} to leave it first."
            )
        return ctx.config.render("game_in_progress", game=game_family(session.kind))

    def _status_text(self, ctx: CommandContext, record: GameRecord) -> str:
        state = record.state
        attempts = int(state.get("attempts_left", MAX_ATTEMPTS))
        p = ctx.config.prefix
        return "\n".join(
            [
                f"🎮 HANGMAN MULTIPLAYER (ID: *{record.game_id}*)",
                f"\nWord: {state.get('masked', '')}",
                f"Attempts left: {'❤️' * attempts} ({attempts})",
                f"Guessed letters: {', '.join(state.get('guessed') or []) or '-'}",
                f"Hint: {state.get('hint', '-')}",
                "\n👥 PLAYERS & SCORES:",
                self._scoreboard(record),
                f"Host: {format_mention(record.host_id)}",
                f"\nGuess: {p}hangman <letter> or {p}hangman guess {record.game_id} <letter>",
            ]
        )

    @staticmethod
    def _player_list(record: GameRecord) -> str:
        return "\n".join(f"👤 {format_mention(player)}" for player in record.players)

    @staticmethod
    def _scoreboard(record: GameRecord) -> str:
        if not record.scores:
            return "_No scores yet_"
        ranked = sorted(record.scores.items(), key=lambda item: item[1], reverse=True)
        return "\n".join(f"• {format_mention(player)}: {score} points" for player, score in ranked)

    @staticmethod
    def _usage(ctx: CommandContext) -> str:
        p = ctx.config.prefix
        return (
            "Unknown Hangman command.\n\nUse:\n"
            f"• {p}hangman start\n"
            f"• {p}hangman join <id>\n"
            f"• {p}hangman guess <id> <letter>\n"
            f"• {p}hangman <letter> (in the game you joined)\n"
            f"• {p}hangman leave <id>\n"
            f"• {p}hangman stop <id> (host only)\n"
            f"• {p}hangman status <id>"
        )
