from __future__ import annotations

import random
from typing import Optional

from ..clients.words import WordSource
from ..core.config import StaticConfigSource
from ..core.cooldowns import CooldownTracker
from ..core.types import CATEGORY_ADMIN, CATEGORY_GAME, CATEGORY_GENERAL, CommandDescriptor
from ..games.base import GameSessionEngine
from ..games.hangman import HangmanCommand
from ..games.rps import RockPaperScissorsCommand
from .config import ConfigCommand
from .leaderboard import LeaderboardCommand

HANGMAN_HELP = """*Usage:*
{prefix}hangman start - start a game in this chat
{prefix}hangman join <id> - join a running game
{prefix}hangman <letter> - guess a letter in the game you joined
{prefix}hangman guess <id> <letter> - guess in a specific game
{prefix}hangman leave <id> - leave a game
{prefix}hangman stop <id> - stop a game (host only)
{prefix}hangman status <id> - show a game"""

RPS_HELP = """*Usage:*
{prefix}rps start [ai|multiplayer] - start a game
{prefix}rps join - join the group's multiplayer game
{prefix}rps <rock|paper|scissors> - play your move (batu, kertas, gunting work too)
{prefix}rps leave - leave the multiplayer game
{prefix}rps stop - stop your game"""

LEADERBOARD_HELP = """*Usage:*
{prefix}leaderboard <game>
*Example:*
{prefix}leaderboard hangman"""

CONFIG_HELP = """*Usage:*
{prefix}config get [setting]
{prefix}config set prefix <value>
{prefix}config add-admin <user id>
{prefix}config reset-cooldown <user id> <command>
{prefix}config reset"""


def default_descriptors(
    hangman_engine: GameSessionEngine,
    rps_engine: GameSessionEngine,
    words: WordSource,
    rng: Optional[random.Random] = None,
) -> list[CommandDescriptor]:
    return [
        CommandDescriptor(
            name="hangman",
            description="Multiplayer word guessing game",
            category=CATEGORY_GAME,
            handler_factory=lambda: HangmanCommand(hangman_engine, words),
            aliases=["hm", "tebakkata"],
            cooldown_ms=2000,
            max_uses=5,
            help_text=HANGMAN_HELP,
            usage_examples=["hangman start", "hangman join a1b2c3", "hangman e"],
        ),
        CommandDescriptor(
            name="rps",
            description="Rock Paper Scissors against the AI or another player",
            category=CATEGORY_GAME,
            handler_factory=lambda: RockPaperScissorsCommand(rps_engine, rng),
            aliases=["suit"],
            cooldown_ms=3000,
            max_uses=3,
            help_text=RPS_HELP,
            usage_examples=["rps start ai", "rps batu", "rps start multiplayer"],
        ),
        CommandDescriptor(
            name="leaderboard",
            description="Top players for a game (e.g. hangman, rps)",
            category=CATEGORY_GENERAL,
            handler_factory=LeaderboardCommand,
            aliases=["lb"],
            help_text=LEADERBOARD_HELP,
            usage_examples=["leaderboard hangman"],
        ),
    ]


def admin_descriptors(config_source: StaticConfigSource, cooldowns: CooldownTracker) -> list[CommandDescriptor]:
    return [
        CommandDescriptor(
            name="config",
            description="Manage bot settings and roles (admin only)",
            category=CATEGORY_ADMIN,
            handler_factory=lambda: ConfigCommand(config_source, cooldowns),
            aliases=["cfg", "konfig"],
            required_roles=frozenset({"admin"}),
            help_text=CONFIG_HELP,
            usage_examples=["config get", "config set prefix $", "config add-admin 628123@s.whatsapp.net"],
        ),
    ]


__all__ = ["ConfigCommand", "LeaderboardCommand", "admin_descriptors", "default_descriptors"]
