from __future__ import annotations

import logging

from ..core.normalize import format_mention
from ..core.types import CommandContext

logger = logging.getLogger(__name__)

TOP_N = 10


class LeaderboardCommand:
    """Top players of one game, ordered by score then wins."""

    async def handle(self, ctx: CommandContext) -> None:
        p = ctx.config.prefix
        game = ctx.args[0].lower() if ctx.args else ""
        if not game:
            await ctx.reply(f"Please name a game. Example: {p}leaderboard hangman")
            return
        if ctx.leaderboard is None:
            await ctx.reply("The leaderboard is not available right now.")
            return

        try:
            rows = ctx.leaderboard.get_top_n(game, TOP_N)
        except Exception:
            logger.warning("Failed to read %s leaderboard", game, exc_info=True)
            await ctx.reply(ctx.config.render("service_unavailable"))
            return

        if not rows:
            await ctx.reply(f"No leaderboard data for *{game}*.")
            return

        lines = [
            f"{i}. {format_mention(row.participant_id)} - {row.score} pts "
            f"({row.wins}W/{row.losses}L/{row.draws}D)"
            for i, row in enumerate(rows, 1)
        ]
        await ctx.reply(
            f"🏆 *Leaderboard for {game}*:\n" + "\n".join(lines),
            mentions=[row.participant_id for row in rows],
        )
