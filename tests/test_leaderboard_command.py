from __future__ import annotations

import asyncio

from chatbot_gateway.commands.leaderboard import LeaderboardCommand
from chatbot_gateway.core.types import GameStatView

GROUP = "family@g.us"


class StubLeaderboard:
    def __init__(self, rows=None, fail=False):
        self.rows = rows or []
        self.fail = fail
        self.requests = []

    def get_top_n(self, game, n=10):
        self.requests.append((game, n))
        if self.fail:
            raise RuntimeError("database down")
        return list(self.rows)


def run(ctx):
    asyncio.run(LeaderboardCommand().handle(ctx))


def test_lists_top_players(make_ctx, transport):
    board = StubLeaderboard(
        [
            GameStatView("111@s.whatsapp.net", "rps", score=7, wins=2, draws=1),
            GameStatView("222@s.whatsapp.net", "rps", score=3, wins=1, losses=2),
        ]
    )

    run(make_ctx(GROUP, "alice", ["RPS"], leaderboard=board))

    assert board.requests == [("rps", 10)]
    conversation, text, mentions = transport.sent[0]
    assert text == "🏆 *Leaderboard for rps*:\n1. @111 - 7 pts (2W/0L/1D)\n2. @222 - 3 pts (1W/2L/0D)"
    assert mentions == ["111@s.whatsapp.net", "222@s.whatsapp.net"]


def test_requires_game_name(make_ctx, transport):
    run(make_ctx(GROUP, "alice", [], leaderboard=StubLeaderboard()))

    assert transport.texts() == ["Please name a game. Example: !leaderboard hangman"]


def test_empty_and_unavailable(make_ctx, transport, config):
    run(make_ctx(GROUP, "alice", ["chess"], leaderboard=StubLeaderboard()))
    run(make_ctx(GROUP, "alice", ["rps"]))
    run(make_ctx(GROUP, "alice", ["rps"], leaderboard=StubLeaderboard(fail=True)))

    assert transport.texts() == [
        "No leaderboard data for *chess*.",
        "The leaderboard is not available right now.",
        config.render("service_unavailable"),
    ]
