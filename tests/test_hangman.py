from __future__ import annotations

import asyncio
import random

from chatbot_gateway.clients.words import StaticWordSource, WordEntry
from chatbot_gateway.commands import default_descriptors
from chatbot_gateway.core.errors import ExternalServiceError
from chatbot_gateway.core.registry import CommandRegistry
from chatbot_gateway.core.types import InboundMessage, StatDelta
from chatbot_gateway.games import hangman, rps
from chatbot_gateway.games.base import GameRecord
from chatbot_gateway.games.hangman import HangmanCommand, mask_word, normalize_record

GROUP = "family@g.us"
KUCING = StaticWordSource([WordEntry("Kucing", "hewan peliharaan")])


class RecordingLeaderboard:
    def __init__(self):
        self.updates = {}

    def update_user_stat(self, participant_id, game, delta):
        self.updates[(participant_id, game)] = delta

    def get_top_n(self, game, limit):
        return []


class FailingWords:
    async def random_word(self):
        raise ExternalServiceError("dictionary offline")


def ids(*values):
    it = iter(values)
    return lambda: next(it)


def make_command(sessions, leaderboard=None, words=KUCING):
    engine = hangman.build_engine(sessions, leaderboard=leaderboard, id_factory=ids("abc123", "def456"))
    return HangmanCommand(engine, words), engine


def run(command, ctx):
    asyncio.run(command.handle(ctx))


def test_mask_word():
    assert mask_word("kucing", []) == "######"
    assert mask_word("kucing", ["k", "i"]) == "k###i#"


def test_start_creates_masked_game(sessions, make_ctx, transport):
    command, engine = make_command(sessions)

    run(command, make_ctx(GROUP, "alice", ["start"]))

    reply = transport.last(GROUP)
    assert "(ID: *abc123*)" in reply
    assert "Word (6 letters): ######" in reply
    assert "Hint: hewan peliharaan" in reply
    record = engine.load("abc123")
    assert record.state["word"] == "kucing"
    assert record.state["attempts_left"] == hangman.MAX_ATTEMPTS


def test_start_reports_word_service_failure(sessions, make_ctx, transport, config):
    command, engine = make_command(sessions, words=FailingWords())

    run(command, make_ctx(GROUP, "alice", ["start"]))

    assert transport.texts() == [config.render("service_unavailable")]
    assert engine.repository.ids() == set()


def test_player_in_a_game_cannot_start_another(sessions, make_ctx, transport):
    command, _ = make_command(sessions)
    run(command, make_ctx(GROUP, "alice", ["start"]))

    run(command, make_ctx("other@g.us", "alice", ["start"]))

    assert transport.last("other@g.us").startswith("You are already in Hangman game *abc123*")


def test_full_game_with_private_and_group_guesses(sessions, make_ctx, transport):
    board = RecordingLeaderboard()
    command, engine = make_command(sessions, leaderboard=board)

    run(command, make_ctx(GROUP, "alice", ["start"]))
    run(command, make_ctx(GROUP, "bob", ["join", "abc123"]))
    assert "bob joined Hangman game *abc123*! (2 players)" in transport.last(GROUP)

    transport.clear()
    run(command, make_ctx(GROUP, "alice", ["K"]))
    assert transport.texts() == [transport.last(GROUP)]
    assert 'alice guessed "k" correctly in game *abc123*! (+1 points)' in transport.last(GROUP)

    transport.clear()
    run(command, make_ctx("bob", "bob", ["guess", "abc123", "u"]))
    assert 'bob guessed "u" correctly' in transport.last(GROUP)
    assert transport.texts("bob") == ["Done. Game *abc123* was updated in the group."]

    run(command, make_ctx(GROUP, "bob", ["z"]))
    assert "Attempts left: 5" in transport.last(GROUP)
    run(command, make_ctx(GROUP, "bob", ["k"]))
    assert transport.last(GROUP) == 'The letter "k" was already guessed in game *abc123*.'
    run(command, make_ctx(GROUP, "bob", ["guess", "abc123", "1"]))
    assert transport.last(GROUP).startswith("Invalid guess (1)")

    for letter in ("c", "i", "n"):
        run(command, make_ctx(GROUP, "alice", [letter]))
    assert engine.load("abc123").state["masked"] == "kucin#"

    run(command, make_ctx(GROUP, "bob", ["g"]))
    final = transport.last(GROUP)
    assert 'The word "kucing" was solved by bob' in final
    assert "Winner: alice with 4 points" in final

    assert engine.load("abc123") is None
    assert sessions.get("alice", "alice") is None
    assert sessions.get("bob", "bob") is None
    assert board.updates == {
        ("alice", "hangman"): StatDelta(score=4, wins=1),
        ("bob", "hangman"): StatDelta(score=2, wins=1),
    }


def test_running_out_of_attempts_records_losses(sessions, make_ctx, transport):
    board = RecordingLeaderboard()
    command, engine = make_command(sessions, leaderboard=board)
    run(command, make_ctx(GROUP, "alice", ["start"]))

    for letter in "abdefh":
        run(command, make_ctx(GROUP, "alice", [letter]))

    assert "You ran out of attempts" in transport.last(GROUP)
    assert "The word was: kucing" in transport.last(GROUP)
    assert engine.load("abc123") is None
    assert board.updates == {("alice", "hangman"): StatDelta(losses=1)}


def test_guess_by_non_player_is_refused(sessions, make_ctx, transport):
    command, _ = make_command(sessions)
    run(command, make_ctx(GROUP, "alice", ["start"]))

    run(command, make_ctx(GROUP, "carol", ["guess", "abc123", "k"]))

    assert transport.last(GROUP).startswith("You are not part of Hangman game *abc123*")


def test_linked_guess_without_game(sessions, make_ctx, transport):
    command, _ = make_command(sessions)

    run(command, make_ctx("carol", "carol", ["k"]))

    assert transport.last("carol").startswith("You are not in a Hangman game.")


def test_linked_guess_after_game_vanished(sessions, make_ctx, transport):
    command, _ = make_command(sessions)
    run(command, make_ctx(GROUP, "alice", ["start"]))
    sessions.clear(GROUP, "abc123")

    run(command, make_ctx("alice", "alice", ["k"]))

    assert transport.last("alice").startswith("Your Hangman game *abc123* no longer exists.")
    assert sessions.get("alice", "alice") is None


def test_only_host_can_stop(sessions, make_ctx, transport):
    command, engine = make_command(sessions)
    run(command, make_ctx(GROUP, "alice", ["start"]))
    run(command, make_ctx(GROUP, "bob", ["join", "abc123"]))

    run(command, make_ctx(GROUP, "bob", ["stop", "abc123"]))
    assert transport.last(GROUP).startswith("Only the host (alice) can stop game *abc123*.")

    run(command, make_ctx(GROUP, "alice", ["stop", "abc123"]))
    assert "was stopped by the host (alice)" in transport.last(GROUP)
    assert engine.load("abc123") is None
    assert sessions.get("bob", "bob") is None


def test_host_leaving_hands_over_the_game(sessions, make_ctx, transport):
    command, engine = make_command(sessions)
    run(command, make_ctx(GROUP, "alice", ["start"]))
    run(command, make_ctx(GROUP, "bob", ["join", "abc123"]))

    run(command, make_ctx(GROUP, "alice", ["leave", "abc123"]))

    assert "The new host is bob." in transport.last(GROUP)
    assert engine.load("abc123").host_id == "bob"


def test_status(sessions, make_ctx, transport):
    command, _ = make_command(sessions)
    run(command, make_ctx(GROUP, "alice", ["start"]))

    run(command, make_ctx(GROUP, "bob", ["status", "abc123"]))
    assert "HANGMAN MULTIPLAYER (ID: *abc123*)" in transport.last(GROUP)

    run(command, make_ctx(GROUP, "bob", ["status", "zzz"]))
    assert transport.last(GROUP) == "No active Hangman game with ID *zzz* was found."

    run(command, make_ctx("alice", "alice", []))
    assert "Word: ######" in transport.last("alice")

    run(command, make_ctx(GROUP, "bob", ["dance"]))
    assert transport.last(GROUP).startswith("Unknown Hangman command.")


def test_normalize_record_recomputes_derived_state():
    record = GameRecord(
        "abc123",
        "hangman",
        GROUP,
        "alice",
        ["alice"],
        state={"word": "KUCING", "guessed": ["K", "z", "k", "x"], "masked": "?", "attempts_left": 6},
    )

    normalize_record(record)

    assert record.state["guessed"] == ["k", "z", "x"]
    assert record.state["masked"] == "k#####"
    assert record.state["attempts_left"] == 4


def test_game_survives_restart(sessions, make_ctx, transport):
    command, _ = make_command(sessions)
    run(command, make_ctx(GROUP, "alice", ["start"]))
    run(command, make_ctx(GROUP, "alice", ["k"]))

    # a fresh engine over the same sessions knows nothing until it recovers
    _, engine = make_command(sessions)
    assert engine.load("abc123") is None
    assert engine.recover() == 1
    assert engine.load("abc123").state["masked"] == "k#####"


def test_hangman_through_the_dispatcher(make_dispatcher, sessions, transport, clock):
    board = RecordingLeaderboard()
    hangman_engine = hangman.build_engine(sessions, leaderboard=board, id_factory=ids("abc123"))
    rps_engine = rps.build_engine(sessions)
    registry = CommandRegistry()
    registry.register_many(default_descriptors(hangman_engine, rps_engine, KUCING, random.Random(1)))
    dispatcher = make_dispatcher(registry, leaderboard=board)

    def send(conversation_id, participant_id, text):
        message = InboundMessage(conversation_id, participant_id, text, is_group=conversation_id.endswith("@g.us"))
        asyncio.run(dispatcher.handle_inbound(message, transport))
        clock.advance(seconds=3)

    send(GROUP, "alice", "!hm start")
    send(GROUP, "bob", "/tebakkata join abc123")
    for participant, letter in [("alice", "k"), ("bob", "u"), ("alice", "c"), ("bob", "i"), ("alice", "n")]:
        send(participant, participant, f"!hangman {letter}")
    send("bob", "bob", "!hangman g")

    assert 'The word "kucing" was solved by bob' in transport.last(GROUP)
    assert transport.last("bob") == "Done. Game *abc123* was updated in the group."
    assert board.updates[("alice", "hangman")] == StatDelta(score=3, wins=1)
    assert board.updates[("bob", "hangman")] == StatDelta(score=3, wins=1)
