from __future__ import annotations

import asyncio

from chatbot_gateway.core.errors import TransportClosedError
from chatbot_gateway.core.registry import CommandRegistry
from chatbot_gateway.core.types import (
    CATEGORY_ADMIN,
    CATEGORY_GAME,
    CATEGORY_GENERAL,
    CommandDescriptor,
    InboundMessage,
    UsageStat,
)

GROUP = "family@g.us"


class EchoCommand:
    calls: list = []

    async def handle(self, ctx):
        EchoCommand.calls.append(ctx)
        await ctx.reply(f"echo {ctx.command_name} {' '.join(ctx.args)}".strip())


class ExplodingCommand:
    async def handle(self, ctx):
        raise RuntimeError("boom")


class RecordingUsage:
    def __init__(self, rows=None, fail=False):
        self.increments = []
        self.rows = rows or []
        self.fail = fail

    def increment(self, command, participant_id):
        if self.fail:
            raise RuntimeError("usage store down")
        self.increments.append((command, participant_id))

    def get_all(self):
        return list(self.rows)


def make_registry(*extra):
    EchoCommand.calls = []
    registry = CommandRegistry()
    registry.register_many(
        [
            CommandDescriptor(
                name="hangman",
                description="Word guessing",
                category=CATEGORY_GAME,
                handler_factory=EchoCommand,
                aliases=["hm"],
                usage_examples=["hangman start"],
            ),
            CommandDescriptor(
                name="rps",
                description="Rock paper scissors",
                category=CATEGORY_GAME,
                handler_factory=EchoCommand,
                cooldown_ms=3000,
            ),
            CommandDescriptor(
                name="leaderboard",
                description="Top players",
                category=CATEGORY_GENERAL,
                handler_factory=EchoCommand,
            ),
            *extra,
        ]
    )
    return registry


def msg(text, participant="alice", conversation=GROUP, **kwargs):
    return InboundMessage(conversation_id=conversation, participant_id=participant, text=text, is_group=True, **kwargs)


def test_plain_text_is_ignored(make_dispatcher, transport):
    dispatcher = make_dispatcher(make_registry())

    handled = asyncio.run(dispatcher.handle_inbound(msg("hello there"), transport))

    assert handled is False
    assert transport.sent == []


def test_unknown_command_gets_one_reply(make_dispatcher, transport, config):
    dispatcher = make_dispatcher(make_registry())

    asyncio.run(dispatcher.handle_inbound(msg("!doesnotexist"), transport))

    assert transport.texts() == [config.render("unknown_command")]


def test_alias_and_alternative_prefix_reach_primary_handler(make_dispatcher, transport):
    dispatcher = make_dispatcher(make_registry())

    asyncio.run(dispatcher.handle_inbound(msg("/HM Start Now"), transport))

    assert transport.texts() == ["echo hangman Start Now"]
    assert EchoCommand.calls[0].args == ["Start", "Now"]


def test_mention_prefix_is_treated_as_command(make_dispatcher, transport):
    dispatcher = make_dispatcher(make_registry(), self_id="999")

    handled = asyncio.run(dispatcher.handle_inbound(msg("hey @999 leaderboard rps"), transport))

    assert handled is True
    assert transport.texts() == ["echo leaderboard rps"]


def test_mention_without_command_is_ignored(make_dispatcher, transport):
    dispatcher = make_dispatcher(make_registry(), self_id="999")

    handled = asyncio.run(dispatcher.handle_inbound(msg("thanks @999"), transport))

    assert handled is False
    assert transport.sent == []


def test_own_messages_are_ignored_by_default(make_dispatcher, transport):
    dispatcher = make_dispatcher(make_registry())

    handled = asyncio.run(dispatcher.handle_inbound(msg("!leaderboard", is_from_self=True), transport))

    assert handled is False
    assert transport.sent == []


def test_disabled_command_reports_reason(make_dispatcher, transport):
    registry = make_registry(
        CommandDescriptor(
            name="imagine",
            description="Image generation",
            category=CATEGORY_GENERAL,
            handler_factory=EchoCommand,
            disabled=True,
            disabled_reason="maintenance",
        )
    )
    dispatcher = make_dispatcher(registry)

    asyncio.run(dispatcher.handle_inbound(msg("!imagine cat"), transport))

    assert transport.texts() == ["This command is currently disabled: maintenance"]
    assert EchoCommand.calls == []


def test_role_gate(make_dispatcher, transport, config):
    config.roles["admin"] = ["boss"]
    registry = make_registry(
        CommandDescriptor(
            name="setprefix",
            description="Change prefix",
            category=CATEGORY_ADMIN,
            handler_factory=EchoCommand,
            required_roles=frozenset({"admin"}),
        )
    )
    dispatcher = make_dispatcher(registry)

    asyncio.run(dispatcher.handle_inbound(msg("!setprefix #", participant="alice"), transport))
    asyncio.run(dispatcher.handle_inbound(msg("!setprefix #", participant="boss"), transport))

    assert transport.texts() == [config.render("permission_denied"), "echo setprefix #"]


def test_cooldown_rejects_second_use(make_dispatcher, transport, clock):
    dispatcher = make_dispatcher(make_registry())

    async def run_test():
        await dispatcher.handle_inbound(msg("!rps start"), transport)
        clock.advance(milliseconds=1000)
        await dispatcher.handle_inbound(msg("!rps rock"), transport)
        clock.advance(milliseconds=2001)
        await dispatcher.handle_inbound(msg("!rps rock"), transport)

    asyncio.run(run_test())

    texts = transport.texts()
    assert texts[0] == "echo rps start"
    assert "Try again in 2 seconds" in texts[1]
    assert texts[2] == "echo rps rock"


def test_handler_exception_becomes_single_error_reply(make_dispatcher, transport, config):
    registry = make_registry(
        CommandDescriptor(
            name="crash",
            description="Always fails",
            category=CATEGORY_GENERAL,
            handler_factory=ExplodingCommand,
        )
    )
    dispatcher = make_dispatcher(registry)

    asyncio.run(dispatcher.handle_inbound(msg("!crash"), transport))

    assert transport.texts() == [config.render("command_error")]
    assert transport.presences == [(GROUP, "composing"), (GROUP, "available")]


def test_failed_error_reply_does_not_escape(make_dispatcher, transport):
    registry = make_registry(
        CommandDescriptor(
            name="crash",
            description="Always fails",
            category=CATEGORY_GENERAL,
            handler_factory=ExplodingCommand,
        )
    )
    dispatcher = make_dispatcher(registry)
    broken = type(transport)(fail_sends=True)

    asyncio.run(dispatcher.handle_inbound(msg("!crash"), broken))

    assert broken.sent == []


class ClosedTransport:
    def __init__(self):
        self.attempts = []

    async def send_message(self, conversation_id, text, *, mentions=None):
        self.attempts.append(text)
        raise TransportClosedError("connection closed")

    async def send_presence(self, conversation_id, presence):
        raise TransportClosedError("connection closed")


def test_closed_transport_skips_error_reply(make_dispatcher):
    dispatcher = make_dispatcher(make_registry())
    closed = ClosedTransport()

    asyncio.run(dispatcher.handle_inbound(msg("!leaderboard rps"), closed))

    assert closed.attempts == ["echo leaderboard rps"]
    assert len(EchoCommand.calls) == 1


def test_one_game_at_a_time(make_dispatcher, transport, sessions):
    dispatcher = make_dispatcher(make_registry())
    sessions.set(GROUP, "alice", "rps", {"mode": "ai"})

    asyncio.run(dispatcher.handle_inbound(msg("!hangman start"), transport))

    assert transport.texts() == ["You are still playing rps. Finish it first or end it with !stop."]
    assert EchoCommand.calls == []


def test_link_record_of_same_game_does_not_block(make_dispatcher, transport, sessions):
    dispatcher = make_dispatcher(make_registry())
    sessions.set("alice", "alice", "hangman_link", {"game_id": "abc123", "conversation_id": GROUP})

    asyncio.run(dispatcher.handle_inbound(msg("!hangman e", conversation="alice"), transport))
    asyncio.run(dispatcher.handle_inbound(msg("!rps rock", conversation="alice"), transport))

    assert transport.texts() == [
        "echo hangman e",
        "You are still playing hangman. Finish it first or end it with !stop.",
    ]


def test_builtin_stop(make_dispatcher, transport, sessions):
    dispatcher = make_dispatcher(make_registry())
    sessions.set(GROUP, "alice", "rps", {"mode": "ai"})

    async def run_test():
        await dispatcher.handle_inbound(msg("!stop"), transport)
        await dispatcher.handle_inbound(msg("!stop"), transport)

    asyncio.run(run_test())

    assert transport.texts() == ["Game rps has been stopped.", "There is no game running."]
    assert sessions.get(GROUP, "alice") is None


def test_builtin_games_and_help(make_dispatcher, transport):
    dispatcher = make_dispatcher(make_registry())

    async def run_test():
        await dispatcher.handle_inbound(msg("!games"), transport)
        await dispatcher.handle_inbound(msg("!help"), transport)
        await dispatcher.handle_inbound(msg("!help hm"), transport)
        await dispatcher.handle_inbound(msg("!help nothing"), transport)

    asyncio.run(run_test())

    games, overview, detail, missing = transport.texts()
    assert "*!hangman* (alias: *!hm*) - Word guessing" in games
    assert "*!rps* - Rock paper scissors" in games
    assert "leaderboard" not in games
    assert "*!stop*" in overview and "*!leaderboard* - Top players" in overview
    assert "*Alias:* !hm" in detail and "!hangman start" in detail
    assert "was not found" in missing


def test_builtin_stats(make_dispatcher, transport):
    usage = RecordingUsage(
        rows=[
            UsageStat("hangman", "alice", 4),
            UsageStat("hangman", "bob", 2),
            UsageStat("rps", "alice", 1),
        ]
    )
    dispatcher = make_dispatcher(make_registry(), usage_stats=usage)

    async def run_test():
        await dispatcher.handle_inbound(msg("!stats"), transport)
        await dispatcher.handle_inbound(msg("!stats hm"), transport)

    asyncio.run(run_test())

    overall, per_command = transport.texts()
    assert "1. !hangman: 6x" in overall
    assert "2. !rps: 1x" in overall
    assert "1. alice: 4x" in per_command


def test_stats_without_sink(make_dispatcher, transport):
    dispatcher = make_dispatcher(make_registry())
    asyncio.run(dispatcher.handle_inbound(msg("!stats"), transport))
    assert transport.texts() == ["Usage statistics are unavailable."]


def test_usage_is_recorded_best_effort(make_dispatcher, transport):
    usage = RecordingUsage()
    dispatcher = make_dispatcher(make_registry(), usage_stats=usage)
    asyncio.run(dispatcher.handle_inbound(msg("!hm start"), transport))
    assert usage.increments == [("hangman", "alice")]

    failing = make_dispatcher(make_registry(), usage_stats=RecordingUsage(fail=True))
    transport.clear()
    asyncio.run(failing.handle_inbound(msg("!leaderboard"), transport))
    assert transport.texts() == ["echo leaderboard"]


def test_same_participant_is_serialized(make_dispatcher, transport):
    events = []

    class SlowCommand:
        async def handle(self, ctx):
            events.append(("start", ctx.participant_id, ctx.args[0]))
            await asyncio.sleep(0.01)
            events.append(("end", ctx.participant_id, ctx.args[0]))
            await ctx.reply("ok")

    registry = CommandRegistry()
    registry.register(
        CommandDescriptor(name="slow", description="slow", category=CATEGORY_GENERAL, handler_factory=SlowCommand)
    )
    dispatcher = make_dispatcher(registry)

    async def run_test():
        await asyncio.gather(
            dispatcher.handle_inbound(msg("!slow 1", participant="alice"), transport),
            dispatcher.handle_inbound(msg("!slow 2", participant="alice"), transport),
            dispatcher.handle_inbound(msg("!slow 3", participant="bob"), transport),
        )

    asyncio.run(run_test())

    alice = [e for e in events if e[1] == "alice"]
    assert alice == [("start", "alice", "1"), ("end", "alice", "1"), ("start", "alice", "2"), ("end", "alice", "2")]
    assert events.index(("start", "bob", "3")) < events.index(("end", "alice", "1"))
    assert dispatcher._locks == {}


def test_background_sweepers_start_and_stop(make_dispatcher):
    dispatcher = make_dispatcher(make_registry())

    async def run_test():
        dispatcher.start_background_tasks()
        assert len(dispatcher._background) == 2
        await dispatcher.stop_background_tasks()
        assert dispatcher._background == []

    asyncio.run(run_test())
