from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Optional

from .config import BotConfig
from .cooldowns import CooldownTracker
from .errors import TransportClosedError
from .normalize import extract_mention_command, format_mention, parse_command
from .ports import ConfigSource, LeaderboardSink, Transport, UsageStatsSink
from .registry import BUILTIN_COMMANDS, CommandRegistry
from .sessions import SessionStore
from .types import (
    CATEGORY_ADMIN,
    CATEGORY_GAME,
    CATEGORY_GENERAL,
    CATEGORY_UTILITY,
    CommandContext,
    CommandDescriptor,
    InboundMessage,
    ParsedCommand,
    game_family,
    link_kind,
)

logger = logging.getLogger(__name__)

_CATEGORY_TITLES = (
    (CATEGORY_GAME, "games", "Games"),
    (CATEGORY_GENERAL, "info", "General"),
    (CATEGORY_ADMIN, None, "Admin"),
    (CATEGORY_UTILITY, None, "Utility"),
)

_BUILTIN_HELP = {
    "games": "Lists the available games.",
    "help": "Shows every command, or details for one: {prefix}help <command>.",
    "stop": "Stops the game you are playing in this chat.",
    "stats": "Shows command usage counts, or the top users of one command: {prefix}stats <command>.",
}


class CommandDispatcher:
    """Turns inbound messages into command handler invocations.

    Each message runs through prefix matching, built-in interception, alias
    resolution and the disabled / role / cooldown gates before the handler is
    invoked. Every path ends in exactly one reply to the originating
    conversation; handler exceptions stop here.
    """

    def __init__(
        self,
        registry: CommandRegistry,
        sessions: SessionStore,
        cooldowns: CooldownTracker,
        config_source: ConfigSource,
        *,
        usage_stats: UsageStatsSink | None = None,
        leaderboard: LeaderboardSink | None = None,
        self_id: Optional[str] = None,
    ):
        self.registry = registry
        self.sessions = sessions
        self.cooldowns = cooldowns
        self.self_id = self_id
        self._config_source = config_source
        self._usage_stats = usage_stats
        self._leaderboard = leaderboard
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._lock_users: dict[tuple[str, str], int] = {}
        self._background: list[asyncio.Task] = []

    @property
    def config(self) -> BotConfig:
        return self._config_source.get_current_config()

    async def handle_inbound(self, message: InboundMessage, transport: Transport) -> bool:
        config = self.config
        if message.is_from_self and not config.allow_from_self:
            return False

        text = message.text or ""
        if config.allow_mention_prefix and self.self_id and f"@{self.self_id}" in text:
            command_text = extract_mention_command(text, self.self_id)
            if command_text is None:
                return False
            text = config.prefix + command_text

        if parse_command(text, config.all_prefixes) is None:
            return False
        await self.dispatch(message, transport, text=text)
        return True

    async def dispatch(self, message: InboundMessage, transport: Transport, text: Optional[str] = None) -> None:
        config = self.config
        parsed = parse_command(message.text if text is None else text, config.all_prefixes)
        if parsed is None:
            return

        key = (message.conversation_id, message.participant_id)
        lock = self._acquire_lock(key)
        try:
            async with lock:
                await self._set_presence(transport, message.conversation_id, "composing")
                try:
                    await self._dispatch_parsed(parsed, message, transport, config)
                except TransportClosedError:
                    logger.info(
                        "Transport closed while handling %r in %s; reply dropped",
                        parsed.name,
                        message.conversation_id,
                    )
                except Exception:
                    logger.exception(
                        "Error handling command %r from %s in %s",
                        parsed.name,
                        message.participant_id,
                        message.conversation_id,
                    )
                    await self._safe_reply(transport, message.conversation_id, config.render("command_error"))
                finally:
                    await self._set_presence(transport, message.conversation_id, "available")
        finally:
            self._release_lock(key)

    def start_background_tasks(self) -> None:
        if self._background:
            return
        config = self.config
        self._background = [
            asyncio.create_task(self.sessions.run_sweeper(config.session_sweep_interval_seconds)),
            asyncio.create_task(self.cooldowns.run_sweeper(config.cooldown_sweep_interval_seconds)),
        ]

    async def stop_background_tasks(self) -> None:
        tasks, self._background = self._background, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _dispatch_parsed(
        self,
        parsed: ParsedCommand,
        message: InboundMessage,
        transport: Transport,
        config: BotConfig,
    ) -> None:
        conversation_id = message.conversation_id
        participant_id = message.participant_id

        if parsed.name in BUILTIN_COMMANDS:
            await self._handle_builtin(parsed, message, transport, config)
            return

        descriptor = self.registry.resolve(parsed.name)
        if descriptor is None:
            await transport.send_message(conversation_id, config.render("unknown_command"))
            return

        command_name = descriptor.name.lower()

        if descriptor.disabled:
            reason = descriptor.disabled_reason or "no reason given"
            await transport.send_message(conversation_id, config.render("command_disabled", reason=reason))
            return

        if descriptor.required_roles and not (config.roles_for(participant_id) & set(descriptor.required_roles)):
            await transport.send_message(conversation_id, config.render("permission_denied"))
            return

        if descriptor.cooldown_ms:
            max_uses = descriptor.max_uses or 1
            if self.cooldowns.check_and_record(participant_id, command_name, descriptor.cooldown_ms, max_uses):
                seconds = self.cooldowns.get_remaining_seconds(participant_id, command_name, descriptor.cooldown_ms)
                text = config.render("cooldown", seconds=seconds)
                await transport.send_message(conversation_id, f"{config.emoji.get('error', '')} {text}".strip())
                return

        self._record_usage(command_name, participant_id)

        if descriptor.category == CATEGORY_GAME:
            existing = self.sessions.get(conversation_id, participant_id)
            if existing is not None and existing.kind not in (command_name, link_kind(command_name)):
                await transport.send_message(
                    conversation_id,
                    config.render("game_in_progress", game=game_family(existing.kind)),
                )
                return

        handler = self.registry.instantiate(descriptor)
        ctx = CommandContext(
            command_name=command_name,
            args=parsed.args,
            conversation_id=conversation_id,
            participant_id=participant_id,
            transport=transport,
            sessions=self.sessions,
            message=message,
            config=config,
            leaderboard=self._leaderboard,
        )
        await handler.handle(ctx)

    async def _handle_builtin(
        self,
        parsed: ParsedCommand,
        message: InboundMessage,
        transport: Transport,
        config: BotConfig,
    ) -> None:
        conversation_id = message.conversation_id
        if parsed.name == "games":
            text = self._games_text(config)
        elif parsed.name == "help":
            text = self._help_text(parsed.args, config)
        elif parsed.name == "stop":
            text = self._stop(conversation_id, message.participant_id, config)
        else:
            text = self._stats_text(parsed.args, config)
        await transport.send_message(conversation_id, text)

    def _games_text(self, config: BotConfig) -> str:
        p = config.prefix
        lines = []
        for game in self.registry.by_category(CATEGORY_GAME):
            alias_text = ""
            if game.aliases:
                alias_text = " (alias: " + ", ".join(f"*{p}{a}*" for a in game.aliases) + ")"
            lines.append(f"• *{p}{game.name}*{alias_text} - {game.description}")
        if not lines:
            lines.append("_No games available._")
        return (
            f"{config.emoji.get('games', '')} Available games:\n"
            + "\n".join(lines)
            + f"\n\nUse {p}<game> start to play, or {p}help <game> for instructions."
        )

    def _help_text(self, args: list[str], config: BotConfig) -> str:
        p = config.prefix
        if not args:
            text = f"{config.emoji.get('help', '')} *{config.name} Bot Help*\n\n*Core commands:*\n"
            for name in BUILTIN_COMMANDS:
                text += f"*{p}{name}* - {_BUILTIN_HELP[name].replace('{prefix}', p)}\n"
            text += "\n"
            for category, emoji_key, title in _CATEGORY_TITLES:
                commands = self.registry.by_category(category)
                if not commands:
                    continue
                emoji = config.emoji.get(emoji_key, "") if emoji_key else ""
                heading = f"{emoji} {title}".strip()
                text += f"*{heading}:*\n"
                text += "\n".join(f"*{p}{c.name}* - {c.description}" for c in commands)
                text += "\n\n"
            text += f"Use {p}help <command> for details."
            return text

        token = args[0].lower()
        if token in BUILTIN_COMMANDS:
            return f"*{p}{token}*\n*Description:* {_BUILTIN_HELP[token].replace('{prefix}', p)}"

        descriptor = self.registry.resolve(token)
        if descriptor is None:
            return f"Command *{p}{args[0]}* was not found.\nUse {p}help to see every command."
        return self._describe(descriptor, config)

    @staticmethod
    def _describe(descriptor: CommandDescriptor, config: BotConfig) -> str:
        p = config.prefix
        text = f"*{p}{descriptor.name}*"
        if descriptor.aliases:
            text += "\n*Alias:* " + ", ".join(p + a for a in descriptor.aliases)
        text += f"\n*Description:* {descriptor.description}\n\n"
        if descriptor.help_text:
            text += descriptor.help_text.replace("{prefix}", p)
        elif descriptor.category == CATEGORY_GAME:
            text += f"Use {p}{descriptor.name} start to begin."
        else:
            text += f"Use {p}{descriptor.name} to run this command."
        if descriptor.usage_examples:
            text += "\n\n*Examples:*\n" + "\n".join(p + example for example in descriptor.usage_examples)
        if descriptor.disabled:
            text += f"\n\n_Disabled: {descriptor.disabled_reason or 'no reason given'}_"
        return text

    def _stop(self, conversation_id: str, participant_id: str, config: BotConfig) -> str:
        session = self.sessions.get(conversation_id, participant_id)
        if session is None:
            return config.render("no_game_running")
        self.sessions.clear(conversation_id, participant_id)
        return config.render("game_stopped", game=game_family(session.kind))

    def _stats_text(self, args: list[str], config: BotConfig) -> str:
        if self._usage_stats is None:
            return "Usage statistics are unavailable."
        try:
            rows = self._usage_stats.get_all()
        except Exception:
            logger.warning("Failed to read usage statistics", exc_info=True)
            return config.render("service_unavailable")

        p = config.prefix
        if args:
            descriptor = self.registry.resolve(args[0])
            command = descriptor.name.lower() if descriptor else args[0].lower()
            users = sorted((r for r in rows if r.command == command), key=lambda r: r.count, reverse=True)[:10]
            if not users:
                return f"No usage recorded for *{p}{command}*."
            lines = [f"{i}. {format_mention(r.participant_id)}: {r.count}x" for i, r in enumerate(users, 1)]
            return f"📊 *Top users of {p}{command}*:\n" + "\n".join(lines)

        totals: Counter[str] = Counter()
        for row in rows:
            totals[row.command] += row.count
        if not totals:
            return "No command usage recorded yet."
        lines = [f"{i}. {p}{command}: {count}x" for i, (command, count) in enumerate(totals.most_common(10), 1)]
        return "📊 *Command usage*:\n" + "\n".join(lines)

    def _record_usage(self, command_name: str, participant_id: str) -> None:
        if self._usage_stats is None:
            return
        try:
            self._usage_stats.increment(command_name, participant_id)
        except Exception:
            logger.warning("Failed to record usage for %s by %s", command_name, participant_id, exc_info=True)

    async def _set_presence(self, transport: Transport, conversation_id: str, presence: str) -> None:
        try:
            await transport.send_presence(conversation_id, presence)
        except Exception:
            logger.debug("Presence update %r failed for %s", presence, conversation_id, exc_info=True)

    async def _safe_reply(self, transport: Transport, conversation_id: str, text: str) -> None:
        try:
            await transport.send_message(conversation_id, text)
        except Exception:
            logger.warning("Failed to deliver error reply to %s", conversation_id, exc_info=True)

    def _acquire_lock(self, key: tuple[str, str]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        return lock

    def _release_lock(self, key: tuple[str, str]) -> None:
        remaining = self._lock_users.get(key, 1) - 1
        if remaining <= 0:
            self._lock_users.pop(key, None)
            self._locks.pop(key, None)
        else:
            self._lock_users[key] = remaining
