from __future__ import annotations

import logging

from ..core.config import StaticConfigSource
from ..core.cooldowns import CooldownTracker
from ..core.types import CommandContext

logger = logging.getLogger(__name__)

ROLE_ACTIONS = {
    "add-admin": ("admin", True),
    "remove-admin": ("admin", False),
    "add-mod": ("moderator", True),
    "remove-mod": ("moderator", False),
    "add-vip": ("vip", True),
    "remove-vip": ("vip", False),
}

_TRUE_WORDS = {"1", "true", "yes", "on", "ya"}


class ConfigCommand:
    """Runtime bot settings, role membership and cooldown overrides for admins.

    Only settings read on every dispatch can be changed here; session limits
    are fixed when the gateway is built.
    """

    def __init__(self, config_source: StaticConfigSource, cooldowns: CooldownTracker):
        self._config_source = config_source
        self._cooldowns = cooldowns

    async def handle(self, ctx: CommandContext) -> None:
        if not ctx.args:
            await ctx.reply(self._usage(ctx))
            return

        action = ctx.args[0].lower()
        rest = ctx.args[1:]
        if action == "get":
            await ctx.reply(self._get(rest, ctx))
        elif action == "set":
            await ctx.reply(self._set(rest, ctx))
        elif action == "reset":
            self._config_source.reset()
            logger.info("Configuration reset by %s", ctx.participant_id)
            await ctx.reply(f"{ctx.config.emoji.get('success', '')} Configuration restored to its startup values.")
        elif action == "reset-cooldown":
            await ctx.reply(self._reset_cooldown(rest, ctx))
        elif action in ROLE_ACTIONS:
            role, add = ROLE_ACTIONS[action]
            await ctx.reply(self._change_role(role, add, rest, ctx))
        else:
            await ctx.reply(self._usage(ctx))

    def _get(self, args: list[str], ctx: CommandContext) -> str:
        config = self._config_source.get_current_config()
        if not args:
            yes_no = {True: "yes", False: "no"}
            return (
                "🛠️ *Current configuration*\n"
                f"• Name: {config.name}\n"
                f"• Prefix: {config.prefix}\n"
                f"• Alternative prefixes: {', '.join(config.alternative_prefixes) or '-'}\n"
                f"• Mention prefix: {yes_no[config.allow_mention_prefix]}\n"
                f"• Commands from self: {yes_no[config.allow_from_self]}\n"
                f"• Max sessions per chat: {config.max_sessions_per_conversation}\n"
                f"• Session timeout: {config.session_ttl_seconds}s\n"
                f"• Admins: {len(config.roles.get('admin', []))} user(s)\n"
                f"• Moderators: {len(config.roles.get('moderator', []))} user(s)\n"
                f"• VIPs: {len(config.roles.get('vip', []))} user(s)"
            )

        param = args[0].lower()
        values = {
            "name": config.name,
            "prefix": config.prefix,
            "allowfromself": config.allow_from_self,
            "mentionprefix": config.allow_mention_prefix,
            "maxsessions": config.max_sessions_per_conversation,
            "sessiontimeout": config.session_ttl_seconds,
            "admins": ", ".join(config.roles.get("admin", [])) or "-",
            "moderators": ", ".join(config.roles.get("moderator", [])) or "-",
            "vips": ", ".join(config.roles.get("vip", [])) or "-",
        }
        if param not in values:
            return f"{ctx.config.emoji.get('error', '')} Unknown setting '{param}'."
        return f"📋 *{param}*: {values[param]}"

    def _set(self, args: list[str], ctx: CommandContext) -> str:
        error = ctx.config.emoji.get("error", "")
        if len(args) < 2:
            return f"{error} Format: {ctx.config.prefix}config set <setting> <value>"

        param = args[0].lower()
        value = " ".join(args[1:])
        if param == "prefix":
            if len(args) != 2:
                return f"{error} The prefix cannot contain spaces."
            changes = {"prefix": value}
        elif param == "name":
            changes = {"name": value}
        elif param == "allowfromself":
            changes = {"allow_from_self": value.lower() in _TRUE_WORDS}
        elif param == "mentionprefix":
            changes = {"allow_mention_prefix": value.lower() in _TRUE_WORDS}
        else:
            return f"{error} Setting '{param}' cannot be changed with this command."

        self._config_source.update(**changes)
        logger.info("Configuration %s set to %r by %s", param, value, ctx.participant_id)
        return f"{ctx.config.emoji.get('success', '')} Setting '{param}' is now: {value}"

    def _change_role(self, role: str, add: bool, args: list[str], ctx: CommandContext) -> str:
        verb = "add" if add else "remove"
        if not args:
            short = {"moderator": "mod"}.get(role, role)
            return f"{ctx.config.emoji.get('error', '')} Format: {ctx.config.prefix}config {verb}-{short} <user id>"

        participant_id = args[0]
        roles = {name: list(members) for name, members in self._config_source.get_current_config().roles.items()}
        members = roles.setdefault(role, [])
        if add and participant_id not in members:
            members.append(participant_id)
        elif not add and participant_id in members:
            members.remove(participant_id)
        else:
            state = "already" if add else "not"
            return f"{participant_id} is {state} in role {role}."

        self._config_source.update(roles=roles)
        logger.info("%s %s role %s by %s", verb.capitalize(), participant_id, role, ctx.participant_id)
        direction = "added to" if add else "removed from"
        return f"{ctx.config.emoji.get('success', '')} {participant_id} was {direction} role {role}."

    def _reset_cooldown(self, args: list[str], ctx: CommandContext) -> str:
        if len(args) < 2:
            return (
                f"{ctx.config.emoji.get('error', '')} "
                f"Format: {ctx.config.prefix}config reset-cooldown <user id> <command>"
            )
        participant_id, command_name = args[0], args[1].lower()
        self._cooldowns.reset(participant_id, command_name)
        return f"{ctx.config.emoji.get('success', '')} Cooldown for {ctx.config.prefix}{command_name} cleared for {participant_id}."

    @staticmethod
    def _usage(ctx: CommandContext) -> str:
        p = ctx.config.prefix
        return (
            "🛠️ *Config command*\n"
            f"• {p}config get [setting] - show the configuration or one setting\n"
            f"• {p}config set <prefix|name|allowfromself|mentionprefix> <value>\n"
            f"• {p}config add-admin|remove-admin <user id>\n"
            f"• {p}config add-mod|remove-mod <user id>\n"
            f"• {p}config add-vip|remove-vip <user id>\n"
            f"• {p}config reset-cooldown <user id> <command>\n"
            f"• {p}config reset - drop runtime changes"
        )
