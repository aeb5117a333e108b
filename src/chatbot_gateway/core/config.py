from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_EMOJI = {
    "games": "🎮",
    "help": "📋",
    "error": "❌",
    "success": "✅",
    "info": "ℹ️",
    "hangman": "👻",
    "rps": "✂️",
}

DEFAULT_MESSAGES = {
    "unknown_command": "Unknown command. Type {prefix}games or {prefix}help for help.",
    "game_in_progress": "You are still playing {game}. Finish it first or end it with {prefix}stop.",
    "game_stopped": "Game {game} has been stopped.",
    "no_game_running": "There is no game running.",
    "command_error": "Something went wrong while processing that command. Please try again.",
    "permission_denied": "You do not have permission to use this command.",
    "command_disabled": "This command is currently disabled: {reason}",
    "cooldown": "You are using this command too quickly. Try again in {seconds} seconds.",
    "session_timeout": "The game ended because there was no activity.",
    "service_unavailable": "That service is unavailable right now. Please try again later.",
}

DEFAULT_ROLES = ("admin", "moderator", "vip")


@dataclass
class BotConfig:
    name: str = "MeoW"
    prefix: str = "!"
    alternative_prefixes: list[str] = field(default_factory=lambda: ["/", "."])
    allow_mention_prefix: bool = True
    allow_from_self: bool = False
    max_sessions_per_conversation: int = 5
    session_ttl_seconds: int = 3600
    session_sweep_interval_seconds: int = 1800
    cooldown_sweep_interval_seconds: int = 3600
    cooldown_max_age_seconds: int = 86400
    roles: dict[str, list[str]] = field(default_factory=lambda: {role: [] for role in DEFAULT_ROLES})
    emoji: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_EMOJI))
    messages: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_MESSAGES))
    database_url: str = "sqlite+pysqlite:///chatbot_gateway.db"
    word_source_url: Optional[str] = None
    http_timeout_seconds: float = 5.0
    http_connect_timeout_seconds: float = 2.0
    http_max_attempts: int = 10

    @property
    def all_prefixes(self) -> list[str]:
        return [self.prefix, *self.alternative_prefixes]

    def render(self, key: str, **values: Any) -> str:
        template = self.messages.get(key, key)
        values.setdefault("prefix", self.prefix)
        for name, value in values.items():
            template = template.replace("{" + name + "}", str(value))
        return template

    def roles_for(self, participant_id: str) -> set[str]:
        return {role for role, members in self.roles.items() if participant_id in members}


class StaticConfigSource:
    """Read-mostly holder for the active :class:`BotConfig`."""

    def __init__(self, config: BotConfig | None = None, loader=None):
        self._config = config or BotConfig()
        self._initial = self._config
        self._loader = loader

    def get_current_config(self) -> BotConfig:
        return self._config

    def update(self, **changes: Any) -> BotConfig:
        self._config = replace(self._config, **changes)
        return self._config

    def reset(self) -> BotConfig:
        """Drop runtime changes and return to the configuration this source started with."""
        self._config = self._initial
        return self._config

    def refresh(self) -> BotConfig:
        if self._loader is not None:
            self._config = self._loader()
        return self._config


def _split_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def _int_setting(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid integer for %s: %r", key, raw)
        return default


def _bool_setting(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_config(env: Mapping[str, str] | None = None, dotenv_path: str | None = None) -> BotConfig:
    if env is None:
        load_dotenv(dotenv_path)
        env = os.environ

    config = BotConfig()
    config.name = env.get("CHATBOT_NAME", config.name)
    config.prefix = env.get("CHATBOT_PREFIX", config.prefix) or config.prefix
    if "CHATBOT_ALT_PREFIXES" in env:
        config.alternative_prefixes = _split_list(env.get("CHATBOT_ALT_PREFIXES"))
    config.allow_mention_prefix = _bool_setting(env, "CHATBOT_ALLOW_MENTION_PREFIX", config.allow_mention_prefix)
    config.allow_from_self = _bool_setting(env, "CHATBOT_ALLOW_FROM_SELF", config.allow_from_self)
    config.max_sessions_per_conversation = _int_setting(
        env, "CHATBOT_MAX_SESSIONS", config.max_sessions_per_conversation
    )
    config.session_ttl_seconds = _int_setting(env, "CHATBOT_SESSION_TTL_SECONDS", config.session_ttl_seconds)
    config.http_max_attempts = _int_setting(env, "CHATBOT_HTTP_MAX_ATTEMPTS", config.http_max_attempts)
    config.database_url = env.get("CHATBOT_DATABASE_URL", config.database_url) or config.database_url
    config.word_source_url = env.get("CHATBOT_WORD_SOURCE_URL") or None

    for role in DEFAULT_ROLES:
        members = _split_list(env.get(f"CHATBOT_{role.upper()}S"))
        if members:
            config.roles[role] = members
    return config
