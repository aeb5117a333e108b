from __future__ import annotations

import logging
from typing import Iterable, Optional

from .errors import CommandRegistrationError
from .ports import Command
from .types import COMMAND_CATEGORIES, CommandDescriptor

logger = logging.getLogger(__name__)

BUILTIN_COMMANDS = ("games", "help", "stop", "stats")


class CommandRegistry:
    """Command descriptors indexed by lowercase name, with a one-hop alias table.

    Names and aliases share a single namespace. The first registration of a
    token wins; later descriptors that collide are rejected.
    """

    def __init__(self, reserved: Iterable[str] = BUILTIN_COMMANDS):
        self._commands: dict[str, CommandDescriptor] = {}
        self._aliases: dict[str, str] = {}
        self._reserved = {name.lower() for name in reserved}

    def register(self, descriptor: CommandDescriptor) -> bool:
        try:
            self._validate(descriptor)
        except CommandRegistrationError as exc:
            logger.error("Skipping command registration: %s", exc)
            return False

        name = descriptor.name.strip().lower()
        self._commands[name] = descriptor
        for alias in descriptor.aliases:
            alias_key = alias.strip().lower()
            if alias_key == name:
                continue
            self._aliases[alias_key] = name
        logger.debug("Registered command %s (aliases: %s)", name, ", ".join(descriptor.aliases) or "-")
        return True

    def register_many(self, descriptors: Iterable[CommandDescriptor]) -> int:
        return sum(1 for descriptor in descriptors if self.register(descriptor))

    def resolve(self, token: str) -> Optional[CommandDescriptor]:
        key = (token or "").lower()
        key = self._aliases.get(key, key)
        return self._commands.get(key)

    def instantiate(self, descriptor: CommandDescriptor) -> Command:
        if descriptor.handler_factory is None:
            raise CommandRegistrationError(f"command {descriptor.name!r} has no handler factory")
        return descriptor.handler_factory()

    def all(self) -> list[CommandDescriptor]:
        return list(self._commands.values())

    def by_category(self, category: str) -> list[CommandDescriptor]:
        return [d for d in self._commands.values() if d.category == category]

    def __contains__(self, token: str) -> bool:
        return self.resolve(token) is not None

    def __len__(self) -> int:
        return len(self._commands)

    def _taken(self, token: str) -> bool:
        return token in self._commands or token in self._aliases or token in self._reserved

    def _validate(self, descriptor: CommandDescriptor) -> None:
        name = (descriptor.name or "").strip().lower()
        if not name:
            raise CommandRegistrationError("descriptor has no name")
        if descriptor.handler_factory is None:
            raise CommandRegistrationError(f"command {name!r} has no handler factory")
        if descriptor.category not in COMMAND_CATEGORIES:
            raise CommandRegistrationError(f"command {name!r} has unknown category {descriptor.category!r}")
        if self._taken(name):
            raise CommandRegistrationError(f"command name {name!r} collides with an existing command or alias")
        seen = {name}
        for alias in descriptor.aliases:
            alias_key = (alias or "").strip().lower()
            if not alias_key:
                raise CommandRegistrationError(f"command {name!r} declares an empty alias")
            if alias_key in seen:
                continue
            if self._taken(alias_key):
                raise CommandRegistrationError(
                    f"alias {alias_key!r} of {name!r} collides with an existing command or alias"
                )
            seen.add(alias_key)
