from .app import Gateway, build_gateway
from .core.config import BotConfig, load_config
from .core.dispatcher import CommandDispatcher
from .core.supervisor import ConnectionSupervisor
from .logging_setup import configure_logging

__all__ = [
    "Gateway",
    "build_gateway",
    "BotConfig",
    "load_config",
    "CommandDispatcher",
    "ConnectionSupervisor",
    "configure_logging",
]
