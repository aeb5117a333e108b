from .config import BotConfig, StaticConfigSource, load_config
from .cooldowns import CooldownTracker
from .dispatcher import CommandDispatcher
from .errors import (
    CommandRegistrationError,
    DurableStoreUnavailable,
    ExternalServiceError,
    GatewayError,
    TransportClosedError,
)
from .ports import (
    Command,
    ConfigSource,
    ConnectionEvent,
    CooldownBackend,
    CredentialStore,
    LeaderboardSink,
    SessionBackend,
    Transport,
    TransportConnection,
    TransportConnector,
    UsageStatsSink,
)
from .registry import BUILTIN_COMMANDS, CommandRegistry
from .sessions import SessionStore
from .supervisor import ConnectionSupervisor, SupervisorStatus
from .types import (
    CATEGORY_ADMIN,
    CATEGORY_GAME,
    CATEGORY_GENERAL,
    CATEGORY_UTILITY,
    CommandContext,
    CommandDescriptor,
    ConnectionClosed,
    ConnectionOpened,
    CooldownEntry,
    GameStatView,
    InboundMessage,
    ParsedCommand,
    Session,
    StatDelta,
    UsageStat,
)

__all__ = [
    "BotConfig",
    "StaticConfigSource",
    "load_config",
    "CooldownTracker",
    "CommandDispatcher",
    "CommandRegistrationError",
    "DurableStoreUnavailable",
    "ExternalServiceError",
    "GatewayError",
    "TransportClosedError",
    "Command",
    "ConfigSource",
    "ConnectionEvent",
    "CooldownBackend",
    "CredentialStore",
    "LeaderboardSink",
    "SessionBackend",
    "Transport",
    "TransportConnection",
    "TransportConnector",
    "UsageStatsSink",
    "BUILTIN_COMMANDS",
    "CommandRegistry",
    "SessionStore",
    "ConnectionSupervisor",
    "SupervisorStatus",
    "CATEGORY_ADMIN",
    "CATEGORY_GAME",
    "CATEGORY_GENERAL",
    "CATEGORY_UTILITY",
    "CommandContext",
    "CommandDescriptor",
    "ConnectionClosed",
    "ConnectionOpened",
    "CooldownEntry",
    "GameStatView",
    "InboundMessage",
    "ParsedCommand",
    "Session",
    "StatDelta",
    "UsageStat",
]
