from .db import build_engine, build_session_factory, create_schema
from .stores import (
    SQLAlchemyCooldownBackend,
    SQLAlchemyLeaderboard,
    SQLAlchemySessionBackend,
    SQLAlchemyUsageStats,
)
from .uow import SQLAlchemyUnitOfWork

__all__ = [
    "build_engine",
    "build_session_factory",
    "create_schema",
    "SQLAlchemyUnitOfWork",
    "SQLAlchemySessionBackend",
    "SQLAlchemyCooldownBackend",
    "SQLAlchemyLeaderboard",
    "SQLAlchemyUsageStats",
]
