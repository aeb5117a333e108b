from __future__ import annotations

import logging

from sqlalchemy.orm import Session, sessionmaker

from .repos import CooldownRepo, GameStatRepo, SessionRepo, UsageRepo

logger = logging.getLogger(__name__)


class SQLAlchemyUnitOfWork:
    """One database session shared by the gateway repositories.

    Nothing is written until ``commit()``; leaving the block with an
    exception rolls the session back.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory
        self.session: Session | None = None

    def __enter__(self) -> "SQLAlchemyUnitOfWork":
        session = self._session_factory()
        self.session = session
        self.sessions = SessionRepo(session)
        self.cooldowns = CooldownRepo(session)
        self.game_stats = GameStatRepo(session)
        self.usage = UsageRepo(session)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        session = self.session
        if session is None:
            return
        try:
            if exc_type is not None:
                logger.debug("Rolling back unit of work after %s", exc_type.__name__)
                session.rollback()
        finally:
            session.close()
            self.session = None

    def commit(self) -> None:
        if self.session is None:
            raise RuntimeError("unit of work is not active")
        self.session.commit()

    def rollback(self) -> None:
        if self.session is None:
            raise RuntimeError("unit of work is not active")
        self.session.rollback()
