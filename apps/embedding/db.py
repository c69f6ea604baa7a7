"""Database handle: one engine + session factory per process, built by the composition root and injected."""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from apps.embedding.config import config
from apps.embedding.services.tenant_guard import search_path_for

logger = logging.getLogger(__name__)


class Database:
    """Owns the connection pool. Sessions are checked out per operation and never held across provider calls."""

    def __init__(self, url: str | None = None, *, echo: bool | None = None, engine: Engine | None = None) -> None:
        if engine is None:
            engine = create_engine(
                url or config.DATABASE_URL,
                pool_pre_ping=True,
                echo=config.SQL_ECHO if echo is None else echo,
            )
        self.engine = engine
        self._session_factory = sessionmaker(
            autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
        )

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Transactional scope for registry (public schema) work."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def tenant_session(self, schema_name: str) -> Generator[Session, None, None]:
        """
        Transactional scope pinned to one tenant schema.

        search_path is set with is_local=true inside the same transaction, so it applies to
        every statement on this connection until commit/rollback and never leaks back to the pool.
        """
        path = search_path_for(schema_name)
        with self.session() as session:
            session.execute(text("SELECT set_config('search_path', :path, true)"), {"path": path})
            logger.debug("tenant session opened search_path=%s", path)
            yield session

    def ping(self) -> bool:
        """True if a trivial query succeeds."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("database ping failed: %s", e)
            return False

    def dispose(self) -> None:
        self.engine.dispose()
