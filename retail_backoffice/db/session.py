"""
Datastore: engine creation and transactional session handling.

A Datastore wraps one SQLAlchemy engine and a session factory. Services
receive a Datastore explicitly instead of reaching for a module-level
connection, so tests can hand each service its own in-memory database.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from retail_backoffice.db.base import Base

if TYPE_CHECKING:
    from retail_backoffice.config import BackofficeSettings

logger = structlog.get_logger(__name__)

# Applied on every new SQLite connection
SQLITE_PRAGMAS: dict[str, int | str] = {
    "foreign_keys": "ON",
    "busy_timeout": 10000,
}


def create_datastore_engine(database_url: str, *, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    SQLite URLs get connection PRAGMAs applied on connect. An in-memory
    SQLite database uses StaticPool so every session sees the same
    connection (and therefore the same tables).
    """
    url = make_url(database_url)
    kwargs: dict = {"echo": echo}

    is_sqlite = url.get_backend_name() == "sqlite"
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 10}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            try:
                for pragma, value in SQLITE_PRAGMAS.items():
                    cursor.execute(f"PRAGMA {pragma}={value}")
            finally:
                cursor.close()

    logger.debug("datastore_engine_created", backend=url.get_backend_name())
    return engine


class Datastore:
    """
    Handle on the back-office database.

    Example:
        >>> store = Datastore("sqlite:///:memory:")
        >>> store.create_all()
        >>> with store.session_scope() as session:
        ...     session.add(Customer(name="Alice"))
    """

    def __init__(self, database_url: str, *, echo: bool = False):
        self.database_url = database_url
        self.engine = create_datastore_engine(database_url, echo=echo)
        self._session_factory = sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: BackofficeSettings) -> Datastore:
        return cls(settings.database_url, echo=settings.sql_echo)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Provide a transactional scope around a unit of work.

        Commits when the block exits normally; rolls back and re-raises
        on any exception.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        """Create every table that does not exist yet."""
        # Model classes must be imported so they register on Base.metadata
        from retail_backoffice.db import models  # noqa: F401

        Base.metadata.create_all(self.engine)
        logger.info("datastore_schema_created", tables=sorted(Base.metadata.tables))

    def check_health(self) -> bool:
        """Return True when a trivial query succeeds."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).scalar()
            return True
        except Exception as e:
            logger.error("datastore_health_check_failed", error=str(e))
            return False

    def dispose(self) -> None:
        self.engine.dispose()
        logger.debug("datastore_disposed")
