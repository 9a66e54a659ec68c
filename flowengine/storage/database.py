"""Database connection and session management."""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from ..core.logging import get_logger

logger = get_logger(__name__)

# Base class for all database models
Base = declarative_base()

# Global engine instance
_engine: Optional[Engine] = None

# Session factory; rebound whenever the engine changes
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_database_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine with settings suited to the database backend."""
    if database_url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}, "echo": echo}
        # An in-memory database only lives as long as its single connection
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            options["poolclass"] = StaticPool
        new_engine = create_engine(database_url, **options)
        event.listen(new_engine, "connect", _enable_sqlite_foreign_keys)
        return new_engine

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def configure_database(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """
    Point the storage layer at ``database_url``.

    Replaces (and disposes) any previously configured engine and rebinds the
    session factory. Defaults come from the application configuration.

    Args:
        database_url: SQLAlchemy database URL
        echo: Whether to log emitted SQL

    Returns:
        Engine: The newly configured engine
    """
    global _engine
    from ..config import get_config

    config = get_config()
    if database_url is None:
        database_url = config.database_url
    if echo is None:
        echo = config.database_echo

    if _engine is not None:
        _engine.dispose()

    _engine = create_database_engine(database_url, echo=echo)
    SessionLocal.configure(bind=_engine)
    logger.info(f"Database configured: {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def get_database_engine() -> Engine:
    """Get the configured engine, configuring it from settings on first use."""
    if _engine is None:
        return configure_database()
    return _engine


def reset_database_engine():
    """Dispose of the global engine (mainly for testing)."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


@contextmanager
def session_scope() -> Iterator[Session]:
    """Provide a transactional scope: commit on success, roll back on error."""
    get_database_engine()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_tables():
    """Create all database tables."""
    from . import models  # noqa: F401  registers the mapped classes on Base
    Base.metadata.create_all(bind=get_database_engine())


def drop_tables():
    """Drop all database tables."""
    from . import models  # noqa: F401
    Base.metadata.drop_all(bind=get_database_engine())
