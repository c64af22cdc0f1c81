"""
SQLAlchemy base configuration and session management.

Uses SQLAlchemy 2.0 style with type hints and declarative base.
Designed to be portable between SQLite (dev) and PostgreSQL/MySQL (prod).
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session

from flighttrack.config import config


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize to an aware UTC datetime.

    Naive values are taken to be UTC already: SQLite drops tzinfo on the way
    back out, so values read from it come back naive even though everything
    is written in UTC. Aware values are converted, since SQLite also drops
    the offset on the way in without shifting the wall time.
    """
    if value is None:
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def install_sqlite_pragmas(target: Engine) -> None:
    """
    Configure SQLite connections for a write-while-reading workload.

    WAL mode allows concurrent reads during the ingestion transaction, and
    foreign keys must be switched on per connection for ON DELETE CASCADE.
    """
    @event.listens_for(target, 'connect')
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA journal_mode=WAL')
        cursor.execute('PRAGMA synchronous=NORMAL')
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


# Create engine with configuration appropriate for the database type
engine_kwargs = {
    'echo': config.debug,  # Log SQL in debug mode
}

if config.database.is_sqlite:
    engine_kwargs['connect_args'] = {'check_same_thread': False}

engine = create_engine(config.database.url, **engine_kwargs)

if config.database.is_sqlite:
    install_sqlite_pragmas(engine)


# Session factory
SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,  # Avoid lazy loading issues
)


@contextmanager
def get_session(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Transactional session scope.

    Usage:
        with get_session() as session:
            session.add(...)

    Commits when the block exits normally, rolls back and re-raises on any
    exception, and always closes the session.
    """
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(bind: Optional[Engine] = None) -> None:
    """
    Initialize database schema.

    Creates all tables if they don't exist. For production,
    use Alembic migrations instead.
    """
    # Import models so they register with Base.metadata
    from flighttrack.models import daily_statistic, flight, position  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
