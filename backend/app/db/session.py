"""Database engine and session management."""

from collections.abc import Generator
from typing import Annotated, Any

from fastapi import Depends
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings

# Admission passes and API writes contend for the same rows; on SQLite a
# writer waits this long for the database lock instead of failing at once
SQLITE_BUSY_TIMEOUT_SECONDS = 15


def _enable_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str, **overrides: Any) -> Engine:
    """Create an engine with the pool settings the kitchen queue expects.

    SQLite gets cross-thread access (the scheduler ticks on the event loop
    thread, requests may run in the threadpool) and foreign keys switched on.
    Server databases get a bounded pool sized for one scheduler plus the API.
    """
    if database_url.startswith("sqlite"):
        options = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
            },
            "pool_pre_ping": True,
        }
    else:
        options = {
            "pool_size": 10,
            "max_overflow": 20,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
        }
    options.update(overrides)

    new_engine = create_engine(database_url, echo=False, **options)
    if database_url.startswith("sqlite"):
        event.listen(new_engine, "connect", _enable_sqlite_pragmas)
    return new_engine


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine = build_engine(settings.database_url)
SessionLocal = build_session_factory(engine)


def get_db() -> Generator[Session, None, None]:
    """Get database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Type alias for dependency injection
DbSession = Annotated[Session, Depends(get_db)]
