import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Base class for all models
Base = declarative_base()

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    SQLite hands timestamps back without tzinfo. Everything is stored in UTC,
    so a naive value read from the database is UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute("PRAGMA busy_timeout = 5000")
    cursor.close()


class Database:
    """
    Owns the engine and session factory for one process.

    Constructed once at startup and passed to every component; nothing in
    the package reaches for a module-level connection.
    """

    def __init__(self, database_url: str, echo: bool = False):
        url = make_url(database_url)
        self.is_sqlite = url.get_backend_name() == "sqlite"

        engine_args = {"echo": echo}
        if self.is_sqlite:
            # check_same_thread=False needed for SQLite with FastAPI
            engine_args["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                # One shared connection, otherwise every checkout sees an empty database
                engine_args["poolclass"] = StaticPool
            else:
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(database_url, **engine_args)
        if self.is_sqlite:
            event.listen(self.engine, "connect", _set_sqlite_pragmas)

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def init(self) -> list:
        """
        Bring the schema up to date.
        Applies pending migrations; call once on application startup.
        """
        from authgate.migrations import apply_migrations

        applied = apply_migrations(self.engine)
        if applied:
            logger.info("Applied schema migrations: %s", ", ".join(str(v) for v in applied))
        return applied

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Short-lived ORM session for one logical operation.
        Callers commit explicitly; anything uncommitted is rolled back.
        """
        db = self.SessionLocal()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def dispose(self):
        self.engine.dispose()
