"""Database engine and session helpers.

This module provides:
- Database: Connection manager (SQLite gets WAL mode for concurrent access)
- Session utilities for ORM and serializable transactions
- Retry logic for SQLite busy timeout handling
- Table reflection for node tables not declared in Python

Any SQLAlchemy URL works; the pragmas and BEGIN IMMEDIATE only apply to SQLite.
"""

from __future__ import annotations

import time
from collections.abc import Generator
from contextlib import contextmanager
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import MetaData, Table, event, text
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from treeindex.config.models import DatabaseConfig

logger = structlog.get_logger()

# Retry configuration for SQLite busy handling
DEFAULT_BUSY_TIMEOUT_MS = 30000
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 0.1  # 100ms base
DEFAULT_RETRY_MAX_DELAY = 2.0  # 2s max


def _is_database_locked_error(error: Exception) -> bool:
    """Check if error is a SQLite database locked error."""
    error_str = str(error).lower()
    return "database is locked" in error_str or "database is busy" in error_str


def database_url(target: str | Path) -> str:
    """Turn a filesystem path into a SQLite URL; pass URLs through."""
    target = str(target)
    if "://" in target:
        return target
    return f"sqlite:///{target}"


class Database:
    """Connection manager for the entity store holding the node and closure tables.

    Includes retry logic with exponential backoff for handling
    SQLite busy timeouts during concurrent writes.

    Usage::

        db = Database(Path("tree.db"))
        db.create_all()

        with db.immediate_transaction() as session:
            tree.save(session, node)
    """

    def __init__(
        self,
        db_path: Path | None = None,
        *,
        url: str | None = None,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        retry_max_delay: float = DEFAULT_RETRY_MAX_DELAY,
    ) -> None:
        if db_path is None and url is None:
            raise ValueError("Database needs a db_path or a url")
        self.db_path = db_path
        self.url = url or database_url(db_path)  # type: ignore[arg-type]
        self._busy_timeout_ms = busy_timeout_ms
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self.engine = self._create_engine()

    @classmethod
    def from_config(cls, config: DatabaseConfig, url: str | None = None) -> Database:
        target = url or config.url
        if target is None:
            raise ValueError("No database URL configured")
        return cls(
            url=database_url(target),
            busy_timeout_ms=config.busy_timeout_ms,
            max_retries=config.max_retries,
            retry_base_delay=config.retry_base_delay_sec,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.engine.dialect.name == "sqlite"

    def _create_engine(self) -> Engine:
        if not self.url.startswith("sqlite"):
            return create_engine(self.url, pool_pre_ping=True)
        engine = create_engine(
            self.url,
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
        event.listen(engine, "connect", partial(_configure_pragmas, busy_timeout_ms=self._busy_timeout_ms))
        return engine

    def create_all(self) -> None:
        """Create all tables from SQLModel metadata (closure tables included)."""
        SQLModel.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        """Drop all tables. Use with caution."""
        SQLModel.metadata.drop_all(self.engine)

    def reflect_table(self, name: str, metadata: MetaData | None = None) -> Table:
        """Load a table definition from the live schema."""
        return Table(name, metadata if metadata is not None else MetaData(), autoload_with=self.engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """ORM session; the caller commits."""
        with Session(self.engine) as session:
            yield session

    @contextmanager
    def immediate_transaction(
        self,
        max_retries: int | None = None,
    ) -> Generator[Session, None, None]:
        """
        Session that commits on success and rolls back on exception.

        On SQLite the transaction starts with BEGIN IMMEDIATE, taking the
        RESERVED lock up front so a read snapshot never has to be upgraded.
        Busy errors raised while opening it are retried with exponential
        backoff; errors raised by the caller's block are not.

        Args:
            max_retries: Override default max retries (default: 3)
        """
        retries = max_retries if max_retries is not None else self._max_retries

        for attempt in range(retries + 1):  # +1 for initial attempt
            session = Session(self.engine)
            try:
                if self.is_sqlite:
                    session.execute(text("BEGIN IMMEDIATE"))
            except OperationalError as e:
                session.close()
                if _is_database_locked_error(e) and attempt < retries:
                    delay = min(
                        self._retry_base_delay * (2**attempt),
                        self._retry_max_delay,
                    )
                    logger.warning(
                        "sqlite_busy_retry",
                        attempt=attempt + 1,
                        max_retries=retries,
                        delay_sec=delay,
                    )
                    time.sleep(delay)
                    continue
                raise

            with session:
                try:
                    yield session
                    session.commit()
                except Exception:
                    session.rollback()
                    raise
            return


def _configure_pragmas(dbapi_conn: Any, _connection_record: Any, *, busy_timeout_ms: int) -> None:
    """Configure SQLite for concurrent access."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    cursor.execute("PRAGMA synchronous=NORMAL")  # Safe with WAL
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
