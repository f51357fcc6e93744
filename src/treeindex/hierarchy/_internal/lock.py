"""Named, reentrant advisory lock serializing hierarchy maintenance.

A maintenance sequence is several statements (delete rows, insert the self
row, copy ancestor rows, renumber siblings) that must look atomic to any
other maintenance sequence on the same closure table. One lock name per
closure table, never per node.

Two layers:
- In-process: a threading.RLock per name from a process-wide registry, with
  per-thread depth tracking so nested holds (rebuild recursing into
  children) don't touch the store again.
- Store-level, taken when the depth goes 0 -> 1 and before the in-process
  lock, chosen by SQL dialect:
    postgresql  pg_advisory_xact_lock(key), released when the transaction ends
    mysql       GET_LOCK(name, -1) / RELEASE_LOCK(name)
    sqlite      exclusive flock on "<database>.<name>.lock" (file databases only)

Acquisition blocks without a timeout. Release always runs, including when
the held block raises.
"""

from __future__ import annotations

import os
import sys
import threading
import zlib
from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Protocol

import structlog
from sqlalchemy import text

if sys.platform != "win32":
    import fcntl

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = structlog.get_logger()


class _StoreLock(Protocol):
    def acquire(self) -> None: ...

    def release(self) -> None: ...


def advisory_key(name: str) -> int:
    """Stable integer key for lock functions that take numbers."""
    return zlib.crc32(name.encode("utf-8"))


class _PostgresLock:
    """Transaction-scoped: the server drops it on commit or rollback."""

    def __init__(self, session: Session, name: str) -> None:
        self._session = session
        self._key = advisory_key(name)

    def acquire(self) -> None:
        self._session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": self._key})

    def release(self) -> None:
        pass


class _MySQLLock:
    def __init__(self, session: Session, name: str) -> None:
        self._session = session
        # MySQL caps lock names at 64 characters
        self._name = name[:64]

    def acquire(self) -> None:
        self._session.execute(text("SELECT GET_LOCK(:name, -1)"), {"name": self._name})

    def release(self) -> None:
        self._session.execute(text("SELECT RELEASE_LOCK(:name)"), {"name": self._name})


class _FileLock:
    def __init__(self, path: str) -> None:
        self.path = path
        self._fd: int | None = None

    def acquire(self) -> None:
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
        except BaseException:
            os.close(fd)
            raise
        self._fd = fd

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None


def _store_lock_for(session: Session, name: str) -> _StoreLock | None:
    bind = session.get_bind()
    dialect = bind.dialect.name
    if dialect == "postgresql":
        return _PostgresLock(session, name)
    if dialect in ("mysql", "mariadb"):
        return _MySQLLock(session, name)
    if dialect == "sqlite":
        database = bind.url.database
        if not database or database == ":memory:" or "mode=memory" in str(bind.url):
            return None
        if sys.platform == "win32":
            logger.warning("advisory_lock_file_unsupported", lock=name, platform=sys.platform)
            return None
        return _FileLock(f"{database}.{name}.lock")
    logger.warning("advisory_lock_dialect_unsupported", lock=name, dialect=dialect)
    return None


class _NamedLock:
    """Process-wide state shared by every AdvisoryLock with the same name."""

    def __init__(self) -> None:
        self.mutex = threading.RLock()
        self.local = threading.local()

    @property
    def depth(self) -> int:
        return getattr(self.local, "depth", 0)


_registry: dict[str, _NamedLock] = {}
_registry_guard = threading.Lock()


def _named_lock(name: str) -> _NamedLock:
    with _registry_guard:
        state = _registry.get(name)
        if state is None:
            state = _registry[name] = _NamedLock()
        return state


class AdvisoryLock:
    """Reentrant named lock spanning threads, and processes sharing a store.

    Usage::

        lock = AdvisoryLock("category_hierarchies_advisory_lock")
        with lock.hold(session):
            ...  # multi-statement maintenance
    """

    def __init__(self, name: str, *, store_level: bool = True) -> None:
        self.name = name
        self.store_level = store_level
        self._state = _named_lock(name)

    @property
    def depth(self) -> int:
        """How many times the current thread holds this lock."""
        return self._state.depth

    def is_held(self) -> bool:
        return self._state.depth > 0

    @contextmanager
    def hold(self, session: Session) -> Generator[None, None, None]:
        state = self._state
        depth = state.depth
        store_lock: _StoreLock | None = None
        if depth == 0 and self.store_level:
            store_lock = _store_lock_for(session, self.name)
        # Store lock first: a transaction-scoped lock can outlive the mutex
        if store_lock is not None:
            store_lock.acquire()
        try:
            state.mutex.acquire()
            try:
                if depth == 0:
                    logger.debug("advisory_lock_acquired", lock=self.name)
                state.local.depth = depth + 1
                try:
                    yield
                finally:
                    state.local.depth = depth
                    if depth == 0:
                        logger.debug("advisory_lock_released", lock=self.name)
            finally:
                state.mutex.release()
        finally:
            if store_lock is not None:
                store_lock.release()
