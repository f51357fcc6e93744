"""Tests for the named advisory lock."""

from __future__ import annotations

import threading
import time
import zlib
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from sqlmodel import Session

from treeindex.hierarchy import AdvisoryLock, Database
from treeindex.hierarchy._internal import lock as lock_module
from treeindex.hierarchy._internal.lock import (
    _FileLock,
    _MySQLLock,
    _PostgresLock,
    _store_lock_for,
    advisory_key,
)


def _fake_session(dialect: str) -> MagicMock:
    session = MagicMock()
    session.get_bind.return_value.dialect.name = dialect
    return session


class TestReentrancy:
    def test_depth_tracks_nested_holds(self, session: Session) -> None:
        lock = AdvisoryLock("test_depth_lock")

        with lock.hold(session):
            assert lock.depth == 1
            with lock.hold(session):
                assert lock.depth == 2
            assert lock.depth == 1
        assert lock.depth == 0
        assert not lock.is_held()

    def test_same_name_shares_state(self, session: Session) -> None:
        first = AdvisoryLock("test_shared_lock")
        second = AdvisoryLock("test_shared_lock")

        with first.hold(session):
            assert second.is_held()
            with second.hold(session):
                assert first.depth == 2

    def test_released_when_block_raises(self, session: Session) -> None:
        lock = AdvisoryLock("test_raise_lock")

        with pytest.raises(ValueError), lock.hold(session), lock.hold(session):
            raise ValueError("boom")

        assert lock.depth == 0


class TestStoreLevel:
    def test_file_lock_next_to_sqlite_database(self, session: Session, db: Database) -> None:
        lock = AdvisoryLock("test_file_lock")

        with lock.hold(session):
            pass

        assert Path(f"{db.db_path}.test_file_lock.lock").exists()

    def test_store_level_disabled(self, session: Session, db: Database) -> None:
        lock = AdvisoryLock("test_local_only_lock", store_level=False)

        with lock.hold(session):
            pass

        assert not Path(f"{db.db_path}.test_local_only_lock.lock").exists()

    def test_in_memory_sqlite_has_no_store_lock(self) -> None:
        memory = Database(url="sqlite://")
        try:
            with memory.session() as session:
                assert _store_lock_for(session, "any") is None
        finally:
            memory.engine.dispose()

    @pytest.mark.parametrize(
        ("dialect", "expected"),
        [
            ("postgresql", _PostgresLock),
            ("mysql", _MySQLLock),
            ("mariadb", _MySQLLock),
        ],
    )
    def test_dialect_dispatch(self, dialect: str, expected: type) -> None:
        assert isinstance(_store_lock_for(_fake_session(dialect), "name"), expected)

    def test_unknown_dialect_has_no_store_lock(self) -> None:
        assert _store_lock_for(_fake_session("oracle"), "name") is None

    def test_postgres_uses_transaction_lock(self) -> None:
        session = _fake_session("postgresql")
        lock = _PostgresLock(session, "category_hierarchies_advisory_lock")

        lock.acquire()
        lock.release()

        assert session.execute.call_count == 1
        sql, params = session.execute.call_args.args
        assert "pg_advisory_xact_lock" in str(sql)
        assert params == {"key": advisory_key("category_hierarchies_advisory_lock")}

    def test_mysql_truncates_long_names(self) -> None:
        session = _fake_session("mysql")
        lock = _MySQLLock(session, "x" * 100)

        lock.acquire()
        lock.release()

        assert session.execute.call_count == 2
        assert session.execute.call_args.args[1] == {"name": "x" * 64}

    def test_advisory_key_is_stable(self) -> None:
        assert advisory_key("abc") == zlib.crc32(b"abc")


class TestFileLock:
    def test_release_without_acquire(self, temp_dir: Path) -> None:
        _FileLock(str(temp_dir / "never.lock")).release()

    def test_reacquire_after_release(self, temp_dir: Path) -> None:
        lock = _FileLock(str(temp_dir / "again.lock"))
        lock.acquire()
        lock.release()
        lock.acquire()
        lock.release()


class TestCrossThread:
    def test_second_thread_waits_for_holder(self, db: Database) -> None:
        lock = AdvisoryLock("test_blocking_lock")
        events: list[str] = []
        entered = threading.Event()
        release = threading.Event()

        def holder() -> None:
            with db.session() as s, lock.hold(s):
                entered.set()
                release.wait(5)
                events.append("holder_done")

        def waiter() -> None:
            with db.session() as s, lock.hold(s):
                events.append("waiter_in")

        t1 = threading.Thread(target=holder)
        t1.start()
        assert entered.wait(5)
        t2 = threading.Thread(target=waiter)
        t2.start()
        time.sleep(0.1)
        assert events == []

        release.set()
        t1.join(5)
        t2.join(5)

        assert events == ["holder_done", "waiter_in"]
        assert lock.depth == 0


class _TransactionScopedLock:
    """Held by one transaction until it ends, reentrant within it."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._owner: object | None = None

    def for_transaction(self, transaction: object) -> _TransactionHandle:
        return _TransactionHandle(self, transaction)

    def take(self, transaction: object) -> None:
        with self._cond:
            self._cond.wait_for(lambda: self._owner in (None, transaction))
            self._owner = transaction

    def end(self, transaction: object) -> None:
        with self._cond:
            if self._owner is transaction:
                self._owner = None
                self._cond.notify_all()


class _TransactionHandle:
    def __init__(self, lock: _TransactionScopedLock, transaction: object) -> None:
        self._lock = lock
        self._transaction = transaction

    def acquire(self) -> None:
        self._lock.take(self._transaction)

    def release(self) -> None:
        pass


class TestTransactionScopedStoreLock:
    def test_second_hold_in_same_transaction_not_blocked_by_waiter(self, monkeypatch: pytest.MonkeyPatch) -> None:
        xact = _TransactionScopedLock()
        monkeypatch.setattr(lock_module, "_store_lock_for", lambda session, name: xact.for_transaction(session))
        lock = AdvisoryLock("test_xact_order_lock")
        tx_a, tx_b = object(), object()
        events: list[str] = []
        waiting = threading.Event()

        def first_writer_again() -> None:
            with lock.hold(tx_a):  # type: ignore[arg-type]
                events.append("a2")

        def second_writer() -> None:
            waiting.set()
            with lock.hold(tx_b):  # type: ignore[arg-type]
                events.append("b")

        with lock.hold(tx_a):  # type: ignore[arg-type]
            events.append("a1")

        t_b = threading.Thread(target=second_writer)
        t_a = threading.Thread(target=first_writer_again)
        try:
            t_b.start()
            assert waiting.wait(5)
            time.sleep(0.1)
            t_a.start()
            t_a.join(5)

            assert not t_a.is_alive()
            assert events == ["a1", "a2"]
        finally:
            xact.end(tx_a)
            t_b.join(5)

        assert events == ["a1", "a2", "b"]
        assert lock.depth == 0
