from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy import inspect, insert, select, func, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from user_service.database import ConnectionPool, parse_datetime, serialize_datetime, users
from user_service.errors import StorageUnavailable


@pytest.fixture()
def pool(tmp_path: Path):
    pool = ConnectionPool(tmp_path / "users.sqlite3", size=2, timeout=0.1)
    pool.initialize()
    yield pool
    pool.close()


def _user_count(pool: ConnectionPool) -> int:
    with pool.connection() as conn:
        return conn.execute(select(func.count()).select_from(users)).scalar_one()


def _insert(conn: Connection, email: str) -> None:
    stamp = "2024-01-01T00:00:00.000000+00:00"
    conn.execute(
        insert(users).values(
            name="Tester", email=email, password="hash", age=None, created_at=stamp, updated_at=stamp
        )
    )


def test_initialize_creates_users_table_with_unique_email(pool: ConnectionPool) -> None:
    columns = {column["name"] for column in inspect(pool.engine).get_columns("users")}
    assert columns == {"id", "name", "email", "password", "age", "created_at", "updated_at"}

    with pool.transaction() as conn:
        _insert(conn, "dup@example.com")

    with pytest.raises(StorageUnavailable) as excinfo:
        with pool.transaction() as conn:
            _insert(conn, "dup@example.com")
    assert isinstance(excinfo.value.__cause__, IntegrityError)


def test_initialize_is_idempotent(pool: ConnectionPool) -> None:
    with pool.transaction() as conn:
        _insert(conn, "keep@example.com")
    pool.initialize()
    assert _user_count(pool) == 1


def test_transaction_commits_on_success(pool: ConnectionPool) -> None:
    with pool.transaction() as conn:
        _insert(conn, "a@example.com")
    assert _user_count(pool) == 1


def test_transaction_rolls_back_and_propagates_other_errors(pool: ConnectionPool) -> None:
    with pytest.raises(KeyError):
        with pool.transaction() as conn:
            _insert(conn, "a@example.com")
            raise KeyError("boom")
    assert _user_count(pool) == 0


def test_writers_take_the_lock_immediately(tmp_path: Path) -> None:
    pool = ConnectionPool(tmp_path / "locks.sqlite3", size=2, timeout=0.05)
    pool.initialize()
    try:
        with pool.transaction():
            with pytest.raises(StorageUnavailable):
                with pool.transaction():
                    pass
        pool.ping()
    finally:
        pool.close()


def test_connections_are_released_after_failures(tmp_path: Path) -> None:
    pool = ConnectionPool(tmp_path / "single.sqlite3", size=1, timeout=0.1)
    pool.initialize()
    for _ in range(3):
        with pytest.raises(RuntimeError):
            with pool.transaction():
                raise RuntimeError("fail")
    pool.ping()
    pool.close()


def test_borrow_times_out_when_pool_exhausted(tmp_path: Path) -> None:
    pool = ConnectionPool(tmp_path / "busy.sqlite3", size=1, timeout=0.05)
    try:
        with pool.connection():
            with pytest.raises(StorageUnavailable):
                with pool.connection():
                    pass
        pool.ping()
    finally:
        pool.close()


def test_pool_is_shared_across_threads(tmp_path: Path) -> None:
    pool = ConnectionPool(tmp_path / "threads.sqlite3", size=2, timeout=5.0)
    pool.initialize()
    failures: list = []

    def worker(index: int) -> None:
        try:
            with pool.transaction() as conn:
                _insert(conn, f"thread{index}@example.com")
        except Exception as exc:  # pragma: no cover - reported below
            failures.append(exc)

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert failures == []
    assert _user_count(pool) == 4
    pool.close()


def test_closed_pool_rejects_new_work(pool: ConnectionPool) -> None:
    pool.ping()
    pool.close()
    assert pool.closed
    with pytest.raises(StorageUnavailable):
        pool.ping()
    with pytest.raises(StorageUnavailable):
        with pool.transaction():
            pass
    pool.close()


def test_unopenable_database_is_storage_unavailable(tmp_path: Path) -> None:
    directory = tmp_path / "not-a-file"
    directory.mkdir()
    pool = ConnectionPool(directory, size=1)
    with pytest.raises(StorageUnavailable):
        with pool.connection() as conn:
            conn.execute(text("SELECT 1"))
    pool.close()


def test_pool_size_must_be_positive(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        ConnectionPool(tmp_path / "x.sqlite3", size=0)


def test_serialized_timestamps_sort_chronologically() -> None:
    earlier = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    later = datetime(2024, 1, 1, 12, 0, 0, 1, tzinfo=timezone.utc)
    assert serialize_datetime(earlier) < serialize_datetime(later)
    assert parse_datetime(serialize_datetime(later)) == later
