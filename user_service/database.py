"""SQLite-backed storage for user records."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import ContextManager, Iterator, Optional, Protocol

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    event,
    exc,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import QueuePool

from .errors import StorageUnavailable

logger = logging.getLogger("user_service.database")

DEFAULT_POOL_SIZE = 10
DEFAULT_POOL_TIMEOUT = 30.0

# largest value SQLite can store in an INTEGER column
SQLITE_MAX_INTEGER = 2**63 - 1

_BEGIN_IMMEDIATE = "user_service_begin_immediate"

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(100), nullable=False),
    Column("email", String(150), nullable=False, unique=True),
    Column("password", String(255), nullable=False),
    Column("age", Integer, nullable=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Index("idx_users_created_at", "created_at"),
    sqlite_autoincrement=True,
)


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "users.sqlite3").resolve(strict=False)


def current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def serialize_datetime(value: datetime) -> str:
    # fixed precision keeps lexical order identical to chronological order
    return value.isoformat(timespec="microseconds")


def parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


class ConnectionProvider(Protocol):
    def connection(self) -> ContextManager[Connection]:  # pragma: no cover - protocol
        ...

    def transaction(self) -> ContextManager[Connection]:  # pragma: no cover - protocol
        ...


def _install_sqlite_listeners(engine: Engine) -> None:
    # pysqlite issues its own BEGIN lazily; hand transaction control to SQLAlchemy
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Connection) -> None:
        if conn.get_execution_options().get(_BEGIN_IMMEDIATE):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


class ConnectionPool:
    """A bounded pool of SQLite connections behind a SQLAlchemy engine.

    Use :meth:`connection` for reads and :meth:`transaction` for a unit of
    work that commits on success or rolls back on any exception. Writers take
    the database lock up front (``BEGIN IMMEDIATE``) so that check-then-write
    sequences cannot interleave.
    """

    def __init__(
        self,
        path: Path,
        *,
        size: int = DEFAULT_POOL_SIZE,
        timeout: float = DEFAULT_POOL_TIMEOUT,
    ) -> None:
        if size < 1:
            raise ValueError("Connection pool size must be at least 1")
        _ensure_directory(path)
        self._path = path
        self._size = size
        self._closed = False
        self._engine = create_engine(
            f"sqlite:///{path}",
            poolclass=QueuePool,
            pool_size=size,
            max_overflow=0,
            pool_timeout=timeout,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )
        _install_sqlite_listeners(self._engine)
        self._writer = self._engine.execution_options(**{_BEGIN_IMMEDIATE: True})

    @property
    def path(self) -> Path:
        return self._path

    @property
    def size(self) -> int:
        return self._size

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def engine(self) -> Engine:
        return self._engine

    def _check_open(self) -> None:
        if self._closed:
            raise StorageUnavailable("Connection pool is closed")

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        self._check_open()
        try:
            with self._engine.connect() as conn:
                yield conn
        except exc.TimeoutError as error:
            raise StorageUnavailable("Timed out waiting for a database connection") from error
        except exc.DBAPIError as error:
            raise StorageUnavailable(str(error.orig)) from error

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Run a ``BEGIN IMMEDIATE`` … ``COMMIT`` unit of work.

        Any exception rolls the transaction back. Driver errors are wrapped in
        :class:`StorageUnavailable`; everything else propagates unchanged.
        """

        self._check_open()
        try:
            with self._writer.begin() as conn:
                yield conn
        except exc.TimeoutError as error:
            raise StorageUnavailable("Timed out waiting for a database connection") from error
        except exc.DBAPIError as error:
            raise StorageUnavailable(str(error.orig)) from error

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        self._check_open()
        try:
            metadata.create_all(self._engine)
        except exc.DBAPIError as error:
            raise StorageUnavailable(str(error.orig)) from error
        logger.info("Database schema ready at %s", self._path)

    def ping(self) -> None:
        with self.connection() as conn:
            conn.execute(text("SELECT 1")).scalar_one()

    def close(self) -> None:
        """Refuse new work and close pooled connections."""

        if self._closed:
            return
        self._closed = True
        self._engine.dispose()
        logger.info("Connection pool for %s disposed", self._path)


__all__ = [
    "ConnectionPool",
    "ConnectionProvider",
    "DEFAULT_POOL_SIZE",
    "DEFAULT_POOL_TIMEOUT",
    "SQLITE_MAX_INTEGER",
    "current_timestamp",
    "metadata",
    "parse_datetime",
    "resolve_database_path",
    "serialize_datetime",
    "users",
]
