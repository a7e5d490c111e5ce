"""
Database connection factory utilities for chronostore.

Provides the connection source the statement engine and schema synchronizer
run against: a psycopg ConnectionPool wrapper with scoped acquisition, a
transaction scope that pins one connection for a multi-statement write, and a
privileged autocommit connection for database/role bootstrap.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

import psycopg
from psycopg import Connection
from psycopg_pool import ConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from chronostore.config import Settings, get_settings
from chronostore.utils.logging import get_logger

log = get_logger(__name__)


def build_dsn(settings: Optional[Settings] = None, database: Optional[str] = None) -> str:
    """Compose a DSN string from settings, optionally targeting another database."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{database or settings.db_name}"
    )


class ConnectionSource:
    """
    Explicitly constructed source of pooled connections.

    Every statement acquires its connection through `connection()` and releases
    it when the block exits, whatever the outcome. Inside `transaction()` the
    same block yields the pinned connection instead, so a sequence of statements
    commits or rolls back as a unit.

    Parameters
    ----------
    settings : Settings, optional
        Effective settings; defaults to `get_settings()`.
    conninfo : str, optional
        DSN override (tests, multiple store targets).
    pool : ConnectionPool, optional
        Pre-built pool; the source then does not own its configuration.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        conninfo: Optional[str] = None,
        pool: Optional[ConnectionPool] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._conninfo = conninfo or build_dsn(self.settings)
        self._pool: Optional[ConnectionPool] = pool
        self._lock = threading.Lock()
        self._pinned: ContextVar[Optional[Connection]] = ContextVar(
            f"chronostore_pinned_{id(self)}", default=None
        )

    def get_pool(self) -> ConnectionPool:
        """Get or create the managed connection pool."""
        with self._lock:
            if self._pool is None:
                self._pool = ConnectionPool(
                    conninfo=self._conninfo,
                    min_size=self.settings.db_pool_min_size,
                    max_size=self.settings.db_pool_max_size,
                    kwargs={"options": f"-c statement_timeout={self.settings.db_statement_timeout_ms}"},
                    open=True,
                )
                log.debug(
                    "Connection pool opened",
                    extra={
                        "min_size": self.settings.db_pool_min_size,
                        "max_size": self.settings.db_pool_max_size,
                    },
                )
            return self._pool

    @property
    def in_transaction(self) -> bool:
        """Whether the current context runs inside `transaction()`."""
        return self._pinned.get() is not None

    @contextmanager
    def connection(self) -> Generator[Connection, None, None]:
        """
        Context manager for obtaining a connection for one statement.

        Example
        -------
            source = ConnectionSource()
            with source.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
        """
        pinned = self._pinned.get()
        if pinned is not None:
            yield pinned
            return

        pool = self.get_pool()
        with pool.connection(timeout=self.settings.db_acquire_timeout_s) as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Generator[Connection, None, None]:
        """
        Pin one connection for the enclosed statements and run them in a single
        transaction. Nested scopes join the outermost one.
        """
        pinned = self._pinned.get()
        if pinned is not None:
            yield pinned
            return

        pool = self.get_pool()
        with pool.connection(timeout=self.settings.db_acquire_timeout_s) as conn:
            with conn.transaction():
                token = self._pinned.set(conn)
                try:
                    yield conn
                finally:
                    self._pinned.reset(token)

    def acquire(self) -> Connection:
        """Check a connection out of the pool; pair every call with `release`."""
        return self.get_pool().getconn(timeout=self.settings.db_acquire_timeout_s)

    def release(self, conn: Connection) -> None:
        """Return a connection obtained from `acquire`."""
        self.get_pool().putconn(conn)

    def close(self) -> None:
        """Close the managed pool and release resources."""
        with self._lock:
            if self._pool is not None:
                try:
                    self._pool.close()
                finally:
                    self._pool = None

    def __enter__(self) -> "ConnectionSource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_admin_connection(settings: Optional[Settings] = None) -> Connection:
    """
    Open a privileged autocommit connection to the maintenance database.

    Retries up to 3 times with exponential backoff for transient connection errors.
    CREATE DATABASE cannot run inside a transaction block, hence autocommit.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    settings = settings or get_settings()
    return psycopg.connect(settings.admin_dsn, autocommit=True)


__all__ = [
    "ConnectionSource",
    "build_dsn",
    "get_admin_connection",
]
