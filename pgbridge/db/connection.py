"""
Database connection management with connection pooling.

This module wraps psycopg2's ThreadedConnectionPool in a PoolHandle that
knows how many connections it has lent out, so a pool can be drained and
replaced without pulling connections from under running statements.

Exactly one handle is active process-wide. It is created lazily from the
environment on first use and replaced atomically by recreate_pool().
"""

import logging
import threading
from contextlib import contextmanager
from typing import Generator, Optional

import psycopg2
from psycopg2 import pool
from psycopg2.extensions import connection as Connection

from pgbridge.config import ConfigError, DatabaseConfig, load_database_config

logger = logging.getLogger(__name__)


class DatabaseConnectionError(Exception):
    """Raised when database connection fails."""
    pass


class PoolExhaustedError(DatabaseConnectionError):
    """Raised when connection pool has no available connections."""
    pass


class PoolClosedError(DatabaseConnectionError):
    """Raised when a connection is requested from a retired pool."""
    pass


class PoolTeardownError(Exception):
    """Raised when the current pool cannot be drained or closed."""
    pass


class PoolHandle:
    """
    One connection pool plus the bookkeeping needed to retire it safely.

    Connections are handed out in autocommit mode: every statement commits
    on its own unless the caller issues BEGIN/COMMIT on a connection it
    acquired explicitly.

    Usage:
        handle = PoolHandle(config)
        with handle.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
        handle.close(timeout=30)
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._cond = threading.Condition()
        self._in_use = 0
        self._closed = False

        try:
            logger.info(
                f"Initializing connection pool for {config.describe()}",
                extra={
                    "min_connections": config.min_connections,
                    "max_connections": config.max_connections,
                },
            )
            self._pool = pool.ThreadedConnectionPool(
                config.min_connections,
                config.max_connections,
                **config.connect_kwargs(),
            )
            logger.info("Connection pool initialized successfully")

        except psycopg2.OperationalError as e:
            logger.error(f"Failed to initialize connection pool: {e}", exc_info=True)
            raise DatabaseConnectionError(
                f"Could not connect to database: {e}"
            ) from e

    def __repr__(self) -> str:
        state = "closed" if self._closed else f"in_use={self._in_use}"
        return f"<PoolHandle {self.config.describe()} {state}>"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_use(self) -> int:
        """Number of connections currently lent out."""
        return self._in_use

    def getconn(self) -> Connection:
        """
        Take a connection out of the pool.

        The caller must hand it back with putconn(). Prefer connection().

        Raises:
            PoolExhaustedError: If every connection is lent out
            DatabaseConnectionError: If the pool is closed or connecting fails
        """
        with self._cond:
            if self._closed:
                raise PoolClosedError("Connection pool is closed")
            # Reserve the slot first so close() waits for us
            self._in_use += 1

        try:
            logger.debug("Acquiring connection from pool")
            conn = self._pool.getconn()
        except pool.PoolError as e:
            self._release_slot()
            raise PoolExhaustedError(
                f"Connection pool exhausted. No connections available: {e}"
            ) from e
        except psycopg2.Error as e:
            self._release_slot()
            logger.error(f"Failed to acquire connection: {e}", exc_info=True)
            raise DatabaseConnectionError(f"Could not connect to database: {e}") from e

        try:
            conn.autocommit = True
        except psycopg2.Error as e:
            # Stale connection: discard it rather than lend it out
            self.putconn(conn, close=True)
            raise DatabaseConnectionError(f"Pooled connection is unusable: {e}") from e

        logger.debug("Connection acquired successfully")
        return conn

    def putconn(self, conn: Connection, close: bool = False) -> None:
        """Return a connection obtained from getconn(), discarding it if `close`."""
        try:
            self._pool.putconn(conn, close=close or conn.closed != 0)
            logger.debug("Connection returned to pool")
        except pool.PoolError as e:
            logger.warning(f"Error returning connection to pool: {e}")
            if not conn.closed:
                conn.close()
        finally:
            self._release_slot()

    def _release_slot(self) -> None:
        with self._cond:
            self._in_use -= 1
            self._cond.notify_all()

    @contextmanager
    def connection(self) -> Generator[Connection, None, None]:
        """
        Context manager for a dedicated connection.

        Statements issued on the yielded connection run in issuance order.
        Connections that failed at the connection level are discarded
        instead of being returned to the pool.
        """
        with self.lent(self.getconn()) as conn:
            yield conn

    @contextmanager
    def lent(self, conn: Connection) -> Generator[Connection, None, None]:
        """Hand back a connection taken with getconn() when the block exits."""
        connection_is_bad = False
        try:
            yield conn
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            connection_is_bad = True
            logger.error(f"Database connection error: {e}")
            raise
        finally:
            self.putconn(conn, close=connection_is_bad)

    def close(self, timeout: Optional[float] = None) -> None:
        """
        Wait for lent connections to come back, then close every connection.

        Args:
            timeout: Seconds to wait for lent connections (None waits forever)

        Raises:
            PoolTeardownError: If connections are still lent out after
                `timeout`. The handle stays open and usable in that case.
        """
        with self._cond:
            if self._closed:
                return

            if not self._cond.wait_for(lambda: self._in_use == 0, timeout=timeout):
                raise PoolTeardownError(
                    f"Timed out after {timeout}s waiting for "
                    f"{self._in_use} connection(s) to be returned"
                )

            logger.info(f"Closing connection pool for {self.config.describe()}")
            try:
                self._pool.closeall()
            except pool.PoolError as e:
                raise PoolTeardownError(f"Could not close connection pool: {e}") from e

            self._closed = True
            logger.info("Connection pool closed successfully")


# Active pool handle, swapped under _pool_lock
_active_pool: Optional[PoolHandle] = None
_pool_lock = threading.RLock()


def get_pool() -> PoolHandle:
    """
    Get or create the active pool handle.

    Blocks while a recreation is in progress.

    Raises:
        DatabaseConnectionError: If no configuration is available or
            the pool cannot be initialized
    """
    global _active_pool

    with _pool_lock:
        if _active_pool is None:
            try:
                config = load_database_config()
            except ConfigError as e:
                raise DatabaseConnectionError(str(e)) from e
            _active_pool = PoolHandle(config)
        return _active_pool


def init_pool(config: DatabaseConfig) -> PoolHandle:
    """
    Install a pool built from an already resolved configuration.

    Equivalent to recreate_pool(config) when a pool is already active.
    """
    global _active_pool

    with _pool_lock:
        if _active_pool is not None:
            return recreate_pool(config)
        _active_pool = PoolHandle(config)
        return _active_pool


@contextmanager
def acquire_connection(
    handle: Optional[PoolHandle] = None,
) -> Generator[Connection, None, None]:
    """
    Context manager for obtaining a dedicated connection.

    Generally statements go through query(), which borrows a connection per
    statement. A dedicated connection is needed when a series of statements
    must run on the same session (e.g. BEGIN ... COMMIT).

    Usage:
        with acquire_connection() as conn:
            query("BEGIN", conn=conn)
            query("UPDATE t SET x = 1", conn=conn)
            query("COMMIT", conn=conn)

    Args:
        handle: Pool to draw from (default: the active pool). A default
            pool that gets replaced while the connection is being taken
            is retried on its replacement; an explicit handle is not.

    Yields:
        psycopg2 connection object in autocommit mode

    Raises:
        DatabaseConnectionError: If connection cannot be obtained
        PoolExhaustedError: If pool has no available connections
        PoolClosedError: If an explicitly passed handle has been retired
    """
    if handle is not None:
        conn = handle.getconn()
    else:
        handle, conn = _checkout_active()

    with handle.lent(conn) as lent:
        yield lent


def _checkout_active():
    retired = None
    while True:
        handle = get_pool()
        if handle is retired:
            # Closed without being replaced, e.g. handle.close() called directly
            raise PoolClosedError("Active connection pool is closed")
        try:
            return handle, handle.getconn()
        except PoolClosedError:
            # recreate_pool() swapped the pool between get_pool() and getconn()
            logger.debug("Active pool was replaced, retrying on its successor")
            retired = handle


get_connection = acquire_connection


def recreate_pool(
    new_config: Optional[DatabaseConfig] = None,
    expected: Optional[PoolHandle] = None,
) -> PoolHandle:
    """
    Replace the active pool, e.g. after the environment changed.

    The replacement is built first, so a bad configuration fails before
    anything is torn down. The current pool is then drained and closed,
    and only after that is the replacement installed. Statements already
    running on the old pool finish there; new callers wait for the swap.

    Args:
        new_config: Configuration of the new pool (default: reload from
            the environment)
        expected: If given, only replace the pool when it is still the
            active one

    Returns:
        The newly installed PoolHandle

    Raises:
        PoolTeardownError: If `expected` is stale, or the current pool could
            not be drained or closed. The current pool stays active.
        DatabaseConnectionError: If the new pool cannot be created
    """
    global _active_pool

    with _pool_lock:
        current = _active_pool
        if expected is not None and expected is not current:
            raise PoolTeardownError(
                "Connection pool was replaced concurrently; recreation aborted"
            )

        if new_config is None:
            try:
                new_config = load_database_config()
            except ConfigError as e:
                raise DatabaseConnectionError(str(e)) from e

        logger.info("Recreating connection pool")
        replacement = PoolHandle(new_config)

        if current is not None:
            try:
                current.close(timeout=current.config.drain_timeout)
            except PoolTeardownError as e:
                logger.error(f"Keeping current pool, teardown failed: {e}")
                replacement.close(timeout=0)
                raise

        _active_pool = replacement
        return replacement


def close_pool() -> None:
    """
    Close all connections in the active pool and clean up resources.

    Should be called when the application is shutting down.
    After calling this, the pool will be reinitialized on the next
    get_pool() call.
    """
    global _active_pool

    with _pool_lock:
        if _active_pool is not None:
            _active_pool.close(timeout=_active_pool.config.drain_timeout)
            _active_pool = None
        else:
            logger.debug("No connection pool to close")


def test_connection(handle: Optional[PoolHandle] = None) -> bool:
    """
    Test the database connection by executing a simple query.

    Returns:
        True if connection is successful, False otherwise
    """
    try:
        with acquire_connection(handle) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                result = cur.fetchone()
                logger.info("Connection test successful")
                return result == (1,)
    except (psycopg2.Error, DatabaseConnectionError) as e:
        logger.error(f"Connection test failed: {e}", exc_info=True)
        return False
