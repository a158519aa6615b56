"""
PostgreSQL Connection Pool

Thin wrapper around psycopg2's ThreadedConnectionPool that hands out
connections through a context manager, so every checkout is returned to
the pool on every exit path (normal, early return, exception).

Usage:
    pool = PostgresConnectionPool(dsn, min_conn=2, max_conn=10)
    with pool.connection() as conn:
        with conn.cursor() as cursor:
            cursor.execute("SELECT 1")
    pool.close()
"""

from typing import Dict
import contextlib
import logging

from psycopg2 import pool as pg_pool

logger = logging.getLogger(__name__)


class PostgresConnectionPool:
    """Scoped access to a psycopg2 ThreadedConnectionPool."""

    def __init__(self, dsn: str, min_conn: int = 2, max_conn: int = 10):
        """
        Create the pool and open min_conn connections.

        Args:
            dsn: libpq connection string or URI
            min_conn: Connections opened up front
            max_conn: Hard limit on checked-out connections

        Raises:
            psycopg2.OperationalError: If the database cannot be reached
        """
        self._min_conn = min_conn
        self._max_conn = max_conn
        self._checked_out = 0
        self._pool = pg_pool.ThreadedConnectionPool(
            minconn=min_conn,
            maxconn=max_conn,
            dsn=dsn,
        )
        logger.info(f"Created PostgreSQL pool: min={min_conn}, max={max_conn}")

    def acquire(self):
        """
        Check a connection out of the pool.

        Raises:
            psycopg2.pool.PoolError: If the pool is exhausted or closed
        """
        conn = self._pool.getconn()
        self._checked_out += 1
        return conn

    def release(self, conn) -> None:
        """Return a connection to the pool (None is ignored)."""
        if conn is None:
            return
        self._checked_out -= 1
        self._pool.putconn(conn)

    @contextlib.contextmanager
    def connection(self):
        """
        Context manager for a pooled connection.

        Any transaction still open on exit is rolled back before the
        connection goes back to the pool.
        """
        conn = self.acquire()
        try:
            yield conn
        finally:
            if not conn.closed and getattr(conn, "autocommit", False) is False:
                try:
                    conn.rollback()
                except Exception:
                    logger.exception("Exception occurred during PostgreSQL connection rollback")
            self.release(conn)

    def close(self) -> None:
        """Close every connection in the pool."""
        if not self._pool.closed:
            self._pool.closeall()
            logger.info("PostgreSQL pool closed")

    @property
    def stats(self) -> Dict[str, int]:
        """Get pool statistics."""
        return {
            "checked_out": self._checked_out,
            "min": self._min_conn,
            "max": self._max_conn,
        }

    def __enter__(self) -> "PostgresConnectionPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
