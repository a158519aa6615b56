"""
Query Cursor Reader

Opens a server-side (named) psycopg2 cursor for an arbitrary read query
and exposes the result columns plus a lazy, forward-only stream of rows.

The cursor owns exactly one pooled connection from open until the row
stream is exhausted, abandoned or fails; the connection is always handed
back to the pool.

Usage:
    with QueryCursor(pool, "SELECT * FROM pm.snmp_metrics") as cursor:
        print(cursor.columns)
        for row in cursor:
            ...
"""

from datetime import datetime, date, time as dt_time, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union
from uuid import UUID, uuid4
import contextlib
import logging

import psycopg2
from psycopg2.extras import Range

from query_bulk_copy.errors import CursorReadError, EmptyResultSchema, QueryError

logger = logging.getLogger(__name__)

# Values psycopg2 adapts from PostgreSQL result columns
RowValue = Union[
    None, bool, int, float, Decimal, str, bytes, memoryview,
    datetime, date, dt_time, timedelta, UUID, Dict[str, Any], List[Any], Range,
]
Row = Tuple[RowValue, ...]

DEFAULT_ITERSIZE = 2000


class QueryCursor:
    """Server-side cursor over one select query."""

    def __init__(self, pool, query: str, itersize: int = DEFAULT_ITERSIZE):
        """
        Args:
            pool: PostgresConnectionPool to borrow the connection from
            query: Select query to stream
            itersize: Rows fetched per network round trip
        """
        self._pool = pool
        self._query = query
        self._itersize = itersize
        self._stack: Optional[contextlib.ExitStack] = None
        self._cursor = None
        self._iterated = False
        self.columns: List[str] = []
        self.type_codes: List[int] = []

    def open(self) -> "QueryCursor":
        """
        Declare the cursor and discover the result columns.

        Raises:
            QueryError: If the source rejects the query
            EmptyResultSchema: If the query reports zero columns
        """
        if self._stack is not None:
            raise RuntimeError("QueryCursor is already open")

        stack = contextlib.ExitStack()
        self._stack = stack
        try:
            try:
                conn = stack.enter_context(self._pool.connection())
                cursor = conn.cursor(name=f"query_bulk_copy_{uuid4().hex[:12]}")
                stack.callback(_close_cursor, cursor)
                cursor.itersize = self._itersize
                cursor.execute(self._query)
                # Named cursors report their description only after a FETCH;
                # FORWARD 0 fills it in without consuming a row
                cursor.fetchmany(0)
            except psycopg2.Error as e:
                raise QueryError(f"failed to execute select query: {e}") from e

            if not cursor.description:
                raise EmptyResultSchema("select query returned zero columns")

            self._cursor = cursor
            self.columns = [column[0] for column in cursor.description]
            self.type_codes = [column[1] for column in cursor.description]
        except BaseException:
            self.close()
            raise

        logger.debug(f"Opened server-side cursor with {len(self.columns)} columns")
        return self

    def rows(self) -> Iterator[Row]:
        """
        Yield result rows one at a time.

        The stream can be consumed once; the connection is released when it
        ends, whether it was exhausted, closed early or failed.

        Raises:
            CursorReadError: If a fetch fails mid-stream
        """
        if self._cursor is None:
            raise RuntimeError("QueryCursor is not open")
        if self._iterated:
            raise RuntimeError("QueryCursor rows can only be iterated once")
        self._iterated = True
        return self._generate()

    def _generate(self) -> Iterator[Row]:
        try:
            iterator = iter(self._cursor)
            while True:
                try:
                    row = next(iterator)
                except StopIteration:
                    return
                except psycopg2.Error as e:
                    raise CursorReadError(f"failed to read row from cursor: {e}") from e
                yield tuple(row)
        finally:
            self.close()

    def __iter__(self) -> Iterator[Row]:
        return self.rows()

    def close(self) -> None:
        """Close the cursor and return its connection to the pool."""
        stack, self._stack = self._stack, None
        self._cursor = None
        if stack is not None:
            stack.close()

    def __enter__(self) -> "QueryCursor":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _close_cursor(cursor) -> None:
    """Close a named cursor, tolerating a connection that already failed."""
    try:
        cursor.close()
    except psycopg2.Error as e:
        logger.warning(f"Failed to close server-side cursor: {e}")
