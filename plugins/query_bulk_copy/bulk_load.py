"""
Bulk Load Module

Loads one batch of rows into the destination table with PostgreSQL
COPY FROM STDIN, streaming the rows as tab-delimited CSV text so the
batch is never rendered into one large buffer.

Each load runs in its own transaction on a pooled connection: the batch
is committed when COPY reports exactly as many rows as were sent, and
rolled back otherwise.
"""

from datetime import datetime, date, time as dt_time, timedelta
from decimal import Decimal
from io import TextIOBase
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple
import json
import logging
import math

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Range

from query_bulk_copy.config import TableIdentifier
from query_bulk_copy.errors import LoadError, RowCountMismatch

logger = logging.getLogger(__name__)

# \N is PostgreSQL's default NULL marker; only the unquoted form means NULL
NULL_MARKER = '\\N'
# COPY stops reading at a line holding only \.
END_OF_DATA = '\\.'
_NEEDS_QUOTING = ('\t', '"', '\n', '\r')

# json and jsonb result columns; their values are written back as JSON text
JSON_OID = 114
JSONB_OID = 3802
_JSON_TYPES = frozenset((JSON_OID, JSONB_OID))


def _render_text(value: Any, type_code: Optional[int] = None) -> Optional[str]:
    """Text form of a non-NULL value, or None where it is written as NULL."""
    if type_code in _JSON_TYPES:
        return json.dumps(value, default=str)

    if isinstance(value, bool):
        return 't' if value else 'f'
    if isinstance(value, float) and not math.isfinite(value):
        # Non-finite floats are written as NULL
        return None
    if isinstance(value, datetime):
        return value.isoformat(sep=' ')
    if isinstance(value, (date, dt_time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return f"{value.days} days {value.seconds} seconds {value.microseconds} microseconds"
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        # bytea hex format
        return '\\x' + bytes(value).hex()
    if isinstance(value, Range):
        return _render_range(value)
    if isinstance(value, list):
        return _render_array(value)
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    return str(value)


def _quote_element(text: str) -> str:
    return '"' + text.replace('\\', '\\\\').replace('"', '\\"') + '"'


def _render_array(values: List[Any]) -> str:
    """
    Render a (possibly nested) list as a PostgreSQL array literal.

    Elements are always double-quoted, which every element type accepts,
    and None becomes an unquoted NULL.
    """
    elements = []
    for element in values:
        if isinstance(element, list):
            elements.append(_render_array(element))
            continue
        text = None if element is None else _render_text(element)
        elements.append('NULL' if text is None else _quote_element(text))
    return '{' + ','.join(elements) + '}'


def _render_range(value: Range) -> str:
    """Render a psycopg2 Range as a range literal; infinite bounds stay blank."""
    if value.isempty:
        return 'empty'

    lower = None if value.lower_inf else _render_text(value.lower)
    upper = None if value.upper_inf else _render_text(value.upper)
    return ''.join((
        '[' if value.lower_inc else '(',
        '' if lower is None else _quote_element(lower),
        ',',
        '' if upper is None else _quote_element(upper),
        ']' if value.upper_inc else ')',
    ))


def normalize_copy_value(value: Any, type_code: Optional[int] = None) -> str:
    """
    Render a Python value as COPY CSV field text.

    NULL is emitted as the bare marker; every other value is converted to
    text PostgreSQL parses back into the column type, then quoted when it
    contains CSV metacharacters or could be mistaken for NULL or for the
    end-of-data line.

    Args:
        value: Value as adapted by psycopg2
        type_code: Source column type OID; json/jsonb columns get JSON text
            for every value, other lists are written as array literals
    """
    if value is None:
        return NULL_MARKER

    text = _render_text(value, type_code)
    if text is None:
        return NULL_MARKER

    if text in (NULL_MARKER, END_OF_DATA, '') or any(ch in text for ch in _NEEDS_QUOTING):
        return '"' + text.replace('"', '""') + '"'
    return text


class _CSVRowStream(TextIOBase):
    """Lazy text stream that feeds COPY FROM without large buffers."""

    def __init__(
        self,
        rows: Iterable[Tuple[Any, ...]],
        normalizer: Callable[..., str],
        type_codes: Optional[Sequence[Optional[int]]] = None,
    ):
        self._iterator = iter(rows)
        self._normalizer = normalizer
        self._type_codes = type_codes
        self._buffer = ''
        self._exhausted = False

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> str:
        while (size is None or size < 0 or len(self._buffer) < size) and not self._exhausted:
            try:
                row = next(self._iterator)
            except StopIteration:
                self._exhausted = True
                break
            self._buffer += self._format_row(row)

        if size is None or size < 0:
            data = self._buffer
            self._buffer = ''
            return data

        data = self._buffer[:size]
        self._buffer = self._buffer[size:]
        return data

    def _format_row(self, row: Tuple[Any, ...]) -> str:
        if self._type_codes is None:
            return '\t'.join(self._normalizer(value) for value in row) + '\n'
        return '\t'.join(
            self._normalizer(value, type_code) for value, type_code in zip(row, self._type_codes)
        ) + '\n'


def build_copy_sql(dest_table: TableIdentifier, columns: Sequence[str]) -> sql.Composed:
    """
    Build the COPY statement for a destination table and column list.

    Identifiers are quoted with psycopg2.sql.Identifier, so column names
    from the source query are safe to use verbatim.
    """
    quoted_columns = sql.SQL(', ').join([sql.Identifier(col) for col in columns])
    return sql.SQL(
        'COPY {}.{} ({}) FROM STDIN WITH (FORMAT CSV, DELIMITER E\'\\t\', QUOTE \'"\', NULL \'\\N\')'
    ).format(
        sql.Identifier(dest_table.schema),
        sql.Identifier(dest_table.table),
        quoted_columns,
    )


class BulkLoader:
    """COPY batches into one destination table."""

    def __init__(
        self,
        pool,
        dest_table: TableIdentifier,
        columns: Sequence[str],
        type_codes: Optional[Sequence[Optional[int]]] = None,
    ):
        """
        Args:
            pool: PostgresConnectionPool used for each load
            dest_table: Destination schema and table
            columns: Destination columns, positionally matching each row
            type_codes: Source column type OIDs in the same order, from the
                cursor description (None renders values by Python type only)
        """
        self._pool = pool
        self.dest_table = dest_table
        self.columns: List[str] = list(columns)
        self.type_codes = list(type_codes) if type_codes is not None else None
        if self.type_codes is not None and len(self.type_codes) != len(self.columns):
            raise ValueError(
                f"got {len(self.type_codes)} type codes for {len(self.columns)} columns"
            )
        self._copy_sql = build_copy_sql(dest_table, self.columns)

    def load(self, rows: Sequence[Tuple[Any, ...]]) -> int:
        """
        COPY one batch and verify the reported row count.

        Args:
            rows: Batch of row tuples (an empty batch is a no-op)

        Returns:
            Number of rows the destination reported as inserted

        Raises:
            LoadError: If the COPY fails
            RowCountMismatch: If the reported count differs from len(rows)
        """
        if not rows:
            return 0

        expected = len(rows)
        try:
            with self._pool.connection() as conn:
                stream = _CSVRowStream(rows, normalize_copy_value, self.type_codes)
                with conn.cursor() as cursor:
                    cursor.copy_expert(self._copy_sql, stream)
                    inserted = cursor.rowcount

                if inserted != expected:
                    # Leaving the block without commit rolls the batch back
                    raise RowCountMismatch(expected, inserted)

                conn.commit()
        except (psycopg2.Error, ValueError, TypeError) as e:
            raise LoadError(f"COPY into {self.dest_table} failed: {e}") from e

        logger.debug(f"Copied {inserted:,} rows into {self.dest_table}")
        return inserted
