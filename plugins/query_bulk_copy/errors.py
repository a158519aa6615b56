"""
Transfer Error Types

Every failure the transfer can surface is a TransferError. The ``stage``
attribute tells the caller where a fatal error came from, so the CLI and
the DAG can report "cursor_open" vs "cursor_read" without string matching.

Fatal (abort the run):
- QueryError: the source rejected the query when the cursor was opened
- EmptyResultSchema: the query reports zero result columns
- CursorReadError: fetching rows failed mid-stream

Per batch (logged, batch dropped, run continues):
- LoadError: the COPY itself failed
- RowCountMismatch: COPY reported a different row count than was sent
"""

from typing import Optional


class TransferError(Exception):
    """Base class for all transfer errors."""

    stage = "transfer"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class ConfigError(TransferError, ValueError):
    """Missing or invalid configuration."""

    stage = "config"


class QueryError(TransferError):
    """Select query rejected by the source when opening the cursor."""

    stage = "cursor_open"


class EmptyResultSchema(TransferError):
    """Select query returned zero columns."""

    stage = "schema_discovery"


class CursorReadError(TransferError):
    """Row fetch failed after the cursor was opened."""

    stage = "cursor_read"


class LoadError(TransferError):
    """COPY into the destination table failed for one batch."""

    stage = "bulk_load"


class RowCountMismatch(LoadError):
    """COPY reported a row count different from the batch size."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"expected to insert {expected} rows, but inserted {actual}"
        )
        self.expected = expected
        self.actual = actual
