"""
PostgreSQL Query-to-Table Bulk Copy

Streams the result of one select query into a destination table with
PostgreSQL COPY, in fixed-size batches, with bounded memory.

Modules:
- config: TransferConfig and environment loading
- connection_pool: psycopg2 pool with scoped connection checkout
- query_cursor: Server-side cursor over the select query
- bulk_load: COPY FROM STDIN for one batch, with row count verification
- batch_loader: Batching loop, progress and failure telemetry
- transfer: Wires the pieces into one run
- cli: Command-line entry point (python -m query_bulk_copy)

Environment:
- DATABASE_URL, SELECT_QUERY, DEST_TABLE (required)
- BATCH_SIZE, PROGRESS_EVERY_ROWS, FETCH_SIZE, MAX_PG_CONNECTIONS (optional)
"""

__version__ = "1.0.0"

from query_bulk_copy.batch_loader import (
    BatchLoader,
    LoggingObserver,
    ProgressEvent,
    TransferObserver,
    TransferSummary,
)
from query_bulk_copy.bulk_load import BulkLoader
from query_bulk_copy.config import TableIdentifier, TransferConfig, load_config, parse_pg_identifier
from query_bulk_copy.connection_pool import PostgresConnectionPool
from query_bulk_copy.errors import (
    ConfigError,
    CursorReadError,
    EmptyResultSchema,
    LoadError,
    QueryError,
    RowCountMismatch,
    TransferError,
)
from query_bulk_copy.query_cursor import QueryCursor
from query_bulk_copy.transfer import run_transfer, transfer_data

__all__ = [
    "BatchLoader",
    "BulkLoader",
    "ConfigError",
    "CursorReadError",
    "EmptyResultSchema",
    "LoadError",
    "LoggingObserver",
    "PostgresConnectionPool",
    "ProgressEvent",
    "QueryCursor",
    "QueryError",
    "RowCountMismatch",
    "TableIdentifier",
    "TransferConfig",
    "TransferError",
    "TransferObserver",
    "TransferSummary",
    "load_config",
    "parse_pg_identifier",
    "run_transfer",
    "transfer_data",
]
