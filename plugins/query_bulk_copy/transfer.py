"""
Transfer Driver

Runs one query-to-table transfer: open the pool, stream the select query
through a server-side cursor and COPY it into the destination in batches.
"""

from typing import Optional
import logging

from query_bulk_copy.batch_loader import BatchLoader, LoggingObserver, TransferObserver, TransferSummary
from query_bulk_copy.bulk_load import BulkLoader
from query_bulk_copy.config import TransferConfig
from query_bulk_copy.connection_pool import PostgresConnectionPool
from query_bulk_copy.query_cursor import QueryCursor

logger = logging.getLogger(__name__)


def transfer_data(
    pool,
    config: TransferConfig,
    observer: Optional[TransferObserver] = None,
) -> TransferSummary:
    """
    Stream the configured query into the destination table.

    Args:
        pool: PostgresConnectionPool for the cursor and the bulk loads
        config: Validated transfer configuration
        observer: Telemetry sink (defaults to LoggingObserver)

    Returns:
        TransferSummary; failed batches are counted, not raised

    Raises:
        QueryError: If the query is rejected when the cursor is opened
        EmptyResultSchema: If the query returns zero columns
        CursorReadError: If reading rows fails mid-stream
    """
    observer = observer or LoggingObserver()

    logger.info(f"Destination table: {config.dest_table}")
    logger.info(f"Select query: {config.select_query}")
    logger.info(f"Batch size: {config.batch_size:,}")

    with QueryCursor(pool, config.select_query, itersize=config.fetch_size) as cursor:
        observer.columns_detected(cursor.columns)

        bulk_loader = BulkLoader(pool, config.dest_table, cursor.columns, cursor.type_codes)
        batch_loader = BatchLoader(
            load_batch=bulk_loader.load,
            batch_size=config.batch_size,
            progress_every_rows=config.progress_every_rows,
            observer=observer,
        )
        return batch_loader.run(cursor.rows(), cursor.columns)


def run_transfer(
    config: TransferConfig,
    observer: Optional[TransferObserver] = None,
) -> TransferSummary:
    """
    Create a connection pool for the configured database and run one transfer.

    The pool is closed when the transfer ends, whether it succeeded or not.
    """
    pool = PostgresConnectionPool(
        config.database_url,
        min_conn=config.pool_min_conn,
        max_conn=config.pool_max_conn,
    )
    logger.info("Connected to database")

    try:
        summary = transfer_data(pool, config, observer)
    finally:
        pool.close()

    return summary
