"""
Query to Table Transfer DAG

Streams the result of one select query into a PostgreSQL table using COPY,
in fixed-size batches through a server-side cursor.

The source and destination live in the same PostgreSQL database, reached
through the Airflow connection given in `postgres_conn_id`.

Failed batches are logged and skipped; the task only fails when the query
itself cannot be opened or read. The task returns the transfer summary
(rows processed, rows loaded, failed batch count, elapsed seconds).
"""

from airflow.sdk import dag, task
from airflow.models.param import Param
from pendulum import datetime
from typing import Any, Dict
import logging

from query_bulk_copy.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_FETCH_SIZE,
    DEFAULT_PROGRESS_EVERY_ROWS,
    TransferConfig,
    parse_pg_identifier,
)
from query_bulk_copy.transfer import run_transfer

logger = logging.getLogger(__name__)


@dag(
    start_date=datetime(2025, 1, 1),
    schedule=None,  # Run manually
    catchup=False,
    max_active_runs=1,
    is_paused_upon_creation=False,
    doc_md=__doc__,
    default_args={
        "owner": "data-team",
        "retries": 0,  # Batches are not idempotent; rerunning duplicates loaded rows
    },
    params={
        "postgres_conn_id": Param(
            default="postgres_default",
            type="string",
            description="PostgreSQL connection ID"
        ),
        "select_query": Param(
            default="",
            type="string",
            description="Select query whose rows are copied"
        ),
        "dest_table": Param(
            default="",
            type="string",
            description="Destination table as 'table' or 'schema.table'"
        ),
        "batch_size": Param(
            default=DEFAULT_BATCH_SIZE,
            type="integer",
            minimum=1,
            description="Rows per COPY batch"
        ),
        "progress_every_rows": Param(
            default=DEFAULT_PROGRESS_EVERY_ROWS,
            type="integer",
            minimum=1,
            description="Log throughput every N rows"
        ),
        "fetch_size": Param(
            default=DEFAULT_FETCH_SIZE,
            type="integer",
            minimum=1,
            description="Rows fetched per server-side cursor round trip"
        ),
    },
    tags=["transfer", "postgres", "copy"],
)
def query_to_table_transfer():
    """
    Single-task DAG that runs one query-to-table transfer.
    """

    @task
    def transfer_query_results(**context) -> Dict[str, Any]:
        """Run the transfer and return its summary."""
        from airflow.providers.postgres.hooks.postgres import PostgresHook

        params = context["params"]
        hook = PostgresHook(postgres_conn_id=params["postgres_conn_id"])

        config = TransferConfig(
            database_url=hook.get_uri(),
            select_query=params["select_query"].strip(),
            dest_table=parse_pg_identifier(params["dest_table"]),
            batch_size=params["batch_size"],
            progress_every_rows=params["progress_every_rows"],
            fetch_size=params["fetch_size"],
        )

        summary = run_transfer(config)
        if summary.batches_failed:
            logger.warning(
                f"{summary.batches_failed} batch(es) failed; "
                f"{summary.rows_loaded:,}/{summary.rows_processed:,} rows loaded"
            )
        return summary.as_dict()

    transfer_query_results()


# Instantiate the DAG
query_to_table_transfer()
