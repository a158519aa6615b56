"""
Transfer Configuration Module

This module builds the immutable TransferConfig from environment variables
and parses the destination table into a schema-qualified identifier.

Environment variables:
- DATABASE_URL: libpq connection string or URI (required)
- SELECT_QUERY: query whose rows are copied (required)
- DEST_TABLE: destination as 'table' or 'schema.table' (required)
- BATCH_SIZE: rows per COPY (default 5000)
- PROGRESS_EVERY_ROWS: progress log cadence in rows (default 1000000)
- FETCH_SIZE: rows per server-side cursor round trip (default 2000)
- MAX_PG_CONNECTIONS: connection pool ceiling (default 10)
"""

from dataclasses import dataclass
from typing import Mapping, Optional
import logging
import os

from query_bulk_copy.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = "public"
DEFAULT_BATCH_SIZE = 5000
DEFAULT_PROGRESS_EVERY_ROWS = 1_000_000
DEFAULT_FETCH_SIZE = 2000
DEFAULT_POOL_MIN_CONN = 2
DEFAULT_POOL_MAX_CONN = 10


@dataclass(frozen=True)
class TableIdentifier:
    schema: str
    table: str

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.table}"

    def __str__(self) -> str:
        return self.qualified_name


@dataclass(frozen=True)
class TransferConfig:
    database_url: str
    select_query: str
    dest_table: TableIdentifier
    batch_size: int = DEFAULT_BATCH_SIZE
    progress_every_rows: int = DEFAULT_PROGRESS_EVERY_ROWS
    fetch_size: int = DEFAULT_FETCH_SIZE
    pool_min_conn: int = DEFAULT_POOL_MIN_CONN
    pool_max_conn: int = DEFAULT_POOL_MAX_CONN

    def __post_init__(self):
        if not self.database_url:
            raise ConfigError("database_url is required")
        if not self.select_query:
            raise ConfigError("select_query is required")
        if self.batch_size <= 0:
            raise ConfigError(f"batch_size must be positive, got {self.batch_size}")
        if self.progress_every_rows <= 0:
            raise ConfigError(
                f"progress_every_rows must be positive, got {self.progress_every_rows}"
            )
        if self.fetch_size <= 0:
            raise ConfigError(f"fetch_size must be positive, got {self.fetch_size}")
        # The cursor keeps one connection checked out while each batch borrows another
        if self.pool_min_conn < 1 or self.pool_max_conn < max(2, self.pool_min_conn):
            raise ConfigError(
                f"invalid pool size: min={self.pool_min_conn}, max={self.pool_max_conn} "
                "(max must be at least 2 and not below min)"
            )


def parse_pg_identifier(raw: str) -> TableIdentifier:
    """
    Parse a destination table reference.

    Handles:
    - Bare table: "snmp_metrics" -> ("public", "snmp_metrics")
    - Qualified: "pm.snmp_metrics" -> ("pm", "snmp_metrics")
    - Surrounding quotes: '"pm.snmp_metrics"' -> ("pm", "snmp_metrics")

    Args:
        raw: Table reference as given in DEST_TABLE

    Returns:
        TableIdentifier with the schema defaulted to 'public'

    Raises:
        ConfigError: If the reference is empty or has more than two parts
    """
    value = (raw or "").strip().strip('"').strip("'")
    if not value:
        raise ConfigError("empty identifier")

    parts = value.split(".")
    if len(parts) == 1:
        return TableIdentifier(DEFAULT_SCHEMA, parts[0].strip())
    if len(parts) == 2:
        schema, table = parts[0].strip(), parts[1].strip()
        if not schema or not table:
            raise ConfigError("expected schema.table")
        return TableIdentifier(schema, table)
    raise ConfigError("expected table or schema.table")


def _positive_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"invalid {name}: {raw!r}") from None
    if value <= 0:
        raise ConfigError(f"invalid {name}: {raw!r}")
    return value


def _required(environ: Mapping[str, str], name: str, hint: str = "") -> str:
    value = environ.get(name, "").strip()
    if not value:
        raise ConfigError(f"{name} environment variable is required{hint}")
    return value


def load_config(environ: Optional[Mapping[str, str]] = None) -> TransferConfig:
    """
    Build a TransferConfig from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Validated TransferConfig

    Raises:
        ConfigError: If a required variable is missing or a value is invalid
    """
    if environ is None:
        environ = os.environ

    database_url = _required(environ, "DATABASE_URL")
    select_query = _required(environ, "SELECT_QUERY")
    dest_raw = _required(environ, "DEST_TABLE", " (e.g. pm.snmp_metrics_interface)")
    try:
        dest_table = parse_pg_identifier(dest_raw)
    except ConfigError as e:
        raise ConfigError(f"invalid DEST_TABLE: {e}") from e

    return TransferConfig(
        database_url=database_url,
        select_query=select_query,
        dest_table=dest_table,
        batch_size=_positive_int(environ, "BATCH_SIZE", DEFAULT_BATCH_SIZE),
        progress_every_rows=_positive_int(
            environ, "PROGRESS_EVERY_ROWS", DEFAULT_PROGRESS_EVERY_ROWS
        ),
        fetch_size=_positive_int(environ, "FETCH_SIZE", DEFAULT_FETCH_SIZE),
        pool_min_conn=DEFAULT_POOL_MIN_CONN,
        pool_max_conn=_positive_int(environ, "MAX_PG_CONNECTIONS", DEFAULT_POOL_MAX_CONN),
    )
