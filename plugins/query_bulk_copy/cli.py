"""
Command-line entry point.

Reads configuration from the environment (a .env file in the working
directory is loaded first when present) and runs one transfer.

Exit status:
    0  cursor fully drained (individual batches may still have failed)
    1  fatal transfer error (connection, cursor open, schema discovery, read)
    2  configuration error
"""

from typing import Mapping, Optional
import logging
import os
import sys

import psycopg2
from dotenv import load_dotenv

from query_bulk_copy.config import load_config
from query_bulk_copy.errors import ConfigError, TransferError
from query_bulk_copy.transfer import run_transfer

logger = logging.getLogger("query_bulk_copy")

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def configure_logging(environ: Optional[Mapping[str, str]] = None) -> None:
    environ = os.environ if environ is None else environ
    level = environ.get('LOG_LEVEL', 'INFO').upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


def main() -> int:
    found_env_file = load_dotenv()
    configure_logging()
    if not found_env_file:
        logger.info("No .env file found, using environment variables")

    try:
        config = load_config()
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    try:
        summary = run_transfer(config)
    except psycopg2.OperationalError as e:
        logger.error(f"Failed to connect to database: {e}")
        return 1
    except TransferError as e:
        logger.error(f"Transfer failed during {e.stage}: {e}")
        return 1

    if summary.batches_failed:
        logger.warning(
            f"Data transfer completed with {summary.batches_failed} failed batch(es)"
        )
    else:
        logger.info("Data transfer completed successfully")
    return 0


if __name__ == '__main__':
    sys.exit(main())
