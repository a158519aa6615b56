"""
Batch Loader Module

Drains a lazy row stream into the destination in fixed-size batches.

Failure policy:
- A batch whose load raises LoadError (including RowCountMismatch) is
  reported to the observer and dropped; the loop moves on to the next batch.
  Its rows still count as processed.
- Any other exception, in particular CursorReadError from the row stream,
  propagates and aborts the transfer.

Progress, batch failures and the final summary are reported through a
TransferObserver so the loop can be exercised without capturing log output.
"""

from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
import logging
import time

from query_bulk_copy.errors import LoadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    rows_processed: int
    elapsed_seconds: float
    rows_per_second: float


@dataclass
class TransferSummary:
    rows_processed: int = 0
    rows_loaded: int = 0
    batches_loaded: int = 0
    batches_failed: int = 0
    elapsed_seconds: float = 0.0
    columns: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TransferObserver:
    """Receives transfer telemetry. All hooks are no-ops by default."""

    def columns_detected(self, columns: Sequence[str]) -> None:
        pass

    def progress(self, event: ProgressEvent) -> None:
        pass

    def batch_failed(self, error: LoadError, batch_size: int, final: bool) -> None:
        pass

    def summary(self, summary: TransferSummary) -> None:
        pass


class LoggingObserver(TransferObserver):
    """Writes transfer telemetry to the module logger."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logger

    def columns_detected(self, columns: Sequence[str]) -> None:
        self._log.info(f"Detected columns ({len(columns)}): {', '.join(columns)}")

    def progress(self, event: ProgressEvent) -> None:
        self._log.info(
            f"Processed: {event.rows_processed:,} rows - "
            f"Rate: {event.rows_per_second:,.0f} rows/sec"
        )

    def batch_failed(self, error: LoadError, batch_size: int, final: bool) -> None:
        label = "final batch" if final else "batch"
        self._log.error(f"failed to insert {label} ({batch_size:,} rows): {error}")

    def summary(self, summary: TransferSummary) -> None:
        elapsed = timedelta(seconds=round(summary.elapsed_seconds, 3))
        self._log.info(
            f"Transfer complete. Total: {summary.rows_processed:,} rows in {elapsed}"
        )
        if summary.batches_failed:
            self._log.warning(
                f"{summary.batches_failed} batch(es) failed; "
                f"{summary.rows_processed - summary.rows_loaded:,} rows were not loaded"
            )


class BatchLoader:
    """Groups rows into batches and loads each one."""

    def __init__(
        self,
        load_batch: Callable[[List[Tuple[Any, ...]]], int],
        batch_size: int,
        progress_every_rows: int,
        observer: Optional[TransferObserver] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            load_batch: Loads one non-empty batch, raising LoadError on failure
            batch_size: Rows per batch (positive)
            progress_every_rows: Progress cadence in rows (positive)
            observer: Telemetry sink (defaults to LoggingObserver)
            clock: Monotonic time source in seconds
        """
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        if progress_every_rows <= 0:
            raise ValueError(f"progress_every_rows must be positive, got {progress_every_rows}")
        self._load_batch = load_batch
        self.batch_size = batch_size
        self.progress_every_rows = progress_every_rows
        self.observer = observer or LoggingObserver()
        self._clock = clock

    def run(self, rows: Iterable[Tuple[Any, ...]], columns: Sequence[str] = ()) -> TransferSummary:
        """
        Load every row of the stream.

        Args:
            rows: Lazy row stream; exceptions it raises abort the run
            columns: Column names, recorded in the summary

        Returns:
            TransferSummary for the run
        """
        start = self._clock()
        summary = TransferSummary(columns=list(columns))
        batch: List[Tuple[Any, ...]] = []

        for row in rows:
            batch.append(row)
            if len(batch) < self.batch_size:
                continue

            self._flush(batch, summary, final=False)
            batch = []

            if summary.rows_processed % self.progress_every_rows == 0:
                elapsed = self._clock() - start
                rate = summary.rows_processed / elapsed if elapsed > 0 else 0.0
                self.observer.progress(ProgressEvent(summary.rows_processed, elapsed, rate))

        if batch:
            self._flush(batch, summary, final=True)

        summary.elapsed_seconds = self._clock() - start
        self.observer.summary(summary)
        return summary

    def _flush(self, batch: List[Tuple[Any, ...]], summary: TransferSummary, final: bool) -> None:
        try:
            inserted = self._load_batch(batch)
        except LoadError as e:
            summary.batches_failed += 1
            self.observer.batch_failed(e, len(batch), final)
        else:
            summary.batches_loaded += 1
            summary.rows_loaded += inserted
        summary.rows_processed += len(batch)
