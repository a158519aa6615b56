"""
Tests for the Transfer Driver

These tests run transfer_data over mocked connections end to end (cursor
connection plus one connection per COPY) and check run_transfer's pool
lifecycle.
"""

import pytest
import psycopg2
from unittest.mock import MagicMock, patch
from query_bulk_copy.batch_loader import TransferObserver
from query_bulk_copy.config import TableIdentifier, TransferConfig
from query_bulk_copy.errors import CursorReadError, EmptyResultSchema, QueryError
from query_bulk_copy.transfer import run_transfer, transfer_data


class RecordingObserver(TransferObserver):
    def __init__(self):
        self.columns = None
        self.progress_events = []
        self.failures = []
        self.summaries = []

    def columns_detected(self, columns):
        self.columns = list(columns)

    def progress(self, event):
        self.progress_events.append(event)

    def batch_failed(self, error, batch_size, final):
        self.failures.append((error, batch_size, final))

    def summary(self, summary):
        self.summaries.append(summary)


@pytest.fixture
def config():
    return TransferConfig(
        database_url="postgresql://localhost/metrics",
        select_query="SELECT id, value FROM pm.raw",
        dest_table=TableIdentifier("pm", "snmp_metrics_interface"),
        batch_size=4,
        progress_every_rows=8,
        fetch_size=100,
    )


class TestTransferData:
    """Test transfer_data with a source cursor and COPY connections."""

    def _source(self, mock_connection_factory, rows, columns=("id", "value")):
        conn, cursor = mock_connection_factory()
        cursor.description = [(name, 23) for name in columns] if columns else None
        cursor.fetchmany.return_value = []
        cursor.__iter__.return_value = iter(rows)
        return conn, cursor

    def _copy_connections(self, mock_connection_factory, count, fail_on=()):
        connections = []
        for index in range(count):
            conn, cursor = mock_connection_factory()

            def fake_copy(statement, stream, cursor=cursor, index=index):
                data = stream.read()
                cursor.copied = data
                if index in fail_on:
                    raise psycopg2.IntegrityError("duplicate key value violates unique constraint")
                cursor.rowcount = data.count('\n')

            cursor.copy_expert.side_effect = fake_copy
            connections.append(conn)
        return connections

    def test_full_transfer(self, config, fake_pool_factory, mock_connection_factory):
        """10 rows with B=4 produce COPYs of 4, 4, 2 and one progress event at 8."""
        rows = [(i, i * 1.5) for i in range(10)]
        source, _ = self._source(mock_connection_factory, rows)
        copies = self._copy_connections(mock_connection_factory, 3)
        pool = fake_pool_factory([source] + copies)
        observer = RecordingObserver()

        summary = transfer_data(pool, config, observer)

        assert observer.columns == ["id", "value"]
        assert summary.rows_processed == 10
        assert summary.rows_loaded == 10
        assert summary.batches_loaded == 3
        assert [e.rows_processed for e in observer.progress_events] == [8]
        for conn in copies:
            conn.commit.assert_called_once()
        assert pool.checked_out == 0

    def test_copy_uses_discovered_columns(self, config, fake_pool_factory, mock_connection_factory):
        """The COPY column list comes from the query's result columns."""
        source, _ = self._source(mock_connection_factory, [(1, 2)], columns=("device_id", "octets"))
        copies = self._copy_connections(mock_connection_factory, 1)
        pool = fake_pool_factory([source] + copies)

        transfer_data(pool, config, RecordingObserver())

        statement = copies[0].cursor.return_value.copy_expert.call_args.args[0]
        assert "Identifier('device_id')" in repr(statement)
        assert "Identifier('octets')" in repr(statement)
        assert "Identifier('snmp_metrics_interface')" in repr(statement)

    def test_array_and_json_columns_use_type_codes(self, config, fake_pool_factory, mock_connection_factory):
        """Type codes from the cursor description decide how lists are written."""
        source, cursor = self._source(mock_connection_factory, [(["a", "b"], ["a", "b"])])
        cursor.description = [("tags", 1009), ("doc", 3802)]
        copies = self._copy_connections(mock_connection_factory, 1)
        pool = fake_pool_factory([source] + copies)

        summary = transfer_data(pool, config, RecordingObserver())

        assert summary.rows_loaded == 1
        assert copies[0].cursor.return_value.copied == '"{""a"",""b""}"\t"[""a"", ""b""]"\n'

    def test_failed_batch_is_skipped(self, config, fake_pool_factory, mock_connection_factory):
        """A COPY failure is reported and the remaining batches still load."""
        rows = [(i, i) for i in range(10)]
        source, _ = self._source(mock_connection_factory, rows)
        copies = self._copy_connections(mock_connection_factory, 3, fail_on=(1,))
        pool = fake_pool_factory([source] + copies)
        observer = RecordingObserver()

        summary = transfer_data(pool, config, observer)

        assert summary.rows_processed == 10
        assert summary.rows_loaded == 6
        assert summary.batches_failed == 1
        assert len(observer.failures) == 1
        copies[1].commit.assert_not_called()
        assert len(observer.summaries) == 1

    def test_empty_result(self, config, fake_pool_factory, mock_connection_factory):
        """No rows means no COPY and a zero summary."""
        source, _ = self._source(mock_connection_factory, [])
        pool = fake_pool_factory([source])
        observer = RecordingObserver()

        summary = transfer_data(pool, config, observer)

        assert summary.rows_processed == 0
        assert pool.acquired == [source]
        assert observer.summaries == [summary]

    def test_zero_columns_is_fatal(self, config, fake_pool_factory, mock_connection_factory):
        """A zero-column query aborts before any COPY."""
        source, _ = self._source(mock_connection_factory, [()], columns=())
        pool = fake_pool_factory([source])

        with pytest.raises(EmptyResultSchema):
            transfer_data(pool, config, RecordingObserver())

        assert pool.acquired == [source]
        assert pool.checked_out == 0

    def test_rejected_query_is_fatal(self, config, fake_pool_factory, mock_connection_factory):
        """A rejected query aborts with QueryError."""
        source, cursor = self._source(mock_connection_factory, [(1, 2)])
        cursor.execute.side_effect = psycopg2.ProgrammingError('relation "pm.raw" does not exist')
        pool = fake_pool_factory([source])

        with pytest.raises(QueryError):
            transfer_data(pool, config, RecordingObserver())

        assert pool.checked_out == 0

    def test_read_error_aborts_after_loaded_batches(self, config, fake_pool_factory, mock_connection_factory):
        """A mid-stream read error aborts; batches already loaded stay committed."""
        source, cursor = self._source(mock_connection_factory, [])

        def failing_rows():
            for i in range(6):
                yield (i, i)
            raise psycopg2.OperationalError("terminating connection due to administrator command")

        cursor.__iter__.return_value = failing_rows()
        copies = self._copy_connections(mock_connection_factory, 1)
        pool = fake_pool_factory([source] + copies)
        observer = RecordingObserver()

        with pytest.raises(CursorReadError):
            transfer_data(pool, config, observer)

        copies[0].commit.assert_called_once()
        assert observer.summaries == []
        assert pool.checked_out == 0


class TestRunTransfer:
    """Test pool lifecycle around a transfer."""

    @patch('query_bulk_copy.transfer.transfer_data')
    @patch('query_bulk_copy.transfer.PostgresConnectionPool')
    def test_pool_created_from_config_and_closed(self, MockPool, mock_transfer, config):
        """The pool uses the configured DSN and sizes and is closed afterwards."""
        pool = MagicMock()
        MockPool.return_value = pool
        mock_transfer.return_value = "summary"

        result = run_transfer(config)

        assert result == "summary"
        MockPool.assert_called_once_with(
            "postgresql://localhost/metrics", min_conn=2, max_conn=10
        )
        mock_transfer.assert_called_once_with(pool, config, None)
        pool.close.assert_called_once()

    @patch('query_bulk_copy.transfer.transfer_data')
    @patch('query_bulk_copy.transfer.PostgresConnectionPool')
    def test_pool_closed_on_fatal_error(self, MockPool, mock_transfer, config):
        """The pool is closed even when the transfer aborts."""
        pool = MagicMock()
        MockPool.return_value = pool
        mock_transfer.side_effect = QueryError("failed to execute select query")

        with pytest.raises(QueryError):
            run_transfer(config)

        pool.close.assert_called_once()

    @patch('query_bulk_copy.transfer.PostgresConnectionPool')
    def test_connection_failure_propagates(self, MockPool, config):
        """Failing to build the pool surfaces the driver error."""
        MockPool.side_effect = psycopg2.OperationalError("could not connect to server")

        with pytest.raises(psycopg2.OperationalError):
            run_transfer(config)
