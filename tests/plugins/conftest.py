"""Shared fixtures for the plugin tests."""

import contextlib

import pytest
from unittest.mock import MagicMock


class FakePool:
    """Stands in for PostgresConnectionPool, handing out mock connections in order."""

    def __init__(self, connections):
        self._connections = list(connections)
        self.acquired = []
        self.released = []

    @contextlib.contextmanager
    def connection(self):
        conn = self._connections.pop(0)
        self.acquired.append(conn)
        try:
            yield conn
        finally:
            self.released.append(conn)

    @property
    def checked_out(self):
        return len(self.acquired) - len(self.released)


def make_connection():
    """Mock psycopg2 connection whose cursor() also works as a context manager."""
    conn = MagicMock()
    conn.closed = 0
    conn.autocommit = False
    cursor = MagicMock()
    conn.cursor.return_value = cursor
    cursor.__enter__.return_value = cursor
    return conn, cursor


@pytest.fixture
def fake_pool_factory():
    return FakePool


@pytest.fixture
def mock_connection_factory():
    return make_connection
