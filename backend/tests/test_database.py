"""Tests for the database handle and its transaction scope.

The connection pool is replaced by fakes, so no database is required. The
tests verify lazy pool creation with schema setup, commit and rollback of
transactions, the return of connections to the pool on every exit path and
closing the pool.

See Also:
    - backend/replica_server/db/database.py for the implementation.
"""

from __future__ import annotations

from typing import Any

import psycopg2
import pytest

from replica_server.core import config
from replica_server.db import database


class FakeCursor:
    def __init__(self, conn: FakeConn) -> None:
        self.conn = conn

    def __enter__(self) -> FakeCursor:
        return self

    def __exit__(self, *args: Any) -> None:
        pass

    def execute(self, sql: str, params: Any = None) -> None:
        if "fail" in sql:
            raise psycopg2.OperationalError("connection lost")
        self.conn.executed.append(sql)


class FakeConn:
    def __init__(self) -> None:
        self.executed: list[str] = []
        self.committed = 0
        self.rolled_back = 0
        self.closed = 0

    def __enter__(self) -> FakeConn:
        return self

    def __exit__(self, exc_type: Any, *args: Any) -> None:
        if exc_type is None:
            self.committed += 1
        else:
            self.rolled_back += 1

    def cursor(self, cursor_factory: Any = None) -> FakeCursor:
        return FakeCursor(self)


class FakePool:
    instances: list[FakePool] = []

    def __init__(self, minconn: int, maxconn: int, **kwargs: Any) -> None:
        self.minconn = minconn
        self.maxconn = maxconn
        self.kwargs = kwargs
        self.conn = FakeConn()
        self.borrowed = 0
        self.returned = 0
        self.closed_all = False
        FakePool.instances.append(self)

    def getconn(self) -> FakeConn:
        self.borrowed += 1
        return self.conn

    def putconn(self, conn: FakeConn, close: bool = False) -> None:
        self.returned += 1

    def closeall(self) -> None:
        self.closed_all = True


@pytest.fixture
def fake_pool(monkeypatch: pytest.MonkeyPatch) -> type[FakePool]:
    FakePool.instances = []
    monkeypatch.setattr("psycopg2.pool.ThreadedConnectionPool", FakePool)
    return FakePool


def test_database_is_lazy(fake_pool: type[FakePool]) -> None:
    """Test that creating the handle opens no connection."""
    database.Database(config.Settings())
    assert fake_pool.instances == []


def test_first_transaction_creates_pool_and_schema(
    fake_pool: type[FakePool],
) -> None:
    """Test that the pool is created once and the schema ensured."""
    settings = config.Settings(db_pool_min_size=2, db_pool_max_size=4)
    db = database.Database(settings)
    with db.transaction() as cur:
        cur.execute("SELECT 1")
    with db.transaction() as cur:
        cur.execute("SELECT 2")

    assert len(fake_pool.instances) == 1
    pool = fake_pool.instances[0]
    assert (pool.minconn, pool.maxconn) == (2, 4)
    assert pool.kwargs == settings.connection_kwargs()
    assert pool.conn.executed == [database.SCHEMA_SQL, "SELECT 1", "SELECT 2"]
    assert pool.borrowed == pool.returned == 3


def test_transaction_commits(fake_pool: type[FakePool]) -> None:
    """Test that a clean block commits."""
    db = database.Database(config.Settings())
    with db.transaction() as cur:
        cur.execute("SELECT 1")
    conn = fake_pool.instances[0].conn
    assert conn.rolled_back == 0
    assert conn.committed == 2


def test_transaction_rolls_back_and_returns_connection(
    fake_pool: type[FakePool],
) -> None:
    """Test that a failing block rolls back and re-raises."""
    db = database.Database(config.Settings())
    with pytest.raises(psycopg2.OperationalError), db.transaction() as cur:
        cur.execute("fail")
    pool = fake_pool.instances[0]
    assert pool.conn.rolled_back == 1
    assert pool.borrowed == pool.returned


def test_check_connection(fake_pool: type[FakePool]) -> None:
    """Test the trivial query used by the health check."""
    db = database.Database(config.Settings())
    db.check_connection()
    assert fake_pool.instances[0].conn.executed[-1] == "SELECT 1"


def test_close(fake_pool: type[FakePool]) -> None:
    """Test that close shuts the pool and a later call reopens it."""
    db = database.Database(config.Settings())
    db.close()
    db.check_connection()
    db.close()
    assert fake_pool.instances[0].closed_all
    db.check_connection()
    assert len(fake_pool.instances) == 2


def test_schema_failure_closes_pool(
    fake_pool: type[FakePool], monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test that a failed schema setup closes the pool and retries later."""
    monkeypatch.setattr(database, "SCHEMA_SQL", "fail schema")
    db = database.Database(config.Settings())
    with pytest.raises(psycopg2.OperationalError):
        db.check_connection()
    first = fake_pool.instances[0]
    assert first.closed_all
    assert first.borrowed == first.returned

    monkeypatch.setattr(database, "SCHEMA_SQL", "CREATE TABLE")
    db.check_connection()
    assert len(fake_pool.instances) == 2
    assert not fake_pool.instances[1].closed_all
