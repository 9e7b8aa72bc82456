"""Database handle, transactions and schema for the replica store."""

from __future__ import annotations

import contextlib
import logging
import threading
from typing import TYPE_CHECKING

import psycopg2
import psycopg2.extras
import psycopg2.pool

if TYPE_CHECKING:
    from collections.abc import Iterator

    from replica_server.core import config

logger = logging.getLogger(__name__)

psycopg2.extras.register_uuid()

SCHEMA_SQL = """
DO $$ BEGIN
  CREATE TYPE geometry_type_enum AS ENUM ('point', 'linestring', 'polygon');
EXCEPTION WHEN duplicate_object THEN NULL;
END $$;

DO $$ BEGIN
  CREATE TYPE replica_type_enum AS ENUM ('delta', 'snapshot');
EXCEPTION WHEN duplicate_object THEN NULL;
END $$;

CREATE TABLE IF NOT EXISTS layer (
  layer_id INTEGER PRIMARY KEY,
  layer_name TEXT NOT NULL,
  geometry_types geometry_type_enum[] NOT NULL DEFAULT '{}',
  created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS replica (
  replica_id UUID PRIMARY KEY,
  sync_id UUID,
  layer_id INTEGER NOT NULL,
  geometry_type geometry_type_enum NOT NULL,
  replica_type replica_type_enum NOT NULL,
  is_hidden BOOLEAN NOT NULL DEFAULT true,
  bucket_name VARCHAR(63) NOT NULL,
  "timestamp" TIMESTAMPTZ NOT NULL,
  created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS replica_layer_id_idx ON replica (layer_id);
CREATE INDEX IF NOT EXISTS replica_bucket_name_idx ON replica (bucket_name);
CREATE INDEX IF NOT EXISTS replica_timestamp_idx ON replica ("timestamp");

CREATE TABLE IF NOT EXISTS file (
  file_id UUID PRIMARY KEY,
  replica_id UUID NOT NULL
    REFERENCES replica (replica_id) ON DELETE CASCADE,
  created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS file_replica_id_idx ON file (replica_id);
"""


class Database:
    """Connection pool and transaction scope shared by the repositories.

    One instance is created by the application factory and passed to every
    repository. The pool is opened on first use and the schema is ensured
    at that moment, so building the application does not require a
    reachable database.
    """

    def __init__(self, settings: config.Settings) -> None:
        """Initialize the handle without connecting.

        Args:
            settings: Application settings with connection and pool options.
        """
        self.settings = settings
        self._pool: psycopg2.pool.ThreadedConnectionPool | None = None
        self._lock = threading.Lock()

    def _get_pool(self) -> psycopg2.pool.ThreadedConnectionPool:
        with self._lock:
            if self._pool is None:
                pool = psycopg2.pool.ThreadedConnectionPool(
                    self.settings.db_pool_min_size,
                    self.settings.db_pool_max_size,
                    **self.settings.connection_kwargs(),
                )
                try:
                    self._ensure_schema(pool)
                except Exception:
                    pool.closeall()
                    raise
                self._pool = pool
            return self._pool

    @staticmethod
    def _ensure_schema(pool: psycopg2.pool.ThreadedConnectionPool) -> None:
        conn = pool.getconn()
        try:
            with conn, conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
        finally:
            pool.putconn(conn)
        logger.info("database schema ensured")

    @contextlib.contextmanager
    def transaction(self) -> Iterator[psycopg2.extras.RealDictCursor]:
        """Run the enclosed statements in a single transaction.

        A connection is borrowed from the pool for the duration of the block.
        The transaction commits when the block exits normally and rolls back
        when it raises; the connection is returned to the pool either way.

        Yields:
            A cursor producing rows as dictionaries.
        """
        pool = self._get_pool()
        conn = pool.getconn()
        try:
            with conn, conn.cursor(
                cursor_factory=psycopg2.extras.RealDictCursor
            ) as cur:
                yield cur
        finally:
            pool.putconn(conn, close=bool(conn.closed))

    def check_connection(self) -> None:
        """Run a trivial query, raising ``psycopg2.Error`` on failure."""
        with self.transaction() as cur:
            cur.execute("SELECT 1")

    def close(self) -> None:
        """Close every pooled connection."""
        with self._lock:
            if self._pool is not None:
                self._pool.closeall()
                self._pool = None
