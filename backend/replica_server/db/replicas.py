"""Repositories for replicas and their files.

Two backends implement the same protocols:

- ``InMemoryReplicaRepository`` / ``InMemoryFileRepository`` share an
  ``InMemoryStore``. A single lock makes every operation atomic, which
  mirrors the transactional guarantees of the database. Used for tests and
  local development.
- ``PostgresReplicaRepository`` / ``PostgresFileRepository`` run on a
  ``Database`` handle. Each operation executes inside one transaction;
  deletes lock the selected rows before removing files and replicas so the
  returned snapshots always match what was deleted.

Example:
    >>> from replica_server.db import replicas
    >>> store = replicas.InMemoryStore()
    >>> replica_repo = replicas.InMemoryReplicaRepository(store)
    >>> file_repo = replicas.InMemoryFileRepository(store)
"""

from __future__ import annotations

import copy
import dataclasses
import datetime
import threading
import uuid
from typing import TYPE_CHECKING, Any, Protocol, cast

import psycopg2.errors

from replica_server.db import filters
from replica_server.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterable

    import psycopg2.extras

    from replica_server.db import database


def _cast[T](value: object, dtype: type[T]) -> T | None:  # type: ignore[misc]
    """Cast a value to a specific type, returning None if value is None."""
    if value is None:
        return None

    return cast(T, value)


class ReplicaRepositoryProtocol(Protocol):
    """Protocol interface for storing, querying and removing replicas.

    Store failures surface as ``psycopg2.Error`` from every implementation;
    ``create_replica`` raises ``psycopg2.errors.UniqueViolation`` for a
    replica id that already exists.
    """

    def find_one_replica(
        self, replica_id: uuid.UUID
    ) -> db_models.Replica | None: ...

    def find_one_replica_with_files(
        self, replica_id: uuid.UUID
    ) -> db_models.ReplicaWithFiles | None: ...

    def find_replicas(
        self, replica_filter: filters.PublicReplicaFilter
    ) -> list[db_models.ReplicaWithFiles]: ...

    def find_latest_replica_with_files(
        self, replica_filter: filters.BaseReplicaFilter
    ) -> db_models.ReplicaWithFiles | None: ...

    def create_replica(self, replica: db_models.Replica) -> None: ...

    def update_one_replica(
        self,
        replica_id: uuid.UUID,
        metadata: db_models.ReplicaMetadata,
    ) -> None: ...

    def update_replicas(
        self,
        replica_filter: filters.PrivateReplicaFilter,
        metadata: db_models.ReplicaMetadata,
    ) -> None: ...

    def delete_one_replica(
        self, replica_id: uuid.UUID
    ) -> db_models.ReplicaWithFiles | None: ...

    def delete_replicas(
        self, replica_filter: filters.PrivateReplicaFilter
    ) -> list[db_models.ReplicaWithFiles]: ...


class FileRepositoryProtocol(Protocol):
    """Protocol interface for files attached to replicas.

    ``create_file_on_replica`` raises ``psycopg2.errors.UniqueViolation`` for
    a used file id and ``psycopg2.errors.ForeignKeyViolation`` for an
    unknown replica.
    """

    def find_one_file(self, file_id: uuid.UUID) -> db_models.File | None: ...

    def create_file_on_replica(
        self, replica_id: uuid.UUID, file_id: uuid.UUID
    ) -> db_models.File: ...


def _sort_by_timestamp(
    replicas: Iterable[db_models.ReplicaWithFiles],
    sort: db_models.SortOrder = "desc",
) -> list[db_models.ReplicaWithFiles]:
    return sorted(
        replicas,
        key=lambda replica: replica.timestamp,
        reverse=sort != "asc",
    )


class InMemoryStore:
    """Replica and file rows kept in dictionaries behind a single lock.

    Data is lost when the process exits.
    """

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.replicas: dict[uuid.UUID, db_models.Replica] = {}
        self.files: dict[uuid.UUID, db_models.File] = {}

    def files_of(self, replica_id: uuid.UUID) -> list[db_models.File]:
        return [
            copy.copy(file)
            for file in self.files.values()
            if file.replica_id == replica_id
        ]

    def with_files(
        self, replica: db_models.Replica
    ) -> db_models.ReplicaWithFiles:
        return db_models.ReplicaWithFiles.from_replica(
            replica, self.files_of(replica.replica_id)
        )

    def remove(self, replica_id: uuid.UUID) -> None:
        for file_id in [
            file.file_id
            for file in self.files.values()
            if file.replica_id == replica_id
        ]:
            del self.files[file_id]
        del self.replicas[replica_id]


class InMemoryReplicaRepository(ReplicaRepositoryProtocol):
    """Simple in-memory replica repository for tests and local development."""

    def __init__(self, store: InMemoryStore | None = None) -> None:
        self.store = store if store is not None else InMemoryStore()

    def find_one_replica(
        self, replica_id: uuid.UUID
    ) -> db_models.Replica | None:
        with self.store.lock:
            replica = self.store.replicas.get(replica_id)
            return copy.copy(replica) if replica is not None else None

    def find_one_replica_with_files(
        self, replica_id: uuid.UUID
    ) -> db_models.ReplicaWithFiles | None:
        with self.store.lock:
            replica = self.store.replicas.get(replica_id)
            if replica is None or replica.is_hidden:
                return None
            return self.store.with_files(replica)

    def find_replicas(
        self, replica_filter: filters.PublicReplicaFilter
    ) -> list[db_models.ReplicaWithFiles]:
        with self.store.lock:
            matches = [
                self.store.with_files(replica)
                for replica in self.store.replicas.values()
                if replica_filter.matches(replica)
            ]
        return _sort_by_timestamp(matches, replica_filter.sort)

    def find_latest_replica_with_files(
        self, replica_filter: filters.BaseReplicaFilter
    ) -> db_models.ReplicaWithFiles | None:
        with self.store.lock:
            matches = [
                replica
                for replica in self.store.replicas.values()
                if replica_filter.matches(replica)
            ]
            if not matches:
                return None
            latest = max(matches, key=lambda replica: replica.timestamp)
            return self.store.with_files(latest)

    def create_replica(self, replica: db_models.Replica) -> None:
        now = datetime.datetime.now(tz=datetime.UTC)
        with self.store.lock:
            if replica.replica_id in self.store.replicas:
                raise psycopg2.errors.UniqueViolation(
                    f"duplicate replica id {replica.replica_id}"
                )
            self.store.replicas[replica.replica_id] = dataclasses.replace(
                replica, is_hidden=True, created_at=now, updated_at=now
            )

    def update_one_replica(
        self,
        replica_id: uuid.UUID,
        metadata: db_models.ReplicaMetadata,
    ) -> None:
        changes = metadata.changes()
        if not changes:
            return
        with self.store.lock:
            replica = self.store.replicas.get(replica_id)
            if replica is not None:
                self._apply(replica, changes)

    def update_replicas(
        self,
        replica_filter: filters.PrivateReplicaFilter,
        metadata: db_models.ReplicaMetadata,
    ) -> None:
        changes = metadata.changes()
        if not changes:
            return
        with self.store.lock:
            for replica in list(self.store.replicas.values()):
                if replica_filter.matches(replica):
                    self._apply(replica, changes)

    def delete_one_replica(
        self, replica_id: uuid.UUID
    ) -> db_models.ReplicaWithFiles | None:
        with self.store.lock:
            replica = self.store.replicas.get(replica_id)
            if replica is None:
                return None
            snapshot = self.store.with_files(replica)
            self.store.remove(replica_id)
            return snapshot

    def delete_replicas(
        self, replica_filter: filters.PrivateReplicaFilter
    ) -> list[db_models.ReplicaWithFiles]:
        with self.store.lock:
            snapshots = [
                self.store.with_files(replica)
                for replica in self.store.replicas.values()
                if replica_filter.matches(replica)
            ]
            for snapshot in snapshots:
                self.store.remove(snapshot.replica_id)
        return snapshots

    def _apply(self, replica: db_models.Replica, changes: dict[str, Any]) -> None:
        updated = dataclasses.replace(
            replica,
            **changes,
            updated_at=datetime.datetime.now(tz=datetime.UTC),
        )
        self.store.replicas[replica.replica_id] = updated


class InMemoryFileRepository(FileRepositoryProtocol):
    """In-memory file repository sharing rows with a replica repository."""

    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    def find_one_file(self, file_id: uuid.UUID) -> db_models.File | None:
        with self.store.lock:
            file = self.store.files.get(file_id)
            return copy.copy(file) if file is not None else None

    def create_file_on_replica(
        self, replica_id: uuid.UUID, file_id: uuid.UUID
    ) -> db_models.File:
        with self.store.lock:
            if replica_id not in self.store.replicas:
                raise psycopg2.errors.ForeignKeyViolation(
                    f"unknown replica id {replica_id}"
                )
            if file_id in self.store.files:
                raise psycopg2.errors.UniqueViolation(
                    f"duplicate file id {file_id}"
                )
            file = db_models.File(file_id=file_id, replica_id=replica_id)
            self.store.files[file_id] = file
            return copy.copy(file)


REPLICA_COLUMNS = (
    "replica_id, sync_id, layer_id, geometry_type::text AS geometry_type, "
    "replica_type::text AS replica_type, is_hidden, bucket_name, "
    '"timestamp", created_at, updated_at'
)

UPDATABLE_COLUMNS = {
    "layer_id": "layer_id",
    "geometry_type": "geometry_type",
    "replica_type": "replica_type",
    "bucket_name": "bucket_name",
    "timestamp": '"timestamp"',
    "sync_id": "sync_id",
    "is_hidden": "is_hidden",
}


class PostgresReplicaRepository(ReplicaRepositoryProtocol):
    """PostgreSQL-backed replica repository."""

    def __init__(self, db: database.Database) -> None:
        """Initialize repository with a database handle.

        Args:
            db: Shared connection pool and transaction scope.
        """
        self.db = db

    def find_one_replica(
        self, replica_id: uuid.UUID
    ) -> db_models.Replica | None:
        with self.db.transaction() as cur:
            cur.execute(
                f"SELECT {REPLICA_COLUMNS} FROM replica "
                "WHERE replica_id = %(replica_id)s",
                {"replica_id": replica_id},
            )
            row = cur.fetchone()
        if row is None:
            return None
        return self._from_row(cast(dict[str, object], row))

    def find_one_replica_with_files(
        self, replica_id: uuid.UUID
    ) -> db_models.ReplicaWithFiles | None:
        with self.db.transaction() as cur:
            cur.execute(
                f"SELECT {REPLICA_COLUMNS} FROM replica "
                "WHERE replica_id = %(replica_id)s AND is_hidden = false",
                {"replica_id": replica_id},
            )
            found = self._with_files(cur, cur.fetchall())
        return found[0] if found else None

    def find_replicas(
        self, replica_filter: filters.PublicReplicaFilter
    ) -> list[db_models.ReplicaWithFiles]:
        clauses, params = replica_filter.to_sql()
        direction = "ASC" if replica_filter.sort == "asc" else "DESC"
        with self.db.transaction() as cur:
            cur.execute(
                f"SELECT {REPLICA_COLUMNS} FROM replica "
                f"{filters.where_clause(clauses)} "
                f'ORDER BY "timestamp" {direction}',
                params,
            )
            return self._with_files(cur, cur.fetchall())

    def find_latest_replica_with_files(
        self, replica_filter: filters.BaseReplicaFilter
    ) -> db_models.ReplicaWithFiles | None:
        clauses, params = replica_filter.to_sql()
        with self.db.transaction() as cur:
            cur.execute(
                f"SELECT {REPLICA_COLUMNS} FROM replica "
                f"{filters.where_clause(clauses)} "
                'ORDER BY "timestamp" DESC LIMIT 1',
                params,
            )
            found = self._with_files(cur, cur.fetchall())
        return found[0] if found else None

    def create_replica(self, replica: db_models.Replica) -> None:
        with self.db.transaction() as cur:
            cur.execute(
                """
                INSERT INTO replica (
                    replica_id, sync_id, layer_id, geometry_type,
                    replica_type, is_hidden, bucket_name, "timestamp"
                ) VALUES (%(replica_id)s, %(sync_id)s, %(layer_id)s,
                    %(geometry_type)s, %(replica_type)s, true,
                    %(bucket_name)s, %(timestamp)s)
                """,
                self._to_row(replica),
            )

    def update_one_replica(
        self,
        replica_id: uuid.UUID,
        metadata: db_models.ReplicaMetadata,
    ) -> None:
        self._update(
            ["replica_id = %(replica_id)s"],
            {"replica_id": replica_id},
            metadata,
        )

    def update_replicas(
        self,
        replica_filter: filters.PrivateReplicaFilter,
        metadata: db_models.ReplicaMetadata,
    ) -> None:
        clauses, params = replica_filter.to_sql()
        self._update(clauses, params, metadata)

    def delete_one_replica(
        self, replica_id: uuid.UUID
    ) -> db_models.ReplicaWithFiles | None:
        deleted = self._delete(
            ["replica_id = %(replica_id)s"], {"replica_id": replica_id}
        )
        return deleted[0] if deleted else None

    def delete_replicas(
        self, replica_filter: filters.PrivateReplicaFilter
    ) -> list[db_models.ReplicaWithFiles]:
        clauses, params = replica_filter.to_sql()
        return self._delete(clauses, params)

    def _update(
        self,
        clauses: list[str],
        params: dict[str, Any],
        metadata: db_models.ReplicaMetadata,
    ) -> None:
        changes = metadata.changes()
        if not changes:
            return
        assignments = [
            f"{UPDATABLE_COLUMNS[name]} = %(set_{name})s" for name in changes
        ]
        assignments.append("updated_at = now()")
        values = {f"set_{name}": value for name, value in changes.items()}
        with self.db.transaction() as cur:
            cur.execute(
                f"UPDATE replica SET {', '.join(assignments)} "
                f"{filters.where_clause(clauses)}",
                {**params, **values},
            )

    def _delete(
        self, clauses: list[str], params: dict[str, Any]
    ) -> list[db_models.ReplicaWithFiles]:
        with self.db.transaction() as cur:
            cur.execute(
                f"SELECT {REPLICA_COLUMNS} FROM replica "
                f"{filters.where_clause(clauses)} FOR UPDATE",
                params,
            )
            snapshots = self._with_files(cur, cur.fetchall())
            if not snapshots:
                return []
            replica_ids = [snapshot.replica_id for snapshot in snapshots]
            cur.execute(
                "DELETE FROM file WHERE replica_id = ANY(%(replica_ids)s)",
                {"replica_ids": replica_ids},
            )
            cur.execute(
                "DELETE FROM replica WHERE replica_id = ANY(%(replica_ids)s)",
                {"replica_ids": replica_ids},
            )
        return snapshots

    @classmethod
    def _with_files(
        cls,
        cur: psycopg2.extras.RealDictCursor,
        rows: Iterable[object],
    ) -> list[db_models.ReplicaWithFiles]:
        """Attach files to replica rows, preserving the row order."""
        replicas = [cls._from_row(cast(dict[str, object], row)) for row in rows]
        if not replicas:
            return []
        cur.execute(
            "SELECT file_id, replica_id, created_at FROM file "
            "WHERE replica_id = ANY(%(replica_ids)s) ORDER BY created_at",
            {"replica_ids": [replica.replica_id for replica in replicas]},
        )
        files: dict[uuid.UUID, list[db_models.File]] = {}
        for row in cur.fetchall():
            file = PostgresFileRepository._from_row(cast(dict[str, object], row))
            files.setdefault(file.replica_id, []).append(file)
        return [
            db_models.ReplicaWithFiles.from_replica(
                replica, files.get(replica.replica_id, [])
            )
            for replica in replicas
        ]

    @staticmethod
    def _to_row(replica: db_models.Replica) -> dict[str, object]:
        """Convert a Replica to insert parameters.

        Args:
            replica: Replica to convert.

        Returns:
            Dictionary suitable for parameterized SQL insertion.
        """
        return {
            "replica_id": replica.replica_id,
            "sync_id": replica.sync_id,
            "layer_id": replica.layer_id,
            "geometry_type": replica.geometry_type,
            "replica_type": replica.replica_type,
            "bucket_name": replica.bucket_name,
            "timestamp": replica.timestamp,
        }

    @staticmethod
    def _from_row(row: dict[str, object]) -> db_models.Replica:
        """Convert a database row dictionary to a Replica.

        Args:
            row: Dictionary from database query result.

        Returns:
            Replica with all fields populated.
        """
        now = datetime.datetime.now(datetime.UTC)
        created_at = _cast(row.get("created_at"), datetime.datetime) or now
        updated_at = _cast(row.get("updated_at"), datetime.datetime) or now
        return db_models.Replica(
            replica_id=cast(uuid.UUID, row["replica_id"]),
            sync_id=_cast(row.get("sync_id"), uuid.UUID),
            layer_id=int(cast(int, row["layer_id"])),
            geometry_type=cast(db_models.GeometryType, str(row["geometry_type"])),
            replica_type=cast(db_models.ReplicaType, str(row["replica_type"])),
            is_hidden=bool(row["is_hidden"]),
            bucket_name=str(row["bucket_name"]),
            timestamp=cast(datetime.datetime, row["timestamp"]),
            created_at=created_at,
            updated_at=updated_at,
        )


class PostgresFileRepository(FileRepositoryProtocol):
    """PostgreSQL-backed file repository."""

    def __init__(self, db: database.Database) -> None:
        self.db = db

    def find_one_file(self, file_id: uuid.UUID) -> db_models.File | None:
        with self.db.transaction() as cur:
            cur.execute(
                "SELECT file_id, replica_id, created_at FROM file "
                "WHERE file_id = %(file_id)s",
                {"file_id": file_id},
            )
            row = cur.fetchone()
        if row is None:
            return None
        return self._from_row(cast(dict[str, object], row))

    def create_file_on_replica(
        self, replica_id: uuid.UUID, file_id: uuid.UUID
    ) -> db_models.File:
        with self.db.transaction() as cur:
            cur.execute(
                "INSERT INTO file (file_id, replica_id) "
                "VALUES (%(file_id)s, %(replica_id)s) "
                "RETURNING file_id, replica_id, created_at",
                {"file_id": file_id, "replica_id": replica_id},
            )
            row = cur.fetchone()
        return self._from_row(cast(dict[str, object], row))

    @staticmethod
    def _from_row(row: dict[str, object]) -> db_models.File:
        created_at = _cast(
            row.get("created_at"), datetime.datetime
        ) or datetime.datetime.now(datetime.UTC)
        return db_models.File(
            file_id=cast(uuid.UUID, row["file_id"]),
            replica_id=cast(uuid.UUID, row["replica_id"]),
            created_at=created_at,
        )
