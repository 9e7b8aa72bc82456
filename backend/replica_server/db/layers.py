"""Read-only repositories for layer definitions."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Protocol, cast

from replica_server.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Iterable

    from replica_server.db import database


class LayerRepositoryProtocol(Protocol):
    """Protocol interface for listing layers.

    Implementations return every known layer ordered by ``layer_id``
    ascending, supporting both in-memory (testing) and PostgreSQL
    (production) backends.
    """

    def all(self) -> list[db_models.Layer]: ...


class InMemoryLayerRepository(LayerRepositoryProtocol):
    """Simple in-memory store for tests and local development.

    Stores layers in a dictionary. Data is lost when the process exits.
    """

    def __init__(self, layers: Iterable[db_models.Layer] = ()) -> None:
        """Initialize the repository, optionally seeded with layers.

        Args:
            layers: Layers available from the start.
        """
        self._lock = threading.Lock()
        self._store: dict[int, db_models.Layer] = {}
        for layer in layers:
            self.add(layer)

    def add(self, layer: db_models.Layer) -> db_models.Layer:
        """Add or replace a layer.

        Layers are read-only through the service; this exists to seed the
        store.

        Args:
            layer: Layer to store.

        Returns:
            The stored layer.
        """
        with self._lock:
            self._store[layer.layer_id] = layer
        return layer

    def all(self) -> list[db_models.Layer]:
        with self._lock:
            return [self._store[key] for key in sorted(self._store)]


class PostgresLayerRepository(LayerRepositoryProtocol):
    """PostgreSQL-backed layer repository."""

    def __init__(self, db: database.Database) -> None:
        """Initialize repository with a database handle.

        Args:
            db: Shared connection pool and transaction scope.
        """
        self.db = db

    def all(self) -> list[db_models.Layer]:
        with self.db.transaction() as cur:
            cur.execute(
                "SELECT layer_id, layer_name, "
                "geometry_types::text[] AS geometry_types "
                "FROM layer ORDER BY layer_id ASC"
            )
            rows = cur.fetchall()
        return [self._from_row(cast(dict[str, object], row)) for row in rows]

    @staticmethod
    def _from_row(row: dict[str, object]) -> db_models.Layer:
        """Convert a database row dictionary to a Layer.

        Args:
            row: Dictionary from database query result.

        Returns:
            Layer with its geometry types as plain strings.
        """
        geometry_types = cast(list[str] | None, row.get("geometry_types")) or []
        return db_models.Layer(
            layer_id=int(cast(int, row["layer_id"])),
            layer_name=str(row["layer_name"]),
            geometry_types=[
                cast(db_models.GeometryType, value) for value in geometry_types
            ],
        )
