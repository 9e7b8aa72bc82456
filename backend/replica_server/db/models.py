"""Data models for replicas, their files and layers.

This module defines the core data structures used throughout the application
to represent replicas of geospatial layer data. A ``Replica`` is a snapshot or
delta of a layer at a point in time; it owns zero or more ``File`` objects
which reference artifacts kept in external object storage by id only.
``Layer`` describes the dataset a replica belongs to and is read-only here.

Example:
    Creating a replica and attaching its files:
        >>> import datetime, uuid
        >>> from replica_server.db.models import File, Replica, ReplicaWithFiles
        >>> replica = Replica(
        ...     replica_id=uuid.uuid4(),
        ...     layer_id=5,
        ...     geometry_type="point",
        ...     replica_type="snapshot",
        ...     bucket_name="replicas",
        ...     timestamp=datetime.datetime(2024, 1, 1, tzinfo=datetime.UTC),
        ... )
        >>> replica.is_hidden
        True
        >>> with_files = ReplicaWithFiles.from_replica(
        ...     replica, [File(file_id=uuid.uuid4(), replica_id=replica.replica_id)]
        ... )
"""

from __future__ import annotations

import dataclasses
import datetime
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable

GeometryType = Literal["point", "linestring", "polygon"]
ReplicaType = Literal["delta", "snapshot"]
SortOrder = Literal["asc", "desc"]

BUCKET_NAME_MIN_LENGTH = 3
BUCKET_NAME_MAX_LENGTH = 63


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.UTC)


@dataclasses.dataclass
class Replica:
    """A tracked snapshot or delta of a layer at a point in time.

    Attributes:
        replica_id: Immutable, globally unique identifier.
        layer_id: Identifier of the layer the replica belongs to.
        geometry_type: One of "point", "linestring", "polygon".
        replica_type: Either "delta" or "snapshot".
        bucket_name: Object storage bucket holding the replica files.
        timestamp: Business clock of the replica, distinct from the
            audit timestamps.
        sync_id: Optional id of the synchronization run that produced it.
        is_hidden: Visibility gate; replicas are created hidden.
        created_at: Row creation time, managed by the store.
        updated_at: Last update time, managed by the store.
    """

    replica_id: uuid.UUID
    layer_id: int
    geometry_type: GeometryType
    replica_type: ReplicaType
    bucket_name: str
    timestamp: datetime.datetime
    sync_id: uuid.UUID | None = None
    is_hidden: bool = True
    created_at: datetime.datetime = dataclasses.field(default_factory=_utcnow)
    updated_at: datetime.datetime = dataclasses.field(default_factory=_utcnow)


@dataclasses.dataclass
class File:
    """An opaque object storage artifact owned by exactly one replica."""

    file_id: uuid.UUID
    replica_id: uuid.UUID
    created_at: datetime.datetime = dataclasses.field(default_factory=_utcnow)


@dataclasses.dataclass
class ReplicaWithFiles(Replica):
    """A replica together with the files it owns."""

    files: list[File] = dataclasses.field(default_factory=list)

    @classmethod
    def from_replica(
        cls, replica: Replica, files: Iterable[File] = ()
    ) -> ReplicaWithFiles:
        values = {
            field.name: getattr(replica, field.name)
            for field in dataclasses.fields(Replica)
        }
        return cls(**values, files=list(files))


@dataclasses.dataclass
class Layer:
    """A named geospatial dataset definition referenced by replicas."""

    layer_id: int
    layer_name: str
    geometry_types: list[GeometryType] = dataclasses.field(default_factory=list)


@dataclasses.dataclass(frozen=True)
class ReplicaMetadata:
    """Partial set of replica fields applied by an update.

    Every field defaults to ``None`` which means "leave unchanged". The
    replica id is not part of the metadata and can never be updated.
    """

    layer_id: int | None = None
    geometry_type: GeometryType | None = None
    replica_type: ReplicaType | None = None
    bucket_name: str | None = None
    timestamp: datetime.datetime | None = None
    sync_id: uuid.UUID | None = None
    is_hidden: bool | None = None

    def changes(self) -> dict[str, Any]:
        """Return only the fields that were set, keyed by field name."""
        return {
            field.name: getattr(self, field.name)
            for field in dataclasses.fields(self)
            if getattr(self, field.name) is not None
        }


@dataclasses.dataclass
class ReplicaResponse:
    """Public view of a replica with one display URL per file."""

    replica_type: ReplicaType
    layer_id: int
    geometry_type: GeometryType
    timestamp: datetime.datetime
    urls: list[str] = dataclasses.field(default_factory=list)
