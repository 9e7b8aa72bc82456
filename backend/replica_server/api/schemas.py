"""Request and response bodies of the replica API.

JSON bodies use camelCase keys (``replicaId``, ``layerId``...), while the
Python side keeps snake_case attribute names. Bodies are validated before
anything reaches the store; a validation failure answers 400.

Example:
    >>> body = ReplicaCreate.model_validate({
    ...     "replicaId": "4b6a5e8c-1f1e-4f6b-9d7c-1f2e3d4c5b6a",
    ...     "layerId": 5,
    ...     "geometryType": "point",
    ...     "replicaType": "snapshot",
    ...     "bucketName": "replicas",
    ...     "timestamp": "2024-01-01T00:00:00Z",
    ... })
    >>> body.to_replica().is_hidden
    True
"""

import dataclasses
import datetime
import uuid
from typing import Annotated

import pydantic
from pydantic import alias_generators

from replica_server.db import models as db_models

BucketName = Annotated[
    str,
    pydantic.StringConstraints(
        min_length=db_models.BUCKET_NAME_MIN_LENGTH,
        max_length=db_models.BUCKET_NAME_MAX_LENGTH,
    ),
]


class CamelModel(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        alias_generator=alias_generators.to_camel,
        populate_by_name=True,
    )


class ReplicaCreate(CamelModel):
    """Body of ``POST /replica``. Visibility is not accepted here."""

    replica_id: uuid.UUID
    layer_id: int
    geometry_type: db_models.GeometryType
    replica_type: db_models.ReplicaType
    bucket_name: BucketName
    timestamp: pydantic.AwareDatetime
    sync_id: uuid.UUID | None = None

    def to_replica(self) -> db_models.Replica:
        return db_models.Replica(
            replica_id=self.replica_id,
            layer_id=self.layer_id,
            geometry_type=self.geometry_type,
            replica_type=self.replica_type,
            bucket_name=self.bucket_name,
            timestamp=self.timestamp,
            sync_id=self.sync_id,
        )


class ReplicaUpdate(CamelModel):
    """Body of ``PATCH /replica`` routes; unknown keys are rejected.

    ``replicaId`` is not a field, so attempts to change it fail validation.
    A null value leaves the field unchanged.
    """

    model_config = pydantic.ConfigDict(extra="forbid")

    layer_id: int | None = None
    geometry_type: db_models.GeometryType | None = None
    replica_type: db_models.ReplicaType | None = None
    bucket_name: BucketName | None = None
    timestamp: pydantic.AwareDatetime | None = None
    sync_id: uuid.UUID | None = None
    is_hidden: bool | None = None

    def to_metadata(self) -> db_models.ReplicaMetadata:
        return db_models.ReplicaMetadata(**self.model_dump())


class FileCreate(CamelModel):
    file_id: uuid.UUID


class ReplicaOut(CamelModel):
    """Public representation of a replica with one URL per file."""

    replica_type: db_models.ReplicaType
    layer_id: int
    geometry_type: db_models.GeometryType
    timestamp: datetime.datetime
    urls: list[str]

    @classmethod
    def from_response(
        cls, response: db_models.ReplicaResponse
    ) -> "ReplicaOut":
        return cls(**dataclasses.asdict(response))


class LayerOut(CamelModel):
    layer_id: int
    layer_name: str
    geometry_types: list[db_models.GeometryType]
