"""Typed errors raised by the replica lifecycle manager."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import uuid


class ReplicaServerError(Exception):
    """Base class of every error raised by the service layer."""


class ReplicaNotFoundError(ReplicaServerError):
    @classmethod
    def for_id(cls, replica_id: uuid.UUID) -> ReplicaNotFoundError:
        return cls(f"replica with id {replica_id} was not found")

    @classmethod
    def for_latest(
        cls, replica_type: str, geometry_type: str, layer_id: int
    ) -> ReplicaNotFoundError:
        return cls(
            f"replica of type {replica_type} with geometry type of "
            f"{geometry_type} on layer {layer_id} was not found"
        )


class ReplicaAlreadyExistsError(ReplicaServerError):
    def __init__(self, replica_id: uuid.UUID) -> None:
        super().__init__(f"replica with id {replica_id} already exists")
        self.replica_id = replica_id


class FileAlreadyExistsError(ReplicaServerError):
    def __init__(self, file_id: uuid.UUID) -> None:
        super().__init__(f"file with id {file_id} already exists")
        self.file_id = file_id
