"""Unit tests for replica_server.db.models domain models.

This module validates the Replica, ReplicaWithFiles and ReplicaMetadata
structures, ensuring correct defaults and the partial-update contract.

See Also:
    - backend/replica_server/db/models.py for the implementation.
"""

from __future__ import annotations

import datetime
import uuid

from replica_server.db import models as db_models

TIMESTAMP = datetime.datetime(2024, 1, 1, tzinfo=datetime.UTC)


def _replica() -> db_models.Replica:
    return db_models.Replica(
        replica_id=uuid.uuid4(),
        layer_id=5,
        geometry_type="point",
        replica_type="snapshot",
        bucket_name="replicas",
        timestamp=TIMESTAMP,
    )


def test_replica_defaults() -> None:
    """Test that a new replica is hidden and has no sync id."""
    replica = _replica()
    assert replica.is_hidden is True
    assert replica.sync_id is None
    assert replica.created_at.tzinfo is not None


def test_replica_with_files_from_replica() -> None:
    """Test that from_replica copies every field and attaches files."""
    replica = _replica()
    file = db_models.File(file_id=uuid.uuid4(), replica_id=replica.replica_id)
    with_files = db_models.ReplicaWithFiles.from_replica(replica, [file])
    assert with_files.replica_id == replica.replica_id
    assert with_files.timestamp == TIMESTAMP
    assert with_files.bucket_name == "replicas"
    assert with_files.files == [file]


def test_replica_with_files_defaults_to_no_files() -> None:
    """Test that from_replica without files yields an empty list."""
    with_files = db_models.ReplicaWithFiles.from_replica(_replica())
    assert with_files.files == []


def test_replica_metadata_changes_only_set_fields() -> None:
    """Test that unset metadata fields are left out of changes."""
    metadata = db_models.ReplicaMetadata(is_hidden=False, layer_id=7)
    assert metadata.changes() == {"layer_id": 7, "is_hidden": False}


def test_replica_metadata_empty() -> None:
    """Test that empty metadata has no changes."""
    assert db_models.ReplicaMetadata().changes() == {}
