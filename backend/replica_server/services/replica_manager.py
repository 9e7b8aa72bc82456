"""Replica lifecycle: existence checks, visibility and URL derivation.

The manager sits between the HTTP layer and the repositories. It turns
missing rows into ``ReplicaNotFoundError``, refuses duplicate replica and
file ids, creates every replica hidden, and renders replicas into their
public shape with one display URL per file.

A replica moves through three states:

- Hidden: the initial state after ``create_replica``.
- Visible: reached only through an update setting ``is_hidden`` to false,
  and left again by setting it back to true.
- Deleted: terminal, reachable from both other states.

Read operations only ever see visible replicas. Bulk update and delete
through a ``PrivateReplicaFilter`` can reach hidden ones.

Store failures (``psycopg2.Error``) are not caught here.

Example:
    >>> from replica_server.core import config
    >>> from replica_server.db import replicas
    >>> store = replicas.InMemoryStore()
    >>> manager = ReplicaManager(
    ...     replicas.InMemoryReplicaRepository(store),
    ...     replicas.InMemoryFileRepository(store),
    ...     config.Settings(),
    ... )
"""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING

from replica_server.db import models as db_models
from replica_server.services import errors
from replica_server.utils import urls

if TYPE_CHECKING:
    import uuid

    from replica_server.core import config
    from replica_server.db import filters
    from replica_server.db import replicas

logger = logging.getLogger(__name__)


class ReplicaManager:
    """Coordinates replica and file repositories for one request."""

    def __init__(
        self,
        replica_repository: replicas.ReplicaRepositoryProtocol,
        file_repository: replicas.FileRepositoryProtocol,
        settings: config.Settings,
    ) -> None:
        self.replica_repository = replica_repository
        self.file_repository = file_repository
        self.settings = settings

    def get_replica_by_id(
        self, replica_id: uuid.UUID
    ) -> db_models.ReplicaResponse:
        """Return a visible replica with its file URLs.

        Raises:
            ReplicaNotFoundError: If the replica does not exist or is hidden.
        """
        replica = self.replica_repository.find_one_replica_with_files(
            replica_id
        )
        if replica is None:
            logger.debug("visible replica %s not found", replica_id)
            raise errors.ReplicaNotFoundError.for_id(replica_id)
        return self.to_response(replica)

    def get_latest_replica(
        self, base_filter: filters.BaseReplicaFilter
    ) -> db_models.ReplicaResponse:
        """Return the visible replica with the greatest timestamp.

        Raises:
            ReplicaNotFoundError: If no visible replica matches the filter.
        """
        replica = self.replica_repository.find_latest_replica_with_files(
            base_filter
        )
        if replica is None:
            logger.debug("no latest replica for %s", base_filter)
            raise errors.ReplicaNotFoundError.for_latest(
                base_filter.replica_type,
                base_filter.geometry_type,
                base_filter.layer_id,
            )
        return self.to_response(replica)

    def get_replicas(
        self, public_filter: filters.PublicReplicaFilter
    ) -> list[db_models.ReplicaResponse]:
        return [
            self.to_response(replica)
            for replica in self.replica_repository.find_replicas(public_filter)
        ]

    def create_replica(self, replica: db_models.Replica) -> None:
        """Store a new replica; it stays hidden until explicitly revealed.

        Args:
            replica: Replica to create. ``is_hidden`` is ignored.

        Raises:
            ReplicaAlreadyExistsError: If the replica id is already taken.
        """
        existing = self.replica_repository.find_one_replica(replica.replica_id)
        if existing is not None:
            raise errors.ReplicaAlreadyExistsError(replica.replica_id)
        self.replica_repository.create_replica(
            dataclasses.replace(replica, is_hidden=True)
        )
        logger.info(
            "created replica %s on layer %s", replica.replica_id, replica.layer_id
        )

    def create_file_on_replica(
        self, replica_id: uuid.UUID, file_id: uuid.UUID
    ) -> db_models.File:
        """Attach a file id to an existing replica.

        Raises:
            ReplicaNotFoundError: If the replica does not exist.
            FileAlreadyExistsError: If the file id is already used.
        """
        if self.replica_repository.find_one_replica(replica_id) is None:
            logger.debug("replica %s not found for new file", replica_id)
            raise errors.ReplicaNotFoundError.for_id(replica_id)
        if self.file_repository.find_one_file(file_id) is not None:
            raise errors.FileAlreadyExistsError(file_id)
        file = self.file_repository.create_file_on_replica(replica_id, file_id)
        logger.info("created file %s on replica %s", file_id, replica_id)
        return file

    def update_replica(
        self, replica_id: uuid.UUID, metadata: db_models.ReplicaMetadata
    ) -> None:
        """Apply partial metadata to one replica, hidden or not.

        Raises:
            ReplicaNotFoundError: If the replica does not exist.
        """
        if self.replica_repository.find_one_replica(replica_id) is None:
            logger.debug("replica %s not found for update", replica_id)
            raise errors.ReplicaNotFoundError.for_id(replica_id)
        self.replica_repository.update_one_replica(replica_id, metadata)
        logger.info(
            "updated replica %s: %s", replica_id, sorted(metadata.changes())
        )

    def update_replicas(
        self,
        private_filter: filters.PrivateReplicaFilter,
        metadata: db_models.ReplicaMetadata,
    ) -> None:
        self.replica_repository.update_replicas(private_filter, metadata)
        logger.info(
            "updated replicas matching %s: %s",
            private_filter,
            sorted(metadata.changes()),
        )

    def delete_replica(
        self, replica_id: uuid.UUID
    ) -> db_models.ReplicaResponse:
        """Delete a replica and its files, returning what was removed.

        Raises:
            ReplicaNotFoundError: If nothing was deleted.
        """
        deleted = self.replica_repository.delete_one_replica(replica_id)
        if deleted is None:
            logger.debug("replica %s not found for delete", replica_id)
            raise errors.ReplicaNotFoundError.for_id(replica_id)
        logger.info(
            "deleted replica %s with %d files", replica_id, len(deleted.files)
        )
        return self.to_response(deleted)

    def delete_replicas(
        self, private_filter: filters.PrivateReplicaFilter
    ) -> list[db_models.ReplicaResponse]:
        deleted = self.replica_repository.delete_replicas(private_filter)
        logger.info(
            "deleted %d replicas matching %s", len(deleted), private_filter
        )
        return [self.to_response(replica) for replica in deleted]

    def to_response(
        self, replica: db_models.ReplicaWithFiles
    ) -> db_models.ReplicaResponse:
        """Render a replica into its public shape with file URLs."""
        sub_paths = [
            urls.bucket_segment(
                replica.bucket_name, self.settings.object_storage_project_id
            ),
            replica.layer_id,
            replica.geometry_type,
        ]
        return db_models.ReplicaResponse(
            replica_type=replica.replica_type,
            layer_id=replica.layer_id,
            geometry_type=replica.geometry_type,
            timestamp=replica.timestamp,
            urls=urls.create_url_paths(
                self.settings.object_storage_url_header,
                sub_paths,
                [file.file_id for file in replica.files],
            ),
        )
