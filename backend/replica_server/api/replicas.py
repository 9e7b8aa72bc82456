"""Replica query and mutation API endpoints.

This module exposes the replica lifecycle over HTTP. Read endpoints only
ever return visible replicas; administrative bulk update and delete take a
private filter from the query string and can reach hidden replicas too.

Query parameters are snake_case, JSON bodies camelCase. Typed service
errors are turned into status codes by ``replica_error_handler``:
404 for unknown replicas and 409 for duplicate replica or file ids.

Example:
    Create a replica, attach a file and reveal it:
        >>> client.post("/replica", json={
        ...     "replicaId": replica_id,
        ...     "layerId": 5,
        ...     "geometryType": "point",
        ...     "replicaType": "snapshot",
        ...     "bucketName": "replicas",
        ...     "timestamp": "2024-01-01T00:00:00Z",
        ... })
        >>> client.post(f"/replica/{replica_id}/file", json={"fileId": file_id})
        >>> client.patch(f"/replica/{replica_id}", json={"isHidden": False})

    Page through snapshots newer than a known timestamp:
        >>> client.get("/replica", params={
        ...     "replica_type": "snapshot",
        ...     "geometry_type": "point",
        ...     "layer_id": 5,
        ...     "exclusive_from": "2024-01-01T00:00:00Z",
        ...     "sort": "asc",
        ... })
"""

import uuid

import fastapi
import pydantic
from fastapi import responses

from replica_server.api import dependencies, schemas
from replica_server.core import config
from replica_server.db import database, filters, replicas
from replica_server.db import models as db_models
from replica_server.services import errors, replica_manager

router = fastapi.APIRouter(prefix="/replica", tags=["replicas"])

ERROR_STATUS_CODES: dict[type[errors.ReplicaServerError], int] = {
    errors.ReplicaNotFoundError: 404,
    errors.ReplicaAlreadyExistsError: 409,
    errors.FileAlreadyExistsError: 409,
}


async def replica_error_handler(
    _request: fastapi.Request, exc: Exception
) -> responses.JSONResponse:
    """Translate a service error into a JSON error response."""
    status_code = next(
        (
            code
            for error_type, code in ERROR_STATUS_CODES.items()
            if isinstance(exc, error_type)
        ),
        500,
    )
    return responses.JSONResponse(
        status_code=status_code, content={"detail": str(exc)}
    )


def _get_replica_repo(
    db: database.Database = fastapi.Depends(dependencies.get_database),  # noqa: B008
) -> replicas.ReplicaRepositoryProtocol:
    """Resolve the replica repository dependency.

    Args:
        db: Database handle (injected via FastAPI Depends).

    Returns:
        ReplicaRepositoryProtocol implementation
            (PostgresReplicaRepository in production).
    """
    return replicas.PostgresReplicaRepository(db)


def _get_file_repo(
    db: database.Database = fastapi.Depends(dependencies.get_database),  # noqa: B008
) -> replicas.FileRepositoryProtocol:
    return replicas.PostgresFileRepository(db)


def _get_manager(
    replica_repo: replicas.ReplicaRepositoryProtocol = fastapi.Depends(  # noqa: B008
        _get_replica_repo
    ),
    file_repo: replicas.FileRepositoryProtocol = fastapi.Depends(_get_file_repo),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> replica_manager.ReplicaManager:
    return replica_manager.ReplicaManager(replica_repo, file_repo, settings)


def _base_filter(
    replica_type: db_models.ReplicaType,
    geometry_type: db_models.GeometryType,
    layer_id: int,
) -> filters.BaseReplicaFilter:
    return filters.BaseReplicaFilter(
        replica_type=replica_type,
        geometry_type=geometry_type,
        layer_id=layer_id,
    )


def _public_filter(
    replica_type: db_models.ReplicaType,
    geometry_type: db_models.GeometryType,
    layer_id: int,
    exclusive_from: pydantic.AwareDatetime | None = None,
    to: pydantic.AwareDatetime | None = None,
    sort: db_models.SortOrder = "desc",
) -> filters.PublicReplicaFilter:
    return filters.PublicReplicaFilter(
        replica_type=replica_type,
        geometry_type=geometry_type,
        layer_id=layer_id,
        exclusive_from=exclusive_from,
        to=to,
        sort=sort,
    )


def _private_filter(
    replica_type: db_models.ReplicaType | None = None,
    geometry_type: db_models.GeometryType | None = None,
    layer_id: int | None = None,
    sync_id: uuid.UUID | None = None,
    is_hidden: bool | None = None,
    exclusive_from: pydantic.AwareDatetime | None = None,
    to: pydantic.AwareDatetime | None = None,
) -> filters.PrivateReplicaFilter:
    """Build the administrative filter; omitted fields match anything."""
    return filters.PrivateReplicaFilter(
        replica_type=replica_type,
        geometry_type=geometry_type,
        layer_id=layer_id,
        sync_id=sync_id,
        is_hidden=is_hidden,
        exclusive_from=exclusive_from,
        to=to,
    )


@router.get("")
def get_replicas(
    replica_filter: filters.PublicReplicaFilter = fastapi.Depends(_public_filter),  # noqa: B008
    manager: replica_manager.ReplicaManager = fastapi.Depends(_get_manager),  # noqa: B008
) -> list[schemas.ReplicaOut]:
    """List visible replicas of one layer, type and geometry.

    Results are ordered by timestamp, newest first unless ``sort=asc``.
    ``exclusive_from`` excludes replicas at exactly that timestamp while
    ``to`` includes them.

    Args:
        replica_filter: Public filter built from the query string.
        manager: Replica manager (injected via FastAPI Depends).

    Returns:
        List of replicas with their file URLs, possibly empty.
    """
    return [
        schemas.ReplicaOut.from_response(replica)
        for replica in manager.get_replicas(replica_filter)
    ]


@router.get("/latest")
def get_latest_replica(
    base_filter: filters.BaseReplicaFilter = fastapi.Depends(_base_filter),  # noqa: B008
    manager: replica_manager.ReplicaManager = fastapi.Depends(_get_manager),  # noqa: B008
) -> schemas.ReplicaOut:
    """Get the visible replica with the most recent timestamp.

    Raises:
        ReplicaNotFoundError: If no visible replica matches (404).
    """
    return schemas.ReplicaOut.from_response(
        manager.get_latest_replica(base_filter)
    )


@router.get("/{replica_id}")
def get_replica(
    replica_id: uuid.UUID,
    manager: replica_manager.ReplicaManager = fastapi.Depends(_get_manager),  # noqa: B008
) -> schemas.ReplicaOut:
    """Get a visible replica by id; hidden replicas answer 404."""
    return schemas.ReplicaOut.from_response(
        manager.get_replica_by_id(replica_id)
    )


@router.post("", status_code=201, response_class=fastapi.Response)
def post_replica(
    body: schemas.ReplicaCreate,
    manager: replica_manager.ReplicaManager = fastapi.Depends(_get_manager),  # noqa: B008
) -> fastapi.Response:
    """Create a hidden replica.

    Raises:
        ReplicaAlreadyExistsError: If the replica id is taken (409).
    """
    manager.create_replica(body.to_replica())
    return fastapi.Response(status_code=201)


@router.post(
    "/{replica_id}/file", status_code=201, response_class=fastapi.Response
)
def post_file(
    replica_id: uuid.UUID,
    body: schemas.FileCreate,
    manager: replica_manager.ReplicaManager = fastapi.Depends(_get_manager),  # noqa: B008
) -> fastapi.Response:
    """Attach a file id to a replica, hidden or not.

    Raises:
        ReplicaNotFoundError: If the replica does not exist (404).
        FileAlreadyExistsError: If the file id is taken (409).
    """
    manager.create_file_on_replica(replica_id, body.file_id)
    return fastapi.Response(status_code=201)


@router.patch("/{replica_id}", response_class=fastapi.Response)
def patch_replica(
    replica_id: uuid.UUID,
    body: schemas.ReplicaUpdate,
    manager: replica_manager.ReplicaManager = fastapi.Depends(_get_manager),  # noqa: B008
) -> fastapi.Response:
    """Update the given fields of one replica; ``isHidden`` toggles it."""
    manager.update_replica(replica_id, body.to_metadata())
    return fastapi.Response(status_code=200)


@router.patch("", response_class=fastapi.Response)
def patch_replicas(
    body: schemas.ReplicaUpdate,
    replica_filter: filters.PrivateReplicaFilter = fastapi.Depends(_private_filter),  # noqa: B008
    manager: replica_manager.ReplicaManager = fastapi.Depends(_get_manager),  # noqa: B008
) -> fastapi.Response:
    """Update every replica matching the private filter.

    Matching nothing is not an error.
    """
    manager.update_replicas(replica_filter, body.to_metadata())
    return fastapi.Response(status_code=200)


@router.delete("/{replica_id}")
def delete_replica(
    replica_id: uuid.UUID,
    manager: replica_manager.ReplicaManager = fastapi.Depends(_get_manager),  # noqa: B008
) -> schemas.ReplicaOut:
    """Delete a replica and its files, returning the deleted replica."""
    return schemas.ReplicaOut.from_response(manager.delete_replica(replica_id))


@router.delete("")
def delete_replicas(
    replica_filter: filters.PrivateReplicaFilter = fastapi.Depends(_private_filter),  # noqa: B008
    manager: replica_manager.ReplicaManager = fastapi.Depends(_get_manager),  # noqa: B008
) -> list[schemas.ReplicaOut]:
    """Delete every replica matching the private filter with its files.

    Returns:
        The deleted replicas, empty when nothing matched.
    """
    return [
        schemas.ReplicaOut.from_response(replica)
        for replica in manager.delete_replicas(replica_filter)
    ]
