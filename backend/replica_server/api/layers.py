"""Layer listing API endpoint.

Layers are read-only here; they are registered by other systems and only
referenced by replicas through their id.

Example:
    List all layers:
        >>> response = client.get("/layer")
        >>> response.json()
        >>> # Returns: [{"layerId": 1, "layerName": "roads",
        >>> #            "geometryTypes": ["linestring"]}, ...]
"""

import fastapi

from replica_server.api import dependencies, schemas
from replica_server.db import database, layers

router = fastapi.APIRouter(prefix="/layer", tags=["layers"])


def _get_repo(
    db: database.Database = fastapi.Depends(dependencies.get_database),  # noqa: B008
) -> layers.LayerRepositoryProtocol:
    """Resolve the layer repository dependency.

    Args:
        db: Database handle (injected via FastAPI Depends).

    Returns:
        LayerRepositoryProtocol implementation
            (PostgresLayerRepository in production).
    """
    return layers.PostgresLayerRepository(db)


@router.get("")
def list_layers(
    repo: layers.LayerRepositoryProtocol = fastapi.Depends(_get_repo),  # noqa: B008
) -> list[schemas.LayerOut]:
    """List all layers ordered by layer id.

    Args:
        repo: Layer repository (injected via FastAPI Depends).

    Returns:
        List of layers with their name and geometry types.
    """
    return [
        schemas.LayerOut(
            layer_id=layer.layer_id,
            layer_name=layer.layer_name,
            geometry_types=layer.geometry_types,
        )
        for layer in repo.all()
    ]
