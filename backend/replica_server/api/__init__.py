"""API router subpackage for the replica server.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.

Submodules:
    - replicas: Query, creation, update and deletion of replicas and files.
    - layers: Read-only listing of layers.
    - schemas: camelCase request and response bodies.
    - dependencies: Dependencies shared by the routers.
"""
