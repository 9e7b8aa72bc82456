"""FastAPI application entrypoint and configuration.

This module provides the main FastAPI application factory that configures
logging, creates the shared database handle, sets up CORS middleware,
includes the replica and layer routers, maps errors to status codes and
exposes health check endpoints for monitoring.

Example:
    The application can be run with uvicorn:
        $ uvicorn replica_server.main:app --reload

    Or imported and used programmatically:
        >>> from replica_server.main import app
        >>> # Use app in ASGI server
"""

import contextlib
import logging
from collections.abc import AsyncIterator
from typing import cast

import fastapi
import psycopg2
from fastapi import encoders, exceptions, responses
from fastapi.middleware import cors

from replica_server.api import dependencies, layers, replicas
from replica_server.core import config
from replica_server.db import database
from replica_server.services import errors

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@contextlib.asynccontextmanager
async def _lifespan(app: fastapi.FastAPI) -> AsyncIterator[None]:
    yield
    app.state.database.close()


async def _validation_error_handler(
    _request: fastapi.Request, exc: Exception
) -> responses.JSONResponse:
    """Answer 400 for invalid query strings, paths and bodies."""
    detail = cast(exceptions.RequestValidationError, exc).errors()
    return responses.JSONResponse(
        status_code=400, content={"detail": encoders.jsonable_encoder(detail)}
    )


async def _database_error_handler(
    request: fastapi.Request, exc: Exception
) -> responses.JSONResponse:
    """Log a store failure and answer 500 without leaking its details."""
    logger.exception(
        "database error on %s %s", request.method, request.url.path, exc_info=exc
    )
    return responses.JSONResponse(
        status_code=500, content={"detail": "Internal Server Error"}
    )


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Configures the root logger from settings, creates the database handle
    (connections are only opened on first use), sets up CORS middleware,
    includes the replica and layer routers, registers error handlers and
    adds health check endpoints.

    Returns:
        Configured FastAPI application instance ready for ASGI server.

    Example:
        The app can be used with uvicorn or other ASGI servers:
            >>> app = create_app()
            >>> # Or use the module-level app instance:
            >>> from replica_server.main import app
    """
    settings = config.get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)

    app = fastapi.FastAPI(
        title="Replica Server", version="0.1.0", lifespan=_lifespan
    )
    app.state.database = database.Database(settings)

    app.include_router(replicas.router)
    app.include_router(layers.router)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(
        exceptions.RequestValidationError, _validation_error_handler
    )
    app.add_exception_handler(
        errors.ReplicaServerError, replicas.replica_error_handler
    )
    app.add_exception_handler(psycopg2.Error, _database_error_handler)

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers.

        Returns:
            Dictionary with status "ok" if the service is running.
        """
        return {"status": "ok"}

    @app.get("/health/db")
    def health_db(
        db: database.Database = fastapi.Depends(dependencies.get_database),  # noqa: B008
    ) -> responses.JSONResponse:
        """Check that the database answers a trivial query.

        Returns:
            200 with status "ok", or 503 with status "unavailable" when the
            query fails.
        """
        try:
            db.check_connection()
        except psycopg2.Error:
            logger.warning("database health check failed", exc_info=True)
            return responses.JSONResponse(
                status_code=503, content={"status": "unavailable"}
            )
        return responses.JSONResponse(status_code=200, content={"status": "ok"})

    return app


app = create_app()
