"""FastAPI dependencies shared by the routers."""

import fastapi

from replica_server.db import database


def get_database(request: fastapi.Request) -> database.Database:
    """Return the database handle created by the application factory.

    Args:
        request: Incoming request, used to reach ``app.state``.

    Returns:
        The Database shared by every repository of the application.
    """
    return request.app.state.database
