"""Persistence layer for replicas, files and layers.

Submodules:
    - models: Dataclasses for replicas, files, layers and update metadata.
    - filters: Frozen filter objects and the timestamp range predicate.
    - database: Connection pool, transaction scope and table creation.
    - replicas: Replica and file repositories (in-memory and PostgreSQL).
    - layers: Read-only layer repositories (in-memory and PostgreSQL).

Example:
    Wire PostgreSQL repositories to a shared database handle:
        >>> from replica_server.core import config
        >>> from replica_server.db import database, replicas
        >>> db = database.Database(config.get_settings())
        >>> replica_repo = replicas.PostgresReplicaRepository(db)
"""
