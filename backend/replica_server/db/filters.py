"""Replica filters and the timestamp range predicate.

Filters are immutable option objects. Each field is either set, in which
case the replica must match it exactly, or ``None`` which leaves the field
unconstrained. Every filter can be evaluated in Python through ``matches``
(used by the in-memory repository) and rendered to parameterized SQL through
``to_sql`` (used by the PostgreSQL repository).

Three filters exist:

- ``BaseReplicaFilter``: replica type, geometry type and layer id, all
  required. Used to look up the latest visible replica.
- ``PublicReplicaFilter``: the base filter plus an optional timestamp range
  and sort order. Read paths always force ``is_hidden = false``.
- ``PrivateReplicaFilter``: every field optional, plus ``sync_id`` and
  ``is_hidden``. Used by administrative bulk update and delete which must be
  able to reach hidden replicas.

The timestamp range is exclusive at its lower bound and inclusive at its
upper bound. A caller can therefore walk through replicas in
non-overlapping windows by moving ``exclusive_from`` to the last timestamp
it processed.

Example:
    >>> import datetime
    >>> from replica_server.db import filters
    >>> t1 = datetime.datetime(2024, 1, 1, tzinfo=datetime.UTC)
    >>> t2 = datetime.datetime(2024, 2, 1, tzinfo=datetime.UTC)
    >>> window = filters.build_range_filter(exclusive_from=t1, to=t2)
    >>> window.matches(t1), window.matches(t2)
    (False, True)
    >>> window.to_sql("ts")
    (['ts > %(exclusive_from)s', 'ts <= %(to)s'], {...})
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import datetime
    import uuid

    from replica_server.db import models as db_models

SqlFragment = tuple[list[str], dict[str, Any]]

# "timestamp" is a type keyword in PostgreSQL
TIMESTAMP_COLUMN = '"timestamp"'


@dataclasses.dataclass(frozen=True)
class RangeFilter:
    """Predicate ``exclusive_from < value <= to`` with optional bounds."""

    exclusive_from: datetime.datetime | None = None
    to: datetime.datetime | None = None

    def matches(self, value: datetime.datetime) -> bool:
        if self.exclusive_from is not None and not value > self.exclusive_from:
            return False
        if self.to is not None and not value <= self.to:
            return False
        return True

    def to_sql(self, column: str) -> SqlFragment:
        """Render the predicate against ``column``.

        Args:
            column: Trusted column name the bounds apply to.

        Returns:
            Tuple of SQL conditions (to be joined with AND) and the named
            parameters they reference.
        """
        clauses: list[str] = []
        params: dict[str, Any] = {}
        if self.exclusive_from is not None:
            clauses.append(f"{column} > %(exclusive_from)s")
            params["exclusive_from"] = self.exclusive_from
        if self.to is not None:
            clauses.append(f"{column} <= %(to)s")
            params["to"] = self.to
        return clauses, params


def build_range_filter(
    exclusive_from: datetime.datetime | None = None,
    to: datetime.datetime | None = None,
) -> RangeFilter | None:
    """Translate an optional bound pair into a single range predicate.

    Args:
        exclusive_from: Lower bound, values equal to it are excluded.
        to: Upper bound, values equal to it are included.

    Returns:
        A RangeFilter, or None when neither bound is given and the field
        is left unconstrained.
    """
    if exclusive_from is None and to is None:
        return None
    return RangeFilter(exclusive_from=exclusive_from, to=to)


def _equality_sql(values: dict[str, Any]) -> SqlFragment:
    clauses: list[str] = []
    params: dict[str, Any] = {}
    for column, value in values.items():
        if value is None:
            continue
        clauses.append(f"{column} = %({column})s")
        params[column] = value
    return clauses, params


def _equality_matches(replica: db_models.Replica, values: dict[str, Any]) -> bool:
    return all(
        getattr(replica, name) == value
        for name, value in values.items()
        if value is not None
    )


@dataclasses.dataclass(frozen=True)
class BaseReplicaFilter:
    replica_type: db_models.ReplicaType
    geometry_type: db_models.GeometryType
    layer_id: int

    def _equalities(self) -> dict[str, Any]:
        return {
            "replica_type": self.replica_type,
            "geometry_type": self.geometry_type,
            "layer_id": self.layer_id,
        }

    def matches(self, replica: db_models.Replica) -> bool:
        """Visible replicas with the same type, geometry and layer match."""
        return not replica.is_hidden and _equality_matches(
            replica, self._equalities()
        )

    def to_sql(self) -> SqlFragment:
        clauses, params = _equality_sql(self._equalities())
        clauses.append("is_hidden = false")
        return clauses, params


@dataclasses.dataclass(frozen=True)
class PublicReplicaFilter(BaseReplicaFilter):
    exclusive_from: datetime.datetime | None = None
    to: datetime.datetime | None = None
    sort: db_models.SortOrder = "desc"

    @property
    def timestamp_range(self) -> RangeFilter | None:
        return build_range_filter(self.exclusive_from, self.to)

    def matches(self, replica: db_models.Replica) -> bool:
        if not super().matches(replica):
            return False
        window = self.timestamp_range
        return window is None or window.matches(replica.timestamp)

    def to_sql(self) -> SqlFragment:
        clauses, params = super().to_sql()
        window = self.timestamp_range
        if window is not None:
            range_clauses, range_params = window.to_sql(TIMESTAMP_COLUMN)
            clauses.extend(range_clauses)
            params.update(range_params)
        return clauses, params


@dataclasses.dataclass(frozen=True)
class PrivateReplicaFilter:
    """Administrative filter, visibility is only constrained when given."""

    replica_type: db_models.ReplicaType | None = None
    geometry_type: db_models.GeometryType | None = None
    layer_id: int | None = None
    sync_id: uuid.UUID | None = None
    is_hidden: bool | None = None
    exclusive_from: datetime.datetime | None = None
    to: datetime.datetime | None = None

    @property
    def timestamp_range(self) -> RangeFilter | None:
        return build_range_filter(self.exclusive_from, self.to)

    def _equalities(self) -> dict[str, Any]:
        return {
            "replica_type": self.replica_type,
            "geometry_type": self.geometry_type,
            "layer_id": self.layer_id,
            "sync_id": self.sync_id,
            "is_hidden": self.is_hidden,
        }

    def matches(self, replica: db_models.Replica) -> bool:
        if not _equality_matches(replica, self._equalities()):
            return False
        window = self.timestamp_range
        return window is None or window.matches(replica.timestamp)

    def to_sql(self) -> SqlFragment:
        clauses, params = _equality_sql(self._equalities())
        window = self.timestamp_range
        if window is not None:
            range_clauses, range_params = window.to_sql(TIMESTAMP_COLUMN)
            clauses.extend(range_clauses)
            params.update(range_params)
        return clauses, params


def where_clause(clauses: list[str]) -> str:
    """Join conditions into a WHERE clause, empty when unconstrained."""
    if not clauses:
        return ""
    return "WHERE " + " AND ".join(clauses)
