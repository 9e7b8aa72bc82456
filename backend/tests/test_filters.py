"""Unit tests for replica filters and the timestamp range predicate.

Covers the exclusive-lower, inclusive-upper range semantics, the forced
visibility of public filters, the optional fields of the private filter and
their rendering to parameterized SQL.

See Also:
    - backend/replica_server/db/filters.py for the implementation.
"""

from __future__ import annotations

import datetime
import uuid

import pytest

from replica_server.db import filters
from replica_server.db import models as db_models

T1 = datetime.datetime(2024, 1, 1, tzinfo=datetime.UTC)
T2 = datetime.datetime(2024, 2, 1, tzinfo=datetime.UTC)
T3 = datetime.datetime(2024, 3, 1, tzinfo=datetime.UTC)


def _replica(**overrides: object) -> db_models.Replica:
    values: dict[str, object] = {
        "replica_id": uuid.uuid4(),
        "layer_id": 5,
        "geometry_type": "point",
        "replica_type": "snapshot",
        "bucket_name": "replicas",
        "timestamp": T2,
        "is_hidden": False,
    }
    values.update(overrides)
    return db_models.Replica(**values)  # type: ignore[arg-type]


def test_build_range_filter_without_bounds() -> None:
    """Test that no bounds leave the field unconstrained."""
    assert filters.build_range_filter() is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [(T1, False), (T2, True), (T3, False)],
)
def test_range_boundaries(value: datetime.datetime, expected: bool) -> None:
    """Test that the lower bound is excluded and the upper bound included."""
    window = filters.build_range_filter(exclusive_from=T1, to=T2)
    assert window is not None
    assert window.matches(value) is expected


def test_range_lower_bound_only() -> None:
    """Test a range with only an exclusive lower bound."""
    window = filters.build_range_filter(exclusive_from=T1)
    assert window is not None
    assert not window.matches(T1)
    assert window.matches(T3)
    assert window.to_sql("ts") == (
        ["ts > %(exclusive_from)s"],
        {"exclusive_from": T1},
    )


def test_range_upper_bound_only() -> None:
    """Test a range with only an inclusive upper bound."""
    window = filters.build_range_filter(to=T2)
    assert window is not None
    assert window.matches(T1)
    assert window.matches(T2)
    assert not window.matches(T3)
    assert window.to_sql("ts") == (["ts <= %(to)s"], {"to": T2})


def test_inverted_range_matches_nothing() -> None:
    """Test that exclusive_from >= to is legal and empty."""
    window = filters.build_range_filter(exclusive_from=T2, to=T1)
    assert window is not None
    assert not any(window.matches(value) for value in (T1, T2, T3))


def test_base_filter_requires_visibility() -> None:
    """Test that the base filter never matches hidden replicas."""
    replica_filter = filters.BaseReplicaFilter(
        replica_type="snapshot", geometry_type="point", layer_id=5
    )
    assert replica_filter.matches(_replica())
    assert not replica_filter.matches(_replica(is_hidden=True))
    assert not replica_filter.matches(_replica(layer_id=6))
    assert not replica_filter.matches(_replica(replica_type="delta"))


def test_base_filter_sql_forces_visibility() -> None:
    """Test that the base filter renders is_hidden = false."""
    clauses, params = filters.BaseReplicaFilter(
        replica_type="delta", geometry_type="polygon", layer_id=1
    ).to_sql()
    assert "is_hidden = false" in clauses
    assert params == {
        "replica_type": "delta",
        "geometry_type": "polygon",
        "layer_id": 1,
    }


def test_public_filter_applies_range() -> None:
    """Test that the public filter adds the timestamp range."""
    replica_filter = filters.PublicReplicaFilter(
        replica_type="snapshot",
        geometry_type="point",
        layer_id=5,
        exclusive_from=T2,
    )
    assert not replica_filter.matches(_replica(timestamp=T2))
    assert replica_filter.matches(_replica(timestamp=T3))
    clauses, params = replica_filter.to_sql()
    assert '"timestamp" > %(exclusive_from)s' in clauses
    assert params["exclusive_from"] == T2
    assert "to" not in params


def test_private_filter_empty_matches_everything() -> None:
    """Test that an empty private filter matches hidden replicas too."""
    replica_filter = filters.PrivateReplicaFilter()
    assert replica_filter.matches(_replica(is_hidden=True))
    assert replica_filter.matches(_replica())
    assert replica_filter.to_sql() == ([], {})


def test_private_filter_fields() -> None:
    """Test that set private fields constrain the match."""
    sync_id = uuid.uuid4()
    replica_filter = filters.PrivateReplicaFilter(
        sync_id=sync_id, is_hidden=True, to=T2
    )
    assert replica_filter.matches(_replica(sync_id=sync_id, is_hidden=True))
    assert not replica_filter.matches(_replica(sync_id=sync_id))
    assert not replica_filter.matches(
        _replica(sync_id=sync_id, is_hidden=True, timestamp=T3)
    )
    clauses, params = replica_filter.to_sql()
    assert clauses == [
        "sync_id = %(sync_id)s",
        "is_hidden = %(is_hidden)s",
        '"timestamp" <= %(to)s',
    ]
    assert params == {"sync_id": sync_id, "is_hidden": True, "to": T2}


def test_where_clause() -> None:
    """Test that clauses join with AND and nothing yields no WHERE."""
    assert filters.where_clause([]) == ""
    assert filters.where_clause(["a = 1", "b = 2"]) == "WHERE a = 1 AND b = 2"
