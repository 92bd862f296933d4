"""Deterministic snapshot fixtures for kpirecon tests."""

from tests.fixtures.snapshots.entities_fixture import (
    KPI_CATALOG,
    Q1_END,
    Q1_START,
    Q2_END,
    Q2_START,
    SNAPSHOT,
    SNAPSHOT_ENTITIES,
    make_entity,
    make_entity_data,
    make_period,
)

__all__ = [
    "KPI_CATALOG",
    "Q1_END",
    "Q1_START",
    "Q2_END",
    "Q2_START",
    "SNAPSHOT",
    "SNAPSHOT_ENTITIES",
    "make_entity",
    "make_entity_data",
    "make_period",
]
