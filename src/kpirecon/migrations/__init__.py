"""Explicit, idempotent data migrations over serialized KPI catalogs."""

from kpirecon.migrations.percentage_scaling import (
    FormulaChange,
    MigrationResult,
    migrate_catalog,
    migrate_catalog_file,
    strip_percentage_scaling,
)

__all__ = [
    "FormulaChange",
    "MigrationResult",
    "migrate_catalog",
    "migrate_catalog_file",
    "strip_percentage_scaling",
]
