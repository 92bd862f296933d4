"""Input validators (fail-closed)."""

from kpirecon.validators.catalog import (
    CatalogValidationError,
    ValidationError,
    ValidationResult,
    validate_kpi_catalog,
)

__all__ = [
    "CatalogValidationError",
    "ValidationError",
    "ValidationResult",
    "validate_kpi_catalog",
]
