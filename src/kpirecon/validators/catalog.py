"""JSON Schema validation of serialized KPI catalogs, failing closed.

A catalog is the serialized collection rewritten by migrations:

    {"entityType": "KPI", "version": "1", "data": [{"id": ..., "formula": ..., "unit": ...}]}

Entries may carry any other display metadata; only the fields migrations
read are constrained.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Final

from jsonschema import Draft202012Validator

KPI_CATALOG_SCHEMA: Final[dict[str, Any]] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["data"],
    "properties": {
        "entityType": {"type": "string"},
        "version": {"type": "string"},
        "data": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "formula": {"type": ["string", "null"]},
                    "unit": {"type": ["string", "null"]},
                },
            },
        },
    },
}

_CATALOG_VALIDATOR = Draft202012Validator(KPI_CATALOG_SCHEMA)


@dataclass(frozen=True)
class ValidationError:
    """A single validation error."""

    code: str
    message: str
    path: str


@dataclass
class ValidationResult:
    """Result of validation - fail-closed by default."""

    passed: bool
    errors: list[ValidationError] = field(default_factory=list)

    @classmethod
    def fail(cls, errors: list[ValidationError]) -> ValidationResult:
        """Create a failed result."""
        return cls(passed=False, errors=errors)

    @classmethod
    def success(cls) -> ValidationResult:
        """Create a successful result."""
        return cls(passed=True)

    @classmethod
    def fail_closed(cls, reason: str) -> ValidationResult:
        """Fail closed with a single error - used when validation cannot proceed."""
        return cls(
            passed=False,
            errors=[ValidationError(code="FAIL_CLOSED", message=reason, path="$")],
        )


class CatalogValidationError(Exception):
    """Raised when a KPI catalog does not match its schema."""

    def __init__(self, result: ValidationResult) -> None:
        self.result = result
        details = "; ".join(f"{e.path}: {e.message}" for e in result.errors[:5])
        super().__init__(f"Invalid KPI catalog: {details}")


def _format_path(parts: Any) -> str:
    return "$" + "".join(f".{p}" if isinstance(p, str) else f"[{p}]" for p in parts)


def validate_kpi_catalog(data: Any) -> ValidationResult:
    """Validate a parsed KPI catalog.

    Returns:
        ValidationResult; fails closed when data is None.
    """
    if data is None:
        return ValidationResult.fail_closed("Data is None - cannot validate")

    errors = [
        ValidationError(
            code=str(error.validator),
            message=error.message,
            path=_format_path(error.absolute_path),
        )
        for error in _CATALOG_VALIDATOR.iter_errors(data)
    ]
    errors.sort(key=lambda e: (e.path, e.code))
    if errors:
        return ValidationResult.fail(errors)
    return ValidationResult.success()
