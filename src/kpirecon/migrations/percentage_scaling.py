"""Strip redundant ``* 100`` scaling from percentage-unit formulas.

KPIs whose unit is already ``%`` must not multiply their ratio by 100 a
second time. The rewrite removes every trailing ``* 100`` factor and
terminates the formula with ``;``. Removing all trailing factors at once
makes the rewrite idempotent: a second application finds nothing to strip.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final

from kpirecon.validators.catalog import (
    CatalogValidationError,
    ValidationResult,
    validate_kpi_catalog,
)

logger = logging.getLogger(__name__)

PERCENT_UNIT: Final[str] = "%"

_TRAILING_SCALE: Final[re.Pattern[str]] = re.compile(r"(?:[\s;]*\*\s*100(?:\.0+)?)+[\s;]*$")


@dataclass(frozen=True)
class FormulaChange:
    """One rewritten catalog formula."""

    entry_id: str
    old_formula: str
    new_formula: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.entry_id, "new": self.new_formula, "old": self.old_formula}


@dataclass
class MigrationResult:
    """Updated catalog plus the formulas that changed."""

    catalog: dict[str, Any]
    changes: list[FormulaChange] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changes)


def strip_percentage_scaling(formula: str, unit: str | None) -> str:
    """Remove trailing ``* 100`` factors when the unit already implies a percentage.

    Formulas with another unit, or without trailing scaling, are returned unchanged.
    """
    if (unit or "").strip().lower() != PERCENT_UNIT:
        return formula
    if not _TRAILING_SCALE.search(formula):
        return formula
    return _TRAILING_SCALE.sub(";", formula, count=1)


def migrate_catalog(catalog: Any) -> MigrationResult:
    """Apply the percentage-scaling rewrite to every catalog entry.

    The input is not mutated. Every field other than ``formula`` is preserved,
    including key order.

    Raises:
        CatalogValidationError: If the catalog does not match its schema.
    """
    validation = validate_kpi_catalog(catalog)
    if not validation.passed:
        raise CatalogValidationError(validation)

    updated = copy.deepcopy(catalog)
    result = MigrationResult(catalog=updated)

    for entry in updated["data"]:
        formula = entry.get("formula")
        if not formula:
            continue
        new_formula = strip_percentage_scaling(formula, entry.get("unit"))
        if new_formula == formula:
            continue
        entry["formula"] = new_formula
        result.changes.append(
            FormulaChange(entry_id=entry["id"], old_formula=formula, new_formula=new_formula)
        )
        logger.info("Rewrote formula for %s: %r -> %r", entry["id"], formula, new_formula)

    return result


def migrate_catalog_file(path: Path | str, *, dry_run: bool = False) -> MigrationResult:
    """Migrate a catalog file in place.

    The file is only rewritten when at least one formula changed and dry_run is False.

    Raises:
        CatalogValidationError: If the file is unreadable, not JSON or fails the schema.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            catalog = json.load(f)
    except json.JSONDecodeError as e:
        raise CatalogValidationError(ValidationResult.fail_closed(f"Invalid JSON: {e}")) from e
    except OSError as e:
        raise CatalogValidationError(ValidationResult.fail_closed(f"Cannot read file: {e}")) from e

    result = migrate_catalog(catalog)

    if not result.changed:
        logger.info("No formulas needed fixing in %s", path)
        return result

    if dry_run:
        logger.info("Dry run: %d formula(s) would change in %s", len(result.changes), path)
        return result

    with path.open("w", encoding="utf-8") as f:
        json.dump(result.catalog, f, indent=2, ensure_ascii=False)
        f.write("\n")
    logger.info("Fixed %d formula(s) in %s", len(result.changes), path)
    return result
