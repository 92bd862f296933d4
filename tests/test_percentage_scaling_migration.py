"""Tests for the percentage-scaling catalog migration.

Tests verify:
- Trailing * 100 is stripped only for '%' unit formulas
- The rewrite is idempotent
- All other entry fields survive untouched
- Invalid catalogs fail closed before anything is written
"""

from __future__ import annotations

import copy
import json
from pathlib import Path

import pytest

from kpirecon.calc.evaluator import evaluate
from kpirecon.migrations.percentage_scaling import (
    migrate_catalog,
    migrate_catalog_file,
    strip_percentage_scaling,
)
from kpirecon.validators.catalog import CatalogValidationError, validate_kpi_catalog
from tests.fixtures.snapshots import KPI_CATALOG


class TestStripPercentageScaling:
    """Single-formula rewrite."""

    @pytest.mark.parametrize(
        ("formula", "expected"),
        [
            ("(a / b) * 100", "(a / b);"),
            ("(a / b)*100", "(a / b);"),
            ("(a / b) * 100;", "(a / b);"),
            ("(a / b) * 100 ; ", "(a / b);"),
            ("a / b * 100 * 100", "a / b;"),
            ("(a / b) * 100.0", "(a / b);"),
        ],
    )
    def test_strips_trailing_scaling(self, formula: str, expected: str) -> None:
        """Trailing scaling factors are replaced with a terminator."""
        assert strip_percentage_scaling(formula, "%") == expected

    def test_other_units_unchanged(self) -> None:
        """Only '%' unit formulas are rewritten."""
        assert strip_percentage_scaling("revenue * 100", "SAR") == "revenue * 100"
        assert strip_percentage_scaling("revenue * 100", None) == "revenue * 100"

    def test_non_trailing_scaling_unchanged(self) -> None:
        """A * 100 factor in the middle of a formula is left alone."""
        assert strip_percentage_scaling("a * 100 / b", "%") == "a * 100 / b"
        assert strip_percentage_scaling("a * 1000", "%") == "a * 1000"

    @pytest.mark.parametrize(
        "formula",
        ["(a / b) * 100 * 100", "a * 100 ; * 100", "a;* 100", "a * 100;; * 100 ;"],
    )
    def test_idempotent(self, formula: str) -> None:
        """Applying the rewrite twice equals applying it once."""
        once = strip_percentage_scaling(formula, "%")
        assert strip_percentage_scaling(once, "%") == once
        assert "100" not in once

    def test_terminators_between_factors(self) -> None:
        """Terminators interleaved with scaling factors are stripped in one pass."""
        assert strip_percentage_scaling("a * 100 ; * 100", "%") == "a;"

    def test_rewritten_formula_still_evaluates(self) -> None:
        """The terminator is accepted by the evaluator."""
        rewritten = strip_percentage_scaling("(a / b) * 100", "%")
        assert evaluate(rewritten, {"a": 1, "b": 4}) == pytest.approx(0.25)


class TestMigrateCatalog:
    """Whole-catalog rewrite."""

    def test_only_percentage_entry_changes(self) -> None:
        """kpi-001 is rewritten; the other entries are untouched."""
        result = migrate_catalog(KPI_CATALOG)
        assert [c.entry_id for c in result.changes] == ["kpi-001"]
        entries = {e["id"]: e for e in result.catalog["data"]}
        assert entries["kpi-001"]["formula"] == "(engagements / impressions);"
        assert entries["kpi-002"]["formula"] == "revenue * 100"
        assert entries["kpi-003"]["formula"] == "score"
        assert "formula" not in entries["kpi-004"]

    def test_other_fields_preserved(self) -> None:
        """Only the formula field differs; key order is unchanged."""
        result = migrate_catalog(KPI_CATALOG)
        before = KPI_CATALOG["data"][0]
        after = result.catalog["data"][0]
        assert list(after) == list(before)
        assert {k: v for k, v in after.items() if k != "formula"} == {
            k: v for k, v in before.items() if k != "formula"
        }
        assert result.catalog["entityType"] == "KPI"
        assert result.catalog["version"] == "1.0"

    def test_input_not_mutated(self) -> None:
        """The caller's catalog is left as it was."""
        catalog = copy.deepcopy(KPI_CATALOG)
        migrate_catalog(catalog)
        assert catalog == KPI_CATALOG

    def test_second_pass_changes_nothing(self) -> None:
        """Migrating an already-migrated catalog is a no-op."""
        first = migrate_catalog(KPI_CATALOG)
        second = migrate_catalog(first.catalog)
        assert second.changes == []
        assert second.catalog == first.catalog

    def test_change_to_dict(self) -> None:
        """Changes serialize as id/old/new."""
        change = migrate_catalog(KPI_CATALOG).changes[0]
        assert change.to_dict() == {
            "id": "kpi-001",
            "new": "(engagements / impressions);",
            "old": "(engagements / impressions) * 100",
        }

    def test_invalid_catalog_rejected(self) -> None:
        """A catalog without data fails validation."""
        with pytest.raises(CatalogValidationError) as exc_info:
            migrate_catalog({"entityType": "KPI"})
        assert not exc_info.value.result.passed


class TestCatalogValidation:
    """Schema checks."""

    def test_fixture_catalog_is_valid(self) -> None:
        assert validate_kpi_catalog(KPI_CATALOG).passed

    def test_none_fails_closed(self) -> None:
        """None cannot be validated."""
        result = validate_kpi_catalog(None)
        assert not result.passed
        assert result.errors[0].code == "FAIL_CLOSED"

    def test_error_paths(self) -> None:
        """Errors point at the offending entry."""
        result = validate_kpi_catalog({"data": [{"id": "ok"}, {"formula": 3}]})
        assert not result.passed
        paths = {e.path for e in result.errors}
        assert "$.data[1]" in paths
        assert "$.data[1].formula" in paths


class TestMigrateCatalogFile:
    """In-place file rewrite."""

    def test_file_rewritten(self, catalog_file: Path) -> None:
        """The fixed catalog is written back with two-space indentation."""
        result = migrate_catalog_file(catalog_file)
        assert result.changed
        text = catalog_file.read_text(encoding="utf-8")
        assert text.endswith("}\n")
        assert '\n  "entityType": "KPI"' in text
        written = json.loads(text)
        assert written["data"][0]["formula"] == "(engagements / impressions);"

    def test_non_ascii_text_preserved(self, catalog_file: Path) -> None:
        """Arabic names are written as-is, not escaped."""
        migrate_catalog_file(catalog_file)
        assert "معدل التفاعل الرقمي" in catalog_file.read_text(encoding="utf-8")

    def test_dry_run_leaves_file(self, catalog_file: Path) -> None:
        """Dry runs report changes without writing."""
        before = catalog_file.read_text(encoding="utf-8")
        result = migrate_catalog_file(catalog_file, dry_run=True)
        assert len(result.changes) == 1
        assert catalog_file.read_text(encoding="utf-8") == before

    def test_unchanged_catalog_not_rewritten(self, catalog_file: Path) -> None:
        """A second run leaves the file byte-identical."""
        migrate_catalog_file(catalog_file)
        after_first = catalog_file.read_text(encoding="utf-8")
        result = migrate_catalog_file(catalog_file)
        assert not result.changed
        assert catalog_file.read_text(encoding="utf-8") == after_first

    def test_invalid_json_fails_closed(self, tmp_path: Path) -> None:
        """Unparseable files raise without being touched."""
        path = tmp_path / "kpis.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(CatalogValidationError) as exc_info:
            migrate_catalog_file(path)
        assert exc_info.value.result.errors[0].code == "FAIL_CLOSED"
        assert path.read_text(encoding="utf-8") == "{not json"

    def test_missing_file_fails_closed(self, tmp_path: Path) -> None:
        """A missing file is a validation failure, not a crash."""
        with pytest.raises(CatalogValidationError):
            migrate_catalog_file(tmp_path / "absent.json")
