"""Tests for the batch reconciliation job.

Tests verify:
- One classification per (entity, period) and a complete tally
- Soft-deleted entities are skipped
- ERRORED entities do not abort the run
- Parallel and sequential runs produce identical records
- Exit code and summary formatting
"""

from __future__ import annotations

import copy
import logging

import pytest

from kpirecon.config import ReconConfig
from kpirecon.models.entity import Entity
from kpirecon.models.reconciliation import ReconciliationStatus
from kpirecon.reconciliation.batch import (
    ReconciliationJob,
    ReconciliationRecord,
    ReconciliationReport,
    Rejection,
    format_summary,
    get_exit_code,
)
from tests.fixtures.snapshots import (
    Q1_END,
    Q1_START,
    Q2_END,
    Q2_START,
    SNAPSHOT_ENTITIES,
    make_entity,
    make_period,
)


@pytest.fixture
def entities() -> list[Entity]:
    return [Entity.model_validate(copy.deepcopy(raw)) for raw in SNAPSHOT_ENTITIES]


def _statuses(report: ReconciliationReport) -> dict[str, str]:
    return {r.entity_key: r.status.value for r in report.records}


class TestSnapshotRun:
    """Full run over the fixture snapshot."""

    def test_every_outcome_classified(self, entities: list[Entity]) -> None:
        """Each fixture entity lands in its expected classification."""
        report = ReconciliationJob(ReconConfig(max_workers=1)).run(entities)
        assert _statuses(report) == {
            "KPI-ENGAGEMENT": "CONSISTENT",
            "KPI-REVENUE": "MISMATCH",
            "KPI-PARTICIPATION": "MISSING_INPUTS",
            "INIT-MANUAL": "NO_FORMULA",
            "KPI-BROKEN": "ERRORED",
        }

    def test_tally_counts_each_status(self, entities: list[Entity]) -> None:
        """The tally lists every classification."""
        report = ReconciliationJob().run(entities)
        assert report.tally == {
            "CONSISTENT": 1,
            "MISMATCH": 1,
            "MISSING_INPUTS": 1,
            "NO_FORMULA": 1,
            "ERRORED": 1,
        }

    def test_mismatch_record_carries_values(self, entities: list[Entity]) -> None:
        """revenue - cost = 600 against a stored 650."""
        report = ReconciliationJob().run(entities)
        record = next(r for r in report.records if r.entity_key == "KPI-REVENUE")
        assert record.expected == 600
        assert record.actual == 650
        assert record.delta == pytest.approx(50)
        assert record.period_start is not None
        assert record.period_start.isoformat() == "2025-01-01T00:00:00+00:00"

    def test_errored_record_carries_message(self, entities: list[Entity]) -> None:
        """The evaluation error is kept on the record."""
        report = ReconciliationJob().run(entities)
        record = next(r for r in report.records if r.entity_key == "KPI-BROKEN")
        assert record.error is not None
        assert "DIVIDE_BY_ZERO" in record.error

    def test_soft_deleted_entity_skipped(self, entities: list[Entity]) -> None:
        """KPI-RETIRED never appears in the records."""
        report = ReconciliationJob().run(entities)
        assert "KPI-RETIRED" not in _statuses(report)
        assert report.entities_skipped_deleted == 1
        assert report.entities_processed == 5

    def test_errored_entity_does_not_abort(self, entities: list[Entity]) -> None:
        """Entities after a failing one are still reconciled."""
        broken_first = sorted(entities, key=lambda e: e.key != "KPI-BROKEN")
        report = ReconciliationJob().run(broken_first)
        assert report.records[0].entity_key == "KPI-BROKEN"
        assert len(report.records) == 5

    def test_parallel_matches_sequential(self, entities: list[Entity]) -> None:
        """Worker count does not change the records or their order."""
        sequential = ReconciliationJob(ReconConfig(max_workers=1)).run(entities)
        parallel = ReconciliationJob(ReconConfig(max_workers=4)).run(entities)
        assert [r.to_dict() for r in parallel.records] == [
            r.to_dict() for r in sequential.records
        ]
        assert parallel.tally == sequential.tally

    def test_stored_data_untouched(self, entities: list[Entity]) -> None:
        """The job only reports."""
        before = [e.model_dump() for e in entities]
        ReconciliationJob().run(entities)
        assert [e.model_dump() for e in entities] == before


class TestRejections:
    """Entities that failed to load."""

    def test_rejections_reported_as_errored_first(self, entities: list[Entity]) -> None:
        """Rejected entries lead the records with their load error."""
        report = ReconciliationJob().run(
            entities, rejected=[Rejection(entity_key="#7", message="invalid entity: key")]
        )
        first = report.records[0]
        assert first.entity_key == "#7"
        assert first.status == ReconciliationStatus.ERRORED
        assert first.error == "invalid entity: key"
        assert report.tally["ERRORED"] == 2


class TestPeriods:
    """Period selection per entity."""

    def _two_periods(self) -> Entity:
        return make_entity(
            "KPI-Q",
            "a",
            ["a"],
            [
                make_period({"a": 1}, calculated_value=1, start=Q1_START, end=Q1_END),
                make_period({"a": 2}, calculated_value=5, start=Q2_START, end=Q2_END),
            ],
        )

    def test_all_periods_checked_by_default(self) -> None:
        """One record per period, newest first."""
        report = ReconciliationJob().run([self._two_periods()])
        assert [r.status for r in report.records] == [
            ReconciliationStatus.MISMATCH,
            ReconciliationStatus.CONSISTENT,
        ]

    def test_latest_periods_limit(self) -> None:
        """periods_per_entity limits the check to the newest periods."""
        report = ReconciliationJob(ReconConfig(periods_per_entity=1)).run([self._two_periods()])
        assert len(report.records) == 1
        assert report.records[0].period_start is not None
        assert report.records[0].period_start.date().isoformat() == "2025-04-01"

    def test_entity_without_periods(self, caplog: pytest.LogCaptureFixture) -> None:
        """A formula entity without periods produces no records but is counted."""
        with caplog.at_level(logging.WARNING, logger="kpirecon.reconciliation.batch"):
            report = ReconciliationJob().run([make_entity("KPI-NEW", "a", ["a"])])
        assert report.records == []
        assert report.entities_without_periods == 1
        assert "KPI-NEW" in caplog.text


class TestWarnings:
    """Dangling formula references."""

    def test_undeclared_variable_warning(self) -> None:
        """References to undeclared codes are warned about, not failed."""
        entity = make_entity(
            "KPI-GHOST", "a + ghost", ["a"], [make_period({"a": 2}, calculated_value=2)]
        )
        report = ReconciliationJob().run([entity])
        assert report.records[0].status == ReconciliationStatus.CONSISTENT
        assert len(report.warnings) == 1
        assert "ghost" in report.warnings[0]


class TestExitCode:
    """Exit code from report contents."""

    def _report(self, *statuses: ReconciliationStatus) -> ReconciliationReport:
        return ReconciliationReport(
            started_at="2025-01-01T00:00:00+00:00",
            finished_at="2025-01-01T00:00:01+00:00",
            records=[
                ReconciliationRecord(entity_key=f"E{i}", status=s)
                for i, s in enumerate(statuses)
            ],
        )

    def test_clean_run_exits_zero(self) -> None:
        """CONSISTENT and NO_FORMULA are not failures."""
        report = self._report(ReconciliationStatus.CONSISTENT, ReconciliationStatus.NO_FORMULA)
        assert get_exit_code(report) == 0

    @pytest.mark.parametrize(
        "status",
        [
            ReconciliationStatus.MISMATCH,
            ReconciliationStatus.MISSING_INPUTS,
            ReconciliationStatus.ERRORED,
        ],
    )
    def test_failures_exit_one(self, status: ReconciliationStatus) -> None:
        """Any failing record makes the run fail."""
        report = self._report(ReconciliationStatus.CONSISTENT, status)
        assert get_exit_code(report) == 1

    def test_empty_run_exits_zero(self) -> None:
        """Nothing to reconcile is not a failure."""
        assert get_exit_code(self._report()) == 0


class TestReportFormatting:
    """Report serialization and summary."""

    def test_to_dict_sorted_keys(self, entities: list[Entity]) -> None:
        """Serialized report keys are deterministic."""
        data = ReconciliationJob().run(entities).to_dict()
        assert list(data) == sorted(data)
        assert list(data["tally"]) == sorted(data["tally"])
        for record in data["records"]:
            assert list(record) == sorted(record)

    def test_summary_lists_records_and_tally(self, entities: list[Entity]) -> None:
        """One line per record followed by the tally."""
        summary = format_summary(ReconciliationJob().run(entities))
        assert "KPI-REVENUE [2025-01-01..2025-03-31]: MISMATCH" in summary
        assert "INIT-MANUAL: NO_FORMULA" in summary
        assert "Soft-deleted skipped: 1" in summary
        assert "  CONSISTENT: 1" in summary

    def test_summary_truncates(self, entities: list[Entity]) -> None:
        """Long listings are truncated."""
        summary = format_summary(ReconciliationJob().run(entities), max_lines=2)
        assert "... and 3 more" in summary
