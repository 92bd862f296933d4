"""Batch reconciliation job over entity snapshots.

Iterates every live entity, reconciles its periods and reports a
classification per (entity, period) plus a final tally. A failing entity is
recorded as ERRORED and never aborts the run.

Checks are independent, so entities may be fanned out across worker threads;
records are re-assembled in input order, making parallel and sequential runs
produce identical reports.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from kpirecon.calc.evaluator import EvaluationError
from kpirecon.config import ReconConfig
from kpirecon.models.entity import Entity, ValuePeriod
from kpirecon.models.reconciliation import (
    Consistent,
    Mismatch,
    ReconciliationResult,
    ReconciliationStatus,
)
from kpirecon.reconciliation.checker import check, dangling_codes

logger = logging.getLogger(__name__)

FAILING_STATUSES = frozenset(
    {
        ReconciliationStatus.MISMATCH,
        ReconciliationStatus.MISSING_INPUTS,
        ReconciliationStatus.ERRORED,
    }
)


@dataclass(frozen=True)
class Rejection:
    """An entity that could not be loaded into a snapshot."""

    entity_key: str
    message: str


@dataclass
class ReconciliationRecord:
    """One reported classification for an entity (and period, where applicable)."""

    entity_key: str
    status: ReconciliationStatus
    period_start: datetime | None = None
    period_end: datetime | None = None
    expected: float | None = None
    actual: float | None = None
    delta: float | None = None
    error: str | None = None

    @classmethod
    def from_result(
        cls, entity_key: str, period: ValuePeriod | None, result: ReconciliationResult
    ) -> ReconciliationRecord:
        record = cls(
            entity_key=entity_key,
            status=result.status,
            period_start=period.period_start if period else None,
            period_end=period.period_end if period else None,
        )
        if isinstance(result, Consistent | Mismatch):
            record.expected = result.expected
            record.actual = result.actual
        if isinstance(result, Mismatch):
            record.delta = result.delta
        return record

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict with deterministic key ordering."""
        return {
            "actual": self.actual,
            "delta": self.delta,
            "entity_key": self.entity_key,
            "error": self.error,
            "expected": self.expected,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "status": self.status.value,
        }

    def format_line(self) -> str:
        """Single human-readable line: key, period and classification."""
        period = ""
        if self.period_start is not None and self.period_end is not None:
            period = f" [{self.period_start.date()}..{self.period_end.date()}]"
        detail = ""
        if self.status == ReconciliationStatus.MISMATCH:
            detail = f" expected={self.expected} actual={self.actual} delta={self.delta}"
        elif self.status == ReconciliationStatus.ERRORED:
            detail = f" {self.error}"
        return f"{self.entity_key}{period}: {self.status.value}{detail}"


@dataclass
class _EntityOutcome:
    records: list[ReconciliationRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    without_periods: bool = False


@dataclass
class ReconciliationReport:
    """Result of a batch reconciliation run."""

    started_at: str
    finished_at: str
    records: list[ReconciliationRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    entities_processed: int = 0
    entities_skipped_deleted: int = 0
    entities_without_periods: int = 0

    @staticmethod
    def now_iso() -> str:
        """Return current UTC time as ISO string."""
        return datetime.now(UTC).isoformat()

    @property
    def tally(self) -> dict[str, int]:
        """Record count per classification, every classification present."""
        counts = {status.value: 0 for status in ReconciliationStatus}
        for record in self.records:
            counts[record.status.value] += 1
        return counts

    @property
    def has_failures(self) -> bool:
        return any(record.status in FAILING_STATUSES for record in self.records)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict with deterministic key ordering for JSON serialization."""
        return {
            "entities_processed": self.entities_processed,
            "entities_skipped_deleted": self.entities_skipped_deleted,
            "entities_without_periods": self.entities_without_periods,
            "finished_at": self.finished_at,
            "records": [r.to_dict() for r in self.records],
            "started_at": self.started_at,
            "tally": dict(sorted(self.tally.items())),
            "warnings": list(self.warnings),
        }


class ReconciliationJob:
    """Reconciles every period of every live entity in a snapshot."""

    def __init__(self, config: ReconConfig | None = None) -> None:
        self._config = config or ReconConfig()

    def run(
        self,
        entities: Sequence[Entity],
        rejected: Sequence[Rejection] = (),
    ) -> ReconciliationReport:
        """Run reconciliation over a snapshot.

        Args:
            entities: Validated entity snapshots.
            rejected: Entities that failed to load; reported as ERRORED.

        Returns:
            ReconciliationReport with records in input order.
        """
        started_at = ReconciliationReport.now_iso()
        live = [e for e in entities if not e.is_deleted]
        skipped = len(entities) - len(live)

        logger.info(
            "Reconciling %d entities (%d soft-deleted skipped, %d rejected) with %d worker(s)",
            len(live),
            skipped,
            len(rejected),
            self._config.max_workers,
        )

        if self._config.max_workers > 1 and len(live) > 1:
            with ThreadPoolExecutor(max_workers=self._config.max_workers) as pool:
                outcomes = list(pool.map(self.check_entity, live))
        else:
            outcomes = [self.check_entity(e) for e in live]

        report = ReconciliationReport(
            started_at=started_at,
            finished_at="",
            entities_processed=len(live),
            entities_skipped_deleted=skipped,
        )
        for rejection in rejected:
            report.records.append(
                ReconciliationRecord(
                    entity_key=rejection.entity_key,
                    status=ReconciliationStatus.ERRORED,
                    error=rejection.message,
                )
            )
        for outcome in outcomes:
            report.records.extend(outcome.records)
            report.warnings.extend(outcome.warnings)
            if outcome.without_periods:
                report.entities_without_periods += 1

        report.finished_at = ReconciliationReport.now_iso()
        logger.info("Reconciliation finished: %s", report.tally)
        return report

    def check_entity(self, entity: Entity) -> _EntityOutcome:
        """Reconcile the configured periods of one entity."""
        outcome = _EntityOutcome()

        if entity.formula is None:
            outcome.records.append(
                ReconciliationRecord(
                    entity_key=entity.key, status=ReconciliationStatus.NO_FORMULA
                )
            )
            return outcome

        dangling = dangling_codes(entity)
        if dangling:
            message = f"{entity.key}: formula references undeclared variables {dangling}"
            logger.info("%s", message)
            outcome.warnings.append(message)

        periods = entity.latest_periods(self._config.periods_per_entity)
        if not periods:
            logger.warning("Entity %s has a formula but no value periods", entity.key)
            outcome.without_periods = True
            return outcome

        for period in periods:
            try:
                result = check(
                    entity,
                    period,
                    tolerance=self._config.tolerance,
                    mode=self._config.tolerance_mode,
                )
            except EvaluationError as e:
                logger.warning(
                    "Evaluation failed for entity %s period %s: %s",
                    entity.key,
                    period.period_start.date(),
                    e,
                )
                outcome.records.append(
                    ReconciliationRecord(
                        entity_key=entity.key,
                        status=ReconciliationStatus.ERRORED,
                        period_start=period.period_start,
                        period_end=period.period_end,
                        error=str(e),
                    )
                )
                continue
            outcome.records.append(ReconciliationRecord.from_result(entity.key, period, result))

        return outcome


def get_exit_code(report: ReconciliationReport) -> int:
    """Exit code: 0 when every record is CONSISTENT or NO_FORMULA, 1 otherwise."""
    return 1 if report.has_failures else 0


def format_summary(report: ReconciliationReport, *, max_lines: int = 20) -> str:
    """Format a human-readable per-record listing followed by the tally."""
    lines = [record.format_line() for record in report.records[:max_lines]]
    if len(report.records) > max_lines:
        lines.append(f"... and {len(report.records) - max_lines} more")

    lines.append(f"Entities processed: {report.entities_processed}")
    if report.entities_skipped_deleted:
        lines.append(f"Soft-deleted skipped: {report.entities_skipped_deleted}")
    if report.entities_without_periods:
        lines.append(f"Without periods: {report.entities_without_periods}")

    lines.append("Tally:")
    for status, count in report.tally.items():
        lines.append(f"  {status}: {count}")

    if report.warnings:
        lines.append(f"Warnings ({len(report.warnings)}):")
        for w in report.warnings[:5]:
            lines.append(f"  - {w}")
        if len(report.warnings) > 5:
            lines.append(f"  ... and {len(report.warnings) - 5} more")

    return "\n".join(lines)
