"""kpirecon - KPI formula evaluation and reconciliation engine.

This package provides:
- evaluate: Restricted arithmetic evaluation of KPI formulas over named variables
- check: Reconciliation of stored calculated values against fresh evaluations
- ReconciliationJob: Batch reconciliation over entity snapshots
- migrate_catalog: Idempotent percentage-scaling migration for KPI catalogs
"""

from kpirecon.calc.evaluator import EvaluationError, EvaluationErrorKind, evaluate
from kpirecon.migrations.percentage_scaling import migrate_catalog, strip_percentage_scaling
from kpirecon.reconciliation.batch import ReconciliationJob, ReconciliationReport
from kpirecon.reconciliation.checker import check

__version__ = "0.1.0"

__all__ = [
    "EvaluationError",
    "EvaluationErrorKind",
    "ReconciliationJob",
    "ReconciliationReport",
    "check",
    "evaluate",
    "migrate_catalog",
    "strip_percentage_scaling",
]
