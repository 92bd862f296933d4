"""Reconciliation of stored calculated values.

This package provides:
- check: Pure per-period reconciliation returning a ReconciliationResult
- ReconciliationJob: Batch run over a snapshot with a final tally
"""

from kpirecon.reconciliation.batch import (
    ReconciliationJob,
    ReconciliationRecord,
    ReconciliationReport,
    Rejection,
    format_summary,
    get_exit_code,
)
from kpirecon.reconciliation.checker import (
    build_values_by_code,
    check,
    dangling_codes,
    within_tolerance,
)

__all__ = [
    "ReconciliationJob",
    "ReconciliationRecord",
    "ReconciliationReport",
    "Rejection",
    "build_values_by_code",
    "check",
    "dangling_codes",
    "format_summary",
    "get_exit_code",
    "within_tolerance",
]
