"""kpirecon domain models - Pydantic snapshots of entities and reconciliation verdicts."""

from kpirecon.models.entity import (
    Entity,
    EntityVariable,
    KpiDirection,
    PeriodStatus,
    ValuePeriod,
    VariableDataType,
    VariableValue,
)
from kpirecon.models.reconciliation import (
    Consistent,
    Mismatch,
    MissingInputs,
    NoFormula,
    ReconciliationResult,
    ReconciliationStatus,
)

__all__ = [
    "Consistent",
    "Entity",
    "EntityVariable",
    "KpiDirection",
    "Mismatch",
    "MissingInputs",
    "NoFormula",
    "PeriodStatus",
    "ReconciliationResult",
    "ReconciliationStatus",
    "ValuePeriod",
    "VariableDataType",
    "VariableValue",
]
