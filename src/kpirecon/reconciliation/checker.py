"""Reconciliation of stored calculated values against fresh formula evaluation.

check() is a pure read-and-report operation. It never mutates the stored
period; correcting data is the job of an explicit migration.
"""

from __future__ import annotations

from kpirecon.calc.evaluator import evaluate, referenced_codes
from kpirecon.config import DEFAULT_TOLERANCE, ToleranceMode
from kpirecon.models.entity import Entity, ValuePeriod
from kpirecon.models.reconciliation import (
    Consistent,
    Mismatch,
    MissingInputs,
    NoFormula,
    ReconciliationResult,
)


def within_tolerance(
    expected: float,
    actual: float,
    tolerance: float = DEFAULT_TOLERANCE,
    mode: ToleranceMode = ToleranceMode.ABSOLUTE,
) -> bool:
    """Whether two values agree; an exact match always does, otherwise the bound is exclusive."""
    delta = abs(expected - actual)
    if delta == 0:
        return True
    if mode == ToleranceMode.RELATIVE:
        return delta < tolerance * max(abs(expected), abs(actual))
    return delta < tolerance


def build_values_by_code(entity: Entity, period: ValuePeriod) -> dict[str, float]:
    """Variable values for evaluation.

    Static variables always resolve to their declared static_value; a stored row for a
    static code is ignored.
    """
    values = period.values_by_code()
    values.update(entity.static_values_by_code())
    return values


def dangling_codes(entity: Entity) -> list[str]:
    """Formula identifiers that no declared variable provides."""
    if entity.formula is None:
        return []
    declared = {v.code for v in entity.variables}
    return [code for code in referenced_codes(entity.formula) if code not in declared]


def check(
    entity: Entity,
    period: ValuePeriod,
    *,
    tolerance: float = DEFAULT_TOLERANCE,
    mode: ToleranceMode = ToleranceMode.ABSOLUTE,
) -> ReconciliationResult:
    """Reconcile one period of an entity.

    Args:
        entity: Entity snapshot owning the period.
        period: Period whose stored calculated value is verified.
        tolerance: Maximum accepted difference (exclusive).
        mode: Absolute difference or fraction of magnitude.

    Returns:
        NoFormula if the entity has no formula, MissingInputs if period-supplied
        variables are declared but the period stores no values at all, otherwise
        Consistent or Mismatch.

    Raises:
        EvaluationError: If the formula is malformed or divides by zero.
    """
    if entity.formula is None:
        return NoFormula(entity_key=entity.key)

    if entity.input_variables() and not period.variable_values:
        return MissingInputs(
            entity_key=entity.key,
            period_start=period.period_start,
            period_end=period.period_end,
        )

    expected = evaluate(entity.formula, build_values_by_code(entity, period))
    actual = period.calculated_value if period.calculated_value is not None else 0.0

    if within_tolerance(expected, actual, tolerance, mode):
        return Consistent(expected=expected, actual=actual)
    return Mismatch(expected=expected, actual=actual, delta=abs(actual - expected))
