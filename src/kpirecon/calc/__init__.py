"""Formula evaluation and achievement calculation.

This package provides:
- evaluate: Restricted arithmetic evaluation of formulas over variable codes
- EvaluationError: Typed failure with an EvaluationErrorKind
- compute_achievement: Direction-aware achievement percentage
"""

from kpirecon.calc.achievement import achievement_distribution, compute_achievement
from kpirecon.calc.evaluator import (
    EvaluationError,
    EvaluationErrorKind,
    evaluate,
    referenced_codes,
    substitute,
)

__all__ = [
    "EvaluationError",
    "EvaluationErrorKind",
    "achievement_distribution",
    "compute_achievement",
    "evaluate",
    "referenced_codes",
    "substitute",
]
