"""Achievement values: progress from baseline towards target, as a percentage."""

from __future__ import annotations

import math
from collections.abc import Iterable
from typing import Final

from kpirecon.models.entity import KpiDirection

DEFAULT_ACHIEVEMENT_FLOOR: Final[float] = 0.0
DEFAULT_ACHIEVEMENT_CAP: Final[float] = 150.0

# (label, inclusive lower bound, exclusive upper bound)
ACHIEVEMENT_BUCKETS: Final[tuple[tuple[str, float, float], ...]] = (
    ("0-100%", 0.0, 100.0),
    ("100-200%", 100.0, 200.0),
    ("200-500%", 200.0, 500.0),
    ("500-1000%", 500.0, 1000.0),
    (">1000%", 1000.0, math.inf),
)
NEGATIVE_BUCKET: Final[str] = "<0%"


def compute_achievement(
    final_value: float | None,
    baseline_value: float | None,
    target_value: float | None,
    direction: KpiDirection,
    *,
    floor: float = DEFAULT_ACHIEVEMENT_FLOOR,
    cap: float = DEFAULT_ACHIEVEMENT_CAP,
) -> float | None:
    """Compute the achievement percentage of a period.

    INCREASE_IS_GOOD: (final - baseline) / (target - baseline) * 100
    DECREASE_IS_GOOD: (baseline - final) / (baseline - target) * 100

    The result is clamped to [floor, cap]. Returns None when any input is
    missing or when baseline equals target (no measurable span).
    """
    if final_value is None or baseline_value is None or target_value is None:
        return None
    if baseline_value == target_value:
        return None

    if direction == KpiDirection.INCREASE_IS_GOOD:
        achievement = (final_value - baseline_value) / (target_value - baseline_value) * 100
    else:
        achievement = (baseline_value - final_value) / (baseline_value - target_value) * 100

    return max(floor, min(cap, achievement))


def achievement_distribution(values: Iterable[float | None]) -> dict[str, int]:
    """Count achievement values per bucket. None values are ignored."""
    counts = {label: 0 for label, _, _ in ACHIEVEMENT_BUCKETS}
    counts[NEGATIVE_BUCKET] = 0
    for value in values:
        if value is None:
            continue
        if value < 0:
            counts[NEGATIVE_BUCKET] += 1
            continue
        for label, low, high in ACHIEVEMENT_BUCKETS:
            if low <= value < high:
                counts[label] += 1
                break
    return counts
