"""Environment-driven configuration for reconciliation runs.

Environment Variables:
    KPIRECON_TOLERANCE: Comparison tolerance (positive float, default 0.01)
    KPIRECON_TOLERANCE_MODE: "absolute" or "relative" (default "absolute")
    KPIRECON_MAX_WORKERS: Worker threads for batch checks (positive int, default 4)
    KPIRECON_PERIODS_PER_ENTITY: Latest N periods to check, 0 for all (default 0)
    KPIRECON_LOG_LEVEL: Logging level name (default "INFO")

Invalid values fail loudly with ConfigError; unset or blank values use defaults.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

logger = logging.getLogger(__name__)

ENV_TOLERANCE: Final[str] = "KPIRECON_TOLERANCE"
ENV_TOLERANCE_MODE: Final[str] = "KPIRECON_TOLERANCE_MODE"
ENV_MAX_WORKERS: Final[str] = "KPIRECON_MAX_WORKERS"
ENV_PERIODS_PER_ENTITY: Final[str] = "KPIRECON_PERIODS_PER_ENTITY"
ENV_LOG_LEVEL: Final[str] = "KPIRECON_LOG_LEVEL"

DEFAULT_TOLERANCE: Final[float] = 0.01
DEFAULT_MAX_WORKERS: Final[int] = 4
DEFAULT_PERIODS_PER_ENTITY: Final[int] = 0
DEFAULT_LOG_LEVEL: Final[str] = "INFO"

_VALID_LOG_LEVELS: Final[frozenset[str]] = frozenset(
    {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
)


class ToleranceMode(StrEnum):
    """How the reconciliation tolerance is applied."""

    ABSOLUTE = "absolute"
    RELATIVE = "relative"


class ConfigError(Exception):
    """Raised when reconciliation configuration is invalid."""


@dataclass(frozen=True)
class ReconConfig:
    """Reconciliation configuration (immutable).

    Attributes:
        tolerance: Maximum accepted difference (exclusive) between expected and stored values.
        tolerance_mode: Whether tolerance is an absolute difference or a fraction of magnitude.
        max_workers: Worker threads used by the batch job (1 runs sequentially).
        periods_per_entity: Check only the latest N periods of each entity; 0 checks all.
        log_level: Logging level name used by the CLI.
    """

    tolerance: float = DEFAULT_TOLERANCE
    tolerance_mode: ToleranceMode = ToleranceMode.ABSOLUTE
    max_workers: int = DEFAULT_MAX_WORKERS
    periods_per_entity: int = DEFAULT_PERIODS_PER_ENTITY
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not math.isfinite(self.tolerance) or self.tolerance <= 0:
            raise ConfigError(
                f"{ENV_TOLERANCE} must be a positive number, got {self.tolerance}"
            )
        if self.max_workers <= 0:
            raise ConfigError(
                f"{ENV_MAX_WORKERS} must be a positive integer, got {self.max_workers}"
            )
        if self.periods_per_entity < 0:
            raise ConfigError(
                f"{ENV_PERIODS_PER_ENTITY} must be zero or a positive integer, "
                f"got {self.periods_per_entity}"
            )
        if self.log_level not in _VALID_LOG_LEVELS:
            raise ConfigError(
                f"{ENV_LOG_LEVEL} must be one of {sorted(_VALID_LOG_LEVELS)}, "
                f"got '{self.log_level}'"
            )


def _read_env(env_var: str) -> str | None:
    raw = os.environ.get(env_var)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _parse_int(env_var: str, default: int, *, minimum: int) -> int:
    """Parse an integer >= minimum from an environment variable.

    Raises:
        ConfigError: If the value is set but not an integer in range.
    """
    raw = _read_env(env_var)
    if raw is None:
        return default

    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{env_var} must be an integer >= {minimum}, got '{raw}'") from e

    if value < minimum:
        raise ConfigError(f"{env_var} must be an integer >= {minimum}, got {value}")

    return value


def _parse_tolerance() -> float:
    raw = _read_env(ENV_TOLERANCE)
    if raw is None:
        return DEFAULT_TOLERANCE

    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{ENV_TOLERANCE} must be a positive number, got '{raw}'") from e

    return value


def _parse_tolerance_mode() -> ToleranceMode:
    raw = _read_env(ENV_TOLERANCE_MODE)
    if raw is None:
        return ToleranceMode.ABSOLUTE

    try:
        return ToleranceMode(raw.lower())
    except ValueError as e:
        valid = [m.value for m in ToleranceMode]
        raise ConfigError(f"{ENV_TOLERANCE_MODE} must be one of {valid}, got '{raw}'") from e


def load_recon_config() -> ReconConfig:
    """Load reconciliation configuration from environment variables.

    Returns:
        Validated ReconConfig.

    Raises:
        ConfigError: If any environment variable holds an invalid value.
    """
    config = ReconConfig(
        tolerance=_parse_tolerance(),
        tolerance_mode=_parse_tolerance_mode(),
        max_workers=_parse_int(ENV_MAX_WORKERS, DEFAULT_MAX_WORKERS, minimum=1),
        periods_per_entity=_parse_int(
            ENV_PERIODS_PER_ENTITY, DEFAULT_PERIODS_PER_ENTITY, minimum=0
        ),
        log_level=(_read_env(ENV_LOG_LEVEL) or DEFAULT_LOG_LEVEL).upper(),
    )
    logger.debug(
        "Loaded reconciliation config: tolerance=%s mode=%s workers=%d latest=%d",
        config.tolerance,
        config.tolerance_mode.value,
        config.max_workers,
        config.periods_per_entity,
    )
    return config
