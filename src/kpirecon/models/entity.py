"""Entity snapshot models consumed by the reconciliation core.

Entities (KPIs, initiatives) declare input variables and carry reporting
periods. Each period holds the per-variable values recorded for it together
with the system-derived calculated value that reconciliation re-derives.

All models are frozen snapshots: the core never mutates persisted data.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator, model_validator

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class KpiDirection(StrEnum):
    """Whether higher or lower values mean better performance."""

    INCREASE_IS_GOOD = "INCREASE_IS_GOOD"
    DECREASE_IS_GOOD = "DECREASE_IS_GOOD"


class VariableDataType(StrEnum):
    """Declared data type of an entity variable."""

    NUMBER = "NUMBER"
    PERCENTAGE = "PERCENTAGE"


class PeriodStatus(StrEnum):
    """Workflow status of a reporting period. APPROVED periods are final."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"


class EntityVariable(BaseModel):
    """A named input slot referenced by an entity's formula.

    Static variables are constants (e.g. a fixed number of years) and carry
    their value in static_value instead of per-period values.
    """

    code: str = Field(..., description="Substitution token used in the formula")
    display_name: str = Field(default="", description="Human-readable name")
    data_type: VariableDataType = Field(default=VariableDataType.NUMBER)
    is_static: bool = Field(default=False, description="Constant rather than period input")
    static_value: float | None = Field(default=None, allow_inf_nan=False)

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        """Codes must be identifier-shaped to be substitutable."""
        if not IDENTIFIER_RE.match(v):
            raise ValueError(f"variable code must be identifier-shaped, got '{v}'")
        return v

    model_config = {"frozen": True, "extra": "forbid"}


class VariableValue(BaseModel):
    """The value of one entity variable for one reporting period."""

    variable_code: str = Field(..., description="Code of the owning EntityVariable")
    value: float = Field(..., allow_inf_nan=False)

    model_config = {"frozen": True, "extra": "forbid"}


class ValuePeriod(BaseModel):
    """A reporting interval holding calculated/final/achievement values."""

    period_start: datetime
    period_end: datetime
    status: PeriodStatus = Field(default=PeriodStatus.DRAFT)
    calculated_value: float | None = Field(default=None, description="System-derived value")
    final_value: float | None = Field(default=None, description="Possibly overridden value")
    achievement_value: float | None = Field(
        default=None, description="Calculated value against target, as a percentage"
    )
    variable_values: tuple[VariableValue, ...] = Field(default_factory=tuple)

    @field_validator("period_start", "period_end")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are UTC so periods always compare."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @model_validator(mode="after")
    def validate_period(self) -> ValuePeriod:
        """Reject inverted ranges and duplicate values for a variable."""
        if self.period_end < self.period_start:
            raise ValueError(
                f"period_end {self.period_end.isoformat()} precedes "
                f"period_start {self.period_start.isoformat()}"
            )
        seen: set[str] = set()
        for vv in self.variable_values:
            if vv.variable_code in seen:
                raise ValueError(
                    f"duplicate value for variable '{vv.variable_code}' in one period"
                )
            seen.add(vv.variable_code)
        return self

    @property
    def is_final(self) -> bool:
        return self.status == PeriodStatus.APPROVED

    def values_by_code(self) -> dict[str, float]:
        """Map each stored variable value to its variable code."""
        return {vv.variable_code: vv.value for vv in self.variable_values}

    model_config = {"frozen": True, "extra": "forbid"}


class Entity(BaseModel):
    """A measurable business object (KPI or initiative) with an optional formula."""

    key: str = Field(..., min_length=1, description="Unique entity key")
    title: str = Field(default="", description="Display title")
    formula: str | None = Field(default=None, description="Arithmetic formula over variable codes")
    unit: str | None = Field(default=None)
    baseline_value: float | None = Field(default=None, allow_inf_nan=False)
    target_value: float | None = Field(default=None, allow_inf_nan=False)
    direction: KpiDirection = Field(default=KpiDirection.INCREASE_IS_GOOD)
    deleted_at: datetime | None = Field(default=None, description="Soft-delete tombstone")
    variables: tuple[EntityVariable, ...] = Field(default_factory=tuple)
    periods: tuple[ValuePeriod, ...] = Field(default_factory=tuple)

    @field_validator("formula")
    @classmethod
    def normalize_formula(cls, v: str | None) -> str | None:
        """Blank formulas mean no formula."""
        if v is None:
            return None
        stripped = v.strip()
        return stripped or None

    @model_validator(mode="after")
    def validate_entity(self) -> Entity:
        """Enforce unique variable codes and non-overlapping final periods."""
        codes = [v.code for v in self.variables]
        duplicates = sorted({c for c in codes if codes.count(c) > 1})
        if duplicates:
            raise ValueError(f"duplicate variable codes: {duplicates}")

        final_periods = sorted(
            (p for p in self.periods if p.is_final), key=lambda p: p.period_start
        )
        for earlier, later in zip(final_periods, final_periods[1:]):
            if later.period_start < earlier.period_end:
                raise ValueError(
                    f"approved periods overlap: {earlier.period_start.date()}.."
                    f"{earlier.period_end.date()} and {later.period_start.date()}.."
                    f"{later.period_end.date()}"
                )
        return self

    @property
    def has_formula(self) -> bool:
        return self.formula is not None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def input_variables(self) -> list[EntityVariable]:
        """Variables whose values are supplied per period."""
        return [v for v in self.variables if not v.is_static]

    def static_values_by_code(self) -> dict[str, float]:
        """Constant values declared by static variables."""
        return {
            v.code: v.static_value
            for v in self.variables
            if v.is_static and v.static_value is not None
        }

    def latest_periods(self, limit: int = 0) -> list[ValuePeriod]:
        """Periods ordered newest first; limit <= 0 returns all of them."""
        ordered = sorted(self.periods, key=lambda p: p.period_start, reverse=True)
        return ordered[:limit] if limit > 0 else ordered

    model_config = {"frozen": True, "extra": "forbid"}
