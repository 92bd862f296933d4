"""Reconciliation verdict models.

A ReconciliationResult is one of four variants discriminated by ``status``.
ERRORED exists only at batch level, where a per-entity failure is recorded
instead of aborting the run.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field


class ReconciliationStatus(StrEnum):
    """Classification buckets for reconciliation outcomes."""

    CONSISTENT = "CONSISTENT"
    MISMATCH = "MISMATCH"
    MISSING_INPUTS = "MISSING_INPUTS"
    NO_FORMULA = "NO_FORMULA"
    ERRORED = "ERRORED"


class Consistent(BaseModel):
    """Evaluator output and the stored calculated value agree within tolerance."""

    status: Literal[ReconciliationStatus.CONSISTENT] = ReconciliationStatus.CONSISTENT
    expected: float
    actual: float

    model_config = {"frozen": True, "extra": "forbid"}


class Mismatch(BaseModel):
    """Evaluator output and the stored calculated value disagree beyond tolerance."""

    status: Literal[ReconciliationStatus.MISMATCH] = ReconciliationStatus.MISMATCH
    expected: float
    actual: float
    delta: float = Field(..., ge=0, description="abs(actual - expected)")

    model_config = {"frozen": True, "extra": "forbid"}


class MissingInputs(BaseModel):
    """The period has declared variable slots but no stored values at all."""

    status: Literal[ReconciliationStatus.MISSING_INPUTS] = ReconciliationStatus.MISSING_INPUTS
    entity_key: str
    period_start: datetime
    period_end: datetime

    model_config = {"frozen": True, "extra": "forbid"}


class NoFormula(BaseModel):
    """The entity has no formula; reconciliation does not apply."""

    status: Literal[ReconciliationStatus.NO_FORMULA] = ReconciliationStatus.NO_FORMULA
    entity_key: str

    model_config = {"frozen": True, "extra": "forbid"}


ReconciliationResult = Annotated[
    Consistent | Mismatch | MissingInputs | NoFormula,
    Field(discriminator="status"),
]
