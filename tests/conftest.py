"""Pytest configuration and fixtures for kpirecon tests.

This module provides common fixtures and configuration for all tests.
"""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any

import pytest

from kpirecon.config import (
    ENV_LOG_LEVEL,
    ENV_MAX_WORKERS,
    ENV_PERIODS_PER_ENTITY,
    ENV_TOLERANCE,
    ENV_TOLERANCE_MODE,
)
from tests.fixtures.snapshots import KPI_CATALOG, SNAPSHOT

_CONFIG_ENV_VARS = (
    ENV_TOLERANCE,
    ENV_TOLERANCE_MODE,
    ENV_MAX_WORKERS,
    ENV_PERIODS_PER_ENTITY,
    ENV_LOG_LEVEL,
)


@pytest.fixture(autouse=True)
def clear_recon_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Start every test from default configuration.

    Tests that exercise environment parsing set the variables they need.
    """
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write_json(path: Path, data: Any) -> Path:
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False)
    return path


@pytest.fixture
def snapshot_file(tmp_path: Path) -> Path:
    """Snapshot JSON file covering every reconciliation outcome."""
    return _write_json(tmp_path / "snapshot.json", copy.deepcopy(SNAPSHOT))


@pytest.fixture
def catalog_file(tmp_path: Path) -> Path:
    """KPI catalog JSON file with one percentage formula needing a fix."""
    return _write_json(tmp_path / "kpis.json", copy.deepcopy(KPI_CATALOG))
