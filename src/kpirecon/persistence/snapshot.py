"""Load entity snapshots exported from the relational store.

The reconciliation core never talks to a database. Callers export entities
with their variables, periods and variable values to JSON and hand the file
to this loader:

    {"entities": [{"key": "KPI-001", "formula": "a / b", "variables": [...], "periods": [...]}]}

A bare list of entities is accepted as well. Entities failing validation are
returned as rejections so one bad record cannot block the rest of the batch.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from kpirecon.models.entity import Entity
from kpirecon.reconciliation.batch import Rejection

logger = logging.getLogger(__name__)


class SnapshotLoadError(Exception):
    """Raised when a snapshot cannot be read or has the wrong envelope."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Cannot load snapshot {source}: {reason}")


@dataclass
class Snapshot:
    """Validated entities plus the entries that were rejected."""

    entities: list[Entity] = field(default_factory=list)
    rejected: list[Rejection] = field(default_factory=list)


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors()[:3]:
        location = ".".join(str(p) for p in item["loc"]) or "$"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def parse_snapshot(data: Any, source: str = "<memory>") -> Snapshot:
    """Validate raw snapshot data into entities.

    Raises:
        SnapshotLoadError: If the envelope is neither a list nor {"entities": [...]}.
    """
    if isinstance(data, dict):
        raw_entities = data.get("entities")
    else:
        raw_entities = data
    if not isinstance(raw_entities, list):
        raise SnapshotLoadError(source, "expected a list of entities or {'entities': [...]}")

    snapshot = Snapshot()
    for index, raw in enumerate(raw_entities):
        key = raw.get("key") if isinstance(raw, dict) else None
        label = str(key) if key else f"#{index}"
        try:
            snapshot.entities.append(Entity.model_validate(raw))
        except ValidationError as e:
            message = f"invalid entity: {_summarize(e)}"
            logger.warning("Rejected entity %s from %s: %s", label, source, message)
            snapshot.rejected.append(Rejection(entity_key=label, message=message))

    logger.info(
        "Loaded %d entities from %s (%d rejected)",
        len(snapshot.entities),
        source,
        len(snapshot.rejected),
    )
    return snapshot


def load_snapshot(path: Path | str) -> Snapshot:
    """Read and validate a snapshot file.

    Raises:
        SnapshotLoadError: If the file is missing, unreadable or not JSON.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise SnapshotLoadError(str(path), "file not found") from e
    except json.JSONDecodeError as e:
        raise SnapshotLoadError(str(path), f"invalid JSON: {e}") from e
    except OSError as e:
        raise SnapshotLoadError(str(path), f"cannot read file: {e}") from e

    return parse_snapshot(data, str(path))
