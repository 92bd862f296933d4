"""Read path for exported entity snapshots."""

from kpirecon.persistence.snapshot import (
    Snapshot,
    SnapshotLoadError,
    load_snapshot,
    parse_snapshot,
)

__all__ = ["Snapshot", "SnapshotLoadError", "load_snapshot", "parse_snapshot"]
