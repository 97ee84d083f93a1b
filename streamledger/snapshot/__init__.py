"""Snapshot engine: capture, diff, and restore hierarchy rule state."""

from streamledger.snapshot.engine import (
    RestoreSummary,
    create_snapshot,
    diff_rules,
    diff_snapshots,
    restore_snapshot,
)
from streamledger.snapshot.models import RuleChange, Snapshot, SnapshotDiff
from streamledger.snapshot.tracker import (
    ChangeTracker,
    ParentChangeInfo,
    RuleChangeInfo,
    RuleChangeType,
)


def load_snapshot(data: str | bytes) -> Snapshot:
    """Convenience wrapper around Snapshot.from_json()."""
    return Snapshot.from_json(data)


__all__ = [
    "ChangeTracker",
    "ParentChangeInfo",
    "RestoreSummary",
    "RuleChange",
    "RuleChangeInfo",
    "RuleChangeType",
    "Snapshot",
    "SnapshotDiff",
    "create_snapshot",
    "diff_rules",
    "diff_snapshots",
    "load_snapshot",
    "restore_snapshot",
]
