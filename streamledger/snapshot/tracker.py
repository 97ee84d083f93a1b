"""Pending-change tracking against the state the hierarchy was loaded with."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from enum import Enum

from streamledger.hierarchy.builder import StreamHierarchy
from streamledger.hierarchy.models import StreamRule, path_key, paths_equal
from streamledger.snapshot.engine import create_snapshot
from streamledger.snapshot.models import Snapshot


def _rule_key(rule: StreamRule) -> tuple:
    return (rule.kind, path_key(rule.pattern), path_key(rule.remap_target))


def _stream_name(path: str) -> str:
    parts = [p for p in path.split("/") if p]
    return parts[-1] if parts else path


class RuleChangeType(str, Enum):
    ADDED = "added"
    DELETED = "deleted"
    REORDERED = "reordered"


@dataclass(frozen=True)
class RuleChangeInfo:
    change_type: RuleChangeType
    stream_path: str
    rule: StreamRule

    @property
    def stream_name(self) -> str:
        return _stream_name(self.stream_path)

    @property
    def description(self) -> str:
        return f"[{self.change_type.value.capitalize()}] {self.rule.describe()}"


@dataclass(frozen=True)
class ParentChangeInfo:
    stream_path: str
    original_parent: str | None
    new_parent: str | None

    @property
    def stream_name(self) -> str:
        return _stream_name(self.stream_path)

    @property
    def description(self) -> str:
        old = self.original_parent or "(mainline)"
        new = self.new_parent or "(mainline)"
        return f"Parent: {old} -> {new}"


class ChangeTracker:
    """Compares the live hierarchy with a baseline snapshot."""

    def __init__(self, hierarchy: StreamHierarchy) -> None:
        self.hierarchy = hierarchy
        self.baseline: Snapshot = create_snapshot(hierarchy)

    def rebaseline(self) -> None:
        self.baseline = create_snapshot(self.hierarchy)

    def pending_rule_changes(self) -> list[RuleChangeInfo]:
        """Per-stream rule edits since the baseline.

        Rules are counted as a multiset, so an added duplicate is reported.
        A stream whose rules only changed order gets one REORDERED entry
        naming the first rule out of place.
        """
        changes: list[RuleChangeInfo] = []
        for node in self.hierarchy:
            original = list(self.baseline.rules_for(node.path))
            current = list(node.local_rules)
            stream_changes: list[RuleChangeInfo] = []

            unmatched = Counter(_rule_key(r) for r in original)
            for rule in current:
                key = _rule_key(rule)
                if unmatched[key]:
                    unmatched[key] -= 1
                else:
                    stream_changes.append(RuleChangeInfo(RuleChangeType.ADDED, node.path, rule))

            unmatched = Counter(_rule_key(r) for r in current)
            for rule in original:
                key = _rule_key(rule)
                if unmatched[key]:
                    unmatched[key] -= 1
                else:
                    stream_changes.append(RuleChangeInfo(RuleChangeType.DELETED, node.path, rule))

            if not stream_changes:
                moved = next(
                    (c for c, o in zip(current, original) if _rule_key(c) != _rule_key(o)), None
                )
                if moved is not None:
                    stream_changes.append(
                        RuleChangeInfo(RuleChangeType.REORDERED, node.path, moved)
                    )
            changes.extend(stream_changes)
        return changes

    def pending_parent_changes(self) -> list[ParentChangeInfo]:
        changes: list[ParentChangeInfo] = []
        for node in self.hierarchy:
            original = self.baseline.parent_for(node.path)
            current = node.parent_path or None
            if not paths_equal(original, current):
                changes.append(ParentChangeInfo(node.path, original, current))
        return changes

    @property
    def has_unsaved_changes(self) -> bool:
        return bool(self.pending_rule_changes() or self.pending_parent_changes())
