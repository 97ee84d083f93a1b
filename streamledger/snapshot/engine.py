"""Snapshot capture, comparison, and restore over an in-memory hierarchy."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from streamledger.hierarchy.builder import StreamHierarchy
from streamledger.hierarchy.models import StreamNode, StreamRule
from streamledger.snapshot.models import RuleChange, Snapshot, SnapshotDiff

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RestoreSummary:
    streams_restored: int = 0
    rules_restored: int = 0
    parents_restored: int = 0


def _root_of(target: StreamNode | StreamHierarchy) -> StreamNode:
    return target.root if isinstance(target, StreamHierarchy) else target


def create_snapshot(
    target: StreamNode | StreamHierarchy, *, track_parents: bool = True
) -> Snapshot:
    """Capture the local rules of every node under the root.

    Inherited rules are not stored: they are re-derived from the tree
    when the snapshot is restored.
    """
    rules_by_stream: dict[str, list[StreamRule]] = {}
    parents_by_stream: dict[str, str | None] | None = {} if track_parents else None
    for node in _root_of(target).iter_subtree():
        rules_by_stream[node.path] = [r.with_owner(node.path) for r in node.local_rules]
        if parents_by_stream is not None:
            parents_by_stream[node.path] = node.parent_path or None
    return Snapshot(rules_by_stream=rules_by_stream, parents_by_stream=parents_by_stream)


def diff_rules(old: Iterable[StreamRule], new: Iterable[StreamRule]) -> SnapshotDiff:
    """Compare two rule sets, pairing rules by ``(kind, pattern)``.

    Order does not affect classification. When a key repeats within one
    set, the first occurrence is the one compared.
    """
    old_by_key: dict = {}
    for rule in old:
        old_by_key.setdefault(rule.match_key, rule)
    new_by_key: dict = {}
    for rule in new:
        new_by_key.setdefault(rule.match_key, rule)

    added = [r for k, r in new_by_key.items() if k not in old_by_key]
    removed = [r for k, r in old_by_key.items() if k not in new_by_key]
    modified = []
    for key, new_rule in new_by_key.items():
        old_rule = old_by_key.get(key)
        if old_rule is None:
            continue
        if old_rule.remap_target != new_rule.remap_target or old_rule.owner != new_rule.owner:
            modified.append(RuleChange(old=old_rule, new=new_rule))

    return SnapshotDiff(added=tuple(added), removed=tuple(removed), modified=tuple(modified))


def diff_snapshots(a: Snapshot, b: Snapshot, stream: str | None = None) -> SnapshotDiff:
    """Compare *a* (older) against *b* (newer).

    With *stream*, only that stream's rule sets are compared. Without it,
    each stream is compared with its counterpart and the results are
    concatenated in stream order (streams of *a* first, then new ones).
    """
    if stream is not None:
        return diff_rules(a.rules_for(stream), b.rules_for(stream))

    added: list[StreamRule] = []
    removed: list[StreamRule] = []
    modified: list[RuleChange] = []
    streams = list(a.rules_by_stream)
    streams += [s for s in b.rules_by_stream if not a.has_stream(s)]
    for path in streams:
        part = diff_rules(a.rules_for(path), b.rules_for(path))
        added.extend(part.added)
        removed.extend(part.removed)
        modified.extend(part.modified)
    return SnapshotDiff(added=tuple(added), removed=tuple(removed), modified=tuple(modified))


def restore_snapshot(snapshot: Snapshot, target: StreamNode | StreamHierarchy) -> RestoreSummary:
    """Write a snapshot's state back onto the in-memory tree.

    A node is only touched when the snapshot has an entry for it, so
    snapshots taken before a stream existed leave that stream alone.
    Nothing is sent to the server.
    """
    streams = rules = parents = 0
    for node in _root_of(target).iter_subtree():
        if snapshot.has_stream(node.path):
            restored = [r.with_owner(node.path) for r in snapshot.rules_for(node.path)]
            node.local_rules[:] = restored
            streams += 1
            rules += len(restored)
        if snapshot.has_parent_info and snapshot.has_parent_for(node.path):
            node.parent_path = snapshot.parent_for(node.path)
            parents += 1

    summary = RestoreSummary(streams_restored=streams, rules_restored=rules, parents_restored=parents)
    logger.info(
        "Restored %d rule(s) and %d parent assignment(s) across %d stream(s)",
        rules,
        parents,
        streams,
    )
    return summary
