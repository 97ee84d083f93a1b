"""HierarchySession: one client session editing one stream hierarchy."""

from __future__ import annotations

import logging

from streamledger.config.models import StreamLedgerConfig
from streamledger.errors import NotConnectedError, StreamLedgerError
from streamledger.hierarchy.builder import HierarchyBuilder, StreamHierarchy
from streamledger.hierarchy.editing import add_rule, change_parent, delete_rule, edit_rule
from streamledger.hierarchy.models import RuleKind, StreamNode, StreamRule
from streamledger.hierarchy.resolver import ResolvedRule, RuleResolver, RuleView
from streamledger.history import RevisionHistory
from streamledger.publish.paths import snapshot_file_path
from streamledger.publish.protocol import PublishProtocol, PublishResult
from streamledger.snapshot.engine import (
    RestoreSummary,
    create_snapshot,
    diff_snapshots,
    restore_snapshot,
)
from streamledger.snapshot.models import SnapshotDiff
from streamledger.snapshot.tracker import ChangeTracker, ParentChangeInfo, RuleChangeInfo
from streamledger.vcs.base import StreamServer
from streamledger.vcs.models import RevisionInfo

logger = logging.getLogger(__name__)


class HierarchySession:
    """Owns the live tree for one hierarchy and routes every operation on it.

    Loading a new root replaces the whole tree. The server handle is
    passed in, never looked up globally.
    """

    def __init__(self, server: StreamServer, config: StreamLedgerConfig | None = None) -> None:
        self.server = server
        self.config = config or StreamLedgerConfig()
        self.history = RevisionHistory(server)
        self._hierarchy: StreamHierarchy | None = None
        self._tracker: ChangeTracker | None = None
        self._protocol: PublishProtocol | None = None

    # -- loading -----------------------------------------------------------

    def load(self, root_path: str) -> StreamHierarchy:
        hierarchy = HierarchyBuilder(self.server).build(root_path)
        self._hierarchy = hierarchy
        self._tracker = ChangeTracker(hierarchy)
        self._protocol = PublishProtocol(
            self.server,
            hierarchy,
            history_storage_path=self.config.history_storage_path,
            auto_detect_workspace=self.config.connection.auto_detect_workspace,
        )
        self.config.last_used_stream = hierarchy.root.path
        return hierarchy

    @property
    def hierarchy(self) -> StreamHierarchy:
        if self._hierarchy is None:
            raise StreamLedgerError("No stream hierarchy loaded")
        return self._hierarchy

    @property
    def tracker(self) -> ChangeTracker:
        if self._tracker is None:
            raise StreamLedgerError("No stream hierarchy loaded")
        return self._tracker

    @property
    def snapshot_path(self) -> str:
        return snapshot_file_path(self.hierarchy.root.path, self.config.history_storage_path)

    def node(self, path: str) -> StreamNode:
        return self.hierarchy.node(path)

    # -- rule views --------------------------------------------------------

    def rules(self, path: str, view: RuleView | str = RuleView.ALL) -> list[ResolvedRule]:
        return RuleResolver(self.hierarchy).view(self.node(path), view)

    # -- edits -------------------------------------------------------------

    def add_rule(
        self, path: str, kind: RuleKind | str, pattern: str, remap_target: str | None = None
    ) -> StreamRule:
        return add_rule(self.node(path), kind, pattern, remap_target)

    def edit_rule(
        self,
        path: str,
        existing: StreamRule,
        kind: RuleKind | str,
        pattern: str,
        remap_target: str | None = None,
    ) -> StreamRule:
        return edit_rule(self.node(path), existing, kind, pattern, remap_target)

    def delete_rule(self, path: str, rule: StreamRule) -> int:
        return delete_rule(self.node(path), rule)

    def change_parent(self, path: str, new_parent: str | None) -> None:
        change_parent(self.hierarchy, self.node(path), new_parent)

    def pending_rule_changes(self) -> list[RuleChangeInfo]:
        return self.tracker.pending_rule_changes()

    def pending_parent_changes(self) -> list[ParentChangeInfo]:
        return self.tracker.pending_parent_changes()

    @property
    def has_unsaved_changes(self) -> bool:
        return self._tracker is not None and self._tracker.has_unsaved_changes

    # -- publish -----------------------------------------------------------

    def publish(
        self, path: str, *, description: str | None = None, submit: bool = True
    ) -> PublishResult:
        """Publish edits to *path* plus every other pending rule or parent change.

        Raises PublishInProgressError if another publish on this
        hierarchy has not finished.
        """
        if not self.server.is_connected():
            raise NotConnectedError("publish")
        if self._protocol is None:
            raise StreamLedgerError("No stream hierarchy loaded")
        rule_streams = list(dict.fromkeys(c.stream_path for c in self.pending_rule_changes()))
        result = self._protocol.publish(
            path,
            description=description,
            submit=submit,
            parent_changes=self.pending_parent_changes(),
            rule_streams=rule_streams,
        )
        self.tracker.rebaseline()
        logger.info(result.message)
        return result

    # -- history / restore -------------------------------------------------

    def list_revisions(self) -> list[RevisionInfo]:
        return self.history.list_revisions(self.snapshot_path)

    def preview_restore(self, revision: int, stream: str | None = None) -> SnapshotDiff:
        """What restoring *revision* would change, relative to the live tree."""
        historical = self.history.load_snapshot(self.snapshot_path, revision)
        return diff_snapshots(create_snapshot(self.hierarchy), historical, stream=stream)

    def restore(self, revision: int) -> RestoreSummary:
        """Apply a historical snapshot to the live tree. Publishing it is a separate step."""
        snapshot = self.history.load_snapshot(self.snapshot_path, revision)
        summary = restore_snapshot(snapshot, self.hierarchy)
        logger.info("Restored revision #%d of %s", revision, self.snapshot_path)
        return summary

    def compare_revisions(self, rev_a: int, rev_b: int, stream: str | None = None) -> SnapshotDiff:
        return self.history.compare(self.snapshot_path, rev_a, rev_b, stream=stream)
