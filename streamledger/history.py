"""Read access to the revision history of a stored snapshot file."""

from __future__ import annotations

import logging

from streamledger.snapshot.engine import diff_snapshots
from streamledger.snapshot.models import Snapshot, SnapshotDiff
from streamledger.vcs.base import StreamServer
from streamledger.vcs.models import RevisionInfo

logger = logging.getLogger(__name__)


class RevisionHistory:
    """Lists and fetches historical snapshot revisions. Read-only; errors are not retried."""

    def __init__(self, server: StreamServer) -> None:
        self.server = server

    def list_revisions(self, depot_path: str) -> list[RevisionInfo]:
        """Revisions of *depot_path*, newest first."""
        revisions = self.server.list_file_revisions(depot_path)
        revisions = sorted(revisions, key=lambda r: r.revision, reverse=True)
        logger.info("Found %d revision(s) for %s", len(revisions), depot_path)
        return revisions

    def read_at_revision(self, depot_path: str, revision: int) -> bytes:
        if revision < 1:
            raise ValueError(f"revision must be >= 1, got {revision}")
        logger.debug("Reading %s#%d", depot_path, revision)
        return self.server.read_file_at_revision(depot_path, revision)

    def load_snapshot(self, depot_path: str, revision: int | None = None) -> Snapshot:
        """Decode the snapshot at *revision*, or at head when omitted."""
        if revision is None:
            content = self.server.read_file(depot_path)
        else:
            content = self.read_at_revision(depot_path, revision)
        return Snapshot.from_json(content)

    def compare(
        self, depot_path: str, rev_a: int, rev_b: int, stream: str | None = None
    ) -> SnapshotDiff:
        """Diff two revisions, always older against newer."""
        older, newer = sorted((rev_a, rev_b))
        return diff_snapshots(
            self.load_snapshot(depot_path, older),
            self.load_snapshot(depot_path, newer),
            stream=stream,
        )
