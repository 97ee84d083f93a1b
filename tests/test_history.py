"""Tests for RevisionHistory and RevisionInfo."""

from datetime import datetime

import pytest

from streamledger.errors import MalformedSnapshotError
from streamledger.hierarchy import HierarchyBuilder, StreamRule, add_rule
from streamledger.history import RevisionHistory
from streamledger.publish import PublishProtocol
from streamledger.snapshot import restore_snapshot
from streamledger.vcs.models import RevisionInfo

from conftest import SNAPSHOT_PATH


def _state(hierarchy):
    return [(n.path, n.parent_path, list(n.local_rules)) for n in hierarchy]


@pytest.fixture
def published(fake_server, hierarchy):
    """Three published revisions; each adds one ignore rule to //depot/dev."""
    protocol = PublishProtocol(
        fake_server, hierarchy, history_storage_path="stream-history", auto_detect_workspace=False
    )
    original = _state(hierarchy)
    protocol.publish("//depot/dev")
    for pattern in ("out/...", "gen/..."):
        add_rule(hierarchy.node("//depot/dev"), "ignore", pattern)
        protocol.publish("//depot/dev")
    return original


def test_revisions_newest_first(fake_server, published):
    revisions = RevisionHistory(fake_server).list_revisions(SNAPSHOT_PATH)
    assert [r.revision for r in revisions] == [3, 2, 1]


def test_no_history(fake_server):
    assert RevisionHistory(fake_server).list_revisions(SNAPSHOT_PATH) == []


def test_oldest_revision_restores_onto_fresh_hierarchy(fake_server, published):
    history = RevisionHistory(fake_server)
    oldest = history.list_revisions(SNAPSHOT_PATH)[-1]

    fresh = HierarchyBuilder(fake_server).build("//depot/main")
    assert _state(fresh) != published

    restore_snapshot(history.load_snapshot(SNAPSHOT_PATH, oldest.revision), fresh)
    assert _state(fresh) == published


def test_head_is_latest(fake_server, published):
    head = RevisionHistory(fake_server).load_snapshot(SNAPSHOT_PATH)
    assert StreamRule.ignore("gen/...") in head.rules_for("//depot/dev")


def test_compare_orders_oldest_first(fake_server, published):
    history = RevisionHistory(fake_server)
    forward = history.compare(SNAPSHOT_PATH, 1, 3)
    backward = history.compare(SNAPSHOT_PATH, 3, 1)
    assert forward == backward
    assert [r.pattern for r in forward.added] == ["out/...", "gen/..."]
    assert forward.removed == ()


def test_compare_single_stream(fake_server, published):
    diff = RevisionHistory(fake_server).compare(SNAPSHOT_PATH, 1, 2, stream="//depot/main")
    assert diff.is_empty


def test_revision_must_be_positive(fake_server):
    with pytest.raises(ValueError):
        RevisionHistory(fake_server).read_at_revision(SNAPSHOT_PATH, 0)


def test_malformed_revision(fake_server):
    fake_server.files[SNAPSHOT_PATH] = [b"<not json>"]
    with pytest.raises(MalformedSnapshotError):
        RevisionHistory(fake_server).load_snapshot(SNAPSHOT_PATH, 1)


class TestRevisionInfo:
    def test_display_text(self):
        info = RevisionInfo(
            revision=3,
            changelist=42,
            timestamp=datetime(2026, 1, 21, 10, 0),
            user="alice",
            description="Add ignore",
        )
        assert info.display_text == "#3 - 2026-01-21 10:00 by alice - Add ignore"

    def test_display_text_truncates(self):
        info = RevisionInfo(
            revision=1, changelist=1, timestamp=datetime(2026, 1, 1), user="bob", description="x" * 80
        )
        assert info.display_text.endswith("x" * 47 + "...")

    def test_display_text_empty_description(self):
        info = RevisionInfo(revision=1, changelist=1, timestamp=datetime(2026, 1, 1), user="bob")
        assert info.display_text.endswith("(no description)")
