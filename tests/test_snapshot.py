"""Tests for snapshot capture, serialization, diff and restore."""

from __future__ import annotations

import json

import pytest

from streamledger.errors import MalformedSnapshotError
from streamledger.hierarchy import StreamRule
from streamledger.snapshot import (
    Snapshot,
    create_snapshot,
    diff_rules,
    diff_snapshots,
    load_snapshot,
    restore_snapshot,
)

IGNORE_TMP = StreamRule.ignore("/tmp/...")
REMAP_LIB = StreamRule.remap("/lib/...", "/shared/lib/...")


def _state(hierarchy):
    return [(n.path, n.parent_path, list(n.local_rules)) for n in hierarchy]


# ── Capture ──────────────────────────────────────────────────────────


def test_create_snapshot_covers_every_stream(hierarchy):
    snap = create_snapshot(hierarchy)
    assert sorted(snap.streams) == [
        "//depot/dev",
        "//depot/feature",
        "//depot/main",
        "//depot/release",
    ]
    assert snap.rules_for("//depot/feature") == ()
    assert snap.parent_for("//depot/dev") == "//depot/main"
    assert snap.parent_for("//depot/main") is None


def test_snapshot_stores_only_local_rules(hierarchy):
    snap = create_snapshot(hierarchy)
    assert snap.rules_for("//depot/dev") == (
        StreamRule.remap("lib/...", "//depot/shared/lib/..."),
    )


def test_snapshot_without_parent_tracking(hierarchy):
    snap = create_snapshot(hierarchy, track_parents=False)
    assert not snap.has_parent_info
    assert "parentsByStream" not in snap.to_dict()


def test_snapshot_is_detached_from_tree(hierarchy):
    snap = create_snapshot(hierarchy)
    hierarchy.root.local_rules.clear()
    assert len(snap.rules_for("//depot/main")) == 1


def test_lookup_falls_back_to_case_insensitive(hierarchy):
    snap = create_snapshot(hierarchy)
    assert snap.has_stream("//DEPOT/Dev")
    assert snap.rules_for("//DEPOT/Dev") == snap.rules_for("//depot/dev")


# ── Serialization ────────────────────────────────────────────────────


def test_round_trip(hierarchy):
    snap = create_snapshot(hierarchy)
    loaded = Snapshot.from_json(snap.to_json())
    assert loaded == snap
    assert loaded.rules_for("//depot/dev")[0].owner == "//depot/dev"


def test_json_layout(hierarchy):
    data = json.loads(create_snapshot(hierarchy).to_json())
    assert set(data) == {"rulesByStream", "parentsByStream"}
    assert data["rulesByStream"]["//depot/dev"] == [
        {
            "kind": "remap",
            "pattern": "lib/...",
            "remapTarget": "//depot/shared/lib/...",
            "owner": "//depot/dev",
        }
    ]
    assert data["parentsByStream"]["//depot/main"] is None


def test_unknown_keys_ignored():
    snap = load_snapshot(json.dumps({"rulesByStream": {}, "version": 3, "savedBy": "bob"}))
    assert snap.streams == []
    assert not snap.has_parent_info


def test_empty_parent_means_mainline():
    snap = load_snapshot(json.dumps({"rulesByStream": {"//a": []}, "parentsByStream": {"//a": ""}}))
    assert snap.has_parent_for("//a")
    assert snap.parent_for("//a") is None


def test_bytes_with_bom():
    raw = "\ufeff" + json.dumps({"rulesByStream": {"//a": []}})
    assert load_snapshot(raw.encode("utf-8")).streams == ["//a"]


def test_legacy_key_names():
    payload = {
        "streamRules": {
            "//depot/main": [{"type": "ignore", "path": "tmp/...", "remapTarget": ""}],
        },
        "streamParents": {"//depot/main": None},
    }
    snap = load_snapshot(json.dumps(payload))
    assert snap.rules_for("//depot/main") == (StreamRule.ignore("tmp/..."),)
    assert snap.rules_for("//depot/main")[0].owner == "//depot/main"
    assert snap.has_parent_info


def test_legacy_flat_rule_list():
    payload = {
        "streamPath": "//depot/main",
        "rules": [
            {"type": "Ignore", "path": "tmp/...", "sourceStream": "//depot/main"},
            {
                "type": "Remap",
                "path": "lib/...",
                "remapTarget": "//depot/shared/lib/...",
                "sourceStream": "//depot/dev",
            },
            {"type": "ignore", "path": "*.log"},
        ],
    }
    snap = load_snapshot(json.dumps(payload))
    assert sorted(snap.streams) == ["//depot/dev", "//depot/main"]
    assert len(snap.rules_for("//depot/main")) == 2
    assert not snap.has_parent_info


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        "[]",
        json.dumps({"rulesByStream": []}),
        json.dumps({"rulesByStream": {"//a": {}}}),
        json.dumps({"rulesByStream": {"//a": [{"kind": "remap", "pattern": "x/..."}]}}),
        json.dumps({"rulesByStream": {"//a": [{"kind": "bogus", "pattern": "x/..."}]}}),
        json.dumps({"rulesByStream": {"//a": ["ignore x"]}}),
        json.dumps({"rulesByStream": {"//a": [{"kind": "ignore", "pattern": 5}]}}),
        json.dumps(
            {"rulesByStream": {"//a": [{"kind": "remap", "pattern": "x/...", "remapTarget": ["//a"]}]}}
        ),
        json.dumps({"rulesByStream": {"//a": [{"kind": 3, "pattern": "x/..."}]}}),
        json.dumps({"rulesByStream": {}, "parentsByStream": ["//a"]}),
        json.dumps({"rulesByStream": {}, "parentsByStream": {"//a": 5}}),
    ],
)
def test_malformed_payloads(payload):
    with pytest.raises(MalformedSnapshotError):
        load_snapshot(payload)


# ── Diff ─────────────────────────────────────────────────────────────


def test_diff_added():
    result = diff_rules([IGNORE_TMP], [IGNORE_TMP, REMAP_LIB])
    assert result.added == (REMAP_LIB,)
    assert result.removed == ()
    assert result.modified == ()


def test_diff_modified_target():
    new = StreamRule.remap("/lib/...", "/shared/lib2/...")
    result = diff_rules([REMAP_LIB], [new])
    assert result.added == () and result.removed == ()
    assert len(result.modified) == 1
    assert result.modified[0].old == REMAP_LIB
    assert result.modified[0].new == new


def test_diff_removed():
    result = diff_rules([IGNORE_TMP, REMAP_LIB], [REMAP_LIB])
    assert result.removed == (IGNORE_TMP,)
    assert result.summary() == "+0 -1 ~0"


def test_diff_ignores_order():
    assert diff_rules([IGNORE_TMP, REMAP_LIB], [REMAP_LIB, IGNORE_TMP]).is_empty


def test_diff_first_duplicate_wins():
    dup = StreamRule.remap("/lib/...", "/elsewhere/...")
    result = diff_rules([REMAP_LIB], [REMAP_LIB, dup])
    assert result.is_empty


def test_diff_snapshots_per_stream(hierarchy):
    before = create_snapshot(hierarchy)
    hierarchy.node("//depot/feature").local_rules.append(
        StreamRule.ignore("*.tmp", owner="//depot/feature")
    )
    hierarchy.root.local_rules.clear()
    after = create_snapshot(hierarchy)

    whole = diff_snapshots(before, after)
    assert [r.owner for r in whole.added] == ["//depot/feature"]
    assert [r.owner for r in whole.removed] == ["//depot/main"]

    only_feature = diff_snapshots(before, after, stream="//depot/feature")
    assert only_feature.removed == ()
    assert len(only_feature.added) == 1


def test_moving_rule_between_streams_is_add_plus_remove():
    a = Snapshot({"//a": [IGNORE_TMP.with_owner("//a")], "//b": []})
    b = Snapshot({"//a": [], "//b": [IGNORE_TMP.with_owner("//b")]})
    result = diff_snapshots(a, b)
    assert len(result.added) == 1 and len(result.removed) == 1


# ── Restore ──────────────────────────────────────────────────────────


def test_restore_is_idempotent(hierarchy):
    before = _state(hierarchy)
    restore_snapshot(create_snapshot(hierarchy), hierarchy)
    assert _state(hierarchy) == before


def test_restore_brings_back_rules_and_parents(hierarchy):
    snap = create_snapshot(hierarchy)
    feature = hierarchy.node("//depot/feature")
    feature.parent_path = "//depot/release"
    hierarchy.node("//depot/dev").local_rules.clear()

    summary = restore_snapshot(snap, hierarchy)

    assert feature.parent_path == "//depot/dev"
    assert hierarchy.node("//depot/dev").local_rules == [
        StreamRule.remap("lib/...", "//depot/shared/lib/...")
    ]
    assert summary.streams_restored == 4
    assert summary.parents_restored == 4
    assert summary.rules_restored == 3


def test_restore_without_parent_info_leaves_parents(hierarchy):
    snap = create_snapshot(hierarchy, track_parents=False)
    feature = hierarchy.node("//depot/feature")
    feature.parent_path = "//depot/release"
    summary = restore_snapshot(snap, hierarchy)
    assert feature.parent_path == "//depot/release"
    assert summary.parents_restored == 0


def test_restore_skips_streams_missing_from_snapshot(hierarchy):
    snap = Snapshot({"//depot/main": []}, {"//depot/main": None})
    restore_snapshot(snap, hierarchy)
    assert hierarchy.root.local_rules == []
    assert len(hierarchy.node("//depot/dev").local_rules) == 1
    assert hierarchy.node("//depot/dev").parent_path == "//depot/main"


def test_restore_reowns_rules(hierarchy):
    snap = Snapshot({"//depot/feature": [StreamRule.ignore("x/...", owner="//elsewhere")]})
    restore_snapshot(snap, hierarchy)
    assert hierarchy.node("//depot/feature").local_rules[0].owner == "//depot/feature"
