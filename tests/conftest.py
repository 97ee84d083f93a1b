"""Shared test fixtures for streamledger."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from streamledger.config.models import ConnectionConfig, StreamLedgerConfig
from streamledger.errors import (
    NotConnectedError,
    RemoteObjectNotFoundError,
    RemoteWriteConflictError,
)
from streamledger.hierarchy import HierarchyBuilder, StreamRule, path_key
from streamledger.publish.paths import local_path_from_workspace
from streamledger.vcs.base import StreamServer
from streamledger.vcs.models import OpenedFile, RevisionInfo, StreamRecord, WorkspaceInfo

SNAPSHOT_PATH = "//depot/main/stream-history/depot_main.json"


class FakeStreamServer(StreamServer):
    """In-memory StreamServer that records every call.

    ``fail`` maps a method name to the exception it should raise.
    Submitting a changelist reads each file's content back from the
    workspace directory, so published snapshots land in ``files``.
    """

    def __init__(self, workspace_root: Path) -> None:
        self.connected = True
        self.records: dict[str, StreamRecord] = {}
        self.rules: dict[str, list[StreamRule]] = {}
        self.files: dict[str, list[bytes]] = {}
        self.opened: dict[str, OpenedFile] = {}
        self.changelists: dict[int, list[str]] = {}
        self.next_changelist = 100
        self.workspace = WorkspaceInfo(name="alice-ws", root=str(workspace_root), stream="//depot/main")
        self.workspace_for_stream: str | None = None
        self.where_enabled = True
        self.hide_from_verification: set[int] = set()
        self.fail: dict[str, Exception] = {}
        self.calls: list[tuple] = []

    # -- helpers for tests -------------------------------------------------

    def add_stream(self, path, parent=None, rules=(), type="development"):
        self.records[path_key(path)] = StreamRecord(path=path, parent=parent, type=type)
        self.rules[path_key(path)] = list(rules)

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]

    def _call(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.fail:
            raise self.fail[name]

    def _local(self, depot_path: str) -> str | None:
        return local_path_from_workspace(depot_path, self.workspace.root, self.workspace.stream)

    # -- session -----------------------------------------------------------

    def connect(self) -> None:
        self._call("connect")
        self.connected = True

    def disconnect(self) -> None:
        self._call("disconnect")
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    # -- streams -----------------------------------------------------------

    def fetch_stream_record(self, path):
        self._call("fetch_stream_record", path)
        if path_key(path) not in self.records:
            raise RemoteObjectNotFoundError(path, kind="stream")
        return self.records[path_key(path)]

    def fetch_all_stream_records(self):
        self._call("fetch_all_stream_records")
        return list(self.records.values())

    def fetch_stream_rules(self, path):
        self._call("fetch_stream_rules", path)
        if not self.connected:
            raise NotConnectedError("fetch_stream_rules")
        return list(self.rules.get(path_key(path), []))

    def update_stream_rules(self, path, rules):
        self._call("update_stream_rules", path, list(rules))
        self.rules[path_key(path)] = list(rules)

    def update_stream_parent(self, path, parent):
        self._call("update_stream_parent", path, parent)
        record = self.records[path_key(path)]
        self.records[path_key(path)] = record.model_copy(update={"parent": parent})

    # -- files -------------------------------------------------------------

    def read_file(self, depot_path):
        self._call("read_file", depot_path)
        if depot_path not in self.files:
            raise RemoteObjectNotFoundError(depot_path, kind="file")
        return self.files[depot_path][-1]

    def read_file_at_revision(self, depot_path, revision):
        self._call("read_file_at_revision", depot_path, revision)
        revisions = self.files.get(depot_path, [])
        if not 1 <= revision <= len(revisions):
            raise RemoteObjectNotFoundError(f"{depot_path}#{revision}", kind="file")
        return revisions[revision - 1]

    def list_file_revisions(self, depot_path):
        self._call("list_file_revisions", depot_path)
        # oldest first, the way a careless server might return them
        return [
            RevisionInfo(
                revision=i,
                changelist=i * 10,
                timestamp=datetime(2026, 1, i, 10, 0),
                user="alice",
                description=f"revision {i}",
                action="add" if i == 1 else "edit",
            )
            for i in range(1, len(self.files.get(depot_path, [])) + 1)
        ]

    def file_exists_at_head(self, depot_path):
        self._call("file_exists_at_head", depot_path)
        return depot_path in self.files

    def sync(self, depot_path):
        self._call("sync", depot_path)

    # -- workspace ---------------------------------------------------------

    def resolve_workspace_path(self, depot_path):
        self._call("resolve_workspace_path", depot_path)
        return self._local(depot_path) if self.where_enabled else None

    def workspace_info(self):
        self._call("workspace_info")
        return self.workspace

    def find_workspace_for_stream(self, stream_path):
        self._call("find_workspace_for_stream", stream_path)
        return self.workspace_for_stream

    def use_workspace(self, name):
        self._call("use_workspace", name)

    # -- changelists -------------------------------------------------------

    def create_changelist(self, description):
        self._call("create_changelist", description)
        number = self.next_changelist
        self.next_changelist += 1
        self.changelists[number] = []
        return number

    def find_opened(self, depot_path):
        self._call("find_opened", depot_path)
        return self.opened.get(path_key(depot_path))

    def _move_to(self, depot_path, changelist, action):
        for files in self.changelists.values():
            if depot_path in files:
                files.remove(depot_path)
        self.changelists.setdefault(changelist, []).append(depot_path)
        self.opened[path_key(depot_path)] = OpenedFile(
            depot_path=depot_path, changelist=changelist, action=action
        )

    def open_for_edit(self, depot_path, changelist):
        self._call("open_for_edit", depot_path, changelist)
        self._move_to(depot_path, changelist, "edit")

    def open_for_add(self, depot_path, changelist):
        self._call("open_for_add", depot_path, changelist)
        if path_key(depot_path) in self.opened:
            raise RemoteWriteConflictError(f"{depot_path} - can't add (already opened)")
        self._move_to(depot_path, changelist, "add")

    def reopen(self, depot_path, changelist):
        self._call("reopen", depot_path, changelist)
        action = self.opened[path_key(depot_path)].action
        self._move_to(depot_path, changelist, action)

    def list_opened_files(self, changelist):
        self._call("list_opened_files", changelist)
        if changelist in self.hide_from_verification:
            return []
        return list(self.changelists.get(changelist, []))

    def submit(self, changelist):
        self._call("submit", changelist)
        for depot_path in self.changelists.pop(changelist, []):
            content = Path(self._local(depot_path)).read_bytes()
            self.files.setdefault(depot_path, []).append(content)
            self.opened.pop(path_key(depot_path), None)
        return changelist + 1000


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    root = tmp_path / "ws"
    root.mkdir()
    return root


@pytest.fixture
def fake_server(workspace_root):
    """Hierarchy under //depot/main plus one unrelated mainline.

    //depot/main     ignore tmp/...
      //depot/dev    remap lib/... -> //depot/shared/lib/...
        //depot/feature
      //depot/release  ignore *.log
    //other/main     ignore build/...
    """
    server = FakeStreamServer(workspace_root)
    server.add_stream("//depot/main", type="mainline", rules=[StreamRule.ignore("tmp/...")])
    server.add_stream(
        "//depot/dev",
        parent="//depot/main",
        rules=[StreamRule.remap("lib/...", "//depot/shared/lib/...")],
    )
    server.add_stream("//depot/feature", parent="//depot/dev")
    server.add_stream(
        "//depot/release", parent="//depot/main", type="release", rules=[StreamRule.ignore("*.log")]
    )
    server.add_stream("//other/main", type="mainline", rules=[StreamRule.ignore("build/...")])
    return server


@pytest.fixture
def hierarchy(fake_server):
    return HierarchyBuilder(fake_server).build("//depot/main")


@pytest.fixture
def sample_config():
    return StreamLedgerConfig(connection=ConnectionConfig(auto_detect_workspace=False))
