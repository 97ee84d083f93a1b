"""Transactional publish: stream spec update plus a versioned snapshot file.

Stages run strictly in order:

1. UpdateRemoteRules / UpdateRemoteParents - write the edited stream spec.
2. BuildSnapshot - capture the whole in-memory hierarchy.
3. ResolveSnapshotFilePath - one stable depot path per hierarchy root.
4. OpenForWrite - get the file open in a fresh changelist, then verify it.
5. Commit - submit, or leave the changelist pending.

Nothing is rolled back. A failure after the changelist exists leaves it
pending on the server and the raised PublishError says so.
"""

from __future__ import annotations

import getpass
import logging
import os
import stat
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from enum import Enum
from pathlib import Path

from pydantic import BaseModel

from streamledger.errors import (
    PathResolutionError,
    PublishError,
    PublishInProgressError,
    RemoteObjectNotFoundError,
    RemoteWriteConflictError,
    StreamLedgerError,
)
from streamledger.hierarchy.builder import StreamHierarchy
from streamledger.hierarchy.models import path_key
from streamledger.publish.paths import local_path_from_workspace, snapshot_file_path
from streamledger.snapshot.engine import create_snapshot
from streamledger.snapshot.models import Snapshot
from streamledger.snapshot.tracker import ParentChangeInfo
from streamledger.vcs.base import StreamServer
from streamledger.vcs.models import OpenedFile

logger = logging.getLogger(__name__)


class PublishStage(str, Enum):
    UPDATE_REMOTE_RULES = "UpdateRemoteRules"
    UPDATE_REMOTE_PARENTS = "UpdateRemoteParents"
    BUILD_SNAPSHOT = "BuildSnapshot"
    RESOLVE_SNAPSHOT_PATH = "ResolveSnapshotFilePath"
    OPEN_FOR_WRITE = "OpenForWrite"
    COMMIT = "Commit"


class OpenAction(str, Enum):
    REOPEN = "reopen"
    EDIT = "edit"
    ADD = "add"


class PublishResult(BaseModel):
    """Outcome of one successful publish."""

    stream_path: str
    snapshot_path: str
    local_path: str
    changelist: int
    open_action: OpenAction
    submitted: bool
    submitted_changelist: int | None = None
    streams_updated: int = 1
    parents_updated: int = 0

    @property
    def message(self) -> str:
        if self.submitted:
            return f"Stream {self.stream_path} saved and submitted successfully."
        return (
            f"Stream {self.stream_path} saved. Snapshot file left in pending "
            f"changelist {self.changelist}."
        )


def default_description(root_stream: str) -> str:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return f"[{user}] Update Stream Rule: {root_stream}"


class PublishProtocol:
    """Publishes edits made to one loaded hierarchy.

    A protocol instance allows one publish at a time; a concurrent call
    raises PublishInProgressError instead of waiting.
    """

    def __init__(
        self,
        server: StreamServer,
        hierarchy: StreamHierarchy,
        *,
        history_storage_path: str,
        auto_detect_workspace: bool = True,
    ) -> None:
        self.server = server
        self.hierarchy = hierarchy
        self.history_storage_path = history_storage_path
        self.auto_detect_workspace = auto_detect_workspace
        self._lock = threading.Lock()
        self._changelist: int | None = None
        self._step = ""

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    def publish(
        self,
        stream_path: str,
        *,
        description: str | None = None,
        submit: bool = True,
        parent_changes: Sequence[ParentChangeInfo] = (),
        rule_streams: Sequence[str] = (),
    ) -> PublishResult:
        """Publish *stream_path*'s rules and a snapshot of the whole hierarchy.

        ``rule_streams`` names other streams with unpublished rule edits;
        their specs are written in the same stage.
        """
        if not self._lock.acquire(blocking=False):
            raise PublishInProgressError(
                f"A publish is already running for {self.hierarchy.root.path}"
            )
        try:
            self._changelist = None
            return self._run(stream_path, description, submit, parent_changes, rule_streams)
        finally:
            self._lock.release()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    @contextmanager
    def _stage(self, stage: PublishStage) -> Iterator[None]:
        self._step = ""
        logger.info("Publish stage: %s", stage.value)
        try:
            yield
        except PublishError:
            raise
        except Exception as e:
            logger.error("Publish failed at %s (%s): %s", stage.value, self._step or "-", e)
            raise PublishError(
                stage.value, e, detail=self._step, changelist=self._changelist
            ) from e

    def _run(
        self,
        stream_path: str,
        description: str | None,
        submit: bool,
        parent_changes: Sequence[ParentChangeInfo],
        rule_streams: Sequence[str],
    ) -> PublishResult:
        root_path = self.hierarchy.root.path
        description = description or default_description(root_path)

        with self._stage(PublishStage.UPDATE_REMOTE_RULES):
            node = self.hierarchy.node(stream_path)
            updated = [node]
            for path in rule_streams:
                other = self.hierarchy.node(path)
                if other not in updated:
                    updated.append(other)
            for target in updated:
                self._step = target.path
                self.server.update_stream_rules(target.path, list(target.local_rules))

        with self._stage(PublishStage.UPDATE_REMOTE_PARENTS):
            for change in parent_changes:
                self._step = change.stream_path
                self.server.update_stream_parent(change.stream_path, change.new_parent)

        with self._stage(PublishStage.BUILD_SNAPSHOT):
            snapshot: Snapshot = create_snapshot(self.hierarchy)
            content = snapshot.to_json()

        with self._stage(PublishStage.RESOLVE_SNAPSHOT_PATH):
            depot_path = snapshot_file_path(root_path, self.history_storage_path)
            logger.info("Snapshot file: %s", depot_path)

        with self._stage(PublishStage.OPEN_FOR_WRITE):
            local_path, action = self._open_for_write(root_path, depot_path, content, description)

        changelist = self._changelist
        submitted_as: int | None = None
        with self._stage(PublishStage.COMMIT):
            if submit:
                self._step = "submit"
                submitted_as = self.server.submit(changelist)
                logger.info("Submitted %s in changelist %s", depot_path, submitted_as)
            else:
                logger.info("File left pending in changelist %s (submit skipped)", changelist)

        return PublishResult(
            stream_path=node.path,
            snapshot_path=depot_path,
            local_path=local_path,
            changelist=changelist,
            open_action=action,
            submitted=submit,
            submitted_changelist=submitted_as,
            streams_updated=len(updated),
            parents_updated=len(parent_changes),
        )

    # ------------------------------------------------------------------
    # OpenForWrite
    # ------------------------------------------------------------------

    def _open_for_write(
        self, root_path: str, depot_path: str, content: str, description: str
    ) -> tuple[str, OpenAction]:
        if self.auto_detect_workspace:
            self._step = "workspace detection"
            workspace = self.server.find_workspace_for_stream(root_path)
            if workspace:
                logger.info("Using workspace %s for %s", workspace, root_path)
                self.server.use_workspace(workspace)

        self._step = "resolve local path"
        local_path = self._resolve_local_path(depot_path)
        logger.info("Resolved local path: %s", local_path)

        self._step = "create changelist"
        self._changelist = self.server.create_changelist(description)
        changelist = self._changelist

        self._step = "check opened"
        opened = self.server.find_opened(depot_path)
        if opened is not None:
            action = self._reopen(depot_path, local_path, content, opened)
        else:
            action = self._edit_or_add(depot_path, local_path, content)

        self._step = "verification step"
        opened_files = {path_key(p) for p in self.server.list_opened_files(changelist)}
        if path_key(depot_path) not in opened_files:
            raise RemoteWriteConflictError(
                f"File {depot_path} is not opened in changelist {changelist}. "
                "Check that the file is mapped in your workspace."
            )
        logger.info("Verified %s is opened in changelist %s", depot_path, changelist)
        return local_path, action

    def _resolve_local_path(self, depot_path: str) -> str:
        local_path: str | None = None
        try:
            local_path = self.server.resolve_workspace_path(depot_path)
        except StreamLedgerError as e:
            logger.info("Workspace mapping query failed for %s: %s", depot_path, e)
        if local_path:
            return local_path

        logger.info("Attempting fallback path resolution for %s", depot_path)
        workspace = self.server.workspace_info()
        local_path = local_path_from_workspace(depot_path, workspace.root, workspace.stream)
        if not local_path:
            raise PathResolutionError(depot_path, workspace.name)
        return local_path

    def _reopen(
        self, depot_path: str, local_path: str, content: str, opened: OpenedFile
    ) -> OpenAction:
        self._step = "reopen"
        where = opened.changelist if opened.changelist is not None else "default"
        logger.info(
            "File is already opened for %s in changelist %s; reopening into %s",
            opened.action,
            where,
            self._changelist,
        )
        self.server.reopen(depot_path, self._changelist)
        _write_local_file(local_path, content)
        return OpenAction.REOPEN

    def _edit_or_add(self, depot_path: str, local_path: str, content: str) -> OpenAction:
        self._step = "check head revision"
        try:
            exists = self.server.file_exists_at_head(depot_path)
        except RemoteObjectNotFoundError:
            exists = False

        if exists:
            try:
                self._step = "sync"
                self.server.sync(depot_path)
                self._step = "open for edit"
                self.server.open_for_edit(depot_path, self._changelist)
            except StreamLedgerError as e:
                logger.info("Open for edit failed: %s. Trying add.", e)
            else:
                _write_local_file(local_path, content)
                logger.info("Opened %s for edit", depot_path)
                return OpenAction.EDIT

        self._step = "open for add"
        _write_local_file(local_path, content)
        try:
            self.server.open_for_add(depot_path, self._changelist)
        except RemoteWriteConflictError:
            # Another session opened the file between the check and the add.
            opened = self.server.find_opened(depot_path)
            if opened is None or opened.changelist == self._changelist:
                raise
            return self._reopen(depot_path, local_path, content, opened)
        logger.info("Opened %s for add", depot_path)
        return OpenAction.ADD


def _write_local_file(local_path: str, content: str) -> None:
    path = Path(local_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists() and not os.access(path, os.W_OK):
        path.chmod(path.stat().st_mode | stat.S_IWUSR)
    path.write_text(content, encoding="utf-8")
