"""Exception taxonomy for stream hierarchy operations."""

from __future__ import annotations


class StreamLedgerError(Exception):
    """Base class for every error raised by streamledger."""


class NotConnectedError(StreamLedgerError):
    """An operation needed a server session but none is active."""

    def __init__(self, operation: str = "") -> None:
        self.operation = operation
        msg = "Not connected to the version-control server"
        if operation:
            msg += f" (attempted {operation})"
        super().__init__(msg)


class RemoteObjectNotFoundError(StreamLedgerError):
    """A stream or depot file does not exist on the server."""

    def __init__(self, path: str, kind: str = "object") -> None:
        self.path = path
        self.kind = kind
        super().__init__(f"{kind} not found: {path}")


class RemoteWriteConflictError(StreamLedgerError):
    """The server rejected an open, reopen, or submit request."""


class MalformedSnapshotError(StreamLedgerError):
    """Snapshot content could not be deserialized."""


class PathResolutionError(StreamLedgerError):
    """A depot path could not be mapped into the local workspace."""

    def __init__(self, depot_path: str, workspace: str | None = None) -> None:
        self.depot_path = depot_path
        self.workspace = workspace
        where = f" in workspace '{workspace}'" if workspace else ""
        super().__init__(
            f"Could not determine local path for '{depot_path}'{where}. "
            "Ensure it is mapped in the current workspace."
        )


class RuleEditError(StreamLedgerError):
    """A rule edit was rejected (inherited rule, missing rule, bad input)."""


class HierarchyCycleError(StreamLedgerError):
    """A parent change would make a stream its own ancestor."""


class PublishInProgressError(StreamLedgerError):
    """A publish is already running for this hierarchy."""


class PublishError(StreamLedgerError):
    """Wraps a failure in one stage of the publish protocol.

    ``changelist`` is set when a pending changelist was created before the
    failure and is still on the server for manual resolution.
    """

    def __init__(
        self,
        stage: str,
        cause: Exception | None = None,
        *,
        detail: str = "",
        changelist: int | None = None,
    ) -> None:
        self.stage = stage
        self.detail = detail
        self.changelist = changelist
        where = f"{stage}: {detail}" if detail else stage
        msg = f"failed at {where}"
        if cause is not None:
            msg += f": {cause}"
        if changelist is not None:
            msg += f" (pending changelist {changelist} left for manual resolution)"
        else:
            msg += " (no pending changelist was left behind)"
        super().__init__(msg)
        self.__cause__ = cause

    @property
    def left_pending_changelist(self) -> bool:
        return self.changelist is not None
