"""Publish protocol: write stream specs and commit versioned snapshot files."""

from streamledger.publish.paths import (
    local_path_from_workspace,
    resolve_storage_root,
    snapshot_file_name,
    snapshot_file_path,
)
from streamledger.publish.protocol import (
    OpenAction,
    PublishProtocol,
    PublishResult,
    PublishStage,
    default_description,
)

__all__ = [
    "OpenAction",
    "PublishProtocol",
    "PublishResult",
    "PublishStage",
    "default_description",
    "local_path_from_workspace",
    "resolve_storage_root",
    "snapshot_file_name",
    "snapshot_file_path",
]
