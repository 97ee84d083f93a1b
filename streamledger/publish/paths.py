"""Depot and local path derivation for snapshot files."""

from __future__ import annotations

import os

from streamledger.hierarchy.models import path_key


def snapshot_file_name(stream_path: str) -> str:
    """``//depot/main/dev`` -> ``depot_main_dev.json``."""
    return stream_path.strip("/").replace("/", "_") + ".json"


def resolve_storage_root(root_stream: str, history_storage_path: str) -> str:
    """Directory that holds snapshot files for a hierarchy.

    Absolute depot paths (``//...``) are used as-is; anything else is
    nested under the root stream.
    """
    storage = (history_storage_path or "").strip()
    if not storage:
        raise ValueError("history storage path cannot be empty")
    if storage.startswith("//"):
        return storage.rstrip("/")
    return f"{root_stream.rstrip('/')}/{storage.strip('/')}"


def snapshot_file_path(root_stream: str, history_storage_path: str) -> str:
    """Stable depot path of the snapshot file for one hierarchy root."""
    if not root_stream or not root_stream.strip():
        raise ValueError("root stream path cannot be empty")
    base = resolve_storage_root(root_stream, history_storage_path)
    return f"{base}/{snapshot_file_name(root_stream)}"


def local_path_from_workspace(
    depot_path: str, workspace_root: str, workspace_stream: str | None
) -> str | None:
    """Derive a local path for a depot path inside a stream workspace.

    Returns None when the workspace is not a stream workspace or the
    depot path lies outside its stream.
    """
    if not workspace_root or not workspace_stream:
        return None
    prefix = workspace_stream.rstrip("/")
    if not path_key(depot_path).startswith(path_key(prefix) + "/"):
        return None
    relative = depot_path[len(prefix):].lstrip("/\\")
    return os.path.join(workspace_root, *relative.split("/"))
