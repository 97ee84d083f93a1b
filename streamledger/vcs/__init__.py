"""Version-control server access for streamledger."""

import os

from streamledger.config.models import ConnectionConfig
from streamledger.vcs.base import StreamServer
from streamledger.vcs.models import OpenedFile, RevisionInfo, StreamRecord, WorkspaceInfo


def create_server(config: ConnectionConfig) -> StreamServer:
    """Create a Perforce-backed server from config.

    The password, if any, comes from the environment variable named in
    config.password_env. P4Python is only imported here.
    """
    from streamledger.vcs.perforce import PerforceServer

    password = os.environ.get(config.password_env, "") if config.password_env else ""
    return PerforceServer(config, password=password or None)


__all__ = [
    "StreamServer",
    "StreamRecord",
    "RevisionInfo",
    "OpenedFile",
    "WorkspaceInfo",
    "create_server",
]
