"""streamledger - stream rule editing with a versioned snapshot history."""

from streamledger.config import StreamLedgerConfig, load_config
from streamledger.errors import PublishError, StreamLedgerError
from streamledger.hierarchy import (
    HierarchyBuilder,
    RuleKind,
    RuleResolver,
    StreamHierarchy,
    StreamNode,
    StreamRule,
)
from streamledger.history import RevisionHistory
from streamledger.publish import PublishProtocol, PublishResult
from streamledger.session import HierarchySession
from streamledger.snapshot import Snapshot, create_snapshot, diff_snapshots, restore_snapshot
from streamledger.vcs import StreamServer, create_server

__version__ = "0.1.0"

__all__ = [
    "HierarchyBuilder",
    "HierarchySession",
    "PublishError",
    "PublishProtocol",
    "PublishResult",
    "RevisionHistory",
    "RuleKind",
    "RuleResolver",
    "Snapshot",
    "StreamHierarchy",
    "StreamLedgerConfig",
    "StreamLedgerError",
    "StreamNode",
    "StreamRule",
    "StreamServer",
    "create_server",
    "create_snapshot",
    "diff_snapshots",
    "load_config",
    "restore_snapshot",
]
