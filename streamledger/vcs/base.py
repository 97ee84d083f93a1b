"""Abstract interface to the version-control server."""

from abc import ABC, abstractmethod

from streamledger.hierarchy.models import StreamRule
from streamledger.vcs.models import OpenedFile, RevisionInfo, StreamRecord, WorkspaceInfo


class StreamServer(ABC):
    """Session handle for one connection to the server.

    Every hierarchy operation receives the handle explicitly, so several
    sessions can coexist and tests can substitute an in-memory fake.
    All methods block; callers run them off any interactive thread.
    """

    # -- session -----------------------------------------------------------

    @abstractmethod
    def connect(self) -> None: ...

    @abstractmethod
    def disconnect(self) -> None: ...

    @abstractmethod
    def is_connected(self) -> bool: ...

    # -- streams -----------------------------------------------------------

    @abstractmethod
    def fetch_stream_record(self, path: str) -> StreamRecord:
        """Fetch one stream; raises RemoteObjectNotFoundError if absent."""
        ...

    @abstractmethod
    def fetch_all_stream_records(self) -> list[StreamRecord]: ...

    @abstractmethod
    def fetch_stream_rules(self, path: str) -> list[StreamRule]:
        """Return the rules defined directly on a stream, owner set to *path*."""
        ...

    @abstractmethod
    def update_stream_rules(self, path: str, rules: list[StreamRule]) -> None:
        """Replace the remap and ignore entries on a stream spec."""
        ...

    @abstractmethod
    def update_stream_parent(self, path: str, parent: str | None) -> None: ...

    # -- files -------------------------------------------------------------

    @abstractmethod
    def read_file(self, depot_path: str) -> bytes: ...

    @abstractmethod
    def read_file_at_revision(self, depot_path: str, revision: int) -> bytes: ...

    @abstractmethod
    def list_file_revisions(self, depot_path: str) -> list[RevisionInfo]:
        """Revisions newest first, as the server's file log reports them."""
        ...

    @abstractmethod
    def file_exists_at_head(self, depot_path: str) -> bool:
        """True if the head revision exists and is not a delete."""
        ...

    @abstractmethod
    def sync(self, depot_path: str) -> None: ...

    # -- workspace ---------------------------------------------------------

    @abstractmethod
    def resolve_workspace_path(self, depot_path: str) -> str | None:
        """Map a depot path to a local path via the workspace view."""
        ...

    @abstractmethod
    def workspace_info(self) -> WorkspaceInfo: ...

    @abstractmethod
    def find_workspace_for_stream(self, stream_path: str) -> str | None:
        """Name of a workspace owned by this user that maps *stream_path*."""
        ...

    @abstractmethod
    def use_workspace(self, name: str) -> None: ...

    # -- changelists -------------------------------------------------------

    @abstractmethod
    def create_changelist(self, description: str) -> int: ...

    @abstractmethod
    def find_opened(self, depot_path: str) -> OpenedFile | None:
        """The pending open of *depot_path* in any changelist, if any."""
        ...

    @abstractmethod
    def open_for_edit(self, depot_path: str, changelist: int) -> None: ...

    @abstractmethod
    def open_for_add(self, depot_path: str, changelist: int) -> None: ...

    @abstractmethod
    def reopen(self, depot_path: str, changelist: int) -> None: ...

    @abstractmethod
    def list_opened_files(self, changelist: int) -> list[str]:
        """Depot paths opened in *changelist*."""
        ...

    @abstractmethod
    def submit(self, changelist: int) -> int:
        """Submit and return the final changelist number."""
        ...
