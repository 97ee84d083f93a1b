"""Perforce implementation of StreamServer using P4Python.

P4Python calls block; callers run them off any interactive thread.
The client runs with ``exception_level = 1`` so "no such file" style
warnings come back as empty results instead of exceptions.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import socket
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from functools import cached_property
from typing import Any

from P4 import P4, P4Exception

from streamledger.config.models import ConnectionConfig
from streamledger.errors import (
    NotConnectedError,
    RemoteObjectNotFoundError,
    RemoteWriteConflictError,
    StreamLedgerError,
)
from streamledger.hierarchy.models import RuleKind, StreamRule, path_key
from streamledger.vcs.base import StreamServer
from streamledger.vcs.models import OpenedFile, RevisionInfo, StreamRecord, WorkspaceInfo

logger = logging.getLogger(__name__)

_SERVER_YEAR_RE = re.compile(r"/(\d{4})\.\d+")
_CHANGE_CREATED_RE = re.compile(r"Change (\d+) created")
_NOT_FOUND_HINTS = ("no such", "doesn't exist", "not in client view", "unknown stream")


# ----------------------------------------------------------------------
# Stream spec writing, one strategy per server generation
# ----------------------------------------------------------------------

SpecWriter = Callable[[P4, dict], None]


def _write_spec_modern(p4: P4, spec: dict) -> None:
    p4.save_stream(spec)


def _format_spec_section(name: str, entries: list[str]) -> str:
    if not entries:
        return ""
    body = "\n".join(f"\t{e}" for e in entries)
    return f"{name}:\n{body}\n\n"


def format_legacy_spec(spec: dict) -> str:
    """Render a stream spec as form text with the Remapped and Ignored sections.

    Servers before 2020 hand out a spec form that omits those sections,
    so the spec is written through ``p4 stream -i`` with explicit text.
    """
    description = (spec.get("Description") or "").strip() or "Created by streamledger."
    desc_lines = "\n".join(f"\t{line}" for line in description.splitlines())
    text = (
        f"Stream:\t{spec['Stream']}\n\n"
        f"Owner:\t{spec.get('Owner', '')}\n\n"
        f"Name:\t{spec.get('Name', '')}\n\n"
        f"Parent:\t{spec.get('Parent', 'none')}\n\n"
        f"Type:\t{spec.get('Type', 'development')}\n\n"
        f"Description:\n{desc_lines}\n\n"
        f"Options:\t{spec.get('Options', '')}\n\n"
    )
    text += _format_spec_section("Paths", list(spec.get("Paths") or []))
    text += _format_spec_section("Remapped", list(spec.get("Remapped") or []))
    text += _format_spec_section("Ignored", list(spec.get("Ignored") or []))
    return text


def _write_spec_legacy(p4: P4, spec: dict) -> None:
    p4.input = format_legacy_spec(spec)
    p4.run_stream("-i")


# (minimum server year, writer); first match wins
SPEC_WRITE_STRATEGIES: list[tuple[int, SpecWriter]] = [
    (2020, _write_spec_modern),
    (0, _write_spec_legacy),
]


def select_spec_writer(server_year: int | None) -> SpecWriter:
    """Pick the spec writer for a server; unknown versions get the modern one."""
    if server_year is None:
        return _write_spec_modern
    for min_year, writer in SPEC_WRITE_STRATEGIES:
        if server_year >= min_year:
            return writer
    return _write_spec_modern


def parse_server_year(server_version: str) -> int | None:
    """``P4D/LINUX26X86_64/2019.1/1796703 (2019/05/13)`` -> 2019."""
    m = _SERVER_YEAR_RE.search(server_version or "")
    return int(m.group(1)) if m else None


# ----------------------------------------------------------------------
# Stream spec <-> rules
# ----------------------------------------------------------------------


def _quote(path: str) -> str:
    return f'"{path}"' if " " in path else path


def _split_entry(entry: str) -> list[str]:
    try:
        return shlex.split(entry)
    except ValueError:
        return entry.split()


def rules_from_spec(spec: dict, stream_path: str) -> list[StreamRule]:
    """Read rules from a stream spec.

    ``exclude`` lines in Paths are read as ignore rules as well, since
    older tooling stored ignores there.
    """
    rules: list[StreamRule] = []
    for entry in spec.get("Paths") or []:
        parts = _split_entry(entry)
        if len(parts) >= 2 and parts[0].lower() == "exclude":
            rules.append(StreamRule(RuleKind.IGNORE, parts[1], None, stream_path))
    for entry in spec.get("Remapped") or []:
        parts = _split_entry(entry)
        if len(parts) >= 2:
            rules.append(StreamRule(RuleKind.REMAP, parts[0], parts[1], stream_path))
    for entry in spec.get("Ignored") or []:
        parts = _split_entry(entry)
        if parts:
            rules.append(StreamRule(RuleKind.IGNORE, parts[0], None, stream_path))
    return rules


def apply_rules_to_spec(spec: dict, rules: list[StreamRule]) -> dict:
    """Write rules into the Remapped/Ignored fields and strip Paths excludes."""
    remapped = [
        f"{_quote(r.pattern)} {_quote(r.remap_target)}" for r in rules if r.kind is RuleKind.REMAP
    ]
    ignored = [_quote(r.pattern) for r in rules if r.kind is RuleKind.IGNORE]
    for field, entries in (("Remapped", remapped), ("Ignored", ignored)):
        if entries:
            spec[field] = entries
        else:
            spec.pop(field, None)
    if spec.get("Paths"):
        spec["Paths"] = [
            p for p in spec["Paths"] if not p.strip().lower().startswith("exclude ")
        ]
    return spec


# ----------------------------------------------------------------------
# Server
# ----------------------------------------------------------------------


class PerforceServer(StreamServer):
    """StreamServer backed by a P4Python connection."""

    def __init__(self, config: ConnectionConfig, password: str | None = None) -> None:
        self.config = config
        self._password = password
        self._server_year: int | None = None
        self._write_spec: SpecWriter = _write_spec_modern

    @cached_property
    def _p4(self) -> P4:
        p4 = P4()
        p4.exception_level = 1
        return p4

    @contextmanager
    def _errors(self, operation: str, path: str = "", *, write: bool = False) -> Iterator[None]:
        """Translate P4Exception into the streamledger taxonomy."""
        try:
            yield
        except P4Exception as e:
            message = str(e)
            logger.debug("%s(%s) failed: %s", operation, path, message)
            if any(hint in message.lower() for hint in _NOT_FOUND_HINTS):
                raise RemoteObjectNotFoundError(path or operation) from e
            if write:
                raise RemoteWriteConflictError(f"{operation} {path} rejected: {message}") from e
            raise StreamLedgerError(f"{operation} {path} failed: {message}") from e

    def _ensure_connected(self, operation: str) -> None:
        if not self.is_connected():
            raise NotConnectedError(operation)

    def _run(self, operation: str, *args: Any, path: str = "", write: bool = False) -> list:
        self._ensure_connected(operation)
        logger.debug("p4 %s %s", operation, " ".join(str(a) for a in args))
        with self._errors(operation, path, write=write):
            return getattr(self._p4, f"run_{operation}")(*args)

    # -- session -----------------------------------------------------------

    def connect(self) -> None:
        p4 = self._p4
        p4.port = self.config.port
        if self.config.user:
            p4.user = self.config.user
        if self.config.client:
            p4.client = self.config.client
        logger.info("Connecting to %s as %s", self.config.port, self.config.user or p4.user)
        with self._errors("connect", self.config.port):
            p4.connect()
            if self._password:
                p4.password = self._password
                p4.run_login()
            info = p4.run_info()
        version = info[0].get("serverVersion", "") if info else ""
        self._server_year = parse_server_year(version)
        self._write_spec = select_spec_writer(self._server_year)
        logger.info(
            "Connected (server %s, spec writer %s)",
            version or "unknown",
            self._write_spec.__name__,
        )

    def disconnect(self) -> None:
        if self._p4.connected():
            self._p4.disconnect()

    def is_connected(self) -> bool:
        return bool(self._p4.connected())

    # -- streams -----------------------------------------------------------

    @staticmethod
    def _record(data: dict) -> StreamRecord:
        return StreamRecord(
            path=data["Stream"],
            name=data.get("Name", ""),
            parent=data.get("Parent"),
            type=data.get("Type", "development"),
            description=(data.get("desc") or data.get("Description") or "").strip(),
        )

    def fetch_stream_record(self, path: str) -> StreamRecord:
        found = self._run("streams", path, path=path)
        records = [
            r for r in found if isinstance(r, dict) and path_key(r.get("Stream")) == path_key(path)
        ]
        if not records:
            raise RemoteObjectNotFoundError(path, kind="stream")
        return self._record(records[0])

    def fetch_all_stream_records(self) -> list[StreamRecord]:
        return [self._record(r) for r in self._run("streams") if isinstance(r, dict)]

    def _fetch_spec(self, path: str) -> dict:
        self.fetch_stream_record(path)
        with self._errors("fetch_stream", path):
            return self._p4.fetch_stream(path)

    def fetch_stream_rules(self, path: str) -> list[StreamRule]:
        return rules_from_spec(self._fetch_spec(path), path)

    def update_stream_rules(self, path: str, rules: list[StreamRule]) -> None:
        logger.info("Updating rules for stream: %s", path)
        spec = apply_rules_to_spec(self._fetch_spec(path), rules)
        with self._errors("update_stream", path, write=True):
            self._write_spec(self._p4, spec)

    def update_stream_parent(self, path: str, parent: str | None) -> None:
        logger.info("Updating parent of %s to %s", path, parent or "none")
        spec = self._fetch_spec(path)
        spec["Parent"] = parent or "none"
        with self._errors("update_stream", path, write=True):
            self._write_spec(self._p4, spec)

    # -- files -------------------------------------------------------------

    def _print(self, spec: str, path: str) -> bytes:
        output = self._run("print", "-q", spec, path=path)
        chunks = [c for c in output if not isinstance(c, dict)]
        if not output:
            raise RemoteObjectNotFoundError(spec, kind="file")
        return b"".join(c if isinstance(c, bytes) else str(c).encode("utf-8") for c in chunks)

    def read_file(self, depot_path: str) -> bytes:
        return self._print(depot_path, depot_path)

    def read_file_at_revision(self, depot_path: str, revision: int) -> bytes:
        return self._print(f"{depot_path}#{revision}", depot_path)

    def list_file_revisions(self, depot_path: str) -> list[RevisionInfo]:
        revisions: list[RevisionInfo] = []
        for depot_file in self._run("filelog", "-l", depot_path, path=depot_path):
            for rev in getattr(depot_file, "revisions", []):
                revisions.append(
                    RevisionInfo(
                        revision=int(rev.rev),
                        changelist=int(rev.change),
                        timestamp=rev.time,
                        user=rev.user or "",
                        description=(rev.desc or "").strip(),
                        action=rev.action or "",
                    )
                )
        revisions.sort(key=lambda r: r.revision, reverse=True)
        return revisions

    def file_exists_at_head(self, depot_path: str) -> bool:
        files = self._run("files", depot_path, path=depot_path)
        if not files or not isinstance(files[0], dict):
            return False
        return files[0].get("action") not in ("delete", "move/delete")

    def sync(self, depot_path: str) -> None:
        self._run("sync", depot_path, path=depot_path)

    # -- workspace ---------------------------------------------------------

    def resolve_workspace_path(self, depot_path: str) -> str | None:
        where = self._run("where", depot_path, path=depot_path)
        if where and isinstance(where[0], dict):
            return where[0].get("path") or None
        return None

    def workspace_info(self) -> WorkspaceInfo:
        self._ensure_connected("workspace_info")
        with self._errors("fetch_client"):
            spec = self._p4.fetch_client()
        return WorkspaceInfo(
            name=spec.get("Client", self._p4.client),
            root=spec.get("Root", ""),
            stream=spec.get("Stream"),
        )

    def find_workspace_for_stream(self, stream_path: str) -> str | None:
        host = socket.gethostname().lower()
        candidates = [
            c
            for c in self._run("clients", "-u", self._p4.user, "-S", stream_path, path=stream_path)
            if isinstance(c, dict)
            and c.get("client")
            and (not c.get("Host") or c["Host"].lower() == host)
        ]
        for c in candidates:
            if c.get("Root") and os.path.isdir(c["Root"]):
                return c["client"]
        if candidates:
            logger.info("Falling back to workspace %s (root check failed)", candidates[0]["client"])
            return candidates[0]["client"]
        logger.info("No workspace for %s on this host", stream_path)
        return None

    def use_workspace(self, name: str) -> None:
        self._p4.client = name

    # -- changelists -------------------------------------------------------

    def create_changelist(self, description: str) -> int:
        self._ensure_connected("create_changelist")
        with self._errors("create_changelist", write=True):
            change = self._p4.fetch_change()
            change["Description"] = description
            change.pop("Files", None)
            result = self._p4.save_change(change)
        m = _CHANGE_CREATED_RE.search(" ".join(str(r) for r in result))
        if not m:
            raise RemoteWriteConflictError(f"Unexpected response creating changelist: {result}")
        return int(m.group(1))

    def find_opened(self, depot_path: str) -> OpenedFile | None:
        opened = [o for o in self._run("opened", depot_path, path=depot_path) if isinstance(o, dict)]
        if not opened:
            return None
        change = opened[0].get("change", "default")
        return OpenedFile(
            depot_path=opened[0].get("depotFile", depot_path),
            changelist=int(change) if str(change).isdigit() else None,
            action=opened[0].get("action", "edit"),
        )

    def _open(self, operation: str, depot_path: str, changelist: int) -> None:
        result = self._run(operation, "-c", str(changelist), depot_path, path=depot_path, write=True)
        if not [r for r in result if isinstance(r, dict)]:
            warnings = "; ".join(str(w) for w in self._p4.warnings) or "no files were opened"
            raise RemoteWriteConflictError(f"{operation} {depot_path}: {warnings}")

    def open_for_edit(self, depot_path: str, changelist: int) -> None:
        self._open("edit", depot_path, changelist)

    def open_for_add(self, depot_path: str, changelist: int) -> None:
        self._open("add", depot_path, changelist)

    def reopen(self, depot_path: str, changelist: int) -> None:
        self._run("reopen", "-c", str(changelist), depot_path, path=depot_path, write=True)

    def list_opened_files(self, changelist: int) -> list[str]:
        opened = self._run("opened", "-c", str(changelist))
        return [o["depotFile"] for o in opened if isinstance(o, dict) and "depotFile" in o]

    def submit(self, changelist: int) -> int:
        result = self._run("submit", "-c", str(changelist), write=True)
        for entry in reversed(result):
            if isinstance(entry, dict) and "submittedChange" in entry:
                return int(entry["submittedChange"])
        raise RemoteWriteConflictError(f"Submit of changelist {changelist} returned no results")
