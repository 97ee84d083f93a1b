"""Hierarchy builder: turns the server's flat stream list into a tree."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterator

from streamledger.errors import NotConnectedError, StreamLedgerError
from streamledger.hierarchy.models import StreamNode, StreamRule, path_key
from streamledger.vcs.base import StreamServer
from streamledger.vcs.models import StreamRecord

logger = logging.getLogger(__name__)


class StreamHierarchy:
    """A single-rooted stream tree plus a path index for O(1) lookups."""

    def __init__(self, root: StreamNode) -> None:
        self.root = root
        self._index: dict[str, StreamNode] = {}
        for node in root.iter_subtree():
            self._index[path_key(node.path)] = node

    def __contains__(self, path: str) -> bool:
        return path_key(path) in self._index

    def __len__(self) -> int:
        return len(self._index)

    def __iter__(self) -> Iterator[StreamNode]:
        return self.root.iter_subtree()

    def get(self, path: str | None) -> StreamNode | None:
        if not path:
            return None
        return self._index.get(path_key(path))

    def node(self, path: str) -> StreamNode:
        """Like get(), but raises KeyError for streams outside the hierarchy."""
        found = self.get(path)
        if found is None:
            raise KeyError(f"Stream not in hierarchy: {path}")
        return found

    def parent_of(self, node: StreamNode) -> StreamNode | None:
        return self.get(node.parent_path)

    def ancestors(self, node: StreamNode) -> Iterator[StreamNode]:
        """Strict ancestors, nearest first, following ``parent_path`` keys.

        Stops at a parent outside the loaded hierarchy, or if the chain
        loops back on itself.
        """
        seen = {path_key(node.path)}
        current = self.parent_of(node)
        while current is not None and path_key(current.path) not in seen:
            seen.add(path_key(current.path))
            yield current
            current = self.parent_of(current)

    def is_ancestor(self, candidate: StreamNode, node: StreamNode) -> bool:
        key = path_key(candidate.path)
        return any(path_key(a.path) == key for a in self.ancestors(node))


class HierarchyBuilder:
    """Builds a StreamHierarchy rooted at a given stream path."""

    def __init__(self, server: StreamServer) -> None:
        self.server = server

    def build(self, root_path: str) -> StreamHierarchy:
        """Fetch the root and every stream record, then assemble the tree.

        Rule-fetch failures on individual streams are logged and leave that
        stream with no local rules. Records whose parent is outside the
        root's subtree are never attached.
        """
        if not self.server.is_connected():
            raise NotConnectedError("load hierarchy")

        logger.info("Loading stream hierarchy from root: %s", root_path)
        root_record = self.server.fetch_stream_record(root_path)
        records = self.server.fetch_all_stream_records()

        by_parent: dict[str, list[StreamRecord]] = defaultdict(list)
        for record in records:
            if record.parent:
                by_parent[path_key(record.parent)].append(record)

        root = self._make_node(root_record)
        attached = {path_key(root.path)}
        pending = [root]
        while pending:
            node = pending.pop()
            for record in by_parent.get(path_key(node.path), []):
                key = path_key(record.path)
                if key in attached:
                    logger.warning(
                        "Skipping %s: already attached elsewhere in the hierarchy", record.path
                    )
                    continue
                attached.add(key)
                child = self._make_node(record)
                node.children.append(child)
                pending.append(child)

        hierarchy = StreamHierarchy(root)
        logger.info("Loaded %d stream(s) under %s", len(hierarchy), root.path)
        return hierarchy

    def _make_node(self, record: StreamRecord) -> StreamNode:
        return StreamNode(
            path=record.path,
            name=record.name,
            parent_path=record.parent,
            local_rules=self._fetch_rules(record.path),
            stream_type=record.type,
        )

    def _fetch_rules(self, path: str) -> list[StreamRule]:
        try:
            rules = self.server.fetch_stream_rules(path)
        except NotConnectedError:
            raise
        except StreamLedgerError as e:
            logger.warning("Could not fetch rules for %s, continuing without them: %s", path, e)
            return []
        except Exception:
            logger.warning("Failed to fetch rules for %s", path, exc_info=True)
            return []
        return [rule.with_owner(path) for rule in rules]
