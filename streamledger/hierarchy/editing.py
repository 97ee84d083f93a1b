"""In-memory edits to a loaded hierarchy: local rules and parent assignments."""

from __future__ import annotations

import logging
import re

from streamledger.errors import HierarchyCycleError, RuleEditError
from streamledger.hierarchy.builder import StreamHierarchy
from streamledger.hierarchy.models import RuleKind, StreamNode, StreamRule, paths_equal

logger = logging.getLogger(__name__)

_MULTI_SLASH_RE = re.compile(r"/{2,}")


def normalize_rule_path(path: str, stream_path: str | None = None) -> str:
    """Make a rule pattern relative to its stream.

    Removes the stream root if the user pasted a full depot path,
    standardizes slashes, and strips the leading slash.
    """
    if not path or not path.strip():
        return path
    path = path.strip()
    if stream_path:
        idx = path.casefold().find(stream_path.casefold())
        if idx >= 0:
            path = path[:idx] + path[idx + len(stream_path):]
    path = _MULTI_SLASH_RE.sub("/", path.replace("\\", "/"))
    return path.lstrip("/")


def sanitize_depot_path(path: str | None) -> str | None:
    """Fix backslashes and doubled slashes while keeping a leading ``//``."""
    if not path or not path.strip():
        return path
    path = path.strip().replace("\\", "/")
    is_depot = path.startswith("//")
    path = _MULTI_SLASH_RE.sub("/", path)
    if is_depot:
        path = "/" + path if path.startswith("/") else "//" + path
    return path


def make_rule(
    node: StreamNode, kind: RuleKind | str, pattern: str, remap_target: str | None = None
) -> StreamRule:
    """Build a normalized rule owned by *node*."""
    kind = RuleKind.parse(kind)
    target = sanitize_depot_path(remap_target) if kind is RuleKind.REMAP else None
    try:
        return StreamRule(kind, normalize_rule_path(pattern, node.path), target, node.path)
    except ValueError as e:
        raise RuleEditError(str(e)) from e


def _require_local(node: StreamNode, rule: StreamRule) -> None:
    if rule.owner and not paths_equal(rule.owner, node.path):
        raise RuleEditError(
            f"Cannot change inherited rule '{rule.describe()}' from {node.path}; "
            f"edit it in {rule.owner}"
        )


def add_rule(
    node: StreamNode, kind: RuleKind | str, pattern: str, remap_target: str | None = None
) -> StreamRule:
    rule = make_rule(node, kind, pattern, remap_target)
    node.local_rules.append(rule)
    logger.debug("Added %s to %s", rule.describe(), node.path)
    return rule


def edit_rule(
    node: StreamNode,
    existing: StreamRule,
    kind: RuleKind | str,
    pattern: str,
    remap_target: str | None = None,
) -> StreamRule:
    """Replace *existing* in place, keeping its position in the rule list."""
    _require_local(node, existing)
    replacement = make_rule(node, kind, pattern, remap_target)
    for i, rule in enumerate(node.local_rules):
        if rule.same_as(existing):
            node.local_rules[i] = replacement
            logger.debug("Edited %s -> %s on %s", existing.describe(), replacement.describe(), node.path)
            return replacement
    raise RuleEditError(
        f"Rule '{existing.describe()}' not found in {node.path} (it may have been modified externally)"
    )


def delete_rule(node: StreamNode, rule: StreamRule) -> int:
    """Remove every local rule matching *rule*; returns how many were removed."""
    _require_local(node, rule)
    kept = [r for r in node.local_rules if not r.same_as(rule)]
    removed = len(node.local_rules) - len(kept)
    if not removed:
        raise RuleEditError(f"Rule '{rule.describe()}' not found in {node.path}")
    node.local_rules[:] = kept
    return removed


def change_parent(hierarchy: StreamHierarchy, node: StreamNode, new_parent: str | None) -> None:
    """Point *node* at a different parent stream (or none, for a mainline).

    Only ``parent_path`` changes; the server learns about it on publish.
    """
    new_parent = sanitize_depot_path(new_parent) or None
    if new_parent is not None:
        if paths_equal(new_parent, node.path):
            raise HierarchyCycleError(f"{node.path} cannot be its own parent")
        candidate = hierarchy.get(new_parent)
        if candidate is not None and (
            candidate in set(node.iter_subtree()) or hierarchy.is_ancestor(node, candidate)
        ):
            raise HierarchyCycleError(
                f"Cannot make {new_parent} the parent of {node.path}: it is a descendant"
            )
    logger.debug("Parent of %s: %s -> %s", node.path, node.parent_path, new_parent)
    node.parent_path = new_parent
