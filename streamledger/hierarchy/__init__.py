"""Stream hierarchy: rule model, tree builder, and rule resolution."""

from streamledger.hierarchy.builder import HierarchyBuilder, StreamHierarchy
from streamledger.hierarchy.editing import (
    add_rule,
    change_parent,
    delete_rule,
    edit_rule,
    normalize_rule_path,
    sanitize_depot_path,
)
from streamledger.hierarchy.models import RuleKind, StreamNode, StreamRule, path_key, paths_equal
from streamledger.hierarchy.resolver import ResolvedRule, RuleResolver, RuleView

__all__ = [
    "HierarchyBuilder",
    "ResolvedRule",
    "RuleKind",
    "RuleResolver",
    "RuleView",
    "StreamHierarchy",
    "StreamNode",
    "StreamRule",
    "add_rule",
    "change_parent",
    "delete_rule",
    "edit_rule",
    "normalize_rule_path",
    "path_key",
    "paths_equal",
    "sanitize_depot_path",
]
