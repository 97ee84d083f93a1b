"""Rule resolution: local, inherited, and combined rule views for a stream."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from streamledger.hierarchy.builder import StreamHierarchy
from streamledger.hierarchy.models import RuleKind, StreamNode, StreamRule, paths_equal


class RuleView(str, Enum):
    LOCAL = "local"
    INHERITED = "inherited"
    ALL = "all"


@dataclass(frozen=True)
class ResolvedRule:
    """A rule as seen from one stream, tagged with where it came from."""

    rule: StreamRule
    is_local: bool

    @property
    def owner(self) -> str:
        return self.rule.owner

    @property
    def is_inherited(self) -> bool:
        return not self.is_local


class RuleResolver:
    """Computes the rules visible to each node of a hierarchy.

    No de-duplication happens here: a descendant that repeats an
    ancestor's rule sees both copies.
    """

    def __init__(self, hierarchy: StreamHierarchy) -> None:
        self.hierarchy = hierarchy

    def local_rules(self, node: StreamNode) -> list[ResolvedRule]:
        return [self._wrap(rule.with_owner(node.path), node) for rule in node.local_rules]

    def inherited_rules(self, node: StreamNode) -> list[ResolvedRule]:
        resolved: list[ResolvedRule] = []
        for ancestor in self.hierarchy.ancestors(node):
            for rule in ancestor.local_rules:
                resolved.append(self._wrap(rule.with_owner(ancestor.path), node))
        return resolved

    def all_rules(self, node: StreamNode) -> list[ResolvedRule]:
        return self.local_rules(node) + self.inherited_rules(node)

    def view(self, node: StreamNode, view: RuleView | str = RuleView.ALL) -> list[ResolvedRule]:
        view = RuleView(view)
        if view is RuleView.LOCAL:
            return self.local_rules(node)
        if view is RuleView.INHERITED:
            return self.inherited_rules(node)
        return self.all_rules(node)

    def partition(
        self, node: StreamNode, view: RuleView | str = RuleView.ALL
    ) -> tuple[list[ResolvedRule], list[ResolvedRule]]:
        """Split a view into (remap rules, ignore rules), keeping order."""
        rules = self.view(node, view)
        remaps = [r for r in rules if r.rule.kind is RuleKind.REMAP]
        ignores = [r for r in rules if r.rule.kind is RuleKind.IGNORE]
        return remaps, ignores

    @staticmethod
    def _wrap(rule: StreamRule, node: StreamNode) -> ResolvedRule:
        return ResolvedRule(rule=rule, is_local=paths_equal(rule.owner, node.path))
