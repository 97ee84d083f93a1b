"""Data models for stream rules and hierarchy nodes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class RuleKind(str, Enum):
    """The two rule categories a stream spec carries."""

    IGNORE = "ignore"
    REMAP = "remap"

    @classmethod
    def parse(cls, value: str | RuleKind) -> RuleKind:
        if isinstance(value, RuleKind):
            return value
        try:
            return cls(value.strip().lower())
        except (AttributeError, ValueError):
            raise ValueError(f"unknown rule kind: {value!r}") from None


def path_key(path: str | None) -> str:
    """Lookup key for a depot or stream path (server paths are case-insensitive)."""
    return (path or "").casefold()


def paths_equal(a: str | None, b: str | None) -> bool:
    return path_key(a) == path_key(b)


@dataclass(frozen=True)
class StreamRule:
    """A single ignore or remap directive.

    Identity is ``(kind, pattern, remap_target)``; ``owner`` records which
    stream defined the rule and does not take part in equality or hashing.
    """

    kind: RuleKind
    pattern: str
    remap_target: str | None = None
    owner: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", RuleKind.parse(self.kind))
        if not self.pattern or not self.pattern.strip():
            raise ValueError("rule pattern must be non-empty")
        if self.kind is RuleKind.REMAP:
            if not self.remap_target or not self.remap_target.strip():
                raise ValueError(f"remap rule {self.pattern!r} requires a remap target")
        elif self.remap_target is not None:
            raise ValueError(f"ignore rule {self.pattern!r} cannot carry a remap target")

    @classmethod
    def ignore(cls, pattern: str, owner: str = "") -> StreamRule:
        return cls(RuleKind.IGNORE, pattern, None, owner)

    @classmethod
    def remap(cls, pattern: str, target: str, owner: str = "") -> StreamRule:
        return cls(RuleKind.REMAP, pattern, target, owner)

    @property
    def match_key(self) -> tuple[RuleKind, str]:
        """Key used to pair rules across two snapshots."""
        return (self.kind, self.pattern)

    def same_as(self, other: StreamRule) -> bool:
        """Case-insensitive identity, the way the server compares paths."""
        return (
            self.kind is other.kind
            and path_key(self.pattern) == path_key(other.pattern)
            and path_key(self.remap_target) == path_key(other.remap_target)
        )

    def with_owner(self, owner: str) -> StreamRule:
        if self.owner == owner:
            return self
        return StreamRule(self.kind, self.pattern, self.remap_target, owner)

    def describe(self) -> str:
        if self.kind is RuleKind.REMAP:
            return f"remap: {self.pattern} -> {self.remap_target}"
        return f"ignore: {self.pattern}"


@dataclass(eq=False)
class StreamNode:
    """A stream in the loaded hierarchy.

    ``parent_path`` is a lookup key into the hierarchy index, not a
    reference, so re-parenting never creates a structural cycle.
    """

    path: str
    name: str = ""
    parent_path: str | None = None
    local_rules: list[StreamRule] = field(default_factory=list)
    children: list[StreamNode] = field(default_factory=list)
    stream_type: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.path.rstrip("/").rsplit("/", 1)[-1] or self.path

    @property
    def is_mainline(self) -> bool:
        return not self.parent_path

    def iter_subtree(self):
        """Yield this node and every descendant, depth-first, parents first."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def __repr__(self) -> str:
        return (
            f"StreamNode(path={self.path!r}, parent_path={self.parent_path!r}, "
            f"rules={len(self.local_rules)}, children={len(self.children)})"
        )
