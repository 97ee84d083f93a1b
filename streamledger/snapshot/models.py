"""Snapshot value objects and their JSON file format."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from streamledger.errors import MalformedSnapshotError
from streamledger.hierarchy.models import RuleKind, StreamRule, path_key


def _rule_to_dict(rule: StreamRule) -> dict[str, Any]:
    return {
        "kind": rule.kind.value,
        "pattern": rule.pattern,
        "remapTarget": rule.remap_target,
        "owner": rule.owner,
    }


def _rule_from_dict(data: Any, default_owner: str) -> StreamRule:
    """Decode one rule, accepting the older ``type``/``path``/``sourceStream`` names."""
    if not isinstance(data, Mapping):
        raise MalformedSnapshotError(f"rule entry must be an object, got {type(data).__name__}")
    kind = data.get("kind", data.get("type"))
    pattern = data.get("pattern", data.get("path"))
    target = data.get("remapTarget")
    owner = data.get("owner", data.get("sourceStream")) or default_owner
    if not isinstance(pattern, str):
        raise MalformedSnapshotError(f"rule pattern must be a string, got {pattern!r}")
    if target is not None and not isinstance(target, str):
        raise MalformedSnapshotError(f"remapTarget must be a string or null, got {target!r}")
    if not isinstance(owner, str):
        raise MalformedSnapshotError(f"rule owner must be a string, got {owner!r}")
    try:
        kind = RuleKind.parse(kind)
        if kind is RuleKind.IGNORE and not target:
            target = None
        return StreamRule(kind, pattern, target, owner)
    except (TypeError, ValueError) as e:
        raise MalformedSnapshotError(f"invalid rule {dict(data)!r}: {e}") from e


@dataclass(frozen=True)
class Snapshot:
    """Local rules (and optionally parents) of every stream at one point in time.

    ``parents_by_stream`` is None when the snapshot carries no
    parent-tracking data at all.
    """

    rules_by_stream: Mapping[str, tuple[StreamRule, ...]] = field(default_factory=dict)
    parents_by_stream: Mapping[str, str | None] | None = None

    def __post_init__(self) -> None:
        rules = {path: tuple(rs) for path, rs in self.rules_by_stream.items()}
        object.__setattr__(self, "rules_by_stream", MappingProxyType(rules))
        if self.parents_by_stream is not None:
            parents = {path: (p or None) for path, p in self.parents_by_stream.items()}
            object.__setattr__(self, "parents_by_stream", MappingProxyType(parents))

    @property
    def has_parent_info(self) -> bool:
        return self.parents_by_stream is not None

    @property
    def streams(self) -> list[str]:
        return list(self.rules_by_stream)

    def _find_key(self, mapping: Mapping[str, Any] | None, stream: str) -> str | None:
        if mapping is None:
            return None
        if stream in mapping:
            return stream
        wanted = path_key(stream)
        return next((k for k in mapping if path_key(k) == wanted), None)

    def has_stream(self, stream: str) -> bool:
        return self._find_key(self.rules_by_stream, stream) is not None

    def rules_for(self, stream: str) -> tuple[StreamRule, ...]:
        key = self._find_key(self.rules_by_stream, stream)
        return self.rules_by_stream[key] if key is not None else ()

    def has_parent_for(self, stream: str) -> bool:
        return self._find_key(self.parents_by_stream, stream) is not None

    def parent_for(self, stream: str) -> str | None:
        key = self._find_key(self.parents_by_stream, stream)
        return self.parents_by_stream[key] if key is not None else None

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "rulesByStream": {
                path: [_rule_to_dict(r) for r in rules]
                for path, rules in self.rules_by_stream.items()
            }
        }
        if self.parents_by_stream is not None:
            data["parentsByStream"] = dict(self.parents_by_stream)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, obj: Any) -> Snapshot:
        if not isinstance(obj, Mapping):
            raise MalformedSnapshotError("snapshot must be a JSON object")

        raw_rules = obj.get("rulesByStream", obj.get("streamRules"))
        if raw_rules is None and isinstance(obj.get("rules"), list):
            # single-stream snapshots from older releases
            fallback = obj.get("streamPath", "")
            grouped: dict[str, list[StreamRule]] = {}
            for entry in obj["rules"]:
                rule = _rule_from_dict(entry, fallback)
                grouped.setdefault(rule.owner, []).append(rule)
            rules_by_stream = grouped
        else:
            if raw_rules is None:
                raw_rules = {}
            if not isinstance(raw_rules, Mapping):
                raise MalformedSnapshotError("rulesByStream must be an object")
            rules_by_stream = {}
            for stream, entries in raw_rules.items():
                if not isinstance(entries, list):
                    raise MalformedSnapshotError(f"rules for {stream!r} must be a list")
                rules_by_stream[stream] = [_rule_from_dict(e, stream) for e in entries]

        raw_parents = obj.get("parentsByStream", obj.get("streamParents"))
        if raw_parents is not None and not isinstance(raw_parents, Mapping):
            raise MalformedSnapshotError("parentsByStream must be an object")
        if raw_parents is not None:
            for stream, parent in raw_parents.items():
                if parent is not None and not isinstance(parent, str):
                    raise MalformedSnapshotError(f"parent of {stream!r} must be a string or null")
        return cls(rules_by_stream=rules_by_stream, parents_by_stream=raw_parents)

    @classmethod
    def from_json(cls, data: str | bytes) -> Snapshot:
        try:
            if isinstance(data, bytes):
                data = data.decode("utf-8-sig")
            obj = json.loads(data)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedSnapshotError(f"snapshot is not valid JSON: {e}") from e
        return cls.from_dict(obj)


@dataclass(frozen=True)
class RuleChange:
    """A rule whose target or owner changed between two snapshots."""

    old: StreamRule
    new: StreamRule


@dataclass(frozen=True)
class SnapshotDiff:
    """Result of comparing two snapshots (or two rule sets)."""

    added: tuple[StreamRule, ...] = ()
    removed: tuple[StreamRule, ...] = ()
    modified: tuple[RuleChange, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)

    def summary(self) -> str:
        return f"+{len(self.added)} -{len(self.removed)} ~{len(self.modified)}"
