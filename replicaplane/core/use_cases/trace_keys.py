"""
Key trace use case — show which queue keys each fixture object maps to.

Feeds the fixture's objects through the event handlers as if they had
just been observed, without reconciling anything.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from replicaplane.adapters.base import WatchEvent
from replicaplane.core.config.fixture import load_fixture
from replicaplane.core.config.loader import ConfigError
from replicaplane.core.controller.handlers import EventHandlers
from replicaplane.core.controller.index import CorrelationIndex
from replicaplane.core.models.placement import PlacementDecision


@dataclass
class KeyTrace:
    """One object and the keys derived from it."""

    kind: str
    name: str
    keys: list[str] = field(default_factory=list)

    @property
    def ignored(self) -> bool:
        return not self.keys

    def to_dict(self) -> dict:
        return {"kind": self.kind, "name": self.name, "keys": self.keys}


@dataclass
class KeyTraceResult:
    traces: list[KeyTrace] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        return {"error": self.error, "traces": [t.to_dict() for t in self.traces]}


def trace_keys(fixture_path: Path) -> KeyTraceResult:
    """Map every ReplicaSet, ManifestWork and placement in a fixture to keys."""
    result = KeyTraceResult()
    try:
        fixture = load_fixture(fixture_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    handlers = EventHandlers(CorrelationIndex(), lambda key: None)

    # ReplicaSets first so the index is populated for placement lookups
    for rs in fixture.replicasets:
        keys = handlers.handle(WatchEvent("ADDED", "ManifestWorkReplicaSet", rs))
        result.traces.append(KeyTrace("ManifestWorkReplicaSet", rs.key, sorted(keys)))

    for work in fixture.works:
        keys = handlers.handle(WatchEvent("MODIFIED", "ManifestWork", work))
        result.traces.append(KeyTrace("ManifestWork", work.metadata.key, sorted(keys)))

    for placement_key, clusters in sorted(fixture.decisions.items()):
        namespace, _, name = placement_key.partition("/")
        decision = PlacementDecision(namespace=namespace, name=name, clusters=clusters)
        keys = handlers.handle(WatchEvent("MODIFIED", "PlacementDecision", decision))
        result.traces.append(KeyTrace("PlacementDecision", placement_key, sorted(keys)))

    return result
