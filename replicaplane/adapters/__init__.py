"""Adapters — bindings to the storage substrate and the selection engine.

Public re-exports for convenient access.
"""

from replicaplane.adapters.applier import ApplyResult, WorkApplier
from replicaplane.adapters.base import (
    PlacementResolver,
    ResourceStore,
    WatchCallback,
    WatchEvent,
)
from replicaplane.adapters.memory import InMemoryStore, StaticPlacementResolver

__all__ = [
    "ApplyResult",
    "InMemoryStore",
    "PlacementResolver",
    "ResourceStore",
    "StaticPlacementResolver",
    "WatchCallback",
    "WatchEvent",
    "WorkApplier",
]
