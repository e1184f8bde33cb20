"""
Correlation index — which ReplicaSets reference a given placement.

When a placement's decision changes, the controller needs every
ReplicaSet that points at it. The index keeps that reverse mapping,
keyed by ``placement-namespace/placement-name``. Placements are looked
up in the ReplicaSet's own namespace.

Only the watch handlers write to the index; reconcile passes read it
concurrently. A single lock guards the mapping and lookups return
copies, so readers never observe a half-applied update.
"""

from __future__ import annotations

import threading

from replicaplane.core.models.replicaset import ReplicaSet


def index_by_placement(rs: ReplicaSet) -> list[str]:
    """Index keys ``rs`` should appear under (one per named PlacementRef)."""
    keys: list[str] = []
    for ref in rs.spec.placement_refs:
        if not ref.name:
            continue
        key = f"{rs.metadata.namespace}/{ref.name}"
        if key not in keys:
            keys.append(key)
    return keys


class CorrelationIndex:
    """Thread-safe placement key → ReplicaSet keys mapping."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_placement: dict[str, set[str]] = {}
        self._by_owner: dict[str, list[str]] = {}

    def upsert(self, rs: ReplicaSet) -> None:
        """(Re-)index a ReplicaSet. Idempotent for an unchanged object."""
        owner = rs.key
        new_keys = index_by_placement(rs)
        with self._lock:
            for key in self._by_owner.get(owner, []):
                if key not in new_keys:
                    self._discard(key, owner)
            for key in new_keys:
                self._by_placement.setdefault(key, set()).add(owner)
            self._by_owner[owner] = new_keys

    def remove(self, rs: ReplicaSet) -> None:
        """Drop a ReplicaSet from every entry."""
        owner = rs.key
        with self._lock:
            for key in self._by_owner.pop(owner, []):
                self._discard(key, owner)

    def lookup(self, placement_key: str) -> set[str]:
        with self._lock:
            return set(self._by_placement.get(placement_key, ()))

    def keys(self) -> list[str]:
        """All placement keys currently indexed."""
        with self._lock:
            return sorted(self._by_placement)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_owner)

    def _discard(self, key: str, owner: str) -> None:
        owners = self._by_placement.get(key)
        if owners is None:
            return
        owners.discard(owner)
        if not owners:
            del self._by_placement[key]
