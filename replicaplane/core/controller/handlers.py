"""
Event handlers — turn watch events into queue keys.

Registered on the store and the resolver. Each event is mapped to the
ReplicaSet keys it can affect and those keys are added to the queue;
events that map to nothing are dropped. ReplicaSet events also keep the
correlation index current, before any key is enqueued.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from replicaplane.adapters.base import WatchEvent
from replicaplane.core.controller.index import CorrelationIndex
from replicaplane.core.controller.keys import (
    keys_for_selection_change,
    owner_key_from_child,
    own_key,
)
from replicaplane.core.models.placement import PlacementDecision
from replicaplane.core.models.replicaset import ReplicaSet
from replicaplane.core.models.work import DeliveryObject

logger = logging.getLogger(__name__)

REPLICASET_KIND = "ManifestWorkReplicaSet"
WORK_KIND = "ManifestWork"
SELECTION_KINDS = ("Placement", "PlacementDecision")


class EventHandlers:
    """Watch callback feeding a queue's ``add``."""

    def __init__(self, index: CorrelationIndex, enqueue: Callable[[str], None]):
        self._index = index
        self._enqueue = enqueue

    def __call__(self, event: WatchEvent) -> None:
        self.handle(event)

    def handle(self, event: WatchEvent) -> set[str]:
        """Route one event. Returns the keys that were enqueued."""
        if event.kind == REPLICASET_KIND:
            keys = self._on_replicaset(event)
        elif event.kind == WORK_KIND:
            keys = self._on_work(event)
        elif event.kind in SELECTION_KINDS:
            keys = self._on_selection(event)
        else:
            logger.debug("Ignoring %s event for kind %s", event.type, event.kind)
            return set()

        for key in sorted(keys):
            self._enqueue(key)
        return keys

    def _on_replicaset(self, event: WatchEvent) -> set[str]:
        rs = event.obj
        if not isinstance(rs, ReplicaSet):
            return set()
        if event.type == "DELETED":
            self._index.remove(rs)
        else:
            self._index.upsert(rs)
        return {own_key(rs)}

    def _on_work(self, event: WatchEvent) -> set[str]:
        work = event.obj
        if not isinstance(work, DeliveryObject):
            return set()
        key = owner_key_from_child(work)
        if key is None:
            logger.debug(
                "ManifestWork %s/%s has no usable owner label",
                work.metadata.namespace,
                work.metadata.name,
            )
            return set()
        return {key}

    def _on_selection(self, event: WatchEvent) -> set[str]:
        decision = event.obj
        if not isinstance(decision, PlacementDecision):
            return set()
        keys = keys_for_selection_change(self._index, decision.key)
        if keys:
            logger.debug("%s %s → %d ReplicaSets", event.kind, decision.key, len(keys))
        return keys
