"""
Queue-key derivation — map changed objects to the ReplicaSet keys to sync.

Three event sources, three correlation paths:

    ReplicaSet changed        → own_key(rs)
    DeliveryObject changed    → owner_key_from_child(work)   (correlation label)
    Selection result changed  → keys_for_selection_change(index, policy_key)

All functions are pure. "Not derivable" is signaled by returning None
(or an empty set), which callers treat as "ignore this event".
"""

from __future__ import annotations

from replicaplane.core.controller.index import CorrelationIndex
from replicaplane.core.errors import InvalidKeyError
from replicaplane.core.models.replicaset import ReplicaSet
from replicaplane.core.models.work import DeliveryObject

# Label on a DeliveryObject naming its owner as "<namespace>.<name>".
REPLICASET_LABEL = "work.open-cluster-management.io/manifestworkreplicaset"

# Label on a DeliveryObject naming the PlacementRef that produced it.
PLACEMENT_LABEL = "work.open-cluster-management.io/placementname"

# Lifecycle guard held on a ReplicaSet until all its DeliveryObjects are gone.
CLEANUP_FINALIZER = "work.open-cluster-management.io/manifest-work-cleanup"


def own_key(rs: ReplicaSet) -> str:
    return f"{rs.metadata.namespace}/{rs.metadata.name}"


def correlation_value(rs: ReplicaSet) -> str:
    """Label value tying DeliveryObjects to ``rs``."""
    return f"{rs.metadata.namespace}.{rs.metadata.name}"


def owner_selector(rs: ReplicaSet) -> dict[str, str]:
    """Equality label selector matching every DeliveryObject owned by ``rs``."""
    return {REPLICASET_LABEL: correlation_value(rs)}


def owner_key_from_label(value: str | None) -> str | None:
    """Parse a correlation label value into a queue key.

    Exactly two non-empty dot-separated segments are required.
    """
    if value is None:
        return None
    parts = value.split(".")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return f"{parts[0]}/{parts[1]}"


def owner_key_from_child(work: DeliveryObject) -> str | None:
    """Owner ReplicaSet key of a DeliveryObject, or None if untraceable."""
    return owner_key_from_label(work.metadata.labels.get(REPLICASET_LABEL))


def keys_for_selection_change(index: CorrelationIndex, policy_key: str) -> set[str]:
    """ReplicaSet keys referencing the placement ``namespace/name``."""
    return index.lookup(policy_key)


def split_key(key: str) -> tuple[str, str]:
    """Split ``namespace/name``.

    Raises:
        InvalidKeyError: if the key is not exactly two non-empty parts.
    """
    parts = key.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidKeyError(f"unexpected key format: {key!r}")
    return parts[0], parts[1]
