"""
Domain models — Pydantic types for the controller.

All models are re-exported here for convenient access:

    from replicaplane.core.models import ReplicaSet, DeliveryObject, PlacementRef
"""

from replicaplane.core.models.meta import Condition, ObjectMeta
from replicaplane.core.models.placement import (
    PlacementDecision,
    PlacementRef,
    RolloutStrategy,
)
from replicaplane.core.models.replicaset import (
    ManifestWorkTemplate,
    PerPlacementStatus,
    ReplicaSet,
    ReplicaSetSpec,
    ReplicaSetStatus,
    StatusSummary,
)
from replicaplane.core.models.work import (
    DeliveryObject,
    ManifestConfig,
    ResourceIdentifier,
    UpdateStrategy,
    WorkSpec,
    WorkStatus,
)

__all__ = [
    # meta.py
    "Condition",
    # work.py
    "DeliveryObject",
    "ManifestConfig",
    # replicaset.py
    "ManifestWorkTemplate",
    "ObjectMeta",
    "PerPlacementStatus",
    # placement.py
    "PlacementDecision",
    "PlacementRef",
    "ReplicaSet",
    "ReplicaSetSpec",
    "ReplicaSetStatus",
    "ResourceIdentifier",
    "RolloutStrategy",
    "StatusSummary",
    "UpdateStrategy",
    "WorkSpec",
    "WorkStatus",
]
