"""
ReplicaSet (ManifestWorkReplicaSet) — the owning resource.

A ReplicaSet carries one workload template and a list of placement
references. The controller materializes the template into one
DeliveryObject per selected cluster and folds what it observes back
into ``status``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from replicaplane.core.models.meta import Condition, ObjectMeta
from replicaplane.core.models.placement import PlacementRef
from replicaplane.core.models.work import ManifestConfig

# Condition types on the ReplicaSet.
PLACEMENT_VERIFIED = "PlacementVerified"
MANIFESTWORK_APPLIED = "ManifestworkApplied"

# Condition reasons.
REASON_AS_EXPECTED = "AsExpected"
REASON_PROCESSING = "Processing"
REASON_NOT_AS_EXPECTED = "NotAsExpected"
REASON_DECISION_NOT_FOUND = "PlacementDecisionNotFound"
REASON_DECISION_EMPTY = "PlacementDecisionEmpty"


class ManifestWorkTemplate(BaseModel):
    """The workload payload copied into every DeliveryObject."""

    manifests: list[dict[str, Any]] = Field(default_factory=list)
    manifest_configs: list[ManifestConfig] = Field(default_factory=list)


class ReplicaSetSpec(BaseModel):
    manifest_work_template: ManifestWorkTemplate = Field(default_factory=ManifestWorkTemplate)
    placement_refs: list[PlacementRef] = Field(default_factory=list)


class StatusSummary(BaseModel):
    """Counts of DeliveryObjects by observed condition."""

    total: int = 0
    applied: int = 0
    available: int = 0
    degraded: int = 0
    progressing: int = 0

    def add(self, other: StatusSummary) -> None:
        self.total += other.total
        self.applied += other.applied
        self.available += other.available
        self.degraded += other.degraded
        self.progressing += other.progressing


class PerPlacementStatus(BaseModel):
    """Status of the DeliveryObjects produced by one PlacementRef."""

    name: str
    summary: StatusSummary = Field(default_factory=StatusSummary)
    clusters: list[str] = Field(default_factory=list)


class ReplicaSetStatus(BaseModel):
    summary: StatusSummary = Field(default_factory=StatusSummary)
    placement_summaries: list[PerPlacementStatus] = Field(default_factory=list)
    conditions: list[Condition] = Field(default_factory=list)


class ReplicaSet(BaseModel):
    """The owning resource."""

    kind: str = "ManifestWorkReplicaSet"
    metadata: ObjectMeta
    spec: ReplicaSetSpec = Field(default_factory=ReplicaSetSpec)
    status: ReplicaSetStatus = Field(default_factory=ReplicaSetStatus)

    @property
    def key(self) -> str:
        return self.metadata.key

    def get_placement_ref(self, name: str) -> PlacementRef | None:
        """Look up a PlacementRef by policy name."""
        for ref in self.spec.placement_refs:
            if ref.name == name:
                return ref
        return None
