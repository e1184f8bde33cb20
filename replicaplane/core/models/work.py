"""
DeliveryObject (ManifestWork) — the per-cluster copy of a workload.

One exists for every (ReplicaSet, cluster) pair. It lives in the
namespace named after its target cluster, carries its owner's
correlation label, and reports what the cluster agent observed in
``status.conditions``.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from replicaplane.core.models.meta import Condition, ObjectMeta, is_condition_true

# Condition types reported by the cluster agent.
WORK_APPLIED = "Applied"
WORK_AVAILABLE = "Available"
WORK_DEGRADED = "Degraded"
WORK_PROGRESSING = "Progressing"


class ResourceIdentifier(BaseModel):
    """Identifies one manifest inside a workload by group/kind/namespace/name."""

    group: str = ""
    kind: str
    namespace: str = ""
    name: str


class UpdateStrategy(BaseModel):
    type: Literal["Update", "CreateOnly"] = "Update"


class ManifestConfig(BaseModel):
    """Per-manifest options, matched to manifests by resource identifier."""

    resource_identifier: ResourceIdentifier
    update_strategy: UpdateStrategy = Field(default_factory=UpdateStrategy)


def manifest_identity(manifest: dict[str, Any]) -> ResourceIdentifier | None:
    """Derive the resource identifier of an opaque manifest payload.

    Returns None when the payload has no kind or name.
    """
    kind = manifest.get("kind")
    meta = manifest.get("metadata") or {}
    name = meta.get("name") if isinstance(meta, dict) else None
    if not kind or not name:
        return None
    api_version = str(manifest.get("apiVersion", ""))
    group = api_version.split("/", 1)[0] if "/" in api_version else ""
    return ResourceIdentifier(
        group=group,
        kind=str(kind),
        namespace=str(meta.get("namespace", "") or ""),
        name=str(name),
    )


class WorkSpec(BaseModel):
    manifests: list[dict[str, Any]] = Field(default_factory=list)
    manifest_configs: list[ManifestConfig] = Field(default_factory=list)

    def strategy_for(self, manifest: dict[str, Any]) -> str:
        """Update strategy configured for ``manifest`` (default ``Update``)."""
        ident = manifest_identity(manifest)
        if ident is None:
            return "Update"
        for cfg in self.manifest_configs:
            if cfg.resource_identifier == ident:
                return cfg.update_strategy.type
        return "Update"


class WorkStatus(BaseModel):
    conditions: list[Condition] = Field(default_factory=list)


class DeliveryObject(BaseModel):
    """A materialized workload bound for one cluster."""

    kind: str = "ManifestWork"
    metadata: ObjectMeta
    spec: WorkSpec = Field(default_factory=WorkSpec)
    status: WorkStatus = Field(default_factory=WorkStatus)

    @property
    def cluster(self) -> str:
        """Target cluster — the namespace the object lives in."""
        return self.metadata.namespace

    @property
    def applied(self) -> bool:
        return is_condition_true(self.status.conditions, WORK_APPLIED)

    @property
    def available(self) -> bool:
        return is_condition_true(self.status.conditions, WORK_AVAILABLE)

    @property
    def degraded(self) -> bool:
        return is_condition_true(self.status.conditions, WORK_DEGRADED)

    @property
    def progressing(self) -> bool:
        return is_condition_true(self.status.conditions, WORK_PROGRESSING)
