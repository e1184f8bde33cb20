"""
Work applier — create/update/delete one DeliveryObject against a store.

``apply`` converges a single object to its desired form and reports
what it had to do. Comparison is semantic: only labels the controller
owns and the spec are compared, so an unchanged desired state never
produces a write.

Per-manifest update strategies are honored here: a manifest configured
``CreateOnly`` keeps whatever content the existing object already has
for it; only missing manifests are added.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from replicaplane.adapters.base import ResourceStore
from replicaplane.core.errors import NotFoundError
from replicaplane.core.models.work import DeliveryObject, WorkSpec, manifest_identity

logger = logging.getLogger(__name__)

ApplyOutcome = Literal["created", "updated", "unchanged"]


@dataclass
class ApplyResult:
    outcome: ApplyOutcome
    work: DeliveryObject


def merge_spec(desired: WorkSpec, existing: WorkSpec) -> WorkSpec:
    """Desired spec with ``CreateOnly`` manifests pinned to their existing content."""
    existing_by_id: dict[Any, dict[str, Any]] = {}
    for manifest in existing.manifests:
        ident = manifest_identity(manifest)
        if ident is not None:
            existing_by_id[ident.model_dump_json()] = manifest

    manifests: list[dict[str, Any]] = []
    for manifest in desired.manifests:
        ident = manifest_identity(manifest)
        if ident is not None and desired.strategy_for(manifest) == "CreateOnly":
            current = existing_by_id.get(ident.model_dump_json())
            if current is not None:
                manifests.append(current)
                continue
        manifests.append(manifest)

    return WorkSpec(manifests=manifests, manifest_configs=list(desired.manifest_configs))


def needs_update(desired: DeliveryObject, existing: DeliveryObject) -> bool:
    """Whether ``existing`` differs from ``desired`` in any field the controller owns."""
    for key, value in desired.metadata.labels.items():
        if existing.metadata.labels.get(key) != value:
            return True
    merged = merge_spec(desired.spec, existing.spec)
    return merged.model_dump(mode="json") != existing.spec.model_dump(mode="json")


class WorkApplier:
    """Applies desired DeliveryObjects through a ResourceStore."""

    def __init__(self, store: ResourceStore):
        self._store = store

    def apply(self, desired: DeliveryObject, existing: DeliveryObject | None = None) -> ApplyResult:
        """Create ``desired`` or bring the existing object in line with it.

        ``existing`` may be passed when the caller already observed the
        object; otherwise it is fetched.
        """
        ns, name = desired.metadata.namespace, desired.metadata.name
        if existing is None:
            try:
                existing = self._store.get_work(ns, name)
            except NotFoundError:
                existing = None

        if existing is None:
            created = self._store.create_work(desired)
            logger.debug("Created ManifestWork %s/%s", ns, name)
            return ApplyResult("created", created)

        if not needs_update(desired, existing):
            return ApplyResult("unchanged", existing)

        updated = existing.model_copy(deep=True)
        updated.metadata.labels = {**existing.metadata.labels, **desired.metadata.labels}
        updated.spec = merge_spec(desired.spec, existing.spec)
        result = self._store.update_work(updated)
        logger.debug("Updated ManifestWork %s/%s", ns, name)
        return ApplyResult("updated", result)

    def delete(self, namespace: str, name: str) -> bool:
        """Delete an object. Returns False if it was already gone."""
        try:
            self._store.delete_work(namespace, name)
        except NotFoundError:
            return False
        logger.debug("Deleted ManifestWork %s/%s", namespace, name)
        return True
