"""
Distribution stage — converge DeliveryObjects to the selected clusters.

Three phases per pass:

    resolve  each PlacementRef (spec order) → cluster set; the first
             PlacementRef to select a cluster owns it
    prune    delete observed objects whose cluster is no longer selected
             (objects of a PlacementRef that failed to resolve are left alone)
    apply    create or update one object per selected cluster, subject to
             the PlacementRef's rollout strategy

Every target is handled in isolation: a failure is recorded in the
report and the aggregate error, and the loop moves on. The stage always
returns CONTINUE.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

from replicaplane.adapters.applier import WorkApplier, needs_update
from replicaplane.adapters.base import PlacementResolver, ResourceStore
from replicaplane.core.controller.guard import has_guard
from replicaplane.core.controller.keys import (
    PLACEMENT_LABEL,
    REPLICASET_LABEL,
    correlation_value,
    owner_selector,
)
from replicaplane.core.controller.pipeline import Reconciler, ReconcileState, SyncContext
from replicaplane.core.errors import (
    PlacementNotFoundError,
    StoreError,
    TargetError,
    aggregate,
)
from replicaplane.core.models.meta import Condition, ObjectMeta, set_condition
from replicaplane.core.models.placement import PlacementRef
from replicaplane.core.models.replicaset import (
    PLACEMENT_VERIFIED,
    REASON_AS_EXPECTED,
    REASON_DECISION_EMPTY,
    REASON_DECISION_NOT_FOUND,
    ReplicaSet,
)
from replicaplane.core.models.work import DeliveryObject, WorkSpec

logger = logging.getLogger(__name__)

Outcome = Literal["created", "updated", "deleted", "unchanged", "skipped", "pending", "failed"]


@dataclass
class TargetOutcome:
    """What happened to one cluster during a pass."""

    cluster: str
    placement: str
    outcome: Outcome
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "cluster": self.cluster,
            "placement": self.placement,
            "outcome": self.outcome,
            "error": self.error,
        }


@dataclass
class DistributionReport:
    """Per-target outcomes of one distribution pass."""

    outcomes: list[TargetOutcome] = field(default_factory=list)
    unresolved: dict[str, str] = field(default_factory=dict)  # placement → reason

    def record(
        self, cluster: str, placement: str, outcome: Outcome, error: str | None = None
    ) -> None:
        self.outcomes.append(TargetOutcome(cluster, placement, outcome, error))

    def count(self, outcome: Outcome) -> int:
        return sum(1 for o in self.outcomes if o.outcome == outcome)

    @property
    def writes(self) -> int:
        return sum(1 for o in self.outcomes if o.outcome in ("created", "updated", "deleted"))

    def for_placement(self, placement: str) -> list[TargetOutcome]:
        return [o for o in self.outcomes if o.placement == placement]

    def to_dict(self) -> dict:
        return {
            "outcomes": [o.to_dict() for o in self.outcomes],
            "unresolved": dict(self.unresolved),
        }


def build_work(rs: ReplicaSet, ref: PlacementRef, cluster: str) -> DeliveryObject:
    """Desired DeliveryObject for ``cluster``: same name as the owner, in the cluster's namespace."""
    template = rs.spec.manifest_work_template.model_copy(deep=True)
    return DeliveryObject(
        metadata=ObjectMeta(
            namespace=cluster,
            name=rs.metadata.name,
            labels={
                REPLICASET_LABEL: correlation_value(rs),
                PLACEMENT_LABEL: ref.name,
            },
        ),
        spec=WorkSpec(
            manifests=template.manifests,
            manifest_configs=template.manifest_configs,
        ),
    )


class DistributionReconciler(Reconciler):
    name = "distribution"

    def __init__(
        self,
        store: ResourceStore,
        resolver: PlacementResolver,
        applier: WorkApplier,
    ):
        self._store = store
        self._resolver = resolver
        self._applier = applier

    def reconcile(
        self, ctx: SyncContext, rs: ReplicaSet
    ) -> tuple[ReplicaSet, ReconcileState, Exception | None]:
        report = DistributionReport()
        ctx.reports[self.name] = report
        errors: list[Exception] = []

        try:
            observed = self._store.list_works(owner_selector(rs))
        except StoreError as e:
            return rs, ReconcileState.CONTINUE, e
        by_cluster = {w.cluster: w for w in observed}

        # ── Resolve ─────────────────────────────────────────────
        desired: dict[str, PlacementRef] = {}
        per_ref: dict[str, list[str]] = {}
        failed_refs: set[str] = set()
        resolved: list[PlacementRef] = []
        for ref in rs.spec.placement_refs:
            if ref.name in per_ref or ref.name in failed_refs:
                # repeated ref; the first occurrence owns its clusters
                continue
            try:
                clusters = self._resolver.resolve(rs.metadata.namespace, ref.name)
            except PlacementNotFoundError as e:
                # Not retried: creating the placement re-triggers this ReplicaSet.
                report.unresolved[ref.name] = str(e)
                failed_refs.add(ref.name)
                continue
            except Exception as e:
                report.unresolved[ref.name] = str(e)
                failed_refs.add(ref.name)
                errors.append(e)
                continue

            mine: list[str] = []
            for cluster in sorted(clusters):
                if cluster in desired:
                    report.record(cluster, ref.name, "skipped")
                    continue
                desired[cluster] = ref
                mine.append(cluster)
            per_ref[ref.name] = mine
            resolved.append(ref)

        rs.status.conditions = set_condition(
            rs.status.conditions, self._verified_condition(rs, report, per_ref)
        )

        # ── Prune ───────────────────────────────────────────────
        for cluster, work in sorted(by_cluster.items()):
            if cluster in desired or work.metadata.deleting:
                continue
            placement = work.metadata.labels.get(PLACEMENT_LABEL, "")
            if placement in failed_refs:
                continue
            try:
                self._applier.delete(work.metadata.namespace, work.metadata.name)
            except Exception as e:
                report.record(cluster, placement, "failed", str(e))
                errors.append(TargetError(cluster, "delete", e))
            else:
                report.record(cluster, placement, "deleted")

        # ── Apply ───────────────────────────────────────────────
        guarded = has_guard(rs)
        for ref in resolved:
            clusters = per_ref[ref.name]
            limit = ref.rollout_strategy.limit(len(clusters))
            in_flight = sum(
                1
                for c in clusters
                if c in by_cluster
                and not by_cluster[c].metadata.deleting
                and not by_cluster[c].available
            )

            for cluster in clusters:
                current = by_cluster.get(cluster)
                if current is not None and current.metadata.deleting:
                    report.record(cluster, ref.name, "pending")
                    continue
                if current is None and not guarded:
                    report.record(cluster, ref.name, "pending")
                    continue

                work = build_work(rs, ref, cluster)
                if current is not None and not needs_update(work, current):
                    report.record(cluster, ref.name, "unchanged")
                    continue

                if limit is not None:
                    counted = current is not None and not current.available
                    if not counted:
                        if in_flight >= limit:
                            report.record(cluster, ref.name, "pending")
                            continue
                        in_flight += 1

                try:
                    result = self._applier.apply(work, current)
                except Exception as e:
                    report.record(cluster, ref.name, "failed", str(e))
                    errors.append(TargetError(cluster, "apply", e))
                else:
                    report.record(cluster, ref.name, result.outcome)

        if report.writes:
            logger.info(
                "ReplicaSet %s: %d created, %d updated, %d deleted, %d failed",
                rs.key,
                report.count("created"),
                report.count("updated"),
                report.count("deleted"),
                report.count("failed"),
            )

        return rs, ReconcileState.CONTINUE, aggregate(errors)

    @staticmethod
    def _verified_condition(
        rs: ReplicaSet,
        report: DistributionReport,
        per_ref: dict[str, list[str]],
    ) -> Condition:
        generation = rs.metadata.generation
        if report.unresolved:
            names = ", ".join(sorted(report.unresolved))
            return Condition(
                type=PLACEMENT_VERIFIED,
                status="False",
                reason=REASON_DECISION_NOT_FOUND,
                message=f"Placement decision not found: {names}",
                observed_generation=generation,
            )
        if not any(per_ref.values()):
            return Condition(
                type=PLACEMENT_VERIFIED,
                status="False",
                reason=REASON_DECISION_EMPTY,
                message="No cluster selected by any placement",
                observed_generation=generation,
            )
        return Condition(
            type=PLACEMENT_VERIFIED,
            status="True",
            reason=REASON_AS_EXPECTED,
            observed_generation=generation,
        )
