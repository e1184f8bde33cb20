"""
Status stage — recompute aggregated status from observed DeliveryObjects.

Nothing here is remembered between passes. Objects are listed fresh and
grouped by the placement label they carry, so the same set of observed
objects always yields the same status, whatever the status was before.
Objects already marked for deletion are not counted.
"""

from __future__ import annotations

import logging
from collections.abc import Collection

from replicaplane.adapters.base import ResourceStore
from replicaplane.core.controller.distribution import DistributionReport
from replicaplane.core.controller.keys import PLACEMENT_LABEL, owner_selector
from replicaplane.core.controller.pipeline import Reconciler, ReconcileState, SyncContext
from replicaplane.core.errors import StoreError
from replicaplane.core.models.meta import Condition, set_condition
from replicaplane.core.models.replicaset import (
    MANIFESTWORK_APPLIED,
    PLACEMENT_VERIFIED,
    REASON_AS_EXPECTED,
    REASON_DECISION_EMPTY,
    REASON_NOT_AS_EXPECTED,
    REASON_PROCESSING,
    PerPlacementStatus,
    ReplicaSet,
    ReplicaSetStatus,
    StatusSummary,
)
from replicaplane.core.models.work import DeliveryObject

logger = logging.getLogger(__name__)


def summarize(works: list[DeliveryObject]) -> StatusSummary:
    """Count objects by observed condition."""
    summary = StatusSummary()
    for work in works:
        summary.total += 1
        if work.applied:
            summary.applied += 1
        if work.available:
            summary.available += 1
        if work.degraded:
            summary.degraded += 1
        if work.progressing:
            summary.progressing += 1
    return summary


def applied_condition(summary: StatusSummary, generation: int) -> Condition:
    if summary.total == 0:
        return Condition(
            type=MANIFESTWORK_APPLIED,
            status="False",
            reason=REASON_DECISION_EMPTY,
            message="No ManifestWork exists for this ReplicaSet",
            observed_generation=generation,
        )
    if summary.degraded > 0:
        return Condition(
            type=MANIFESTWORK_APPLIED,
            status="False",
            reason=REASON_NOT_AS_EXPECTED,
            message=f"{summary.degraded}/{summary.total} ManifestWorks degraded",
            observed_generation=generation,
        )
    if summary.applied == summary.total:
        return Condition(
            type=MANIFESTWORK_APPLIED,
            status="True",
            reason=REASON_AS_EXPECTED,
            observed_generation=generation,
        )
    return Condition(
        type=MANIFESTWORK_APPLIED,
        status="False",
        reason=REASON_PROCESSING,
        message=f"{summary.applied}/{summary.total} ManifestWorks applied",
        observed_generation=generation,
    )


def compute_status(
    rs: ReplicaSet,
    works: list[DeliveryObject],
    unresolved: Collection[str] = (),
) -> ReplicaSetStatus:
    """Status of ``rs`` given its observed DeliveryObjects.

    One placement entry per distinct PlacementRef, in spec order, except
    those named in ``unresolved`` (placements this pass could not resolve).
    Only the PlacementVerified condition is carried over from ``rs``, since
    the distribution stage sets it earlier in the same pass. Every other
    prior condition is dropped.
    """
    live = [w for w in works if not w.metadata.deleting]

    grouped: dict[str, list[DeliveryObject]] = {}
    for work in live:
        grouped.setdefault(work.metadata.labels.get(PLACEMENT_LABEL, ""), []).append(work)

    placements: list[PerPlacementStatus] = []
    seen: set[str] = set()
    for ref in rs.spec.placement_refs:
        if ref.name in seen or ref.name in unresolved:
            continue
        seen.add(ref.name)
        members = grouped.get(ref.name, [])
        placements.append(
            PerPlacementStatus(
                name=ref.name,
                summary=summarize(members),
                clusters=sorted(w.cluster for w in members),
            )
        )

    summary = summarize(live)
    carried = [c for c in rs.status.conditions if c.type == PLACEMENT_VERIFIED]
    conditions = set_condition(
        carried, applied_condition(summary, rs.metadata.generation)
    )
    return ReplicaSetStatus(
        summary=summary,
        placement_summaries=placements,
        conditions=conditions,
    )


class StatusReconciler(Reconciler):
    name = "status"

    def __init__(self, store: ResourceStore):
        self._store = store

    def reconcile(
        self, ctx: SyncContext, rs: ReplicaSet
    ) -> tuple[ReplicaSet, ReconcileState, Exception | None]:
        try:
            works = self._store.list_works(owner_selector(rs))
        except StoreError as e:
            logger.warning("ReplicaSet %s: cannot list ManifestWorks for status: %s", rs.key, e)
            return rs, ReconcileState.CONTINUE, e

        report = ctx.reports.get("distribution")
        unresolved = report.unresolved if isinstance(report, DistributionReport) else {}
        rs.status = compute_status(rs, works, unresolved)
        return rs, ReconcileState.CONTINUE, None
