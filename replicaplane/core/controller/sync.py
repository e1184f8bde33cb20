"""
Sync entry point — one queue key in, one pipeline pass out.

    key → load ReplicaSet → run stages → patch status delta → aggregate error

The returned error drives retry scheduling in the runner: None means
done (or nothing to do), a ``ReconcileError`` means requeue with
backoff. Stages can also ask for a delayed requeue through the context
without reporting an error (the finalize stage does this while children
are still being deleted).
"""

from __future__ import annotations

import logging

from replicaplane.adapters.applier import WorkApplier
from replicaplane.adapters.base import PlacementResolver, ResourceStore
from replicaplane.core.config.loader import ControllerConfig
from replicaplane.core.controller.distribution import DistributionReconciler, DistributionReport
from replicaplane.core.controller.finalize import FinalizeReconciler
from replicaplane.core.controller.guard import GuardReconciler
from replicaplane.core.controller.keys import split_key
from replicaplane.core.controller.patcher import create_merge_patch
from replicaplane.core.controller.pipeline import Reconciler, SyncContext, run_pipeline
from replicaplane.core.controller.status import StatusReconciler
from replicaplane.core.errors import (
    InvalidKeyError,
    NotFoundError,
    ReconcileError,
    StoreError,
    aggregate,
)
from replicaplane.core.models.replicaset import ReplicaSet
from replicaplane.core.observability.metrics import MetricsRegistry, TimerContext
from replicaplane.core.persistence.audit import AuditEntry, AuditWriter

logger = logging.getLogger(__name__)


class ReplicaSetController:
    """Owns the stage list and the collaborators the stages share."""

    def __init__(
        self,
        store: ResourceStore,
        resolver: PlacementResolver,
        config: ControllerConfig | None = None,
        applier: WorkApplier | None = None,
        metrics: MetricsRegistry | None = None,
        audit: AuditWriter | None = None,
    ):
        self._store = store
        self._config = config or ControllerConfig()
        self._metrics = metrics
        self._audit = audit
        applier = applier or WorkApplier(store)

        self.stages: list[Reconciler] = [
            FinalizeReconciler(store, applier, self._config.finalize_requeue_seconds),
            GuardReconciler(store),
            DistributionReconciler(store, resolver, applier),
            StatusReconciler(store),
        ]

    def sync(self, key: str, ctx: SyncContext | None = None) -> ReconcileError | None:
        """Reconcile the ReplicaSet identified by ``namespace/name``."""
        if ctx is None:
            ctx = SyncContext(key=key)
        ctx.key = key
        logger.debug("Reconciling ManifestWorkReplicaSet %r", key)

        try:
            namespace, name = split_key(key)
        except InvalidKeyError as e:
            # Same input would fail again; drop it.
            logger.warning("Ignoring queue key: %s", e)
            return None

        try:
            old = self._store.get_replicaset(namespace, name)
        except NotFoundError:
            logger.debug("ReplicaSet %s no longer exists", key)
            return None
        except StoreError as e:
            return aggregate([e])

        timer = (
            self._metrics.timer("reconcile_duration_ms")
            if self._metrics is not None
            else TimerContext()
        )
        with timer:
            rs, errors = run_pipeline(ctx, old.model_copy(deep=True), self.stages)
            self._patch_status(ctx, old, rs, errors)

        result = aggregate(errors)
        self._observe(key, ctx, result, timer.elapsed_ms)
        if result is not None:
            logger.error("ReplicaSet %s: reconcile failed: %s", key, result)
        return result

    def _patch_status(
        self,
        ctx: SyncContext,
        old: ReplicaSet,
        rs: ReplicaSet,
        errors: list[Exception],
    ) -> None:
        """Write only the status fields that changed. Skipped once the pass is cancelled."""
        patch = create_merge_patch(
            old.status.model_dump(mode="json"), rs.status.model_dump(mode="json")
        )
        if not patch or ctx.cancelled():
            return
        try:
            self._store.patch_replicaset(
                old.metadata.namespace, old.metadata.name, {"status": patch}, subresource="status"
            )
            logger.debug("ReplicaSet %s: status patched (%s)", old.key, sorted(patch))
        except NotFoundError:
            logger.debug("ReplicaSet %s vanished before status patch", old.key)
        except StoreError as e:
            errors.append(e)

    def _observe(
        self,
        key: str,
        ctx: SyncContext,
        result: ReconcileError | None,
        elapsed_ms: float,
    ) -> None:
        report = ctx.reports.get("distribution")

        if self._metrics is not None:
            outcome = "error" if result is not None else "ok"
            self._metrics.counter("reconcile_total", result=outcome).inc()
            if isinstance(report, DistributionReport):
                for target in report.outcomes:
                    self._metrics.counter("apply_total", outcome=target.outcome).inc()

        if self._audit is not None:
            entry = AuditEntry(
                key=key,
                status="failed" if result is not None else "ok",
                duration_ms=int(elapsed_ms),
                errors=[str(e) for e in result.errors] if result is not None else [],
                requeue_after=ctx.requeue_after,
                outcomes=(
                    [o.to_dict() for o in report.outcomes]
                    if isinstance(report, DistributionReport)
                    else []
                ),
            )
            self._audit.write(entry)
