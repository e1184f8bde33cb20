"""
Finalize stage — tear down children before the owner may go.

Runs first. On a ReplicaSet without a deletion timestamp it does
nothing. On a deleting one it deletes every correlated DeliveryObject,
and only once a fresh listing comes back empty does it drop the cleanup
finalizer. Either way the pipeline stops here: a deleting resource must
never reach the distribution stage.

While children remain the finalizer stays and the pass asks to be
requeued, so a stuck delete is visible and retried, never silently
dropped.
"""

from __future__ import annotations

import logging

from replicaplane.adapters.applier import WorkApplier
from replicaplane.adapters.base import ResourceStore
from replicaplane.core.controller.keys import CLEANUP_FINALIZER, owner_selector
from replicaplane.core.controller.pipeline import Reconciler, ReconcileState, SyncContext
from replicaplane.core.errors import NotFoundError, StoreError, TargetError, aggregate
from replicaplane.core.models.replicaset import ReplicaSet

logger = logging.getLogger(__name__)


class FinalizeReconciler(Reconciler):
    name = "finalize"

    def __init__(
        self,
        store: ResourceStore,
        applier: WorkApplier,
        requeue_seconds: float = 5.0,
    ):
        self._store = store
        self._applier = applier
        self._requeue_seconds = requeue_seconds

    def reconcile(
        self, ctx: SyncContext, rs: ReplicaSet
    ) -> tuple[ReplicaSet, ReconcileState, Exception | None]:
        if not rs.metadata.deleting:
            return rs, ReconcileState.CONTINUE, None

        selector = owner_selector(rs)
        try:
            works = self._store.list_works(selector)
        except StoreError as e:
            ctx.request_requeue(self._requeue_seconds)
            return rs, ReconcileState.STOP, e

        errors: list[Exception] = []
        for work in works:
            if work.metadata.deleting:
                continue
            try:
                self._applier.delete(work.metadata.namespace, work.metadata.name)
            except Exception as e:
                errors.append(TargetError(work.cluster, "delete", e))

        try:
            remaining = self._store.list_works(selector)
        except StoreError as e:
            errors.append(e)
            remaining = works

        if remaining:
            logger.info(
                "ReplicaSet %s: waiting for %d ManifestWork(s) to be deleted",
                rs.key,
                len(remaining),
            )
            ctx.request_requeue(self._requeue_seconds)
            return rs, ReconcileState.STOP, aggregate(errors)

        if CLEANUP_FINALIZER in rs.metadata.finalizers:
            finalizers = [f for f in rs.metadata.finalizers if f != CLEANUP_FINALIZER]
            try:
                patched = self._store.patch_replicaset(
                    rs.metadata.namespace,
                    rs.metadata.name,
                    {"metadata": {"finalizers": finalizers}},
                )
            except NotFoundError:
                logger.debug("ReplicaSet %s already gone", rs.key)
            except StoreError as e:
                errors.append(e)
            else:
                rs.metadata = patched.metadata
                logger.info("ReplicaSet %s: cleanup finished, finalizer removed", rs.key)

        return rs, ReconcileState.STOP, aggregate(errors)
