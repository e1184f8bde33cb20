"""
Guard-install stage — make sure the cleanup finalizer is on the ReplicaSet.

The finalizer is written with a metadata-only merge patch before the
distribution stage may create any child. If the patch fails the error
is reported and the pipeline continues; the distribution stage then
sees a resource without the guard and defers all creates.
"""

from __future__ import annotations

import logging

from replicaplane.adapters.base import ResourceStore
from replicaplane.core.controller.keys import CLEANUP_FINALIZER
from replicaplane.core.controller.pipeline import Reconciler, ReconcileState, SyncContext
from replicaplane.core.errors import StoreError
from replicaplane.core.models.replicaset import ReplicaSet

logger = logging.getLogger(__name__)


def has_guard(rs: ReplicaSet) -> bool:
    return CLEANUP_FINALIZER in rs.metadata.finalizers


class GuardReconciler(Reconciler):
    name = "guard-install"

    def __init__(self, store: ResourceStore):
        self._store = store

    def reconcile(
        self, ctx: SyncContext, rs: ReplicaSet
    ) -> tuple[ReplicaSet, ReconcileState, Exception | None]:
        if rs.metadata.deleting or has_guard(rs):
            return rs, ReconcileState.CONTINUE, None

        finalizers = [*rs.metadata.finalizers, CLEANUP_FINALIZER]
        try:
            patched = self._store.patch_replicaset(
                rs.metadata.namespace,
                rs.metadata.name,
                {"metadata": {"finalizers": finalizers}},
            )
        except StoreError as e:
            logger.warning("ReplicaSet %s: cannot add finalizer: %s", rs.key, e)
            return rs, ReconcileState.CONTINUE, e

        rs.metadata.finalizers = patched.metadata.finalizers
        rs.metadata.resource_version = patched.metadata.resource_version
        logger.debug("ReplicaSet %s: finalizer added", rs.key)
        return rs, ReconcileState.CONTINUE, None
