"""
In-memory adapters — a complete, thread-safe stand-in for a real cluster.

Used by the CLI's offline ``reconcile`` command and by the tests. Both
classes follow the same mock conventions: every call is recorded in
``call_log`` and specific operations can be told to fail.

Deletion mirrors an API server: an object that still carries finalizers
is only marked with a deletion timestamp, and disappears once the last
finalizer is removed.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Literal

from replicaplane.adapters.base import (
    PlacementResolver,
    ResourceStore,
    WatchCallback,
    WatchEvent,
)
from replicaplane.core.controller.patcher import apply_merge_patch
from replicaplane.core.errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    PlacementNotFoundError,
    StoreError,
)
from replicaplane.core.models.meta import Condition, now_iso
from replicaplane.core.models.placement import PlacementDecision
from replicaplane.core.models.replicaset import ReplicaSet
from replicaplane.core.models.work import DeliveryObject

logger = logging.getLogger(__name__)

RS_KIND = "ManifestWorkReplicaSet"
WORK_KIND = "ManifestWork"


class InMemoryStore(ResourceStore):
    """Dict-backed ResourceStore."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._replicasets: dict[tuple[str, str], ReplicaSet] = {}
        self._works: dict[tuple[str, str], DeliveryObject] = {}
        self._watchers: list[WatchCallback] = []
        self._failures: dict[tuple[str, str, str], Exception] = {}
        self._call_log: list[tuple[str, str, str]] = []
        self._version = 0

    # ── Mock controls ───────────────────────────────────────────

    @property
    def call_log(self) -> list[tuple[str, str, str]]:
        """Every write as ``(operation, namespace, name)``."""
        return self._call_log

    def writes(self, operation: str | None = None) -> list[tuple[str, str, str]]:
        """Recorded writes, optionally filtered by operation name."""
        if operation is None:
            return list(self._call_log)
        return [c for c in self._call_log if c[0] == operation]

    def set_failure(
        self,
        operation: str,
        namespace: str,
        name: str,
        error: Exception | None = None,
    ) -> None:
        """Make ``operation`` on ``namespace/name`` raise ``error``."""
        self._failures[(operation, namespace, name)] = error or StoreError(
            f"injected {operation} failure for {namespace}/{name}"
        )

    def clear_failures(self) -> None:
        self._failures.clear()

    def reset_log(self) -> None:
        self._call_log.clear()

    # ── ReplicaSets ─────────────────────────────────────────────

    def get_replicaset(self, namespace: str, name: str) -> ReplicaSet:
        self._check("get_replicaset", namespace, name)
        with self._lock:
            rs = self._replicasets.get((namespace, name))
            if rs is None:
                raise NotFoundError(RS_KIND, namespace, name)
            return rs.model_copy(deep=True)

    def list_replicasets(self, namespace: str | None = None) -> list[ReplicaSet]:
        with self._lock:
            return [
                rs.model_copy(deep=True)
                for (ns, _), rs in sorted(self._replicasets.items())
                if namespace is None or ns == namespace
            ]

    def create_replicaset(self, rs: ReplicaSet) -> ReplicaSet:
        ns, name = rs.metadata.namespace, rs.metadata.name
        self._record("create_replicaset", ns, name)
        with self._lock:
            if (ns, name) in self._replicasets:
                raise AlreadyExistsError(RS_KIND, ns, name)
            stored = rs.model_copy(deep=True)
            stored.metadata.resource_version = self._next_version()
            self._replicasets[(ns, name)] = stored
            out = stored.model_copy(deep=True)
        self._emit(WatchEvent("ADDED", RS_KIND, out.model_copy(deep=True)))
        return out

    def delete_replicaset(self, namespace: str, name: str) -> None:
        self._record("delete_replicaset", namespace, name)
        with self._lock:
            rs = self._replicasets.get((namespace, name))
            if rs is None:
                raise NotFoundError(RS_KIND, namespace, name)
            event = self._delete_locked(self._replicasets, (namespace, name), rs, RS_KIND)
        self._emit(event)

    def patch_replicaset(
        self,
        namespace: str,
        name: str,
        patch: dict[str, Any],
        subresource: Literal["status"] | None = None,
    ) -> ReplicaSet:
        op = "patch_replicaset_status" if subresource == "status" else "patch_replicaset"
        self._record(op, namespace, name)
        allowed = {"status"} if subresource == "status" else {"metadata"}
        extra = set(patch) - allowed
        if extra:
            raise StoreError(f"patch of {op} may not touch {sorted(extra)}")

        with self._lock:
            rs = self._replicasets.get((namespace, name))
            if rs is None:
                raise NotFoundError(RS_KIND, namespace, name)
            data = apply_merge_patch(rs.model_dump(mode="json"), patch)
            patched = ReplicaSet.model_validate(data)
            patched.metadata.namespace = namespace
            patched.metadata.name = name
            patched.metadata.resource_version = self._next_version()
            if patched.metadata.deleting and not patched.metadata.finalizers:
                del self._replicasets[(namespace, name)]
                event = WatchEvent("DELETED", RS_KIND, patched.model_copy(deep=True))
            else:
                self._replicasets[(namespace, name)] = patched
                event = WatchEvent("MODIFIED", RS_KIND, patched.model_copy(deep=True))
            out = patched.model_copy(deep=True)
        self._emit(event)
        return out

    # ── DeliveryObjects ─────────────────────────────────────────

    def list_works(self, selector: dict[str, str] | None = None) -> list[DeliveryObject]:
        self._check("list_works", "", "")
        selector = selector or {}
        with self._lock:
            return [
                work.model_copy(deep=True)
                for _, work in sorted(self._works.items())
                if all(work.metadata.labels.get(k) == v for k, v in selector.items())
            ]

    def get_work(self, namespace: str, name: str) -> DeliveryObject:
        with self._lock:
            work = self._works.get((namespace, name))
            if work is None:
                raise NotFoundError(WORK_KIND, namespace, name)
            return work.model_copy(deep=True)

    def create_work(self, work: DeliveryObject) -> DeliveryObject:
        ns, name = work.metadata.namespace, work.metadata.name
        self._record("create_work", ns, name)
        with self._lock:
            if (ns, name) in self._works:
                raise AlreadyExistsError(WORK_KIND, ns, name)
            stored = work.model_copy(deep=True)
            stored.metadata.resource_version = self._next_version()
            stored.metadata.deletion_timestamp = None
            self._works[(ns, name)] = stored
            out = stored.model_copy(deep=True)
        self._emit(WatchEvent("ADDED", WORK_KIND, out.model_copy(deep=True)))
        return out

    def update_work(self, work: DeliveryObject) -> DeliveryObject:
        ns, name = work.metadata.namespace, work.metadata.name
        self._record("update_work", ns, name)
        with self._lock:
            current = self._works.get((ns, name))
            if current is None:
                raise NotFoundError(WORK_KIND, ns, name)
            rv = work.metadata.resource_version
            if rv and rv != current.metadata.resource_version:
                raise ConflictError(
                    f"{WORK_KIND} {ns}/{name}: resource version {rv} is stale "
                    f"(current {current.metadata.resource_version})"
                )
            updated = current.model_copy(deep=True)
            updated.metadata.labels = dict(work.metadata.labels)
            updated.spec = work.spec.model_copy(deep=True)
            updated.metadata.generation += 1
            updated.metadata.resource_version = self._next_version()
            self._works[(ns, name)] = updated
            out = updated.model_copy(deep=True)
        self._emit(WatchEvent("MODIFIED", WORK_KIND, out.model_copy(deep=True)))
        return out

    def delete_work(self, namespace: str, name: str) -> None:
        self._record("delete_work", namespace, name)
        with self._lock:
            work = self._works.get((namespace, name))
            if work is None:
                raise NotFoundError(WORK_KIND, namespace, name)
            event = self._delete_locked(self._works, (namespace, name), work, WORK_KIND)
        self._emit(event)

    # ── Cluster-agent simulation ────────────────────────────────

    def set_work_conditions(
        self, namespace: str, name: str, conditions: list[Condition]
    ) -> DeliveryObject:
        """Replace the observed conditions, as a cluster agent would."""
        with self._lock:
            work = self._works.get((namespace, name))
            if work is None:
                raise NotFoundError(WORK_KIND, namespace, name)
            work.status.conditions = [c.model_copy() for c in conditions]
            work.metadata.resource_version = self._next_version()
            out = work.model_copy(deep=True)
        self._emit(WatchEvent("MODIFIED", WORK_KIND, out.model_copy(deep=True)))
        return out

    def remove_work_finalizers(self, namespace: str, name: str) -> None:
        """Drop every finalizer; a deleting object goes away for good."""
        with self._lock:
            work = self._works.get((namespace, name))
            if work is None:
                raise NotFoundError(WORK_KIND, namespace, name)
            work.metadata.finalizers = []
            if work.metadata.deleting:
                del self._works[(namespace, name)]
                event = WatchEvent("DELETED", WORK_KIND, work.model_copy(deep=True))
            else:
                work.metadata.resource_version = self._next_version()
                event = WatchEvent("MODIFIED", WORK_KIND, work.model_copy(deep=True))
        self._emit(event)

    # ── Watch ───────────────────────────────────────────────────

    def watch(self, callback: WatchCallback) -> None:
        with self._lock:
            self._watchers.append(callback)

    # ── Snapshot ────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "replicasets": [
                    rs.model_dump(mode="json") for _, rs in sorted(self._replicasets.items())
                ],
                "works": [w.model_dump(mode="json") for _, w in sorted(self._works.items())],
            }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InMemoryStore:
        store = cls()
        for raw in data.get("replicasets", []):
            rs = ReplicaSet.model_validate(raw)
            store._replicasets[(rs.metadata.namespace, rs.metadata.name)] = rs
            store._version = max(store._version, rs.metadata.resource_version)
        for raw in data.get("works", []):
            work = DeliveryObject.model_validate(raw)
            store._works[(work.metadata.namespace, work.metadata.name)] = work
            store._version = max(store._version, work.metadata.resource_version)
        return store

    # ── Internal helpers ────────────────────────────────────────

    def _next_version(self) -> int:
        self._version += 1
        return self._version

    def _check(self, operation: str, namespace: str, name: str) -> None:
        err = self._failures.get((operation, namespace, name))
        if err is None:
            err = self._failures.get((operation, "*", "*"))
        if err is not None:
            raise err

    def _record(self, operation: str, namespace: str, name: str) -> None:
        self._check(operation, namespace, name)
        self._call_log.append((operation, namespace, name))

    def _delete_locked(
        self,
        table: dict[tuple[str, str], Any],
        key: tuple[str, str],
        obj: Any,
        kind: str,
    ) -> WatchEvent:
        if obj.metadata.finalizers:
            if obj.metadata.deletion_timestamp is None:
                obj.metadata.deletion_timestamp = now_iso()
                obj.metadata.resource_version = self._next_version()
            return WatchEvent("MODIFIED", kind, obj.model_copy(deep=True))
        del table[key]
        return WatchEvent("DELETED", kind, obj.model_copy(deep=True))

    def _emit(self, event: WatchEvent) -> None:
        # Callbacks run outside the lock so they may call back into the store.
        with self._lock:
            watchers = list(self._watchers)
        for callback in watchers:
            try:
                callback(event)
            except Exception as e:
                logger.error("Watch callback failed for %s %s: %s", event.kind, event.type, e)


class StaticPlacementResolver(PlacementResolver):
    """Resolver backed by an explicit table of placement decisions."""

    def __init__(self, decisions: dict[str, list[str]] | None = None):
        self._lock = threading.Lock()
        self._decisions: dict[str, frozenset[str]] = {}
        self._failures: dict[str, Exception] = {}
        self._watchers: list[WatchCallback] = []
        self._call_log: list[str] = []
        for key, clusters in (decisions or {}).items():
            self._decisions[key] = frozenset(clusters)

    @property
    def call_log(self) -> list[str]:
        """Every policy key passed to resolve()."""
        return self._call_log

    def set_decision(self, namespace: str, name: str, clusters: list[str]) -> None:
        """Set (or replace) a policy's result and notify watchers."""
        key = f"{namespace}/{name}"
        with self._lock:
            kind = "ADDED" if key not in self._decisions else "MODIFIED"
            self._decisions[key] = frozenset(clusters)
        self._emit(
            WatchEvent(
                kind,
                "PlacementDecision",
                PlacementDecision(namespace=namespace, name=name, clusters=sorted(clusters)),
            )
        )

    def remove_placement(self, namespace: str, name: str) -> None:
        key = f"{namespace}/{name}"
        with self._lock:
            clusters = self._decisions.pop(key, frozenset())
        self._emit(
            WatchEvent(
                "DELETED",
                "Placement",
                PlacementDecision(namespace=namespace, name=name, clusters=sorted(clusters)),
            )
        )

    def set_failure(self, namespace: str, name: str, error: Exception | None = None) -> None:
        key = f"{namespace}/{name}"
        self._failures[key] = error or RuntimeError(f"injected resolve failure for {key}")

    def clear_failures(self) -> None:
        self._failures.clear()

    def resolve(self, namespace: str, name: str) -> frozenset[str]:
        key = f"{namespace}/{name}"
        self._call_log.append(key)
        if key in self._failures:
            raise self._failures[key]
        with self._lock:
            if key not in self._decisions:
                raise PlacementNotFoundError(namespace, name)
            return self._decisions[key]

    def decisions(self) -> dict[str, list[str]]:
        with self._lock:
            return {k: sorted(v) for k, v in sorted(self._decisions.items())}

    def watch(self, callback: WatchCallback) -> None:
        with self._lock:
            self._watchers.append(callback)

    def _emit(self, event: WatchEvent) -> None:
        with self._lock:
            watchers = list(self._watchers)
        for callback in watchers:
            try:
                callback(event)
            except Exception as e:
                logger.error("Watch callback failed for %s %s: %s", event.kind, event.type, e)
