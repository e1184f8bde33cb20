"""
Adapter base — the contracts between the controller and the outside world.

The controller never talks to a storage backend or a selection engine
directly. It goes through these two interfaces:

    ResourceStore      get/list/create/update/delete/patch + watch
    PlacementResolver  policy reference → set of cluster names + watch

To plug in a real backend:
    1. Subclass ResourceStore / PlacementResolver
    2. Implement every abstract method
    3. Hand the instances to ReplicaSetController / ControllerRunner
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from replicaplane.core.models.replicaset import ReplicaSet
from replicaplane.core.models.work import DeliveryObject

EventType = Literal["ADDED", "MODIFIED", "DELETED"]


@dataclass(frozen=True)
class WatchEvent:
    """One change notification from a watched source.

    ``kind`` is one of ``ManifestWorkReplicaSet``, ``ManifestWork``,
    ``Placement`` or ``PlacementDecision``; ``obj`` is the object after the
    change (or the last known state for DELETED).
    """

    type: EventType
    kind: str
    obj: Any


WatchCallback = Callable[[WatchEvent], None]


class ResourceStore(ABC):
    """Storage substrate for ReplicaSets and DeliveryObjects.

    Every getter returns a private copy; callers may mutate it freely.
    Failures raise ``StoreError`` subclasses (``NotFoundError``,
    ``AlreadyExistsError``, ``ConflictError``).
    """

    # ── ReplicaSets ─────────────────────────────────────────────

    @abstractmethod
    def get_replicaset(self, namespace: str, name: str) -> ReplicaSet:
        """Return the ReplicaSet or raise ``NotFoundError``."""

    @abstractmethod
    def list_replicasets(self, namespace: str | None = None) -> list[ReplicaSet]:
        """All ReplicaSets, optionally limited to one namespace."""

    @abstractmethod
    def create_replicaset(self, rs: ReplicaSet) -> ReplicaSet:
        """Store a new ReplicaSet."""

    @abstractmethod
    def delete_replicaset(self, namespace: str, name: str) -> None:
        """Request deletion.

        With finalizers present only the deletion timestamp is set; the
        object disappears once its last finalizer is removed.
        """

    @abstractmethod
    def patch_replicaset(
        self,
        namespace: str,
        name: str,
        patch: dict[str, Any],
        subresource: Literal["status"] | None = None,
    ) -> ReplicaSet:
        """Apply a JSON merge patch.

        With ``subresource="status"`` the patch may only touch ``status``;
        otherwise it may only touch ``metadata`` (labels, finalizers).
        """

    # ── DeliveryObjects ─────────────────────────────────────────

    @abstractmethod
    def list_works(self, selector: dict[str, str] | None = None) -> list[DeliveryObject]:
        """DeliveryObjects whose labels equal every pair in ``selector``."""

    @abstractmethod
    def get_work(self, namespace: str, name: str) -> DeliveryObject:
        """Return the DeliveryObject or raise ``NotFoundError``."""

    @abstractmethod
    def create_work(self, work: DeliveryObject) -> DeliveryObject:
        """Store a new DeliveryObject or raise ``AlreadyExistsError``."""

    @abstractmethod
    def update_work(self, work: DeliveryObject) -> DeliveryObject:
        """Replace labels and spec of an existing DeliveryObject.

        Raises ``ConflictError`` if ``work.metadata.resource_version`` is
        stale.
        """

    @abstractmethod
    def delete_work(self, namespace: str, name: str) -> None:
        """Request deletion (same finalizer semantics as ReplicaSets)."""

    # ── Watch ───────────────────────────────────────────────────

    @abstractmethod
    def watch(self, callback: WatchCallback) -> None:
        """Register a callback for every ReplicaSet and DeliveryObject change."""


class PlacementResolver(ABC):
    """Selection-policy evaluator, consumed as an opaque mapping."""

    @abstractmethod
    def resolve(self, namespace: str, name: str) -> frozenset[str]:
        """Current cluster set for a policy.

        Raises ``PlacementNotFoundError`` when the policy is unknown.
        """

    @abstractmethod
    def watch(self, callback: WatchCallback) -> None:
        """Register a callback for policy and result changes."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"
