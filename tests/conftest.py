"""
Shared test fixtures and configuration.
"""

import pytest

from replicaplane.adapters.memory import InMemoryStore, StaticPlacementResolver
from replicaplane.core.controller.keys import CLEANUP_FINALIZER, PLACEMENT_LABEL, REPLICASET_LABEL
from replicaplane.core.controller.sync import ReplicaSetController
from replicaplane.core.models import (
    Condition,
    DeliveryObject,
    ManifestWorkTemplate,
    ObjectMeta,
    PlacementRef,
    ReplicaSet,
    ReplicaSetSpec,
    RolloutStrategy,
    WorkSpec,
)

CONFIGMAP = {
    "apiVersion": "v1",
    "kind": "ConfigMap",
    "metadata": {"namespace": "default", "name": "cm1"},
    "data": {"a": "b"},
}


def _make_rs(
    namespace: str = "ns1",
    name: str = "app",
    placements: list[str] | None = None,
    manifests: list[dict] | None = None,
    finalizers: list[str] | None = None,
    strategy: RolloutStrategy | None = None,
) -> ReplicaSet:
    """Build a ReplicaSet with one template and the given PlacementRefs."""
    refs = [
        PlacementRef(name=p, rollout_strategy=strategy or RolloutStrategy())
        for p in (placements if placements is not None else ["place1"])
    ]
    return ReplicaSet(
        metadata=ObjectMeta(
            namespace=namespace,
            name=name,
            finalizers=list(finalizers or []),
        ),
        spec=ReplicaSetSpec(
            manifest_work_template=ManifestWorkTemplate(
                manifests=manifests if manifests is not None else [CONFIGMAP],
            ),
            placement_refs=refs,
        ),
    )


def _make_work(
    cluster: str,
    owner: str = "ns1.app",
    placement: str = "place1",
    name: str = "app",
    finalizers: list[str] | None = None,
    manifests: list[dict] | None = None,
) -> DeliveryObject:
    """Build a DeliveryObject labeled as owned by ``owner``."""
    return DeliveryObject(
        metadata=ObjectMeta(
            namespace=cluster,
            name=name,
            labels={REPLICASET_LABEL: owner, PLACEMENT_LABEL: placement},
            finalizers=list(finalizers or []),
        ),
        spec=WorkSpec(manifests=manifests if manifests is not None else [CONFIGMAP]),
    )


def _conditions(*types: str) -> list[Condition]:
    return [Condition(type=t, status="True", reason="Observed") for t in types]


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def resolver() -> StaticPlacementResolver:
    return StaticPlacementResolver({"ns1/place1": ["c1", "c2", "c3"]})


@pytest.fixture
def controller(store: InMemoryStore, resolver: StaticPlacementResolver) -> ReplicaSetController:
    return ReplicaSetController(store, resolver)


@pytest.fixture
def guarded_rs(store: InMemoryStore) -> ReplicaSet:
    """``ns1/app`` already carrying the cleanup finalizer, stored."""
    return store.create_replicaset(_make_rs(finalizers=[CLEANUP_FINALIZER]))


@pytest.fixture
def make_rs():
    return _make_rs


@pytest.fixture
def make_work():
    return _make_work


@pytest.fixture
def conditions():
    return _conditions
