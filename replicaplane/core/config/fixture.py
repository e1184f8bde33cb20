"""
Fixture loader — describe a world in YAML for offline runs.

A fixture seeds the in-memory store and resolver:

    replicasets:          ReplicaSets (same shape as the model)
      - metadata: {namespace: ns1, name: app}
        spec:
          manifest_work_template: {manifests: [...]}
          placement_refs: [{name: place1}]
    decisions:            placement key → selected clusters
      ns1/place1: [c1, c2, c3]
    works: []             DeliveryObjects that already exist
    observed:             conditions reported by cluster agents
      c1/app: [Applied, Available]
    delete: [ns1/app]     ReplicaSets to delete after the first round
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from replicaplane.adapters.memory import InMemoryStore, StaticPlacementResolver
from replicaplane.core.config.loader import ConfigError, load_yaml_mapping
from replicaplane.core.errors import NotFoundError
from replicaplane.core.models.meta import Condition
from replicaplane.core.models.replicaset import ReplicaSet
from replicaplane.core.models.work import DeliveryObject

logger = logging.getLogger(__name__)


class Fixture(BaseModel):
    """Validated contents of a fixture file."""

    replicasets: list[ReplicaSet] = Field(default_factory=list)
    decisions: dict[str, list[str]] = Field(default_factory=dict)
    works: list[DeliveryObject] = Field(default_factory=list)
    observed: dict[str, list[str]] = Field(default_factory=dict)
    delete: list[str] = Field(default_factory=list)


def load_fixture(path: Path) -> Fixture:
    """Read and validate a fixture file.

    Raises:
        ConfigError: If the file is missing, not YAML, or fails validation.
    """
    data = load_yaml_mapping(path)
    try:
        fixture = Fixture.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid fixture {path}: {e}") from e

    logger.debug(
        "Loaded fixture %s: %d replicasets, %d decisions, %d works",
        path,
        len(fixture.replicasets),
        len(fixture.decisions),
        len(fixture.works),
    )
    return fixture


def build_world(fixture: Fixture) -> tuple[InMemoryStore, StaticPlacementResolver]:
    """Create a store and resolver holding the fixture's objects."""
    store = InMemoryStore()
    for rs in fixture.replicasets:
        store.create_replicaset(rs)
    for work in fixture.works:
        store.create_work(work)
    resolver = StaticPlacementResolver(fixture.decisions)
    return store, resolver


def apply_observed(store: InMemoryStore, observed: dict[str, list[str]]) -> int:
    """Mark the listed condition types True on each DeliveryObject.

    Keys are ``cluster/name``. Objects that do not exist are skipped with
    a warning. Returns the number of objects updated.
    """
    updated = 0
    for key, types in sorted(observed.items()):
        namespace, _, name = key.partition("/")
        conditions = [Condition(type=t, status="True", reason="Observed") for t in types]
        try:
            store.set_work_conditions(namespace, name, conditions)
        except NotFoundError:
            logger.warning("Observed conditions for unknown ManifestWork %s", key)
            continue
        updated += 1
    return updated
