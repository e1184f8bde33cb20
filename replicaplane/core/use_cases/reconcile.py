"""
Reconcile use case — run the controller offline against a fixture.

    load fixture → seed store/resolver → reconcile until idle
        → report observed conditions → reconcile until idle
        → delete listed ReplicaSets → reconcile until idle
        → collect status (+ optional snapshot)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from replicaplane.core.config.fixture import apply_observed, build_world, load_fixture
from replicaplane.core.config.loader import ConfigError, ControllerConfig
from replicaplane.core.controller.keys import split_key
from replicaplane.core.engine.runner import ControllerRunner
from replicaplane.core.errors import InvalidKeyError, NotFoundError
from replicaplane.core.models.replicaset import ReplicaSet
from replicaplane.core.models.work import DeliveryObject
from replicaplane.core.persistence.audit import AuditWriter
from replicaplane.core.persistence.snapshot import save_snapshot

logger = logging.getLogger(__name__)


@dataclass
class ReconcileRunResult:
    """Outcome of an offline reconcile run."""

    replicasets: list[ReplicaSet] = field(default_factory=list)
    works: list[DeliveryObject] = field(default_factory=list)
    passes: int = 0
    failing: list[str] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)
    snapshot_path: Path | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failing

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "error": self.error,
            "passes": self.passes,
            "failing": self.failing,
            "replicasets": [
                {
                    "key": rs.key,
                    "deleting": rs.metadata.deleting,
                    "finalizers": rs.metadata.finalizers,
                    "status": rs.status.model_dump(mode="json"),
                }
                for rs in self.replicasets
            ],
            "works": [f"{w.metadata.namespace}/{w.metadata.name}" for w in self.works],
            "metrics": self.metrics,
            "snapshot": str(self.snapshot_path) if self.snapshot_path else None,
        }


def run_reconcile(
    fixture_path: Path,
    config: ControllerConfig | None = None,
    save_path: Path | None = None,
    audit_path: Path | None = None,
) -> ReconcileRunResult:
    """Reconcile every ReplicaSet in a fixture until the queue settles.

    Args:
        fixture_path: YAML fixture describing the world.
        config: Controller settings (defaults if None).
        save_path: Where to write a JSON snapshot of the final store.
        audit_path: NDJSON ledger receiving one entry per pass.
    """
    result = ReconcileRunResult()

    try:
        fixture = load_fixture(fixture_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    store, resolver = build_world(fixture)
    audit = AuditWriter(audit_path) if audit_path else None
    runner = ControllerRunner(store, resolver, config=config, audit=audit)

    runner.prime()
    result.passes += runner.run_until_idle()

    if fixture.observed:
        updated = apply_observed(store, fixture.observed)
        logger.info("Applied observed conditions to %d ManifestWorks", updated)
        result.passes += runner.run_until_idle()

    if fixture.delete:
        for key in fixture.delete:
            try:
                namespace, name = split_key(key)
                store.delete_replicaset(namespace, name)
            except (InvalidKeyError, NotFoundError) as e:
                logger.warning("Cannot delete %s: %s", key, e)
        result.passes += runner.run_until_idle()

    result.replicasets = store.list_replicasets()
    result.works = store.list_works()
    result.failing = runner.queue.retrying()
    result.metrics = runner.metrics.to_dict()

    if save_path is not None:
        save_snapshot(store, save_path)
        result.snapshot_path = save_path

    return result
