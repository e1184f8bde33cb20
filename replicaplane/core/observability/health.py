"""
Health checker — aggregate controller health from components.

Reports the state of the work queue, the reconcile error rate, and
the overall controller. Used by the CLI ``health`` command.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from replicaplane.core.observability.metrics import MetricsRegistry
from replicaplane.core.reliability.workqueue import WorkQueue

logger = logging.getLogger(__name__)

# Keys retried this many times in a row mark the queue degraded
DEGRADED_REQUEUES = 5


@dataclass
class ComponentHealth:
    """Health of a single component."""

    name: str
    status: str = "unknown"  # healthy, degraded, unhealthy, unknown
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class SystemHealth:
    """Aggregate health of the controller."""

    status: str = "healthy"
    timestamp: str = ""
    components: list[ComponentHealth] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(UTC).isoformat()

    def add(self, component: ComponentHealth) -> None:
        self.components.append(component)
        self._recalculate()

    def _recalculate(self) -> None:
        statuses = [c.status for c in self.components]
        if any(s == "unhealthy" for s in statuses):
            self.status = "unhealthy"
        elif any(s == "degraded" for s in statuses):
            self.status = "degraded"
        elif all(s == "healthy" for s in statuses):
            self.status = "healthy"
        else:
            self.status = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "components": [c.to_dict() for c in self.components],
        }


def check_work_queue(queue: WorkQueue) -> ComponentHealth:
    """Check the work queue for shutdown and stuck retries."""
    data = queue.get_status()

    if data["shutting_down"]:
        status = "unhealthy"
        message = "Queue shut down"
    elif data["max_requeues"] >= DEGRADED_REQUEUES:
        status = "degraded"
        message = f"{data['retrying']} keys retrying (max {data['max_requeues']} requeues)"
    elif data["depth"] or data["delayed"]:
        status = "healthy"
        message = f"{data['depth']} keys queued, {data['delayed']} delayed"
    else:
        status = "healthy"
        message = "Queue empty"

    return ComponentHealth(name="work_queue", status=status, message=message, details=data)


def check_reconciles(metrics: MetricsRegistry) -> ComponentHealth:
    """Check the share of failed reconcile passes."""
    ok = metrics.counter("reconcile_total", result="ok").value
    failed = metrics.counter("reconcile_total", result="error").value
    total = ok + failed
    details = {"ok": ok, "error": failed}

    if total == 0:
        return ComponentHealth(
            name="reconciles", status="healthy", message="No passes yet", details=details
        )
    if failed == total:
        status = "unhealthy"
    elif failed:
        status = "degraded"
    else:
        status = "healthy"
    return ComponentHealth(
        name="reconciles",
        status=status,
        message=f"{failed}/{total} passes failed",
        details=details,
    )


def check_system_health(
    queue: WorkQueue | None = None,
    metrics: MetricsRegistry | None = None,
) -> SystemHealth:
    """Run all health checks and return aggregate status."""
    health = SystemHealth()

    if queue is not None:
        health.add(check_work_queue(queue))

    if metrics is not None:
        health.add(check_reconciles(metrics))

    return health
