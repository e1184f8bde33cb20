"""
Controller runner — the loop that keeps ReplicaSets converged.

Wires the watch sources to the work queue and runs a pool of worker
threads pulling keys from it:

    watch event → handlers → queue → worker → sync → requeue decision

After each pass:
    error               → add_rate_limited (exponential backoff)
    requeue requested   → forget + add_after(delay)
    success             → forget

``run_until_idle`` processes ready keys on the calling thread instead,
which is what the offline CLI and the tests use.
"""

from __future__ import annotations

import logging
import threading
import time

from replicaplane.adapters.applier import WorkApplier
from replicaplane.adapters.base import PlacementResolver, ResourceStore
from replicaplane.core.config.loader import ControllerConfig
from replicaplane.core.controller.handlers import EventHandlers
from replicaplane.core.controller.index import CorrelationIndex
from replicaplane.core.controller.keys import own_key
from replicaplane.core.controller.pipeline import SyncContext
from replicaplane.core.controller.sync import ReplicaSetController
from replicaplane.core.observability.metrics import MetricsRegistry
from replicaplane.core.persistence.audit import AuditWriter
from replicaplane.core.reliability.workqueue import WorkQueue

logger = logging.getLogger(__name__)


class ControllerRunner:
    """Queue, index, handlers, and workers around one controller."""

    def __init__(
        self,
        store: ResourceStore,
        resolver: PlacementResolver,
        config: ControllerConfig | None = None,
        metrics: MetricsRegistry | None = None,
        audit: AuditWriter | None = None,
        applier: WorkApplier | None = None,
    ):
        self.config = config or ControllerConfig()
        self.store = store
        self.metrics = metrics or MetricsRegistry()
        self.queue = WorkQueue(
            base_delay=self.config.base_delay,
            max_delay=self.config.max_delay,
        )
        self.index = CorrelationIndex()
        self.handlers = EventHandlers(self.index, self.queue.add)
        self.controller = ReplicaSetController(
            store,
            resolver,
            config=self.config,
            applier=applier,
            metrics=self.metrics,
            audit=audit,
        )

        self._cancel = threading.Event()
        self._workers: list[threading.Thread] = []

        store.watch(self.handlers)
        resolver.watch(self.handlers)

    # ── Startup ─────────────────────────────────────────────────

    def prime(self) -> int:
        """Index every existing ReplicaSet and enqueue it once."""
        replicasets = self.store.list_replicasets()
        for rs in replicasets:
            self.index.upsert(rs)
            self.queue.add(own_key(rs))
        logger.info("Primed %d ReplicaSets", len(replicasets))
        self._update_depth()
        return len(replicasets)

    def start(self) -> None:
        """Prime the queue and start the worker threads."""
        if self._workers:
            return
        self._cancel.clear()
        self.prime()
        for i in range(self.config.workers):
            t = threading.Thread(
                target=self._worker_loop,
                name=f"worker-{i}",
                daemon=True,
            )
            t.start()
            self._workers.append(t)
        logger.info("Controller started (%d workers)", self.config.workers)

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel in-flight passes, shut the queue down, and join workers."""
        self._cancel.set()
        self.queue.shut_down()
        for t in self._workers:
            t.join(timeout)
        self._workers.clear()
        logger.info("Controller stopped")

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._workers)

    # ── Processing ──────────────────────────────────────────────

    def _worker_loop(self) -> None:
        while self.process_next_item():
            pass

    def process_next_item(self, timeout: float | None = None) -> bool:
        """Take one key, reconcile it, and schedule any follow-up.

        Returns False when no key became ready within ``timeout`` or the
        queue is shut down.
        """
        key = self.queue.get(timeout)
        if key is None:
            return False

        deadline = None
        if self.config.sync_timeout_seconds is not None:
            deadline = time.monotonic() + self.config.sync_timeout_seconds
        ctx = SyncContext(key=key, deadline=deadline, cancel_event=self._cancel)

        try:
            err = self.controller.sync(key, ctx)
        except Exception as e:
            logger.exception("Unexpected error reconciling %s", key)
            self.metrics.counter("reconcile_total", result="error").inc()
            err = e
        finally:
            self.queue.done(key)

        if err is not None:
            delay = self.queue.add_rate_limited(key)
            self.metrics.counter("workqueue_retries_total").inc()
            logger.info("Requeued %s in %.3fs after error: %s", key, delay, err)
        else:
            self.queue.forget(key)
            if ctx.requeue_after is not None:
                self.queue.add_after(key, ctx.requeue_after)
                logger.debug("Requeued %s in %.1fs on request", key, ctx.requeue_after)

        self._update_depth()
        return True

    def run_until_idle(self, max_passes: int = 1000) -> int:
        """Process ready keys on this thread until none is left.

        Delayed and backed-off keys are left in the queue. Returns the
        number of passes run.
        """
        passes = 0
        while passes < max_passes and self.process_next_item(timeout=0):
            passes += 1
        logger.debug("Ran %d passes; %s", passes, self.queue.get_status())
        return passes

    def _update_depth(self) -> None:
        self.metrics.gauge("workqueue_depth").set(len(self.queue))
