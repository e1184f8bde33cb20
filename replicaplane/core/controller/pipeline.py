"""
Reconciler pipeline — an ordered chain of independent stages.

Each stage implements one capability::

    reconcile(ctx, rs) -> (rs, ReconcileState, error | None)

The driver hands the (possibly mutated) resource from one stage to the
next. A stage's error is appended to an accumulator and the chain keeps
going; only an explicit ``STOP`` halts it. That way the status stage
still runs after a partial distribution failure and status reflects
what actually happened.

Order:
    1. Finalize      — deleting resources stop here
    2. Guard-Install — finalizer committed before any child exists
    3. Distribution  — fan-out to clusters
    4. Status        — recomputed from observed children
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum

from replicaplane.core.errors import ReconcileCancelledError
from replicaplane.core.models.replicaset import ReplicaSet

logger = logging.getLogger(__name__)


class ReconcileState(StrEnum):
    """Signal returned by each stage."""

    STOP = "stop"
    CONTINUE = "continue"


@dataclass
class SyncContext:
    """Per-pass context shared by all stages.

    Args:
        key: Queue key being processed.
        deadline: ``time.monotonic()`` value after which the pass gives up.
        cancel_event: Set by the runner to abandon in-flight passes.
    """

    key: str = ""
    deadline: float | None = None
    cancel_event: threading.Event | None = None

    # Written by stages, read by the runner after the pass.
    requeue_after: float | None = None
    reports: dict[str, object] = field(default_factory=dict)

    def cancelled(self) -> bool:
        if self.cancel_event is not None and self.cancel_event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def request_requeue(self, delay: float) -> None:
        """Ask for this key to be processed again after ``delay`` seconds."""
        if self.requeue_after is None or delay < self.requeue_after:
            self.requeue_after = delay


class Reconciler(ABC):
    """One stage of the pipeline.

    Stages must not raise for expected failures; they return the error
    and let the driver accumulate it.
    """

    name: str = "reconciler"

    @abstractmethod
    def reconcile(
        self, ctx: SyncContext, rs: ReplicaSet
    ) -> tuple[ReplicaSet, ReconcileState, Exception | None]:
        """Advance ``rs`` toward its desired state."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


def run_pipeline(
    ctx: SyncContext,
    rs: ReplicaSet,
    stages: list[Reconciler],
) -> tuple[ReplicaSet, list[Exception]]:
    """Drive ``rs`` through ``stages`` in order.

    Returns the final resource and every error reported along the way,
    in stage order. An unexpected exception from a stage is recorded
    like any other error and the chain moves on.
    """
    errors: list[Exception] = []
    for stage in stages:
        if ctx.cancelled():
            errors.append(ReconcileCancelledError(f"{ctx.key}: cancelled before {stage.name}"))
            break

        try:
            rs, state, err = stage.reconcile(ctx, rs)
        except Exception as e:
            logger.error("Stage %s raised for %s: %s", stage.name, ctx.key, e)
            errors.append(e)
            continue

        if err is not None:
            logger.debug("Stage %s reported for %s: %s", stage.name, ctx.key, err)
            errors.append(err)
        if state == ReconcileState.STOP:
            logger.debug("Stage %s stopped the pipeline for %s", stage.name, ctx.key)
            break

    return rs, errors
