"""
Work queue — deduplicating, rate-limited queue of reconcile keys.

Keys are ``namespace/name`` strings. The queue guarantees:

- a key waiting in the queue is stored once, however often it is added
- a key being processed is never handed to a second worker; adding it
  while in flight marks it dirty, and ``done`` puts it back
- failed keys come back with per-key exponential backoff plus jitter,
  without an attempt limit

Delayed keys (``add_after``) sit in a heap until their time comes.
"""

from __future__ import annotations

import heapq
import logging
import random
import threading
import time
from collections import deque
from typing import Any

logger = logging.getLogger(__name__)


class WorkQueue:
    """Thread-safe reconcile queue with dedupe and per-key backoff."""

    def __init__(
        self,
        base_delay: float = 0.005,
        max_delay: float = 300.0,
        jitter: float = 0.1,
    ):
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._jitter = jitter

        self._cond = threading.Condition()
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._waiting: list[tuple[float, int, str]] = []
        self._seq = 0
        self._failures: dict[str, int] = {}
        self._shutting_down = False

    # ── Admission ───────────────────────────────────────────────

    def add(self, key: str) -> None:
        """Enqueue ``key`` unless it is already waiting."""
        with self._cond:
            self._add_locked(key)

    def _add_locked(self, key: str) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def add_after(self, key: str, delay: float) -> None:
        """Enqueue ``key`` once ``delay`` seconds have passed."""
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            self._seq += 1
            heapq.heappush(self._waiting, (time.monotonic() + delay, self._seq, key))
            self._cond.notify()

    def add_rate_limited(self, key: str) -> float:
        """Requeue a failed key with exponential backoff. Returns the delay."""
        with self._cond:
            attempt = self._failures.get(key, 0)
            self._failures[key] = attempt + 1
        delay = min(self._base_delay * (2 ** attempt), self._max_delay)
        delay += random.uniform(0, delay * self._jitter)
        logger.debug("Requeue %s: attempt %d, delay %.3fs", key, attempt + 1, delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        """Reset the backoff for ``key`` after a successful pass."""
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def retrying(self) -> list[str]:
        """Keys whose last pass failed and that have not been forgotten."""
        with self._cond:
            return sorted(k for k, n in self._failures.items() if n > 0)

    # ── Consumption ─────────────────────────────────────────────

    def get(self, timeout: float | None = None) -> str | None:
        """Block until a key is ready and mark it in flight.

        Returns None on timeout or once the queue is shut down and drained.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                self._promote_due_locked()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key
                if self._shutting_down:
                    return None

                wait = None
                now = time.monotonic()
                if self._waiting:
                    wait = max(self._waiting[0][0] - now, 0.0)
                if deadline is not None:
                    remaining = deadline - now
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: str) -> None:
        """Mark ``key`` finished. A re-add during processing is queued now."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty and not self._shutting_down:
                self._queue.append(key)
                self._cond.notify()

    def _promote_due_locked(self) -> None:
        now = time.monotonic()
        while self._waiting and self._waiting[0][0] <= now:
            _, _, key = heapq.heappop(self._waiting)
            self._add_locked(key)

    # ── Lifecycle ───────────────────────────────────────────────

    def shut_down(self) -> None:
        """Stop admitting keys and wake every blocked ``get``."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def idle(self) -> bool:
        """True when nothing is queued, delayed, or in flight."""
        with self._cond:
            return not self._queue and not self._waiting and not self._processing

    def get_status(self) -> dict[str, Any]:
        """Queue status summary."""
        with self._cond:
            return {
                "depth": len(self._queue),
                "delayed": len(self._waiting),
                "processing": len(self._processing),
                "retrying": sum(1 for n in self._failures.values() if n > 0),
                "max_requeues": max(self._failures.values(), default=0),
                "shutting_down": self._shutting_down,
            }
