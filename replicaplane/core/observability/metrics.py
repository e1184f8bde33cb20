"""
Metrics — in-process counters, gauges and latency histograms.

Worker threads record into one shared registry, so every series mutates
under its own lock. Series are keyed by name plus labels
(``apply_total{outcome=created}``); the CLI exports them as JSON.

Recorded by the controller:
    reconcile_total{result}     passes by outcome (ok / error)
    reconcile_duration_ms       pass latency
    apply_total{outcome}        per-cluster distribution outcomes
    workqueue_depth             keys waiting to be processed
    workqueue_retries_total     rate-limited requeues
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, TypeVar

# Latency samples kept per histogram for quantiles; counts and extremes are exact.
SAMPLE_WINDOW = 1024


@dataclass
class Counter:
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    value: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def inc(self, n: int = 1) -> None:
        with self._lock:
            self.value += n

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": "counter", "labels": self.labels, "value": self.value}


@dataclass
class Gauge:
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def set(self, v: float) -> None:
        with self._lock:
            self.value = v

    def inc(self, n: float = 1.0) -> None:
        with self._lock:
            self.value += n

    def dec(self, n: float = 1.0) -> None:
        self.inc(-n)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": "gauge", "labels": self.labels, "value": self.value}


@dataclass
class Histogram:
    """Latency distribution.

    ``count``, ``total``, ``min`` and ``max`` cover every observation;
    ``p95`` is computed over the most recent ``SAMPLE_WINDOW`` samples so
    a long-running controller does not grow without bound.
    """

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    count: int = 0
    total: float = 0.0
    min: float = 0.0
    max: float = 0.0
    _recent: deque[float] = field(default_factory=lambda: deque(maxlen=SAMPLE_WINDOW), repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def observe(self, value: float) -> None:
        with self._lock:
            if self.count == 0:
                self.min = self.max = value
            elif value < self.min:
                self.min = value
            elif value > self.max:
                self.max = value
            self.count += 1
            self.total += value
            self._recent.append(value)

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0

    def quantile(self, q: float) -> float:
        """Nearest-rank quantile of the recent samples (0.0 when empty)."""
        with self._lock:
            samples = sorted(self._recent)
        if not samples:
            return 0.0
        rank = max(1, math.ceil(q * len(samples)))
        return samples[rank - 1]

    @property
    def p95(self) -> float:
        return self.quantile(0.95)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": "histogram",
            "labels": self.labels,
            "count": self.count,
            **{stat: round(getattr(self, stat), 2) for stat in ("total", "mean", "min", "max", "p95")},
        }


_Series = TypeVar("_Series", Counter, Gauge, Histogram)


class MetricsRegistry:
    """All series of one controller process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}

    @staticmethod
    def _key(name: str, labels: dict[str, str]) -> str:
        if not labels:
            return name
        return name + "{" + ",".join(f"{k}={v}" for k, v in sorted(labels.items())) + "}"

    def _series(
        self, table: dict[str, _Series], kind: type[_Series], name: str, labels: dict[str, str]
    ) -> _Series:
        key = self._key(name, labels)
        with self._lock:
            series = table.get(key)
            if series is None:
                series = table[key] = kind(name=name, labels=labels)
            return series

    def counter(self, name: str, **labels: str) -> Counter:
        return self._series(self._counters, Counter, name, labels)

    def gauge(self, name: str, **labels: str) -> Gauge:
        return self._series(self._gauges, Gauge, name, labels)

    def histogram(self, name: str, **labels: str) -> Histogram:
        return self._series(self._histograms, Histogram, name, labels)

    def timer(self, name: str, **labels: str) -> TimerContext:
        """Time a block into the ``name`` histogram."""
        return TimerContext(self.histogram(name, **labels))

    def total(self, name: str) -> int:
        """Sum of a counter across all label sets."""
        with self._lock:
            return sum(c.value for c in self._counters.values() if c.name == name)

    def to_dict(self) -> dict[str, list[dict]]:
        with self._lock:
            tables = {
                "counters": self._counters,
                "gauges": self._gauges,
                "histograms": self._histograms,
            }
            return {
                kind: [table[key].to_dict() for key in sorted(table)]
                for kind, table in tables.items()
            }

    def reset(self) -> None:
        with self._lock:
            for table in (self._counters, self._gauges, self._histograms):
                table.clear()


class TimerContext:
    """Times a block in milliseconds.

    ``elapsed_ms`` is readable after the block exits. Without a histogram
    the block is only timed, not recorded.
    """

    def __init__(self, histogram: Histogram | None = None):
        self._histogram = histogram
        self._start: float = 0.0
        self.elapsed_ms: float = 0.0

    def __enter__(self) -> TimerContext:
        self._start = time.monotonic()
        return self

    def __exit__(self, *args: Any) -> None:
        self.elapsed_ms = (time.monotonic() - self._start) * 1000
        if self._histogram is not None:
            self._histogram.observe(self.elapsed_ms)
