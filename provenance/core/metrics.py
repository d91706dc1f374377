"""provenance.core.metrics

In-process metrics: counters, gauges and latency summaries.

Names are flat (`appends`, `stale_head`, `anchor_commit_seconds`). The
health endpoint exposes `snapshot()`; nothing here exports to a collector.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock


@dataclass
class Counter:
    name: str
    _value: float = 0.0
    _lock: Lock = field(default_factory=Lock, repr=False)

    def inc(self, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("counters only go up")
        with self._lock:
            self._value += amount

    @property
    def value(self) -> float:
        with self._lock:
            return float(self._value)


@dataclass
class Gauge:
    name: str
    _value: float = 0.0
    _lock: Lock = field(default_factory=Lock, repr=False)

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)

    @property
    def value(self) -> float:
        with self._lock:
            return float(self._value)


@dataclass
class Summary:
    """Count, total and worst case of observed durations, in seconds."""

    name: str
    _count: int = 0
    _sum: float = 0.0
    _max: float = 0.0
    _lock: Lock = field(default_factory=Lock, repr=False)

    def observe(self, seconds: float) -> None:
        with self._lock:
            self._count += 1
            self._sum += float(seconds)
            self._max = max(self._max, float(seconds))

    @contextmanager
    def time(self) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.observe(time.perf_counter() - start)

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def values(self) -> dict[str, float]:
        with self._lock:
            mean = self._sum / self._count if self._count else 0.0
            return {"count": float(self._count), "mean": mean, "max": self._max}


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._summaries: dict[str, Summary] = {}

    def counter(self, name: str) -> Counter:
        with self._lock:
            return self._counters.setdefault(name, Counter(name=name))

    def gauge(self, name: str) -> Gauge:
        with self._lock:
            return self._gauges.setdefault(name, Gauge(name=name))

    def summary(self, name: str) -> Summary:
        with self._lock:
            return self._summaries.setdefault(name, Summary(name=name))

    def snapshot(self) -> dict[str, float]:
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)
            summaries = dict(self._summaries)
        data: dict[str, float] = {f"counter.{k}": c.value for k, c in counters.items()}
        data.update({f"gauge.{k}": g.value for k, g in gauges.items()})
        for k, s in summaries.items():
            data.update({f"summary.{k}.{stat}": v for stat, v in s.values().items()})
        return data


REGISTRY = MetricsRegistry()
