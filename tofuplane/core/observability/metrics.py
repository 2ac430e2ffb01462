"""
Metrics — in-process counters, gauges and histograms.

No exporter. The manager and the settings loader record into a
MetricsRegistry; the CLI prints it on shutdown. Safe to use from the
manager's worker threads.

Naming follows the Prometheus convention (``reconcile_total``,
``reconcile_duration_ms``) so a real exporter can be bolted on later.
"""

from __future__ import annotations

import builtins
import threading
import time
from dataclasses import dataclass, field
from typing import Any


def _label_key(name: str, labels: dict[str, str]) -> str:
    if not labels:
        return name
    inner = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
    return f"{name}{{{inner}}}"


@dataclass
class Counter:
    """Monotonically increasing counter."""

    name: str
    value: int = 0
    labels: dict[str, str] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def inc(self, n: int = 1) -> None:
        with self._lock:
            self.value += n

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": "counter", "value": self.value, "labels": self.labels}


@dataclass
class Gauge:
    """Value that can go up and down."""

    name: str
    value: float = 0.0
    labels: dict[str, str] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def set(self, v: float) -> None:
        with self._lock:
            self.value = v

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": "gauge", "value": self.value, "labels": self.labels}


@dataclass
class Histogram:
    """Observed values with count, mean, min, max and p95."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    _values: list[float] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def observe(self, value: float) -> None:
        with self._lock:
            self._values.append(value)

    @property
    def count(self) -> int:
        return len(self._values)

    @property
    def total(self) -> float:
        return sum(self._values)

    @property
    def mean(self) -> float:
        return self.total / self.count if self._values else 0.0

    @property
    def p95(self) -> float:
        if not self._values:
            return 0.0
        ordered = sorted(self._values)
        return ordered[min(int(len(ordered) * 0.95), len(ordered) - 1)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": "histogram",
            "count": self.count,
            "mean": round(self.mean, 2),
            "min": builtins.min(self._values) if self._values else 0.0,
            "max": builtins.max(self._values) if self._values else 0.0,
            "p95": self.p95,
            "labels": self.labels,
        }


class MetricsRegistry:
    """Get-or-create registry keyed by name plus labels."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}

    def counter(self, name: str, **labels: str) -> Counter:
        key = _label_key(name, labels)
        with self._lock:
            if key not in self._counters:
                self._counters[key] = Counter(name=name, labels=labels)
            return self._counters[key]

    def gauge(self, name: str, **labels: str) -> Gauge:
        key = _label_key(name, labels)
        with self._lock:
            if key not in self._gauges:
                self._gauges[key] = Gauge(name=name, labels=labels)
            return self._gauges[key]

    def histogram(self, name: str, **labels: str) -> Histogram:
        key = _label_key(name, labels)
        with self._lock:
            if key not in self._histograms:
                self._histograms[key] = Histogram(name=name, labels=labels)
            return self._histograms[key]

    def timer(self, name: str, **labels: str) -> TimerContext:
        """Context manager recording elapsed milliseconds into a histogram."""
        return TimerContext(self.histogram(name, **labels))

    def value(self, name: str, **labels: str) -> int:
        """Current value of a counter (0 if never incremented)."""
        with self._lock:
            counter = self._counters.get(_label_key(name, labels))
        return counter.value if counter else 0

    def to_dict(self) -> dict[str, list[dict]]:
        with self._lock:
            return {
                "counters": [c.to_dict() for c in self._counters.values()],
                "gauges": [g.to_dict() for g in self._gauges.values()],
                "histograms": [h.to_dict() for h in self._histograms.values()],
            }

    def render_text(self) -> str:
        """One ``name{labels} value`` line per counter and gauge."""
        with self._lock:
            lines = [f"{key} {c.value}" for key, c in sorted(self._counters.items())]
            lines += [f"{key} {g.value}" for key, g in sorted(self._gauges.items())]
        return "\n".join(lines)


class TimerContext:
    def __init__(self, histogram: Histogram):
        self._histogram = histogram
        self._start = 0.0

    def __enter__(self) -> TimerContext:
        self._start = time.monotonic()
        return self

    def __exit__(self, *args: Any) -> None:
        self._histogram.observe((time.monotonic() - self._start) * 1000)
