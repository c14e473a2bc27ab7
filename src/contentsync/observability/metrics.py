"""
Update engine metrics.

Counters, histograms and gauges owned by one engine instance, with a
Prometheus-compatible text export. Nothing here is global: every engine
creates (or is given) its own MetricsRegistry.

Usage:
    registry = MetricsRegistry()
    metrics = UpdateMetrics(registry)

    metrics.updates_total.increment()
    metrics.update_duration.observe(0.042)

    print(format_prometheus_metrics(registry))
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class MetricType(str, Enum):
    """Supported metric types."""

    COUNTER = "counter"
    HISTOGRAM = "histogram"
    GAUGE = "gauge"


DURATION_BUCKETS = [0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]


@dataclass
class CounterMetric:
    """A counter metric that only increments."""

    name: str
    description: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    _value: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def increment(self, amount: int = 1) -> None:
        if amount < 0:
            raise ValueError("counters can only increase")
        with self._lock:
            self._value += amount

    def get_value(self) -> int:
        with self._lock:
            return self._value

    def reset(self) -> None:
        with self._lock:
            self._value = 0


@dataclass
class HistogramMetric:
    """
    A histogram with cumulative bucket counts.

    Only the bucket counts, count and sum are retained, so memory stays
    constant no matter how many observations are recorded.
    """

    name: str
    description: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    buckets: list[float] = field(default_factory=lambda: list(DURATION_BUCKETS))
    _bucket_counts: dict[float, int] = field(default_factory=dict)
    _count: int = 0
    _sum: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def __post_init__(self) -> None:
        self.buckets = sorted(self.buckets)
        self._bucket_counts = dict.fromkeys(self.buckets, 0)

    def observe(self, value: float) -> None:
        with self._lock:
            self._count += 1
            self._sum += value
            for bucket in self.buckets:
                if value <= bucket:
                    self._bucket_counts[bucket] += 1

    def get_count(self) -> int:
        with self._lock:
            return self._count

    def get_sum(self) -> float:
        with self._lock:
            return self._sum

    def get_bucket_counts(self) -> dict[float, int]:
        with self._lock:
            return dict(self._bucket_counts)

    def reset(self) -> None:
        with self._lock:
            self._count = 0
            self._sum = 0.0
            self._bucket_counts = dict.fromkeys(self.buckets, 0)


@dataclass
class GaugeMetric:
    """A gauge metric that can go up and down."""

    name: str
    description: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    _value: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def set(self, value: float) -> None:
        with self._lock:
            self._value = value

    def increment(self, amount: float = 1.0) -> None:
        with self._lock:
            self._value += amount

    def decrement(self, amount: float = 1.0) -> None:
        with self._lock:
            self._value -= amount

    def get_value(self) -> float:
        with self._lock:
            return self._value

    def reset(self) -> None:
        with self._lock:
            self._value = 0.0


class MetricsRegistry:
    """Registry of metrics keyed by name and labels."""

    def __init__(self) -> None:
        self._counters: dict[str, CounterMetric] = {}
        self._histograms: dict[str, HistogramMetric] = {}
        self._gauges: dict[str, GaugeMetric] = {}
        self._lock = threading.Lock()

    def counter(
        self,
        name: str,
        description: str = "",
        labels: Optional[dict[str, str]] = None,
    ) -> CounterMetric:
        """Get or create a counter metric."""
        key = self._make_key(name, labels)
        with self._lock:
            if key not in self._counters:
                self._counters[key] = CounterMetric(name=name, description=description, labels=labels or {})
            return self._counters[key]

    def histogram(
        self,
        name: str,
        description: str = "",
        labels: Optional[dict[str, str]] = None,
        buckets: Optional[list[float]] = None,
    ) -> HistogramMetric:
        """Get or create a histogram metric."""
        key = self._make_key(name, labels)
        with self._lock:
            if key not in self._histograms:
                self._histograms[key] = HistogramMetric(
                    name=name,
                    description=description,
                    labels=labels or {},
                    buckets=list(buckets or DURATION_BUCKETS),
                )
            return self._histograms[key]

    def gauge(
        self,
        name: str,
        description: str = "",
        labels: Optional[dict[str, str]] = None,
    ) -> GaugeMetric:
        """Get or create a gauge metric."""
        key = self._make_key(name, labels)
        with self._lock:
            if key not in self._gauges:
                self._gauges[key] = GaugeMetric(name=name, description=description, labels=labels or {})
            return self._gauges[key]

    def _make_key(self, name: str, labels: Optional[dict[str, str]] = None) -> str:
        if not labels:
            return name
        label_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def get_all_metrics(self) -> dict[str, dict[str, Any]]:
        """Get all metrics in a format suitable for export."""
        metrics: dict[str, dict[str, Any]] = {}

        with self._lock:
            for key, counter in self._counters.items():
                metrics[key] = {
                    "type": MetricType.COUNTER.value,
                    "name": counter.name,
                    "description": counter.description,
                    "value": counter.get_value(),
                    "labels": counter.labels,
                }

            for key, histogram in self._histograms.items():
                metrics[key] = {
                    "type": MetricType.HISTOGRAM.value,
                    "name": histogram.name,
                    "description": histogram.description,
                    "count": histogram.get_count(),
                    "sum": histogram.get_sum(),
                    "buckets": histogram.get_bucket_counts(),
                    "labels": histogram.labels,
                }

            for key, gauge in self._gauges.items():
                metrics[key] = {
                    "type": MetricType.GAUGE.value,
                    "name": gauge.name,
                    "description": gauge.description,
                    "value": gauge.get_value(),
                    "labels": gauge.labels,
                }

        return metrics

    def get_summary(self) -> dict[str, Any]:
        return {
            "timestamp": datetime.now().isoformat(),
            "metrics": self.get_all_metrics(),
        }

    def reset_all(self) -> None:
        with self._lock:
            for counter in self._counters.values():
                counter.reset()
            for histogram in self._histograms.values():
                histogram.reset()
            for gauge in self._gauges.values():
                gauge.reset()


class UpdateMetrics:
    """The metrics an update engine records, created on a shared registry."""

    def __init__(self, registry: MetricsRegistry) -> None:
        self.registry = registry
        self.updates_total = registry.counter("contentsync_updates_total", "Update functions executed")
        self.updates_failed = registry.counter("contentsync_updates_failed", "Update functions that failed")
        self.rollbacks_total = registry.counter("contentsync_rollbacks_total", "Snapshot rollbacks performed")
        self.recreations_total = registry.counter(
            "contentsync_recreations_total", "Resources replaced with a diagnostic placeholder"
        )
        self.emergency_cleanups_total = registry.counter(
            "contentsync_emergency_cleanups_total", "Emergency size cleanups performed"
        )
        self.update_duration = registry.histogram(
            "contentsync_update_duration_seconds", "Duration of update functions in seconds"
        )
        self.active_updates = registry.gauge("contentsync_active_updates", "Update functions currently running")


def format_prometheus_metrics(registry: MetricsRegistry) -> str:
    """Format all metrics in Prometheus text format."""
    lines: list[str] = []
    seen_headers: set[str] = set()

    for key, data in registry.get_all_metrics().items():
        name = data["name"]
        if name not in seen_headers:
            seen_headers.add(name)
            if data.get("description"):
                lines.append(f"# HELP {name} {data['description']}")
            lines.append(f"# TYPE {name} {data['type']}")

        if data["type"] == MetricType.HISTOGRAM.value:
            for bucket, count in data["buckets"].items():
                lines.append(f'{name}_bucket{{le="{bucket}"}} {count}')
            lines.append(f'{name}_bucket{{le="+Inf"}} {data["count"]}')
            lines.append(f"{name}_count {data['count']}")
            lines.append(f"{name}_sum {data['sum']}")
        else:
            lines.append(f"{key} {data['value']}")

    return "\n".join(lines) + "\n"


__all__ = [
    "DURATION_BUCKETS",
    "CounterMetric",
    "GaugeMetric",
    "HistogramMetric",
    "MetricType",
    "MetricsRegistry",
    "UpdateMetrics",
    "format_prometheus_metrics",
]
