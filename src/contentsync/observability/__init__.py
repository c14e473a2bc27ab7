"""
Observability for the update engine.

- Metrics: per-engine counters, histograms and gauges with Prometheus export
- Performance: operation timing, memory sampling and update-frequency analysis

Example:
    from contentsync.observability import PerformanceMonitor, format_prometheus_metrics

    monitor = PerformanceMonitor()
    monitor.timer.start("queries_update")
    ...
    monitor.timer.end("queries_update")
    print(monitor.generate_optimization_recommendations())
"""

from .metrics import (
    CounterMetric,
    GaugeMetric,
    HistogramMetric,
    MetricsRegistry,
    MetricType,
    UpdateMetrics,
    format_prometheus_metrics,
)
from .performance import (
    FrequencyBenchmark,
    FrequencyStats,
    MemoryMonitor,
    MemorySample,
    MemoryStats,
    PerformanceMonitor,
    PerformanceReport,
    PerformanceTimer,
    Recommendation,
    TimingMeasurement,
    TimingStats,
    UpdateFrequencyBenchmark,
    linear_slope,
)

__all__ = [
    "CounterMetric",
    "FrequencyBenchmark",
    "FrequencyStats",
    "GaugeMetric",
    "HistogramMetric",
    "MemoryMonitor",
    "MemorySample",
    "MemoryStats",
    "MetricType",
    "MetricsRegistry",
    "PerformanceMonitor",
    "PerformanceReport",
    "PerformanceTimer",
    "Recommendation",
    "TimingMeasurement",
    "TimingStats",
    "UpdateFrequencyBenchmark",
    "UpdateMetrics",
    "format_prometheus_metrics",
    "linear_slope",
]
