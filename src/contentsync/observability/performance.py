"""
Performance instrumentation for content updates.

Three collectors plus an aggregator:

- PerformanceTimer: per-operation durations with a rolling window, summary
  statistics and a linear-slope trend.
- MemoryMonitor: process memory samples (psutil) plus an element-count proxy,
  with warning/critical alert listeners and an optional background sampler.
- UpdateFrequencyBenchmark: per-resource update timestamps, frequency and
  regularity analysis, and recommendations when updates are frequent and slow.
- PerformanceMonitor: owns one of each and builds the combined report.

Everything here is advisory. Nothing in this module blocks or changes an
update; it only records what happened and suggests what to tune.
"""

import asyncio
import math
import os
import statistics
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

import psutil
from pydantic import BaseModel, Field

from contentsync.config.logging_config import get_logger

log = get_logger(__name__)

MB = 1024 * 1024

TimingTrend = Literal["improving", "stable", "degrading", "insufficient_data"]
MemoryTrend = Literal["increasing", "stable", "decreasing", "insufficient_data"]
Pattern = Literal["very_regular", "regular", "irregular", "insufficient_data"]
AlertLevel = Literal["warning", "critical"]
RecommendationPriority = Literal["high", "medium", "low"]

_PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}


def linear_slope(values: list[float]) -> float:
    """Least-squares slope of ``values`` against their index."""
    n = len(values)
    if n < 2:
        return 0.0
    sum_x = n * (n - 1) / 2
    sum_xx = (n - 1) * n * (2 * n - 1) / 6
    sum_y = sum(values)
    sum_xy = sum(i * v for i, v in enumerate(values))
    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denominator


def _percentile(sorted_values: list[float], fraction: float) -> float:
    index = min(len(sorted_values) - 1, int(math.floor(len(sorted_values) * fraction)))
    return sorted_values[index]


class Recommendation(BaseModel):
    type: str
    priority: RecommendationPriority
    message: str
    suggestion: str | None = None
    operation: str | None = None
    container_id: str | None = None
    suggested_updates_per_minute: float | None = None
    target_duration: float | None = None


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------


@dataclass
class TimingMeasurement:
    operation_id: str
    duration: float
    started_at: float
    timestamp: float
    metadata: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)


class TimingStats(BaseModel):
    operation_id: str
    count: int
    min: float
    max: float
    average: float
    median: float
    p95: float
    trend: TimingTrend
    slope: float


class PerformanceTimer:
    """
    Time named operations and keep a rolling window of durations.

    Durations are in seconds. Concurrent runs of the same operation are told
    apart with ``run_id``; their measurements share the operation's window.

    Example:
        timer = PerformanceTimer()
        timer.start("queries_update", {"container_id": "queries"})
        ...
        measurement = timer.end("queries_update", success=True)
    """

    # Seconds per sample; a slope above this is degrading, below its negative improving
    TREND_SLOPE_THRESHOLD = 0.001

    def __init__(self, max_measurements: int = 1000):
        self._max_measurements = max_measurements
        self._running: dict[tuple[str, str | None], tuple[float, float, dict[str, Any]]] = {}
        self._measurements: dict[str, deque[TimingMeasurement]] = {}

    def start(self, operation_id: str, metadata: dict[str, Any] | None = None, run_id: str | None = None) -> None:
        self._running[(operation_id, run_id)] = (time.perf_counter(), time.time(), dict(metadata or {}))

    def end(self, operation_id: str, run_id: str | None = None, **extra: Any) -> TimingMeasurement | None:
        """
        Stop timing an operation and record the measurement.

        Returns:
            The measurement, or None if no matching ``start`` was recorded.
        """
        running = self._running.pop((operation_id, run_id), None)
        if running is None:
            log.warning(f"No timer running for {operation_id}")
            return None

        started_at, timestamp, metadata = running
        measurement = TimingMeasurement(
            operation_id=operation_id,
            duration=time.perf_counter() - started_at,
            started_at=started_at,
            timestamp=timestamp,
            metadata=metadata,
            extra=extra,
        )
        window = self._measurements.setdefault(operation_id, deque(maxlen=self._max_measurements))
        window.append(measurement)
        log.debug(f"Completed {operation_id} in {measurement.duration * 1000:.2f}ms")
        return measurement

    def is_running(self, operation_id: str, run_id: str | None = None) -> bool:
        return (operation_id, run_id) in self._running

    def get_measurements(self, operation_id: str, limit: int = 100) -> list[TimingMeasurement]:
        window = self._measurements.get(operation_id)
        if not window:
            return []
        return list(window)[-limit:]

    def get_stats(self, operation_id: str, recent_count: int = 50) -> TimingStats | None:
        measurements = self.get_measurements(operation_id, recent_count)
        if not measurements:
            return None

        durations = [m.duration for m in measurements]
        ordered = sorted(durations)
        trend, slope = self._trend(durations[-10:])
        return TimingStats(
            operation_id=operation_id,
            count=len(durations),
            min=ordered[0],
            max=ordered[-1],
            average=sum(durations) / len(durations),
            median=statistics.median(ordered),
            p95=_percentile(ordered, 0.95),
            trend=trend,
            slope=slope,
        )

    def _trend(self, durations: list[float]) -> tuple[TimingTrend, float]:
        if len(durations) < 3:
            return "insufficient_data", 0.0
        slope = linear_slope(durations)
        if slope > self.TREND_SLOPE_THRESHOLD:
            return "degrading", slope
        if slope < -self.TREND_SLOPE_THRESHOLD:
            return "improving", slope
        return "stable", slope

    def get_all_stats(self) -> dict[str, TimingStats]:
        stats = {}
        for operation_id in self._measurements:
            op_stats = self.get_stats(operation_id)
            if op_stats is not None:
                stats[operation_id] = op_stats
        return stats

    def clear_measurements(self, operation_id: str) -> None:
        self._measurements.pop(operation_id, None)

    def clear_all(self) -> None:
        self._measurements.clear()
        self._running.clear()


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------


@dataclass
class MemorySample:
    timestamp: float
    context: str
    rss_bytes: int
    vms_bytes: int
    percent: float
    element_count: int | None = None


class RangeStats(BaseModel):
    min: float
    max: float
    average: float


class MemoryStats(BaseModel):
    sample_count: int
    rss: RangeStats | None = None
    element_count: RangeStats | None = None
    trend: MemoryTrend = "insufficient_data"
    slope_mb: float = 0.0
    description: str = ""


AlertListener = Callable[[AlertLevel, MemorySample], None]


class MemoryMonitor:
    """
    Sample process memory and a content-size proxy.

    Each sample is checked against the warning/critical RSS thresholds and
    listeners are told about breaches. Alerts are advisory only.

    Args:
        element_counter: Returns the total element count across all
            resources. Optional.
        warning_bytes: RSS above which a warning alert is emitted.
        critical_bytes: RSS above which a critical alert is emitted.
        max_samples: Rolling window size.
    """

    ELEMENT_COUNT_WARNING = 10000
    TREND_SLOPE_MB = 0.5

    def __init__(
        self,
        element_counter: Callable[[], int] | None = None,
        warning_bytes: int = 512 * MB,
        critical_bytes: int = 1024 * MB,
        max_samples: int = 1000,
    ):
        self.element_counter = element_counter
        self.warning_bytes = warning_bytes
        self.critical_bytes = critical_bytes
        self._samples: deque[MemorySample] = deque(maxlen=max_samples)
        self._listeners: list[AlertListener] = []
        self._task: asyncio.Task | None = None
        self._process = psutil.Process(os.getpid())

    def set_alert_thresholds(self, warning_bytes: int | None = None, critical_bytes: int | None = None) -> None:
        if warning_bytes is not None:
            self.warning_bytes = warning_bytes
        if critical_bytes is not None:
            self.critical_bytes = critical_bytes
        log.info(
            "Updated memory alert thresholds",
            extra={"warning_mb": self.warning_bytes / MB, "critical_mb": self.critical_bytes / MB},
        )

    def add_alert_listener(self, listener: AlertListener) -> None:
        self._listeners.append(listener)

    def remove_alert_listener(self, listener: AlertListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def measure(self, context: str = "manual") -> MemorySample:
        info = self._process.memory_info()
        element_count = self.element_counter() if self.element_counter is not None else None
        sample = MemorySample(
            timestamp=time.time(),
            context=context,
            rss_bytes=int(info.rss),
            vms_bytes=int(info.vms),
            percent=float(self._process.memory_percent()),
            element_count=element_count,
        )
        self.record(sample)
        return sample

    def record(self, sample: MemorySample) -> None:
        """Add a sample to the window and check it against the thresholds."""
        self._samples.append(sample)
        self._check_alerts(sample)

    def _check_alerts(self, sample: MemorySample) -> None:
        level: AlertLevel | None = None
        if sample.rss_bytes > self.critical_bytes:
            level = "critical"
            log.error(f"Critical memory usage: {sample.rss_bytes / MB:.1f}MB ({sample.percent:.1f}%)")
        elif sample.rss_bytes > self.warning_bytes:
            level = "warning"
            log.warning(f"High memory usage: {sample.rss_bytes / MB:.1f}MB ({sample.percent:.1f}%)")

        if sample.element_count is not None and sample.element_count > self.ELEMENT_COUNT_WARNING:
            log.warning(f"High element count: {sample.element_count} elements")

        if level is None:
            return
        for listener in list(self._listeners):
            try:
                listener(level, sample)
            except Exception as e:
                log.error(f"Memory alert listener failed: {e}")

    @property
    def is_monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    def start_monitoring(self, interval: float = 10.0) -> None:
        """Sample every ``interval`` seconds on the running event loop."""
        if self.is_monitoring:
            log.warning("Memory monitoring already started")
            return
        log.info(f"Starting memory monitoring every {interval}s")
        self._task = asyncio.create_task(self._monitor_loop(interval))

    async def _monitor_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.measure("continuous")
            except psutil.Error as e:
                log.warning(f"Memory sample failed: {e}")

    async def stop_monitoring(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("Stopped memory monitoring")

    def get_stats(self, recent_count: int = 100) -> MemoryStats:
        recent = list(self._samples)[-recent_count:]
        if not recent:
            return MemoryStats(sample_count=0)

        rss = [float(s.rss_bytes) for s in recent]
        counts = [float(s.element_count) for s in recent if s.element_count is not None]
        stats = MemoryStats(
            sample_count=len(recent),
            rss=RangeStats(min=min(rss), max=max(rss), average=sum(rss) / len(rss)),
            element_count=(
                RangeStats(min=min(counts), max=max(counts), average=sum(counts) / len(counts)) if counts else None
            ),
        )

        if len(rss) >= 3:
            slope_mb = linear_slope(rss) / MB
            if slope_mb > self.TREND_SLOPE_MB:
                stats.trend = "increasing"
            elif slope_mb < -self.TREND_SLOPE_MB:
                stats.trend = "decreasing"
            else:
                stats.trend = "stable"
            stats.slope_mb = slope_mb
            stats.description = f"{'+' if slope_mb > 0 else ''}{slope_mb:.1f}MB per sample"
        return stats

    def export_samples(self, count: int = 100) -> list[MemorySample]:
        return list(self._samples)[-count:]

    def clear_samples(self) -> None:
        self._samples.clear()


# ---------------------------------------------------------------------------
# Update frequency
# ---------------------------------------------------------------------------


@dataclass
class UpdateEvent:
    container_id: str
    timestamp: float
    data: dict[str, Any] = field(default_factory=dict)


class ActivityPattern(BaseModel):
    pattern: Pattern
    average_interval: float | None = None
    variability: float | None = None
    description: str = ""


class IntervalStats(BaseModel):
    min: float
    max: float
    average: float
    median: float


class FrequencyStats(BaseModel):
    total_updates: int
    time_span: float
    intervals: IntervalStats
    updates_per_minute: float
    recent_activity: ActivityPattern


class MemoryImpact(BaseModel):
    estimated_bytes_per_update: int
    total_estimated_bytes: int
    total_estimated_mb: float


class UserExperienceImpact(BaseModel):
    impact: Literal["low", "medium", "high"]
    description: str
    updates_per_minute: float
    average_update_time: float


class PerformanceImpact(BaseModel):
    update_frequency: float
    average_update_time: float
    total_update_time: float
    cpu_impact_percent: float
    memory_impact: MemoryImpact
    user_experience_impact: UserExperienceImpact


class FrequencyBenchmark(BaseModel):
    container_id: str
    timestamp: float
    update_count: int
    time_span: float
    average_frequency: float
    performance_impact: PerformanceImpact
    recommendations: list[Recommendation]


class UpdateFrequencyBenchmark:
    """
    Track how often each resource is updated and judge whether that is too often.

    Timestamps are wall-clock seconds. ``record_update`` accepts an explicit
    ``timestamp`` for replaying recorded traffic.
    """

    MAX_EVENTS = 1000
    RECENT_EVENTS = 20
    MIN_BENCHMARK_EVENTS = 10
    IRREGULAR_VARIATION = 0.5
    VERY_REGULAR_VARIATION = 0.2
    HIGH_FREQUENCY_PER_MINUTE = 20.0
    VERY_HIGH_FREQUENCY_PER_MINUTE = 30.0
    SLOW_UPDATE_SECONDS = 0.1
    VERY_SLOW_UPDATE_SECONDS = 0.2
    DEFAULT_UPDATE_SECONDS = 0.05
    DEFAULT_BYTES_PER_UPDATE = 1024
    MEMORY_IMPACT_MB = 10.0

    def __init__(self) -> None:
        self._events: dict[str, deque[UpdateEvent]] = {}
        self._benchmarks: dict[str, FrequencyBenchmark] = {}

    def record_update(self, container_id: str, timestamp: float | None = None, **data: Any) -> None:
        event = UpdateEvent(
            container_id=container_id,
            timestamp=time.time() if timestamp is None else timestamp,
            data=data,
        )
        self._events.setdefault(container_id, deque(maxlen=self.MAX_EVENTS)).append(event)

    def event_count(self, container_id: str) -> int:
        return len(self._events.get(container_id, ()))

    def get_frequency_stats(self, container_id: str) -> FrequencyStats | None:
        events = list(self._events.get(container_id, ()))
        if len(events) < 2:
            return None

        intervals = [b.timestamp - a.timestamp for a, b in zip(events, events[1:])]
        time_span = events[-1].timestamp - events[0].timestamp
        updates_per_minute = len(events) / (time_span / 60) if time_span > 0 else 0.0
        return FrequencyStats(
            total_updates=len(events),
            time_span=time_span,
            intervals=IntervalStats(
                min=min(intervals),
                max=max(intervals),
                average=sum(intervals) / len(intervals),
                median=statistics.median(intervals),
            ),
            updates_per_minute=round(updates_per_minute, 2),
            recent_activity=self.analyze_recent_activity(events[-self.RECENT_EVENTS :]),
        )

    def analyze_recent_activity(self, events: list[UpdateEvent]) -> ActivityPattern:
        if len(events) < 3:
            return ActivityPattern(pattern="insufficient_data")

        intervals = [b.timestamp - a.timestamp for a, b in zip(events, events[1:])]
        average = sum(intervals) / len(intervals)
        if average <= 0:
            return ActivityPattern(pattern="insufficient_data")

        variance = sum((i - average) ** 2 for i in intervals) / len(intervals)
        coefficient = math.sqrt(variance) / average

        pattern: Pattern = "regular"
        if coefficient > self.IRREGULAR_VARIATION:
            pattern = "irregular"
        elif coefficient < self.VERY_REGULAR_VARIATION:
            pattern = "very_regular"

        descriptions = {
            "very_regular": f"Very consistent updates every ~{average:.1f}s",
            "regular": f"Regular updates every ~{average:.1f}s",
            "irregular": f"Irregular update pattern, average ~{average:.1f}s",
        }
        return ActivityPattern(
            pattern=pattern,
            average_interval=average,
            variability=round(coefficient, 3),
            description=descriptions[pattern],
        )

    def benchmark_frequency(
        self,
        container_id: str,
        average_update_time: float | None = None,
        bytes_per_update: int | None = None,
    ) -> FrequencyBenchmark | None:
        """
        Estimate the cost of a resource's update frequency.

        Args:
            container_id: Resource to benchmark.
            average_update_time: Mean update duration in seconds. Defaults to 50ms.
            bytes_per_update: Estimated memory retained per update. Defaults to 1KB.

        Returns:
            The benchmark, or None with a warning when fewer than ten updates
            have been recorded.
        """
        stats = self.get_frequency_stats(container_id)
        if stats is None or stats.total_updates < self.MIN_BENCHMARK_EVENTS:
            log.warning(f"Insufficient data for {container_id} frequency benchmark")
            return None

        duration = self.DEFAULT_UPDATE_SECONDS if average_update_time is None else average_update_time
        per_update = self.DEFAULT_BYTES_PER_UPDATE if bytes_per_update is None else bytes_per_update
        memory_impact = self._memory_impact(stats.total_updates, per_update)

        benchmark = FrequencyBenchmark(
            container_id=container_id,
            timestamp=time.time(),
            update_count=stats.total_updates,
            time_span=stats.time_span,
            average_frequency=stats.updates_per_minute,
            performance_impact=PerformanceImpact(
                update_frequency=stats.updates_per_minute,
                average_update_time=duration,
                total_update_time=duration * stats.total_updates,
                cpu_impact_percent=min(stats.updates_per_minute / 60 * duration * 100, 100.0),
                memory_impact=memory_impact,
                user_experience_impact=self._user_experience_impact(stats.updates_per_minute, duration),
            ),
            recommendations=self._recommendations(container_id, stats, duration, memory_impact),
        )
        self._benchmarks[container_id] = benchmark
        log.info(
            f"Completed frequency benchmark for {container_id}",
            extra={"updates_per_minute": stats.updates_per_minute, "updates": stats.total_updates},
        )
        return benchmark

    def _memory_impact(self, update_count: int, bytes_per_update: int) -> MemoryImpact:
        total = update_count * bytes_per_update
        return MemoryImpact(
            estimated_bytes_per_update=bytes_per_update,
            total_estimated_bytes=total,
            total_estimated_mb=round(total / MB, 2),
        )

    def _user_experience_impact(self, updates_per_minute: float, duration: float) -> UserExperienceImpact:
        if updates_per_minute > self.VERY_HIGH_FREQUENCY_PER_MINUTE and duration > self.SLOW_UPDATE_SECONDS:
            impact, description = "high", "Frequent updates with long duration may cause lag"
        elif updates_per_minute > self.HIGH_FREQUENCY_PER_MINUTE or duration > self.VERY_SLOW_UPDATE_SECONDS:
            impact, description = "medium", "Moderate impact on user experience"
        else:
            impact, description = "low", "Updates are infrequent and fast"
        return UserExperienceImpact(
            impact=impact,
            description=description,
            updates_per_minute=updates_per_minute,
            average_update_time=duration,
        )

    def _recommendations(
        self,
        container_id: str,
        stats: FrequencyStats,
        duration: float,
        memory_impact: MemoryImpact,
    ) -> list[Recommendation]:
        recommendations = []
        if stats.updates_per_minute > self.HIGH_FREQUENCY_PER_MINUTE:
            recommendations.append(
                Recommendation(
                    type="frequency_reduction",
                    priority="high",
                    container_id=container_id,
                    message=(
                        f"Consider reducing update frequency from {stats.updates_per_minute}/min "
                        "or batching updates"
                    ),
                    suggested_updates_per_minute=max(10.0, stats.updates_per_minute / 2),
                )
            )
        if duration > self.SLOW_UPDATE_SECONDS:
            recommendations.append(
                Recommendation(
                    type="performance_optimization",
                    priority="medium",
                    container_id=container_id,
                    message=f"Update operations are slow ({duration * 1000:.0f}ms avg), consider optimizing update logic",
                    target_duration=self.DEFAULT_UPDATE_SECONDS,
                )
            )
        if stats.recent_activity.pattern == "irregular":
            recommendations.append(
                Recommendation(
                    type="pattern_optimization",
                    priority="low",
                    container_id=container_id,
                    message="Update pattern is irregular, consider consistent update intervals",
                    suggestion="Use fixed intervals or throttling",
                )
            )
        if memory_impact.total_estimated_mb > self.MEMORY_IMPACT_MB:
            recommendations.append(
                Recommendation(
                    type="memory_optimization",
                    priority="medium",
                    container_id=container_id,
                    message=f"High estimated memory usage ({memory_impact.total_estimated_mb}MB)",
                    suggestion="Clean up more aggressively or reduce update payload size",
                )
            )
        return recommendations

    def get_benchmark_results(self, container_id: str) -> FrequencyBenchmark | None:
        return self._benchmarks.get(container_id)

    def get_all_frequency_stats(self) -> dict[str, FrequencyStats]:
        stats = {}
        for container_id in self._events:
            container_stats = self.get_frequency_stats(container_id)
            if container_stats is not None:
                stats[container_id] = container_stats
        return stats

    def get_all_benchmark_results(self) -> dict[str, FrequencyBenchmark]:
        return dict(self._benchmarks)

    def clear_container(self, container_id: str) -> None:
        self._events.pop(container_id, None)
        self._benchmarks.pop(container_id, None)

    def clear_all(self) -> None:
        self._events.clear()
        self._benchmarks.clear()


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------


class PerformanceReport(BaseModel):
    timestamp: float
    is_monitoring: bool
    monitoring_duration: float
    timing: dict[str, TimingStats] = Field(default_factory=dict)
    memory: MemoryStats
    frequency: dict[str, FrequencyStats] = Field(default_factory=dict)
    benchmarks: dict[str, FrequencyBenchmark] = Field(default_factory=dict)


class PerformanceMonitor:
    """Owns a timer, a memory monitor and a frequency benchmark and reports on all three."""

    SLOW_OPERATION_SECONDS = 0.2

    def __init__(
        self,
        timer: PerformanceTimer | None = None,
        memory_monitor: MemoryMonitor | None = None,
        frequency_benchmark: UpdateFrequencyBenchmark | None = None,
    ):
        self.timer = timer or PerformanceTimer()
        self.memory_monitor = memory_monitor or MemoryMonitor()
        self.frequency_benchmark = frequency_benchmark or UpdateFrequencyBenchmark()
        self._monitoring_started_at: float | None = None

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring_started_at is not None

    def start_monitoring(self, memory_interval: float = 10.0) -> None:
        if self.is_monitoring:
            log.warning("Performance monitoring already running")
            return
        self._monitoring_started_at = time.time()
        self.memory_monitor.start_monitoring(memory_interval)

    async def stop_monitoring(self) -> None:
        if not self.is_monitoring:
            return
        started = self._monitoring_started_at or time.time()
        self._monitoring_started_at = None
        await self.memory_monitor.stop_monitoring()
        log.info(f"Performance monitoring stopped after {time.time() - started:.1f}s")

    def get_performance_report(self) -> PerformanceReport:
        started = self._monitoring_started_at
        return PerformanceReport(
            timestamp=time.time(),
            is_monitoring=started is not None,
            monitoring_duration=time.time() - started if started is not None else 0.0,
            timing=self.timer.get_all_stats(),
            memory=self.memory_monitor.get_stats(),
            frequency=self.frequency_benchmark.get_all_frequency_stats(),
            benchmarks=self.frequency_benchmark.get_all_benchmark_results(),
        )

    def generate_optimization_recommendations(self) -> list[Recommendation]:
        """All current recommendations, highest priority first."""
        report = self.get_performance_report()
        recommendations: list[Recommendation] = []

        for operation_id, stats in report.timing.items():
            if stats.average > self.SLOW_OPERATION_SECONDS:
                recommendations.append(
                    Recommendation(
                        type="timing_optimization",
                        priority="high",
                        operation=operation_id,
                        message=f"Operation {operation_id} is slow ({stats.average * 1000:.1f}ms avg)",
                        suggestion="Optimize the update logic or reduce payload size",
                    )
                )
            if stats.trend == "degrading":
                recommendations.append(
                    Recommendation(
                        type="performance_degradation",
                        priority="medium",
                        operation=operation_id,
                        message=f"Performance degrading for {operation_id} (slope: {stats.slope:.4f}s)",
                        suggestion="Look for leaks or growing content in this operation",
                    )
                )

        if report.memory.trend == "increasing":
            recommendations.append(
                Recommendation(
                    type="memory_leak",
                    priority="high",
                    message=f"Memory usage trending upward ({report.memory.description})",
                    suggestion="Check update operations for retained content",
                )
            )

        for benchmark in report.benchmarks.values():
            recommendations.extend(benchmark.recommendations)

        # Stable sort keeps discovery order within a priority
        return sorted(recommendations, key=lambda r: _PRIORITY_ORDER[r.priority], reverse=True)

    def clear_all_data(self) -> None:
        self.timer.clear_all()
        self.memory_monitor.clear_samples()
        self.frequency_benchmark.clear_all()
