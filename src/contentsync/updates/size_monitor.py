import asyncio
from typing import Callable

from contentsync.config.logging_config import get_logger
from contentsync.updates.config import EngineConfig
from contentsync.updates.errors import ResourceNotFoundError
from contentsync.updates.host import ContentHost
from contentsync.updates.types import SizeBand, SizeRecord, SizeStats

log = get_logger(__name__)

EmergencyHandler = Callable[[str, SizeRecord], None]


class SizeMonitor:
    """
    Count the elements of each resource and classify them into size bands.

    ``measure`` traverses the resource on every call; nothing is cached, so
    a record only describes the instant it was taken.

    The background sweep (``start_monitoring``) has exactly one side effect:
    resources found in the emergency band are passed to ``on_emergency``.
    """

    def __init__(
        self,
        host: ContentHost,
        config: EngineConfig,
        on_emergency: EmergencyHandler | None = None,
    ):
        self.host = host
        self.config = config
        self.on_emergency = on_emergency
        self._limits: dict[str, int] = dict(config.container_limits)
        self._task: asyncio.Task | None = None

    def set_limit(self, resource_id: str, limit: int) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        self._limits[resource_id] = limit
        log.debug(f"Set limit for {resource_id}: {limit} elements")

    def get_limit(self, resource_id: str) -> int:
        return self._limits.get(resource_id, self.config.default_size_limit)

    def limits(self) -> dict[str, int]:
        return dict(self._limits)

    def classify(self, element_count: int, limit: int) -> SizeBand:
        ratio = element_count / limit
        if ratio >= self.config.emergency_ratio:
            return SizeBand.EMERGENCY
        if ratio >= self.config.critical_ratio:
            return SizeBand.CRITICAL
        if ratio >= self.config.warning_ratio:
            return SizeBand.WARNING
        return SizeBand.NORMAL

    def measure(self, resource_id: str, quiet: bool = False) -> SizeRecord:
        """
        Count a resource's elements and classify the result.

        Raises:
            ResourceNotFoundError: If the host does not know the resource.
        """
        count = self.host.element_count(resource_id)
        limit = self.get_limit(resource_id)
        band = self.classify(count, limit)
        record = SizeRecord(
            resource_id=resource_id,
            element_count=count,
            limit=limit,
            percentage_of_limit=round(count / limit * 100, 1),
            band=band,
        )
        if not quiet:
            self._log_record(record)
        return record

    def _log_record(self, record: SizeRecord) -> None:
        summary = (
            f"Container {record.resource_id} has {record.element_count} elements "
            f"({record.percentage_of_limit:.0f}% of limit {record.limit})"
        )
        if record.band is SizeBand.EMERGENCY:
            log.error(f"EMERGENCY - {summary}, emergency cleanup required")
        elif record.band is SizeBand.CRITICAL:
            log.warning(f"CRITICAL - {summary}, cleanup recommended")
        elif record.band is SizeBand.WARNING:
            log.warning(f"WARNING - {summary}")
        else:
            log.debug(summary)

    def monitored_ids(self) -> list[str]:
        """Every resource the host knows, configured limits first."""
        known = self.host.resource_ids()
        ordered = [rid for rid in self._limits if self.host.exists(rid)]
        ordered.extend(rid for rid in known if rid not in self._limits)
        return ordered

    def sweep_all(self, escalate: bool = True) -> SizeStats:
        """
        Measure every resource and roll the results up.

        Records report the band observed during the sweep. With ``escalate``,
        each emergency-band resource is then handed to ``on_emergency``.
        """
        stats = SizeStats()
        for resource_id in self.monitored_ids():
            try:
                record = self.measure(resource_id)
            except ResourceNotFoundError:
                # Removed by the host while sweeping
                continue
            stats.containers.append(record)
            stats.total_containers += 1
            stats.total_nodes += record.element_count
            setattr(stats, record.band.value, getattr(stats, record.band.value) + 1)

            if escalate and record.band is SizeBand.EMERGENCY and self.on_emergency is not None:
                log.warning(f"Triggering emergency cleanup for {resource_id}")
                self.on_emergency(resource_id, record)
        return stats

    @property
    def is_monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    def start_monitoring(self, interval: float | None = None) -> None:
        """Sweep every ``interval`` seconds on the running event loop."""
        if self.is_monitoring:
            log.warning("Size monitoring already started")
            return
        period = self.config.size_monitor_interval if interval is None else interval
        if period <= 0:
            raise ValueError("interval must be positive")
        log.info(f"Starting size monitoring every {period}s")
        self._task = asyncio.create_task(self._monitor_loop(period))

    def stop_monitoring(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        log.info("Stopped size monitoring")

    async def _monitor_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                stats = self.sweep_all(escalate=True)
            except Exception as e:
                log.error(f"Size sweep failed: {e}")
                continue
            attention = [r for r in stats.containers if r.band in (SizeBand.CRITICAL, SizeBand.EMERGENCY)]
            if attention:
                log.warning(
                    f"{len(attention)} containers need attention",
                    extra={"containers": {r.resource_id: r.element_count for r in attention}},
                )
