"""
Coordinated update engine.

``ContentUpdateManager`` decides whether, when and how safely an update
function may run against a named resource, and what happens when the run
fails or leaves the resource in a bad state. It never decides what content
looks like; that is the update function's job.

One update goes through these stages:

1. Global lock: non-critical updates are rejected while it is active.
2. Throttle: bursts are coalesced per resource (skipped for critical
   priority or ``bypass_throttle``).
3. Resource lock: a caller that cannot acquire it waits in the resource's
   queue until ``release`` hands the lock over.
4. Snapshot (``enable_rollback``) and viewport save (``preserve_scroll``).
5. The update function itself, with optional timeout and retries.
6. Size check and cleanup (``cleanup_required``), then corruption
   inspection. Failures and corruption go to rollback or recreation.
7. Viewport restore, lock release, timing and history.

Update functions are never interrupted by the engine except through the
``timeout`` option, and then only at their own await points. Emergency stop,
throttle cancellation and coordination timeouts only prevent new starts.

Example:
    host = InMemoryContentHost()
    manager = ContentUpdateManager(host)

    def render(rows):
        host.replace("queries", [f"<div class='query-item'>{r}</div>" for r in rows])

    await manager.update_container("queries", render, rows, priority="high")
"""

import asyncio
import inspect
import time
import uuid
from collections import deque
from typing import Any, Awaitable, Callable, Iterable, Mapping

import psutil

from contentsync.concurrency.async_utils import gather_with_concurrency, run_sequentially
from contentsync.concurrency.debounce_throttle import UpdateThrottler
from contentsync.concurrency.priority_lock import LockRecord, QueueEntry, ResourceLockTable, UpdatePriority
from contentsync.concurrency.timeout import wait_or_detach, with_timeout
from contentsync.config.logging_config import get_logger
from contentsync.observability.metrics import MetricsRegistry, UpdateMetrics
from contentsync.observability.performance import MemoryMonitor, MemorySample, PerformanceMonitor
from contentsync.updates.config import EngineConfig
from contentsync.updates.corruption import CorruptionDetector
from contentsync.updates.error_log import ErrorLog, ErrorLogEntry, ErrorSink
from contentsync.updates.errors import (
    CoordinationTimeoutError,
    CorruptionDetectedError,
    ErrorType,
    GlobalLockError,
    UpdateTimeoutError,
)
from contentsync.updates.host import ContentHost, InMemoryContentHost
from contentsync.updates.recovery import RecoveryAction, RecoveryManager, Snapshot, SnapshotStore
from contentsync.updates.size_monitor import SizeMonitor
from contentsync.updates.types import (
    AllUpdateStatus,
    ContainerHealth,
    CoordinatedUpdate,
    CorruptionReport,
    ErrorRecoveryStatus,
    HealthReport,
    RecentError,
    SizeBand,
    SizeRecord,
    SizeStats,
    ThrottleStatus,
    ThrottlingStats,
    UpdateHistoryEntry,
    UpdateOptions,
    UpdateStatus,
)
from contentsync.updates.viewport import ViewportPreserver

log = get_logger(__name__)

UpdateFn = Callable[[Any], Any]

_DATA_PREVIEW_CHARS = 500
_SNAPSHOT_WARNING_COUNT = 10
_ERROR_LOG_WARNING_RATIO = 0.8


def _preview(data: Any) -> str:
    text = repr(data)
    return text if len(text) <= _DATA_PREVIEW_CHARS else text[:_DATA_PREVIEW_CHARS] + "..."


async def _call_update_fn(update_fn: UpdateFn, data: Any) -> Any:
    result = update_fn(data)
    if inspect.isawaitable(result):
        result = await result
    return result


class ContentUpdateManager:
    """
    Serialize, throttle and safeguard updates to named resources.

    Args:
        host: Where resource content lives. Defaults to an in-memory host.
        config: Engine tunables. The instance is shared with the engine's
            components, so runtime setters are visible everywhere.
        error_sink: Optional durable mirror for error log entries.
        metrics_registry: Registry for the engine's metrics. A private one is
            created when omitted.
        performance_monitor: Advisory timing/memory/frequency collector.
    """

    def __init__(
        self,
        host: ContentHost | None = None,
        config: EngineConfig | None = None,
        error_sink: ErrorSink | None = None,
        metrics_registry: MetricsRegistry | None = None,
        performance_monitor: PerformanceMonitor | None = None,
    ):
        self.host = host if host is not None else InMemoryContentHost()
        self.config = config if config is not None else EngineConfig()
        self.error_log = ErrorLog(self.config.max_error_log_size, error_sink)
        self.metrics = UpdateMetrics(metrics_registry or MetricsRegistry())
        self.performance = performance_monitor or PerformanceMonitor(
            memory_monitor=MemoryMonitor(element_counter=self._total_elements)
        )
        self.performance.memory_monitor.add_alert_listener(self._on_memory_alert)

        self.size_monitor = SizeMonitor(self.host, self.config, on_emergency=self._handle_emergency)
        self.viewport = ViewportPreserver(self.host, self.config)
        self.snapshots = SnapshotStore(self.host, self.error_log)
        self.recovery = RecoveryManager(
            self.host, self.config, self.snapshots, self.viewport, self.error_log, self.metrics
        )
        self.corruption = CorruptionDetector(self.host, self.config, self.size_monitor, self.error_log)

        self._throttler = UpdateThrottler()
        self._locks = ResourceLockTable(stale_after=self.config.stale_lock_seconds)
        self._throttle_intervals: dict[str, float] = dict(self.config.throttle_intervals)
        self._active: dict[str, set[str]] = {}
        self._history: dict[str, deque[UpdateHistoryEntry]] = {}
        self._dispatch_tasks: set[asyncio.Task] = set()
        self._global_lock = False
        self._global_lock_reason: str | None = None
        self._resume_monitoring = False

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def update_container(
        self,
        resource_id: str,
        update_fn: UpdateFn,
        data: Any = None,
        options: UpdateOptions | Mapping[str, Any] | None = None,
        **overrides: Any,
    ) -> Any:
        """
        Run ``update_fn(data)`` against a resource under the engine's safeguards.

        Args:
            resource_id: Resource to update. Created on first reference.
            update_fn: Plain or async callable receiving ``data``.
            data: Payload passed to ``update_fn``.
            options: ``UpdateOptions`` or a mapping of its fields.
            **overrides: Individual option fields, applied over ``options``.

        Returns:
            The result of ``update_fn``, or None when a recovery path
            (rollback, recreation) replaced the update or ``suppress_errors``
            swallowed an unrecovered failure.

        Raises:
            GlobalLockError: The global lock is active and the priority is not critical.
            CorruptionDetectedError: The update corrupted the resource and recovery failed.
            asyncio.CancelledError: The request was dropped before it ran
                (throttle cancellation, queue cleared, emergency stop).
            Exception: Whatever ``update_fn`` raised, when it was not recovered.
        """
        opts = self._resolve_options(options, overrides)
        self._check_global_lock(resource_id, opts.priority)
        self.host.ensure(resource_id)

        if opts.bypass_throttle or opts.priority is UpdatePriority.CRITICAL:
            return await self._execute(resource_id, update_fn, data, opts)

        interval = self.get_container_throttle_delay(resource_id)
        return await self._throttler.schedule(
            resource_id,
            lambda: self._execute(resource_id, update_fn, data, opts),
            interval,
        )

    def _resolve_options(
        self,
        options: UpdateOptions | Mapping[str, Any] | None,
        overrides: Mapping[str, Any],
    ) -> UpdateOptions:
        if options is None:
            base: dict[str, Any] = {}
        elif isinstance(options, UpdateOptions):
            if not overrides:
                return options
            base = options.model_dump(exclude_unset=True)
        else:
            base = dict(options)
        return UpdateOptions(**{**base, **overrides})

    def _check_global_lock(self, resource_id: str, priority: UpdatePriority) -> None:
        if not self._global_lock or priority is UpdatePriority.CRITICAL:
            return
        self.error_log.record(
            ErrorType.GLOBAL_LOCK_ACTIVE,
            f"Global update lock active - {resource_id} update rejected",
            resource_id=resource_id,
            priority=priority.value,
            lock_reason=self._global_lock_reason,
        )
        raise GlobalLockError(f"Global update lock active - {resource_id} update rejected", resource_id)

    async def _execute(self, resource_id: str, update_fn: UpdateFn, data: Any, opts: UpdateOptions) -> Any:
        self._check_global_lock(resource_id, opts.priority)

        record = self._locks.acquire(resource_id, opts.priority)
        if record is None:
            future: asyncio.Future = asyncio.get_running_loop().create_future()
            self._locks.enqueue(resource_id, QueueEntry(update_fn, data, opts, opts.priority, future))
            return await future
        return await self._run_locked(resource_id, record, update_fn, data, opts)

    async def _run_locked(
        self,
        resource_id: str,
        record: LockRecord,
        update_fn: UpdateFn,
        data: Any,
        opts: UpdateOptions,
    ) -> Any:
        run_id = record.lock_id
        try:
            # A queued request may be dispatched after the global lock went up
            self._check_global_lock(resource_id, opts.priority)
            self._active.setdefault(resource_id, set()).add(run_id)
            self.metrics.active_updates.set(self._active_count())
            return await self._perform(resource_id, run_id, update_fn, data, opts)
        finally:
            running = self._active.get(resource_id)
            if running is not None:
                running.discard(run_id)
                if not running:
                    del self._active[resource_id]
            self.metrics.active_updates.set(self._active_count())
            self._release(resource_id, record.lock_id)

    def _release(self, resource_id: str, lock_id: str) -> None:
        handed = self._locks.release(resource_id, lock_id)
        if handed is not None:
            self._dispatch(resource_id, *handed)

    def _dispatch(self, resource_id: str, entry: QueueEntry, record: LockRecord) -> None:
        log.debug(f"Processing queued {entry.priority.value} update for {resource_id}")
        task = asyncio.create_task(self._run_queued(resource_id, entry, record))
        self._dispatch_tasks.add(task)
        task.add_done_callback(self._dispatch_tasks.discard)

    async def _run_queued(self, resource_id: str, entry: QueueEntry, record: LockRecord) -> None:
        try:
            result = await self._run_locked(resource_id, record, entry.update_fn, entry.data, entry.options)
        except asyncio.CancelledError:
            if not entry.future.done():
                entry.future.cancel()
            raise
        except Exception as e:
            if entry.future.done():
                self.error_log.record(
                    ErrorType.QUEUED_UPDATE_FAILED,
                    f"Queued update for {resource_id} failed after its caller left: {e}",
                    resource_id=resource_id,
                    error=str(e),
                )
            else:
                entry.future.set_exception(e)
        else:
            if not entry.future.done():
                entry.future.set_result(result)

    async def _perform(
        self,
        resource_id: str,
        run_id: str,
        update_fn: UpdateFn,
        data: Any,
        opts: UpdateOptions,
    ) -> Any:
        operation_id = f"{resource_id}_update"
        self.performance.timer.start(
            operation_id,
            {"resource_id": resource_id, "priority": opts.priority.value},
            run_id=run_id,
        )
        memory_before = self._sample_memory(f"before_{operation_id}")
        started = time.perf_counter()
        success = False
        recovery: str | None = None
        error: BaseException | None = None

        try:
            if opts.enable_rollback:
                self.snapshots.take(resource_id)
            if opts.preserve_scroll:
                if not self.viewport.save(resource_id):
                    log.debug(f"Skipping viewport preservation for {resource_id}")

            try:
                result = await self._invoke(resource_id, update_fn, data, opts)
            except Exception as e:
                error = e
                self.metrics.updates_failed.increment()
                self.error_log.record(
                    ErrorType.UPDATE_FAILED,
                    f"Update failed for {resource_id}: {e}",
                    resource_id=resource_id,
                    error=str(e),
                    error_class=type(e).__name__,
                    data=_preview(data),
                )
                self.viewport.discard(resource_id)
                recovery = self._recover_from_failure(resource_id, e, opts)
                if recovery is None:
                    if opts.suppress_errors:
                        return None
                    raise
                return None

            if opts.cleanup_required and self._post_update_cleanup(resource_id):
                recovery = "cleanup"

            report = self.corruption.inspect(resource_id)
            if report.corrupted:
                self.viewport.discard(resource_id)
                action = self._recover_from_corruption(resource_id, report, opts)
                if action is None:
                    error = CorruptionDetectedError(
                        f"Update corrupted {resource_id} and recovery failed: {', '.join(report.reasons)}",
                        resource_id,
                        report.reasons,
                    )
                    if opts.suppress_errors:
                        return None
                    raise error
                recovery = action
                return None

            if opts.preserve_scroll:
                self.viewport.restore(resource_id)

            success = True
            self.recovery.clear_attempts(resource_id)
            return result
        except BaseException as e:
            error = error or e
            raise
        finally:
            duration = time.perf_counter() - started
            self._record_run(resource_id, run_id, operation_id, duration, success, recovery, error, memory_before)

    async def _invoke(self, resource_id: str, update_fn: UpdateFn, data: Any, opts: UpdateOptions) -> Any:
        attempt = 0
        while True:
            try:
                return await with_timeout(
                    lambda: _call_update_fn(update_fn, data),
                    opts.timeout,
                    UpdateTimeoutError,
                    f"Update of {resource_id} timed out after {opts.timeout}s",
                )
            except Exception as e:
                if attempt >= opts.retry_attempts:
                    raise
                attempt += 1
                log.warning(
                    f"Update of {resource_id} failed (attempt {attempt} of {opts.retry_attempts + 1}), retrying: {e}"
                )
                if opts.retry_delay > 0:
                    await asyncio.sleep(opts.retry_delay)

    def _recover_from_failure(
        self, resource_id: str, error: Exception, opts: UpdateOptions
    ) -> RecoveryAction | None:
        if not opts.enable_rollback:
            return None
        log.warning(f"Attempting rollback for {resource_id} due to update failure")
        return self.recovery.attempt_rollback(resource_id, f"Update failed: {error}")

    def _recover_from_corruption(
        self, resource_id: str, report: CorruptionReport, opts: UpdateOptions
    ) -> RecoveryAction | None:
        reason = f"Corruption detected: {', '.join(report.reasons)}"
        if opts.enable_rollback:
            action = self.recovery.attempt_rollback(resource_id, reason)
            if action is not None:
                return action
        return "recreation" if self.recovery.recreate(resource_id, reason) else None

    def _post_update_cleanup(self, resource_id: str) -> bool:
        """Measure after an update and clean up oversized content. Returns True if content was cut."""
        if not self.host.exists(resource_id):
            return False
        record = self.size_monitor.measure(resource_id)
        if record.band is SizeBand.EMERGENCY:
            self.recovery.emergency_cleanup(resource_id, record)
            return True
        if record.band is SizeBand.CRITICAL:
            self.recovery.targeted_cleanup(resource_id, record)
            after = self.size_monitor.measure(resource_id)
            if after.band is SizeBand.EMERGENCY:
                self.recovery.emergency_cleanup(resource_id, after)
            return True
        return False

    def _record_run(
        self,
        resource_id: str,
        run_id: str,
        operation_id: str,
        duration: float,
        success: bool,
        recovery: str | None,
        error: BaseException | None,
        memory_before: MemorySample | None,
    ) -> None:
        self.performance.timer.end(operation_id, run_id=run_id, success=success, recovery=recovery)
        memory_after = self._sample_memory(f"after_{operation_id}")
        memory: dict[str, int] = {}
        if memory_before is not None and memory_after is not None:
            memory = {
                "memory_before": memory_before.rss_bytes,
                "memory_after": memory_after.rss_bytes,
                "memory_delta": memory_after.rss_bytes - memory_before.rss_bytes,
            }
        self.performance.frequency_benchmark.record_update(
            resource_id, duration=duration, success=success, **memory
        )
        self.metrics.updates_total.increment()
        self.metrics.update_duration.observe(duration)

        element_count = 0
        band: SizeBand | None = None
        if self.host.exists(resource_id):
            element_count = self.host.element_count(resource_id)
            band = self.size_monitor.classify(element_count, self.size_monitor.get_limit(resource_id))
        history = self._history.setdefault(resource_id, deque(maxlen=self.config.update_history_size))
        history.append(
            UpdateHistoryEntry(
                timestamp=time.time(),
                success=success,
                duration=duration,
                element_count=element_count,
                band=band,
                recovery=recovery,
                error=None if error is None else (str(error) or type(error).__name__),
            )
        )

        if band in (SizeBand.WARNING, SizeBand.CRITICAL) or duration > PerformanceMonitor.SLOW_OPERATION_SECONDS:
            log.warning(
                f"Performance concern for {resource_id}",
                extra={"duration": duration, "element_count": element_count, "band": band},
            )
        else:
            log.debug(f"Updated {resource_id} in {duration * 1000:.1f}ms")

    # ------------------------------------------------------------------
    # Coordination
    # ------------------------------------------------------------------

    async def coordinate_updates(
        self,
        updates: Iterable[CoordinatedUpdate | Mapping[str, Any]],
        sequential: bool = False,
        max_concurrent: int | None = None,
        priority: UpdatePriority | str = UpdatePriority.NORMAL,
        timeout: float | None = None,
    ) -> None:
        """
        Run a batch of updates in order or with bounded parallelism.

        Entries skip throttling and take the batch ``priority`` unless their
        own options set one. When ``timeout`` expires the call raises
        ``CoordinationTimeoutError``: updates already running finish in the
        background and no further entries are started.
        """
        entries = [u if isinstance(u, CoordinatedUpdate) else CoordinatedUpdate.from_mapping(u) for u in updates]
        batch_priority = UpdatePriority(priority)
        limit = self.config.coordination_max_concurrent if max_concurrent is None else max_concurrent
        deadline = self.config.coordination_timeout if timeout is None else timeout
        coordination_id = uuid.uuid4().hex[:9]
        stopped = asyncio.Event()

        log.info(
            f"Coordinating {len(entries)} updates (sequential: {sequential})",
            extra={"coordination_id": coordination_id},
        )

        factories = [self._coordinated_call(entry, batch_priority) for entry in entries]

        def should_start() -> bool:
            return not stopped.is_set()

        if sequential:
            batch = asyncio.create_task(run_sequentially(factories, should_start))
        else:
            batch = asyncio.create_task(gather_with_concurrency(factories, limit, should_start))

        started = time.monotonic()
        try:
            await wait_or_detach(
                batch,
                deadline,
                CoordinationTimeoutError,
                f"Coordination {coordination_id} timed out after {deadline}s",
            )
        except CoordinationTimeoutError:
            stopped.set()
            self.error_log.record(
                ErrorType.COORDINATION_TIMEOUT,
                f"Coordination {coordination_id} timed out after {deadline}s",
                coordination_id=coordination_id,
                entries=len(entries),
            )
            raise
        except Exception as e:
            self.error_log.record(
                ErrorType.COORDINATION_FAILED,
                f"Coordination {coordination_id} failed: {e}",
                coordination_id=coordination_id,
                error=str(e),
            )
            raise

        log.info(f"Coordination {coordination_id} completed in {time.monotonic() - started:.3f}s")

    def _coordinated_call(
        self, entry: CoordinatedUpdate, batch_priority: UpdatePriority
    ) -> Callable[[], Awaitable[Any]]:
        opts = entry.options if isinstance(entry.options, UpdateOptions) else UpdateOptions(**(entry.options or {}))
        changes: dict[str, Any] = {"bypass_throttle": True}
        if "priority" not in opts.model_fields_set:
            changes["priority"] = batch_priority
        opts = opts.model_copy(update=changes)

        def call() -> Awaitable[Any]:
            return self.update_container(entry.resource_id, entry.update_fn, entry.data, opts)

        return call

    # ------------------------------------------------------------------
    # Global control
    # ------------------------------------------------------------------

    @property
    def global_lock_active(self) -> bool:
        return self._global_lock

    def set_global_update_lock(self, active: bool, reason: str = "Emergency lock") -> None:
        self._global_lock = active
        self._global_lock_reason = reason if active else None
        if active:
            log.warning(f"Global update lock ENABLED - {reason}")
        else:
            log.info("Global update lock DISABLED")

    def emergency_stop(self) -> None:
        """
        Halt all new work and drop every piece of transient state.

        Pending throttled and queued requests are cancelled (their callers
        see ``asyncio.CancelledError``). Update functions already running are
        not interrupted; they finish, but their lock release is ignored.
        """
        log.warning("EMERGENCY STOP - halting all update operations")
        cancelled = self._throttler.cancel_all()
        dropped = self._locks.clear_queues()
        self._locks.clear_locks()
        self._active.clear()
        self.metrics.active_updates.set(0)
        self.viewport.clear_all()
        snapshots = self.snapshots.clear_all()

        self._resume_monitoring = self._resume_monitoring or self.size_monitor.is_monitoring
        self.size_monitor.stop_monitoring()

        self.set_global_update_lock(True, "Emergency stop activated")
        log.warning(
            "Emergency stop completed",
            extra={"throttled_cancelled": cancelled, "queued_dropped": dropped, "snapshots_cleared": snapshots},
        )

    def resume_operations(self) -> None:
        log.info("Resuming operations after emergency stop")
        self.set_global_update_lock(False)
        if self._resume_monitoring:
            self._resume_monitoring = False
            self.size_monitor.start_monitoring()

    def force_release_all_locks(self) -> None:
        """Drop every lock and the global lock, then dispatch anything still queued."""
        log.warning("Force releasing all update locks")
        queued = [rid for rid in self._locks.resource_ids() if self._locks.queue_length(rid)]
        self._locks.clear_locks()
        self._active.clear()
        self.metrics.active_updates.set(0)
        self.set_global_update_lock(False)
        for resource_id in queued:
            handed = self._locks.dispatch_next(resource_id)
            if handed is not None:
                self._dispatch(resource_id, *handed)

    def clear_queue(self) -> int:
        dropped = self._locks.clear_queues()
        log.debug(f"Cleared {dropped} queued updates")
        return dropped

    async def flush_throttled(self) -> None:
        """Run every pending throttled update now."""
        await self._throttler.flush_all()

    async def shutdown(self) -> None:
        """Stop background work and wait for dispatched queue runs to settle."""
        self.size_monitor.stop_monitoring()
        await self.performance.stop_monitoring()
        self._throttler.cancel_all()
        self._locks.clear_queues()
        if self._dispatch_tasks:
            await asyncio.gather(*self._dispatch_tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_container_throttle_delay(self, resource_id: str, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("throttle delay must be non-negative")
        self._throttle_intervals[resource_id] = seconds
        log.debug(f"Set throttle delay for {resource_id}: {seconds}s")

    def get_container_throttle_delay(self, resource_id: str) -> float:
        return self._throttle_intervals.get(resource_id, self.config.default_throttle_interval)

    def configure_throttling(self, intervals: Mapping[str, float]) -> None:
        for resource_id, seconds in intervals.items():
            self.set_container_throttle_delay(resource_id, seconds)
        log.info(f"Configured throttling for containers: {sorted(intervals)}")

    def set_container_limit(self, resource_id: str, max_elements: int) -> None:
        self.size_monitor.set_limit(resource_id, max_elements)

    def get_container_limit(self, resource_id: str) -> int:
        return self.size_monitor.get_limit(resource_id)

    def set_rollback_enabled(self, enabled: bool) -> None:
        self.config.rollback_enabled = enabled
        log.info(f"Rollback {'enabled' if enabled else 'disabled'}")

    def set_corruption_detection_enabled(self, enabled: bool) -> None:
        self.config.corruption_detection_enabled = enabled
        log.info(f"Corruption detection {'enabled' if enabled else 'disabled'}")

    def set_max_rollback_attempts(self, max_attempts: int) -> None:
        self.config.max_rollback_attempts = max(1, max_attempts)
        log.info(f"Max rollback attempts set to {self.config.max_rollback_attempts}")

    # ------------------------------------------------------------------
    # Size monitoring
    # ------------------------------------------------------------------

    def _handle_emergency(self, resource_id: str, record: SizeRecord) -> None:
        if self._locks.is_locked(resource_id) or resource_id in self._active:
            # The running update performs its own post-update check
            log.debug(f"Deferring emergency cleanup of {resource_id} to its running update")
            return
        self.recovery.emergency_cleanup(resource_id, record)

    def get_dom_stats(self) -> SizeStats:
        """Sweep every resource; emergency-band resources are cleaned up after being reported."""
        return self.size_monitor.sweep_all(escalate=True)

    def check_all_containers(self) -> list[SizeRecord]:
        return self.size_monitor.sweep_all(escalate=True).containers

    def start_size_monitoring(self, interval: float | None = None) -> None:
        self.size_monitor.stop_monitoring()
        self.size_monitor.start_monitoring(interval)

    def stop_size_monitoring(self) -> None:
        self.size_monitor.stop_monitoring()

    def _sample_memory(self, context: str) -> MemorySample | None:
        try:
            return self.performance.memory_monitor.measure(context)
        except psutil.Error as e:
            log.warning(f"Memory sample failed: {e}")
            return None

    def start_performance_monitoring(self, memory_interval: float = 10.0) -> None:
        """Sample process memory every ``memory_interval`` seconds in addition to the per-update samples."""
        self.performance.start_monitoring(memory_interval)

    async def stop_performance_monitoring(self) -> None:
        await self.performance.stop_monitoring()

    def _total_elements(self) -> int:
        return sum(self.host.element_count(rid) for rid in self.host.resource_ids())

    def _on_memory_alert(self, level: str, sample: MemorySample) -> None:
        log.warning(
            f"Memory alert ({level}) during content updates",
            extra={"rss_mb": sample.rss_bytes / (1024 * 1024), "element_count": sample.element_count},
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _active_count(self) -> int:
        return sum(len(runs) for runs in self._active.values())

    def get_update_status(self, resource_id: str) -> UpdateStatus:
        lock = self._locks.holder(resource_id)
        interval = self.get_container_throttle_delay(resource_id)
        return UpdateStatus(
            resource_id=resource_id,
            in_progress=resource_id in self._active,
            queue_length=self._locks.queue_length(resource_id),
            queued_priorities=[entry.priority for entry in self._locks.queued(resource_id)],
            has_lock=lock is not None,
            lock_priority=lock.priority if lock is not None else None,
            lock_age=lock.age if lock is not None else 0.0,
            throttle_interval=interval,
            throttle=ThrottleStatus(**self._throttler.status(resource_id, interval)),
            global_lock_active=self._global_lock,
        )

    def get_all_update_status(self) -> AllUpdateStatus:
        resource_ids = set(self._active) | self._locks.resource_ids() | set(self._throttle_intervals)
        return AllUpdateStatus(
            global_lock_active=self._global_lock,
            global_lock_reason=self._global_lock_reason,
            total_active_updates=self._active_count(),
            total_queued_updates=self._locks.total_queued(),
            total_locks=self._locks.total_locks(),
            containers={rid: self.get_update_status(rid) for rid in sorted(resource_ids)},
        )

    def get_throttling_stats(self) -> ThrottlingStats:
        stats = ThrottlingStats(
            default_interval=self.config.default_throttle_interval,
            container_intervals=dict(self._throttle_intervals),
        )
        for resource_id in set(self._throttle_intervals) | set(self._throttler.keys()):
            if self._throttler.has_pending(resource_id):
                stats.pending_throttles += 1
            if self._throttler.has_timer(resource_id):
                stats.active_throttles += 1
        return stats

    # ------------------------------------------------------------------
    # Error log and recovery
    # ------------------------------------------------------------------

    def get_error_log(self, type_filter: ErrorType | str | None = None) -> list[ErrorLogEntry]:
        return self.error_log.entries(type_filter)

    def clear_error_log(self) -> None:
        self.error_log.clear()

    def get_error_recovery_status(self) -> ErrorRecoveryStatus:
        return ErrorRecoveryStatus(
            rollback_enabled=self.config.rollback_enabled,
            corruption_detection_enabled=self.config.corruption_detection_enabled,
            max_rollback_attempts=self.config.max_rollback_attempts,
            error_log_size=len(self.error_log),
            max_error_log_size=self.error_log.max_size,
            snapshot_count=len(self.snapshots),
            rollback_attempt_counts=self.recovery.attempt_counts(),
            update_history_count=len(self._history),
            recent_errors=[
                RecentError(
                    type=entry.type.value,
                    message=entry.message,
                    timestamp=entry.timestamp,
                    resource_id=entry.resource_id,
                )
                for entry in self.error_log.recent(5)
            ],
        )

    def create_snapshot(self, resource_id: str) -> Snapshot | None:
        return self.snapshots.take(resource_id)

    def force_rollback(self, resource_id: str, reason: str = "Manual rollback requested") -> bool:
        log.warning(f"Force rollback requested for {resource_id}")
        return self.recovery.rollback(resource_id, reason)

    def force_recreation(self, resource_id: str, reason: str = "Manual recreation requested") -> bool:
        log.warning(f"Force recreation requested for {resource_id}")
        return self.recovery.recreate(resource_id, reason)

    def clear_all_snapshots(self) -> int:
        count = self.snapshots.clear_all()
        log.info(f"Cleared {count} container snapshots")
        return count

    def clear_rollback_attempts(self, resource_id: str) -> None:
        if self.recovery.clear_attempts(resource_id):
            log.info(f"Cleared rollback attempts for {resource_id}")

    def get_update_history(self, resource_id: str) -> list[UpdateHistoryEntry]:
        return list(self._history.get(resource_id, ()))

    def clear_update_history(self) -> None:
        count = len(self._history)
        self._history.clear()
        log.info(f"Cleared update history for {count} containers")

    def perform_health_check(self) -> HealthReport:
        """
        Summarize resource health without changing anything.

        Two calls with no update in between return equal reports.
        """
        containers: dict[str, ContainerHealth] = {}
        critical = 0
        degraded = 0
        max_attempts = self.config.max_rollback_attempts

        for resource_id in sorted(self.host.resource_ids()):
            record = self.size_monitor.measure(resource_id, quiet=True)
            corruption = self.corruption.inspect(resource_id, record=False)
            attempts = self.recovery.attempts_for(resource_id)
            history = self._history.get(resource_id)

            health = ContainerHealth(
                status="healthy",
                element_count=record.element_count,
                band=record.band,
                corrupted=corruption.corrupted,
                rollback_attempts=attempts,
                last_update=history[-1].timestamp if history else None,
            )

            if corruption.corrupted:
                health.status = "critical" if corruption.severity == "critical" else "degraded"
                health.issues.append(f"Corruption detected: {', '.join(corruption.reasons)}")

            if record.band in (SizeBand.CRITICAL, SizeBand.EMERGENCY):
                health.status = "critical"
                health.issues.append(f"Size {record.band.value}: {record.element_count} elements")
            elif record.band is SizeBand.WARNING:
                if health.status == "healthy":
                    health.status = "degraded"
                health.issues.append(f"Size warning: {record.element_count} elements")

            if attempts > 0:
                health.issues.append(f"{attempts} rollback attempts")
                if attempts >= max_attempts:
                    health.status = "critical"
                elif attempts == max_attempts - 1 and health.status == "healthy":
                    health.status = "degraded"

            if health.status == "critical":
                critical += 1
            elif health.status == "degraded":
                degraded += 1
            containers[resource_id] = health

        for resource_id in self.size_monitor.limits():
            if resource_id not in containers:
                containers[resource_id] = ContainerHealth(status="missing", issues=["Container not found"])

        recommendations: list[str] = []
        status = "healthy"
        if critical:
            status = "critical"
            recommendations.append("Immediate attention required for critical issues")
        elif degraded:
            status = "degraded"
            recommendations.append("Monitor containers with warnings closely")

        if len(self.error_log) > self.error_log.max_size * _ERROR_LOG_WARNING_RATIO:
            recommendations.append("Consider clearing the error log")
        if len(self.snapshots) > _SNAPSHOT_WARNING_COUNT:
            recommendations.append("Consider clearing old snapshots to free memory")
        recommendations.extend(
            rec.message
            for rec in self.performance.generate_optimization_recommendations()
            if rec.priority == "high"
        )

        return HealthReport(
            status=status,
            containers=containers,
            error_count=len(self.error_log),
            recommendations=recommendations,
        )
