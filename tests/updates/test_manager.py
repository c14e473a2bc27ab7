import asyncio

import pytest
from pydantic import ValidationError

from contentsync.updates.errors import (
    CorruptionDetectedError,
    ErrorType,
    GlobalLockError,
    UpdateTimeoutError,
)
from contentsync.updates.recovery import CLEANUP_TITLE, RECREATION_TITLE
from contentsync.updates.types import SizeBand


def rows(count: int, prefix: str = "row") -> list[str]:
    return [f'<div class="query-item">{prefix} {i}</div>' for i in range(count)]


def renderer(host, resource_id: str):
    def render(data):
        host.replace(resource_id, rows(data))
        return len(data) if isinstance(data, list) else data

    return render


class TestUpdateContainer:
    """Tests for the basic update path."""

    @pytest.mark.asyncio
    async def test_returns_update_result(self, engine, host):
        result = await engine.update_container("queries", renderer(host, "queries"), 3)

        assert result == 3
        assert host.content("queries") == rows(3)

    @pytest.mark.asyncio
    async def test_async_update_function(self, engine, host):
        async def render(data):
            await asyncio.sleep(0.01)
            host.replace("queries", rows(data))
            return "rendered"

        assert await engine.update_container("queries", render, 2) == "rendered"

    @pytest.mark.asyncio
    async def test_creates_resource_on_first_reference(self, engine, host):
        await engine.update_container("new_panel", lambda data: None)
        assert host.exists("new_panel")

    @pytest.mark.asyncio
    async def test_options_as_mapping_and_overrides(self, engine, host):
        result = await engine.update_container(
            "queries", renderer(host, "queries"), 1, {"priority": "high"}, bypass_throttle=True
        )
        assert result == 1

    @pytest.mark.asyncio
    async def test_unknown_option_rejected(self, engine):
        with pytest.raises(ValidationError):
            await engine.update_container("queries", lambda data: None, None, {"bogus": True})

    @pytest.mark.asyncio
    async def test_failure_propagates_and_is_logged(self, engine):
        def explode(data):
            raise RuntimeError("render exploded")

        with pytest.raises(RuntimeError, match="render exploded"):
            await engine.update_container("queries", explode, {"id": 1})

        entries = engine.get_error_log(ErrorType.UPDATE_FAILED)
        assert len(entries) == 1
        assert entries[0].resource_id == "queries"
        assert entries[0].context["error_class"] == "RuntimeError"
        assert engine.metrics.updates_failed.get_value() == 1

    @pytest.mark.asyncio
    async def test_suppress_errors(self, engine):
        def explode(data):
            raise RuntimeError("render exploded")

        assert await engine.update_container("queries", explode, suppress_errors=True) is None

    @pytest.mark.asyncio
    async def test_retry_before_failing(self, engine, host):
        calls = []

        def flaky(data):
            calls.append(data)
            if len(calls) == 1:
                raise ConnectionError("transient")
            host.replace("queries", rows(data))
            return "ok"

        result = await engine.update_container("queries", flaky, 2, retry_attempts=1, retry_delay=0.01)

        assert result == "ok"
        assert len(calls) == 2
        assert engine.get_error_log(ErrorType.UPDATE_FAILED) == []

    @pytest.mark.asyncio
    async def test_timeout(self, engine):
        async def slow(data):
            await asyncio.sleep(1.0)

        with pytest.raises(UpdateTimeoutError):
            await engine.update_container("queries", slow, timeout=0.05)

    @pytest.mark.asyncio
    async def test_history_and_metrics(self, engine, host):
        await engine.update_container("queries", renderer(host, "queries"), 4)

        history = engine.get_update_history("queries")
        assert len(history) == 1
        assert history[0].success is True
        assert history[0].element_count == 4
        assert history[0].band is SizeBand.NORMAL
        assert engine.metrics.updates_total.get_value() == 1
        assert engine.performance.timer.get_stats("queries_update").count == 1

        engine.clear_update_history()
        assert engine.get_update_history("queries") == []

    @pytest.mark.asyncio
    async def test_viewport_is_preserved(self, engine, host):
        host.replace("queries", rows(40))
        host.set_offset("queries", 200.0)

        await engine.update_container("queries", renderer(host, "queries"), 50)

        assert host.viewport("queries").offset == 300.0


class TestMutualExclusion:
    """Tests for per-resource serialization."""

    @pytest.mark.asyncio
    async def test_same_priority_updates_never_overlap(self, engine):
        running = 0
        peak = 0
        order = []

        async def render(data):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            order.append(data)
            await asyncio.sleep(0.02)
            running -= 1

        await asyncio.gather(
            *(engine.update_container("queries", render, i, bypass_throttle=True) for i in range(3))
        )

        assert peak == 1
        assert order == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_different_resources_run_concurrently(self, engine):
        running = 0
        peak = 0

        async def render(data):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1

        await asyncio.gather(
            engine.update_container("a", render, bypass_throttle=True),
            engine.update_container("b", render, bypass_throttle=True),
        )

        assert peak == 2

    @pytest.mark.asyncio
    async def test_queued_caller_receives_its_result(self, engine):
        async def render(data):
            await asyncio.sleep(0.01)
            return data * 2

        results = await asyncio.gather(
            *(engine.update_container("queries", render, i, bypass_throttle=True) for i in range(3))
        )
        assert results == [0, 2, 4]

    @pytest.mark.asyncio
    async def test_queued_caller_receives_its_error(self, engine):
        async def slow(data):
            await asyncio.sleep(0.02)

        def explode(data):
            raise ValueError("queued failure")

        first = asyncio.create_task(engine.update_container("queries", slow, bypass_throttle=True))
        await asyncio.sleep(0.005)
        second = asyncio.create_task(engine.update_container("queries", explode, bypass_throttle=True))

        await first
        with pytest.raises(ValueError, match="queued failure"):
            await second


class TestPriority:
    """Tests for priority handling."""

    @pytest.mark.asyncio
    async def test_critical_runs_before_queued_normal(self, engine):
        started = []

        def recorder(name, delay):
            async def render(data):
                started.append(name)
                await asyncio.sleep(delay)

            return render

        holder = asyncio.create_task(
            engine.update_container("queries", recorder("A", 0.05), bypass_throttle=True)
        )
        await asyncio.sleep(0.01)
        queued = asyncio.create_task(
            engine.update_container("queries", recorder("B", 0.0), bypass_throttle=True)
        )
        await asyncio.sleep(0.005)
        assert engine.get_update_status("queries").queue_length == 1

        critical = asyncio.create_task(
            engine.update_container("queries", recorder("C", 0.0), priority="critical")
        )
        await asyncio.gather(holder, queued, critical)

        assert started == ["A", "C", "B"]

    @pytest.mark.asyncio
    async def test_critical_bypasses_throttle(self, engine):
        executed = []

        def render(data):
            executed.append(data)

        await engine.update_container("queries", render, 1, priority="critical")
        await engine.update_container("queries", render, 2, priority="critical")

        assert executed == [1, 2]


class TestThrottling:
    """Tests for throttle coalescing."""

    @pytest.mark.asyncio
    async def test_three_calls_two_executions(self, engine):
        executed = []

        def render(data):
            executed.append(data)
            return data

        engine.set_container_throttle_delay("queries", 0.1)
        results = await asyncio.gather(
            engine.update_container("queries", render, "first"),
            engine.update_container("queries", render, "second"),
            engine.update_container("queries", render, "third"),
        )

        assert executed == ["first", "third"]
        assert results == ["first", "third", "third"]

    @pytest.mark.asyncio
    async def test_flush_throttled(self, engine):
        executed = []

        def render(data):
            executed.append(data)

        engine.set_container_throttle_delay("queries", 10.0)
        await engine.update_container("queries", render, 1)
        pending = asyncio.create_task(engine.update_container("queries", render, 2))
        await asyncio.sleep(0.01)

        stats = engine.get_throttling_stats()
        assert stats.pending_throttles == 1
        assert stats.active_throttles == 1

        await engine.flush_throttled()
        await pending
        assert executed == [1, 2]

    @pytest.mark.asyncio
    async def test_configuration(self, engine, config):
        engine.configure_throttling({"queries": 0.5, "messages": 0.25})

        assert engine.get_container_throttle_delay("queries") == 0.5
        assert engine.get_container_throttle_delay("other") == config.default_throttle_interval
        assert engine.get_throttling_stats().container_intervals == {"queries": 0.5, "messages": 0.25}
        with pytest.raises(ValueError):
            engine.set_container_throttle_delay("queries", -1)


class TestRollbackAndRecreation:
    """Tests for failure and corruption recovery."""

    @pytest.mark.asyncio
    async def test_rollback_restores_exact_content(self, engine, host):
        host.replace("queries", rows(20))
        before = host.content("queries")

        def half_render(data):
            host.replace("queries", rows(3, "partial"))
            raise RuntimeError("connection dropped mid-render")

        result = await engine.update_container("queries", half_render, enable_rollback=True)

        assert result is None
        assert host.content("queries") == before
        assert engine.get_error_log(ErrorType.ROLLBACK_SUCCESS)

    @pytest.mark.asyncio
    async def test_rollback_disabled_rethrows(self, engine, host):
        engine.set_rollback_enabled(False)

        def explode(data):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await engine.update_container("queries", explode, enable_rollback=True)
        assert engine.get_error_log(ErrorType.ROLLBACK_DISABLED)

    @pytest.mark.asyncio
    async def test_max_attempts_escalates_to_recreation(self, engine, host):
        engine.set_max_rollback_attempts(2)
        host.replace("queries", rows(5))

        def explode(data):
            raise RuntimeError("still broken")

        for expected in (1, 2):
            await engine.update_container("queries", explode, enable_rollback=True, bypass_throttle=True)
            assert engine.get_error_recovery_status().rollback_attempt_counts == {"queries": expected}

        await engine.update_container("queries", explode, enable_rollback=True, bypass_throttle=True)

        assert engine.get_error_recovery_status().rollback_attempt_counts == {}
        assert RECREATION_TITLE in host.serialize("queries")
        assert engine.get_error_log(ErrorType.ROLLBACK_MAX_ATTEMPTS)
        assert engine.get_error_log(ErrorType.CONTAINER_RECREATED)

    @pytest.mark.asyncio
    async def test_success_resets_attempts(self, engine, host):
        def explode(data):
            raise RuntimeError("boom")

        await engine.update_container("queries", explode, enable_rollback=True, bypass_throttle=True)
        assert engine.recovery.attempts_for("queries") == 1

        await engine.update_container("queries", renderer(host, "queries"), 2, bypass_throttle=True)
        assert engine.recovery.attempts_for("queries") == 0

    @pytest.mark.asyncio
    async def test_corruption_rolls_back(self, engine, host):
        host.replace("queries", rows(4))
        before = host.content("queries")

        def corrupt(data):
            host.replace("queries", ["<div><span>unterminated</div"])

        assert await engine.update_container("queries", corrupt, enable_rollback=True) is None
        assert host.content("queries") == before
        assert engine.get_error_log(ErrorType.CORRUPTION_DETECTED)

    @pytest.mark.asyncio
    async def test_corruption_without_rollback_recreates(self, engine, host):
        def corrupt(data):
            host.replace("queries", ["<div><span>unterminated</div"])

        assert await engine.update_container("queries", corrupt) is None
        assert RECREATION_TITLE in host.serialize("queries")
        assert engine.get_update_history("queries")[-1].recovery == "recreation"

    @pytest.mark.asyncio
    async def test_unrecoverable_corruption_raises(self, engine, host):
        def remove(data):
            host.remove("queries")

        with pytest.raises(CorruptionDetectedError) as exc_info:
            await engine.update_container("queries", remove, cleanup_required=False)

        assert exc_info.value.reasons == ["container_missing"]
        assert engine.get_error_log(ErrorType.RECREATION_CONTAINER_MISSING)

    @pytest.mark.asyncio
    async def test_forced_recovery(self, engine, host):
        host.replace("queries", rows(3))
        assert engine.create_snapshot("queries") is not None
        host.replace("queries", rows(1, "later"))

        assert engine.force_rollback("queries") is True
        assert host.content("queries") == rows(3)

        assert engine.force_recreation("queries", "Operator request") is True
        assert "Operator request" in host.serialize("queries")

    @pytest.mark.asyncio
    async def test_snapshot_maintenance(self, engine, host):
        host.ensure("a")
        host.ensure("b")
        engine.create_snapshot("a")
        engine.create_snapshot("b")

        assert engine.clear_all_snapshots() == 2
        assert engine.get_error_recovery_status().snapshot_count == 0


class TestSizeLimits:
    """Tests for size monitoring and cleanup."""

    @pytest.mark.asyncio
    async def test_dom_stats_reports_emergency_then_cleans_up(self, engine, host):
        engine.set_container_limit("queries", 10)
        engine.set_corruption_detection_enabled(False)

        def append_many(data):
            host.append("queries", *rows(data))

        await engine.update_container("queries", append_many, 50, cleanup_required=False)
        assert host.element_count("queries") == 50

        stats = engine.get_dom_stats()

        assert stats.for_resource("queries").band is SizeBand.EMERGENCY
        assert stats.emergency == 1
        assert CLEANUP_TITLE in host.serialize("queries")
        assert host.element_count("queries") < 50

    @pytest.mark.asyncio
    async def test_emergency_cleanup_after_update(self, engine, host):
        engine.set_container_limit("queries", 10)

        def append_many(data):
            host.append("queries", *rows(data))

        await engine.update_container("queries", append_many, 50)

        markup = host.serialize("queries")
        assert CLEANUP_TITLE in markup
        assert 'class="query-item"' not in markup
        assert engine.get_error_log(ErrorType.EMERGENCY_CLEANUP)
        assert engine.get_dom_stats().for_resource("queries").band is SizeBand.NORMAL

    @pytest.mark.asyncio
    async def test_critical_band_is_trimmed(self, engine, host):
        engine.set_container_limit("queries", 10)

        await engine.update_container("queries", renderer(host, "queries"), 15)

        assert host.content("queries") == rows(5)
        assert engine.get_update_history("queries")[-1].recovery == "cleanup"

    @pytest.mark.asyncio
    async def test_limits(self, engine, config):
        engine.set_container_limit("queries", 25)
        assert engine.get_container_limit("queries") == 25
        assert engine.get_container_limit("other") == config.default_size_limit

    @pytest.mark.asyncio
    async def test_emergency_sweep_skips_locked_resource(self, engine, host):
        engine.set_container_limit("queries", 1)
        engine.set_corruption_detection_enabled(False)
        host.replace("queries", rows(5))
        release = asyncio.Event()

        async def wait(data):
            await release.wait()

        running = asyncio.create_task(
            engine.update_container("queries", wait, cleanup_required=False, bypass_throttle=True)
        )
        await asyncio.sleep(0.01)

        records = engine.check_all_containers()

        assert records[0].band is SizeBand.EMERGENCY
        assert CLEANUP_TITLE not in host.serialize("queries")
        release.set()
        await running

    @pytest.mark.asyncio
    async def test_background_size_monitoring(self, engine, host):
        engine.set_container_limit("queries", 1)
        host.replace("queries", rows(5))

        engine.start_size_monitoring(0.01)
        await asyncio.sleep(0.05)
        engine.stop_size_monitoring()

        assert CLEANUP_TITLE in host.serialize("queries")


class TestGlobalControl:
    """Tests for the global lock and emergency stop."""

    @pytest.mark.asyncio
    async def test_global_lock_rejects_non_critical(self, engine, host):
        engine.set_global_update_lock(True, "maintenance")

        with pytest.raises(GlobalLockError):
            await engine.update_container("queries", lambda data: None)
        with pytest.raises(GlobalLockError):
            await engine.update_container("queries", lambda data: None, priority="high")

        assert await engine.update_container("queries", lambda data: "ok", priority="critical") == "ok"
        entry = engine.get_error_log(ErrorType.GLOBAL_LOCK_ACTIVE)[0]
        assert entry.context["lock_reason"] == "maintenance"
        assert engine.get_all_update_status().global_lock_reason == "maintenance"

        engine.set_global_update_lock(False)
        assert await engine.update_container("queries", lambda data: "ok", bypass_throttle=True) == "ok"

    @pytest.mark.asyncio
    async def test_emergency_stop_clears_transient_state(self, engine, host):
        release = asyncio.Event()

        async def hold(data):
            await release.wait()
            return "finished"

        running = asyncio.create_task(engine.update_container("queries", hold, bypass_throttle=True))
        await asyncio.sleep(0.01)
        queued = asyncio.create_task(engine.update_container("queries", hold, bypass_throttle=True))
        await engine.update_container("messages", lambda data: None)
        throttled = asyncio.create_task(engine.update_container("messages", lambda data: None))
        await asyncio.sleep(0.01)

        engine.emergency_stop()

        status = engine.get_all_update_status()
        assert status.global_lock_active is True
        assert status.total_active_updates == 0
        assert status.total_queued_updates == 0
        assert status.total_locks == 0
        assert engine.get_throttling_stats().pending_throttles == 0

        with pytest.raises(asyncio.CancelledError):
            await queued
        with pytest.raises(asyncio.CancelledError):
            await throttled
        with pytest.raises(GlobalLockError):
            await engine.update_container("queries", lambda data: None)

        # Work already running is not interrupted
        release.set()
        assert await running == "finished"

        engine.resume_operations()
        assert await engine.update_container("queries", lambda data: "back", bypass_throttle=True) == "back"

    @pytest.mark.asyncio
    async def test_resume_restarts_size_monitoring(self, engine):
        engine.start_size_monitoring(10.0)
        engine.emergency_stop()
        assert not engine.size_monitor.is_monitoring

        engine.resume_operations()
        assert engine.size_monitor.is_monitoring

    @pytest.mark.asyncio
    async def test_resume_without_prior_monitoring(self, engine):
        engine.emergency_stop()
        engine.resume_operations()
        assert not engine.size_monitor.is_monitoring

    @pytest.mark.asyncio
    async def test_force_release_dispatches_queue(self, engine):
        release = asyncio.Event()

        async def hold(data):
            await release.wait()

        async def quick(data):
            return "dispatched"

        holder = asyncio.create_task(engine.update_container("queries", hold, bypass_throttle=True))
        await asyncio.sleep(0.01)
        queued = asyncio.create_task(engine.update_container("queries", quick, bypass_throttle=True))
        await asyncio.sleep(0.01)

        engine.force_release_all_locks()

        assert await asyncio.wait_for(queued, timeout=1.0) == "dispatched"
        assert not holder.done()
        release.set()
        await holder

    @pytest.mark.asyncio
    async def test_clear_queue(self, engine):
        release = asyncio.Event()

        async def hold(data):
            await release.wait()

        holder = asyncio.create_task(engine.update_container("queries", hold, bypass_throttle=True))
        await asyncio.sleep(0.01)
        queued = asyncio.create_task(engine.update_container("queries", hold, bypass_throttle=True))
        await asyncio.sleep(0.01)

        assert engine.clear_queue() == 1
        with pytest.raises(asyncio.CancelledError):
            await queued
        release.set()
        await holder
