import asyncio

import pytest

from contentsync.concurrency.priority_lock import UpdatePriority
from contentsync.updates.errors import CoordinationTimeoutError, ErrorType
from contentsync.updates.types import CoordinatedUpdate, UpdateOptions


class TestCoordinateUpdates:
    """Tests for batched updates."""

    @pytest.mark.asyncio
    async def test_sequential_runs_in_order(self, engine):
        events = []

        def step(name, delay):
            async def render(data):
                events.append(f"{name}:start")
                await asyncio.sleep(delay)
                events.append(f"{name}:end")

            return render

        await engine.coordinate_updates(
            [
                CoordinatedUpdate("a", step("a", 0.03)),
                CoordinatedUpdate("b", step("b", 0.0)),
            ],
            sequential=True,
        )

        assert events == ["a:start", "a:end", "b:start", "b:end"]

    @pytest.mark.asyncio
    async def test_parallel_respects_max_concurrent(self, engine):
        running = 0
        peak = 0

        async def render(data):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1

        await engine.coordinate_updates(
            [CoordinatedUpdate(f"panel_{i}", render) for i in range(6)],
            max_concurrent=2,
        )

        assert peak == 2

    @pytest.mark.asyncio
    async def test_accepts_mappings(self, engine, host):
        def render(data):
            host.replace("queries", [f"<li>{data}</li>"])

        await engine.coordinate_updates([{"resource_id": "queries", "update_fn": render, "data": "x"}])

        assert host.content("queries") == ["<li>x</li>"]

    @pytest.mark.asyncio
    async def test_accepts_update_function_key(self, engine, host):
        def render(data):
            host.replace("messages", [f"<li>{data}</li>"])

        await engine.coordinate_updates([{"resource_id": "messages", "update_function": render, "data": "y"}])

        assert host.content("messages") == ["<li>y</li>"]

    def test_both_function_keys_are_rejected(self):
        with pytest.raises(TypeError):
            CoordinatedUpdate.from_mapping({"resource_id": "queries", "update_fn": print, "update_function": print})

    @pytest.mark.asyncio
    async def test_entries_skip_throttling(self, engine):
        executed = []

        def render(data):
            executed.append(data)

        engine.set_container_throttle_delay("queries", 10.0)
        await engine.update_container("queries", render, 0)

        await engine.coordinate_updates(
            [CoordinatedUpdate("queries", render, 1), CoordinatedUpdate("queries", render, 2)],
            sequential=True,
        )

        assert executed == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_batch_priority_and_entry_override(self, engine):
        seen = {}

        def recorder(resource_id):
            def render(data):
                seen[resource_id] = engine.get_update_status(resource_id).lock_priority

            return render

        await engine.coordinate_updates(
            [
                CoordinatedUpdate("a", recorder("a")),
                CoordinatedUpdate("b", recorder("b"), options=UpdateOptions(priority="critical")),
            ],
            priority="high",
        )

        assert seen == {"a": UpdatePriority.HIGH, "b": UpdatePriority.CRITICAL}

    @pytest.mark.asyncio
    async def test_timeout_stops_starting_new_entries(self, engine):
        started = []

        def step(name, delay):
            async def render(data):
                started.append(name)
                await asyncio.sleep(delay)

            return render

        with pytest.raises(CoordinationTimeoutError):
            await engine.coordinate_updates(
                [CoordinatedUpdate("a", step("a", 0.1)), CoordinatedUpdate("b", step("b", 0.0))],
                sequential=True,
                timeout=0.03,
            )

        # The running entry finishes in the background; the next one never starts
        await asyncio.sleep(0.15)
        assert started == ["a"]
        assert engine.get_error_log(ErrorType.COORDINATION_TIMEOUT)
        assert engine.get_update_history("a")[-1].success is True

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_raised(self, engine):
        def explode(data):
            raise RuntimeError("batch member failed")

        with pytest.raises(RuntimeError, match="batch member failed"):
            await engine.coordinate_updates(
                [CoordinatedUpdate("a", lambda data: None), CoordinatedUpdate("b", explode)]
            )

        entry = engine.get_error_log(ErrorType.COORDINATION_FAILED)[0]
        assert "batch member failed" in entry.context["error"]

    @pytest.mark.asyncio
    async def test_empty_batch(self, engine):
        assert await engine.coordinate_updates([]) is None
