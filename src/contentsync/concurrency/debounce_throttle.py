"""
Per-key coalescing throttle for update requests.

The first request for a key runs immediately. Requests arriving inside the
throttle interval are coalesced: only the most recent one is kept and it runs
once the interval has elapsed. Callers superseded by a newer request share the
outcome of the run that absorbed them.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from contentsync.config.logging_config import get_logger

log = get_logger(__name__)

T = TypeVar("T")


@dataclass
class ThrottleState:
    """Throttle bookkeeping for one key."""

    last_run_at: float | None = None
    pending: Callable[[], Awaitable[Any]] | None = None
    waiters: list[asyncio.Future] = field(default_factory=list)
    timer: asyncio.Task | None = None


class UpdateThrottler:
    """
    Throttle and coalesce async tasks per key.

    At most one pending task and one armed timer exist per key. A new
    throttled request replaces the pending task instead of stacking.

    Example:
        throttler = UpdateThrottler()

        async def refresh():
            return await fetch_and_render()

        # Runs immediately
        await throttler.schedule("queries", refresh, interval=1.0)

        # Both land inside the window; only the second task runs, once
        t1 = asyncio.create_task(throttler.schedule("queries", lambda: render(a), 1.0))
        t2 = asyncio.create_task(throttler.schedule("queries", lambda: render(b), 1.0))

        # Run anything pending right now (teardown, tests)
        await throttler.flush_all()
    """

    def __init__(self) -> None:
        self._states: dict[str, ThrottleState] = {}
        self._firing: set[asyncio.Task] = set()

    async def schedule(
        self,
        key: str,
        task: Callable[[], Awaitable[T]],
        interval: float,
    ) -> T:
        """
        Run ``task`` now or coalesce it into the next throttled run.

        Args:
            key: Throttle key, usually the resource id.
            task: Zero-argument async callable.
            interval: Minimum seconds between two runs for this key.

        Returns:
            The result of the run that executed this request (which may be a
            newer request that superseded it).

        Raises:
            asyncio.CancelledError: If the pending request was cancelled
                before it ran.
        """
        if interval < 0:
            raise ValueError("interval must be non-negative")

        loop = asyncio.get_running_loop()
        state = self._states.setdefault(key, ThrottleState())
        now = loop.time()

        if state.timer is None and (state.last_run_at is None or now - state.last_run_at >= interval):
            state.last_run_at = now
            return await task()

        future: asyncio.Future = loop.create_future()
        if state.pending is not None:
            log.debug(f"Coalescing throttled update for {key}")
        state.pending = task
        state.waiters.append(future)

        if state.timer is None:
            elapsed = now - state.last_run_at if state.last_run_at is not None else interval
            delay = max(0.0, interval - elapsed)
            log.debug(f"Throttling update for {key}, executing in {delay:.3f}s")
            state.timer = asyncio.create_task(self._fire_after(key, delay))

        return await future

    async def _fire_after(self, key: str, delay: float) -> None:
        await asyncio.sleep(delay)
        state = self._states.get(key)
        if state is None:
            return
        # Once firing starts the run is no longer cancellable through cancel()
        current = asyncio.current_task()
        if current is not None:
            self._firing.add(current)
            current.add_done_callback(self._firing.discard)
        state.timer = None
        await self._run_pending(key)

    async def _run_pending(self, key: str) -> None:
        state = self._states.get(key)
        if state is None or state.pending is None:
            return

        task = state.pending
        waiters = state.waiters
        state.pending = None
        state.waiters = []
        state.last_run_at = asyncio.get_running_loop().time()

        log.debug(f"Executing throttled update for {key}")
        try:
            result = await task()
        except asyncio.CancelledError:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
            raise
        except Exception as e:
            log.error(f"Error executing throttled update for {key}: {e}")
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_exception(e)
        else:
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(result)

    def cancel(self, key: str) -> bool:
        """
        Disarm the timer for ``key`` and drop its pending task.

        Waiters are cancelled rather than resolved: the request never ran.

        Returns:
            True if a pending task was dropped.
        """
        state = self._states.get(key)
        if state is None:
            return False

        if state.timer is not None:
            state.timer.cancel()
            state.timer = None

        had_pending = state.pending is not None
        for waiter in state.waiters:
            if not waiter.done():
                waiter.cancel()
        state.pending = None
        state.waiters = []
        if had_pending:
            log.debug(f"Cancelled throttled update for {key}")
        return had_pending

    def cancel_all(self) -> int:
        """Cancel every pending task. Returns how many were dropped."""
        return sum(1 for key in list(self._states) if self.cancel(key))

    async def flush_all(self) -> None:
        """Run every pending task immediately, ignoring the timers."""
        keys = [key for key, state in self._states.items() if state.pending is not None]
        if keys:
            log.debug(f"Flushing {len(keys)} throttled updates")
        for key in keys:
            state = self._states[key]
            if state.timer is not None:
                state.timer.cancel()
                state.timer = None
            await self._run_pending(key)

    def has_pending(self, key: str) -> bool:
        state = self._states.get(key)
        return state is not None and state.pending is not None

    def has_timer(self, key: str) -> bool:
        state = self._states.get(key)
        return state is not None and state.timer is not None

    def status(self, key: str, interval: float) -> dict[str, Any]:
        """Return throttle bookkeeping for a key."""
        state = self._states.get(key) or ThrottleState()
        try:
            now: float | None = asyncio.get_running_loop().time()
        except RuntimeError:
            now = None
        since_last = (
            now - state.last_run_at if now is not None and state.last_run_at is not None else None
        )
        return {
            "last_run_at": state.last_run_at,
            "time_since_last_run": since_last,
            "has_pending_update": state.pending is not None,
            "has_timer": state.timer is not None,
            "can_run_immediately": state.timer is None
            and (since_last is None or since_last >= interval),
        }

    def keys(self) -> list[str]:
        return list(self._states)
