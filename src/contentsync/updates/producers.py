"""
Producers: the adapters that feed updates into a ``ContentUpdateManager``.

Two kinds of traffic drive the engine:

- Polling: fetch fresh data on a fixed interval and render it.
- Push: consume a stream of messages (a websocket, a broker subscription)
  and render each one as it arrives.

Producers receive the engine through their constructor; there is no shared
engine instance.

Usage:
    poller = PollingProducer(manager, "queries", fetch_queries, render_queries, interval=5.0)
    await poller.start()
    ...
    await poller.stop()

    pusher = PushProducer(manager, "messages", websocket_messages(), render_message)
    await pusher.start()
"""

import asyncio
from contextlib import suppress
from typing import Any, AsyncIterator, Callable, Mapping

from contentsync.config.logging_config import get_logger
from contentsync.updates.errors import GlobalLockError
from contentsync.updates.manager import ContentUpdateManager, UpdateFn
from contentsync.updates.types import UpdateOptions

log = get_logger(__name__)

FetchFn = Callable[[], Any]


class PollingProducer:
    """
    Call ``update_container`` every ``interval`` seconds with freshly fetched data.

    A tick rejected by the global lock, or dropped by the engine before it
    ran, is skipped quietly. Any other failure is logged and polling
    continues with the next tick.
    """

    def __init__(
        self,
        engine: ContentUpdateManager,
        resource_id: str,
        fetch: FetchFn,
        update_fn: UpdateFn,
        interval: float,
        options: UpdateOptions | Mapping[str, Any] | None = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.engine = engine
        self.resource_id = resource_id
        self.fetch = fetch
        self.update_fn = update_fn
        self.interval = interval
        self.options = options
        self.task: asyncio.Task | None = None
        self.stats = {"ticks": 0, "updates": 0, "skipped": 0, "errors": 0}

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    async def start(self) -> None:
        if self.running:
            log.warning(f"Polling producer for {self.resource_id} already started")
            return
        log.info(f"Starting polling producer for {self.resource_id} every {self.interval}s")
        self.task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self.task is None:
            return
        self.task.cancel()
        with suppress(asyncio.CancelledError):
            await self.task
        self.task = None
        log.info(f"Stopped polling producer for {self.resource_id}", extra=self.stats)

    async def tick(self) -> None:
        """Fetch once and submit one update."""
        self.stats["ticks"] += 1
        try:
            data = self.fetch()
            if asyncio.iscoroutine(data):
                data = await data
            await self.engine.update_container(self.resource_id, self.update_fn, data, self.options)
            self.stats["updates"] += 1
        except GlobalLockError:
            self.stats["skipped"] += 1
            log.debug(f"Skipping poll for {self.resource_id}, global lock active")
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # The engine dropped the request (emergency stop, cleared queue)
            self.stats["skipped"] += 1
            log.debug(f"Poll for {self.resource_id} was dropped before it ran")
        except Exception as e:
            self.stats["errors"] += 1
            log.error(f"Polling update for {self.resource_id} failed: {e}")

    async def run(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.interval)


class PushProducer:
    """
    Submit one update per message of an async stream.

    Updates are submitted without waiting for the previous one, so a burst of
    messages goes through the engine's throttle and only the freshest
    payload of the burst is rendered.

    Args:
        engine: Engine receiving the updates.
        resource_id: Default target resource.
        messages: Async iterator of messages.
        update_fn: Renders one message.
        options: Update options for every message.
        route: Optional ``message -> resource_id`` mapping for streams that
            carry updates for several resources. Returning None drops the message.
    """

    def __init__(
        self,
        engine: ContentUpdateManager,
        resource_id: str,
        messages: AsyncIterator[Any],
        update_fn: UpdateFn,
        options: UpdateOptions | Mapping[str, Any] | None = None,
        route: Callable[[Any], str | None] | None = None,
    ):
        self.engine = engine
        self.resource_id = resource_id
        self.messages = messages
        self.update_fn = update_fn
        self.options = options
        self.route = route
        self.task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()
        self.stats = {"received": 0, "dropped": 0, "errors": 0}

    async def start(self) -> None:
        if self.task is not None:
            log.warning(f"Push producer for {self.resource_id} already started")
            return
        self.task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        """Stop consuming and wait for submitted updates to settle."""
        if self.task is not None:
            self.task.cancel()
            with suppress(asyncio.CancelledError):
                await self.task
            self.task = None
        await self.drain()

    async def drain(self) -> None:
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def run(self) -> None:
        async for message in self.messages:
            self.stats["received"] += 1
            target = self.route(message) if self.route is not None else self.resource_id
            if target is None:
                self.stats["dropped"] += 1
                continue
            self._submit(target, message)
        log.debug(f"Message stream for {self.resource_id} ended")

    def _submit(self, resource_id: str, message: Any) -> None:
        task = asyncio.create_task(self.engine.update_container(resource_id, self.update_fn, message, self.options))
        self._inflight.add(task)
        task.add_done_callback(self._settled)

    def _settled(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            # Dropped before it ran
            return
        exc = task.exception()
        if isinstance(exc, GlobalLockError):
            self.stats["dropped"] += 1
        elif exc is not None:
            self.stats["errors"] += 1
            log.error(f"Push update failed: {exc}")
