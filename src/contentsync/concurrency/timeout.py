import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from contentsync.config.logging_config import get_logger

log = get_logger(__name__)

T = TypeVar("T")

_ASYNCIO_TIMEOUT_ERROR = asyncio.TimeoutError


class TimeoutError(Exception):
    """Raised when an operation times out."""

    def __init__(self, timeout_seconds: float, message: str | None = None):
        self.timeout_seconds = timeout_seconds
        self.message = message or f"Operation timed out after {timeout_seconds}s"
        super().__init__(self.message)


async def with_timeout(
    coro: Callable[[], Awaitable[T]],
    timeout_seconds: float | None,
    timeout_exception: type[TimeoutError] = TimeoutError,
    exception_message: str | None = None,
) -> T:
    """
    Run an async callable with a timeout.

    The callable is cancelled when the timeout expires, so it must be safe to
    interrupt at its await points.

    Args:
        coro: Async callable to execute.
        timeout_seconds: Timeout in seconds. None runs without a bound.
        timeout_exception: Exception type to raise on timeout.
        exception_message: Custom error message (optional).

    Returns:
        The result of the coroutine.

    Raises:
        timeout_exception: If the operation times out.
    """
    if timeout_seconds is None:
        return await coro()
    try:
        return await asyncio.wait_for(coro(), timeout=timeout_seconds)
    except _ASYNCIO_TIMEOUT_ERROR:
        raise timeout_exception(
            timeout_seconds,
            exception_message or f"Operation timed out after {timeout_seconds}s",
        ) from None


def _log_background_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.warning(f"Detached operation failed after its caller timed out: {exc}")


async def wait_or_detach(
    task: "asyncio.Task[T]",
    timeout_seconds: float,
    timeout_exception: type[TimeoutError] = TimeoutError,
    exception_message: str | None = None,
) -> T:
    """
    Wait for a task, but give up waiting (without cancelling it) on timeout.

    Unlike ``with_timeout`` the task keeps running after the timeout; its
    eventual result is discarded and a failure is only logged.

    Example:
        batch = asyncio.create_task(run_batch(entries))
        await wait_or_detach(batch, 30.0, CoordinationTimeoutError)
    """
    done, _ = await asyncio.wait({task}, timeout=timeout_seconds)
    if task in done:
        return task.result()

    task.add_done_callback(_log_background_failure)
    raise timeout_exception(
        timeout_seconds,
        exception_message or f"Operation timed out after {timeout_seconds}s",
    )
