import asyncio
from typing import Any, Awaitable, Callable

StartGuard = Callable[[], bool]


async def gather_with_concurrency(
    factories: list[Callable[[], Awaitable[Any]]],
    max_concurrent: int,
    should_start: StartGuard | None = None,
) -> list:
    """
    Run async callables with a maximum number in flight.

    Callables are started in order as slots free up, so a later one never
    starts before an earlier one. Results come back in input order; a
    callable skipped by ``should_start`` yields None.

    Args:
        factories: Zero-argument async callables.
        max_concurrent: Maximum callables running at once. Must be > 0.
        should_start: Checked right before each callable starts; returning
            False skips it. Used to stop starting work after a timeout.

    Returns:
        List of results in the same order as ``factories``.

    Raises:
        ValueError: If max_concurrent is not a positive integer.
        Exception: The first exception raised by any callable.

    Example:
        results = await gather_with_concurrency(
            [lambda u=u: refresh(u) for u in urls],
            max_concurrent=3,
        )
    """
    if max_concurrent <= 0:
        raise ValueError("max_concurrent must be a positive integer")

    if not factories:
        return []

    sem = asyncio.Semaphore(max_concurrent)
    results: list = [None] * len(factories)

    async def run_with_sem(index: int, factory: Callable[[], Awaitable[Any]]) -> None:
        async with sem:
            if should_start is not None and not should_start():
                return
            results[index] = await factory()

    await asyncio.gather(*(run_with_sem(i, factory) for i, factory in enumerate(factories)))
    return results


async def run_sequentially(
    factories: list[Callable[[], Awaitable[Any]]],
    should_start: StartGuard | None = None,
) -> list:
    """
    Run async callables one after another, each starting after the previous settles.

    Stops at the first exception. Callables skipped by ``should_start`` yield
    None and no later callable is started.
    """
    results: list = [None] * len(factories)
    for index, factory in enumerate(factories):
        if should_start is not None and not should_start():
            break
        results[index] = await factory()
    return results
