"""Async utilities for bridging blocking HTTP calls to the asyncio scheduler."""

import asyncio
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Sync rounds issue blocking ``requests`` calls; the scheduler awaits
    them through this helper so timers and the countdown keep ticking.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        result = await run_sync(reconciler.run_round)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
