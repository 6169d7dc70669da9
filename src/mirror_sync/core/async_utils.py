"""Async utilities for bridging blocking I/O into the sync engine."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a blocking function in a worker thread and await its result.

    Used for durable state writes, audit appends and ``requests`` calls so
    each one is an explicit suspension point of the engine.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        mapping = await run_sync(store.get_mapping, source_id)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def pause(delay_ms: int) -> None:
    """Sleep for *delay_ms* milliseconds; no-op for zero or negative values."""
    if delay_ms <= 0:
        return
    logger.debug("Pausing %d ms before next item", delay_ms)
    await asyncio.sleep(delay_ms / 1000)
