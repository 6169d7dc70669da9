"""
Tests for async_utils module.

Covers run_sync and pause.
"""

import asyncio
import threading
from unittest.mock import AsyncMock, patch

import pytest

from mirror_sync.core.async_utils import pause, run_sync


def _sync_add(a: int, b: int) -> int:
    """Simple sync function for testing."""
    return a + b


async def test_run_sync_calls_function():
    """run_sync delegates to asyncio.to_thread with correct args."""
    result = await run_sync(_sync_add, 3, 4)
    assert result == 7


async def test_run_sync_passes_kwargs():
    """run_sync forwards keyword arguments."""

    def _kw_func(*, name: str) -> str:
        return f"hello {name}"

    result = await run_sync(_kw_func, name="world")
    assert result == "hello world"


async def test_run_sync_uses_worker_thread():
    """The function runs off the event loop thread."""
    result = await run_sync(threading.get_ident)
    assert result != threading.get_ident()


async def test_run_sync_propagates_exceptions():
    """Exceptions raised in the worker reach the caller."""

    def _boom():
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        await run_sync(_boom)


async def test_pause_sleeps_in_seconds():
    """pause converts milliseconds to seconds."""
    with patch("mirror_sync.core.async_utils.asyncio.sleep", new=AsyncMock()) as sleep:
        await pause(250)
    sleep.assert_awaited_once_with(0.25)


@pytest.mark.parametrize("delay", [0, -10])
async def test_pause_noop_for_zero_or_negative(delay):
    """No sleep for non-positive delays."""
    with patch("mirror_sync.core.async_utils.asyncio.sleep", new=AsyncMock()) as sleep:
        await pause(delay)
    sleep.assert_not_awaited()


async def test_pause_real_sleep_is_short():
    """A small real pause completes."""
    await asyncio.wait_for(pause(1), timeout=1)
