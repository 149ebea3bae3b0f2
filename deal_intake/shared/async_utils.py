"""Async utility functions."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Optional, Set, TypeVar

from fastapi.concurrency import run_in_threadpool

T = TypeVar("T")

# Strong references so the loop does not garbage-collect running tasks
_background_tasks: Set[asyncio.Task] = set()


async def run_sync(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Execute a blocking function in the threadpool and await the result.
    """
    return await run_in_threadpool(func, *args, **kwargs)


def fire_and_forget(
    coro: Coroutine[Any, Any, Any],
    *,
    name: str,
    logger: logging.Logger,
) -> asyncio.Task:
    """
    Schedule a coroutine whose result nobody awaits.

    Failures go to the log only; they never propagate to the caller.
    """
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)

    def _done(t: asyncio.Task) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            logger.warning("Background call %s failed: %s", name, exc)

    task.add_done_callback(_done)
    return task


async def call_later(delay: float, func: Callable[[], Optional[Awaitable[Any]]]) -> None:
    """Sleep, then call func and await its result when it returns one."""
    await asyncio.sleep(delay)
    result = func()
    if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
        await result
