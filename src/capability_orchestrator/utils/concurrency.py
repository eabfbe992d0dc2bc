"""Async concurrency primitives used by the executor."""

from __future__ import annotations

import asyncio
from typing import TypeVar

T = TypeVar("T")


class BoundedSemaphore:
    """Small wrapper over ``asyncio.Semaphore`` that counts permits in use."""

    def __init__(self, limit: int) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self._semaphore = asyncio.Semaphore(limit)
        self._in_use = 0

    @property
    def in_use(self) -> int:
        return self._in_use

    async def acquire(self) -> None:
        await self._semaphore.acquire()
        self._in_use += 1

    def release(self) -> None:
        if self._in_use <= 0:
            raise RuntimeError("release called more times than acquire")
        self._in_use -= 1
        self._semaphore.release()


class DetachedTasks:
    """Holds strong references to tasks abandoned after a timeout.

    A timed-out handler keeps running; its eventual result is discarded. The
    registry stops the event loop from garbage-collecting it mid-flight and
    lets callers drain stragglers on shutdown.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[object]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def adopt(self, task: asyncio.Task[object]) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._forget)

    def _forget(self, task: asyncio.Task[object]) -> None:
        self._tasks.discard(task)
        if not task.cancelled():
            # Retrieve the exception so the loop does not log it as unhandled.
            task.exception()

    async def drain(self, timeout_seconds: float | None = None) -> int:
        """Wait for detached tasks; return how many were still running afterwards."""
        if not self._tasks:
            return 0
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout_seconds)
        return len(pending)


async def wait_detaching(
    task: asyncio.Task[T],
    timeout_seconds: float,
    detached: DetachedTasks,
) -> T:
    """Await ``task`` for at most ``timeout_seconds`` without cancelling it.

    On timeout the task is handed to ``detached`` and ``TimeoutError`` is raised.
    """
    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0")
    done, _ = await asyncio.wait({task}, timeout=timeout_seconds)
    if task in done:
        return task.result()
    detached.adopt(task)  # type: ignore[arg-type]
    raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")


__all__ = ["BoundedSemaphore", "DetachedTasks", "wait_detaching"]
