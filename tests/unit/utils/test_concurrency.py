"""Regression tests for executor concurrency primitives."""

from __future__ import annotations

import asyncio

import pytest

from capability_orchestrator.utils.concurrency import BoundedSemaphore, DetachedTasks, wait_detaching


async def _sleep_then(value: int, delay: float) -> int:
    await asyncio.sleep(delay)
    return value


async def test_wait_detaching_returns_result_when_fast() -> None:
    detached = DetachedTasks()
    task = asyncio.create_task(_sleep_then(7, 0.001))
    assert await wait_detaching(task, 1.0, detached) == 7
    assert len(detached) == 0


async def test_wait_detaching_timeout_keeps_task_running() -> None:
    detached = DetachedTasks()
    task = asyncio.create_task(_sleep_then(1, 0.05))

    with pytest.raises(TimeoutError):
        await wait_detaching(task, 0.005, detached)

    assert not task.cancelled()
    assert len(detached) == 1
    assert await detached.drain(timeout_seconds=1.0) == 0
    assert task.result() == 1
    assert len(detached) == 0


async def test_detached_failures_are_retrieved() -> None:
    async def explode() -> None:
        await asyncio.sleep(0.01)
        raise RuntimeError("late failure")

    detached = DetachedTasks()
    task = asyncio.create_task(explode())
    with pytest.raises(TimeoutError):
        await wait_detaching(task, 0.001, detached)
    await detached.drain(timeout_seconds=1.0)
    assert task.done()
    assert len(detached) == 0


async def test_wait_detaching_rejects_non_positive_timeout() -> None:
    task = asyncio.create_task(_sleep_then(1, 0))
    with pytest.raises(ValueError, match="> 0"):
        await wait_detaching(task, 0, DetachedTasks())
    await task


async def test_bounded_semaphore_counts_permits_in_use() -> None:
    semaphore = BoundedSemaphore(2)
    await semaphore.acquire()
    await semaphore.acquire()
    assert semaphore.in_use == 2

    with pytest.raises(TimeoutError):
        await asyncio.wait_for(semaphore.acquire(), 0.01)
    assert semaphore.in_use == 2

    semaphore.release()
    semaphore.release()
    assert semaphore.in_use == 0
    with pytest.raises(RuntimeError):
        semaphore.release()
    with pytest.raises(ValueError):
        BoundedSemaphore(0)
