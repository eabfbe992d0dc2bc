"""Executor tests: ordering, time bounds, sequential lanes, fault capture."""

from __future__ import annotations

import asyncio
import time

import pytest

from capability_orchestrator.constants import TIMEOUT_DIAGNOSTIC
from capability_orchestrator.control_plane.executor import INVALID_RESULT_DIAGNOSTIC, Executor
from capability_orchestrator.domain.errors import ConfigurationError, DispatchError, HandlerFailure
from capability_orchestrator.domain.models import (
    CapabilityHandler,
    HandlerResult,
    HandlerStatus,
    WorkItem,
)
from capability_orchestrator.routing import always


class SleepyProvider:
    """Async provider that records start/finish marks into a shared journal."""

    def __init__(self, label: str, delay: float, journal: list[str] | None = None) -> None:
        self.label = label
        self.delay = delay
        self.journal = journal if journal is not None else []

    async def invoke(self, work_item: WorkItem) -> HandlerResult:
        self.journal.append(f"start:{self.label}")
        await asyncio.sleep(self.delay)
        self.journal.append(f"end:{self.label}")
        return HandlerResult.success({"label": self.label})


class SyncProvider:
    def invoke(self, work_item: WorkItem) -> HandlerResult:
        time.sleep(0.01)
        return HandlerResult.partial({"thread": True}, diagnostic="half done")


class RaisingProvider:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    async def invoke(self, work_item: WorkItem) -> HandlerResult:
        raise self.exc


class WrongTypeProvider:
    def invoke(self, work_item: WorkItem) -> dict[str, str]:
        return {"status": "success"}


def _handler(
    name: str,
    provider: object,
    *,
    concurrency: str = "independent",
    category: str = "review",
    timeout_seconds: float | None = None,
) -> CapabilityHandler:
    return CapabilityHandler(
        name=name,
        category=category,  # type: ignore[arg-type]
        trigger=always(),
        provider=provider,  # type: ignore[arg-type]
        concurrency=concurrency,  # type: ignore[arg-type]
        timeout_seconds=timeout_seconds,
    )


@pytest.mark.parametrize("delays", [(0.03, 0.01, 0.02), (0.01, 0.02, 0.03), (0.03, 0.02, 0.01)])
async def test_results_follow_registration_order(delays: tuple[float, float, float]) -> None:
    handlers = [
        _handler(f"h{index}", SleepyProvider(f"h{index}", delay))
        for index, delay in enumerate(delays)
    ]
    results = await Executor().execute(handlers, WorkItem())

    assert [result.handler_name for result in results] == ["h0", "h1", "h2"]
    assert all(result.status is HandlerStatus.SUCCESS for result in results)
    assert [result.output["label"] for result in results] == ["h0", "h1", "h2"]
    assert all(result.category is not None for result in results)


async def test_timeout_does_not_cancel_siblings_or_the_slow_handler() -> None:
    journal: list[str] = []
    executor = Executor(handler_timeout_seconds=0.05)
    handlers = [
        _handler("slow", SleepyProvider("slow", 0.2, journal)),
        _handler("fast", SleepyProvider("fast", 0.01, journal)),
    ]

    results = await executor.execute(handlers, WorkItem())

    assert results[0].status is HandlerStatus.FAILURE
    assert results[0].diagnostic == TIMEOUT_DIAGNOSTIC
    assert results[1].succeeded
    assert executor.detached_count == 1
    assert await executor.drain(timeout_seconds=1.0) == 0
    assert "end:slow" in journal


async def test_per_handler_timeout_overrides_default() -> None:
    executor = Executor(handler_timeout_seconds=5.0)
    handler = _handler("bounded", SleepyProvider("bounded", 0.2), timeout_seconds=0.02)
    assert executor.timeout_for(handler) == 0.02

    (result,) = await executor.execute([handler], WorkItem())
    assert result.diagnostic == TIMEOUT_DIAGNOSTIC
    await executor.drain(timeout_seconds=1.0)


async def test_sequential_handler_waits_for_its_dependency() -> None:
    journal: list[str] = []
    handlers = [
        _handler("formatter", SleepyProvider("formatter", 0.04, journal), category="build-fix"),
        _handler(
            "linter",
            SleepyProvider("linter", 0.0, journal),
            concurrency="sequential-after:formatter",
        ),
        _handler("docs", SleepyProvider("docs", 0.0, journal), category="documentation"),
    ]

    results = await Executor().execute(handlers, WorkItem())

    assert [result.handler_name for result in results] == ["formatter", "linter", "docs"]
    assert journal.index("end:formatter") < journal.index("start:linter")
    assert journal.index("end:docs") < journal.index("end:formatter")


async def test_sequential_after_category_and_missing_dependency() -> None:
    journal: list[str] = []
    handlers = [
        _handler(
            "second",
            SleepyProvider("second", 0.0, journal),
            concurrency="sequential-after:planning",
        ),
        _handler("planner", SleepyProvider("planner", 0.02, journal), category="planning"),
        _handler(
            "orphan",
            SleepyProvider("orphan", 0.0, journal),
            concurrency="sequential-after:not-in-batch",
        ),
    ]

    results = await Executor().execute(handlers, WorkItem())

    assert [result.handler_name for result in results] == ["second", "planner", "orphan"]
    assert journal.index("end:planner") < journal.index("start:second")
    assert all(result.succeeded for result in results)


async def test_faults_become_failure_results() -> None:
    handlers = [
        _handler("boom", RaisingProvider(RuntimeError("kaput"))),
        _handler("declined", RaisingProvider(HandlerFailure("declined", "input rejected"))),
        _handler("wrong-type", WrongTypeProvider()),
        _handler("threaded", SyncProvider()),
    ]

    results = await Executor().execute(handlers, WorkItem())

    assert [result.status for result in results] == [
        HandlerStatus.FAILURE,
        HandlerStatus.FAILURE,
        HandlerStatus.FAILURE,
        HandlerStatus.PARTIAL,
    ]
    assert results[0].diagnostic == "RuntimeError: kaput"
    assert results[1].diagnostic == "input rejected"
    assert results[2].diagnostic is not None
    assert results[2].diagnostic.startswith(INVALID_RESULT_DIAGNOSTIC)
    assert results[3].output["thread"] is True


async def test_max_concurrency_bounds_parallel_handlers() -> None:
    active = 0
    peak = 0

    class Counting:
        async def invoke(self, work_item: WorkItem) -> HandlerResult:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return HandlerResult.success()

    handlers = [_handler(f"c{index}", Counting()) for index in range(6)]
    results = await Executor(max_concurrency=2).execute(handlers, WorkItem())

    assert len(results) == 6
    assert peak == 2


async def test_hung_handler_cannot_starve_the_batch_of_permits() -> None:
    journal: list[str] = []
    executor = Executor(max_concurrency=1)
    handlers = [
        _handler("slow", SleepyProvider("slow", 1.0, journal), timeout_seconds=0.1),
        _handler("fast", SleepyProvider("fast", 0.01, journal), timeout_seconds=0.2),
        _handler("late", SleepyProvider("late", 0.01, journal), timeout_seconds=3.0),
    ]

    results = await asyncio.wait_for(executor.execute(handlers, WorkItem()), 3.0)

    assert [result.handler_name for result in results] == ["slow", "fast", "late"]
    assert results[0].diagnostic == TIMEOUT_DIAGNOSTIC
    assert results[1].diagnostic == TIMEOUT_DIAGNOSTIC
    assert results[1].duration_ms < 1000
    assert results[2].succeeded
    assert journal == ["start:slow", "end:slow", "start:late", "end:late"]
    assert await executor.drain(timeout_seconds=1.0) == 0


async def test_batch_validation() -> None:
    executor = Executor()
    assert await executor.execute([], WorkItem()) == []

    handler = _handler("dup", SleepyProvider("dup", 0.0))
    with pytest.raises(ConfigurationError, match="duplicate"):
        await executor.execute([handler, handler], WorkItem())

    cyclic = [
        _handler("a", SleepyProvider("a", 0.0), concurrency="sequential-after:b"),
        _handler("b", SleepyProvider("b", 0.0), concurrency="sequential-after:a"),
    ]
    with pytest.raises(ConfigurationError, match="cyclic"):
        await executor.execute(cyclic, WorkItem())

    with pytest.raises(DispatchError):
        await executor.execute([handler], "not a work item")  # type: ignore[arg-type]


def test_constructor_and_config_validation() -> None:
    with pytest.raises(ValueError):
        Executor(handler_timeout_seconds=0)
    with pytest.raises(ValueError):
        Executor(max_concurrency=0)

    executor = Executor.from_config({"handler_timeout_seconds": 2.5, "max_concurrency": 3})
    assert executor.handler_timeout_seconds == 2.5
