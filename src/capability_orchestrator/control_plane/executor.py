"""
Executor: run a routed handler batch under its concurrency policy.

Normative behavior
- ``independent`` handlers launch concurrently.
- ``sequential-after:<dep>`` handlers run one at a time, in dependency then
  registration order, each after every batch handler named ``<dep>`` (or in
  category ``<dep>``) has produced a result.
- Every invocation is time-bounded. A timed-out handler yields a ``failure``
  result with diagnostic ``Timeout``; neither it nor its siblings are cancelled.
  Under ``max_concurrency`` the wait for a permit counts against that bound.
- Faults raised by a handler become ``failure`` results. Only a malformed work
  item aborts a batch.
- Results are aggregated in registration order regardless of completion order.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import structlog

from capability_orchestrator.constants import TIMEOUT_DIAGNOSTIC
from capability_orchestrator.domain.errors import ConfigurationError, HandlerFailure
from capability_orchestrator.domain.models import CapabilityHandler, HandlerResult, WorkItem
from capability_orchestrator.planning.stage_graph import CycleError
from capability_orchestrator.routing.registry import dependency_graph, depends_on
from capability_orchestrator.routing.router import validate_work_item
from capability_orchestrator.utils.concurrency import BoundedSemaphore, DetachedTasks, wait_detaching

if TYPE_CHECKING:
    from capability_orchestrator.config.schema import ExecutorConfig

DEFAULT_HANDLER_TIMEOUT_SECONDS = 30.0
INVALID_RESULT_DIAGNOSTIC = "InvalidResult"


class Executor:
    """Concurrency-policy executor for one batch of handlers at a time."""

    def __init__(
        self,
        *,
        handler_timeout_seconds: float = DEFAULT_HANDLER_TIMEOUT_SECONDS,
        max_concurrency: int | None = None,
        logger: Any | None = None,
    ) -> None:
        if handler_timeout_seconds <= 0:
            raise ValueError("handler_timeout_seconds must be > 0")
        if max_concurrency is not None and max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self._handler_timeout_seconds = float(handler_timeout_seconds)
        self._max_concurrency = max_concurrency
        self._detached = DetachedTasks()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_config(cls, config: ExecutorConfig, *, logger: Any | None = None) -> Executor:
        return cls(
            handler_timeout_seconds=config["handler_timeout_seconds"],
            max_concurrency=config["max_concurrency"],
            logger=logger,
        )

    @property
    def handler_timeout_seconds(self) -> float:
        return self._handler_timeout_seconds

    @property
    def detached_count(self) -> int:
        """Timed-out handlers that are still running in the background."""
        return len(self._detached)

    async def drain(self, timeout_seconds: float | None = None) -> int:
        return await self._detached.drain(timeout_seconds)

    def timeout_for(self, handler: CapabilityHandler) -> float:
        if handler.timeout_seconds is not None:
            return handler.timeout_seconds
        return self._handler_timeout_seconds

    async def execute(
        self,
        handlers: Sequence[CapabilityHandler],
        work_item: WorkItem,
    ) -> list[HandlerResult]:
        validate_work_item(work_item)
        batch = tuple(handlers)
        if not batch:
            return []

        names = [handler.name for handler in batch]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"handler batch contains duplicate names: {names}")
        try:
            order = dependency_graph(batch).topological_sort()
        except CycleError as exc:
            raise ConfigurationError(f"handler batch has cyclic dependencies: {exc}") from exc

        by_name = {handler.name: handler for handler in batch}
        semaphore = BoundedSemaphore(self._max_concurrency) if self._max_concurrency else None
        done_events = {name: asyncio.Event() for name in names}
        results: dict[str, HandlerResult] = {}

        async def run_one(handler: CapabilityHandler) -> None:
            try:
                results[handler.name] = await self._run_bounded(handler, work_item, semaphore)
            finally:
                done_events[handler.name].set()

        async def sequential_lane() -> None:
            for name in order:
                handler = by_name[name]
                if handler.concurrency.independent:
                    continue
                for other in batch:
                    if depends_on(handler, other):
                        await done_events[other.name].wait()
                self._logger.debug(
                    "handler_dependencies_satisfied",
                    handler=handler.name,
                    after=handler.concurrency.after,
                    work_item_id=work_item.id,
                )
                await run_one(handler)

        self._logger.info(
            "executor_batch_started",
            work_item_id=work_item.id,
            stage=work_item.originating_stage,
            handlers=names,
        )
        lanes = [
            asyncio.create_task(run_one(handler))
            for handler in batch
            if handler.concurrency.independent
        ]
        lanes.append(asyncio.create_task(sequential_lane()))
        await asyncio.gather(*lanes)

        ordered = [results[name] for name in names]
        self._logger.info(
            "executor_batch_finished",
            work_item_id=work_item.id,
            stage=work_item.originating_stage,
            statuses={result.handler_name: result.status.value for result in ordered},
            detached=self.detached_count,
        )
        return ordered

    async def _run_bounded(
        self,
        handler: CapabilityHandler,
        work_item: WorkItem,
        semaphore: BoundedSemaphore | None,
    ) -> HandlerResult:
        start = time.perf_counter()
        timeout_seconds = self.timeout_for(handler)
        if semaphore is not None:
            # Waiting for a permit counts against the handler's time bound.
            try:
                await asyncio.wait_for(semaphore.acquire(), timeout_seconds)
            except TimeoutError:
                return self._timed_out(handler, work_item, timeout_seconds, start, semaphore)
        remaining = timeout_seconds - (time.perf_counter() - start)
        if remaining <= 0:
            if semaphore is not None:
                semaphore.release()
            return self._timed_out(handler, work_item, timeout_seconds, start, semaphore)

        task = asyncio.create_task(_invoke(handler, work_item))
        if semaphore is not None:
            # A detached task keeps its permit until it really finishes.
            task.add_done_callback(lambda _task: semaphore.release())

        try:
            raw = await wait_detaching(task, remaining, self._detached)
        except TimeoutError:
            return self._timed_out(handler, work_item, timeout_seconds, start, semaphore)
        except asyncio.CancelledError:
            raise
        except HandlerFailure as exc:
            result = HandlerResult.failure(exc.diagnostic)
        except Exception as exc:  # noqa: BLE001
            result = HandlerResult.failure(f"{type(exc).__name__}: {exc}")
        else:
            if isinstance(raw, HandlerResult):
                result = raw
            else:
                result = HandlerResult.failure(
                    f"{INVALID_RESULT_DIAGNOSTIC}: expected HandlerResult, "
                    f"got {type(raw).__name__}"
                )

        stamped = result.stamped(handler, duration_ms=_duration_ms(start))
        self._logger.info(
            "handler_finished",
            handler=handler.name,
            work_item_id=work_item.id,
            status=stamped.status.value,
            diagnostic=stamped.diagnostic,
            duration_ms=stamped.duration_ms,
        )
        return stamped

    def _timed_out(
        self,
        handler: CapabilityHandler,
        work_item: WorkItem,
        timeout_seconds: float,
        start: float,
        semaphore: BoundedSemaphore | None,
    ) -> HandlerResult:
        self._logger.warning(
            "handler_timed_out",
            handler=handler.name,
            work_item_id=work_item.id,
            timeout_seconds=timeout_seconds,
            permits_in_use=semaphore.in_use if semaphore is not None else None,
        )
        return HandlerResult.failure(TIMEOUT_DIAGNOSTIC).stamped(
            handler, duration_ms=_duration_ms(start)
        )


async def _invoke(handler: CapabilityHandler, work_item: WorkItem) -> object:
    invoke = handler.provider.invoke
    if inspect.iscoroutinefunction(invoke):
        return await invoke(work_item)
    outcome = await asyncio.to_thread(invoke, work_item)
    if inspect.isawaitable(outcome):
        return await outcome
    return outcome


def _duration_ms(start: float) -> int:
    elapsed_seconds = max(time.perf_counter() - start, 0.0)
    return int(round(elapsed_seconds * 1000))


__all__ = ["DEFAULT_HANDLER_TIMEOUT_SECONDS", "INVALID_RESULT_DIAGNOSTIC", "Executor"]
