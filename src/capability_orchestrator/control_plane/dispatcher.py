"""Inbound submission surface: direct dispatch or staged dispatch through a workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from capability_orchestrator.control_plane.executor import Executor
from capability_orchestrator.control_plane.workflow import (
    RunStatus,
    Workflow,
    WorkflowEngine,
    WorkflowRun,
)
from capability_orchestrator.domain.models import HandlerResult, JSONValue, WorkItem
from capability_orchestrator.observability.logging import correlation_scope
from capability_orchestrator.routing.router import Router, validate_work_item


@dataclass(frozen=True, slots=True)
class DispatchReceipt:
    """Acknowledgement of one submission.

    Direct dispatch fills ``results`` (including those of drained follow-ups);
    staged dispatch fills ``run_id`` and leaves results on the run.
    """

    work_item_id: str
    results: tuple[HandlerResult, ...] = ()
    run_id: str | None = None
    follow_up_ids: tuple[str, ...] = ()
    dropped_follow_ups: int = 0

    @property
    def staged(self) -> bool:
        return self.run_id is not None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "work_item_id": self.work_item_id,
            "run_id": self.run_id,
            "results": [result.to_dict() for result in self.results],
            "follow_up_ids": list(self.follow_up_ids),
            "dropped_follow_ups": self.dropped_follow_ups,
        }


@dataclass(slots=True)
class Dispatcher:
    router: Router
    executor: Executor
    max_follow_up_depth: int = 2
    logger: Any = None
    _engine: WorkflowEngine = field(init=False, repr=False)
    _runs: dict[str, WorkflowRun] = field(init=False, repr=False, default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_follow_up_depth < 0:
            raise ValueError("max_follow_up_depth must be >= 0")
        if self.logger is None:
            self.logger = structlog.get_logger(__name__)
        self._engine = WorkflowEngine(self.router, self.executor, logger=self.logger)

    @property
    def engine(self) -> WorkflowEngine:
        return self._engine

    async def submit(
        self,
        work_item: WorkItem,
        *,
        workflow: Workflow | None = None,
    ) -> DispatchReceipt:
        validate_work_item(work_item)
        if workflow is not None:
            return await self._submit_staged(work_item, workflow)
        return await self._submit_direct(work_item)

    def get_run(self, run_id: str) -> WorkflowRun:
        try:
            return self._runs[run_id]
        except KeyError:
            raise KeyError(f"unknown workflow run: {run_id!r}") from None

    @property
    def runs(self) -> tuple[WorkflowRun, ...]:
        return tuple(self._runs.values())

    async def _submit_direct(self, work_item: WorkItem) -> DispatchReceipt:
        results: list[HandlerResult] = []
        handled: list[str] = []
        level: list[WorkItem] = [work_item]
        depth = 0
        while level:
            next_level: list[WorkItem] = []
            for item in level:
                with correlation_scope(work_item_id=item.id):
                    batch = await self.executor.execute(self.router.route(item), item)
                if item is not work_item:
                    handled.append(item.id)
                results.extend(batch)
                for result in batch:
                    next_level.extend(result.follow_ups)
            if depth >= self.max_follow_up_depth:
                dropped = len(next_level)
                if dropped:
                    self.logger.warning(
                        "follow_ups_dropped",
                        work_item_id=work_item.id,
                        depth=depth,
                        dropped=dropped,
                    )
                return DispatchReceipt(
                    work_item.id,
                    tuple(results),
                    follow_up_ids=tuple(handled),
                    dropped_follow_ups=dropped,
                )
            level = next_level
            depth += 1
        return DispatchReceipt(work_item.id, tuple(results), follow_up_ids=tuple(handled))

    async def _submit_staged(self, work_item: WorkItem, workflow: Workflow) -> DispatchReceipt:
        run = self._engine.start(workflow, work_item)
        self._runs[run.id] = run
        try:
            await self._engine.run(run)
        except Exception:
            run.status = RunStatus.HALTED
            self.logger.exception("workflow_run_aborted", run_id=run.id, workflow=workflow.name)
            raise
        return DispatchReceipt(
            work_item.id,
            run_id=run.id,
            follow_up_ids=tuple(item.id for item in run.follow_ups),
        )


__all__ = ["DispatchReceipt", "Dispatcher"]
