"""
Staged workflow engine.

A :class:`Workflow` is a validated DAG of :class:`Stage` objects. The engine
routes a stage-scoped copy of the run's work item, executes the matched
handlers, and evaluates the stage gate. A passing gate unlocks successor
stages (fan-out is allowed); a failing gate halts the run with a
:class:`GateFailure`. Stages are never entered before every predecessor has
passed its gate, and there is no automatic retry.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from capability_orchestrator.constants import (
    STAGE_AUDIT,
    STAGE_BUILD,
    STAGE_IMPLEMENT,
    STAGE_PLAN,
    STAGE_REVIEW,
    STAGE_SECURITY,
    STAGE_TEST,
)
from capability_orchestrator.control_plane.executor import Executor
from capability_orchestrator.domain import ids as domain_ids
from capability_orchestrator.domain.errors import (
    ConfigurationError,
    GateFailure,
    WorkflowStateError,
)
from capability_orchestrator.domain.models import (
    CapabilityCategory,
    HandlerResult,
    JSONValue,
    WorkItem,
)
from capability_orchestrator.observability.logging import correlation_scope
from capability_orchestrator.planning.stage_graph import StageGraph
from capability_orchestrator.routing.router import Router


class GateKind(StrEnum):
    ALL_SUCCEEDED = "all_succeeded"
    NO_FAILURES = "no_failures"
    ANY_SUCCEEDED = "any_succeeded"
    CATEGORY_SUCCEEDED = "category_succeeded"
    ALWAYS = "always"


@dataclass(frozen=True, slots=True)
class Gate:
    """Predicate over the accumulated handler results of one stage.

    ``all_succeeded``, ``no_failures`` and ``always`` hold vacuously for a stage
    with no results. ``any_succeeded`` and ``category_succeeded`` need at least
    one qualifying result.
    """

    kind: GateKind = GateKind.ALL_SUCCEEDED
    category: CapabilityCategory | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", GateKind(self.kind))
        if self.kind is GateKind.CATEGORY_SUCCEEDED:
            if self.category is None:
                raise ValueError("category_succeeded gate requires a category")
            object.__setattr__(self, "category", CapabilityCategory(self.category))
        elif self.category is not None:
            raise ValueError(f"{self.kind.value} gate does not take a category")

    @classmethod
    def parse(cls, raw: str | Gate) -> Gate:
        if isinstance(raw, Gate):
            return raw
        text = raw.strip().lower()
        kind, _, argument = text.partition(":")
        try:
            gate_kind = GateKind(kind.strip())
        except ValueError as exc:
            allowed = ", ".join(item.value for item in GateKind)
            raise ValueError(f"unknown gate {raw!r}; expected one of: {allowed}") from exc
        if gate_kind is GateKind.CATEGORY_SUCCEEDED:
            return cls(gate_kind, CapabilityCategory(argument.strip()))
        if argument:
            raise ValueError(f"{gate_kind.value} gate does not take an argument")
        return cls(gate_kind)

    def __str__(self) -> str:
        if self.category is None:
            return self.kind.value
        return f"{self.kind.value}:{self.category.value}"

    def evaluate(self, results: Sequence[HandlerResult]) -> bool:
        if self.kind is GateKind.ALWAYS:
            return True
        if self.kind is GateKind.ALL_SUCCEEDED:
            return all(result.succeeded for result in results)
        if self.kind is GateKind.NO_FAILURES:
            return not any(result.failed for result in results)
        if self.kind is GateKind.ANY_SUCCEEDED:
            return any(result.succeeded for result in results)
        scoped = [result for result in results if result.category is self.category]
        return bool(scoped) and all(result.succeeded for result in scoped)

    def offending(self, results: Sequence[HandlerResult]) -> tuple[HandlerResult, ...]:
        """Results to blame when the gate fails."""
        if self.kind is GateKind.NO_FAILURES:
            return tuple(result for result in results if result.failed)
        if self.kind is GateKind.CATEGORY_SUCCEEDED:
            results = [result for result in results if result.category is self.category]
        return tuple(result for result in results if not result.succeeded)


@dataclass(frozen=True, slots=True)
class Stage:
    name: str
    predecessors: tuple[str, ...] = ()
    gate: Gate = field(default_factory=Gate)
    terminal: bool = False
    categories: frozenset[CapabilityCategory] = frozenset()

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("Stage.name must be a non-empty string")
        object.__setattr__(self, "name", self.name.strip().lower())
        if isinstance(self.predecessors, str) or any(
            not isinstance(item, str) for item in self.predecessors
        ):
            raise ValueError("Stage.predecessors must be a sequence of stage names")
        object.__setattr__(
            self, "predecessors", tuple(item.strip().lower() for item in self.predecessors)
        )
        object.__setattr__(self, "gate", Gate.parse(self.gate))
        object.__setattr__(
            self, "categories", frozenset(CapabilityCategory(item) for item in self.categories)
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> Stage:
        allowed = {"name", "predecessors", "gate", "terminal", "categories"}
        unknown = sorted(set(data) - allowed)
        if unknown:
            raise ValueError(f"stage: unknown keys {unknown}")
        return cls(
            name=data.get("name"),  # type: ignore[arg-type]
            predecessors=tuple(data.get("predecessors", ())),  # type: ignore[arg-type]
            gate=data.get("gate", GateKind.ALL_SUCCEEDED.value),  # type: ignore[arg-type]
            terminal=bool(data.get("terminal", False)),
            categories=frozenset(data.get("categories", ())),  # type: ignore[arg-type]
        )

    def admits(self, result_category: CapabilityCategory) -> bool:
        return not self.categories or result_category in self.categories

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "predecessors": list(self.predecessors),
            "gate": str(self.gate),
            "terminal": self.terminal,
            "categories": sorted(item.value for item in self.categories),
        }


class Workflow:
    """Validated, immutable DAG of stages."""

    __slots__ = ("_name", "_stages", "_graph")

    def __init__(self, stages: Iterable[Stage], *, name: str = "workflow") -> None:
        ordered = tuple(stages)
        self._name = name
        if not ordered:
            raise ConfigurationError(f"workflow {name!r} has no stages")

        by_name: dict[str, Stage] = {}
        for stage in ordered:
            if stage.name in by_name:
                raise ConfigurationError(f"workflow {name!r}: duplicate stage {stage.name!r}")
            by_name[stage.name] = stage

        graph = StageGraph(by_name)
        for stage in ordered:
            for predecessor in stage.predecessors:
                if predecessor not in by_name:
                    raise ConfigurationError(
                        f"workflow {name!r}: stage {stage.name!r} has unknown "
                        f"predecessor {predecessor!r}"
                    )
                if predecessor == stage.name:
                    raise ConfigurationError(
                        f"workflow {name!r}: stage {stage.name!r} depends on itself"
                    )
                graph.add_edge(predecessor, stage.name)

        cycles = graph.detect_cycles()
        if cycles:
            rendered = "; ".join(" -> ".join(cycle) for cycle in cycles)
            raise ConfigurationError(f"workflow {name!r} contains cycle(s): {rendered}")
        if not graph.roots():
            raise ConfigurationError(f"workflow {name!r} has no initial stage")
        if not any(stage.terminal for stage in ordered):
            raise ConfigurationError(f"workflow {name!r} has no terminal stage")
        dead_ends = [sink for sink in graph.sinks() if not by_name[sink].terminal]
        if dead_ends:
            raise ConfigurationError(
                f"workflow {name!r}: stages {dead_ends} cannot reach a terminal stage"
            )

        self._stages = by_name
        self._graph = graph

    @classmethod
    def from_mappings(
        cls,
        stages: Iterable[Mapping[str, object]],
        *,
        name: str = "workflow",
    ) -> Workflow:
        parsed: list[Stage] = []
        for index, item in enumerate(stages):
            try:
                parsed.append(Stage.from_mapping(item))
            except ValueError as exc:
                raise ConfigurationError(f"workflow {name!r}: stages[{index}]: {exc}") from exc
        return cls(parsed, name=name)

    @property
    def name(self) -> str:
        return self._name

    @property
    def stages(self) -> tuple[Stage, ...]:
        return tuple(self._stages.values())

    @property
    def graph(self) -> StageGraph:
        return self._graph

    def stage(self, name: str) -> Stage:
        try:
            return self._stages[name]
        except KeyError:
            raise WorkflowStateError(f"workflow {self._name!r} has no stage {name!r}") from None

    def initial_stages(self) -> tuple[str, ...]:
        return self._graph.roots()

    def topological_order(self) -> tuple[str, ...]:
        return self._graph.topological_sort()

    def to_dict(self) -> dict[str, JSONValue]:
        return {"name": self._name, "stages": [stage.to_dict() for stage in self.stages]}


def standard_development_workflow() -> Workflow:
    """plan -> implement -> {review, security} -> audit -> build -> test."""
    return Workflow(
        (
            Stage(STAGE_PLAN, categories=frozenset({CapabilityCategory.PLANNING})),
            Stage(STAGE_IMPLEMENT, (STAGE_PLAN,), gate=Gate(GateKind.NO_FAILURES)),
            Stage(STAGE_REVIEW, (STAGE_IMPLEMENT,), categories=frozenset({CapabilityCategory.REVIEW})),
            Stage(
                STAGE_SECURITY,
                (STAGE_IMPLEMENT,),
                categories=frozenset({CapabilityCategory.SECURITY}),
            ),
            Stage(
                STAGE_AUDIT,
                (STAGE_REVIEW, STAGE_SECURITY),
                gate=Gate(GateKind.NO_FAILURES),
                categories=frozenset({CapabilityCategory.CLEANUP}),
            ),
            Stage(STAGE_BUILD, (STAGE_AUDIT,), categories=frozenset({CapabilityCategory.BUILD_FIX})),
            Stage(
                STAGE_TEST,
                (STAGE_BUILD,),
                terminal=True,
                categories=frozenset({CapabilityCategory.TESTING}),
            ),
        ),
        name="standard-development",
    )


class RunStatus(StrEnum):
    RUNNING = "running"
    HALTED = "halted"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class StageOutcome:
    stage: str
    results: tuple[HandlerResult, ...]
    gate_passed: bool
    unlocked: tuple[str, ...] = ()
    failure: GateFailure | None = None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "stage": self.stage,
            "gate_passed": self.gate_passed,
            "unlocked": list(self.unlocked),
            "results": [result.to_dict() for result in self.results],
            "failure": str(self.failure) if self.failure else None,
        }


@dataclass(slots=True)
class WorkflowRun:
    """Mutable progress record of one workflow execution."""

    workflow: Workflow
    work_item: WorkItem
    id: str = field(default_factory=domain_ids.generate_run_id)
    status: RunStatus = RunStatus.RUNNING
    satisfied: list[str] = field(default_factory=list)
    outcomes: dict[str, StageOutcome] = field(default_factory=dict)
    follow_ups: list[WorkItem] = field(default_factory=list)
    failure: GateFailure | None = None

    @property
    def finished(self) -> bool:
        return self.status is not RunStatus.RUNNING

    def frontier(self) -> tuple[str, ...]:
        """Stages whose predecessors have all passed their gates and that have not run."""
        return tuple(
            name
            for name in self.workflow.graph.get_runnable(set(self.satisfied))
            if name not in self.outcomes
        )

    def raise_for_status(self) -> WorkflowRun:
        if self.failure is not None:
            raise self.failure
        return self

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "run_id": self.id,
            "workflow": self.workflow.name,
            "work_item_id": self.work_item.id,
            "status": self.status.value,
            "satisfied": list(self.satisfied),
            "stages": [outcome.to_dict() for outcome in self.outcomes.values()],
            "follow_ups": [item.to_dict() for item in self.follow_ups],
            "failure": str(self.failure) if self.failure else None,
        }


class WorkflowEngine:
    def __init__(
        self,
        router: Router,
        executor: Executor,
        *,
        logger: Any | None = None,
    ) -> None:
        self._router = router
        self._executor = executor
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def start(self, workflow: Workflow, work_item: WorkItem) -> WorkflowRun:
        run = WorkflowRun(workflow=workflow, work_item=work_item)
        self._logger.info(
            "workflow_started",
            run_id=run.id,
            workflow=workflow.name,
            work_item_id=work_item.id,
            initial=list(workflow.initial_stages()),
        )
        return run

    async def advance(self, run: WorkflowRun, stage_name: str) -> StageOutcome:
        if run.finished:
            raise WorkflowStateError(f"run {run.id} is already {run.status.value}")
        stage = run.workflow.stage(stage_name)
        if stage.name in run.outcomes:
            raise WorkflowStateError(f"stage {stage.name!r} already ran in run {run.id}")
        pending = [name for name in stage.predecessors if name not in run.satisfied]
        if pending:
            raise WorkflowStateError(
                f"stage {stage.name!r} entered before predecessors {pending} passed their gates"
            )

        stage_item = run.work_item.for_stage(stage.name)
        with correlation_scope(run_id=run.id, work_item_id=stage_item.id, stage=stage.name):
            handlers = tuple(
                handler
                for handler in self._router.route(stage_item)
                if stage.admits(handler.category)
            )
            results = tuple(await self._executor.execute(handlers, stage_item))
            for result in results:
                run.follow_ups.extend(result.follow_ups)

            if stage.gate.evaluate(results):
                run.satisfied.append(stage.name)
                unlocked = tuple(
                    name
                    for name in run.workflow.graph.get_dependents(stage.name)
                    if all(
                        predecessor in run.satisfied
                        for predecessor in run.workflow.stage(name).predecessors
                    )
                )
                outcome = StageOutcome(stage.name, results, True, unlocked)
                run.outcomes[stage.name] = outcome
                if len(run.satisfied) == len(run.workflow.stages):
                    run.status = RunStatus.COMPLETED
                self._logger.info(
                    "stage_gate_passed",
                    run_id=run.id,
                    stage=stage.name,
                    gate=str(stage.gate),
                    unlocked=list(unlocked),
                    statuses=_status_map(results),
                )
                return outcome

            failure = GateFailure(stage.name, str(stage.gate), stage.gate.offending(results))
            outcome = StageOutcome(stage.name, results, False, failure=failure)
            run.outcomes[stage.name] = outcome
            run.status = RunStatus.HALTED
            run.failure = failure
            self._logger.warning(
                "stage_gate_failed",
                run_id=run.id,
                stage=stage.name,
                gate=str(stage.gate),
                statuses=_status_map(results),
            )
            return outcome

    async def run(self, run: WorkflowRun) -> WorkflowRun:
        """Drive the frontier in topological order until the run completes or halts."""
        order = run.workflow.topological_order()
        while not run.finished:
            frontier = set(run.frontier())
            if not frontier:
                raise WorkflowStateError(f"run {run.id} has no runnable stage left")
            for stage_name in order:
                if stage_name not in frontier:
                    continue
                await self.advance(run, stage_name)
                if run.finished:
                    break
        self._logger.info(
            "workflow_finished",
            run_id=run.id,
            status=run.status.value,
            satisfied=list(run.satisfied),
            follow_ups=len(run.follow_ups),
        )
        return run

    async def execute(self, workflow: Workflow, work_item: WorkItem) -> WorkflowRun:
        return await self.run(self.start(workflow, work_item))


def _status_map(results: Sequence[HandlerResult]) -> dict[str, str]:
    return {result.handler_name: result.status.value for result in results}


__all__ = [
    "Gate",
    "GateKind",
    "RunStatus",
    "Stage",
    "StageOutcome",
    "Workflow",
    "WorkflowEngine",
    "WorkflowRun",
    "standard_development_workflow",
]
