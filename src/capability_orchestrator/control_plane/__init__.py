"""Control plane: executor, staged workflow engine, and dispatcher."""

from capability_orchestrator.control_plane.dispatcher import DispatchReceipt, Dispatcher
from capability_orchestrator.control_plane.executor import Executor
from capability_orchestrator.control_plane.workflow import (
    Gate,
    GateKind,
    RunStatus,
    Stage,
    StageOutcome,
    Workflow,
    WorkflowEngine,
    WorkflowRun,
    standard_development_workflow,
)

__all__ = [
    "DispatchReceipt",
    "Dispatcher",
    "Executor",
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
