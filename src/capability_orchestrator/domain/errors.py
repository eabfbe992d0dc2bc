"""Error taxonomy shared by routing, execution, workflow, and audit planes."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from capability_orchestrator.domain.models import HandlerResult


class OrchestratorError(Exception):
    """Base class for orchestrator failures."""


class ConfigurationError(OrchestratorError):
    """Bad registry or workflow definition; fatal and raised before any run starts."""


class DuplicateCapability(ConfigurationError):
    """Raised when a handler name is registered twice."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"capability handler already registered: {name!r}")


class DispatchError(OrchestratorError):
    """Malformed work item rejected before handler selection."""


class WorkflowStateError(OrchestratorError):
    """A workflow stage was advanced out of order or on a finished run."""


class HandlerFailure(OrchestratorError):
    """Per-handler failure; captured as a ``failure`` result, never fatal to a batch."""

    def __init__(self, handler_name: str, diagnostic: str) -> None:
        self.handler_name = handler_name
        self.diagnostic = diagnostic
        super().__init__(f"{handler_name}: {diagnostic}")


class GateFailure(OrchestratorError):
    """Stage gate was not satisfied; carries the offending handler results."""

    def __init__(
        self,
        stage: str,
        gate: str,
        results: Sequence[HandlerResult],
    ) -> None:
        self.stage = stage
        self.gate = gate
        self.results = tuple(results)
        failing = ", ".join(
            f"{item.handler_name}={item.status.value}" for item in self.results
        )
        detail = failing or "no handler results"
        super().__init__(f"gate {gate!r} failed for stage {stage!r}: {detail}")


class AuditInconsistency(OrchestratorError):
    """Audit input contradiction, recorded on the report instead of aborting the audit."""

    def __init__(self, artifact_path: str, message: str) -> None:
        self.artifact_path = artifact_path
        self.message = message
        super().__init__(f"{artifact_path}: {message}")


__all__ = [
    "AuditInconsistency",
    "ConfigurationError",
    "DispatchError",
    "DuplicateCapability",
    "GateFailure",
    "HandlerFailure",
    "OrchestratorError",
    "WorkflowStateError",
]
