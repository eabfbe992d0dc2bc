"""Domain types shared by routing, execution, workflow, and audit planes."""

from capability_orchestrator.domain.errors import (
    AuditInconsistency,
    ConfigurationError,
    DispatchError,
    DuplicateCapability,
    GateFailure,
    HandlerFailure,
    OrchestratorError,
    WorkflowStateError,
)
from capability_orchestrator.domain.models import (
    ArtifactCategory,
    ArtifactRecord,
    ArtifactScope,
    CapabilityCategory,
    CapabilityHandler,
    CapabilityProvider,
    ConcurrencyClass,
    DeletionPhase,
    HandlerResult,
    HandlerStatus,
    MatchScore,
    Permission,
    RecencyBucket,
    RequirementCoverage,
    RequirementKind,
    RequirementPriority,
    RequirementRecord,
    ResourceScope,
    WorkItem,
)

__all__ = [
    "ArtifactCategory",
    "ArtifactRecord",
    "ArtifactScope",
    "AuditInconsistency",
    "CapabilityCategory",
    "CapabilityHandler",
    "CapabilityProvider",
    "ConcurrencyClass",
    "ConfigurationError",
    "DeletionPhase",
    "DispatchError",
    "DuplicateCapability",
    "GateFailure",
    "HandlerFailure",
    "HandlerResult",
    "HandlerStatus",
    "MatchScore",
    "OrchestratorError",
    "Permission",
    "RecencyBucket",
    "RequirementCoverage",
    "RequirementKind",
    "RequirementPriority",
    "RequirementRecord",
    "ResourceScope",
    "WorkItem",
    "WorkflowStateError",
]
