"""Compliance audit: requirements parsing, inventory loading, matching, and phased deletion plans."""

from capability_orchestrator.audit.auditor import ComplianceAuditor
from capability_orchestrator.audit.handler import AUDIT_HANDLER_NAME, AuditProvider, audit_handler
from capability_orchestrator.audit.inventory import (
    InventoryError,
    RecencyWindows,
    infer_category,
    load_inventory,
    parse_inventory,
)
from capability_orchestrator.audit.matching import (
    HeuristicMatcher,
    MatchEntry,
    MatchThresholds,
    overlap_score,
    tokenize,
)
from capability_orchestrator.audit.report import (
    ArtifactFinding,
    AuditLedger,
    AuditReport,
    DependencyNote,
    InconsistencyRecord,
    RequirementFinding,
)
from capability_orchestrator.audit.requirements import (
    RequirementsCorpus,
    RequirementsParseError,
    load_requirements,
    parse_requirements,
)
from capability_orchestrator.audit.safety_gate import SafetyCondition, SafetyGate, SafetyVerdict

__all__ = [
    "AUDIT_HANDLER_NAME",
    "ArtifactFinding",
    "AuditLedger",
    "AuditProvider",
    "AuditReport",
    "ComplianceAuditor",
    "DependencyNote",
    "HeuristicMatcher",
    "InconsistencyRecord",
    "InventoryError",
    "MatchEntry",
    "MatchThresholds",
    "RecencyWindows",
    "RequirementFinding",
    "RequirementsCorpus",
    "RequirementsParseError",
    "SafetyCondition",
    "SafetyGate",
    "SafetyVerdict",
    "audit_handler",
    "infer_category",
    "load_inventory",
    "load_requirements",
    "overlap_score",
    "parse_inventory",
    "parse_requirements",
    "tokenize",
]
