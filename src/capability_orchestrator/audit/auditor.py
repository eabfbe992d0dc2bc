"""
Compliance auditor: reconcile a requirements corpus against a codebase inventory.

Pipeline
1. Coverage: each non-excluded requirement takes the best match score over all
   artifacts and is graded implemented / partial / missing.
2. Scope: each artifact is ``in_scope`` when it matches a non-excluded
   requirement at or above the partial threshold or belongs to a protected
   category, ``out_of_scope`` when it shares no token with any of them, and
   ``uncertain`` otherwise.
3. Plan: ``out_of_scope`` artifacts go to phase 1 when the safety gate passes
   and to phase 2 when it does not; everything else is retained.

Explicit links to unknown requirement ids are recorded as inconsistencies and
keep the artifact out of the phased plan.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import structlog

from capability_orchestrator.audit.matching import HeuristicMatcher, MatchEntry, MatchThresholds
from capability_orchestrator.audit.report import (
    ArtifactFinding,
    AuditReport,
    DependencyNote,
    InconsistencyRecord,
    RequirementFinding,
    coverage_percent,
)
from capability_orchestrator.audit.requirements import RequirementsCorpus
from capability_orchestrator.audit.safety_gate import SafetyCondition, SafetyGate
from capability_orchestrator.domain.errors import AuditInconsistency
from capability_orchestrator.domain.models import (
    ArtifactRecord,
    ArtifactScope,
    DeletionPhase,
    RequirementRecord,
    canonical_json,
)
from capability_orchestrator.utils.hashing import sha256_text

if TYPE_CHECKING:
    from capability_orchestrator.config.schema import AuditConfig

_CONDITION_NOTES = {
    SafetyCondition.UNREFERENCED: "still referenced by {count} artifact(s); remove inbound references first",
    SafetyCondition.STALE: "modified recently ({recency}); confirm it is unused before removal",
    SafetyCondition.UNPROTECTED: "protected category {category!r}; requires owner sign-off",
    SafetyCondition.NOT_PUBLIC: "public interface; deprecate before removal",
}


class ComplianceAuditor:
    def __init__(
        self,
        *,
        thresholds: MatchThresholds | None = None,
        safety_gate: SafetyGate | None = None,
        logger: Any | None = None,
    ) -> None:
        self._thresholds = thresholds or MatchThresholds()
        self._gate = safety_gate or SafetyGate()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_config(cls, audit: AuditConfig, *, logger: Any | None = None) -> ComplianceAuditor:
        return cls(
            thresholds=MatchThresholds.from_config(audit),
            safety_gate=SafetyGate.from_config(audit),
            logger=logger,
        )

    @property
    def thresholds(self) -> MatchThresholds:
        return self._thresholds

    @property
    def safety_gate(self) -> SafetyGate:
        return self._gate

    def audit(
        self,
        requirements: RequirementsCorpus | Sequence[RequirementRecord],
        artifacts: Sequence[ArtifactRecord],
    ) -> AuditReport:
        if isinstance(requirements, RequirementsCorpus):
            records = requirements.records
            requirements_digest = requirements.digest
        else:
            records = tuple(requirements)
            requirements_digest = sha256_text(
                canonical_json([item.to_dict() for item in sorted(records, key=lambda r: r.id)])
            )
        inventory = tuple(sorted(artifacts, key=lambda item: item.path))
        inventory_digest = sha256_text(canonical_json([item.to_dict() for item in inventory]))

        active = tuple(sorted((item for item in records if not item.excluded), key=lambda r: r.id))
        excluded_ids = frozenset(item.id for item in records if item.excluded)
        known_ids = frozenset(item.id for item in records)

        matcher = HeuristicMatcher(self._thresholds)
        entries = matcher.matrix(active, inventory)
        by_requirement: dict[str, list[MatchEntry]] = {item.id: [] for item in active}
        by_artifact: dict[str, list[MatchEntry]] = {item.path: [] for item in inventory}
        for entry in entries:
            by_requirement[entry.requirement_id].append(entry)
            by_artifact[entry.artifact_path].append(entry)

        requirement_findings = tuple(
            self._requirement_finding(item, by_requirement[item.id]) for item in active
        )

        notes: list[DependencyNote] = []
        inconsistencies: list[InconsistencyRecord] = []
        artifact_findings: list[ArtifactFinding] = []
        for artifact in inventory:
            unknown = sorted(set(artifact.requirement_ids) - known_ids)
            for requirement_id in unknown:
                problem = AuditInconsistency(
                    artifact.path, f"links unknown requirement id {requirement_id!r}"
                )
                self._logger.warning(
                    "audit_inconsistency",
                    artifact_path=problem.artifact_path,
                    detail=problem.message,
                )
                inconsistencies.append(InconsistencyRecord(problem.artifact_path, problem.message))
            for requirement_id in sorted(set(artifact.requirement_ids) & excluded_ids):
                notes.append(
                    DependencyNote(
                        artifact.path,
                        f"linked to excluded requirement {requirement_id}; link confers no scope",
                    )
                )
            finding = self._artifact_finding(
                artifact,
                by_artifact[artifact.path],
                matcher,
                active,
                inconsistent=bool(unknown),
            )
            artifact_findings.append(finding)
            notes.extend(self._notes_for(artifact, finding))

        report = AuditReport(
            coverage_percent=coverage_percent(requirement_findings),
            requirements=requirement_findings,
            artifacts=tuple(artifact_findings),
            dependency_notes=tuple(notes),
            inconsistencies=tuple(inconsistencies),
            excluded_requirement_ids=tuple(excluded_ids),
            requirements_digest=requirements_digest,
            inventory_digest=inventory_digest,
            thresholds=(self._thresholds.implemented, self._thresholds.partial),
        )
        self._logger.info(
            "audit_completed",
            coverage_percent=report.coverage_percent,
            requirement_count=len(active),
            artifact_count=len(inventory),
            gap_count=len(report.gaps),
            phase_1_count=len(report.phase_1),
            phase_2_count=len(report.phase_2),
            inconsistency_count=len(report.inconsistencies),
            digest=report.digest,
        )
        return report

    def _requirement_finding(
        self,
        requirement: RequirementRecord,
        entries: Sequence[MatchEntry],
    ) -> RequirementFinding:
        best = max((entry.score for entry in entries), default=0.0)
        matched = tuple(sorted(entry.artifact_path for entry in entries if entry.grade.matched))
        return RequirementFinding(
            requirement_id=requirement.id,
            description=requirement.description,
            priority=requirement.priority,
            coverage=self._thresholds.coverage(best),
            best_score=best,
            matched_paths=matched,
        )

    def _artifact_finding(
        self,
        artifact: ArtifactRecord,
        entries: Sequence[MatchEntry],
        matcher: HeuristicMatcher,
        active: Sequence[RequirementRecord],
        *,
        inconsistent: bool,
    ) -> ArtifactFinding:
        best = max((entry.score for entry in entries), default=0.0)
        matched_ids = tuple(sorted(entry.requirement_id for entry in entries if entry.grade.matched))
        verdict = self._gate.evaluate(artifact)
        failed = tuple(condition.value for condition in verdict.failed_conditions)

        if inconsistent:
            scope = ArtifactScope.UNCERTAIN
        elif matched_ids or self._gate.is_protected(artifact):
            scope = ArtifactScope.IN_SCOPE
        elif self._shares_no_tokens(artifact, matcher, active):
            scope = ArtifactScope.OUT_OF_SCOPE
        else:
            scope = ArtifactScope.UNCERTAIN

        if scope is ArtifactScope.OUT_OF_SCOPE:
            phase = DeletionPhase.PHASE_1 if verdict.safe else DeletionPhase.PHASE_2
        else:
            phase = DeletionPhase.RETAIN

        return ArtifactFinding(
            path=artifact.path,
            scope=scope,
            phase=phase,
            best_score=best,
            matched_requirement_ids=matched_ids,
            failed_conditions=failed,
            reference_count=artifact.reference_count,
        )

    @staticmethod
    def _shares_no_tokens(
        artifact: ArtifactRecord,
        matcher: HeuristicMatcher,
        active: Sequence[RequirementRecord],
    ) -> bool:
        tokens = matcher.tokens_for_artifact(artifact)
        return all(not (tokens & matcher.tokens_for_requirement(item)) for item in active)

    def _notes_for(self, artifact: ArtifactRecord, finding: ArtifactFinding) -> list[DependencyNote]:
        notes: list[DependencyNote] = []
        if len(finding.matched_requirement_ids) > 1:
            notes.append(
                DependencyNote(
                    artifact.path,
                    "shared by " + ", ".join(finding.matched_requirement_ids) + "; retain",
                )
            )
        if finding.phase is DeletionPhase.PHASE_2:
            for condition in finding.failed_conditions:
                template = _CONDITION_NOTES[SafetyCondition(condition)]
                notes.append(
                    DependencyNote(
                        artifact.path,
                        template.format(
                            count=artifact.reference_count,
                            recency=artifact.recency.value,
                            category=artifact.category.value,
                        ),
                    )
                )
        return notes


__all__ = ["ComplianceAuditor"]
