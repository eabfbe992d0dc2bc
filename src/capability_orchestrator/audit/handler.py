"""Audit capability: exposes the compliance auditor as a ``cleanup`` handler."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Final

from capability_orchestrator.audit.auditor import ComplianceAuditor
from capability_orchestrator.audit.inventory import (
    InventoryError,
    RecencyWindows,
    load_inventory,
    parse_inventory,
)
from capability_orchestrator.audit.report import AuditLedger
from capability_orchestrator.audit.requirements import (
    RequirementsCorpus,
    RequirementsParseError,
    load_requirements,
    parse_requirements,
)
from capability_orchestrator.domain.errors import HandlerFailure
from capability_orchestrator.domain.models import (
    ArtifactRecord,
    CapabilityCategory,
    CapabilityHandler,
    HandlerResult,
    Permission,
    ResourceScope,
    WorkItem,
)
from capability_orchestrator.routing.matchers import (
    all_of,
    any_of,
    category_is,
    payload_has_keys,
    text_mentions,
)

AUDIT_HANDLER_NAME: Final[str] = "compliance-audit"


class AuditProvider:
    """Runs one audit per work item.

    Payload keys: ``requirements`` (corpus text) or ``requirements_path``, and
    ``inventory`` (list of artifact descriptors) or ``inventory_path``. Each
    requirement gap becomes a ``planning`` follow-up work item.
    """

    def __init__(
        self,
        auditor: ComplianceAuditor | None = None,
        *,
        windows: RecencyWindows | None = None,
        ledger: AuditLedger | None = None,
    ) -> None:
        self._auditor = auditor or ComplianceAuditor()
        self._windows = windows or RecencyWindows()
        self._ledger = ledger if ledger is not None else AuditLedger()

    @property
    def ledger(self) -> AuditLedger:
        return self._ledger

    def invoke(self, work_item: WorkItem) -> HandlerResult:
        payload = work_item.payload
        try:
            corpus = self._corpus(payload)
            artifacts = self._inventory(payload)
        except (OSError, InventoryError, RequirementsParseError) as exc:
            raise HandlerFailure(AUDIT_HANDLER_NAME, f"{type(exc).__name__}: {exc}") from exc

        report = self._auditor.audit(corpus, artifacts)
        sequence = self._ledger.append(report)
        output = {
            "digest": report.digest,
            "ledger_sequence": sequence,
            "coverage_percent": report.coverage_percent,
            "gaps": [item.requirement_id for item in report.gaps],
            "phase_1": list(report.phase_1),
            "phase_2": list(report.phase_2),
            "uncertain": list(report.uncertain),
            "inconsistencies": len(report.inconsistencies),
        }
        follow_ups = [
            work_item.follow_up(
                {
                    "requirement_id": gap.requirement_id,
                    "description": gap.description,
                    "priority": gap.priority.value,
                    "coverage": gap.coverage.value,
                },
                category_hint=CapabilityCategory.PLANNING,
            )
            for gap in report.gaps
        ]
        if follow_ups:
            return HandlerResult.partial(
                output,
                diagnostic=f"{len(follow_ups)} requirement gap(s)",
                follow_ups=follow_ups,
            )
        return HandlerResult.success(output)

    def _corpus(self, payload: Mapping[str, object]) -> RequirementsCorpus:
        text = payload.get("requirements")
        if isinstance(text, str):
            return parse_requirements(text)
        path = payload.get("requirements_path")
        if isinstance(path, str):
            return load_requirements(Path(path))
        raise HandlerFailure(AUDIT_HANDLER_NAME, "payload needs 'requirements' or 'requirements_path'")

    def _inventory(self, payload: Mapping[str, object]) -> tuple[ArtifactRecord, ...]:
        if "inventory" in payload:
            return parse_inventory(_thaw(payload["inventory"]), windows=self._windows)
        path = payload.get("inventory_path")
        if isinstance(path, str):
            return load_inventory(Path(path), windows=self._windows)
        raise HandlerFailure(AUDIT_HANDLER_NAME, "payload needs 'inventory' or 'inventory_path'")


def audit_handler(provider: AuditProvider | None = None) -> CapabilityHandler:
    """Catalog-ready handler wrapping :class:`AuditProvider`."""

    return CapabilityHandler(
        name=AUDIT_HANDLER_NAME,
        category=CapabilityCategory.CLEANUP,
        trigger=any_of(
            all_of(
                payload_has_keys("requirements", "requirements_path"),
                payload_has_keys("inventory", "inventory_path"),
            ),
            all_of(category_is(CapabilityCategory.CLEANUP), text_mentions("audit")),
        ),
        provider=provider or AuditProvider(),
        scope=ResourceScope(permissions=frozenset({Permission.READ})),
        description="Reconciles a requirements corpus against a codebase inventory.",
    )


def _thaw(value: object) -> object:
    # Work item payloads are frozen into mappings/tuples.
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


__all__ = ["AUDIT_HANDLER_NAME", "AuditProvider", "audit_handler"]
