"""The compliance auditor exposed as a routable cleanup capability."""

from __future__ import annotations

from pathlib import Path

import pytest

from capability_orchestrator.audit import AUDIT_HANDLER_NAME, AuditLedger, AuditProvider, audit_handler
from capability_orchestrator.control_plane.executor import Executor
from capability_orchestrator.domain.errors import HandlerFailure
from capability_orchestrator.domain.models import (
    CapabilityCategory,
    HandlerStatus,
    MatchScore,
    WorkItem,
)

REQUIREMENTS = "## Features\n- R1: Export to file\n- R2: Billing dispute workflow (high)\n"
INVENTORY = [
    {"path": "src/export/file_exporter.py", "reference_count": 3, "days_since_modified": 1},
    {"path": "src/admin-dashboard.py", "days_since_modified": 400},
]


def test_gaps_become_planning_follow_ups() -> None:
    ledger = AuditLedger()
    provider = AuditProvider(ledger=ledger)
    item = WorkItem(payload={"requirements": REQUIREMENTS, "inventory": INVENTORY})

    result = provider.invoke(item)

    assert result.status is HandlerStatus.PARTIAL
    assert result.diagnostic == "1 requirement gap(s)"
    assert result.output["gaps"] == ("R2",)
    assert result.output["phase_1"] == ("src/admin-dashboard.py",)
    assert result.output["coverage_percent"] == 50.0
    assert result.output["ledger_sequence"] == 0
    assert result.output["digest"] == ledger.latest.digest  # type: ignore[union-attr]

    (follow_up,) = result.follow_ups
    assert follow_up.category_hint is CapabilityCategory.PLANNING
    assert follow_up.parent_id == item.id
    assert follow_up.payload["requirement_id"] == "R2"
    assert follow_up.payload["priority"] == "high"


def test_full_coverage_is_success(tmp_path: Path) -> None:
    requirements_path = tmp_path / "requirements.md"
    requirements_path.write_text("## Features\n- R1: Export to file\n", encoding="utf-8")
    inventory_path = tmp_path / "inventory.yaml"
    inventory_path.write_text("- path: src/export/file_exporter.py\n  reference_count: 1\n", encoding="utf-8")

    provider = AuditProvider()
    payload = {"requirements_path": str(requirements_path), "inventory_path": str(inventory_path)}
    first = provider.invoke(WorkItem(payload=payload))
    second = provider.invoke(WorkItem(payload=payload))

    assert first.status is HandlerStatus.SUCCESS
    assert first.follow_ups == ()
    assert second.output["ledger_sequence"] == 1
    assert first.output["digest"] == second.output["digest"]


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"inventory": []}, "requirements"),
        ({"requirements": REQUIREMENTS}, "inventory"),
        ({"requirements": REQUIREMENTS, "inventory": [{"size": 1}]}, "InventoryError"),
        ({"requirements_path": "/nonexistent/requirements.md", "inventory": []}, "FileNotFoundError"),
        ({"requirements": "- A-1: x\n- A-1: y\n", "inventory": []}, "RequirementsParseError"),
    ],
)
def test_bad_payloads_raise_handler_failure(payload: dict[str, object], message: str) -> None:
    with pytest.raises(HandlerFailure, match=message) as excinfo:
        AuditProvider().invoke(WorkItem(payload=payload))
    assert excinfo.value.handler_name == AUDIT_HANDLER_NAME


def test_trigger_fires_on_audit_payloads_and_audit_requests() -> None:
    handler = audit_handler()
    assert handler.name == AUDIT_HANDLER_NAME
    assert handler.category is CapabilityCategory.CLEANUP
    assert not handler.scope.writes

    assert handler.score(WorkItem(payload={"requirements": "", "inventory_path": "x"})) is MatchScore.PARTIAL
    assert handler.matches(WorkItem(payload={"task": "audit the repo"}, category_hint="cleanup"))
    assert not handler.matches(WorkItem(payload={"requirements": "x"}))
    assert not handler.matches(WorkItem(payload={"task": "audit"}, category_hint="review"))


async def test_failures_surface_as_failure_results_through_the_executor() -> None:
    (result,) = await Executor().execute([audit_handler()], WorkItem(payload={"inventory": []}))
    assert result.status is HandlerStatus.FAILURE
    assert result.handler_name == AUDIT_HANDLER_NAME
    assert "requirements" in (result.diagnostic or "")
