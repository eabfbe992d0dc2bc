"""Catalog loading: TOML handler tables, entrypoints, and workflow stages."""

from __future__ import annotations

from pathlib import Path

import pytest

from capability_orchestrator.audit.handler import AuditProvider
from capability_orchestrator.domain.errors import ConfigurationError
from capability_orchestrator.domain.models import HandlerResult, WorkItem
from capability_orchestrator.routing.catalog import load_catalog, parse_catalog, resolve_entrypoint


class EchoProvider:
    def __init__(self, prefix: str = "echo") -> None:
        self.prefix = prefix

    def invoke(self, work_item: WorkItem) -> HandlerResult:
        return HandlerResult.success({"said": f"{self.prefix}:{work_item.id}"})


SHARED_ECHO = EchoProvider("shared")

CATALOG = """
schema_version = 1
workflow = "review-then-audit"

[[handlers]]
name = "echo"
category = "review"
entrypoint = "test_catalog:EchoProvider"
description = "repeats the work item id"

[handlers.trigger]
categories = ["review"]

[handlers.options]
prefix = "hello"

[[handlers]]
name = "compliance-audit"
category = "cleanup"
entrypoint = "capability_orchestrator.audit.handler:AuditProvider"
concurrency = "sequential-after:echo"
timeout_seconds = 5

[handlers.trigger]
payload_keys = ["requirements", "inventory"]

[[stages]]
name = "review"

[[stages]]
name = "audit"
predecessors = ["review"]
gate = "no_failures"
terminal = true
"""


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "handlers.toml"
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _importable_test_module(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.syspath_prepend(str(Path(__file__).parent))


def test_load_catalog_builds_frozen_registry_and_workflow(tmp_path: Path) -> None:
    catalog = load_catalog(_write(tmp_path, CATALOG))

    assert catalog.registry.frozen
    assert catalog.registry.names == ("echo", "compliance-audit")
    echo = catalog.registry.require("echo")
    assert echo.provider.prefix == "hello"  # type: ignore[attr-defined]
    assert echo.description == "repeats the work item id"
    audit = catalog.registry.require("compliance-audit")
    assert isinstance(audit.provider, AuditProvider)
    assert str(audit.concurrency) == "sequential-after:echo"
    assert audit.timeout_seconds == 5.0

    assert catalog.workflow is not None
    assert catalog.workflow.name == "review-then-audit"
    assert [stage.name for stage in catalog.workflow.stages] == ["review", "audit"]
    assert catalog.source == tmp_path / "handlers.toml"


def test_load_catalog_without_freeze(tmp_path: Path) -> None:
    catalog = load_catalog(_write(tmp_path, CATALOG), freeze=False)
    assert not catalog.registry.frozen


def test_missing_and_malformed_catalogs(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        load_catalog(tmp_path / "absent.toml")
    with pytest.raises(ConfigurationError, match="invalid TOML"):
        load_catalog(_write(tmp_path, "handlers = [[["))


@pytest.mark.parametrize(
    ("document", "message"),
    [
        ({"schema_version": 2}, "unsupported schema_version"),
        ({"plugins": []}, "unknown top-level keys"),
        ({"workflow": "x"}, "no \\[\\[stages\\]\\]"),
        ({"handlers": [{"name": "a"}]}, "missing required keys"),
        (
            {
                "handlers": [
                    {
                        "name": "a",
                        "category": "review",
                        "entrypoint": "test_catalog:EchoProvider",
                        "trigger": {"categories": ["review"]},
                        "retries": 3,
                    }
                ]
            },
            "unknown keys",
        ),
        (
            {
                "handlers": [
                    {
                        "name": "a",
                        "category": "astrology",
                        "entrypoint": "test_catalog:EchoProvider",
                        "trigger": {"always": True},
                    }
                ]
            },
            "handlers\\[0\\]",
        ),
        (
            {
                "handlers": [
                    {
                        "name": "a",
                        "category": "review",
                        "entrypoint": "test_catalog:EchoProvider",
                        "trigger": {},
                    }
                ]
            },
            "at least one criterion",
        ),
    ],
)
def test_parse_catalog_rejects_defects(document: dict[str, object], message: str) -> None:
    with pytest.raises(ConfigurationError, match=message):
        parse_catalog(document)


def test_duplicate_handler_in_catalog_is_configuration_error() -> None:
    entry = {
        "name": "echo",
        "category": "review",
        "entrypoint": "test_catalog:EchoProvider",
        "trigger": {"always": True},
    }
    with pytest.raises(ConfigurationError, match="already registered"):
        parse_catalog({"handlers": [entry, dict(entry)]})


def test_resolve_entrypoint_forms() -> None:
    assert resolve_entrypoint("test_catalog:SHARED_ECHO") is SHARED_ECHO
    assert isinstance(resolve_entrypoint("test_catalog:EchoProvider"), EchoProvider)

    with pytest.raises(ConfigurationError, match="module:attribute"):
        resolve_entrypoint("test_catalog.EchoProvider")
    with pytest.raises(ConfigurationError, match="cannot import"):
        resolve_entrypoint("no_such_module_for_catalog:Thing")
    with pytest.raises(ConfigurationError, match="no attribute"):
        resolve_entrypoint("test_catalog:Missing")
    with pytest.raises(ConfigurationError, match="options require"):
        resolve_entrypoint("test_catalog:SHARED_ECHO", {"prefix": "x"})
    with pytest.raises(ConfigurationError, match="factory failed"):
        resolve_entrypoint("test_catalog:EchoProvider", {"unknown": 1})
    with pytest.raises(ConfigurationError, match="neither a provider nor a factory"):
        resolve_entrypoint("test_catalog:CATALOG")
