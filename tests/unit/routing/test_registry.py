"""Unit tests for capability registration invariants."""

from __future__ import annotations

import pytest
from structlog.testing import capture_logs

from capability_orchestrator.domain.errors import ConfigurationError, DuplicateCapability
from capability_orchestrator.domain.models import (
    CapabilityHandler,
    HandlerResult,
    ResourceScope,
    WorkItem,
)
from capability_orchestrator.routing import CapabilityRegistry, always, dependency_graph


class _Noop:
    def invoke(self, work_item: WorkItem) -> HandlerResult:
        return HandlerResult.success()


def _handler(
    name: str,
    category: str = "review",
    *,
    concurrency: str = "independent",
    writes: tuple[str, ...] | None = None,
) -> CapabilityHandler:
    scope = ResourceScope()
    if writes is not None:
        scope = ResourceScope(permissions=frozenset({"read", "write"}), write_paths=writes)
    return CapabilityHandler(
        name=name,
        category=category,  # type: ignore[arg-type]
        trigger=always(),
        provider=_Noop(),
        scope=scope,
        concurrency=concurrency,  # type: ignore[arg-type]
    )


def test_registration_order_is_preserved() -> None:
    registry = CapabilityRegistry([_handler("b"), _handler("a"), _handler("c")])
    assert registry.names == ("b", "a", "c")
    assert registry.index_of("A") == 1
    assert "C" in registry
    assert registry.require("a").name == "a"
    with pytest.raises(KeyError):
        registry.require("missing")


def test_duplicate_names_are_rejected() -> None:
    registry = CapabilityRegistry([_handler("linter")])
    with pytest.raises(DuplicateCapability) as excinfo:
        registry.register(_handler("Linter", category="testing"))
    assert excinfo.value.name == "linter"
    assert isinstance(excinfo.value, ConfigurationError)


def test_overlapping_independent_write_scopes_are_rejected() -> None:
    registry = CapabilityRegistry([_handler("formatter", writes=("src",))])
    with pytest.raises(ConfigurationError, match="overlapping write scopes"):
        registry.register(_handler("fixer", category="build-fix", writes=("src/pkg",)))
    with pytest.raises(ConfigurationError, match="overlapping write scopes"):
        registry.register(_handler("anywhere", writes=()))

    registry.register(_handler("docs-writer", category="documentation", writes=("docs",)))
    registry.register(
        _handler("fixer", category="build-fix", concurrency="sequential-after:formatter", writes=("src",))
    )
    assert registry.names == ("formatter", "docs-writer", "fixer")


def test_sequential_writer_overlapping_an_unrelated_independent_writer_is_rejected() -> None:
    registry = CapabilityRegistry([_handler("a", category="review", writes=("src",))])
    with pytest.raises(ConfigurationError, match="overlapping write scopes"):
        registry.register(_handler("b", concurrency="sequential-after:planning", writes=("src",)))

    registry.register(_handler("planner", category="planning", writes=("plans",)))
    with pytest.raises(ConfigurationError, match="'a' and 'late'"):
        registry.register(
            _handler("late", category="testing", concurrency="sequential-after:planning", writes=("src/x",))
        )
    assert registry.names == ("a", "planner")


def test_transitive_dependents_and_sequential_peers_may_share_write_scopes() -> None:
    registry = CapabilityRegistry(
        [
            _handler("formatter", category="build-fix", writes=("src",)),
            _handler("linter", category="testing", concurrency="sequential-after:build-fix"),
            _handler("fixer", category="cleanup", concurrency="sequential-after:testing", writes=("src",)),
            _handler("docs", category="documentation", concurrency="sequential-after:build-fix", writes=("src",)),
        ]
    )
    assert registry.names == ("formatter", "linter", "fixer", "docs")


def test_sequential_dependency_cycles_are_rejected() -> None:
    registry = CapabilityRegistry(
        [
            _handler("a", category="planning", concurrency="sequential-after:c"),
            _handler("b", category="review", concurrency="sequential-after:a"),
        ]
    )
    with pytest.raises(ConfigurationError, match="cycle"):
        registry.register(_handler("c", category="testing", concurrency="sequential-after:review"))
    assert registry.names == ("a", "b")


def test_dependency_by_category_and_self_category_is_ignored() -> None:
    handlers = (
        _handler("planner", category="planning"),
        _handler("second-planner", category="planning", concurrency="sequential-after:planning"),
    )
    graph = dependency_graph(handlers)
    assert graph.edges == (("planner", "second-planner"),)


def test_frozen_registry_is_read_only_until_teardown() -> None:
    registry = CapabilityRegistry([_handler("a")])
    with capture_logs() as logs:
        registry.freeze()
    assert logs[-1]["event"] == "capability_registry_frozen"
    assert registry.frozen

    with pytest.raises(ConfigurationError, match="frozen"):
        registry.register(_handler("b"))
    with pytest.raises(ConfigurationError, match="frozen"):
        registry.replace(_handler("a", category="testing"))

    registry.teardown()
    assert len(registry) == 0
    registry.register(_handler("b"))


def test_replace_keeps_position_and_revalidates() -> None:
    registry = CapabilityRegistry([_handler("a"), _handler("b", writes=("src",))])
    registry.replace(_handler("a", category="testing"))
    assert registry.names == ("a", "b")
    assert registry.require("a").category.value == "testing"

    with pytest.raises(ConfigurationError, match="overlapping"):
        registry.replace(_handler("a", writes=("src/x",)))
    with pytest.raises(KeyError):
        registry.replace(_handler("zzz"))


def test_registry_rejects_non_handlers() -> None:
    with pytest.raises(ConfigurationError, match="expected CapabilityHandler"):
        CapabilityRegistry([object()])  # type: ignore[list-item]
