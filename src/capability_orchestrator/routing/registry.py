"""
Capability registry: explicit, freezable collection of capability handlers.

Registration enforces three configuration invariants before any run starts:
- handler names are unique,
- handlers that can run at the same time never share a write scope,
- ``sequential-after`` dependencies form no cycle.

The registry is passed by reference to the router and executor; once frozen it
is read-only for the lifetime of the process.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from typing import Any

import structlog

from capability_orchestrator.domain.errors import ConfigurationError, DuplicateCapability
from capability_orchestrator.domain.models import CapabilityHandler, JSONValue
from capability_orchestrator.planning.stage_graph import CycleError, StageGraph


def depends_on(handler: CapabilityHandler, other: CapabilityHandler) -> bool:
    """True when ``handler`` is sequential after ``other`` by name or category."""
    dependency = handler.concurrency.after
    if dependency is None or handler.name == other.name:
        return False
    return dependency in (other.name, other.category.value)


def dependency_graph(handlers: Sequence[CapabilityHandler]) -> StageGraph:
    """Handler-name graph for one batch; ties break by position in ``handlers``."""
    graph = StageGraph(handler.name for handler in handlers)
    for handler in handlers:
        for other in handlers:
            if depends_on(handler, other):
                graph.add_edge(other.name, handler.name)
    return graph


class CapabilityRegistry:
    """Ordered handler registry with validation on every mutation."""

    __slots__ = ("_handlers", "_frozen", "_logger")

    def __init__(
        self,
        handlers: Iterable[CapabilityHandler] = (),
        *,
        logger: Any | None = None,
    ) -> None:
        self._handlers: dict[str, CapabilityHandler] = {}
        self._frozen = False
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        for handler in handlers:
            self.register(handler)

    def __len__(self) -> int:
        return len(self._handlers)

    def __iter__(self) -> Iterator[CapabilityHandler]:
        return iter(tuple(self._handlers.values()))

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._handlers

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def handlers(self) -> tuple[CapabilityHandler, ...]:
        """Handlers in registration order."""
        return tuple(self._handlers.values())

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    def get(self, name: str) -> CapabilityHandler | None:
        return self._handlers.get(name.lower())

    def require(self, name: str) -> CapabilityHandler:
        handler = self.get(name)
        if handler is None:
            raise KeyError(f"unknown capability handler: {name!r}")
        return handler

    def index_of(self, name: str) -> int:
        return self.names.index(name.lower())

    def register(self, handler: CapabilityHandler) -> CapabilityHandler:
        self._assert_mutable("register")
        if not isinstance(handler, CapabilityHandler):
            raise ConfigurationError(
                f"expected CapabilityHandler, got {type(handler).__name__}"
            )
        if handler.name in self._handlers:
            raise DuplicateCapability(handler.name)

        candidate = {**self._handlers, handler.name: handler}
        self._validate(candidate, handler)
        self._handlers = candidate
        self._logger.info(
            "capability_registered",
            handler=handler.name,
            category=handler.category.value,
            concurrency=str(handler.concurrency),
            position=len(self._handlers) - 1,
        )
        return handler

    def replace(self, handler: CapabilityHandler) -> CapabilityHandler:
        """Swap an existing handler in place, keeping its registration position."""
        self._assert_mutable("replace")
        if handler.name not in self._handlers:
            raise KeyError(f"unknown capability handler: {handler.name!r}")
        candidate = dict(self._handlers)
        candidate[handler.name] = handler
        self._validate(candidate, handler)
        self._handlers = candidate
        self._logger.info("capability_replaced", handler=handler.name)
        return handler

    def freeze(self) -> CapabilityRegistry:
        self._frozen = True
        self._logger.info("capability_registry_frozen", handlers=list(self._handlers))
        return self

    def teardown(self) -> None:
        """Drop every handler and unfreeze; used between test runs and CLI invocations."""
        self._handlers = {}
        self._frozen = False

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "frozen": self._frozen,
            "handlers": [handler.to_dict() for handler in self._handlers.values()],
        }

    def _assert_mutable(self, operation: str) -> None:
        if self._frozen:
            raise ConfigurationError(f"cannot {operation}: capability registry is frozen")

    def _validate(
        self,
        candidate: dict[str, CapabilityHandler],
        changed: CapabilityHandler,
    ) -> None:
        graph = dependency_graph(tuple(candidate.values()))
        try:
            graph.topological_sort()
        except CycleError as exc:
            raise ConfigurationError(
                f"sequential-after dependencies of {changed.name!r} form a cycle: {exc}"
            ) from exc
        if not changed.scope.writes:
            return

        downstream = set(graph.reachable_from([changed.name]))
        for other in candidate.values():
            if other.name == changed.name or not other.scope.writes:
                continue
            # The sequential lane never runs two of its handlers at once.
            if not changed.concurrency.independent and not other.concurrency.independent:
                continue
            if other.name in downstream or changed.name in graph.reachable_from([other.name]):
                continue
            overlaps = changed.scope.write_overlaps(other.scope)
            if overlaps:
                raise ConfigurationError(
                    f"concurrent handlers {other.name!r} and {changed.name!r} "
                    f"have overlapping write scopes: {', '.join(overlaps)}"
                )


__all__ = ["CapabilityRegistry", "dependency_graph", "depends_on"]
