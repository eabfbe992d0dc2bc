"""Router: evaluate every trigger and return matching handlers in registration order."""

from __future__ import annotations

from typing import Any

import structlog

from capability_orchestrator.domain.errors import DispatchError
from capability_orchestrator.domain.models import CapabilityHandler, MatchScore, WorkItem
from capability_orchestrator.routing.registry import CapabilityRegistry


class Router:
    """Multi-dispatch router. Zero matches is a valid outcome, not an error."""

    def __init__(self, registry: CapabilityRegistry, *, logger: Any | None = None) -> None:
        self._registry = registry
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    def scores(self, work_item: WorkItem) -> tuple[tuple[CapabilityHandler, MatchScore], ...]:
        """Every registered handler with its trigger score, in registration order."""
        validate_work_item(work_item)
        scored: list[tuple[CapabilityHandler, MatchScore]] = []
        for handler in self._registry.handlers:
            try:
                score = handler.score(work_item)
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                raise DispatchError(
                    f"trigger of {handler.name!r} rejected work item {work_item.id!r}: {exc}"
                ) from exc
            if not isinstance(score, MatchScore):
                raise DispatchError(
                    f"trigger of {handler.name!r} returned {type(score).__name__}, "
                    "expected MatchScore"
                )
            scored.append((handler, score))
        return tuple(scored)

    def route(self, work_item: WorkItem) -> tuple[CapabilityHandler, ...]:
        matches = tuple(handler for handler, score in self.scores(work_item) if score.matched)
        self._logger.info(
            "work_item_routed",
            work_item_id=work_item.id,
            category_hint=work_item.category_hint.value if work_item.category_hint else None,
            stage=work_item.originating_stage,
            matched=[handler.name for handler in matches],
        )
        return matches


def validate_work_item(work_item: object) -> WorkItem:
    """Reject anything the router cannot evaluate triggers against."""
    if not isinstance(work_item, WorkItem):
        raise DispatchError(f"expected WorkItem, got {type(work_item).__name__}")
    return work_item


__all__ = ["Router", "validate_work_item"]
