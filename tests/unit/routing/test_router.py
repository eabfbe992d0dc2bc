"""Router tests: multi-dispatch, registration order, malformed input."""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from structlog.testing import capture_logs

from capability_orchestrator.domain.errors import DispatchError
from capability_orchestrator.domain.models import (
    CapabilityCategory,
    CapabilityHandler,
    HandlerResult,
    MatchScore,
    WorkItem,
)
from capability_orchestrator.routing import CapabilityRegistry, Router, category_is, text_mentions

CATEGORIES = tuple(CapabilityCategory)


class _Noop:
    def invoke(self, work_item: WorkItem) -> HandlerResult:
        return HandlerResult.success()


def _handler(name: str, trigger: object, category: str = "review") -> CapabilityHandler:
    return CapabilityHandler(
        name=name,
        category=category,  # type: ignore[arg-type]
        trigger=trigger,  # type: ignore[arg-type]
        provider=_Noop(),
    )


def test_route_returns_every_match_in_registration_order() -> None:
    registry = CapabilityRegistry(
        [
            _handler("security-scan", category_is("security"), "security"),
            _handler("style", text_mentions("style")),
            _handler("reviewer", category_is("review", "security")),
        ]
    )
    router = Router(registry)
    item = WorkItem(payload={"task": "check style"}, category_hint="security")

    with capture_logs() as logs:
        matches = router.route(item)

    assert [handler.name for handler in matches] == ["security-scan", "style", "reviewer"]
    routed = [entry for entry in logs if entry["event"] == "work_item_routed"]
    assert routed[0]["matched"] == ["security-scan", "style", "reviewer"]
    assert routed[0]["work_item_id"] == item.id


def test_zero_matches_is_not_an_error() -> None:
    router = Router(CapabilityRegistry([_handler("docs", category_is("documentation"))]))
    assert router.route(WorkItem(category_hint="testing")) == ()


def test_scores_report_every_handler() -> None:
    registry = CapabilityRegistry(
        [
            _handler("a", text_mentions("lint", "format")),
            _handler("b", category_is("testing")),
        ]
    )
    scores = Router(registry).scores(WorkItem(payload={"t": "lint"}))
    assert [(handler.name, score) for handler, score in scores] == [
        ("a", MatchScore.PARTIAL),
        ("b", MatchScore.NONE),
    ]


def test_non_work_item_is_rejected_before_triggers_run() -> None:
    calls: list[object] = []

    def trigger(item: WorkItem) -> MatchScore:
        calls.append(item)
        return MatchScore.EXACT

    router = Router(CapabilityRegistry([_handler("a", trigger)]))
    with pytest.raises(DispatchError, match="expected WorkItem"):
        router.route({"payload": {}})  # type: ignore[arg-type]
    assert calls == []


def test_trigger_that_cannot_read_the_item_raises_dispatch_error() -> None:
    def needs_target(item: WorkItem) -> MatchScore:
        return MatchScore.EXACT if item.payload["target"] else MatchScore.NONE

    router = Router(CapabilityRegistry([_handler("needs-target", needs_target)]))
    with pytest.raises(DispatchError, match="needs-target"):
        router.route(WorkItem(payload={}))


def test_trigger_returning_wrong_type_raises_dispatch_error() -> None:
    router = Router(CapabilityRegistry([_handler("truthy", lambda item: True)]))
    with pytest.raises(DispatchError, match="expected MatchScore"):
        router.route(WorkItem())


@settings(max_examples=60, deadline=None)
@given(
    handler_categories=st.lists(
        st.sets(st.sampled_from(CATEGORIES), min_size=1, max_size=3),
        min_size=0,
        max_size=8,
    ),
    hint=st.none() | st.sampled_from(CATEGORIES),
)
def test_route_is_exactly_the_matching_subset(
    handler_categories: list[set[CapabilityCategory]],
    hint: CapabilityCategory | None,
) -> None:
    handlers = [
        _handler(f"handler-{index}", category_is(*categories))
        for index, categories in enumerate(handler_categories)
    ]
    router = Router(CapabilityRegistry(handlers))

    matches = router.route(WorkItem(category_hint=hint))

    expected = [
        f"handler-{index}"
        for index, categories in enumerate(handler_categories)
        if hint in categories
    ]
    assert [handler.name for handler in matches] == expected
