"""Typed trigger predicates over work-item attributes.

Every matcher returns a :class:`MatchScore`. A trigger fires when the score is
``EXACT`` or ``PARTIAL``; the distinction is kept for diagnostics and for
composing matchers.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from capability_orchestrator.domain.models import CapabilityCategory, MatchScore, WorkItem

if TYPE_CHECKING:
    from capability_orchestrator.domain.models import Trigger

_WORD_RE = re.compile(r"[a-z0-9]+")
_TRIGGER_KEYS = frozenset({"categories", "stages", "keywords", "payload_keys", "always"})


def payload_words(work_item: WorkItem) -> frozenset[str]:
    """Lowercase words found in every string value of the payload, recursively."""
    words: set[str] = set()
    _collect_words(work_item.payload, words)
    return frozenset(words)


def _collect_words(value: object, sink: set[str]) -> None:
    if isinstance(value, str):
        sink.update(_WORD_RE.findall(value.lower()))
    elif isinstance(value, Mapping):
        for item in value.values():
            _collect_words(item, sink)
    elif isinstance(value, tuple | list):
        for item in value:
            _collect_words(item, sink)


@dataclass(frozen=True, slots=True)
class CategoryIs:
    categories: frozenset[CapabilityCategory]

    def __call__(self, work_item: WorkItem) -> MatchScore:
        if work_item.category_hint in self.categories:
            return MatchScore.EXACT
        return MatchScore.NONE


@dataclass(frozen=True, slots=True)
class StageIs:
    stages: frozenset[str]

    def __call__(self, work_item: WorkItem) -> MatchScore:
        if work_item.originating_stage in self.stages:
            return MatchScore.EXACT
        return MatchScore.NONE


@dataclass(frozen=True, slots=True)
class PayloadHasKeys:
    keys: frozenset[str]

    def __call__(self, work_item: WorkItem) -> MatchScore:
        present = self.keys & set(work_item.payload)
        if present == self.keys:
            return MatchScore.EXACT
        return MatchScore.PARTIAL if present else MatchScore.NONE


@dataclass(frozen=True, slots=True)
class TextMentions:
    """Keyword hits in payload text: all keywords -> EXACT, some -> PARTIAL."""

    keywords: frozenset[str]

    def __call__(self, work_item: WorkItem) -> MatchScore:
        hits = self.keywords & payload_words(work_item)
        if not hits:
            return MatchScore.NONE
        return MatchScore.EXACT if hits == self.keywords else MatchScore.PARTIAL


@dataclass(frozen=True, slots=True)
class AllOf:
    """Conjunction; EXACT only when every part is EXACT."""

    parts: tuple[Trigger, ...]

    def __call__(self, work_item: WorkItem) -> MatchScore:
        scores = [part(work_item) for part in self.parts]
        if any(score is MatchScore.NONE for score in scores):
            return MatchScore.NONE
        if all(score is MatchScore.EXACT for score in scores):
            return MatchScore.EXACT
        return MatchScore.PARTIAL


@dataclass(frozen=True, slots=True)
class AnyOf:
    """Disjunction; the best score among the parts."""

    parts: tuple[Trigger, ...]

    def __call__(self, work_item: WorkItem) -> MatchScore:
        best = MatchScore.NONE
        for part in self.parts:
            score = part(work_item)
            if score is MatchScore.EXACT:
                return score
            if score is MatchScore.PARTIAL:
                best = score
        return best


@dataclass(frozen=True, slots=True)
class Always:
    def __call__(self, work_item: WorkItem) -> MatchScore:
        return MatchScore.EXACT


def category_is(*categories: CapabilityCategory | str) -> CategoryIs:
    if not categories:
        raise ValueError("category_is requires at least one category")
    return CategoryIs(frozenset(CapabilityCategory(item) for item in categories))


def stage_is(*stages: str) -> StageIs:
    if not stages:
        raise ValueError("stage_is requires at least one stage")
    return StageIs(frozenset(stage.strip().lower() for stage in stages))


def payload_has_keys(*keys: str) -> PayloadHasKeys:
    if not keys:
        raise ValueError("payload_has_keys requires at least one key")
    return PayloadHasKeys(frozenset(keys))


def text_mentions(*keywords: str) -> TextMentions:
    normalized = frozenset(word.lower() for item in keywords for word in _WORD_RE.findall(item.lower()))
    if not normalized:
        raise ValueError("text_mentions requires at least one keyword")
    return TextMentions(normalized)


def all_of(*parts: Trigger) -> AllOf:
    return AllOf(tuple(parts))


def any_of(*parts: Trigger) -> AnyOf:
    return AnyOf(tuple(parts))


def always() -> Always:
    return Always()


def trigger_from_mapping(table: Mapping[str, object]) -> Trigger:
    """Build a trigger from a catalog ``trigger`` table.

    Category and stage criteria are each a disjunction; keyword and payload-key
    criteria are scored; all present criteria must match. A table with no
    criteria is rejected unless ``always = true``.
    """
    unknown = sorted(set(table) - _TRIGGER_KEYS)
    if unknown:
        raise ValueError(f"trigger: unknown keys {unknown}")
    if table.get("always") is True:
        return always()

    parts: list[Trigger] = []
    if categories := _strings(table.get("categories"), "trigger.categories"):
        parts.append(category_is(*categories))
    if stages := _strings(table.get("stages"), "trigger.stages"):
        parts.append(stage_is(*stages))
    if keywords := _strings(table.get("keywords"), "trigger.keywords"):
        parts.append(text_mentions(*keywords))
    if payload_keys := _strings(table.get("payload_keys"), "trigger.payload_keys"):
        parts.append(payload_has_keys(*payload_keys))

    if not parts:
        raise ValueError("trigger: at least one criterion is required")
    if len(parts) == 1:
        return parts[0]
    return all_of(*parts)


def _strings(value: object, path: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, Iterable):
        raise ValueError(f"{path}: expected string or array")
    items = tuple(value)
    for item in items:
        if not isinstance(item, str) or not item.strip():
            raise ValueError(f"{path}: entries must be non-empty strings")
    return items


__all__ = [
    "AllOf",
    "Always",
    "AnyOf",
    "CategoryIs",
    "PayloadHasKeys",
    "StageIs",
    "TextMentions",
    "all_of",
    "always",
    "any_of",
    "category_is",
    "payload_has_keys",
    "payload_words",
    "stage_is",
    "text_mentions",
    "trigger_from_mapping",
]
