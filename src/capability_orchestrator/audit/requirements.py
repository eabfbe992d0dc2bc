"""
Requirements corpus parser.

Reads loosely structured markdown and extracts :class:`RequirementRecord`s from
``ID: text`` items, ``shall``/``must``/``should``/``may`` statements, user
stories ("As a ..., I want ...") and list items under feature or requirement
headings. Items under an exclusions / out-of-scope / non-goals heading are
parsed the same way but flagged ``excluded``.

Fenced code blocks and HTML comments are ignored: the corpus is data, never
instructions.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Final

from capability_orchestrator.domain import ids as domain_ids
from capability_orchestrator.domain.errors import OrchestratorError
from capability_orchestrator.domain.models import (
    RequirementKind,
    RequirementPriority,
    RequirementRecord,
)
from capability_orchestrator.utils.hashing import sha256_text

_ATX_HEADING_RE: Final[re.Pattern[str]] = re.compile(r"^\s{0,3}#{1,6}\s*(?P<text>.*?)\s*#*\s*$")
_SETEXT_UNDERLINE_RE: Final[re.Pattern[str]] = re.compile(r"^\s{0,3}(?:=+|-+)\s*$")
_LIST_ITEM_RE: Final[re.Pattern[str]] = re.compile(
    r"^(?P<indent>\s*)(?P<marker>[-*+]|\d+[.)])\s+(?:\[[ xX]\]\s+)?(?P<text>\S.*)$"
)
_FENCE_START_RE: Final[re.Pattern[str]] = re.compile(r"^[ ]{0,3}(?P<marker>`{3,}|~{3,}).*$")
_FENCE_CLOSE_RE: Final[re.Pattern[str]] = re.compile(r"^[ ]{0,3}(?P<marker>`{3,}|~{3,})\s*$")
_EXPLICIT_ID_RE: Final[re.Pattern[str]] = re.compile(
    r"^\**(?P<id>[A-Z][A-Z0-9_]*-\d+|[A-Z]{1,3}\d+)\**\s*[:.)\]-]\s*(?P<text>\S.*)$"
)
_USER_STORY_RE: Final[re.Pattern[str]] = re.compile(
    r"\bas an?\b.+?\bi (?:want|need|would like|can)\b", re.IGNORECASE
)
_MODAL_RE: Final[re.Pattern[str]] = re.compile(
    r"\b(?P<modal>shall|must|should|may|could)\b", re.IGNORECASE
)
_SENTENCE_SPLIT_RE: Final[re.Pattern[str]] = re.compile(r"(?<=[.!?])\s+(?=[A-Z])")

_PRIORITY_TAG_RES: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\[(?P<level>critical|high|medium|low)\]", re.IGNORECASE),
    re.compile(r"\((?P<level>critical|high|medium|low)(?: priority)?\)", re.IGNORECASE),
    re.compile(r"\bpriority\s*[:=]\s*(?P<level>critical|high|medium|low)\b", re.IGNORECASE),
    re.compile(r"[\[(]?\b(?P<level>P[0-3])\b[\])]?"),
)
_P_LEVELS: Final[dict[str, RequirementPriority]] = {
    "P0": RequirementPriority.CRITICAL,
    "P1": RequirementPriority.HIGH,
    "P2": RequirementPriority.MEDIUM,
    "P3": RequirementPriority.LOW,
}
_MODAL_PRIORITY: Final[dict[str, RequirementPriority]] = {
    "shall": RequirementPriority.HIGH,
    "must": RequirementPriority.HIGH,
    "should": RequirementPriority.MEDIUM,
    "may": RequirementPriority.LOW,
    "could": RequirementPriority.LOW,
}

_EXCLUSION_HEADING_TERMS: Final[tuple[str, ...]] = (
    "exclusion",
    "excluded",
    "out of scope",
    "out-of-scope",
    "non-goal",
    "non goal",
    "nongoal",
    "not in scope",
    "won't have",
    "wont have",
)
_LISTED_HEADING_TERMS: Final[tuple[str, ...]] = (
    "feature",
    "requirement",
    "capabilit",
    "user stor",
    "scope",
    "must have",
    "should have",
)


class SectionKind(StrEnum):
    GENERAL = "general"
    LISTED = "listed"
    EXCLUDED = "excluded"


class RequirementsParseError(OrchestratorError):
    """Corpus contradiction that cannot be resolved, e.g. one id with two texts."""

    def __init__(self, line: int, message: str) -> None:
        self.line = line
        super().__init__(f"line {line}: {message}")


@dataclass(frozen=True, slots=True)
class RequirementsCorpus:
    records: tuple[RequirementRecord, ...]
    digest: str

    @property
    def active(self) -> tuple[RequirementRecord, ...]:
        """Requirements that count toward coverage and confer scope."""
        return tuple(record for record in self.records if not record.excluded)

    @property
    def excluded(self) -> tuple[RequirementRecord, ...]:
        return tuple(record for record in self.records if record.excluded)

    @property
    def ids(self) -> frozenset[str]:
        return frozenset(record.id for record in self.records)

    def get(self, requirement_id: str) -> RequirementRecord | None:
        for record in self.records:
            if record.id == requirement_id:
                return record
        return None


@dataclass(slots=True)
class _Draft:
    explicit_id: str | None
    description: str
    priority: RequirementPriority
    excluded: bool
    kind: RequirementKind
    line: int


def classify_heading(text: str) -> SectionKind:
    lowered = re.sub(r"\s+", " ", text.strip().lower())
    if any(term in lowered for term in _EXCLUSION_HEADING_TERMS):
        return SectionKind.EXCLUDED
    if any(term in lowered for term in _LISTED_HEADING_TERMS):
        return SectionKind.LISTED
    return SectionKind.GENERAL


def parse_requirements(text: str) -> RequirementsCorpus:
    """Parse a requirements corpus into records in document order."""
    lines = _visible_lines(text.splitlines())
    drafts: list[_Draft] = []
    section = SectionKind.GENERAL
    paragraph: list[tuple[int, str]] = []

    def flush_paragraph() -> None:
        if paragraph:
            joined = " ".join(part for _, part in paragraph)
            first_line = paragraph[0][0]
            for sentence in _SENTENCE_SPLIT_RE.split(joined):
                draft = _draft_from_unit(sentence, first_line, section, listed=False)
                if draft is not None:
                    drafts.append(draft)
            paragraph.clear()

    index = 0
    while index < len(lines):
        line_number, current = lines[index]
        heading = _parse_heading(lines, index)
        if heading is not None:
            flush_paragraph()
            heading_text, consumed = heading
            section = classify_heading(heading_text)
            index += consumed
            continue

        if not current.strip():
            flush_paragraph()
            index += 1
            continue

        item = _LIST_ITEM_RE.match(current)
        if item is not None:
            flush_paragraph()
            draft = _draft_from_unit(item.group("text"), line_number, section, listed=True)
            if draft is not None:
                drafts.append(draft)
        else:
            paragraph.append((line_number, current.strip()))
        index += 1
    flush_paragraph()

    return RequirementsCorpus(records=_assign_ids(drafts), digest=sha256_text(text))


def load_requirements(path: str | Path) -> RequirementsCorpus:
    return parse_requirements(Path(path).read_text(encoding="utf-8"))


def _draft_from_unit(
    raw: str,
    line: int,
    section: SectionKind,
    *,
    listed: bool,
) -> _Draft | None:
    text = raw.strip().strip("*_").strip()
    if not text:
        return None

    explicit_id: str | None = None
    id_match = _EXPLICIT_ID_RE.match(text)
    if id_match is not None:
        explicit_id = id_match.group("id")
        text = id_match.group("text").strip()

    text, tagged_priority = _extract_priority_tag(text)
    if not text:
        return None

    modal = _MODAL_RE.search(text)
    is_story = _USER_STORY_RE.search(text) is not None
    is_candidate = (
        explicit_id is not None
        or is_story
        or modal is not None
        or (listed and section is not SectionKind.GENERAL)
    )
    if not is_candidate:
        return None

    if is_story:
        kind = RequirementKind.USER_STORY
    elif modal is None and listed:
        kind = RequirementKind.FEATURE
    else:
        kind = RequirementKind.STATEMENT

    if tagged_priority is not None:
        priority = tagged_priority
    elif modal is not None and not is_story:
        priority = _MODAL_PRIORITY[modal.group("modal").lower()]
    else:
        priority = RequirementPriority.MEDIUM

    return _Draft(
        explicit_id=explicit_id,
        description=text.rstrip(" ."),
        priority=priority,
        excluded=section is SectionKind.EXCLUDED,
        kind=kind,
        line=line,
    )


def _extract_priority_tag(text: str) -> tuple[str, RequirementPriority | None]:
    for pattern in _PRIORITY_TAG_RES:
        match = pattern.search(text)
        if match is None:
            continue
        level = match.group("level")
        priority = _P_LEVELS.get(level.upper()) or RequirementPriority(level.lower())
        stripped = (text[: match.start()] + text[match.end() :]).strip(" -:")
        return re.sub(r"\s{2,}", " ", stripped), priority
    return text, None


def _assign_ids(drafts: Sequence[_Draft]) -> tuple[RequirementRecord, ...]:
    explicit: dict[str, _Draft] = {}
    for draft in drafts:
        if draft.explicit_id is None:
            continue
        previous = explicit.get(draft.explicit_id)
        if previous is not None and previous.description != draft.description:
            raise RequirementsParseError(
                draft.line,
                f"requirement id {draft.explicit_id!r} already defined on line "
                f"{previous.line} with different text",
            )
        explicit.setdefault(draft.explicit_id, draft)

    taken = set(explicit)
    emitted: set[str] = set()
    records: list[RequirementRecord] = []
    sequence = 0
    for draft in drafts:
        if draft.explicit_id is not None:
            if draft.explicit_id in emitted:
                continue
            requirement_id = draft.explicit_id
        else:
            sequence += 1
            requirement_id = domain_ids.requirement_id(sequence)
            while requirement_id in taken:
                sequence += 1
                requirement_id = domain_ids.requirement_id(sequence)
        emitted.add(requirement_id)
        taken.add(requirement_id)
        records.append(
            RequirementRecord(
                id=requirement_id,
                description=draft.description,
                priority=draft.priority,
                excluded=draft.excluded,
                kind=draft.kind,
                line=draft.line,
            )
        )
    return tuple(records)


def _visible_lines(lines: Sequence[str]) -> list[tuple[int, str]]:
    visible: list[tuple[int, str]] = []
    fence: tuple[str, int] | None = None
    in_comment = False

    for number, raw_line in enumerate(lines, start=1):
        if fence is not None:
            close = _FENCE_CLOSE_RE.match(raw_line)
            if close is not None:
                marker = close.group("marker")
                if marker[0] == fence[0] and len(marker) >= fence[1]:
                    fence = None
            continue

        start = _FENCE_START_RE.match(raw_line)
        if start is not None and not in_comment:
            marker = start.group("marker")
            fence = (marker[0], len(marker))
            continue

        sanitized, in_comment = _strip_html_comments(raw_line, in_comment)
        visible.append((number, sanitized))
    return visible


def _strip_html_comments(line: str, in_comment: bool) -> tuple[str, bool]:
    output: list[str] = []
    cursor = 0
    while cursor < len(line):
        if in_comment:
            end = line.find("-->", cursor)
            if end < 0:
                return ("".join(output), True)
            cursor = end + 3
            in_comment = False
            continue
        start = line.find("<!--", cursor)
        if start < 0:
            output.append(line[cursor:])
            break
        output.append(line[cursor:start])
        cursor = start + 4
        in_comment = True
    return ("".join(output), in_comment)


def _parse_heading(lines: Sequence[tuple[int, str]], index: int) -> tuple[str, int] | None:
    current = lines[index][1]
    atx = _ATX_HEADING_RE.match(current)
    if atx is not None and current.lstrip().startswith("#"):
        text = atx.group("text").strip()
        if text:
            return (text, 1)
    if (
        index + 1 < len(lines)
        and current.strip()
        and _LIST_ITEM_RE.match(current) is None
        and _SETEXT_UNDERLINE_RE.match(lines[index + 1][1]) is not None
    ):
        return (current.strip(), 2)
    return None


__all__ = [
    "RequirementsCorpus",
    "RequirementsParseError",
    "SectionKind",
    "classify_heading",
    "load_requirements",
    "parse_requirements",
]
