"""
Keyword and path-overlap matching between requirements and artifacts.

The score of requirement ``r`` against artifact ``a`` is
``|T(r) & T(a)| / |T(r)|`` where ``T`` is the normalized token set. An
explicit ``requirement_ids`` link on the artifact is a full match.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from capability_orchestrator.domain.models import (
    ArtifactRecord,
    JSONValue,
    MatchScore,
    RequirementCoverage,
    RequirementRecord,
)

if TYPE_CHECKING:
    from capability_orchestrator.config.schema import AuditConfig

_CAMEL_BOUNDARY_RE: Final[re.Pattern[str]] = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_SPLIT_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9]+")
_MIN_TOKEN_LENGTH: Final[int] = 3
_SCORE_PRECISION: Final[int] = 4

STOPWORDS: Final[frozenset[str]] = frozenset(
    {
        "the", "and", "for", "with", "that", "this", "from", "into", "onto", "via",
        "are", "was", "were", "been", "being", "have", "has", "had", "not", "any",
        "all", "each", "every", "its", "their", "them", "they", "our", "your", "you",
        "can", "shall", "must", "should", "may", "could", "will", "would", "able",
        "want", "need", "needs", "so", "when", "then", "than", "also", "only",
        "system", "user", "users", "allow", "allows", "provide", "provides",
    }
)  # fmt: skip
PATH_NOISE: Final[frozenset[str]] = frozenset(
    {
        "src", "lib", "libs", "pkg", "app", "apps", "main", "index", "init",
        "mod", "module", "modules", "util", "utils", "helper", "helpers", "common",
        "core", "internal", "py", "pyi", "js", "ts", "tsx", "jsx", "go", "rs",
        "java", "kt", "rb", "cpp", "hpp", "cc", "h", "c",
    }
)  # fmt: skip


def _normalize_token(token: str) -> str:
    if token.endswith("ing") and len(token) - 3 >= 4:
        return token[:-3]
    if token.endswith("ed") and len(token) - 2 >= 4:
        return token[:-2]
    if token.endswith("ies") and len(token) > 4:
        return token[:-3] + "y"
    if token.endswith("s") and not token.endswith("ss") and len(token) > 3:
        return token[:-1]
    return token


def tokenize(text: str) -> frozenset[str]:
    """Split camelCase, snake_case, kebab-case, and path text into normalized tokens."""

    words: set[str] = set()
    for chunk in _SPLIT_RE.split(text):
        if not chunk:
            continue
        for part in _CAMEL_BOUNDARY_RE.split(chunk):
            lowered = part.lower()
            if len(lowered) < _MIN_TOKEN_LENGTH or lowered.isdigit():
                continue
            if lowered in STOPWORDS or lowered in PATH_NOISE:
                continue
            words.add(_normalize_token(lowered))
    return frozenset(words)


def requirement_tokens(requirement: RequirementRecord) -> frozenset[str]:
    return tokenize(requirement.description)


def artifact_tokens(artifact: ArtifactRecord) -> frozenset[str]:
    tokens = set(tokenize(artifact.path))
    for keyword in artifact.keywords:
        tokens.update(tokenize(keyword))
    return frozenset(tokens)


def overlap_score(requirement: Iterable[str], artifact: Iterable[str]) -> float:
    required = frozenset(requirement)
    if not required:
        return 0.0
    shared = required & frozenset(artifact)
    return round(len(shared) / len(required), _SCORE_PRECISION)


@dataclass(frozen=True, slots=True)
class MatchThresholds:
    implemented: float = 0.6
    partial: float = 0.3

    def __post_init__(self) -> None:
        if not 0.0 < self.partial <= self.implemented <= 1.0:
            raise ValueError("thresholds must satisfy 0 < partial <= implemented <= 1")

    @classmethod
    def from_config(cls, audit: AuditConfig) -> MatchThresholds:
        return cls(implemented=audit["implemented_threshold"], partial=audit["partial_threshold"])

    def grade(self, score: float) -> MatchScore:
        if score >= self.implemented:
            return MatchScore.EXACT
        if score >= self.partial:
            return MatchScore.PARTIAL
        return MatchScore.NONE

    def coverage(self, best_score: float) -> RequirementCoverage:
        grade = self.grade(best_score)
        if grade is MatchScore.EXACT:
            return RequirementCoverage.IMPLEMENTED
        if grade is MatchScore.PARTIAL:
            return RequirementCoverage.PARTIAL
        return RequirementCoverage.MISSING


@dataclass(frozen=True, slots=True)
class MatchEntry:
    requirement_id: str
    artifact_path: str
    score: float
    grade: MatchScore
    linked: bool = False

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "requirement_id": self.requirement_id,
            "artifact_path": self.artifact_path,
            "score": self.score,
            "grade": self.grade.value,
            "linked": self.linked,
        }


class HeuristicMatcher:
    """Scores requirement/artifact pairs; token sets are cached per record."""

    def __init__(self, thresholds: MatchThresholds | None = None) -> None:
        self._thresholds = thresholds or MatchThresholds()
        self._requirement_cache: dict[str, frozenset[str]] = {}
        self._artifact_cache: dict[str, frozenset[str]] = {}

    @property
    def thresholds(self) -> MatchThresholds:
        return self._thresholds

    def tokens_for_requirement(self, requirement: RequirementRecord) -> frozenset[str]:
        cached = self._requirement_cache.get(requirement.id)
        if cached is None:
            cached = requirement_tokens(requirement)
            self._requirement_cache[requirement.id] = cached
        return cached

    def tokens_for_artifact(self, artifact: ArtifactRecord) -> frozenset[str]:
        cached = self._artifact_cache.get(artifact.path)
        if cached is None:
            cached = artifact_tokens(artifact)
            self._artifact_cache[artifact.path] = cached
        return cached

    def score(self, requirement: RequirementRecord, artifact: ArtifactRecord) -> MatchEntry:
        if requirement.id in artifact.requirement_ids:
            return MatchEntry(requirement.id, artifact.path, 1.0, MatchScore.EXACT, linked=True)
        value = overlap_score(
            self.tokens_for_requirement(requirement), self.tokens_for_artifact(artifact)
        )
        return MatchEntry(requirement.id, artifact.path, value, self._thresholds.grade(value))

    def matrix(
        self,
        requirements: Sequence[RequirementRecord],
        artifacts: Sequence[ArtifactRecord],
    ) -> tuple[MatchEntry, ...]:
        """All pairs, ordered by requirement id then artifact path."""

        ordered_requirements = sorted(requirements, key=lambda item: item.id)
        ordered_artifacts = sorted(artifacts, key=lambda item: item.path)
        return tuple(
            self.score(requirement, artifact)
            for requirement in ordered_requirements
            for artifact in ordered_artifacts
        )


__all__ = [
    "PATH_NOISE",
    "STOPWORDS",
    "HeuristicMatcher",
    "MatchEntry",
    "MatchThresholds",
    "artifact_tokens",
    "overlap_score",
    "requirement_tokens",
    "tokenize",
]
