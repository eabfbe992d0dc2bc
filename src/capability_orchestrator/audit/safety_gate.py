"""Deletion safety gate: conjunction of four independent conditions."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING

from capability_orchestrator.domain.models import (
    PROTECTED_ARTIFACT_CATEGORIES,
    ArtifactCategory,
    ArtifactRecord,
    JSONValue,
    RecencyBucket,
)

if TYPE_CHECKING:
    from capability_orchestrator.config.schema import AuditConfig


class SafetyCondition(StrEnum):
    UNREFERENCED = "unreferenced"
    STALE = "stale"
    UNPROTECTED = "unprotected"
    NOT_PUBLIC = "not_public_interface"


@dataclass(frozen=True, slots=True)
class SafetyVerdict:
    path: str
    failed_conditions: tuple[SafetyCondition, ...] = ()

    @property
    def safe(self) -> bool:
        return not self.failed_conditions

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "path": self.path,
            "safe": self.safe,
            "failed_conditions": [condition.value for condition in self.failed_conditions],
        }


@dataclass(frozen=True, slots=True)
class SafetyGate:
    """Decides whether an artifact may be removed in the first deletion phase.

    All of: zero inbound references, stale recency, a category outside the
    protected set, and not a public interface (explicit flag or a configured
    glob pattern). Failing conditions are reported in declaration order.
    """

    protected_categories: frozenset[ArtifactCategory] = PROTECTED_ARTIFACT_CATEGORIES
    public_interface_patterns: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "protected_categories",
            frozenset(ArtifactCategory(item) for item in self.protected_categories),
        )
        object.__setattr__(self, "public_interface_patterns", tuple(self.public_interface_patterns))

    @classmethod
    def from_config(cls, audit: AuditConfig) -> SafetyGate:
        return cls(
            protected_categories=frozenset(
                ArtifactCategory(item) for item in audit["protected_categories"]
            ),
            public_interface_patterns=tuple(audit["public_interface_patterns"]),
        )

    def is_public(self, artifact: ArtifactRecord) -> bool:
        if artifact.public_interface:
            return True
        return _matches_any(artifact.path, self.public_interface_patterns)

    def is_protected(self, artifact: ArtifactRecord) -> bool:
        return artifact.category in self.protected_categories

    def evaluate(self, artifact: ArtifactRecord) -> SafetyVerdict:
        failed: list[SafetyCondition] = []
        if artifact.reference_count != 0:
            failed.append(SafetyCondition.UNREFERENCED)
        if artifact.recency is not RecencyBucket.STALE:
            failed.append(SafetyCondition.STALE)
        if self.is_protected(artifact):
            failed.append(SafetyCondition.UNPROTECTED)
        if self.is_public(artifact):
            failed.append(SafetyCondition.NOT_PUBLIC)
        return SafetyVerdict(artifact.path, tuple(failed))

    def is_safe_to_delete(self, artifact: ArtifactRecord) -> bool:
        return self.evaluate(artifact).safe


def _matches_any(path: str, patterns: Iterable[str]) -> bool:
    # Leading slash lets "**/x" patterns match top-level paths.
    candidates = (path, f"/{path}")
    return any(fnmatchcase(candidate, pattern) for pattern in patterns for candidate in candidates)


__all__ = ["SafetyCondition", "SafetyGate", "SafetyVerdict"]
