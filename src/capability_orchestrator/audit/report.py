"""
Audit report model and append-only ledger.

``AuditReport.to_json()`` is canonical JSON (sorted keys, compact separators)
and carries no wall-clock data, so identical inputs produce byte-identical
output. The content digest is computed over the same bytes minus the digest
field itself.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final, TypeAlias

from capability_orchestrator.constants import AUDIT_REPORT_SCHEMA_VERSION
from capability_orchestrator.domain.models import (
    ArtifactScope,
    DeletionPhase,
    JSONValue,
    RequirementCoverage,
    RequirementPriority,
    canonical_json,
)
from capability_orchestrator.utils.fs import atomic_write
from capability_orchestrator.utils.hashing import sha256_text

PathLike: TypeAlias = str | os.PathLike[str]

PHASE_ORDER: Final[dict[DeletionPhase, int]] = {
    DeletionPhase.PHASE_1: 0,
    DeletionPhase.PHASE_2: 1,
    DeletionPhase.RETAIN: 2,
}


@dataclass(frozen=True, slots=True)
class RequirementFinding:
    requirement_id: str
    description: str
    priority: RequirementPriority
    coverage: RequirementCoverage
    best_score: float
    matched_paths: tuple[str, ...] = ()

    @property
    def is_gap(self) -> bool:
        return self.coverage is not RequirementCoverage.IMPLEMENTED

    def sort_key(self) -> tuple[int, str]:
        return (-self.priority.rank, self.requirement_id)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "requirement_id": self.requirement_id,
            "description": self.description,
            "priority": self.priority.value,
            "coverage": self.coverage.value,
            "best_score": self.best_score,
            "matched_paths": list(self.matched_paths),
        }


@dataclass(frozen=True, slots=True)
class ArtifactFinding:
    path: str
    scope: ArtifactScope
    phase: DeletionPhase
    best_score: float = 0.0
    matched_requirement_ids: tuple[str, ...] = ()
    failed_conditions: tuple[str, ...] = ()
    reference_count: int = 0

    def sort_key(self) -> tuple[int, str]:
        return (PHASE_ORDER[self.phase], self.path)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "path": self.path,
            "scope": self.scope.value,
            "phase": self.phase.value,
            "best_score": self.best_score,
            "matched_requirement_ids": list(self.matched_requirement_ids),
            "failed_conditions": list(self.failed_conditions),
            "reference_count": self.reference_count,
        }


@dataclass(frozen=True, slots=True, order=True)
class DependencyNote:
    path: str
    note: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"path": self.path, "note": self.note}


@dataclass(frozen=True, slots=True, order=True)
class InconsistencyRecord:
    path: str
    message: str

    def to_dict(self) -> dict[str, JSONValue]:
        return {"path": self.path, "message": self.message}


@dataclass(frozen=True, slots=True)
class AuditReport:
    """Immutable outcome of one audit run."""

    coverage_percent: float
    requirements: tuple[RequirementFinding, ...]
    artifacts: tuple[ArtifactFinding, ...]
    dependency_notes: tuple[DependencyNote, ...] = ()
    inconsistencies: tuple[InconsistencyRecord, ...] = ()
    excluded_requirement_ids: tuple[str, ...] = ()
    requirements_digest: str = ""
    inventory_digest: str = ""
    thresholds: tuple[float, float] = (0.6, 0.3)
    schema_version: int = AUDIT_REPORT_SCHEMA_VERSION
    digest: str = field(init=False, default="")

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "requirements", tuple(sorted(self.requirements, key=lambda item: item.requirement_id))
        )
        object.__setattr__(self, "artifacts", tuple(sorted(self.artifacts, key=lambda item: item.path)))
        object.__setattr__(self, "dependency_notes", tuple(sorted(self.dependency_notes)))
        object.__setattr__(self, "inconsistencies", tuple(sorted(self.inconsistencies)))
        object.__setattr__(
            self, "excluded_requirement_ids", tuple(sorted(self.excluded_requirement_ids))
        )
        object.__setattr__(self, "digest", sha256_text(canonical_json(self._body())))

    @property
    def gaps(self) -> tuple[RequirementFinding, ...]:
        """Missing and partial requirements, highest priority first, then by id."""
        return tuple(sorted((item for item in self.requirements if item.is_gap), key=RequirementFinding.sort_key))

    @property
    def overages(self) -> tuple[ArtifactFinding, ...]:
        """Out-of-scope artifacts ordered by deletion phase, then path."""
        return tuple(
            sorted(
                (item for item in self.artifacts if item.scope is ArtifactScope.OUT_OF_SCOPE),
                key=ArtifactFinding.sort_key,
            )
        )

    @property
    def phase_1(self) -> tuple[str, ...]:
        return self._paths_in(DeletionPhase.PHASE_1)

    @property
    def phase_2(self) -> tuple[str, ...]:
        return self._paths_in(DeletionPhase.PHASE_2)

    @property
    def uncertain(self) -> tuple[str, ...]:
        return tuple(item.path for item in self.artifacts if item.scope is ArtifactScope.UNCERTAIN)

    def requirement(self, requirement_id: str) -> RequirementFinding:
        for item in self.requirements:
            if item.requirement_id == requirement_id:
                return item
        raise KeyError(requirement_id)

    def artifact(self, path: str) -> ArtifactFinding:
        for item in self.artifacts:
            if item.path == path:
                return item
        raise KeyError(path)

    def to_dict(self) -> dict[str, JSONValue]:
        payload = self._body()
        payload["digest"] = self.digest
        return payload

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    def write(self, path: PathLike) -> Path:
        return atomic_write(path, self.to_json() + "\n")

    def _paths_in(self, phase: DeletionPhase) -> tuple[str, ...]:
        return tuple(item.path for item in self.artifacts if item.phase is phase)

    def _body(self) -> dict[str, JSONValue]:
        implemented, partial = self.thresholds
        return {
            "schema_version": self.schema_version,
            "coverage_percent": self.coverage_percent,
            "thresholds": {"implemented": implemented, "partial": partial},
            "requirements_digest": self.requirements_digest,
            "inventory_digest": self.inventory_digest,
            "requirements": [item.to_dict() for item in self.requirements],
            "excluded_requirement_ids": list(self.excluded_requirement_ids),
            "artifacts": [item.to_dict() for item in self.artifacts],
            "gaps": [item.requirement_id for item in self.gaps],
            "overages": [
                {"path": item.path, "phase": item.phase.value} for item in self.overages
            ],
            "dependency_notes": [item.to_dict() for item in self.dependency_notes],
            "inconsistencies": [item.to_dict() for item in self.inconsistencies],
        }


class AuditLedger:
    """Append-only sequence of audit reports, optionally mirrored to a JSON-lines file."""

    __slots__ = ("_path", "_reports")

    def __init__(self, path: PathLike | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._reports: list[AuditReport] = []

    @property
    def path(self) -> Path | None:
        return self._path

    def append(self, report: AuditReport) -> int:
        """Record ``report`` and return its zero-based sequence number."""

        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(report.to_json() + "\n")
        self._reports.append(report)
        return len(self._reports) - 1

    @property
    def reports(self) -> tuple[AuditReport, ...]:
        return tuple(self._reports)

    @property
    def latest(self) -> AuditReport | None:
        return self._reports[-1] if self._reports else None

    def digests(self) -> tuple[str, ...]:
        return tuple(report.digest for report in self._reports)

    def __len__(self) -> int:
        return len(self._reports)

    def __iter__(self) -> Iterator[AuditReport]:
        return iter(tuple(self._reports))

    @staticmethod
    def read_digests(path: PathLike) -> tuple[str, ...]:
        """Digests of reports previously appended to a ledger file, in order."""

        entries: list[str] = []
        with Path(path).open("r", encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError as exc:
                    raise ValueError(f"{path}:{line_number}: invalid ledger entry") from exc
                entries.append(str(payload["digest"]))
        return tuple(entries)


def coverage_percent(findings: Sequence[RequirementFinding]) -> float:
    if not findings:
        return 100.0
    implemented = sum(1 for item in findings if item.coverage is RequirementCoverage.IMPLEMENTED)
    return round(100.0 * implemented / len(findings), 2)


__all__ = [
    "PHASE_ORDER",
    "ArtifactFinding",
    "AuditLedger",
    "AuditReport",
    "DependencyNote",
    "InconsistencyRecord",
    "RequirementFinding",
    "coverage_percent",
]
