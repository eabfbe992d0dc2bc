"""Tokenization and requirement/artifact match scoring."""

from __future__ import annotations

import pytest

from capability_orchestrator.audit.matching import (
    HeuristicMatcher,
    MatchThresholds,
    artifact_tokens,
    overlap_score,
    tokenize,
)
from capability_orchestrator.domain.models import (
    ArtifactRecord,
    MatchScore,
    RequirementCoverage,
    RequirementRecord,
)


@pytest.mark.parametrize(
    ("text", "tokens"),
    [
        ("exportFileWriter", {"export", "file", "writer"}),
        ("src/export/file_exporter.py", {"export", "file", "exporter"}),
        ("HTTPServer", {"http", "server"}),
        ("The system shall export reports", {"export", "report"}),
        ("caching layer cached", {"cach", "layer"}),
        ("libraries v2 2024 class", {"library", "class"}),
        ("", set()),
    ],
)
def test_tokenize(text: str, tokens: set[str]) -> None:
    assert tokenize(text) == frozenset(tokens)


def test_artifact_tokens_include_keywords() -> None:
    artifact = ArtifactRecord(path="src/io/writer.py", keywords=("CSV export",))
    assert artifact_tokens(artifact) == frozenset({"writer", "csv", "export"})


def test_overlap_score() -> None:
    assert overlap_score({"a1", "b1", "c1", "d1"}, {"a1", "b1", "zz"}) == 0.5
    assert overlap_score({"a1", "b1", "c1"}, {"a1"}) == 0.3333
    assert overlap_score(set(), {"a1"}) == 0.0


def test_thresholds_grade_and_coverage() -> None:
    thresholds = MatchThresholds()
    assert thresholds.grade(0.6) is MatchScore.EXACT
    assert thresholds.grade(0.3) is MatchScore.PARTIAL
    assert thresholds.grade(0.29) is MatchScore.NONE
    assert thresholds.coverage(1.0) is RequirementCoverage.IMPLEMENTED
    assert thresholds.coverage(0.5) is RequirementCoverage.PARTIAL
    assert thresholds.coverage(0.0) is RequirementCoverage.MISSING

    with pytest.raises(ValueError):
        MatchThresholds(implemented=0.3, partial=0.6)
    with pytest.raises(ValueError):
        MatchThresholds(partial=0.0)
    custom = MatchThresholds.from_config({"implemented_threshold": 0.9, "partial_threshold": 0.5})  # type: ignore[typeddict-item]
    assert custom.grade(0.6) is MatchScore.PARTIAL


def test_explicit_link_is_a_full_match() -> None:
    matcher = HeuristicMatcher()
    requirement = RequirementRecord(id="R1", description="Quarterly tax reconciliation")
    linked = ArtifactRecord(path="src/unrelated.py", requirement_ids=("R1",))

    entry = matcher.score(requirement, linked)
    assert (entry.score, entry.grade, entry.linked) == (1.0, MatchScore.EXACT, True)


def test_matrix_is_ordered_by_requirement_then_path() -> None:
    matcher = HeuristicMatcher()
    requirements = [
        RequirementRecord(id="R2", description="Export reports to file archive"),
        RequirementRecord(id="R1", description="Export to file"),
    ]
    artifacts = [
        ArtifactRecord(path="src/z_export/file_exporter.py"),
        ArtifactRecord(path="src/admin-dashboard.py"),
    ]

    entries = matcher.matrix(requirements, artifacts)

    assert [(entry.requirement_id, entry.artifact_path) for entry in entries] == [
        ("R1", "src/admin-dashboard.py"),
        ("R1", "src/z_export/file_exporter.py"),
        ("R2", "src/admin-dashboard.py"),
        ("R2", "src/z_export/file_exporter.py"),
    ]
    assert [entry.score for entry in entries] == [0.0, 1.0, 0.0, 0.5]
    assert entries[3].grade is MatchScore.PARTIAL
    assert entries[1].to_dict()["grade"] == "exact"
