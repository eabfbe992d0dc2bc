"""Inventory loading, recency bucketing, and category inference."""

from __future__ import annotations

from pathlib import Path

import pytest

from capability_orchestrator.audit.inventory import (
    InventoryError,
    RecencyWindows,
    infer_category,
    load_inventory,
    parse_inventory,
)
from capability_orchestrator.domain.models import ArtifactCategory, RecencyBucket


@pytest.mark.parametrize(
    ("days", "bucket"),
    [
        (0, RecencyBucket.RECENT),
        (29, RecencyBucket.RECENT),
        (30, RecencyBucket.ACTIVE),
        (89, RecencyBucket.ACTIVE),
        (90, RecencyBucket.STALE),
        (4000, RecencyBucket.STALE),
    ],
)
def test_default_recency_windows(days: int, bucket: RecencyBucket) -> None:
    assert RecencyWindows().bucket(days) is bucket


def test_recency_window_validation() -> None:
    with pytest.raises(ValueError):
        RecencyWindows(stale_window_days=30, active_window_days=30)
    with pytest.raises(ValueError):
        RecencyWindows(active_window_days=-1)
    with pytest.raises(ValueError):
        RecencyWindows().bucket(-1)
    windows = RecencyWindows.from_config({"stale_window_days": 10, "active_window_days": 2})  # type: ignore[typeddict-item]
    assert windows.bucket(5) is RecencyBucket.ACTIVE


@pytest.mark.parametrize(
    ("path", "category"),
    [
        ("pyproject.toml", ArtifactCategory.BUILD),
        (".github/workflows/ci.yml", ArtifactCategory.BUILD),
        ("tests/unit/test_export.py", ArtifactCategory.TEST),
        ("pkg/export_test.go", ArtifactCategory.TEST),
        ("web/app.spec.ts", ArtifactCategory.TEST),
        ("src/types.py", ArtifactCategory.TYPES),
        ("stubs/client.pyi", ArtifactCategory.TYPES),
        ("src/app_logging.py", ArtifactCategory.LOGGING),
        ("src/errors.py", ArtifactCategory.ERROR_HANDLING),
        ("README.md", ArtifactCategory.DOCUMENTATION),
        ("docs/guide.html", ArtifactCategory.DOCUMENTATION),
        ("config/settings.yaml", ArtifactCategory.CONFIG),
        ("src/export/file_exporter.py", ArtifactCategory.SOURCE),
    ],
)
def test_infer_category(path: str, category: ArtifactCategory) -> None:
    assert infer_category(path) is category


def test_parse_inventory_fields() -> None:
    records = parse_inventory(
        {
            "artifacts": [
                {
                    "path": "src\\export\\file_exporter.py",
                    "size": 120,
                    "days_since_modified": 3,
                    "reference_count": 2,
                    "keywords": "csv",
                    "requirement_ids": ["R1"],
                },
                {"path": "src/api/routes.py", "recency": "stale", "public": True},
                {"path": "src/errors.py", "category": "source"},
            ]
        }
    )

    exporter, routes, extra = records
    assert exporter.path == "src/export/file_exporter.py"
    assert exporter.recency is RecencyBucket.RECENT
    assert exporter.keywords == ("csv",)
    assert exporter.requirement_ids == ("R1",)
    assert routes.public_interface
    assert routes.recency is RecencyBucket.STALE
    assert extra.category is ArtifactCategory.SOURCE


@pytest.mark.parametrize(
    ("document", "message"),
    [
        ({"files": []}, "expected top-level sequence"),
        ([{"size": 1}], "missing required field 'path'"),
        ([{"path": "a.py", "owner": "x"}], "unexpected fields"),
        ([{"path": "a.py", "recency": "stale", "days_since_modified": 400}], "not both"),
        ([{"path": "a.py", "days_since_modified": "old"}], "expected integer"),
        ([{"path": "a.py", "reference_count": -1}], r"inventory\[0\]"),
        ([{"path": "a.py", "public": "yes"}], "expected boolean"),
        ([{"path": "a.py"}, {"path": "./a.py"}], "duplicate artifact path"),
        (["a.py"], "expected mapping"),
    ],
)
def test_parse_inventory_rejects_bad_descriptors(document: object, message: str) -> None:
    with pytest.raises(InventoryError, match=message):
        parse_inventory(document)


def test_load_inventory_yaml_and_json(tmp_path: Path) -> None:
    yaml_path = tmp_path / "inventory.yaml"
    yaml_path.write_text(
        "- path: src/export.py\n  reference_count: 1\n- path: docs/old.md\n  days_since_modified: 365\n",
        encoding="utf-8",
    )
    json_path = tmp_path / "inventory.json"
    json_path.write_text('[{"path": "src/export.py", "keywords": ["csv"]}]', encoding="utf-8")

    yaml_records = load_inventory(yaml_path)
    assert [record.path for record in yaml_records] == ["src/export.py", "docs/old.md"]
    assert yaml_records[1].recency is RecencyBucket.STALE
    assert yaml_records[1].category is ArtifactCategory.DOCUMENTATION
    assert load_inventory(json_path)[0].keywords == ("csv",)

    broken = tmp_path / "broken.yaml"
    broken.write_text("- path: [unclosed\n", encoding="utf-8")
    with pytest.raises(InventoryError, match="invalid YAML"):
        load_inventory(broken)
