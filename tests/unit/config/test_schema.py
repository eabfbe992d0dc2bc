"""Config schema validation."""

from __future__ import annotations

import pytest

from capability_orchestrator.config import (
    ConfigValidationError,
    assert_valid_config,
    default_config,
    validate_config,
)
from capability_orchestrator.config.schema import apply_profile_overlay, merge_config, migration_guidance


def test_defaults_are_valid_and_deep_copied() -> None:
    config = default_config()
    assert validate_config(config).is_valid
    config["audit"]["protected_categories"].append("source")
    assert "source" not in default_config()["audit"]["protected_categories"]


def test_issues_are_collected_in_deterministic_order() -> None:
    config = merge_config(
        default_config(),
        {
            "executor": {"handler_timeout_seconds": 0, "max_concurrency": True},
            "audit": {"protected_categories": ["test", "binaries"]},
            "observability": {"log_level": "TRACE"},
        },
    )
    result = validate_config(config)

    assert not result.is_valid
    assert [issue.path for issue in result.issues] == [
        "executor.handler_timeout_seconds",
        "executor.max_concurrency",
        "audit.protected_categories[1]",
        "observability.log_level",
    ]


def test_cross_field_rules() -> None:
    config = merge_config(
        default_config(),
        {"audit": {"implemented_threshold": 0.3, "partial_threshold": 0.5, "active_window_days": 90}},
    )
    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(config)
    assert [issue.path for issue in excinfo.value.issues] == [
        "audit.partial_threshold",
        "audit.active_window_days",
    ]


def test_missing_sections_and_secret_keys() -> None:
    config = default_config()
    del config["dispatch"]  # type: ignore[misc]
    config["executor"]["api_token"] = "sk-123"  # type: ignore[typeddict-unknown-key]

    messages = {issue.path: issue.message for issue in validate_config(config).issues}
    assert messages["dispatch"] == "missing required section"
    assert "secret" in messages["executor.api_token"]
    assert validate_config(["not", "a", "mapping"]).issues[0].path == "<root>"


def test_schema_version_mismatch_gives_migration_guidance() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": 2}})
    (issue,) = validate_config(config).issues
    assert issue.path == "meta.schema_version"
    assert "newer" in issue.message
    assert "older" in migration_guidance(0)


def test_profile_rules() -> None:
    config = merge_config(
        default_config(),
        {"profiles": {"Bad Name": {}, "ok": {"meta": {"schema_version": 1}, "dispatch": {"max_follow_up_depth": -1}}}},
    )
    paths = [issue.path for issue in validate_config(config).issues]
    assert paths == [
        "profiles.Bad Name",
        "profiles.ok.meta",
        "profiles.ok.dispatch.max_follow_up_depth",
    ]


def test_profile_overlay_merges_and_revalidates() -> None:
    config = assert_valid_config(default_config())
    strict = apply_profile_overlay(config, "strict")
    assert strict["audit"]["partial_threshold"] == 0.4
    assert apply_profile_overlay(config, None) == config


def test_merge_replaces_lists() -> None:
    merged = merge_config({"a": {"b": [1, 2], "c": 1}}, {"a": {"b": [3]}})
    assert merged == {"a": {"b": [3], "c": 1}}
