"""Config loading: defaults, TOML file, profiles, env and CLI overrides."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from capability_orchestrator.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from capability_orchestrator.config.loader import env_name_for_path


def _write_config(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def test_precedence_default_file_env_cli(tmp_path: Path) -> None:
    empty = _write_config(tmp_path / "empty.toml", "")
    config_path = _write_config(
        tmp_path / "orchestrator.toml",
        "[executor]\nhandler_timeout_seconds = 12.0\n",
    )
    env = {"CAPO_EXECUTOR_HANDLER_TIMEOUT_SECONDS": "9"}

    assert load_config(empty, environ={})["executor"]["handler_timeout_seconds"] == 30.0
    assert load_config(config_path, environ={})["executor"]["handler_timeout_seconds"] == 12.0
    assert load_config(config_path, environ=env)["executor"]["handler_timeout_seconds"] == 9.0
    cli_loaded = load_config(
        config_path,
        environ=env,
        cli_overrides={"executor.handler_timeout_seconds": 4},
    )
    assert cli_loaded["executor"]["handler_timeout_seconds"] == 4.0


def test_env_coercion_by_default_value_type(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "orchestrator.toml", "")
    loaded = load_config(
        config_path,
        environ={
            "CAPO_EXECUTOR_MAX_CONCURRENCY": "3",
            "CAPO_OBSERVABILITY_LOG_TO_STDOUT": "yes",
            "CAPO_AUDIT_PROTECTED_CATEGORIES": "test, build",
            "CAPO_OBSERVABILITY_LOG_LEVEL": "DEBUG",
            "CAPO_UNRELATED": "ignored",
        },
    )
    assert loaded["executor"]["max_concurrency"] == 3
    assert loaded["observability"]["log_to_stdout"] is True
    assert loaded["audit"]["protected_categories"] == ["build", "test"]
    assert loaded["observability"]["log_level"] == "DEBUG"
    assert env_name_for_path(("dispatch", "max_follow_up_depth")) == "CAPO_DISPATCH_MAX_FOLLOW_UP_DEPTH"


@pytest.mark.parametrize(
    ("env", "message"),
    [
        ({"CAPO_EXECUTOR_MAX_CONCURRENCY": "many"}, "must be an integer"),
        ({"CAPO_AUDIT_PARTIAL_THRESHOLD": "lots"}, "must be a number"),
        ({"CAPO_OBSERVABILITY_REDACT_SECRETS": "maybe"}, "must be a boolean"),
    ],
)
def test_env_coercion_errors(tmp_path: Path, env: dict[str, str], message: str) -> None:
    config_path = _write_config(tmp_path / "orchestrator.toml", "")
    with pytest.raises(ConfigLoadError, match=message):
        load_config(config_path, environ=env)


def test_profiles_apply_between_file_and_env(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "orchestrator.toml",
        "[audit]\nimplemented_threshold = 0.65\n\n"
        "[profiles.nightly.executor]\nmax_concurrency = 1\n",
    )

    strict = load_config(config_path, profile="strict")
    assert strict["audit"]["implemented_threshold"] == 0.75
    assert strict["executor"]["handler_timeout_seconds"] == 15.0

    from_env = load_config(config_path, environ={"CAPO_PROFILE": "permissive"})
    assert from_env["audit"]["stale_window_days"] == 60

    custom = load_config(
        config_path,
        cli_overrides={"profile": "nightly"},
        environ={"CAPO_EXECUTOR_MAX_CONCURRENCY": "2"},
    )
    assert custom["executor"]["max_concurrency"] == 2
    assert custom["audit"]["implemented_threshold"] == 0.65

    with pytest.raises(ConfigValidationError, match="not defined"):
        load_config(config_path, profile="weekend")


def test_paths_resolve_relative_to_config_file(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "project" / "orchestrator.toml",
        '[paths]\ncatalog = "conf/handlers.toml"\nreports_dir = "/var/tmp/capo-reports/"\n',
    )
    loaded = load_config(config_path)
    base = (tmp_path / "project").resolve().as_posix()
    assert loaded["paths"]["catalog"] == f"{base}/conf/handlers.toml"
    assert loaded["paths"]["reports_dir"] == "/var/tmp/capo-reports"
    assert loaded["observability"]["log_dir"] == f"{base}/logs"


def test_missing_and_malformed_files(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        load_config(tmp_path / "absent.toml")
    broken = _write_config(tmp_path / "broken.toml", "[executor\n")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(broken)
    unknown = _write_config(tmp_path / "unknown.toml", "[budgets]\nmax_iterations = 4\n")
    with pytest.raises(ConfigValidationError, match="budgets: unknown field"):
        load_config(unknown)


def test_effective_config_dump_is_deterministic(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "orchestrator.toml", "")
    first = dump_effective_config(load_config(config_path, environ={}))
    second = dump_effective_config(load_config(config_path, environ={}))
    assert first == second
    assert list(json.loads(first)) == sorted(json.loads(first))
