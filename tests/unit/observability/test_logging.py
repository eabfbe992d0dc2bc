"""Structured JSON-lines logging, correlation context, and redaction."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from capability_orchestrator.observability.logging import (
    LoggingConfig,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    parse_log_level,
    setup_structured_logging,
    shutdown_logging,
)


@pytest.fixture(autouse=True)
def _isolated_logging() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()


def _read_events(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


def test_structlog_events_land_in_run_log_with_correlation(tmp_path: Path) -> None:
    handle = setup_structured_logging(LoggingConfig(run_id="run-test", base_log_dir=tmp_path))
    log = structlog.get_logger("capability_orchestrator.control_plane.executor")

    with correlation_scope(work_item_id="wi-1", stage="review"):
        log.info("handler_finished", handler="reviewer", status="success", api_token="abc123")
    log.debug("handler_dependencies_satisfied", handler="ignored-at-info")
    shutdown_logging()

    assert handle.log_path == tmp_path / "run-test" / "orchestrator.jsonl"
    (event,) = _read_events(handle.log_path)
    assert event["message"] == "handler_finished"
    assert event["level"] == "INFO"
    assert event["run_id"] == "run-test"
    assert event["work_item_id"] == "wi-1"
    assert event["stage"] == "review"
    fields = event["fields"]
    assert isinstance(fields, dict)
    assert fields["handler"] == "reviewer"
    assert fields["api_token"] == "***REDACTED***"
    assert get_active_logging_handle() is None


def test_stdlib_records_are_redacted_unless_disabled(tmp_path: Path) -> None:
    handle = setup_structured_logging(LoggingConfig(run_id="run-a", base_log_dir=tmp_path))
    logging.getLogger("capability_orchestrator.cli").warning("retry with password=hunter2 and Bearer abc.def")
    handle.shutdown()
    handle.shutdown()
    assert handle.is_shutdown
    assert handle.dropped_records == 0
    (event,) = _read_events(handle.log_path)
    assert "hunter2" not in str(event["message"])
    assert "abc.def" not in str(event["message"])

    plain = setup_structured_logging(
        LoggingConfig(run_id="run-b", base_log_dir=tmp_path, redact_secrets=False)
    )
    logging.getLogger("capability_orchestrator.cli").warning("password=hunter2")
    shutdown_logging()
    (event,) = _read_events(plain.log_path)
    assert event["message"] == "password=hunter2"


def test_correlation_scopes_nest_and_restore() -> None:
    with correlation_scope(run_id="run-1"):
        with correlation_scope(stage="plan", work_item_id="wi-9"):
            assert get_correlation_context() == {"run_id": "run-1", "stage": "plan", "work_item_id": "wi-9"}
            with correlation_scope(stage=None):
                assert "stage" not in get_correlation_context()
        assert get_correlation_context() == {"run_id": "run-1"}
    assert get_correlation_context() == {}

    with pytest.raises(ValueError, match="unknown correlation key"):
        with correlation_scope(tenant="acme"):
            pass


@pytest.mark.parametrize(
    "overrides",
    [
        {"run_id": "  "},
        {"queue_size": 0},
        {"log_filename": "nested/out.jsonl"},
        {"level": "chatty"},
    ],
)
def test_invalid_logging_config(overrides: dict[str, object], tmp_path: Path) -> None:
    settings: dict[str, object] = {"run_id": "run-x", "base_log_dir": tmp_path, **overrides}
    with pytest.raises(ValueError):
        setup_structured_logging(LoggingConfig(**settings))  # type: ignore[arg-type]
    assert not (tmp_path / "run-x").exists()


def test_parse_log_level_and_redactor() -> None:
    assert parse_log_level("debug") == logging.DEBUG
    assert parse_log_level(logging.ERROR) == logging.ERROR
    assert default_log_redactor(
        {"nested": {"client_secret": "x", "note": "token: abc"}, "items": ["password=p"]}
    ) == {
        "nested": {"client_secret": "***REDACTED***", "note": "token:***REDACTED***"},
        "items": ["password=***REDACTED***"],
    }
