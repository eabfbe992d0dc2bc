"""
Configuration schema, defaults, and structured validation.

Every section is described by a table of field validators. Validation never
stops at the first problem: it collects :class:`ConfigValidationIssue` records
(dotted path + message) in deterministic order and raises them together.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from capability_orchestrator.constants import CONFIG_SCHEMA_VERSION
from capability_orchestrator.domain.models import ArtifactCategory

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("strict", "permissive")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "api_key",
    "apikey",
    "credential",
    "private_key",
)

# Config paths normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "catalog"),
    ("paths", "reports_dir"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class ExecutorConfig(TypedDict):
    handler_timeout_seconds: float
    max_concurrency: int


class DispatchConfig(TypedDict):
    max_follow_up_depth: int


class PathsConfig(TypedDict):
    catalog: str
    reports_dir: str


class AuditConfig(TypedDict):
    implemented_threshold: float
    partial_threshold: float
    stale_window_days: int
    active_window_days: int
    protected_categories: list[str]
    public_interface_patterns: list[str]


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool


class OrchestratorConfig(TypedDict):
    meta: MetaConfig
    executor: ExecutorConfig
    dispatch: DispatchConfig
    paths: PathsConfig
    audit: AuditConfig
    observability: ObservabilityConfig
    profiles: dict[str, dict[str, object]]


DEFAULT_CONFIG: Final[OrchestratorConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "executor": {
        "handler_timeout_seconds": 30.0,
        "max_concurrency": 8,
    },
    "dispatch": {"max_follow_up_depth": 2},
    "paths": {
        "catalog": "handlers.toml",
        "reports_dir": "reports/",
    },
    "audit": {
        "implemented_threshold": 0.6,
        "partial_threshold": 0.3,
        "stale_window_days": 90,
        "active_window_days": 30,
        "protected_categories": ["build", "error_handling", "logging", "test", "types"],
        "public_interface_patterns": ["**/__init__.py", "**/api/**", "**/public/**"],
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "log_to_stdout": False,
        "redact_secrets": True,
    },
    "profiles": {
        "strict": {
            "executor": {"handler_timeout_seconds": 15.0},
            "audit": {"implemented_threshold": 0.75, "partial_threshold": 0.4},
        },
        "permissive": {
            "audit": {
                "implemented_threshold": 0.5,
                "partial_threshold": 0.2,
                "stale_window_days": 60,
            },
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


FieldValidator = Callable[[object, str, _IssueCollector], object | None]


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is not None and "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _int_at_least(minimum: int) -> FieldValidator:
    def validate(value: object, path: str, issues: _IssueCollector) -> int | None:
        if isinstance(value, bool) or not isinstance(value, int):
            issues.add(path, f"expected integer, got {type(value).__name__}")
            return None
        if value < minimum:
            issues.add(path, f"must be >= {minimum}")
            return None
        return value

    return validate


def _number_in(minimum: float, maximum: float | None, *, inclusive_min: bool) -> FieldValidator:
    def validate(value: object, path: str, issues: _IssueCollector) -> float | None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            issues.add(path, f"expected number, got {type(value).__name__}")
            return None
        parsed = float(value)
        if not math.isfinite(parsed):
            issues.add(path, "must be finite")
            return None
        if parsed < minimum or (parsed == minimum and not inclusive_min):
            issues.add(path, f"must be {'>=' if inclusive_min else '>'} {minimum}")
            return None
        if maximum is not None and parsed > maximum:
            issues.add(path, f"must be <= {maximum}")
            return None
        return parsed

    return validate


def _one_of(allowed: tuple[str, ...]) -> FieldValidator:
    def validate(value: object, path: str, issues: _IssueCollector) -> str | None:
        parsed = _as_str(value, path, issues)
        if parsed is None:
            return None
        if parsed not in allowed:
            issues.add(path, f"invalid value {parsed!r}; expected one of: {', '.join(allowed)}")
            return None
        return parsed

    return validate


def _str_list(allowed: tuple[str, ...] | None = None) -> FieldValidator:
    def validate(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
        if isinstance(value, str) or not isinstance(value, (list, tuple)):
            issues.add(path, f"expected array of strings, got {type(value).__name__}")
            return None
        parsed: list[str] = []
        for index, item in enumerate(value):
            item_path = f"{path}[{index}]"
            text = _as_str(item, item_path, issues)
            if text is None:
                continue
            if allowed is not None and text not in allowed:
                issues.add(item_path, f"invalid value {text!r}; expected one of: {', '.join(allowed)}")
                continue
            if text not in parsed:
                parsed.append(text)
        return sorted(parsed) if allowed is not None else parsed

    return validate


SECTION_FIELDS: Final[Mapping[str, Mapping[str, FieldValidator]]] = {
    "meta": {"schema_version": _int_at_least(1)},
    "executor": {
        "handler_timeout_seconds": _number_in(0.0, None, inclusive_min=False),
        "max_concurrency": _int_at_least(1),
    },
    "dispatch": {"max_follow_up_depth": _int_at_least(0)},
    "paths": {"catalog": _as_path_text, "reports_dir": _as_path_text},
    "audit": {
        "implemented_threshold": _number_in(0.0, 1.0, inclusive_min=False),
        "partial_threshold": _number_in(0.0, 1.0, inclusive_min=False),
        "stale_window_days": _int_at_least(1),
        "active_window_days": _int_at_least(0),
        "protected_categories": _str_list(tuple(item.value for item in ArtifactCategory)),
        "public_interface_patterns": _str_list(),
    },
    "observability": {
        "log_level": _one_of(LOG_LEVELS),
        "log_dir": _as_path_text,
        "log_to_stdout": _as_bool,
        "redact_secrets": _as_bool,
    },
}


def default_config() -> OrchestratorConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade orchestrator.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the capability-orchestrator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``; lists are replaced."""

    merged = copy.deepcopy(dict(base))
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the result."""

    selected = (profile or "").strip()
    if not selected:
        return merge_config({}, config)

    profiles = config.get("profiles")
    overlay = profiles.get(selected) if isinstance(profiles, Mapping) else None
    if overlay is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )
    return assert_valid_config(merge_config(config, overlay))


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate a full config and return issues with deterministic paths."""

    issues = _IssueCollector()
    if not isinstance(config, Mapping):
        issues.add("<root>", f"expected object, got {type(config).__name__}")
        return ConfigValidationResult(config=None, issues=issues.items())

    allowed = {*SECTION_FIELDS, "profiles"}
    _reject_unknown_keys(config, allowed, "", issues)

    normalized: dict[str, Any] = {}
    for section, fields in SECTION_FIELDS.items():
        raw = config.get(section)
        if not isinstance(raw, Mapping):
            issues.add(section, "missing required section" if raw is None else "expected object")
            continue
        normalized[section] = _validate_section(raw, section, fields, issues, partial=False)

    if "schema_version" in normalized.get("meta", {}):
        found = normalized["meta"]["schema_version"]
        if found != ConfigSchemaVersion:
            issues.add("meta.schema_version", migration_guidance(found))

    _validate_cross_fields(normalized, issues)
    normalized["profiles"] = _validate_profiles(config.get("profiles", {}), issues)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _validate_section(
    payload: Mapping[str, object],
    path: str,
    fields: Mapping[str, FieldValidator],
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    _reject_unknown_keys(payload, set(fields), path, issues)
    out: dict[str, Any] = {}
    for key, validator in fields.items():
        field_path = f"{path}.{key}"
        if key not in payload:
            if not partial:
                issues.add(field_path, "missing required field")
            continue
        parsed = validator(payload[key], field_path, issues)
        if parsed is not None:
            out[key] = parsed
    return out


def _validate_cross_fields(config: Mapping[str, Any], issues: _IssueCollector) -> None:
    audit = config.get("audit", {})
    implemented = audit.get("implemented_threshold")
    partial = audit.get("partial_threshold")
    if implemented is not None and partial is not None and partial > implemented:
        issues.add("audit.partial_threshold", "must be <= audit.implemented_threshold")
    stale = audit.get("stale_window_days")
    active = audit.get("active_window_days")
    if stale is not None and active is not None and active >= stale:
        issues.add("audit.active_window_days", "must be < audit.stale_window_days")


def _validate_profiles(payload: object, issues: _IssueCollector) -> dict[str, Any]:
    if not isinstance(payload, Mapping):
        issues.add("profiles", f"expected object, got {type(payload).__name__}")
        return {}
    out: dict[str, Any] = {}
    for profile_name in sorted(payload):
        profile_path = f"profiles.{profile_name}"
        overlay = payload[profile_name]
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        if not isinstance(overlay, Mapping):
            issues.add(profile_path, "profile overlay must be an object")
            continue
        disallowed = set(overlay) - set(SECTION_FIELDS) | ({"meta"} & set(overlay))
        for key in sorted(disallowed):
            issues.add(f"{profile_path}.{key}", "not allowed in a profile overlay")
        normalized: dict[str, Any] = {}
        for section in sorted(set(overlay) & set(SECTION_FIELDS) - {"meta"}):
            section_path = f"{profile_path}.{section}"
            raw = overlay[section]
            if not isinstance(raw, Mapping):
                issues.add(section_path, "expected object")
                continue
            normalized[section] = _validate_section(
                raw, section_path, SECTION_FIELDS[section], issues, partial=True
            )
        out[profile_name] = normalized
    return out


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(str(item) for item in payload):
        if key in allowed:
            continue
        key_path = f"{path}.{key}" if path else key
        if any(term in key.lower() for term in _SENSITIVE_KEY_TERMS):
            issues.add(key_path, "embedded secret values are forbidden in config")
        else:
            issues.add(key_path, "unknown field")


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        existing = target.get(key)
        if isinstance(value, Mapping) and isinstance(existing, dict):
            _merge_into(existing, value)
        elif isinstance(value, Mapping):
            nested: dict[str, Any] = {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "SECTION_FIELDS",
    "AuditConfig",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DispatchConfig",
    "ExecutorConfig",
    "ObservabilityConfig",
    "OrchestratorConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "validate_config",
]
