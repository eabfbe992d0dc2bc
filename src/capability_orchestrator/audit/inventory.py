"""Codebase inventory loading: YAML or JSON sequences of artifact descriptors."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Final, TypeAlias, cast

import yaml

from capability_orchestrator.domain.models import ArtifactCategory, ArtifactRecord, RecencyBucket

if TYPE_CHECKING:
    from capability_orchestrator.config.schema import AuditConfig

PathLike: TypeAlias = str | os.PathLike[str]

_ALLOWED_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "path",
        "size",
        "recency",
        "days_since_modified",
        "reference_count",
        "category",
        "public",
        "public_interface",
        "keywords",
        "requirement_ids",
    }
)

_BUILD_NAMES: Final[frozenset[str]] = frozenset(
    {
        "setup.py",
        "setup.cfg",
        "pyproject.toml",
        "makefile",
        "dockerfile",
        "cmakelists.txt",
        "package.json",
        "cargo.toml",
        "build.gradle",
        "pom.xml",
        "noxfile.py",
        "tox.ini",
    }
)
_BUILD_DIRS: Final[frozenset[str]] = frozenset({"build", "ci", ".github", "scripts"})
_TEST_DIRS: Final[frozenset[str]] = frozenset({"test", "tests", "testing", "__tests__", "spec"})
_DOC_SUFFIXES: Final[frozenset[str]] = frozenset({".md", ".rst", ".txt", ".adoc"})
_CONFIG_SUFFIXES: Final[frozenset[str]] = frozenset(
    {".toml", ".yaml", ".yml", ".ini", ".cfg", ".json", ".env"}
)


class InventoryError(ValueError):
    """Malformed inventory document or artifact descriptor."""


@dataclass(frozen=True, slots=True)
class RecencyWindows:
    """Maps ``days_since_modified`` to a recency bucket.

    ``days < active_window_days`` is recent, ``days < stale_window_days`` is
    active, anything older is stale.
    """

    stale_window_days: int = 90
    active_window_days: int = 30

    def __post_init__(self) -> None:
        if self.active_window_days < 0:
            raise ValueError("active_window_days must be >= 0")
        if self.stale_window_days <= self.active_window_days:
            raise ValueError("stale_window_days must be greater than active_window_days")

    @classmethod
    def from_config(cls, audit: AuditConfig) -> RecencyWindows:
        return cls(
            stale_window_days=audit["stale_window_days"],
            active_window_days=audit["active_window_days"],
        )

    def bucket(self, days_since_modified: int) -> RecencyBucket:
        if days_since_modified < 0:
            raise ValueError("days_since_modified must be >= 0")
        if days_since_modified < self.active_window_days:
            return RecencyBucket.RECENT
        if days_since_modified < self.stale_window_days:
            return RecencyBucket.ACTIVE
        return RecencyBucket.STALE


def infer_category(path: str) -> ArtifactCategory:
    """Best-effort category from path shape; descriptors may override it."""

    posix = PurePosixPath(path.replace("\\", "/"))
    name = posix.name.lower()
    stem = name.split(".", 1)[0]
    parents = {part.lower() for part in posix.parts[:-1]}

    if name in _BUILD_NAMES or parents & _BUILD_DIRS:
        return ArtifactCategory.BUILD
    if (
        parents & _TEST_DIRS
        or stem.startswith("test_")
        or stem.endswith("_test")
        or name == "conftest.py"
        or ".test." in name
        or ".spec." in name
    ):
        return ArtifactCategory.TEST
    if name.endswith((".pyi", ".d.ts")) or stem in {"types", "typing", "typings"}:
        return ArtifactCategory.TYPES
    if stem in {"log", "logs", "logger", "logging"} or stem.endswith("_logging"):
        return ArtifactCategory.LOGGING
    if stem in {"errors", "error", "exceptions", "exception"} or stem.endswith(
        ("_errors", "_exceptions")
    ):
        return ArtifactCategory.ERROR_HANDLING
    if posix.suffix.lower() in _DOC_SUFFIXES or "docs" in parents or "doc" in parents:
        return ArtifactCategory.DOCUMENTATION
    if posix.suffix.lower() in _CONFIG_SUFFIXES:
        return ArtifactCategory.CONFIG
    return ArtifactCategory.SOURCE


def parse_inventory(
    document: object,
    *,
    windows: RecencyWindows | None = None,
    source: str = "inventory",
) -> tuple[ArtifactRecord, ...]:
    """Validate an already-decoded inventory document.

    Accepts a top-level sequence, or a mapping with an ``artifacts`` sequence.
    Duplicate paths are rejected.
    """

    active_windows = windows or RecencyWindows()
    if isinstance(document, Mapping) and "artifacts" in document:
        document = document["artifacts"]
    if not isinstance(document, list):
        raise InventoryError(
            f"{source}: expected top-level sequence of artifacts, got {type(document).__name__}"
        )

    records: list[ArtifactRecord] = []
    seen: dict[str, int] = {}
    for index, item in enumerate(document):
        location = f"{source}[{index}]"
        record = _parse_artifact(item, location=location, windows=active_windows)
        first = seen.get(record.path)
        if first is not None:
            raise InventoryError(
                f"{location}: duplicate artifact path {record.path!r} (first at index {first})"
            )
        seen[record.path] = index
        records.append(record)
    return tuple(records)


def load_inventory(path: PathLike, *, windows: RecencyWindows | None = None) -> tuple[ArtifactRecord, ...]:
    source = Path(path)
    try:
        with source.open("r", encoding="utf-8") as handle:
            loaded = cast("object", yaml.safe_load(handle))
    except yaml.YAMLError as exc:
        raise InventoryError(f"{source}: invalid YAML/JSON ({exc})") from exc
    return parse_inventory(loaded, windows=windows, source=source.name)


def _parse_artifact(value: object, *, location: str, windows: RecencyWindows) -> ArtifactRecord:
    if not isinstance(value, Mapping):
        raise InventoryError(f"{location}: expected mapping, got {type(value).__name__}")
    fields: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise InventoryError(f"{location}: keys must be strings")
        fields[key] = item

    if "path" not in fields:
        raise InventoryError(f"{location}: missing required field 'path'")
    unknown = sorted(set(fields) - _ALLOWED_FIELDS)
    if unknown:
        raise InventoryError(
            f"{location}: unexpected fields: {unknown}; allowed fields: {sorted(_ALLOWED_FIELDS)}"
        )
    if "recency" in fields and "days_since_modified" in fields:
        raise InventoryError(f"{location}: give either 'recency' or 'days_since_modified', not both")

    path = fields["path"]
    if not isinstance(path, str):
        raise InventoryError(f"{location}.path: expected string")

    if "days_since_modified" in fields:
        days = fields["days_since_modified"]
        if isinstance(days, bool) or not isinstance(days, int):
            raise InventoryError(f"{location}.days_since_modified: expected integer")
        try:
            recency: object = windows.bucket(days)
        except ValueError as exc:
            raise InventoryError(f"{location}.days_since_modified: {exc}") from exc
    else:
        recency = fields.get("recency", RecencyBucket.ACTIVE)

    public = fields.get("public_interface", fields.get("public", False))
    if not isinstance(public, bool):
        raise InventoryError(f"{location}.public_interface: expected boolean")

    try:
        return ArtifactRecord(
            path=path,
            size=cast("int", fields.get("size", 0)),
            recency=cast("RecencyBucket", recency),
            reference_count=cast("int", fields.get("reference_count", 0)),
            category=cast("ArtifactCategory", fields.get("category") or infer_category(path)),
            public_interface=public,
            keywords=cast("tuple[str, ...]", _as_sequence(fields.get("keywords", ()))),
            requirement_ids=cast(
                "tuple[str, ...]", _as_sequence(fields.get("requirement_ids", ()))
            ),
        )
    except ValueError as exc:
        raise InventoryError(f"{location}: {exc}") from exc


def _as_sequence(value: object) -> object:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, Iterable) and not isinstance(value, Mapping):
        return tuple(value)
    return value


__all__ = [
    "InventoryError",
    "RecencyWindows",
    "infer_category",
    "load_inventory",
    "parse_inventory",
]
