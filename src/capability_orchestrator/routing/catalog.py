"""
Handler catalog loading.

A catalog is a TOML document::

    schema_version = 1
    workflow = "development"

    [[handlers]]
    name = "compliance-audit"
    category = "cleanup"
    entrypoint = "capability_orchestrator.audit.handler:AuditProvider"
    concurrency = "independent"
    timeout_seconds = 10.0

    [handlers.trigger]
    payload_keys = ["requirements", "inventory"]

    [handlers.scope]
    permissions = ["read"]

    [[stages]]
    name = "audit"
    gate = "no_failures"
    terminal = true

``entrypoint`` names a provider object (anything with ``invoke``), a class, or
a factory; classes and factories are called with the optional
``[handlers.options]`` table as keyword arguments. Every defect is reported as
a :class:`ConfigurationError` before any handler runs.
"""

from __future__ import annotations

import importlib
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, TypeAlias

from capability_orchestrator.constants import CATALOG_SCHEMA_VERSION
from capability_orchestrator.control_plane.workflow import Workflow
from capability_orchestrator.domain.errors import ConfigurationError
from capability_orchestrator.domain.models import (
    CapabilityHandler,
    CapabilityProvider,
    ResourceScope,
)
from capability_orchestrator.routing.matchers import trigger_from_mapping
from capability_orchestrator.routing.registry import CapabilityRegistry

PathLike: TypeAlias = str | os.PathLike[str]

_TOP_LEVEL_KEYS: Final[frozenset[str]] = frozenset({"schema_version", "workflow", "handlers", "stages"})
_HANDLER_KEYS: Final[frozenset[str]] = frozenset(
    {
        "name",
        "category",
        "entrypoint",
        "trigger",
        "scope",
        "concurrency",
        "timeout_seconds",
        "description",
        "options",
    }
)


@dataclass(frozen=True, slots=True)
class Catalog:
    registry: CapabilityRegistry
    workflow: Workflow | None = None
    source: Path | None = None


def resolve_entrypoint(
    entrypoint: str,
    options: Mapping[str, object] | None = None,
) -> CapabilityProvider:
    """Import ``module:attribute`` and turn it into a provider instance."""

    module_name, sep, attribute_path = entrypoint.partition(":")
    if not sep or not module_name or not attribute_path:
        raise ConfigurationError(f"entrypoint must look like 'module:attribute', got {entrypoint!r}")
    try:
        target: Any = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"entrypoint {entrypoint!r}: cannot import {module_name!r}: {exc}") from exc
    for part in attribute_path.split("."):
        try:
            target = getattr(target, part)
        except AttributeError:
            raise ConfigurationError(f"entrypoint {entrypoint!r}: no attribute {part!r}") from None

    kwargs = dict(options or {})
    if isinstance(target, type) or not callable(getattr(target, "invoke", None)):
        if not callable(target):
            raise ConfigurationError(f"entrypoint {entrypoint!r} is neither a provider nor a factory")
        try:
            target = target(**kwargs)
        except Exception as exc:
            raise ConfigurationError(f"entrypoint {entrypoint!r}: factory failed: {exc}") from exc
    elif kwargs:
        raise ConfigurationError(f"entrypoint {entrypoint!r}: options require a class or factory")

    if not callable(getattr(target, "invoke", None)):
        raise ConfigurationError(f"entrypoint {entrypoint!r} did not produce an object with invoke()")
    return target


def parse_catalog(
    document: Mapping[str, object],
    *,
    source: str = "catalog",
    logger: Any | None = None,
) -> Catalog:
    unknown = sorted(set(document) - _TOP_LEVEL_KEYS)
    if unknown:
        raise ConfigurationError(f"{source}: unknown top-level keys {unknown}")
    version = document.get("schema_version", CATALOG_SCHEMA_VERSION)
    if version != CATALOG_SCHEMA_VERSION:
        raise ConfigurationError(
            f"{source}: unsupported schema_version {version!r}; expected {CATALOG_SCHEMA_VERSION}"
        )

    raw_handlers = document.get("handlers", [])
    if not isinstance(raw_handlers, list):
        raise ConfigurationError(f"{source}: 'handlers' must be an array of tables")
    registry = CapabilityRegistry(logger=logger)
    for index, entry in enumerate(raw_handlers):
        registry.register(_parse_handler(entry, location=f"{source}: handlers[{index}]"))

    workflow: Workflow | None = None
    raw_stages = document.get("stages")
    if raw_stages is not None:
        if not isinstance(raw_stages, list) or not all(isinstance(item, Mapping) for item in raw_stages):
            raise ConfigurationError(f"{source}: 'stages' must be an array of tables")
        name = document.get("workflow", "workflow")
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(f"{source}: 'workflow' must be a non-empty string")
        workflow = Workflow.from_mappings(raw_stages, name=name)
    elif "workflow" in document:
        raise ConfigurationError(f"{source}: 'workflow' is set but no [[stages]] are defined")

    return Catalog(registry=registry, workflow=workflow)


def load_catalog(path: PathLike, *, logger: Any | None = None, freeze: bool = True) -> Catalog:
    """Load a TOML catalog; the returned registry is frozen unless ``freeze`` is false."""

    source = Path(path)
    try:
        with source.open("rb") as handle:
            document = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"handler catalog not found: {source}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"{source}: invalid TOML ({exc})") from exc

    catalog = parse_catalog(document, source=source.name, logger=logger)
    if freeze:
        catalog.registry.freeze()
    return Catalog(registry=catalog.registry, workflow=catalog.workflow, source=source)


def _parse_handler(entry: object, *, location: str) -> CapabilityHandler:
    if not isinstance(entry, Mapping):
        raise ConfigurationError(f"{location}: expected table")
    unknown = sorted(set(entry) - _HANDLER_KEYS)
    if unknown:
        raise ConfigurationError(f"{location}: unknown keys {unknown}")
    missing = sorted({"name", "category", "entrypoint", "trigger"} - set(entry))
    if missing:
        raise ConfigurationError(f"{location}: missing required keys {missing}")

    entrypoint = entry["entrypoint"]
    if not isinstance(entrypoint, str):
        raise ConfigurationError(f"{location}.entrypoint: expected string")
    options = entry.get("options", {})
    if not isinstance(options, Mapping):
        raise ConfigurationError(f"{location}.options: expected table")
    trigger_table = entry["trigger"]
    if not isinstance(trigger_table, Mapping):
        raise ConfigurationError(f"{location}.trigger: expected table")
    scope_table = entry.get("scope", {})
    if not isinstance(scope_table, Mapping):
        raise ConfigurationError(f"{location}.scope: expected table")

    try:
        trigger = trigger_from_mapping(trigger_table)
        scope = ResourceScope(
            permissions=frozenset(scope_table.get("permissions", ("read",))),
            write_paths=tuple(scope_table.get("write_paths", ())),
        )
        return CapabilityHandler(
            name=entry["name"],  # type: ignore[arg-type]
            category=entry["category"],  # type: ignore[arg-type]
            trigger=trigger,
            provider=resolve_entrypoint(entrypoint, options),
            scope=scope,
            concurrency=entry.get("concurrency", "independent"),  # type: ignore[arg-type]
            timeout_seconds=entry.get("timeout_seconds"),  # type: ignore[arg-type]
            description=str(entry.get("description", "")),
        )
    except ConfigurationError as exc:
        raise ConfigurationError(f"{location}: {exc}") from exc
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{location}: {exc}") from exc


__all__ = ["Catalog", "load_catalog", "parse_catalog", "resolve_entrypoint"]
