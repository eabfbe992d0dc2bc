"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import math
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import TYPE_CHECKING, Final, NoReturn, Protocol, TypeVar

from capability_orchestrator.domain import ids as domain_ids

if TYPE_CHECKING:
    from collections.abc import Iterable

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TEnum = TypeVar("TEnum", bound=StrEnum)

_MAX_TEXT = 8192
_MAX_JSON_DEPTH = 16
_SEQUENTIAL_AFTER_PREFIX: Final[str] = "sequential-after:"


class CapabilityCategory(StrEnum):
    PLANNING = "planning"
    REVIEW = "review"
    TESTING = "testing"
    BUILD_FIX = "build-fix"
    SECURITY = "security"
    CLEANUP = "cleanup"
    DOMAIN_SPECIFIC = "domain-specific"
    DOCUMENTATION = "documentation"


class Permission(StrEnum):
    READ = "read"
    WRITE = "write"
    EXECUTE = "execute"
    NETWORK = "network"


class HandlerStatus(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    PARTIAL = "partial"


class MatchScore(StrEnum):
    """Three-valued scoring contract shared by trigger and audit matchers."""

    EXACT = "exact"
    PARTIAL = "partial"
    NONE = "none"

    @property
    def matched(self) -> bool:
        return self is not MatchScore.NONE


class RequirementPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: Final[Mapping[RequirementPriority, int]] = MappingProxyType(
    {
        RequirementPriority.LOW: 1,
        RequirementPriority.MEDIUM: 2,
        RequirementPriority.HIGH: 3,
        RequirementPriority.CRITICAL: 4,
    }
)


class RequirementKind(StrEnum):
    STATEMENT = "statement"
    USER_STORY = "user_story"
    FEATURE = "feature"


class ArtifactCategory(StrEnum):
    SOURCE = "source"
    BUILD = "build"
    TEST = "test"
    TYPES = "types"
    LOGGING = "logging"
    ERROR_HANDLING = "error_handling"
    DOCUMENTATION = "documentation"
    CONFIG = "config"


PROTECTED_ARTIFACT_CATEGORIES: Final[frozenset[ArtifactCategory]] = frozenset(
    {
        ArtifactCategory.BUILD,
        ArtifactCategory.TEST,
        ArtifactCategory.TYPES,
        ArtifactCategory.LOGGING,
        ArtifactCategory.ERROR_HANDLING,
    }
)


class RecencyBucket(StrEnum):
    RECENT = "recent"
    ACTIVE = "active"
    STALE = "stale"


class RequirementCoverage(StrEnum):
    IMPLEMENTED = "implemented"
    PARTIAL = "partial"
    MISSING = "missing"


class ArtifactScope(StrEnum):
    IN_SCOPE = "in_scope"
    OUT_OF_SCOPE = "out_of_scope"
    UNCERTAIN = "uncertain"


class DeletionPhase(StrEnum):
    PHASE_1 = "phase_1"
    PHASE_2 = "phase_2"
    RETAIN = "retain"


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _as_str(value: object, path: str, *, max_len: int = _MAX_TEXT) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip()
    if not normalized:
        _fail(path, "must not be empty")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, path)


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value.strip().lower())
    except ValueError:
        allowed = ", ".join(sorted(item.value for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_str_tuple(value: object, path: str) -> tuple[str, ...]:
    if isinstance(value, str) or not isinstance(value, (list, tuple, frozenset, set)):
        _fail(path, f"expected array, got {type(value).__name__}")
    items = sorted(value) if isinstance(value, (set, frozenset)) else list(value)
    return tuple(_as_str(item, f"{path}[{index}]") for index, item in enumerate(items))


def _freeze_json(value: object, path: str, *, depth: int = 0) -> object:
    if depth > _MAX_JSON_DEPTH:
        _fail(path, f"nesting exceeds max depth {_MAX_JSON_DEPTH}")
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, Mapping):
        frozen: dict[str, object] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, f"object keys must be strings, got {type(key).__name__}")
            frozen[key] = _freeze_json(item, f"{path}.{key}", depth=depth + 1)
        return MappingProxyType(frozen)
    if isinstance(value, (list, tuple)):
        return tuple(
            _freeze_json(item, f"{path}[{index}]", depth=depth + 1)
            for index, item in enumerate(value)
        )
    _fail(path, f"unsupported payload value type {type(value).__name__}")


def _thaw_json(value: object) -> JSONValue:
    if isinstance(value, Mapping):
        return {str(key): _thaw_json(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw_json(item) for item in value]
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return repr(value)


def _freeze_mapping(value: object, path: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")
    frozen = _freeze_json(value, path)
    assert isinstance(frozen, Mapping)
    return frozen


@dataclass(frozen=True, slots=True)
class ResourceScope:
    """Declared tool/resource scope of a capability handler."""

    permissions: frozenset[Permission] = frozenset({Permission.READ})
    write_paths: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        raw = self.permissions
        if isinstance(raw, str) or not isinstance(raw, (set, frozenset, list, tuple)):
            _fail("ResourceScope.permissions", "expected a collection of permissions")
        permissions = frozenset(
            _as_enum(Permission, item, "ResourceScope.permissions") for item in raw
        )
        object.__setattr__(self, "permissions", permissions)

        paths = tuple(
            PurePosixPath(item).as_posix()
            for item in _as_str_tuple(self.write_paths, "ResourceScope.write_paths")
        )
        if paths and Permission.WRITE not in permissions:
            _fail("ResourceScope.write_paths", "write paths require the 'write' permission")
        object.__setattr__(self, "write_paths", paths)

    @property
    def writes(self) -> bool:
        return Permission.WRITE in self.permissions

    def effective_write_paths(self) -> tuple[str, ...]:
        """Write paths, with an unrestricted writer claiming the whole workspace."""

        if not self.writes:
            return ()
        return self.write_paths or (".",)

    def write_overlaps(self, other: ResourceScope) -> tuple[str, ...]:
        """Return the pairs of overlapping write paths rendered as ``a<->b``."""

        overlaps: list[str] = []
        for mine in self.effective_write_paths():
            for theirs in other.effective_write_paths():
                if _paths_overlap(mine, theirs):
                    overlaps.append(f"{mine}<->{theirs}")
        return tuple(overlaps)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "permissions": sorted(item.value for item in self.permissions),
            "write_paths": list(self.write_paths),
        }


def _paths_overlap(left: str, right: str) -> bool:
    if left == "." or right == ".":
        return True
    left_parts = PurePosixPath(left).parts
    right_parts = PurePosixPath(right).parts
    shortest = min(len(left_parts), len(right_parts))
    return left_parts[:shortest] == right_parts[:shortest]


@dataclass(frozen=True, slots=True)
class ConcurrencyClass:
    """``independent`` or ``sequential-after:<dependency>``."""

    after: str | None = None

    def __post_init__(self) -> None:
        if self.after is not None:
            object.__setattr__(
                self, "after", _as_str(self.after, "ConcurrencyClass.after").lower()
            )

    @property
    def independent(self) -> bool:
        return self.after is None

    @classmethod
    def parse(cls, raw: str | ConcurrencyClass) -> ConcurrencyClass:
        if isinstance(raw, ConcurrencyClass):
            return raw
        text = _as_str(raw, "ConcurrencyClass").lower()
        if text == "independent":
            return cls()
        if text.startswith(_SEQUENTIAL_AFTER_PREFIX):
            dependency = text[len(_SEQUENTIAL_AFTER_PREFIX) :].strip()
            if not dependency:
                _fail("ConcurrencyClass", "sequential-after requires a dependency name")
            return cls(after=dependency)
        _fail(
            "ConcurrencyClass",
            f"invalid value {raw!r}; expected 'independent' or 'sequential-after:<name>'",
        )

    def __str__(self) -> str:
        if self.after is None:
            return "independent"
        return f"{_SEQUENTIAL_AFTER_PREFIX}{self.after}"


INDEPENDENT: Final[ConcurrencyClass] = ConcurrencyClass()


def _new_work_item_id() -> str:
    return domain_ids.generate_work_item_id()


@dataclass(frozen=True, slots=True)
class WorkItem:
    """Opaque request routed to one or more capability handlers."""

    payload: Mapping[str, object] = field(default_factory=dict)
    category_hint: CapabilityCategory | None = None
    originating_stage: str | None = None
    id: str = field(default_factory=_new_work_item_id)
    parent_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", _as_str(self.id, "WorkItem.id", max_len=128))
        object.__setattr__(self, "payload", _freeze_mapping(self.payload, "WorkItem.payload"))
        if self.category_hint is not None:
            object.__setattr__(
                self,
                "category_hint",
                _as_enum(CapabilityCategory, self.category_hint, "WorkItem.category_hint"),
            )
        stage = _as_optional_str(self.originating_stage, "WorkItem.originating_stage")
        object.__setattr__(
            self, "originating_stage", stage.lower() if stage is not None else None
        )
        object.__setattr__(
            self, "parent_id", _as_optional_str(self.parent_id, "WorkItem.parent_id")
        )

    def for_stage(self, stage_name: str) -> WorkItem:
        return replace(self, originating_stage=stage_name)

    def follow_up(
        self,
        payload: Mapping[str, object],
        *,
        category_hint: CapabilityCategory | str | None = None,
    ) -> WorkItem:
        """Derive a new work item emitted by a handler while processing this one."""

        hint = (
            _as_enum(CapabilityCategory, category_hint, "WorkItem.category_hint")
            if category_hint is not None
            else None
        )
        return WorkItem(
            payload=payload,
            category_hint=hint,
            originating_stage=self.originating_stage,
            parent_id=self.id,
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "category_hint": self.category_hint.value if self.category_hint else None,
            "originating_stage": self.originating_stage,
            "parent_id": self.parent_id,
            "payload": _thaw_json(self.payload),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> WorkItem:
        if not isinstance(data, Mapping):
            _fail("WorkItem", f"expected object, got {type(data).__name__}")
        unknown = sorted(
            key
            for key in data
            if key not in {"id", "category_hint", "originating_stage", "parent_id", "payload"}
        )
        if unknown:
            _fail("WorkItem", f"unexpected fields: {unknown}")
        kwargs: dict[str, object] = {
            "payload": data.get("payload", {}),
            "category_hint": data.get("category_hint"),
            "originating_stage": data.get("originating_stage"),
            "parent_id": data.get("parent_id"),
        }
        if data.get("id") is not None:
            kwargs["id"] = data["id"]
        return cls(**kwargs)  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class HandlerResult:
    """Outcome of one handler invocation."""

    status: HandlerStatus
    output: Mapping[str, object] = field(default_factory=dict)
    follow_ups: tuple[WorkItem, ...] = ()
    diagnostic: str | None = None
    handler_name: str = ""
    category: CapabilityCategory | None = None
    duration_ms: int = 0

    def __post_init__(self) -> None:
        status = _as_enum(HandlerStatus, self.status, "HandlerResult.status")
        object.__setattr__(self, "status", status)
        object.__setattr__(self, "output", _freeze_mapping(self.output, "HandlerResult.output"))
        follow_ups = tuple(self.follow_ups)
        for index, item in enumerate(follow_ups):
            if not isinstance(item, WorkItem):
                _fail(f"HandlerResult.follow_ups[{index}]", "expected WorkItem")
        object.__setattr__(self, "follow_ups", follow_ups)

        diagnostic = self.diagnostic.strip() if isinstance(self.diagnostic, str) else None
        if status is HandlerStatus.FAILURE and not diagnostic:
            _fail("HandlerResult.diagnostic", "failure results must carry a non-empty diagnostic")
        object.__setattr__(self, "diagnostic", diagnostic or None)
        if self.category is not None:
            object.__setattr__(
                self,
                "category",
                _as_enum(CapabilityCategory, self.category, "HandlerResult.category"),
            )
        _as_int(self.duration_ms, "HandlerResult.duration_ms", minimum=0)

    @classmethod
    def success(
        cls,
        output: Mapping[str, object] | None = None,
        *,
        follow_ups: Iterable[WorkItem] = (),
    ) -> HandlerResult:
        return cls(
            status=HandlerStatus.SUCCESS,
            output=output or {},
            follow_ups=tuple(follow_ups),
        )

    @classmethod
    def partial(
        cls,
        output: Mapping[str, object] | None = None,
        *,
        diagnostic: str | None = None,
        follow_ups: Iterable[WorkItem] = (),
    ) -> HandlerResult:
        return cls(
            status=HandlerStatus.PARTIAL,
            output=output or {},
            diagnostic=diagnostic,
            follow_ups=tuple(follow_ups),
        )

    @classmethod
    def failure(
        cls,
        diagnostic: str,
        *,
        output: Mapping[str, object] | None = None,
    ) -> HandlerResult:
        return cls(status=HandlerStatus.FAILURE, output=output or {}, diagnostic=diagnostic)

    @property
    def succeeded(self) -> bool:
        return self.status is HandlerStatus.SUCCESS

    @property
    def failed(self) -> bool:
        return self.status is HandlerStatus.FAILURE

    def stamped(self, handler: CapabilityHandler, *, duration_ms: int) -> HandlerResult:
        return replace(
            self,
            handler_name=handler.name,
            category=handler.category,
            duration_ms=max(0, duration_ms),
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "handler": self.handler_name,
            "category": self.category.value if self.category else None,
            "status": self.status.value,
            "diagnostic": self.diagnostic,
            "duration_ms": self.duration_ms,
            "output": _thaw_json(self.output),
            "follow_ups": [item.to_dict() for item in self.follow_ups],
        }


class CapabilityProvider(Protocol):
    """Uniform handler contract: one ``invoke`` operation, sync or async."""

    def invoke(self, work_item: WorkItem) -> HandlerResult | Awaitable[HandlerResult]: ...


Trigger = Callable[[WorkItem], MatchScore]


@dataclass(frozen=True, slots=True)
class CapabilityHandler:
    """Registered capability: identity, category, trigger, scope, and concurrency class."""

    name: str
    category: CapabilityCategory
    trigger: Trigger
    provider: CapabilityProvider
    scope: ResourceScope = field(default_factory=ResourceScope)
    concurrency: ConcurrencyClass = INDEPENDENT
    timeout_seconds: float | None = None
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "name", _as_str(self.name, "CapabilityHandler.name", max_len=128).lower()
        )
        object.__setattr__(
            self,
            "category",
            _as_enum(CapabilityCategory, self.category, "CapabilityHandler.category"),
        )
        if not callable(self.trigger):
            _fail("CapabilityHandler.trigger", "must be callable")
        if not callable(getattr(self.provider, "invoke", None)):
            _fail("CapabilityHandler.provider", "must expose an invoke(work_item) method")
        if not isinstance(self.scope, ResourceScope):
            _fail("CapabilityHandler.scope", "must be a ResourceScope")
        object.__setattr__(self, "concurrency", ConcurrencyClass.parse(self.concurrency))
        if self.timeout_seconds is not None:
            if isinstance(self.timeout_seconds, bool) or not isinstance(
                self.timeout_seconds, (int, float)
            ):
                _fail("CapabilityHandler.timeout_seconds", "must be numeric")
            if self.timeout_seconds <= 0:
                _fail("CapabilityHandler.timeout_seconds", "must be > 0")
            object.__setattr__(self, "timeout_seconds", float(self.timeout_seconds))

    def score(self, work_item: WorkItem) -> MatchScore:
        return self.trigger(work_item)

    def matches(self, work_item: WorkItem) -> bool:
        return self.score(work_item).matched

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "category": self.category.value,
            "concurrency": str(self.concurrency),
            "scope": self.scope.to_dict(),
            "timeout_seconds": self.timeout_seconds,
            "description": self.description,
        }


@dataclass(frozen=True, slots=True)
class RequirementRecord:
    """Requirement parsed once from a corpus; immutable during an audit run."""

    id: str
    description: str
    priority: RequirementPriority = RequirementPriority.MEDIUM
    excluded: bool = False
    kind: RequirementKind = RequirementKind.STATEMENT
    line: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", _as_str(self.id, "RequirementRecord.id", max_len=64))
        object.__setattr__(
            self, "description", _as_str(self.description, "RequirementRecord.description")
        )
        object.__setattr__(
            self,
            "priority",
            _as_enum(RequirementPriority, self.priority, "RequirementRecord.priority"),
        )
        object.__setattr__(
            self, "kind", _as_enum(RequirementKind, self.kind, "RequirementRecord.kind")
        )
        object.__setattr__(self, "excluded", bool(self.excluded))
        if self.line is not None:
            _as_int(self.line, "RequirementRecord.line", minimum=1)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "description": self.description,
            "priority": self.priority.value,
            "excluded": self.excluded,
            "kind": self.kind.value,
            "line": self.line,
        }


@dataclass(frozen=True, slots=True)
class ArtifactRecord:
    """Codebase unit supplied by an external scanning collaborator."""

    path: str
    size: int = 0
    recency: RecencyBucket = RecencyBucket.ACTIVE
    reference_count: int = 0
    category: ArtifactCategory = ArtifactCategory.SOURCE
    public_interface: bool = False
    keywords: tuple[str, ...] = ()
    requirement_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        path = _as_str(self.path, "ArtifactRecord.path", max_len=1024)
        if "\x00" in path:
            _fail("ArtifactRecord.path", "must not contain NUL bytes")
        object.__setattr__(self, "path", PurePosixPath(path.replace("\\", "/")).as_posix())
        _as_int(self.size, "ArtifactRecord.size", minimum=0)
        _as_int(self.reference_count, "ArtifactRecord.reference_count", minimum=0)
        object.__setattr__(
            self, "recency", _as_enum(RecencyBucket, self.recency, "ArtifactRecord.recency")
        )
        object.__setattr__(
            self,
            "category",
            _as_enum(ArtifactCategory, self.category, "ArtifactRecord.category"),
        )
        object.__setattr__(self, "public_interface", bool(self.public_interface))
        object.__setattr__(
            self, "keywords", _as_str_tuple(self.keywords, "ArtifactRecord.keywords")
        )
        object.__setattr__(
            self,
            "requirement_ids",
            _as_str_tuple(self.requirement_ids, "ArtifactRecord.requirement_ids"),
        )

    @property
    def protected(self) -> bool:
        return self.category in PROTECTED_ARTIFACT_CATEGORIES

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "path": self.path,
            "size": self.size,
            "recency": self.recency.value,
            "reference_count": self.reference_count,
            "category": self.category.value,
            "public_interface": self.public_interface,
            "keywords": list(self.keywords),
            "requirement_ids": list(self.requirement_ids),
        }


__all__ = [
    "INDEPENDENT",
    "PROTECTED_ARTIFACT_CATEGORIES",
    "ArtifactCategory",
    "ArtifactRecord",
    "ArtifactScope",
    "CapabilityCategory",
    "CapabilityHandler",
    "CapabilityProvider",
    "ConcurrencyClass",
    "DeletionPhase",
    "HandlerResult",
    "HandlerStatus",
    "JSONScalar",
    "JSONValue",
    "MatchScore",
    "Permission",
    "RecencyBucket",
    "RequirementCoverage",
    "RequirementKind",
    "RequirementPriority",
    "RequirementRecord",
    "ResourceScope",
    "Trigger",
    "WorkItem",
    "canonical_json",
]
