"""Stable constants shared across orchestrator planes."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
AUDIT_REPORT_SCHEMA_VERSION: Final[int] = 1
CATALOG_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the config file unless overridden).
LOGS_DIR: Final[PurePosixPath] = PurePosixPath("logs")
REPORTS_DIR: Final[PurePosixPath] = PurePosixPath("reports")

# Default stage names of the staged development workflow.
STAGE_PLAN: Final[str] = "plan"
STAGE_IMPLEMENT: Final[str] = "implement"
STAGE_REVIEW: Final[str] = "review"
STAGE_SECURITY: Final[str] = "security"
STAGE_AUDIT: Final[str] = "audit"
STAGE_BUILD: Final[str] = "build"
STAGE_TEST: Final[str] = "test"

DEFAULT_STAGE_NAMES: Final[tuple[str, ...]] = (
    STAGE_PLAN,
    STAGE_IMPLEMENT,
    STAGE_REVIEW,
    STAGE_SECURITY,
    STAGE_AUDIT,
    STAGE_BUILD,
    STAGE_TEST,
)

# Diagnostic recorded on results of handlers that exceeded their time bound.
TIMEOUT_DIAGNOSTIC: Final[str] = "Timeout"

__all__ = [
    "AUDIT_REPORT_SCHEMA_VERSION",
    "CATALOG_SCHEMA_VERSION",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_STAGE_NAMES",
    "LOGS_DIR",
    "REPORTS_DIR",
    "STAGE_AUDIT",
    "STAGE_BUILD",
    "STAGE_IMPLEMENT",
    "STAGE_PLAN",
    "STAGE_REVIEW",
    "STAGE_SECURITY",
    "STAGE_TEST",
    "TIMEOUT_DIAGNOSTIC",
]
