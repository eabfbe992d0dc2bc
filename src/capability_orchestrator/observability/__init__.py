"""Structured logging and correlation context."""

from capability_orchestrator.observability.logging import (
    LoggingConfig,
    correlation_scope,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "LoggingConfig",
    "correlation_scope",
    "setup_structured_logging",
    "shutdown_logging",
]
