"""Capability orchestrator: route work items to registered handlers, run staged
workflows behind quality gates, and audit a codebase against its requirements."""

__version__ = "0.1.0"

__all__ = ["__version__"]
