"""Dependency graph utilities for staged workflows."""

from capability_orchestrator.planning.stage_graph import CycleError, StageGraph

__all__ = ["CycleError", "StageGraph"]
