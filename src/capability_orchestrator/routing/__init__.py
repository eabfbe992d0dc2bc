"""Capability routing: trigger matchers, the handler registry, and the router.

The TOML catalog loader lives in :mod:`capability_orchestrator.routing.catalog`
and is imported explicitly.
"""

from capability_orchestrator.routing.matchers import (
    all_of,
    always,
    any_of,
    category_is,
    payload_has_keys,
    payload_words,
    stage_is,
    text_mentions,
    trigger_from_mapping,
)
from capability_orchestrator.routing.registry import (
    CapabilityRegistry,
    dependency_graph,
    depends_on,
)
from capability_orchestrator.routing.router import Router, validate_work_item

__all__ = [
    "CapabilityRegistry",
    "Router",
    "all_of",
    "always",
    "any_of",
    "category_is",
    "dependency_graph",
    "depends_on",
    "payload_has_keys",
    "payload_words",
    "stage_is",
    "text_mentions",
    "trigger_from_mapping",
    "validate_work_item",
]
