"""Utility exports for filesystem, hashing, and concurrency helpers."""

from capability_orchestrator.utils.concurrency import (
    BoundedSemaphore,
    DetachedTasks,
    wait_detaching,
)
from capability_orchestrator.utils.fs import atomic_write
from capability_orchestrator.utils.hashing import sha256_bytes, sha256_text

__all__ = [
    "BoundedSemaphore",
    "DetachedTasks",
    "atomic_write",
    "sha256_bytes",
    "sha256_text",
    "wait_detaching",
]
