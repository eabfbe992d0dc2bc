"""Atomic writes and SHA-256 helpers."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

import pytest

from capability_orchestrator.utils import atomic_write, sha256_bytes, sha256_text


def test_atomic_write_creates_parents_and_replaces(tmp_path: Path) -> None:
    target = tmp_path / "reports" / "nested" / "audit.json"

    assert atomic_write(target, "first\n") == target
    atomic_write(target, b"second\n")

    assert target.read_bytes() == b"second\n"
    assert [item.name for item in target.parent.iterdir()] == ["audit.json"]


def test_atomic_write_leaves_no_temp_file_on_failure(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    target = tmp_path / "audit.json"
    target.write_text("original", encoding="utf-8")

    def broken_replace(src: str, dst: str) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", broken_replace)
    with pytest.raises(OSError, match="disk full"):
        atomic_write(target, "new")

    assert target.read_text(encoding="utf-8") == "original"
    assert [item.name for item in tmp_path.iterdir()] == ["audit.json"]


def test_sha256_helpers_agree() -> None:
    expected = hashlib.sha256("réport".encode()).hexdigest()
    assert sha256_text("réport") == expected
    assert sha256_bytes("réport".encode()) == expected
    assert sha256_text("réport", encoding="latin-1") != expected
