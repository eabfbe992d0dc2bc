"""ULID-backed identifiers for workflow runs and work items, plus synthesized requirement ids."""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
_PREFIX_SEPARATOR: Final[str] = "-"

RUN_ID_PREFIX: Final[str] = "run"
WORK_ITEM_ID_PREFIX: Final[str] = "wi"

REQUIREMENT_ID_PREFIX: Final[str] = "REQ"

_DECODE_TABLE: Final[dict[str, int]] = {
    char: index for index, char in enumerate(CROCKFORD_BASE32_ALPHABET)
}

_RandBytes = Callable[[int], bytes]


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a ULID as a 26-character uppercase Crockford Base32 string."""
    ts_ms = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if isinstance(ts_ms, bool) or not isinstance(ts_ms, int):
        raise ValueError(f"timestamp_ms must be an int, got {type(ts_ms).__name__}")
    if not 0 <= ts_ms <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(
            f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}, got {ts_ms}"
        )
    raw = (secrets.token_bytes if randbytes is None else randbytes)(ULID_RANDOM_BYTES)
    if len(raw) != ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {ULID_RANDOM_BYTES} bytes")
    value = (ts_ms << 80) | int.from_bytes(bytes(raw), "big")

    chars = ["0"] * ULID_LENGTH
    for index in range(ULID_LENGTH - 1, -1, -1):
        chars[index] = CROCKFORD_BASE32_ALPHABET[value & 0b11111]
        value >>= 5
    return "".join(chars)


def validate_ulid(value: str) -> None:
    if not isinstance(value, str):
        raise ValueError(f"ulid must be a string, got {type(value).__name__}")
    if len(value) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(value)}")
    for index, char in enumerate(value):
        if char.upper() not in _DECODE_TABLE:
            raise ValueError(f"invalid ULID character {char!r} at index {index}")
    if _DECODE_TABLE[value[0].upper()] > 7:
        raise ValueError("ulid overflow: value exceeds maximum 128-bit ULID")


def generate_prefixed_id(prefix: str, **kwargs: object) -> str:
    """Generate ``<prefix>-<ulid>``."""
    if not prefix or _PREFIX_SEPARATOR in prefix:
        raise ValueError(f"invalid id prefix {prefix!r}")
    return f"{prefix}{_PREFIX_SEPARATOR}{generate_ulid(**kwargs)}"  # type: ignore[arg-type]


def validate_prefixed_id(id_str: str, expected_prefix: str) -> None:
    if not isinstance(id_str, str):
        raise ValueError(f"prefixed id must be a string, got {type(id_str).__name__}")
    expected_lead = f"{expected_prefix}{_PREFIX_SEPARATOR}"
    if not id_str.startswith(expected_lead):
        raise ValueError(f"expected prefix '{expected_lead}'")
    try:
        validate_ulid(id_str[len(expected_lead) :])
    except ValueError as exc:
        raise ValueError(f"invalid ULID part for prefix '{expected_prefix}': {exc}") from exc


def generate_run_id(*, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None) -> str:
    return generate_prefixed_id(RUN_ID_PREFIX, timestamp_ms=timestamp_ms, randbytes=randbytes)


def validate_run_id(id_str: str) -> None:
    validate_prefixed_id(id_str, RUN_ID_PREFIX)


def generate_work_item_id(
    *, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None
) -> str:
    return generate_prefixed_id(WORK_ITEM_ID_PREFIX, timestamp_ms=timestamp_ms, randbytes=randbytes)


def validate_work_item_id(id_str: str) -> None:
    validate_prefixed_id(id_str, WORK_ITEM_ID_PREFIX)


def requirement_id(sequence: int) -> str:
    """Synthesized id for requirements that carry none, e.g. ``REQ-007``."""
    if sequence <= 0:
        raise ValueError("requirement sequence must be positive")
    return f"{REQUIREMENT_ID_PREFIX}-{sequence:03d}"


__all__ = [
    "CROCKFORD_BASE32_ALPHABET",
    "REQUIREMENT_ID_PREFIX",
    "RUN_ID_PREFIX",
    "ULID_LENGTH",
    "WORK_ITEM_ID_PREFIX",
    "generate_prefixed_id",
    "generate_run_id",
    "generate_ulid",
    "generate_work_item_id",
    "requirement_id",
    "validate_prefixed_id",
    "validate_run_id",
    "validate_ulid",
    "validate_work_item_id",
]
