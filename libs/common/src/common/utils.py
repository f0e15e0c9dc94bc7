from __future__ import annotations

import hashlib
from collections.abc import Iterable
from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def now_utc_iso() -> str:
    return utc_now().isoformat()


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def normalize_whitespace(text: str) -> str:
    return " ".join(text.split())


def normalize_key_part(value: object | None) -> str:
    if value is None:
        return ""
    return normalize_whitespace(str(value)).lower()


def stable_digest(parts: Iterable[object | None]) -> str:
    """128-bit BLAKE2b hex digest of the normalized, pipe-joined parts."""
    key_input = "|".join(normalize_key_part(part) for part in parts)
    return hashlib.blake2b(key_input.encode(), digest_size=16).hexdigest()
