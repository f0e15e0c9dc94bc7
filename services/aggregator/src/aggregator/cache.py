from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from common.utils import stable_digest, utc_now

from aggregator.models import SearchCriteria, UserProfile

DEFAULT_CACHE_TTL = timedelta(days=30)


@dataclass
class CacheEntry:
    record_ids: list[str]
    expires_at: datetime


def cache_key_for_criteria(criteria: SearchCriteria) -> str:
    tech = ",".join(sorted(term.strip().lower() for term in criteria.tech or []))
    digest = stable_digest(
        [
            criteria.query,
            criteria.location,
            str(bool(criteria.remote)),
            criteria.seniority,
            tech,
        ]
    )
    return f"q:{digest}"


def cache_key_for_profile(profile: UserProfile) -> str:
    digest = stable_digest(
        [
            profile.desired_role,
            profile.location,
            profile.work_mode,
            profile.skills,
        ]
    )
    return f"p:{digest}"


class ResultCache:
    """TTL-bounded mapping from a derived key to an ordered list of record ids.

    Expired entries are removed by the read that finds them and by
    ``prune_expired`` during maintenance.
    """

    def __init__(
        self,
        *,
        default_ttl: timedelta = DEFAULT_CACHE_TTL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> list[str] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            return None
        return list(entry.record_ids)

    def set(self, key: str, record_ids: list[str], ttl: timedelta | None = None) -> CacheEntry:
        expires_at = self._clock() + (ttl if ttl is not None else self.default_ttl)
        entry = CacheEntry(record_ids=list(record_ids), expires_at=expires_at)
        self._entries[key] = entry
        return entry

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        removed = len(self._entries)
        self._entries.clear()
        return removed

    def prune_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)
