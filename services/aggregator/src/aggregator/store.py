from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from common.utils import stable_digest, utc_now

from aggregator.cache import ResultCache
from aggregator.models import JobRecord, NormalizedJobInput

LOGGER = logging.getLogger("jobfeed.aggregator")

MUTABLE_FIELDS = (
    "title",
    "company",
    "location_city",
    "location_region",
    "location_country",
    "remote",
    "work_mode",
    "experience",
    "salary_min",
    "salary_max",
    "salary_currency",
    "description",
    "requirements",
    "benefits",
    "apply_url",
    "posted_at",
)


def compute_content_hash(posting: NormalizedJobInput) -> str:
    # Any digest-based identity can collide; two postings that share every
    # field below are merged into one record.
    return stable_digest(
        [
            posting.title,
            posting.company,
            posting.location_city,
            posting.location_region,
            posting.location_country,
            posting.apply_url,
        ]
    )


def build_source_key(source: str, source_job_id: str | None) -> str | None:
    if not source_job_id or not source_job_id.strip():
        return None
    return f"{source}:{source_job_id.strip()}"


class JobStore:
    """Canonical in-memory table of job records.

    Records are indexed by ``source:source_job_id`` and by content hash. Every
    method is synchronous, so a lookup and the write that follows it can never
    interleave with another coroutine.
    """

    def __init__(
        self,
        *,
        cache: ResultCache | None = None,
        max_records: int | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_records is not None and max_records < 1:
            raise ValueError("max_records must be positive when set.")
        self.cache = cache
        self.max_records = max_records
        self._clock = clock
        self._jobs: dict[str, JobRecord] = {}
        self._by_source_key: dict[str, str] = {}
        self._by_hash: dict[str, str] = {}
        self._source_keys: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._jobs

    def _resolve(self, source_key: str | None, content_hash: str) -> JobRecord | None:
        if source_key is not None:
            record_id = self._by_source_key.get(source_key)
            if record_id is not None and record_id in self._jobs:
                return self._jobs[record_id]
        record_id = self._by_hash.get(content_hash)
        if record_id is not None:
            return self._jobs.get(record_id)
        return None

    def upsert(self, posting: NormalizedJobInput) -> JobRecord:
        content_hash = compute_content_hash(posting)
        source_key = build_source_key(posting.source, posting.source_job_id)
        now = self._clock()

        record = self._resolve(source_key, content_hash)
        if record is not None:
            previous_hash = record.content_hash
            if previous_hash != content_hash and self._by_hash.get(previous_hash) == record.id:
                del self._by_hash[previous_hash]
            for field_name in MUTABLE_FIELDS:
                value = getattr(posting, field_name)
                if isinstance(value, list):
                    value = list(value)
                setattr(record, field_name, value)
            record.content_hash = content_hash
            record.updated_at = now
            self._absorb_hash_owner(record, content_hash)
            # Recently upserted records are the last to be evicted.
            self._jobs.pop(record.id)
            self._jobs[record.id] = record
        else:
            record = JobRecord(
                **posting.model_dump(include=set(NormalizedJobInput.model_fields)),
                id=str(uuid.uuid4()),
                content_hash=content_hash,
                discovered_at=now,
                created_at=now,
                updated_at=now,
            )
            self._jobs[record.id] = record
            self._evict_over_capacity()

        if source_key is not None:
            self._by_source_key[source_key] = record.id
            self._source_keys.setdefault(record.id, set()).add(source_key)
        self._by_hash[content_hash] = record.id
        return record

    def _absorb_hash_owner(self, record: JobRecord, content_hash: str) -> None:
        # One record per content hash: an update that collides absorbs the owner.
        other_id = self._by_hash.get(content_hash)
        if other_id is None or other_id == record.id or other_id not in self._jobs:
            return
        for source_key in self._source_keys.pop(other_id, set()):
            self._by_source_key[source_key] = record.id
            self._source_keys.setdefault(record.id, set()).add(source_key)
        self._remove(other_id)
        LOGGER.info(
            json.dumps({"event": "store_merged", "kept": record.id, "removed": other_id})
        )

    def get(self, record_id: str) -> JobRecord | None:
        return self._jobs.get(record_id)

    def query(self, limit: int = 1000) -> list[JobRecord]:
        return list(self._jobs.values())[:limit]

    def query_recent(self, max_age_days: float = 30, limit: int = 5000) -> list[JobRecord]:
        cutoff = self._clock() - timedelta(days=max_age_days)
        recent: list[JobRecord] = []
        for record in self._jobs.values():
            if len(recent) >= limit:
                break
            if record.posted_at > cutoff:
                recent.append(record)
        return recent

    def purge_older_than(self, max_age_days: float = 30) -> int:
        cutoff = self._clock() - timedelta(days=max_age_days)
        stale = [record_id for record_id, record in self._jobs.items() if record.posted_at < cutoff]
        for record_id in stale:
            self._remove(record_id)
        if self.cache is not None:
            self.cache.prune_expired()
        return len(stale)

    def _remove(self, record_id: str) -> None:
        record = self._jobs.pop(record_id)
        for source_key in self._source_keys.pop(record_id, set()):
            if self._by_source_key.get(source_key) == record_id:
                del self._by_source_key[source_key]
        if self._by_hash.get(record.content_hash) == record_id:
            del self._by_hash[record.content_hash]

    def _evict_over_capacity(self) -> None:
        if self.max_records is None:
            return
        evicted = 0
        while len(self._jobs) > self.max_records:
            oldest_id = next(iter(self._jobs))
            self._remove(oldest_id)
            evicted += 1
        if evicted:
            LOGGER.info(
                json.dumps(
                    {
                        "event": "store_evicted",
                        "evicted": evicted,
                        "max_records": self.max_records,
                    }
                )
            )
