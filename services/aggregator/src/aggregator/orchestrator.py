from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from datetime import timedelta

from common.utils import now_utc_iso, utc_now

from aggregator.adapters import SourceAdapter
from aggregator.cache import (
    DEFAULT_CACHE_TTL,
    ResultCache,
    cache_key_for_criteria,
    cache_key_for_profile,
)
from aggregator.matcher import DEFAULT_WEIGHTS, ScoringWeights, rank_jobs
from aggregator.models import (
    AdapterStatus,
    NormalizedJobInput,
    RankedJob,
    SearchCriteria,
    UserProfile,
)
from aggregator.store import JobStore

LOGGER = logging.getLogger("jobfeed.aggregator")


class IngestionOrchestrator:
    """Fans a search out to every registered adapter and folds the results
    into the store and the result cache.

    Concurrent callers asking for the same cache key share one in-flight
    ingestion. That ingestion is shielded from caller cancellation, so work
    that was started always lands in the store.
    """

    def __init__(
        self,
        store: JobStore,
        cache: ResultCache,
        adapters: Sequence[SourceAdapter],
        *,
        cache_ttl: timedelta = DEFAULT_CACHE_TTL,
        adapter_timeout: float | None = 30,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
        recent_window_days: float = 30,
        recent_query_limit: int = 5000,
    ) -> None:
        self.store = store
        self.cache = cache
        self.adapters = list(adapters)
        self.cache_ttl = cache_ttl
        self.adapter_timeout = adapter_timeout
        self.weights = weights
        self.recent_window_days = recent_window_days
        self.recent_query_limit = recent_query_limit
        names = [adapter.name for adapter in self.adapters]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate adapter names: {', '.join(duplicates)}")
        self._statuses = {name: AdapterStatus(name=name) for name in names}
        self._in_flight: dict[str, asyncio.Task[list[str]]] = {}

    def adapter_statuses(self) -> list[AdapterStatus]:
        return [self._statuses[adapter.name].model_copy() for adapter in self.adapters]

    async def _fetch(
        self,
        adapter: SourceAdapter,
        criteria: SearchCriteria,
    ) -> list[NormalizedJobInput] | None:
        status = self._statuses[adapter.name]
        status.last_run_at = now_utc_iso()
        try:
            if self.adapter_timeout is None:
                postings = await adapter.fetch(criteria)
            else:
                postings = await asyncio.wait_for(adapter.fetch(criteria), self.adapter_timeout)
        except Exception as exc:
            error_text = str(exc) or exc.__class__.__name__
            status.last_status = "error"
            status.last_error = error_text
            status.last_fetched = 0
            status.consecutive_failures += 1
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "adapter_fetch_failed",
                        "adapter": adapter.name,
                        "error_type": exc.__class__.__name__,
                        "error": error_text,
                        "consecutive_failures": status.consecutive_failures,
                    }
                )
            )
            return None

        status.last_status = "ok"
        status.last_error = None
        status.last_fetched = len(postings)
        status.consecutive_failures = 0
        return postings

    async def ingest(self, criteria: SearchCriteria) -> list[str]:
        groups = await asyncio.gather(
            *(self._fetch(adapter, criteria) for adapter in self.adapters)
        )

        # Everything below is synchronous: no other coroutine can observe a
        # half-applied batch.
        record_ids: list[str] = []
        for group in groups:
            for posting in group or []:
                record_ids.append(self.store.upsert(posting).id)

        failed = [adapter.name for adapter, group in zip(self.adapters, groups) if group is None]
        event = {
            "event": "ingest_complete",
            "adapters": len(self.adapters),
            "failed_adapters": failed,
            "ingested": len(record_ids),
            "stored_records": len(self.store),
        }
        if self.adapters and len(failed) == len(self.adapters):
            event["event"] = "ingest_degraded"
            LOGGER.warning(json.dumps(event))
        else:
            LOGGER.info(json.dumps(event))
        return record_ids

    async def _ingest_and_cache(self, key: str, criteria: SearchCriteria) -> list[str]:
        record_ids = await self.ingest(criteria)
        self.cache.set(key, record_ids, self.cache_ttl)
        return record_ids

    def _forget(self, key: str, task: asyncio.Task[list[str]]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _cached_or_ingest(self, key: str, criteria: SearchCriteria) -> list[str]:
        cached = self.cache.get(key)
        if cached is not None:
            LOGGER.info(json.dumps({"event": "cache_hit", "key": key, "records": len(cached)}))
            return cached

        task = self._in_flight.get(key)
        if task is None:
            LOGGER.info(json.dumps({"event": "cache_miss", "key": key}))
            task = asyncio.ensure_future(self._ingest_and_cache(key, criteria))
            self._in_flight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        return list(await asyncio.shield(task))

    async def search_and_cache(self, criteria: SearchCriteria) -> list[str]:
        return await self._cached_or_ingest(cache_key_for_criteria(criteria), criteria)

    async def recommended_for_profile(
        self,
        profile: UserProfile,
        criteria: SearchCriteria,
    ) -> list[str]:
        return await self._cached_or_ingest(cache_key_for_profile(profile), criteria)

    def recommended_jobs(self, profile: UserProfile, limit: int = 2000) -> list[RankedJob]:
        jobs = self.store.query_recent(self.recent_window_days, self.recent_query_limit)
        return rank_jobs(profile, jobs, self.weights, now=utc_now())[:limit]
