from __future__ import annotations

import asyncio
import json
import logging

from common.utils import now_utc_iso

from aggregator.models import PurgeResponse
from aggregator.store import JobStore

LOGGER = logging.getLogger("jobfeed.aggregator")


class MaintenanceWorker:
    def __init__(
        self,
        store: JobStore,
        *,
        retention_days: float = 30,
        interval_seconds: float = 24 * 60 * 60,
    ) -> None:
        self.store = store
        self.retention_days = retention_days
        self.interval_seconds = interval_seconds
        self.runs = 0

    def run_once(self) -> PurgeResponse:
        # One synchronous pass per tick; ingestion resumes as soon as it returns.
        cache = self.store.cache
        cache_before = len(cache) if cache is not None else 0
        removed_records = self.store.purge_older_than(self.retention_days)
        cache_after = len(cache) if cache is not None else 0
        self.runs += 1
        result = PurgeResponse(
            removed_records=removed_records,
            removed_cache_entries=cache_before - cache_after,
        )
        LOGGER.info(
            json.dumps(
                {
                    "event": "maintenance_purge",
                    "ran_at": now_utc_iso(),
                    "retention_days": self.retention_days,
                    "removed_records": result.removed_records,
                    "removed_cache_entries": result.removed_cache_entries,
                    "stored_records": len(self.store),
                }
            )
        )
        return result

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.run_once()
            except Exception:
                LOGGER.exception(json.dumps({"event": "maintenance_failed"}))
