from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Sequence
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from common.observability import install_observability
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from aggregator.adapters import SourceAdapter, build_adapters
from aggregator.cache import ResultCache, cache_key_for_criteria, cache_key_for_profile
from aggregator.config import AggregatorSettings, load_settings
from aggregator.maintenance import MaintenanceWorker
from aggregator.matcher import recommendation_message
from aggregator.models import (
    AdapterStatus,
    CacheInvalidateRequest,
    CacheInvalidateResponse,
    JobRecord,
    PurgeResponse,
    SearchCriteria,
    UserProfile,
)
from aggregator.orchestrator import IngestionOrchestrator
from aggregator.store import JobStore

LOGGER = logging.getLogger("jobfeed.aggregator")


def error_response(status_code: int, code: str, detail: Any = None) -> JSONResponse:
    content: dict[str, Any] = {"error": code}
    if detail is not None:
        content["detail"] = detail
    return JSONResponse(status_code=status_code, content=content)


def invalid_payload(exc: ValidationError | None = None) -> JSONResponse:
    detail = None
    if exc is not None:
        detail = [
            {"loc": [str(part) for part in error["loc"]], "msg": error["msg"]}
            for error in exc.errors()
        ]
    return error_response(400, "invalid_payload", detail)


async def read_json_body(request: Request) -> Any:
    body = await request.body()
    if not body:
        return None
    try:
        return json.loads(body)
    except ValueError:
        return None


def resolve_records(store: JobStore, record_ids: list[str]) -> list[JobRecord]:
    records: list[JobRecord] = []
    seen: set[str] = set()
    # Sources that publish the same posting resolve to one record id; it is
    # listed once, at its first position.
    for record_id in record_ids:
        if record_id in seen:
            continue
        seen.add(record_id)
        record = store.get(record_id)
        if record is not None:
            records.append(record)
    return records


def job_list_payload(jobs: list[dict[str, Any]]) -> dict[str, Any]:
    return {"count": len(jobs), "jobs": jobs}


def create_app(
    *,
    settings: AggregatorSettings | None = None,
    adapters: Sequence[SourceAdapter] | None = None,
    start_maintenance: bool = True,
) -> FastAPI:
    resolved_settings = settings or load_settings()
    resolved_adapters = (
        list(adapters)
        if adapters is not None
        else build_adapters(
            resolved_settings.sources,
            timeout=resolved_settings.adapter_timeout_seconds,
        )
    )
    if not resolved_adapters:
        LOGGER.warning(json.dumps({"event": "no_adapters_configured"}))

    cache = ResultCache(default_ttl=timedelta(days=resolved_settings.cache_ttl_days))
    store = JobStore(cache=cache, max_records=resolved_settings.max_records)
    orchestrator = IngestionOrchestrator(
        store,
        cache,
        resolved_adapters,
        cache_ttl=timedelta(days=resolved_settings.cache_ttl_days),
        adapter_timeout=resolved_settings.adapter_timeout_seconds,
        weights=resolved_settings.scoring_weights,
        recent_window_days=resolved_settings.recent_window_days,
        recent_query_limit=resolved_settings.recent_query_limit,
    )
    maintenance = MaintenanceWorker(
        store,
        retention_days=resolved_settings.retention_days,
        interval_seconds=resolved_settings.maintenance_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = resolved_settings
        app.state.store = store
        app.state.cache = cache
        app.state.orchestrator = orchestrator
        app.state.maintenance = maintenance
        maintenance_task = asyncio.create_task(maintenance.run()) if start_maintenance else None
        try:
            yield
        finally:
            if maintenance_task is not None:
                maintenance_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await maintenance_task

    app = FastAPI(title="JobFeed Aggregator", version="0.3.0", lifespan=lifespan)
    install_observability(app, LOGGER)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "aggregator"}

    @app.post("/jobs/search")
    async def search_jobs(request: Request):
        body = await read_json_body(request)
        if not isinstance(body, dict):
            return invalid_payload()
        try:
            criteria = SearchCriteria.model_validate(body)
        except ValidationError as exc:
            return invalid_payload(exc)

        record_ids = await request.app.state.orchestrator.search_and_cache(criteria)
        records = resolve_records(request.app.state.store, record_ids)
        return job_list_payload([record.model_dump(mode="json") for record in records])

    @app.post("/jobs/recommended")
    async def recommended_jobs(
        request: Request,
        limit: int | None = Query(default=None, ge=1, le=5000),
    ):
        body = await read_json_body(request)
        if not isinstance(body, dict):
            return invalid_payload()
        profile_errors: ValidationError | None = None
        criteria_errors: ValidationError | None = None
        try:
            profile = UserProfile.model_validate(body.get("profile") or {})
        except ValidationError as exc:
            profile_errors = exc
        try:
            criteria = SearchCriteria.model_validate(body.get("criteria") or {})
        except ValidationError as exc:
            criteria_errors = exc
        if profile_errors is not None or criteria_errors is not None:
            return invalid_payload(profile_errors or criteria_errors)

        orchestrator: IngestionOrchestrator = request.app.state.orchestrator
        await orchestrator.recommended_for_profile(profile, criteria)
        ranked = orchestrator.recommended_jobs(
            profile,
            limit or request.app.state.settings.recommendation_limit,
        )
        payload = job_list_payload([item.to_payload() for item in ranked])
        payload["message"] = recommendation_message(profile, len(ranked))
        return payload

    @app.get("/jobs")
    async def list_jobs(
        request: Request,
        limit: int = Query(default=100, ge=1, le=5000),
    ):
        records = request.app.state.store.query(limit)
        return job_list_payload([record.model_dump(mode="json") for record in records])

    @app.get("/jobs/")
    async def get_job_without_id():
        return error_response(400, "missing_id")

    @app.get("/jobs/{job_id}")
    async def get_job(job_id: str, request: Request):
        if not job_id.strip():
            return error_response(400, "missing_id")
        record = request.app.state.store.get(job_id)
        if record is None:
            return error_response(404, "not_found")
        return record.model_dump(mode="json")

    @app.get("/sources", response_model=list[AdapterStatus])
    async def list_sources(request: Request) -> list[AdapterStatus]:
        return request.app.state.orchestrator.adapter_statuses()

    @app.post("/cache/invalidate", response_model=CacheInvalidateResponse)
    async def invalidate_cache(request: Request):
        body = await read_json_body(request)
        if body is None:
            body = {}
        if not isinstance(body, dict):
            return invalid_payload()
        try:
            payload = CacheInvalidateRequest.model_validate(body)
        except ValidationError as exc:
            return invalid_payload(exc)

        cache: ResultCache = request.app.state.cache
        if payload.profile is None and payload.criteria is None:
            removed = cache.clear()
        else:
            removed = 0
            if payload.profile is not None:
                removed += int(cache.invalidate(cache_key_for_profile(payload.profile)))
            if payload.criteria is not None:
                removed += int(cache.invalidate(cache_key_for_criteria(payload.criteria)))
        LOGGER.info(json.dumps({"event": "cache_invalidated", "removed": removed}))
        return CacheInvalidateResponse(removed=removed)

    @app.post("/maintenance/purge", response_model=PurgeResponse)
    async def purge(request: Request) -> PurgeResponse:
        return request.app.state.maintenance.run_once()

    return app


app = create_app()
