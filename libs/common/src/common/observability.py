from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from common.utils import now_utc_iso

REQUEST_ID_HEADER = "x-request-id"
STATUS_BUCKETS = ("2xx", "4xx", "5xx")


class MetricsSnapshot(BaseModel):
    generated_at: str
    totals: dict[str, int]
    endpoints: dict[str, dict[str, float | int]]


def _empty_endpoint() -> dict[str, float | int]:
    stats: dict[str, float | int] = {"count": 0}
    stats.update({bucket: 0 for bucket in STATUS_BUCKETS})
    stats.update({"latency_ms_sum": 0.0, "latency_ms_avg": 0.0})
    return stats


class MetricsStore:
    """Per-route request counters, keyed by ``"<METHOD> <path>"``."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._totals = {"requests": 0, "errors": 0}
        self._endpoints: dict[str, dict[str, float | int]] = {}

    def observe(self, *, method: str, path: str, status_code: int, duration_ms: float) -> None:
        bucket = f"{status_code // 100}xx"
        with self._lock:
            self._totals["requests"] += 1
            self._totals["errors"] += int(status_code >= 400)
            stats = self._endpoints.setdefault(f"{method} {path}", _empty_endpoint())
            stats["count"] = int(stats["count"]) + 1
            if bucket in STATUS_BUCKETS:
                stats[bucket] = int(stats[bucket]) + 1
            stats["latency_ms_sum"] = float(stats["latency_ms_sum"]) + duration_ms
            stats["latency_ms_avg"] = float(stats["latency_ms_sum"]) / int(stats["count"])

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                generated_at=now_utc_iso(),
                totals=dict(self._totals),
                endpoints={key: dict(stats) for key, stats in self._endpoints.items()},
            )


def _request_event(request: Request, request_id: str, **fields: Any) -> str:
    event = {
        "event": "request_complete",
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
    }
    event.update(fields)
    return json.dumps(event)


def install_observability(app: FastAPI, logger: logging.Logger) -> MetricsStore:
    """Attach request-id propagation, request metrics and a ``GET /metrics`` route.

    Each response carries an ``x-request-id`` header, reusing the caller's
    value when one was sent. Unhandled errors become a 500 JSON body that
    includes the request id.
    """
    metrics = MetricsStore()
    app.state.metrics = metrics

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            metrics.observe(
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=duration_ms,
            )
            logger.exception(
                _request_event(
                    request,
                    request_id,
                    status_code=500,
                    duration_ms=round(duration_ms, 3),
                    error=str(exc),
                )
            )
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
                headers={REQUEST_ID_HEADER: request_id},
            )

        duration_ms = (time.perf_counter() - started) * 1000
        metrics.observe(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            _request_event(
                request,
                request_id,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 3),
                source_ip=request.client.host if request.client else None,
            )
        )
        return response

    @app.get("/metrics", response_model=MetricsSnapshot)
    async def metrics_snapshot() -> MetricsSnapshot:
        return metrics.snapshot()

    return metrics
