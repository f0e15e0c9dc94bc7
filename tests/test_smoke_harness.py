from __future__ import annotations

from typing import Any

import aggregator.main as aggregator_main
import httpx
import pytest
from aggregator.adapters import JsonFeedAdapter
from aggregator.config import AggregatorSettings
from fastapi.testclient import TestClient

pytestmark = [pytest.mark.integration, pytest.mark.smoke]

FEED_PAYLOAD: dict[str, Any] = {
    "postings": [
        {
            "external_id": "feed-1",
            "title": "Backend Engineer",
            "company": "Acme Labs",
            "remote": True,
            "requirements": ["Python", "FastAPI"],
            "apply_url": "https://jobs.example.com/acme/backend",
        }
    ]
}


def test_smoke_aggregator_ready() -> None:
    with TestClient(aggregator_main.app) as client:
        health = client.get("/health")
        metrics = client.get("/metrics")

    assert health.status_code == 200
    assert metrics.status_code == 200
    assert metrics.json()["totals"]["requests"] >= 1


def test_smoke_json_feed_search_and_recommend() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=FEED_PAYLOAD))
    adapter = JsonFeedAdapter("feed", "https://feeds.example.com/jobs.json", transport=transport)
    app = aggregator_main.create_app(
        settings=AggregatorSettings(),
        adapters=[adapter],
        start_maintenance=False,
    )

    with TestClient(app) as client:
        search = client.post("/jobs/search", json={"remote": True})
        recommended = client.post(
            "/jobs/recommended",
            json={"profile": {"desiredRole": "Backend Engineer", "workMode": "Remote"}},
        )

    assert search.status_code == 200
    jobs = search.json()["jobs"]
    assert [job["source_job_id"] for job in jobs] == ["feed-1"]
    assert recommended.status_code == 200
    top = recommended.json()["jobs"][0]
    assert top["id"] == jobs[0]["id"]
    assert top["match_score"] == 45
