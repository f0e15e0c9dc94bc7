from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from aggregator.adapters import SourceAdapter
from aggregator.models import NormalizedJobInput, SearchCriteria


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current = self.current + timedelta(**kwargs)


class FailingAdapter(SourceAdapter):
    def __init__(self, name: str, error: Exception | None = None) -> None:
        self.name = name
        self.error = error or RuntimeError(f"{name} is unavailable")
        self.fetch_count = 0

    async def fetch(self, criteria: SearchCriteria) -> list[NormalizedJobInput]:
        del criteria
        self.fetch_count += 1
        raise self.error


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_posting() -> Callable[..., NormalizedJobInput]:
    def factory(**overrides: Any) -> NormalizedJobInput:
        fields: dict[str, Any] = {
            "source": "greenhouse",
            "source_job_id": "gh-1",
            "title": "Backend Engineer",
            "company": "Acme Labs",
            "location_city": "Austin",
            "location_region": "TX",
            "location_country": "US",
            "remote": False,
            "description": "Build Python APIs and services",
            "requirements": ["Python", "FastAPI", "PostgreSQL"],
            "benefits": ["Health", "PTO"],
            "apply_url": "https://jobs.example.com/acme/backend",
            "posted_at": datetime.now(UTC) - timedelta(days=1),
        }
        fields.update(overrides)
        return NormalizedJobInput(**fields)

    return factory


@pytest.fixture
def failing_adapter_factory() -> Callable[..., FailingAdapter]:
    return FailingAdapter
