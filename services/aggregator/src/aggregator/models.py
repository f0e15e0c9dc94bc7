from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from common.utils import ensure_utc
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

WorkMode = Literal["Remote", "Hybrid", "On-site"]


class NormalizedJobInput(BaseModel):
    source: str = Field(..., min_length=1)
    source_job_id: str | None = None
    title: str = Field(..., min_length=1)
    company: str = ""
    location_city: str | None = None
    location_region: str | None = None
    location_country: str | None = None
    remote: bool = False
    work_mode: WorkMode | None = None
    experience: str | None = None
    salary_min: float | None = None
    salary_max: float | None = None
    salary_currency: str | None = None
    description: str = ""
    requirements: list[str] = Field(default_factory=list)
    benefits: list[str] = Field(default_factory=list)
    apply_url: str | None = None
    posted_at: datetime

    @field_validator("posted_at")
    @classmethod
    def posted_at_is_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def job_mode(self) -> WorkMode:
        if self.work_mode:
            return self.work_mode
        return "Remote" if self.remote else "On-site"

    @property
    def location_label(self) -> str:
        parts = [self.location_city, self.location_region, self.location_country]
        return ", ".join(part.strip() for part in parts if part and part.strip())


class JobRecord(NormalizedJobInput):
    id: str
    content_hash: str
    discovered_at: datetime
    created_at: datetime
    updated_at: datetime


class SearchCriteria(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")

    query: str | None = None
    location: str | None = None
    remote: bool | None = None
    seniority: str | None = None
    tech: list[str] | None = None


class UserProfile(BaseModel):
    model_config = ConfigDict(
        strict=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    name: str | None = None
    purpose: str | None = None
    current_role: str | None = None
    desired_role: str | None = None
    experience: str | None = None
    location: str | None = None
    work_mode: str | None = None
    preferred_location: str | None = None
    skills: str | None = None
    salary: str | None = None
    availability: str | None = None
    education: str | None = None
    linkedin: str | None = None


class ScoreBreakdown(BaseModel):
    skills: float = 0.0
    experience: float = 0.0
    work_mode: float = 0.0
    location: float = 0.0
    role_alignment: float = 0.0
    salary: float = 0.0


class MatchResult(BaseModel):
    score: int
    breakdown: ScoreBreakdown
    reasons: list[str] = Field(default_factory=list)


class RankedJob(BaseModel):
    job: NormalizedJobInput
    score: int
    reasons: list[str] = Field(default_factory=list)
    breakdown: ScoreBreakdown

    def to_payload(self) -> dict[str, Any]:
        payload = self.job.model_dump(mode="json")
        payload["match_score"] = self.score
        payload["match_reasons"] = list(self.reasons)
        payload["score_breakdown"] = self.breakdown.model_dump()
        return payload


class AdapterStatus(BaseModel):
    name: str
    last_run_at: str | None = None
    last_status: Literal["ok", "error"] | None = None
    last_error: str | None = None
    last_fetched: int = 0
    consecutive_failures: int = 0


class CacheInvalidateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    profile: UserProfile | None = None
    criteria: SearchCriteria | None = None


class CacheInvalidateResponse(BaseModel):
    removed: int


class PurgeResponse(BaseModel):
    removed_records: int
    removed_cache_entries: int
