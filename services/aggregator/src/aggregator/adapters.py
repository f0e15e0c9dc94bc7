from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Literal

import httpx
from common.utils import normalize_whitespace, utc_now
from pydantic import BaseModel, Field, HttpUrl, ValidationError, model_validator

from aggregator.models import NormalizedJobInput, SearchCriteria, WorkMode

SOURCE_INLINE_JSON = "inline_json"
SOURCE_JSON_URL = "json_url"
LOGGER = logging.getLogger("jobfeed.aggregator")

REQUIREMENT_KEYWORDS = (
    "react",
    "typescript",
    "javascript",
    "python",
    "java",
    "node",
    "aws",
    "docker",
    "kubernetes",
    "sql",
    "mongodb",
    "api",
    "rest",
    "years experience",
    "bachelor",
    "degree",
    "agile",
    "scrum",
    "css",
    "html",
    "vue",
    "angular",
    "git",
    "ci/cd",
    "testing",
)
MAX_INFERRED_REQUIREMENTS = 8


class SourceAdapter(ABC):
    """One upstream job source.

    ``fetch`` may raise; the orchestrator isolates the failure and carries on
    with the other sources.
    """

    name: str

    @abstractmethod
    async def fetch(self, criteria: SearchCriteria) -> list[NormalizedJobInput]:
        raise NotImplementedError


def infer_work_mode(description: str, location: str) -> WorkMode:
    if "remote" in description.lower() or "remote" in location.lower():
        return "Remote"
    if "hybrid" in description.lower():
        return "Hybrid"
    return "On-site"


def infer_experience(description: str) -> str:
    text = description.lower()
    if any(marker in text for marker in ("entry", "junior", "0-2 years")):
        return "0-2 years"
    if any(marker in text for marker in ("senior", "lead", "7+ years")):
        return "6-10 years"
    if "principal" in text or "staff" in text:
        return "10+ years"
    return "3-5 years"


def extract_requirements(description: str) -> list[str]:
    """Pick well-known skill keywords out of free-text job copy.

    Keywords are plain substring matches, reported in keyword-table order with
    the first letter upper-cased.
    """
    text = description.lower()
    found = [
        keyword[:1].upper() + keyword[1:] for keyword in REQUIREMENT_KEYWORDS if keyword in text
    ]
    return found[:MAX_INFERRED_REQUIREMENTS]


def _fill_inferred_fields(fields: dict[str, Any], item: dict[str, Any]) -> None:
    description = str(fields.get("description") or "")
    if not fields.get("requirements"):
        fields["requirements"] = extract_requirements(description)
    if not fields.get("experience"):
        fields["experience"] = infer_experience(description)
    # A feed that flags the job as remote already fixes the mode.
    if not fields.get("work_mode") and fields.get("remote") is not True:
        location = " ".join(
            str(part)
            for part in (
                item.get("location"),
                item.get("location_city"),
                item.get("location_region"),
                item.get("location_country"),
            )
            if part
        )
        fields["work_mode"] = infer_work_mode(description, location)


def to_normalized_inputs(
    source: str,
    payload: Any,
    *,
    fetched_at: datetime,
) -> list[NormalizedJobInput]:
    if isinstance(payload, dict):
        raw_postings = payload.get("postings", [])
    elif isinstance(payload, list):
        raw_postings = payload
    else:
        raise ValueError("Source payload must be a JSON object or list.")

    if not isinstance(raw_postings, list):
        raise ValueError("Source payload postings must be a list.")

    postings: list[NormalizedJobInput] = []
    rejected = 0
    for item in raw_postings:
        if not isinstance(item, dict):
            rejected += 1
            continue
        title = normalize_whitespace(str(item.get("title") or ""))
        if not title:
            rejected += 1
            continue

        external_id_candidates = [
            item.get("source_job_id"),
            item.get("external_id"),
            item.get("id"),
        ]
        source_job_id = next(
            (
                str(value).strip()
                for value in external_id_candidates
                if value is not None and str(value).strip()
            ),
            None,
        )
        fields = {
            key: value
            for key, value in item.items()
            if key in NormalizedJobInput.model_fields and value is not None
        }
        fields.update(
            source=source,
            source_job_id=source_job_id,
            title=title,
            company=normalize_whitespace(str(item.get("company") or "")),
        )
        fields.setdefault("posted_at", fetched_at)
        _fill_inferred_fields(fields, item)
        try:
            postings.append(NormalizedJobInput.model_validate(fields))
        except ValidationError:
            rejected += 1

    if rejected:
        LOGGER.warning(
            json.dumps(
                {
                    "event": "source_items_rejected",
                    "source": source,
                    "rejected": rejected,
                    "accepted": len(postings),
                }
            )
        )
    return postings


def criteria_query_params(criteria: SearchCriteria) -> dict[str, str]:
    params: dict[str, str] = {}
    if criteria.query:
        params["q"] = criteria.query
    if criteria.location:
        params["location"] = criteria.location
    if criteria.remote is not None:
        params["remote"] = "true" if criteria.remote else "false"
    if criteria.seniority:
        params["seniority"] = criteria.seniority
    if criteria.tech:
        params["tech"] = ",".join(criteria.tech)
    return params


class InlineSourceAdapter(SourceAdapter):
    """Serves a fixed list of postings, regardless of criteria."""

    def __init__(self, name: str, postings: list[NormalizedJobInput]) -> None:
        self.name = name
        self.postings = list(postings)
        self.fetch_count = 0

    async def fetch(self, criteria: SearchCriteria) -> list[NormalizedJobInput]:
        del criteria
        self.fetch_count += 1
        return [posting.model_copy(deep=True) for posting in self.postings]


class JsonFeedAdapter(SourceAdapter):
    def __init__(
        self,
        name: str,
        url: str,
        *,
        timeout: float = 15,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.name = name
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def fetch(self, criteria: SearchCriteria) -> list[NormalizedJobInput]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(self.url, params=criteria_query_params(criteria))
            response.raise_for_status()
            payload = response.json()
        return to_normalized_inputs(self.name, payload, fetched_at=utc_now())


class SourceConfig(BaseModel):
    name: str = Field(..., min_length=1, max_length=64, pattern=r"^[a-zA-Z0-9_-]+$")
    source_type: Literal["inline_json", "json_url"]
    enabled: bool = True
    postings: list[dict[str, Any]] = Field(default_factory=list)
    url: HttpUrl | None = None

    @model_validator(mode="after")
    def validate_source_config(self) -> SourceConfig:
        if self.source_type == SOURCE_INLINE_JSON and not self.postings:
            raise ValueError("Inline source must include at least one posting.")
        if self.source_type == SOURCE_JSON_URL and self.url is None:
            raise ValueError("json_url source must include a url.")
        return self


def build_adapter(config: SourceConfig, *, timeout: float = 15) -> SourceAdapter:
    if config.source_type == SOURCE_INLINE_JSON:
        postings = to_normalized_inputs(config.name, config.postings, fetched_at=utc_now())
        return InlineSourceAdapter(config.name, postings)
    return JsonFeedAdapter(config.name, str(config.url), timeout=timeout)


def build_adapters(configs: list[SourceConfig], *, timeout: float = 15) -> list[SourceAdapter]:
    return [build_adapter(config, timeout=timeout) for config in configs if config.enabled]
