from __future__ import annotations

import json
import os
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field

from aggregator.adapters import SourceConfig
from aggregator.matcher import ScoringWeights

ENV_PREFIX = "AGGREGATOR_"


class AggregatorSettings(BaseModel):
    cache_ttl_days: float = Field(default=30, gt=0)
    retention_days: float = Field(default=30, gt=0)
    recent_window_days: float = Field(default=30, gt=0)
    recent_query_limit: int = Field(default=5000, ge=1)
    recommendation_limit: int = Field(default=2000, ge=1)
    maintenance_interval_seconds: float = Field(default=24 * 60 * 60, gt=0)
    adapter_timeout_seconds: float = Field(default=30, gt=0)
    max_records: int | None = Field(default=None, ge=1)
    scoring_weights: ScoringWeights = Field(default_factory=ScoringWeights)
    sources: list[SourceConfig] = Field(default_factory=list)


def _load_json(environ: Mapping[str, str], name: str) -> Any:
    raw = environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{name} must contain valid JSON.") from exc


def load_settings(
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> AggregatorSettings:
    """Build settings from ``AGGREGATOR_*`` environment variables.

    Keyword overrides win over the environment. Scalar variables map to the
    upper-cased field name; ``scoring_weights`` and ``sources`` are read from
    ``AGGREGATOR_SCORING_WEIGHTS_JSON`` and ``AGGREGATOR_SOURCES_JSON``.
    """
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    for field_name in AggregatorSettings.model_fields:
        if field_name in ("scoring_weights", "sources"):
            continue
        raw = env.get(f"{ENV_PREFIX}{field_name.upper()}", "").strip()
        if raw:
            values[field_name] = raw

    weights = _load_json(env, f"{ENV_PREFIX}SCORING_WEIGHTS_JSON")
    if weights is not None:
        values["scoring_weights"] = weights
    sources = _load_json(env, f"{ENV_PREFIX}SOURCES_JSON")
    if sources is not None:
        values["sources"] = sources

    values.update({key: value for key, value in overrides.items() if value is not None})
    return AggregatorSettings.model_validate(values)
