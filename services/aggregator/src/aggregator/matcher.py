from __future__ import annotations

import math
import re
from collections.abc import Sequence
from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from aggregator.models import (
    MatchResult,
    NormalizedJobInput,
    RankedJob,
    ScoreBreakdown,
    UserProfile,
)

EXPERIENCE_LEVELS = {
    "0-2 years": 1,
    "3-5 years": 2,
    "6-10 years": 3,
    "10+ years": 4,
}
DEFAULT_EXPERIENCE_LEVEL = 2

SKILL_SYNONYMS: dict[str, tuple[str, ...]] = {
    "javascript": ("js", "ecmascript", "es6", "node"),
    "react": ("reactjs", "react.js", "jsx"),
    "python": ("py", "django", "flask"),
    "java": ("j2ee", "spring", "hibernate"),
    "typescript": ("ts",),
    "css": ("scss", "sass", "styling"),
    "database": ("sql", "nosql", "mongodb", "postgresql", "mysql"),
}

RECENT_POSTING_WINDOW = timedelta(days=7)
MAX_REASONS = 3

_SKILL_SPLIT = re.compile(r"[,\s]+")
_LEADING_NUMBER = re.compile(r"\s*([0-9]*\.?[0-9]+)")


class ScoringWeights(BaseModel):
    """Point table for the additive match score.

    ``role_alignment`` defaults to 15; some deployments weight it at 20, which
    is why it is configurable rather than fixed.
    """

    skills: float = Field(default=35, ge=0)
    skills_base: float = Field(default=30, ge=0)
    skills_exact_bonus: float = Field(default=5, ge=0)
    experience: float = Field(default=20, ge=0)
    experience_step_penalty: float = Field(default=7, ge=0)
    work_mode_exact: float = Field(default=15, ge=0)
    work_mode_flexible: float = Field(default=10, ge=0)
    work_mode_other: float = Field(default=5, ge=0)
    location: float = Field(default=15, ge=0)
    preferred_location: float = Field(default=12, ge=0)
    role_alignment: float = Field(default=15, ge=0)
    salary: float = Field(default=10, ge=0)
    salary_partial: float = Field(default=5, ge=0)
    salary_partial_ratio: float = Field(default=0.8, gt=0, le=1)


DEFAULT_WEIGHTS = ScoringWeights()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _overlaps(left: str, right: str) -> bool:
    if not left or not right:
        return False
    return left in right or right in left


def _salary_unit(text: str) -> float | None:
    if "lpa" in text or "lakh" in text:
        return 100_000
    if "k" in text:
        return 1_000
    return None


def _parse_single_salary(text: str, default_unit: float = 1) -> float | None:
    match = _LEADING_NUMBER.match(text)
    if match is None:
        return None
    return float(match.group(1)) * (_salary_unit(text) or default_unit)


def parse_salary(text: str | None) -> float | None:
    """Annual salary from strings like ``50000``, ``$50k``, ``40-60k`` or ``12 LPA``.

    Ranges resolve to their midpoint; a bare lower bound borrows the unit of the
    upper one. Returns ``None`` when nothing numeric is found.
    """
    if not text:
        return None
    cleaned = re.sub(r"[$,£€]", "", text.lower())
    if "-" in cleaned:
        low, _, high = cleaned.partition("-")
        high_value = _parse_single_salary(high)
        low_value = _parse_single_salary(low, default_unit=_salary_unit(high) or 1)
        if low_value and high_value:
            return (low_value + high_value) / 2
    return _parse_single_salary(cleaned)


def job_salary_value(job: NormalizedJobInput) -> float | None:
    values = [value for value in (job.salary_min, job.salary_max) if value]
    if not values:
        return None
    return sum(values) / len(values)


def experience_level(bucket: str | None) -> int:
    return EXPERIENCE_LEVELS.get((bucket or "").strip().lower(), DEFAULT_EXPERIENCE_LEVEL)


def _skills_points(
    profile: UserProfile,
    job: NormalizedJobInput,
    weights: ScoringWeights,
) -> tuple[float, int]:
    raw_tokens = _SKILL_SPLIT.split((profile.skills or "").lower())
    skills = [token for token in raw_tokens if len(token) > 2]
    if not skills:
        return 0.0, 0
    requirements = [requirement.lower() for requirement in job.requirements]
    description = job.description.lower()

    matched = 0
    exact = 0
    for skill in skills:
        exact_match = any(_overlaps(skill, requirement) for requirement in requirements)
        description_match = skill in description
        synonym_match = any(
            any(synonym in requirement for requirement in requirements) or synonym in description
            for synonym in SKILL_SYNONYMS.get(skill, ())
        )
        if exact_match or description_match or synonym_match:
            matched += 1
            if exact_match:
                exact += 1

    base = matched / len(skills) * weights.skills_base
    bonus = exact / max(matched, 1) * weights.skills_exact_bonus
    return min(weights.skills, base + bonus), matched


def _experience_points(
    profile: UserProfile,
    job: NormalizedJobInput,
    weights: ScoringWeights,
) -> tuple[float, int]:
    difference = abs(experience_level(profile.experience) - experience_level(job.experience))
    points = weights.experience - weights.experience_step_penalty * difference
    return max(0.0, points), difference


def _work_mode_points(
    profile: UserProfile,
    job: NormalizedJobInput,
    weights: ScoringWeights,
) -> float:
    preference = (profile.work_mode or "").strip().lower()
    job_mode = job.job_mode.lower()
    if preference == job_mode:
        return weights.work_mode_exact
    if preference == "flexible" or job_mode == "hybrid":
        return weights.work_mode_flexible
    return weights.work_mode_other


def _location_points(
    profile: UserProfile,
    job: NormalizedJobInput,
    weights: ScoringWeights,
) -> tuple[float, str | None]:
    if job.remote or job.job_mode == "Remote":
        return weights.location, "Remote position"
    job_location = job.location_label.lower()
    if _overlaps((profile.location or "").strip().lower(), job_location):
        return weights.location, "Location match"
    if _overlaps((profile.preferred_location or "").strip().lower(), job_location):
        return weights.preferred_location, "Preferred location match"
    return 0.0, None


def _role_points(
    profile: UserProfile,
    job: NormalizedJobInput,
    weights: ScoringWeights,
) -> float:
    desired_words = (profile.desired_role or "").lower().split()
    title_words = job.title.lower().split()
    if not desired_words or not title_words:
        return 0.0
    matches = sum(
        1
        for word in desired_words
        if len(word) > 3 and any(_overlaps(word, title_word) for title_word in title_words)
    )
    return min(weights.role_alignment, matches / len(desired_words) * weights.role_alignment)


def compute_match(
    profile: UserProfile,
    job: NormalizedJobInput,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
    *,
    now: datetime | None = None,
) -> MatchResult:
    """Score a job against a profile on a 0-100 scale.

    Each factor is independent and only contributes when the profile carries
    the field it needs. The result depends only on its arguments: the
    "Recently posted" reason is added only when a reference time ``now`` is
    given.
    """
    breakdown = ScoreBreakdown()
    reasons: list[str] = []

    if profile.skills:
        breakdown.skills, matched_skills = _skills_points(profile, job, weights)
        if matched_skills:
            reasons.append(f"{matched_skills} of your skills match")

    if profile.experience:
        breakdown.experience, difference = _experience_points(profile, job, weights)
        if difference == 0:
            reasons.append("Perfect experience match")

    if profile.work_mode:
        breakdown.work_mode = _work_mode_points(profile, job, weights)
        if profile.work_mode.strip().lower() == job.job_mode.lower():
            reasons.append(f"{job.job_mode} work preference")

    breakdown.location, location_reason = _location_points(profile, job, weights)
    if location_reason:
        reasons.append(location_reason)

    if profile.desired_role:
        breakdown.role_alignment = _role_points(profile, job, weights)
        if breakdown.role_alignment > weights.role_alignment / 2:
            reasons.append("Role aligns with career goals")

    expected_salary = parse_salary(profile.salary)
    offered_salary = job_salary_value(job)
    if expected_salary and offered_salary:
        if offered_salary >= expected_salary:
            breakdown.salary = weights.salary
            reasons.append("Salary meets expectations")
        elif offered_salary / expected_salary >= weights.salary_partial_ratio:
            breakdown.salary = weights.salary_partial
            reasons.append("Competitive salary")

    if now is not None and job.posted_at >= now - RECENT_POSTING_WINDOW:
        reasons.append("Recently posted")

    total = (
        breakdown.skills
        + breakdown.experience
        + breakdown.work_mode
        + breakdown.location
        + breakdown.role_alignment
        + breakdown.salary
    )
    score = min(100, max(0, _round_half_up(total)))
    return MatchResult(score=score, breakdown=breakdown, reasons=reasons[:MAX_REASONS])


def score_match(
    profile: UserProfile,
    job: NormalizedJobInput,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> int:
    return compute_match(profile, job, weights).score


def match_reasons(
    profile: UserProfile,
    job: NormalizedJobInput,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
    *,
    now: datetime | None = None,
) -> list[str]:
    return compute_match(profile, job, weights, now=now).reasons


def rank_jobs(
    profile: UserProfile,
    jobs: Sequence[NormalizedJobInput],
    weights: ScoringWeights = DEFAULT_WEIGHTS,
    *,
    now: datetime | None = None,
) -> list[RankedJob]:
    ranked = []
    for job in jobs:
        result = compute_match(profile, job, weights, now=now)
        ranked.append(
            RankedJob(
                job=job,
                score=result.score,
                reasons=result.reasons,
                breakdown=result.breakdown,
            )
        )
    # list.sort is stable, so equal scores keep their ingestion order.
    ranked.sort(key=lambda item: item.score, reverse=True)
    return ranked


def sort_by_match(
    profile: UserProfile,
    jobs: Sequence[NormalizedJobInput],
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> list[NormalizedJobInput]:
    return [item.job for item in rank_jobs(profile, jobs, weights)]


def recommendation_message(profile: UserProfile, count: int) -> str:
    name = profile.name or "there"
    if profile.purpose == "Looking for a job":
        return (
            f"Great news, {name}! We found {count} opportunities that match your profile perfectly."
        )
    if profile.purpose == "Just exploring":
        return f"Hey {name}! Here are {count} interesting opportunities you might like."
    if profile.purpose == "Career change":
        return (
            f"{name}, we've identified {count} roles that align with your career transition goals."
        )
    return f"We found {count} great opportunities for you!"
