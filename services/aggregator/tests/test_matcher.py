from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from aggregator.matcher import (
    ScoringWeights,
    compute_match,
    match_reasons,
    parse_salary,
    rank_jobs,
    recommendation_message,
    score_match,
    sort_by_match,
)
from aggregator.models import UserProfile

pytestmark = pytest.mark.unit

NOW = datetime(2026, 3, 1, tzinfo=UTC)


@pytest.fixture
def remote_react_job(make_posting):
    return make_posting(
        title="Frontend Developer",
        remote=True,
        location_city="Remote",
        location_region=None,
        location_country=None,
        description="Job description",
        requirements=["React", "TypeScript", "Node.js"],
        posted_at=NOW - timedelta(days=20),
    )


def test_remote_react_profile_scores_well(remote_react_job) -> None:
    profile = UserProfile(skills="React, TypeScript", experience="3-5 years", work_mode="Remote")

    result = compute_match(profile, remote_react_job, now=NOW)

    assert result.breakdown.skills >= 30
    assert result.breakdown.experience == 20
    assert result.breakdown.location == 15
    assert result.breakdown.work_mode == 15
    assert result.score >= 65
    assert result.score == 85


def test_empty_profile_only_gets_the_remote_location_bonus(remote_react_job) -> None:
    assert score_match(UserProfile(), remote_react_job) == 15


def test_empty_profile_against_onsite_job_scores_zero(make_posting) -> None:
    assert score_match(UserProfile(), make_posting()) == 0


def test_score_is_an_integer_clamped_to_one_hundred(remote_react_job) -> None:
    generous = ScoringWeights(skills=80, skills_base=80, location=60)
    profile = UserProfile(skills="React TypeScript", location="Remote")

    score = score_match(profile, remote_react_job, generous)

    assert isinstance(score, int)
    assert score == 100


def test_score_is_deterministic(remote_react_job) -> None:
    profile = UserProfile(
        skills="React, JavaScript, CSS",
        desired_role="Frontend Developer",
        salary="90k",
    )

    scores = {score_match(profile, remote_react_job) for _ in range(5)}

    assert len(scores) == 1


def test_skill_synonyms_count_as_matches_without_exact_bonus(make_posting) -> None:
    job = make_posting(requirements=["Node.js", "GraphQL"], description="APIs")
    profile = UserProfile(skills="javascript")

    result = compute_match(profile, job, now=NOW)

    assert result.breakdown.skills == 30


def test_skills_split_on_commas_and_whitespace_and_drop_short_tokens(make_posting) -> None:
    job = make_posting(requirements=["Python", "Go"], description="Backend services")
    profile = UserProfile(skills="python, go, rust")

    result = compute_match(profile, job, now=NOW)

    # "go" is too short to count; python matches, rust does not.
    assert result.breakdown.skills == pytest.approx(1 / 2 * 30 + 5)


def test_experience_gap_costs_seven_points_per_level(make_posting) -> None:
    job = make_posting(experience="10+ years")

    junior = compute_match(UserProfile(experience="0-2 years"), job, now=NOW)
    senior = compute_match(UserProfile(experience="6-10 years"), job, now=NOW)
    unknown = compute_match(UserProfile(experience="a while"), job, now=NOW)

    assert junior.breakdown.experience == 0
    assert senior.breakdown.experience == 13
    assert unknown.breakdown.experience == 6


@pytest.mark.parametrize(
    ("preference", "job_fields", "expected"),
    [
        ("Remote", {"remote": True}, 15),
        ("On-site", {"remote": False}, 15),
        ("Flexible", {"remote": False}, 10),
        ("Remote", {"work_mode": "Hybrid"}, 10),
        ("Remote", {"remote": False}, 5),
    ],
)
def test_work_mode_points(make_posting, preference, job_fields, expected) -> None:
    job = make_posting(**job_fields)

    result = compute_match(UserProfile(work_mode=preference), job, now=NOW)

    assert result.breakdown.work_mode == expected


def test_location_prefers_home_then_preferred_location(make_posting) -> None:
    job = make_posting(location_city="Austin", location_region="TX")

    home = compute_match(UserProfile(location="austin"), job, now=NOW)
    preferred = compute_match(
        UserProfile(location="Boston", preferred_location="Austin, TX"),
        job,
        now=NOW,
    )
    elsewhere = compute_match(UserProfile(location="Boston"), job, now=NOW)

    assert home.breakdown.location == 15
    assert preferred.breakdown.location == 12
    assert elsewhere.breakdown.location == 0


def test_location_never_matches_on_empty_job_location(make_posting) -> None:
    job = make_posting(location_city=None, location_region=None, location_country=None)

    result = compute_match(UserProfile(location="Austin"), job, now=NOW)

    assert result.breakdown.location == 0


def test_role_alignment_uses_fifteen_point_maximum(make_posting) -> None:
    job = make_posting(title="Senior Backend Engineer")

    full = compute_match(UserProfile(desired_role="Backend Engineer"), job, now=NOW)
    half = compute_match(UserProfile(desired_role="Backend Designer"), job, now=NOW)
    short_words = compute_match(UserProfile(desired_role="QA Lead"), job, now=NOW)

    assert full.breakdown.role_alignment == 15
    assert half.breakdown.role_alignment == 7.5
    assert short_words.breakdown.role_alignment == 0


def test_role_alignment_maximum_is_configurable(make_posting) -> None:
    job = make_posting(title="Backend Engineer")
    weights = ScoringWeights(role_alignment=20)

    result = compute_match(UserProfile(desired_role="Backend Engineer"), job, weights, now=NOW)

    assert result.breakdown.role_alignment == 20


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("50000", 50000),
        ("$50k", 50000),
        ("$50,000", 50000),
        ("40k - 60k", 50000),
        ("40-60k", 50000),
        ("12 LPA", 1_200_000),
        ("10-14 lakhs per annum", 1_200_000),
        ("competitive", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_salary(text, expected) -> None:
    assert parse_salary(text) == expected


def test_salary_points(make_posting) -> None:
    job = make_posting(salary_min=80000, salary_max=100000)

    meets = compute_match(UserProfile(salary="90k"), job, now=NOW)
    close = compute_match(UserProfile(salary="110k"), job, now=NOW)
    far = compute_match(UserProfile(salary="150k"), job, now=NOW)
    unparseable = compute_match(UserProfile(salary="negotiable"), job, now=NOW)

    assert meets.breakdown.salary == 10
    assert close.breakdown.salary == 5
    assert far.breakdown.salary == 0
    assert unparseable.breakdown.salary == 0


def test_missing_job_salary_is_not_a_penalty(make_posting) -> None:
    result = compute_match(UserProfile(salary="90k"), make_posting(), now=NOW)

    assert result.breakdown.salary == 0
    assert result.score == 0


def test_reasons_are_limited_to_three_in_factor_order(remote_react_job) -> None:
    profile = UserProfile(
        skills="React, TypeScript",
        experience="3-5 years",
        work_mode="Remote",
        desired_role="Frontend Developer",
    )

    reasons = match_reasons(profile, remote_react_job, now=NOW)

    assert reasons == [
        "2 of your skills match",
        "Perfect experience match",
        "Remote work preference",
    ]


def test_recent_postings_get_a_reason(make_posting) -> None:
    job = make_posting(posted_at=NOW - timedelta(days=2))

    assert match_reasons(UserProfile(), job, now=NOW) == ["Recently posted"]
    assert match_reasons(UserProfile(), job, now=NOW + timedelta(days=30)) == []


def test_reasons_without_reference_time_do_not_depend_on_the_clock(make_posting) -> None:
    job = make_posting(posted_at=datetime.now(UTC))

    assert match_reasons(UserProfile(), job) == []
    assert rank_jobs(UserProfile(), [job])[0].reasons == []


def test_rank_jobs_orders_by_score_descending(make_posting) -> None:
    onsite = make_posting(source_job_id="1", title="Onsite")
    remote = make_posting(source_job_id="2", title="Remote", remote=True)

    ranked = rank_jobs(UserProfile(), [onsite, remote], now=NOW)

    assert [item.job.title for item in ranked] == ["Remote", "Onsite"]
    assert [item.score for item in ranked] == [15, 0]


def test_rank_jobs_is_stable_for_equal_scores(make_posting) -> None:
    jobs = [
        make_posting(source_job_id=str(index), title=f"Role {index}", remote=index % 2 == 0)
        for index in range(6)
    ]

    ordered = sort_by_match(UserProfile(), jobs)

    assert [job.title for job in ordered] == [
        "Role 0",
        "Role 2",
        "Role 4",
        "Role 1",
        "Role 3",
        "Role 5",
    ]


@pytest.mark.parametrize(
    ("purpose", "expected"),
    [
        (
            "Looking for a job",
            "Great news, Priya! We found 4 opportunities that match your profile perfectly.",
        ),
        ("Just exploring", "Hey Priya! Here are 4 interesting opportunities you might like."),
        (
            "Career change",
            "Priya, we've identified 4 roles that align with your career transition goals.",
        ),
        (None, "We found 4 great opportunities for you!"),
    ],
)
def test_recommendation_message_follows_profile_purpose(purpose, expected) -> None:
    profile = UserProfile(name="Priya", purpose=purpose)

    assert recommendation_message(profile, 4) == expected


def test_recommendation_message_without_a_name() -> None:
    profile = UserProfile(purpose="Just exploring")

    assert recommendation_message(profile, 0).startswith("Hey there!")
