"""Score calculator, skill stars and result summaries."""

import pytest

from config import EscapeConfig
from models import MissionResult, ShelterRating
from scoring import (
    calculate_score,
    route_efficiency_multiplier,
    skill_star_count,
    summarize_ratings,
    summarize_results,
)


def test_efficient_route_without_badge():
    score = calculate_score(1000, 900, is_new_badge=False)

    assert score.base_points == 1000
    assert score.distance_points == 500
    assert score.bonus_points == 0
    assert score.route_efficiency_multiplier == pytest.approx(0.9)
    assert score.final_points == int((1000 + 500) * (900 / 1000))


def test_new_badge_adds_bonus_before_multiplier():
    score = calculate_score(1000, 500, is_new_badge=True)

    assert score.bonus_points == 1500
    assert score.route_efficiency_multiplier == 0.7
    assert score.final_points == int((1000 + 500 + 1500) * 0.7)


def test_short_walk_is_not_penalised():
    score = calculate_score(5, 0, is_new_badge=True)

    assert score.route_efficiency_multiplier == 1.0
    assert score.distance_points == 2
    assert score.final_points == 1000 + 2 + 1500


def test_threshold_distance_is_judged():
    assert route_efficiency_multiplier(10.0, 0.0) == 0.7
    assert route_efficiency_multiplier(9.99, 0.0) == 1.0


def test_efficiency_is_capped_at_one():
    # GPS can under-measure the walk so optimal exceeds actual
    assert route_efficiency_multiplier(100, 150) == 1.0


def test_distance_points_truncate():
    assert calculate_score(15.9, 15.9, False).distance_points == 7


def test_custom_config_is_honoured():
    cfg = EscapeConfig(base_points_fixed=10, distance_multiplier=1.0, new_badge_bonus=0)
    score = calculate_score(20, 20, True, cfg)

    assert score.base_points == 10
    assert score.final_points == 30


@pytest.mark.parametrize(
    "visits, stars",
    [(0, 0), (1, 1), (2, 1), (3, 2), (4, 2), (5, 3), (42, 3)],
)
def test_skill_star_count(visits, stars):
    assert skill_star_count(visits) == stars


def test_summarize_results_skips_missing_fields():
    results = [
        MissionResult(mission_id="m1", user_id="u", actual_distance_meters=1000, steps=100),
        MissionResult(mission_id="m2", user_id="u", actual_distance_meters=2000),
        MissionResult(mission_id="m3", user_id="u", steps=300),
    ]
    summary = summarize_results(results)

    assert summary.completed_missions == 3
    assert summary.total_distance_km == pytest.approx(3.0)
    assert summary.total_steps == 400
    assert summary.average_steps == pytest.approx(400 / 3)
    assert summary.average_distance_km == pytest.approx(1.0)


def test_summarize_no_results():
    summary = summarize_results([])

    assert summary.completed_missions == 0
    assert summary.average_steps == 0.0
    assert summary.average_distance_km == 0.0


def _rating(stars):
    return ShelterRating(id=f"r{stars}", shelter_id="s1", user_id="u", rating=stars)


def test_summarize_ratings():
    summary = summarize_ratings([_rating(5), _rating(4), _rating(4)])

    assert summary.total_ratings == 3
    assert summary.average_rating == 4.33
    assert summary.distribution == {1: 0, 2: 0, 3: 0, 4: 2, 5: 1}


def test_unrated_shelter_summary():
    summary = summarize_ratings([])

    assert summary.average_rating == 0.0
    assert summary.total_ratings == 0
    assert sum(summary.distribution.values()) == 0
