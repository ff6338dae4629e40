"""
Mission scoring — points for reaching a shelter.

Mechanics:
  - Distance points: actual metres × 0.5 (truncated)
  - Base points: 1000 fixed + distance points
  - Bonus: +1500 when the user founds a new shelter badge
  - Route efficiency: clamp(optimal / actual, 0.7, 1.0), 1.0 under 10 m
  - Final: (base + bonus) × route efficiency (truncated)
  - Skill stars: 1 / 2 / 3 stars at 1 / 3 / 5 visits to the same shelter
  - Shelter rating: mean of 1-5 star ratings, rounded to 2 places
"""

from __future__ import annotations

from models import MissionResult, ScoreComponents, ResultsSummary, ShelterRating, RatingSummary
from config import EscapeConfig


# ── Route efficiency ──────────────────────────────────────────

def route_efficiency_multiplier(
    actual_distance_m: float,
    optimal_distance_m: float,
    cfg: EscapeConfig | None = None,
) -> float:
    if cfg is None:
        cfg = EscapeConfig()

    # Walks too short to judge are not penalised
    if actual_distance_m < cfg.min_distance_threshold_m:
        return 1.0

    efficiency = optimal_distance_m / actual_distance_m
    return max(cfg.min_route_efficiency, min(cfg.max_route_efficiency, efficiency))


# ── Main score function ───────────────────────────────────────

def calculate_score(
    actual_distance_m: float,
    optimal_distance_m: float,
    is_new_badge: bool,
    cfg: EscapeConfig | None = None,
) -> ScoreComponents:
    """
    Compute every score component for one completed mission.

    ``base_points`` is reported as the fixed part only; the distance share
    is reported separately in ``distance_points`` but both feed the final.
    """
    if cfg is None:
        cfg = EscapeConfig()

    distance_points = int(actual_distance_m * cfg.distance_multiplier)
    base_points = cfg.base_points_fixed + distance_points
    bonus_points = cfg.new_badge_bonus if is_new_badge else 0

    multiplier = route_efficiency_multiplier(actual_distance_m, optimal_distance_m, cfg)
    final_points = int((base_points + bonus_points) * multiplier)

    return ScoreComponents(
        base_points=cfg.base_points_fixed,
        distance_points=distance_points,
        bonus_points=bonus_points,
        route_efficiency_multiplier=multiplier,
        final_points=final_points,
    )


# ── Badge skill level ─────────────────────────────────────────

def skill_star_count(visit_count: int, cfg: EscapeConfig | None = None) -> int:
    if cfg is None:
        cfg = EscapeConfig()
    return sum(1 for threshold in cfg.skill_star_thresholds if visit_count >= threshold)


# ── Stats over past results ───────────────────────────────────

def summarize_results(results: list[MissionResult]) -> ResultsSummary:
    """Totals and averages for the stats screen. Missing fields count as absent."""
    count = len(results)
    total_km = sum(
        r.actual_distance_meters for r in results if r.actual_distance_meters is not None
    ) / 1000.0
    total_steps = sum(r.steps for r in results if r.steps is not None)

    return ResultsSummary(
        completed_missions=count,
        total_distance_km=total_km,
        total_steps=total_steps,
        average_steps=total_steps / count if count else 0.0,
        average_distance_km=total_km / count if count else 0.0,
    )


# ── Shelter ratings ───────────────────────────────────────────

def summarize_ratings(ratings: list[ShelterRating]) -> RatingSummary:
    """Average stars and a 1-5 histogram; 0.0 when nobody has rated."""
    count = len(ratings)
    distribution = {stars: 0 for stars in range(1, 6)}
    for r in ratings:
        distribution[r.rating] += 1

    return RatingSummary(
        average_rating=round(sum(r.rating for r in ratings) / count, 2) if count else 0.0,
        total_ratings=count,
        distribution=distribution,
    )
