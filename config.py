"""
EscapeConfig — every tunable constant of the mission game.

Scoring defaults are the live game values; tracking and leaderboard
defaults are what the map and ranking screens use.
``PUT /config`` updates these at runtime.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class EscapeConfig:
    # ── Scoring ────────────────────────────────────────────
    base_points_fixed: int = 1000
    distance_multiplier: float = 0.5     # points per metre walked
    new_badge_bonus: int = 1500          # first visitor founds the badge

    # ── Route efficiency ───────────────────────────────────
    min_distance_threshold_m: float = 10.0  # shorter walks score at 1.0
    min_route_efficiency: float = 0.7
    max_route_efficiency: float = 1.0

    # ── Leaderboard ────────────────────────────────────────
    leaderboard_top_n: int = 10
    leaderboard_context_window: int = 15    # rows above and below the user
    leaderboard_fallback_limit: int = 100

    # ── Map / proximity ────────────────────────────────────
    shelter_reach_radius_m: float = 30.0
    nearby_radius_km: float = 1.5

    # ── Location tracking ──────────────────────────────────
    stride_length_m: float = 0.75
    min_tracking_delta_m: float = 1.0       # GPS jitter floor
    max_walking_speed_mps: float = 12.0     # anything faster is a GPS jump

    # ── Zombie mode ────────────────────────────────────────
    zombie_count: int = 10
    zombie_min_spawn_m: float = 50.0
    zombie_max_spawn_m: float = 300.0
    zombie_min_speed_mps: float = 0.5
    zombie_max_speed_mps: float = 2.0
    zombie_hit_distance_m: float = 4.0
    zombie_follow_strength: float = 0.7     # 0 wanders, 1 heads straight at the user
    zombie_step_seconds: float = 1.0
    zombie_max_steps: int = 60              # per location update

    # ── Badge skill level (visits needed for 1/2/3 stars) ──
    skill_star_thresholds: list = field(default_factory=lambda: [1, 3, 5])

    def to_dict(self) -> dict:
        return {
            k: (list(v) if isinstance(v, list) else v)
            for k, v in self.__dict__.items()
        }
