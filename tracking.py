"""
Location tracking during an active mission.

Accumulates walked distance from successive GPS fixes, estimates steps,
detects when the user reaches a shelter or walks into a danger zone, and
moves zombies during zombie missions. One ``MissionTracker`` per user is
kept in memory by ``TrackerRegistry``, keyed by the lowercased user id.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta

from models import Location, Shelter, DisasterType, TrackingProgress, Zombie
from config import EscapeConfig
from geo import (
    haversine_m,
    filter_by_disaster_types,
    find_reached_shelter,
    check_polygon_entry,
    spawn_zombies,
    move_zombies,
)

logger = logging.getLogger(__name__)


class MissionTracker:
    def __init__(self, cfg: EscapeConfig | None = None):
        self.cfg = cfg or EscapeConfig()
        self.accumulated_distance_m: float = 0.0
        self.sample_count: int = 0
        self.start_location: Location | None = None
        self.last_location: Location | None = None
        self.selected_disaster_types: set[DisasterType] = set()
        self.reached_shelters: set[str] = set()
        self.danger_zones: list[list[tuple[float, float]]] = []
        self.entered_zones: set[int] = set()
        self.zombies: list[Zombie] = []
        self.zombie_hits: set[str] = set()
        self._zombie_clock: datetime | None = None

    # ── Lifecycle ─────────────────────────────────────────────

    @property
    def is_tracking(self) -> bool:
        return self.start_location is not None

    def start(self, location: Location | None) -> None:
        """Begin a fresh mission at ``location`` (may be unknown yet)."""
        self.accumulated_distance_m = 0.0
        self.sample_count = 0
        self.reached_shelters.clear()
        self.entered_zones.clear()
        self.clear_zombies()
        self.start_location = location
        self.last_location = location
        if location is not None:
            self.sample_count = 1
        logger.info("Mission tracking started")

    def reset(self) -> None:
        self.start(None)
        self.selected_disaster_types.clear()
        self.danger_zones = []

    def update(self, location: Location) -> float:
        """
        Feed one GPS fix; returns the distance added in metres.

        Deltas under ``min_tracking_delta_m`` keep the old anchor so slow
        drift still adds up. Deltas faster than ``max_walking_speed_mps``,
        or timestamped no later than the anchor, are dropped but move the
        anchor.
        """
        if self.last_location is None:
            self.start(location)
            return 0.0

        self.sample_count += 1
        prev = self.last_location
        delta = haversine_m(prev.latitude, prev.longitude, location.latitude, location.longitude)

        if delta < self.cfg.min_tracking_delta_m:
            return 0.0

        if prev.timestamp is not None and location.timestamp is not None:
            elapsed = (location.timestamp - prev.timestamp).total_seconds()
            # A fix no later than the anchor has unbounded speed
            if elapsed <= 0 or delta / elapsed > self.cfg.max_walking_speed_mps:
                logger.warning(f"Dropping GPS jump of {delta:.1f} m in {elapsed:.1f} s")
                self.last_location = location
                return 0.0

        self.accumulated_distance_m += delta
        self.last_location = location
        return delta

    # ── Derived values ────────────────────────────────────────

    @property
    def estimated_steps(self) -> int:
        if self.cfg.stride_length_m <= 0:
            return 0
        return int(self.accumulated_distance_m / self.cfg.stride_length_m)

    def optimal_distance_to(self, shelter: Shelter) -> float:
        """Straight-line metres from the start point to ``shelter``."""
        if self.start_location is None:
            return 0.0
        return haversine_m(
            self.start_location.latitude,
            self.start_location.longitude,
            shelter.latitude,
            shelter.longitude,
        )

    def progress(self) -> TrackingProgress:
        return TrackingProgress(
            tracking=self.is_tracking,
            accumulated_distance_m=self.accumulated_distance_m,
            estimated_steps=self.estimated_steps,
            sample_count=self.sample_count,
            start_location=self.start_location,
            last_location=self.last_location,
            danger_zone_count=len(self.danger_zones),
            entered_zones=sorted(self.entered_zones),
            zombie_count=len(self.zombies),
            zombie_hit_count=len(self.zombie_hits),
        )

    # ── Filters & proximity ───────────────────────────────────

    def toggle_disaster_type(self, disaster_type: DisasterType) -> None:
        if disaster_type in self.selected_disaster_types:
            self.selected_disaster_types.remove(disaster_type)
        else:
            self.selected_disaster_types.add(disaster_type)

    def clear_filters(self) -> None:
        self.selected_disaster_types.clear()

    def filtered_shelters(self, shelters: list[Shelter]) -> list[Shelter]:
        return filter_by_disaster_types(shelters, self.selected_disaster_types)

    def check_shelter_proximity(
        self,
        shelters: list[Shelter],
        location: Location,
        radius_m: float | None = None,
    ) -> Shelter | None:
        """Newly reached shelter among the filtered ones, or None."""
        radius = self.cfg.shelter_reach_radius_m if radius_m is None else radius_m
        shelter = find_reached_shelter(
            self.filtered_shelters(shelters),
            location.latitude,
            location.longitude,
            radius,
            self.reached_shelters,
        )
        if shelter is not None:
            self.reached_shelters.add(shelter.id)
        return shelter

    # ── Danger zones ──────────────────────────────────────────

    def set_danger_zones(self, zones: list[list[tuple[float, float]]]) -> None:
        self.danger_zones = zones
        self.entered_zones.clear()

    def clear_danger_zones(self) -> None:
        self.set_danger_zones([])

    def check_danger_zone(self, location: Location) -> int | None:
        """Index of a zone entered for the first time, or None."""
        index = check_polygon_entry(
            location.latitude, location.longitude, self.danger_zones, self.entered_zones
        )
        if index is not None:
            self.entered_zones.add(index)
            logger.info(f"Entered danger zone {index}")
        return index

    # ── Zombies ───────────────────────────────────────────────

    def spawn_zombies(self, center: Location, rng: random.Random | None = None) -> list[Zombie]:
        cfg = self.cfg
        self.zombies = spawn_zombies(
            center.latitude,
            center.longitude,
            cfg.zombie_count,
            cfg.zombie_min_spawn_m,
            cfg.zombie_max_spawn_m,
            cfg.zombie_min_speed_mps,
            cfg.zombie_max_speed_mps,
            rng,
        )
        self.zombie_hits.clear()
        self._zombie_clock = center.timestamp
        return self.zombies

    def clear_zombies(self) -> None:
        self.zombies = []
        self.zombie_hits.clear()
        self._zombie_clock = None

    def advance_zombies(self, location: Location, rng: random.Random | None = None) -> list[str]:
        """
        Move zombies towards ``location``; returns ids that caught up.

        One tick per ``zombie_step_seconds`` elapsed since the last tick,
        capped at ``zombie_max_steps``. Fixes without timestamps move one tick.
        """
        if not self.zombies:
            return []

        step = self.cfg.zombie_step_seconds
        if location.timestamp is None or self._zombie_clock is None:
            ticks = 1
            self._zombie_clock = location.timestamp
        else:
            elapsed = (location.timestamp - self._zombie_clock).total_seconds()
            ticks = max(0, int(elapsed // step))
            if ticks > self.cfg.zombie_max_steps:
                ticks = self.cfg.zombie_max_steps
                self._zombie_clock = location.timestamp
            else:
                self._zombie_clock += timedelta(seconds=ticks * step)

        hits: list[str] = []
        for _ in range(ticks):
            hits += move_zombies(
                self.zombies,
                location.latitude,
                location.longitude,
                step,
                self.cfg.zombie_follow_strength,
                self.cfg.zombie_hit_distance_m,
                self.zombie_hits,
                rng,
            )
        if hits:
            logger.info(f"{len(hits)} zombie(s) caught up, {len(self.zombie_hits)} in total")
        return hits


class TrackerRegistry:
    """In-memory trackers keyed by lowercased user id, as ids are stored."""

    def __init__(self, cfg: EscapeConfig | None = None):
        self.cfg = cfg or EscapeConfig()
        self._trackers: dict[str, MissionTracker] = {}

    def get(self, user_id: str) -> MissionTracker:
        tracker = self._trackers.get(user_id.lower())
        if tracker is None:
            tracker = MissionTracker(self.cfg)
            self._trackers[user_id.lower()] = tracker
        return tracker

    def discard(self, user_id: str) -> None:
        self._trackers.pop(user_id.lower(), None)

    def __contains__(self, user_id: str) -> bool:
        return user_id.lower() in self._trackers
