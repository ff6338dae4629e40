"""
Pydantic schemas for the Escape mission service.

Three groups:
  A. Database rows (Shelter, Mission, MissionResult, PointRecord, ...)
  B. Game data (Location, Zombie, ScoreComponents, RankingEntry, TrackingProgress)
  C. HTTP I/O and Gemini structured-output schemas
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator


# ──────────────────────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────────────────────


class DisasterType(str, Enum):
    FLOOD = "Flood"
    LANDSLIDE = "Landslide"
    STORM_SURGE = "Storm Surge"
    EARTHQUAKE = "Earthquake"
    TSUNAMI = "Tsunami"
    FIRE = "Fire"
    INLAND_FLOOD = "Inland Flood"
    VOLCANO = "Volcano"
    ZOMBIE = "Zombie"


class MissionState(str, Enum):
    """Values are the strings stored in ``missions.status``."""

    NO_MISSION = "none"
    IN_PROGRESS = "creating"
    ACTIVE = "have"
    COMPLETED = "done"


class MemberRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


# ──────────────────────────────────────────────────────────────
# A. Database rows
# ──────────────────────────────────────────────────────────────

# Shelter column for each disaster type. Zombie missions accept any shelter.
_SUPPORT_COLUMNS = {
    DisasterType.FLOOD: "is_flood",
    DisasterType.LANDSLIDE: "is_landslide",
    DisasterType.STORM_SURGE: "is_storm_surge",
    DisasterType.EARTHQUAKE: "is_earthquake",
    DisasterType.TSUNAMI: "is_tsunami",
    DisasterType.FIRE: "is_fire",
    DisasterType.INLAND_FLOOD: "is_inland_flood",
    DisasterType.VOLCANO: "is_volcano",
}


class Shelter(BaseModel):
    """A row of the ``shelters`` table."""

    id: str
    name: str
    address: str = ""
    municipality: Optional[str] = None
    latitude: float
    longitude: float
    is_shelter: Optional[bool] = None
    is_flood: Optional[bool] = None
    is_landslide: Optional[bool] = None
    is_storm_surge: Optional[bool] = None
    is_earthquake: Optional[bool] = None
    is_tsunami: Optional[bool] = None
    is_fire: Optional[bool] = None
    is_inland_flood: Optional[bool] = None
    is_volcano: Optional[bool] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v):
        return str(v)

    def supports(self, disaster_type: DisasterType) -> bool:
        column = _SUPPORT_COLUMNS.get(disaster_type)
        if column is None:
            return True
        return getattr(self, column) is True

    @property
    def supported_disaster_types(self) -> list[DisasterType]:
        return [d for d, col in _SUPPORT_COLUMNS.items() if getattr(self, col) is True]


class Mission(BaseModel):
    id: str
    user_id: str
    title: Optional[str] = None
    overview: Optional[str] = None
    disaster_type: Optional[DisasterType] = None
    status: MissionState = MissionState.NO_MISSION
    steps: Optional[int] = None
    distances: Optional[float] = None
    created_at: Optional[datetime] = None


class MissionResult(BaseModel):
    """A row of ``mission_results`` — one per completed mission."""

    id: Optional[str] = None
    mission_id: str
    user_id: str
    shelter_id: Optional[str] = None

    start_latitude: Optional[float] = None
    start_longitude: Optional[float] = None
    end_latitude: Optional[float] = None
    end_longitude: Optional[float] = None

    actual_distance_meters: Optional[float] = None
    optimal_distance_meters: Optional[float] = None
    steps: Optional[int] = None

    base_points: Optional[int] = None
    distance_points: Optional[int] = None
    bonus_points: Optional[int] = None
    route_efficiency_multiplier: Optional[float] = None
    final_points: Optional[int] = None

    created_at: Optional[datetime] = None


class PointRecord(BaseModel):
    id: Optional[str] = None
    user_id: Optional[str] = None
    point: Optional[int] = None
    created_at: Optional[datetime] = None


class ShelterBadge(BaseModel):
    id: str
    badge_name: str = ""
    shelter_id: str
    first_user_id: Optional[str] = None
    created_at: Optional[datetime] = None


class ShelterRating(BaseModel):
    """A row of ``shelter_ratings``; one per user and shelter."""

    id: str
    shelter_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("shelter_id", mode="before")
    @classmethod
    def _shelter_id_as_str(cls, v):
        return str(v)


class GroupMember(BaseModel):
    id: Optional[str] = None
    group_id: str
    user_id: str
    role: MemberRole = MemberRole.MEMBER
    joined_at: Optional[datetime] = None


# ──────────────────────────────────────────────────────────────
# B. Game data
# ──────────────────────────────────────────────────────────────


class Location(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    timestamp: Optional[datetime] = None


class Zombie(BaseModel):
    id: str
    latitude: float
    longitude: float
    angle: float = 0.0          # heading in radians, 0 = north
    speed_mps: float


class ScoreComponents(BaseModel):
    base_points: int
    distance_points: int
    bonus_points: int
    route_efficiency_multiplier: float
    final_points: int


class RankingEntry(BaseModel):
    """One leaderboard row. ``rank == -1`` marks the gap separator."""

    user_id: Optional[str] = None
    name: str = ""
    points: int = 0
    rank: int

    @property
    def is_separator(self) -> bool:
        return self.rank == -1


class TrackingProgress(BaseModel):
    tracking: bool = False
    accumulated_distance_m: float = 0.0
    estimated_steps: int = 0
    sample_count: int = 0
    start_location: Optional[Location] = None
    last_location: Optional[Location] = None
    danger_zone_count: int = 0
    entered_zones: list[int] = Field(default_factory=list)
    zombie_count: int = 0
    zombie_hit_count: int = 0


class ResultsSummary(BaseModel):
    completed_missions: int = 0
    total_distance_km: float = 0.0
    total_steps: int = 0
    average_steps: float = 0.0
    average_distance_km: float = 0.0


# ──────────────────────────────────────────────────────────────
# C. HTTP I/O
# ──────────────────────────────────────────────────────────────


class GenerateMissionRequest(BaseModel):
    user_id: str
    context: str = Field(default="", description="Optional scenario context")
    disaster_type_hint: Optional[DisasterType] = None


class StateChangeRequest(BaseModel):
    state: MissionState


class LocationUpdateResponse(BaseModel):
    progress: TrackingProgress
    reached_shelter: Optional[Shelter] = None
    entered_zone: Optional[int] = None
    zombie_hits: list[str] = Field(default_factory=list)  # ids of zombies that caught up this update


class DangerZones(BaseModel):
    """Polygons as lists of (latitude, longitude) vertices."""

    zones: list[list[tuple[float, float]]] = Field(default_factory=list)


class CompleteMissionRequest(BaseModel):
    user_id: str
    shelter_id: str
    location: Location


class CompletionResponse(BaseModel):
    mission_id: str
    shelter_id: str
    is_new_badge: bool = False
    badge_id: Optional[str] = None
    score: Optional[ScoreComponents] = None
    total_points: int = 0
    national_rank: Optional[int] = None
    errors: list[str] = Field(default_factory=list)


class ScorePreviewRequest(BaseModel):
    actual_distance_meters: float = Field(..., ge=0)
    optimal_distance_meters: float = Field(..., ge=0)
    is_new_badge: bool = False


class ShelterDetail(BaseModel):
    shelter: Shelter
    disaster_types: list[DisasterType] = Field(default_factory=list)
    badge: Optional[ShelterBadge] = None
    visit_count: int = 0


class BadgeSkill(BaseModel):
    user_id: str
    shelter_id: str
    visit_count: int = 0
    stars: int = Field(0, ge=0, le=3)


class ZombieSwarm(BaseModel):
    zombies: list[Zombie] = Field(default_factory=list)
    hit_count: int = 0


class RatingRequest(BaseModel):
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=500)


class RatingSummary(BaseModel):
    average_rating: float = 0.0
    total_ratings: int = 0
    distribution: dict[int, int] = Field(default_factory=dict)  # stars → count


class ShelterRatings(BaseModel):
    shelter_id: str
    summary: RatingSummary = Field(default_factory=RatingSummary)
    ratings: list[ShelterRating] = Field(default_factory=list)


class UserStats(BaseModel):
    user_id: str
    total_points: int = 0
    national_rank: Optional[int] = None
    summary: ResultsSummary = Field(default_factory=ResultsSummary)


# ──────────────────────────────────────────────────────────────
# Gemini structured-output schema
# ──────────────────────────────────────────────────────────────


class GeneratedMission(BaseModel):
    """What Gemini returns for mission generation."""

    title: str = Field(..., max_length=120)
    overview: str
    disaster_type: Optional[str] = None
