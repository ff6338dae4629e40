"""
FastAPI server for the Escape mission service.

Endpoints:
  POST /missions/generate            — Gemini mission for today
  GET  /missions/today/{user_id}     — Today's mission
  GET  /missions/latest/{user_id}    — Most recent mission
  POST /missions/{id}/state          — Mission state transition
  POST /missions/{id}/complete       — Completion pipeline (LangGraph)
  POST /tracking/{user_id}/start     — Begin distance tracking
  POST /tracking/{user_id}/location  — Feed a GPS fix
  GET  /tracking/{user_id}           — Tracking progress
  DELETE /tracking/{user_id}         — Reset tracking
  POST /tracking/{user_id}/zones     — Place random danger zones
  DELETE /tracking/{user_id}/zones   — Remove danger zones
  POST /tracking/{user_id}/zombies   — Spawn zombies around the user
  GET  /tracking/{user_id}/zombies   — Zombie positions and hit count
  DELETE /tracking/{user_id}/zombies — Remove zombies
  POST /score/preview                — Pure score calculation
  GET  /shelters                     — All shelters
  GET  /shelters/nearby              — Shelters around a point
  GET  /shelters/{shelter_id}        — Shelter, badge and visit count
  GET  /shelters/{shelter_id}/ratings — Rating summary and reviews
  POST /shelters/{shelter_id}/ratings — Rate a shelter (badge holders only)
  DELETE /shelters/{shelter_id}/ratings/{user_id} — Remove a user's rating
  GET  /leaderboard/national         — Smart-paginated national board
  GET  /leaderboard/team/{group_id}  — Smart-paginated team board
  GET  /users/{user_id}/stats        — Points, rank and mission summary
  GET  /users/{user_id}/missions     — Completed missions
  GET  /users/{user_id}/results      — Mission results
  GET  /users/{user_id}/points       — Recent point records
  GET  /users/{user_id}/groups       — Group memberships
  GET  /users/{user_id}/shelters/{shelter_id}/skill — Badge skill stars
  GET  /config                       — Current EscapeConfig
  PUT  /config                       — Update EscapeConfig parameters
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import fields
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from models import (
    BadgeSkill,
    CompleteMissionRequest,
    CompletionResponse,
    DangerZones,
    DisasterType,
    GenerateMissionRequest,
    GroupMember,
    Location,
    LocationUpdateResponse,
    Mission,
    MissionResult,
    MissionState,
    PointRecord,
    RankingEntry,
    RatingRequest,
    ScoreComponents,
    ScorePreviewRequest,
    Shelter,
    ShelterBadge,
    ShelterDetail,
    ShelterRating,
    ShelterRatings,
    StateChangeRequest,
    TrackingProgress,
    UserStats,
    ZombieSwarm,
)
from config import EscapeConfig
from completion_graph import completion_graph
from geo import filter_by_disaster_types, generate_danger_zones
from leaderboard import aggregate_points, rank_entries, smart_paginate, team_leaderboard, user_rank
from mission_generator import generate_mission
from mission_state import InvalidTransition, can_complete, is_trackable, transition
from scoring import calculate_score, skill_star_count, summarize_ratings, summarize_results
from tracking import TrackerRegistry
import supabase_client as supa

logger = logging.getLogger(__name__)


# ── Global config (mutable, shared by every tracker) ──────────

_config = EscapeConfig()

# ── In-memory trackers (per user, persist during server life) ──

_trackers = TrackerRegistry(_config)


# ── Lifespan ──────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks."""
    logging.basicConfig(level=logging.INFO)
    logger.info("Escape mission service starting…")
    yield
    logger.info("Shutting down.")


# ── App ───────────────────────────────────────────────────────

app = FastAPI(
    title="Escape Mission Service",
    description="Disaster-preparedness missions, scoring and leaderboards",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Helpers ───────────────────────────────────────────────────

def _load_mission(mission_id: str) -> Mission:
    row = supa.get_mission(mission_id)
    if row is None:
        raise HTTPException(404, f"Mission not found: {mission_id}")
    return Mission(**row)


def _national_entries() -> list[RankingEntry]:
    rows = [PointRecord(**r) for r in supa.get_all_point_records()]
    totals = aggregate_points(rows)
    names = supa.fetch_user_names(list(totals))
    return rank_entries(totals, names)


# ──────────────────────────────────────────────────────────────
# Missions
# ──────────────────────────────────────────────────────────────

@app.post("/missions/generate", response_model=Mission)
async def generate_mission_endpoint(req: GenerateMissionRequest):
    """Generate today's mission with Gemini and store it as active."""
    existing = supa.fetch_active_mission(req.user_id)
    if existing:
        return Mission(**existing)

    try:
        mission_data = await generate_mission(req.user_id, req.context, req.disaster_type_hint)
    except Exception as e:
        logger.error(f"Mission generation failed: {e}")
        raise HTTPException(502, f"Failed to generate mission: {str(e)}")

    row = supa.create_mission(mission_data)
    if row is None:
        raise HTTPException(503, "Failed to store mission")
    return Mission(**row)


@app.get("/missions/today/{user_id}")
async def todays_mission(user_id: str):
    row = supa.fetch_todays_mission(user_id)
    if row is None:
        return {"state": MissionState.NO_MISSION.value, "mission": None}
    mission = Mission(**row)
    return {"state": mission.status.value, "mission": mission}


@app.get("/missions/latest/{user_id}", response_model=Mission)
async def latest_mission(user_id: str):
    row = supa.fetch_latest_mission(user_id)
    if row is None:
        raise HTTPException(404, f"No mission for user: {user_id}")
    return Mission(**row)


@app.post("/missions/{mission_id}/state", response_model=Mission)
async def change_mission_state(mission_id: str, req: StateChangeRequest):
    mission = _load_mission(mission_id)
    try:
        new_state = transition(mission.status, req.state)
    except InvalidTransition as e:
        raise HTTPException(409, str(e))

    if new_state != mission.status and not supa.update_mission_status(mission_id, new_state.value):
        raise HTTPException(503, "Failed to update mission status")

    if new_state == MissionState.NO_MISSION:
        _trackers.discard(mission.user_id)
    return mission.model_copy(update={"status": new_state})


@app.post("/missions/{mission_id}/complete", response_model=CompletionResponse)
async def complete_mission(mission_id: str, req: CompleteMissionRequest):
    """
    Run the completion pipeline:
    mark_completed → verify_shelter → resolve_badge → compute_score
    → persist_result → award_points → refresh_rank
    """
    mission = _load_mission(mission_id)
    user_id = req.user_id.lower()
    if user_id != mission.user_id.lower():
        raise HTTPException(403, "Mission belongs to another user")
    if not can_complete(mission.status):
        raise HTTPException(409, f"Mission is not active (status: {mission.status.value})")

    tracker = _trackers.get(user_id)
    tracker.update(req.location)
    progress = tracker.progress()

    initial_state = {
        "mission_id": mission_id,
        "user_id": user_id,
        "shelter_id": req.shelter_id,
        "start_location": progress.start_location.model_dump(mode="json") if progress.start_location else None,
        "end_location": req.location.model_dump(mode="json"),
        "actual_distance_m": progress.accumulated_distance_m,
        "steps": progress.estimated_steps,
        "config": _config.to_dict(),
        "errors": [],
    }

    result = await completion_graph.ainvoke(initial_state)

    if not result.get("shelter_found"):
        raise HTTPException(404, "Shelter not found in database")

    _trackers.discard(user_id)
    score = result.get("score")
    return CompletionResponse(
        mission_id=mission_id,
        shelter_id=req.shelter_id,
        is_new_badge=result.get("is_new_badge", False),
        badge_id=result.get("badge_id"),
        score=ScoreComponents(**score) if score else None,
        total_points=result.get("total_points", 0),
        national_rank=result.get("national_rank"),
        errors=result.get("errors", []),
    )


# ──────────────────────────────────────────────────────────────
# Tracking
# ──────────────────────────────────────────────────────────────

@app.post("/tracking/{user_id}/start", response_model=TrackingProgress)
async def start_tracking(user_id: str, location: Optional[Location] = None):
    """Zombie missions with a known start point also get a zombie swarm."""
    mission_row = supa.fetch_todays_mission(user_id)
    tracker = _trackers.get(user_id)
    tracker.start(location)
    tracker.clear_filters()
    if mission_row:
        mission = Mission(**mission_row)
        if mission.disaster_type is not None:
            tracker.toggle_disaster_type(mission.disaster_type)
        if mission.disaster_type == DisasterType.ZOMBIE and location is not None:
            tracker.spawn_zombies(location)
    return tracker.progress()


@app.post("/tracking/{user_id}/location", response_model=LocationUpdateResponse)
async def update_location(user_id: str, location: Location):
    """Accumulate distance and check whether a shelter has been reached."""
    if user_id not in _trackers:
        raise HTTPException(404, "Tracking not started for this user")

    mission_row = supa.fetch_todays_mission(user_id)
    if mission_row is None or not is_trackable(Mission(**mission_row).status):
        raise HTTPException(409, "No active mission to track")

    tracker = _trackers.get(user_id)
    tracker.update(location)
    zombie_hits = tracker.advance_zombies(location)

    shelters = [
        Shelter(**row)
        for row in supa.fetch_nearby_shelters(
            location.latitude, location.longitude, _config.nearby_radius_km
        )
    ]
    reached = tracker.check_shelter_proximity(shelters, location)
    entered = tracker.check_danger_zone(location)
    return LocationUpdateResponse(
        progress=tracker.progress(),
        reached_shelter=reached,
        entered_zone=entered,
        zombie_hits=zombie_hits,
    )


@app.get("/tracking/{user_id}", response_model=TrackingProgress)
async def get_tracking(user_id: str):
    if user_id not in _trackers:
        return TrackingProgress()
    return _trackers.get(user_id).progress()


@app.delete("/tracking/{user_id}")
async def reset_tracking(user_id: str):
    _trackers.discard(user_id)
    return {"status": "reset"}


@app.post("/tracking/{user_id}/zones", response_model=DangerZones)
async def place_danger_zones(user_id: str, location: Optional[Location] = None):
    """Scatter danger zones around ``location`` or the last known position."""
    if user_id not in _trackers:
        raise HTTPException(404, "Tracking not started for this user")

    tracker = _trackers.get(user_id)
    center = location or tracker.last_location
    if center is None:
        raise HTTPException(409, "No known location to place danger zones around")

    tracker.set_danger_zones(generate_danger_zones(center.latitude, center.longitude))
    return DangerZones(zones=tracker.danger_zones)


@app.delete("/tracking/{user_id}/zones")
async def clear_danger_zones(user_id: str):
    if user_id in _trackers:
        _trackers.get(user_id).clear_danger_zones()
    return {"status": "cleared"}


@app.post("/tracking/{user_id}/zombies", response_model=ZombieSwarm)
async def spawn_zombies(user_id: str, location: Optional[Location] = None):
    """Replace any swarm with a fresh one around ``location`` or the last fix."""
    if user_id not in _trackers:
        raise HTTPException(404, "Tracking not started for this user")

    tracker = _trackers.get(user_id)
    center = location or tracker.last_location
    if center is None:
        raise HTTPException(409, "No known location to spawn zombies around")

    tracker.spawn_zombies(center)
    return ZombieSwarm(zombies=tracker.zombies, hit_count=0)


@app.get("/tracking/{user_id}/zombies", response_model=ZombieSwarm)
async def get_zombies(user_id: str):
    if user_id not in _trackers:
        return ZombieSwarm()
    tracker = _trackers.get(user_id)
    return ZombieSwarm(zombies=tracker.zombies, hit_count=len(tracker.zombie_hits))


@app.delete("/tracking/{user_id}/zombies")
async def clear_zombies(user_id: str):
    if user_id in _trackers:
        _trackers.get(user_id).clear_zombies()
    return {"status": "cleared"}


# ──────────────────────────────────────────────────────────────
# Scoring & shelters
# ──────────────────────────────────────────────────────────────

@app.post("/score/preview", response_model=ScoreComponents)
async def score_preview(req: ScorePreviewRequest):
    return calculate_score(
        req.actual_distance_meters,
        req.optimal_distance_meters,
        req.is_new_badge,
        _config,
    )


@app.get("/shelters/nearby", response_model=list[Shelter])
async def nearby_shelters(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius_km: Optional[float] = Query(None, gt=0),
    disaster_type: list[DisasterType] = Query([]),
):
    radius = radius_km if radius_km is not None else _config.nearby_radius_km
    shelters = [Shelter(**row) for row in supa.fetch_nearby_shelters(latitude, longitude, radius)]
    return filter_by_disaster_types(shelters, set(disaster_type))


@app.get("/shelters", response_model=list[Shelter])
async def list_shelters(disaster_type: list[DisasterType] = Query([])):
    shelters = [Shelter(**row) for row in supa.fetch_shelters()]
    return filter_by_disaster_types(shelters, set(disaster_type))


@app.get("/shelters/{shelter_id}", response_model=ShelterDetail)
async def shelter_detail(shelter_id: str):
    row = supa.get_shelter(shelter_id)
    if row is None:
        raise HTTPException(404, f"Shelter not found: {shelter_id}")

    shelter = Shelter(**row)
    badge = supa.get_badge_for_shelter(shelter_id)
    return ShelterDetail(
        shelter=shelter,
        disaster_types=shelter.supported_disaster_types,
        badge=ShelterBadge(**badge) if badge else None,
        visit_count=len(supa.get_shelter_mission_results(shelter_id)),
    )


@app.get("/shelters/{shelter_id}/ratings", response_model=ShelterRatings)
async def shelter_ratings(shelter_id: str):
    """Summary plus every review, newest first."""
    if not supa.verify_shelter_exists(shelter_id):
        raise HTTPException(404, f"Shelter not found: {shelter_id}")

    ratings = [ShelterRating(**r) for r in supa.get_shelter_ratings(shelter_id)]
    return ShelterRatings(
        shelter_id=shelter_id,
        summary=summarize_ratings(ratings),
        ratings=ratings,
    )


@app.post("/shelters/{shelter_id}/ratings", response_model=ShelterRating)
async def rate_shelter(shelter_id: str, req: RatingRequest):
    """
    Create or replace the user's rating. Only users who collected the
    shelter's badge may rate it.
    """
    if not supa.verify_shelter_exists(shelter_id):
        raise HTTPException(404, f"Shelter not found: {shelter_id}")

    user_id = req.user_id.lower()
    badge = supa.get_badge_for_shelter(shelter_id)
    if badge is None or not supa.user_has_badge(user_id, badge["id"]):
        raise HTTPException(403, "Collect this shelter's badge before rating it")

    review = req.review.strip() if req.review else None
    existing = supa.get_user_rating(user_id, shelter_id)
    if existing:
        row = supa.update_rating(existing["id"], req.rating, review or None)
    else:
        row = supa.create_rating(user_id, shelter_id, req.rating, review or None)
    if row is None:
        raise HTTPException(503, "Failed to store rating")

    logger.info(f"{user_id} rated shelter {shelter_id}: {req.rating} stars")
    return ShelterRating(**row)


@app.delete("/shelters/{shelter_id}/ratings/{user_id}")
async def delete_shelter_rating(shelter_id: str, user_id: str):
    existing = supa.get_user_rating(user_id.lower(), shelter_id)
    if existing is None:
        raise HTTPException(404, "No rating to delete")
    if not supa.delete_rating(existing["id"]):
        raise HTTPException(503, "Failed to delete rating")
    return {"status": "deleted"}


# ──────────────────────────────────────────────────────────────
# Leaderboards & stats
# ──────────────────────────────────────────────────────────────

@app.get("/leaderboard/national", response_model=list[RankingEntry])
async def national_leaderboard(user_id: Optional[str] = None):
    entries = _national_entries()
    return smart_paginate(entries, user_id.lower() if user_id else None, _config)


@app.get("/leaderboard/team/{group_id}", response_model=list[RankingEntry])
async def team_leaderboard_endpoint(group_id: str, user_id: Optional[str] = None):
    members = supa.fetch_group_members(group_id)
    if not members:
        raise HTTPException(404, f"Group has no members: {group_id}")

    member_ids = [m["user_id"] for m in members]
    rows = [PointRecord(**r) for r in supa.get_all_point_records(member_ids)]
    names = supa.fetch_user_names(member_ids)
    entries = team_leaderboard(member_ids, rows, names)
    return smart_paginate(entries, user_id.lower() if user_id else None, _config)


@app.get("/users/{user_id}/stats", response_model=UserStats)
async def user_stats(user_id: str, limit: int = Query(30, ge=1, le=365)):
    results = [MissionResult(**r) for r in supa.fetch_recent_mission_results(user_id, limit)]
    return UserStats(
        user_id=user_id,
        total_points=supa.get_total_points(user_id),
        national_rank=user_rank(_national_entries(), user_id.lower()),
        summary=summarize_results(results),
    )


@app.get("/users/{user_id}/missions", response_model=list[Mission])
async def completed_missions(
    user_id: str,
    limit: int = Query(30, ge=1, le=365),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
):
    """Completed missions, newest first. ``start``/``end`` select a date range."""
    if start is not None and end is not None:
        rows = supa.fetch_completed_missions_in_range(user_id, start, end)
    else:
        rows = supa.fetch_recent_completed_missions(user_id, limit)
    return [Mission(**r) for r in rows]


@app.get("/users/{user_id}/results", response_model=list[MissionResult])
async def mission_results(
    user_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
):
    if start is not None and end is not None:
        rows = supa.fetch_mission_results_in_range(user_id, start, end)
    else:
        rows = supa.get_user_mission_results(user_id)
    return [MissionResult(**r) for r in rows]


@app.get("/users/{user_id}/points", response_model=list[PointRecord])
async def recent_points(user_id: str, limit: int = Query(50, ge=1, le=500)):
    return [PointRecord(**r) for r in supa.get_recent_point_records(user_id, limit)]


@app.get("/users/{user_id}/groups", response_model=list[GroupMember])
async def user_groups(user_id: str):
    return [GroupMember(**r) for r in supa.fetch_user_groups(user_id)]


@app.get("/users/{user_id}/shelters/{shelter_id}/skill", response_model=BadgeSkill)
async def badge_skill(user_id: str, shelter_id: str):
    """Skill stars for a badge: 1 / 2 / 3 stars at 1 / 3 / 5 visits."""
    if not supa.verify_shelter_exists(shelter_id):
        raise HTTPException(404, f"Shelter not found: {shelter_id}")

    visits = len(supa.get_user_shelter_mission_results(user_id, shelter_id))
    return BadgeSkill(
        user_id=user_id,
        shelter_id=shelter_id,
        visit_count=visits,
        stars=skill_star_count(visits, _config),
    )


# ──────────────────────────────────────────────────────────────
# GET / PUT /config
# ──────────────────────────────────────────────────────────────

@app.get("/config")
async def get_config():
    """Return the current game configuration."""
    return _config.to_dict()


@app.put("/config")
async def update_config(updates: dict):
    """Update specific configuration parameters, cast to each field's type."""
    known = {f.name for f in fields(_config)}
    coerced = {}
    for key, value in updates.items():
        if key not in known:
            raise HTTPException(400, f"Unknown config key: {key}")
        current = getattr(_config, key)
        try:
            if isinstance(current, list) != isinstance(value, list) or isinstance(value, dict):
                raise TypeError(f"unexpected {type(value).__name__}")
            if isinstance(current, list):
                coerced[key] = [int(v) for v in value]
            else:
                coerced[key] = type(current)(value)
        except (TypeError, ValueError) as e:
            raise HTTPException(400, f"Invalid value for {key}: {e}")
    for key, value in coerced.items():
        setattr(_config, key, value)
    return _config.to_dict()


# ──────────────────────────────────────────────────────────────
# Health check
# ──────────────────────────────────────────────────────────────

@app.get("/health")
async def health():
    return {"status": "healthy", "service": "escape-missions"}
