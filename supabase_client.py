"""
Supabase client for game data persistence.

Tables used (schema and RPC functions live in the Supabase project):
  - missions: id, user_id, title, overview, disaster_type, status, steps,
              distances, created_at
  - mission_results: id, mission_id, user_id, shelter_id, start/end lat/lng,
                     actual/optimal_distance_meters, steps, base_points,
                     distance_points, bonus_points,
                     route_efficiency_multiplier, final_points, created_at
  - points: id, user_id, point, created_at
  - shelters: id, name, address, municipality, latitude, longitude, is_* flags
  - shelter_badges: id, badge_name, shelter_id, first_user_id, created_at
  - user_shelter_badges: id, user_id, badge_id, created_at
  - groups / group_members: id, group_id, user_id, role, joined_at
  - users: id, name
"""

from __future__ import annotations

import os
import logging
from datetime import datetime, timedelta, timezone
from dotenv import load_dotenv

from geo import bounding_box, haversine_km

load_dotenv()

logger = logging.getLogger(__name__)

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")  # anon or service-role key

_client = None


def get_supabase():
    """Lazy-init Supabase client. Returns None if not configured."""
    global _client
    if _client is not None:
        return _client
    if not SUPABASE_URL or not SUPABASE_KEY:
        logger.warning("Supabase not configured — running in local-only mode")
        return None
    try:
        from supabase import create_client
        _client = create_client(SUPABASE_URL, SUPABASE_KEY)
        logger.info("Supabase client initialised")
        return _client
    except Exception as e:
        logger.error(f"Failed to init Supabase: {e}")
        return None


def _today_window(now: datetime | None = None) -> tuple[str, str]:
    """Start/end of the local calendar day as UTC ISO strings."""
    now = now or datetime.now().astimezone()
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    return (
        start.astimezone(timezone.utc).isoformat(),
        end.astimezone(timezone.utc).isoformat(),
    )


# ──────────────────────────────────────────────────────────────
# Missions
# ──────────────────────────────────────────────────────────────

def fetch_todays_mission(user_id: str) -> dict | None:
    sb = get_supabase()
    if not sb:
        return None
    try:
        start, end = _today_window()
        result = (
            sb.table("missions")
            .select("*")
            .eq("user_id", user_id.lower())
            .gte("created_at", start)
            .lt("created_at", end)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None
    except Exception as e:
        logger.error(f"fetch_todays_mission failed: {e}")
        return None


def fetch_latest_mission(user_id: str) -> dict | None:
    sb = get_supabase()
    if not sb:
        return None
    try:
        result = (
            sb.table("missions")
            .select("*")
            .eq("user_id", user_id.lower())
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None
    except Exception as e:
        logger.error(f"fetch_latest_mission failed: {e}")
        return None


def fetch_active_mission(user_id: str) -> dict | None:
    """Today's mission with status 'have', if any."""
    sb = get_supabase()
    if not sb:
        return None
    try:
        start, end = _today_window()
        result = (
            sb.table("missions")
            .select("*")
            .eq("user_id", user_id.lower())
            .eq("status", "have")
            .gte("created_at", start)
            .lt("created_at", end)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None
    except Exception as e:
        logger.error(f"fetch_active_mission failed: {e}")
        return None


def get_mission(mission_id: str) -> dict | None:
    sb = get_supabase()
    if not sb:
        return None
    try:
        result = sb.table("missions").select("*").eq("id", mission_id.lower()).execute()
        return result.data[0] if result.data else None
    except Exception as e:
        logger.error(f"get_mission failed: {e}")
        return None


def create_mission(mission_data: dict) -> dict | None:
    sb = get_supabase()
    if not sb:
        return None
    try:
        result = sb.table("missions").insert(mission_data).execute()
        return result.data[0] if result.data else None
    except Exception as e:
        logger.error(f"create_mission failed: {e}")
        return None


def update_mission_status(mission_id: str, status: str) -> bool:
    sb = get_supabase()
    if not sb:
        return False
    try:
        sb.table("missions").update({"status": status}).eq("id", mission_id.lower()).execute()
        return True
    except Exception as e:
        logger.error(f"update_mission_status failed: {e}")
        return False


def fetch_recent_completed_missions(user_id: str, limit: int = 30) -> list[dict]:
    sb = get_supabase()
    if not sb:
        return []
    try:
        result = (
            sb.table("missions")
            .select("*")
            .eq("user_id", user_id.lower())
            .eq("status", "done")
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data or []
    except Exception as e:
        logger.error(f"fetch_recent_completed_missions failed: {e}")
        return []


def fetch_completed_missions_in_range(user_id: str, start: datetime, end: datetime) -> list[dict]:
    sb = get_supabase()
    if not sb:
        return []
    try:
        result = (
            sb.table("missions")
            .select("*")
            .eq("user_id", user_id.lower())
            .eq("status", "done")
            .gte("created_at", start.isoformat())
            .lte("created_at", end.isoformat())
            .order("created_at", desc=True)
            .execute()
        )
        return result.data or []
    except Exception as e:
        logger.error(f"fetch_completed_missions_in_range failed: {e}")
        return []


# ──────────────────────────────────────────────────────────────
# Mission results
# ──────────────────────────────────────────────────────────────

def create_mission_result(result_data: dict) -> dict | None:
    sb = get_supabase()
    if not sb:
        return None
    try:
        result = sb.table("mission_results").insert(result_data).execute()
        return result.data[0] if result.data else None
    except Exception as e:
        logger.error(f"create_mission_result failed: {e}")
        return None


def get_user_mission_results(user_id: str) -> list[dict]:
    sb = get_supabase()
    if not sb:
        return []
    try:
        result = (
            sb.table("mission_results")
            .select("*")
            .eq("user_id", user_id.lower())
            .order("created_at", desc=True)
            .execute()
        )
        return result.data or []
    except Exception as e:
        logger.error(f"get_user_mission_results failed: {e}")
        return []


def get_user_shelter_mission_results(user_id: str, shelter_id: str) -> list[dict]:
    sb = get_supabase()
    if not sb:
        return []
    try:
        result = (
            sb.table("mission_results")
            .select("*")
            .eq("user_id", user_id.lower())
            .eq("shelter_id", shelter_id.lower())
            .order("created_at", desc=True)
            .execute()
        )
        return result.data or []
    except Exception as e:
        logger.error(f"get_user_shelter_mission_results failed: {e}")
        return []


def get_shelter_mission_results(shelter_id: str) -> list[dict]:
    sb = get_supabase()
    if not sb:
        return []
    try:
        result = (
            sb.table("mission_results")
            .select("*")
            .eq("shelter_id", shelter_id.lower())
            .order("created_at", desc=True)
            .execute()
        )
        return result.data or []
    except Exception as e:
        logger.error(f"get_shelter_mission_results failed: {e}")
        return []


def fetch_recent_mission_results(user_id: str, limit: int = 30) -> list[dict]:
    sb = get_supabase()
    if not sb:
        return []
    try:
        result = (
            sb.table("mission_results")
            .select("*")
            .eq("user_id", user_id.lower())
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data or []
    except Exception as e:
        logger.error(f"fetch_recent_mission_results failed: {e}")
        return []


def fetch_mission_results_in_range(user_id: str, start: datetime, end: datetime) -> list[dict]:
    sb = get_supabase()
    if not sb:
        return []
    try:
        result = (
            sb.table("mission_results")
            .select("*")
            .eq("user_id", user_id.lower())
            .gte("created_at", start.isoformat())
            .lte("created_at", end.isoformat())
            .order("created_at", desc=True)
            .execute()
        )
        return result.data or []
    except Exception as e:
        logger.error(f"fetch_mission_results_in_range failed: {e}")
        return []


# ──────────────────────────────────────────────────────────────
# Points
# ──────────────────────────────────────────────────────────────

def add_point_record(user_id: str, points: int) -> dict | None:
    sb = get_supabase()
    if not sb:
        return None
    try:
        payload = {"user_id": user_id.lower(), "point": points}
        result = sb.table("points").insert(payload).execute()
        return result.data[0] if result.data else None
    except Exception as e:
        logger.error(f"add_point_record failed: {e}")
        return None


def get_total_points(user_id: str) -> int:
    sb = get_supabase()
    if not sb:
        return 0
    try:
        result = sb.table("points").select("point").eq("user_id", user_id.lower()).execute()
        return sum((row.get("point") or 0) for row in (result.data or []))
    except Exception as e:
        logger.error(f"get_total_points failed: {e}")
        return 0


def get_recent_point_records(user_id: str, limit: int = 50) -> list[dict]:
    sb = get_supabase()
    if not sb:
        return []
    try:
        result = (
            sb.table("points")
            .select("*")
            .eq("user_id", user_id.lower())
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data or []
    except Exception as e:
        logger.error(f"get_recent_point_records failed: {e}")
        return []


def get_all_point_records(user_ids: list[str] | None = None) -> list[dict]:
    """Every point row, optionally limited to ``user_ids`` (team boards)."""
    sb = get_supabase()
    if not sb:
        return []
    try:
        query = sb.table("points").select("user_id, point")
        if user_ids is not None:
            query = query.in_("user_id", [u.lower() for u in user_ids])
        result = query.execute()
        return result.data or []
    except Exception as e:
        logger.error(f"get_all_point_records failed: {e}")
        return []


# ──────────────────────────────────────────────────────────────
# Shelters
# ──────────────────────────────────────────────────────────────

def fetch_shelters() -> list[dict]:
    sb = get_supabase()
    if not sb:
        return []
    try:
        result = sb.table("shelters").select("*").execute()
        return result.data or []
    except Exception as e:
        logger.error(f"fetch_shelters failed: {e}")
        return []


def fetch_nearby_shelters(latitude: float, longitude: float, radius_km: float = 50) -> list[dict]:
    """Bounding-box query, then an exact haversine filter."""
    sb = get_supabase()
    if not sb:
        return []
    try:
        min_lat, max_lat, min_lon, max_lon = bounding_box(latitude, longitude, radius_km)
        result = (
            sb.table("shelters")
            .select("*")
            .gte("latitude", min_lat)
            .lte("latitude", max_lat)
            .gte("longitude", min_lon)
            .lte("longitude", max_lon)
            .execute()
        )
        return [
            row for row in (result.data or [])
            if haversine_km(latitude, longitude, row["latitude"], row["longitude"]) <= radius_km
        ]
    except Exception as e:
        logger.error(f"fetch_nearby_shelters failed: {e}")
        return []


def get_shelter(shelter_id: str) -> dict | None:
    sb = get_supabase()
    if not sb:
        return None
    try:
        result = sb.table("shelters").select("*").eq("id", shelter_id).execute()
        return result.data[0] if result.data else None
    except Exception as e:
        logger.error(f"get_shelter failed: {e}")
        return None


def verify_shelter_exists(shelter_id: str) -> bool:
    return get_shelter(shelter_id) is not None


# ──────────────────────────────────────────────────────────────
# Badges
# ──────────────────────────────────────────────────────────────

def get_badge_for_shelter(shelter_id: str) -> dict | None:
    sb = get_supabase()
    if not sb:
        return None
    try:
        result = (
            sb.table("shelter_badges")
            .select("*")
            .eq("shelter_id", shelter_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None
    except Exception as e:
        logger.error(f"get_badge_for_shelter failed: {e}")
        return None


def create_shelter_badge(badge_name: str, shelter_id: str, first_user_id: str) -> dict | None:
    sb = get_supabase()
    if not sb:
        return None
    try:
        payload = {
            "badge_name": badge_name,
            "shelter_id": shelter_id,
            "first_user_id": first_user_id.lower(),
        }
        result = sb.table("shelter_badges").insert(payload).execute()
        return result.data[0] if result.data else None
    except Exception as e:
        logger.error(f"create_shelter_badge failed: {e}")
        return None


def unlock_badge(user_id: str, badge_id: str) -> dict | None:
    """Add the badge to the user's collection (idempotent)."""
    sb = get_supabase()
    if not sb:
        return None
    try:
        payload = {"user_id": user_id.lower(), "badge_id": badge_id}
        result = (
            sb.table("user_shelter_badges")
            .upsert(payload, on_conflict="user_id,badge_id")
            .execute()
        )
        return result.data[0] if result.data else None
    except Exception as e:
        logger.error(f"unlock_badge failed: {e}")
        return None


def user_has_badge(user_id: str, badge_id: str) -> bool:
    sb = get_supabase()
    if not sb:
        return False
    try:
        result = (
            sb.table("user_shelter_badges")
            .select("badge_id")
            .eq("user_id", user_id.lower())
            .eq("badge_id", badge_id)
            .limit(1)
            .execute()
        )
        return bool(result.data)
    except Exception as e:
        logger.error(f"user_has_badge failed: {e}")
        return False


# ──────────────────────────────────────────────────────────────
# Shelter ratings
# ──────────────────────────────────────────────────────────────

def get_shelter_ratings(shelter_id: str) -> list[dict]:
    """All ratings of a shelter, newest first."""
    sb = get_supabase()
    if not sb:
        return []
    try:
        result = (
            sb.table("shelter_ratings")
            .select("*")
            .eq("shelter_id", shelter_id)
            .order("created_at", desc=True)
            .execute()
        )
        return result.data or []
    except Exception as e:
        logger.error(f"get_shelter_ratings failed: {e}")
        return []


def get_user_rating(user_id: str, shelter_id: str) -> dict | None:
    sb = get_supabase()
    if not sb:
        return None
    try:
        result = (
            sb.table("shelter_ratings")
            .select("*")
            .eq("shelter_id", shelter_id)
            .eq("user_id", user_id.lower())
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None
    except Exception as e:
        logger.error(f"get_user_rating failed: {e}")
        return None


def create_rating(user_id: str, shelter_id: str, rating: int, review: str | None) -> dict | None:
    sb = get_supabase()
    if not sb:
        return None
    try:
        payload = {
            "shelter_id": shelter_id,
            "user_id": user_id.lower(),
            "rating": rating,
            "review": review,
        }
        result = sb.table("shelter_ratings").insert(payload).execute()
        return result.data[0] if result.data else None
    except Exception as e:
        logger.error(f"create_rating failed: {e}")
        return None


def update_rating(rating_id: str, rating: int, review: str | None) -> dict | None:
    sb = get_supabase()
    if not sb:
        return None
    try:
        result = (
            sb.table("shelter_ratings")
            .update({"rating": rating, "review": review})
            .eq("id", rating_id)
            .execute()
        )
        return result.data[0] if result.data else None
    except Exception as e:
        logger.error(f"update_rating failed: {e}")
        return None


def delete_rating(rating_id: str) -> bool:
    sb = get_supabase()
    if not sb:
        return False
    try:
        sb.table("shelter_ratings").delete().eq("id", rating_id).execute()
        return True
    except Exception as e:
        logger.error(f"delete_rating failed: {e}")
        return False


# ──────────────────────────────────────────────────────────────
# Groups & users
# ──────────────────────────────────────────────────────────────

def fetch_group_members(group_id: str) -> list[dict]:
    sb = get_supabase()
    if not sb:
        return []
    try:
        result = sb.table("group_members").select("*").eq("group_id", group_id.lower()).execute()
        return result.data or []
    except Exception as e:
        logger.error(f"fetch_group_members failed: {e}")
        return []


def fetch_user_groups(user_id: str) -> list[dict]:
    sb = get_supabase()
    if not sb:
        return []
    try:
        result = sb.table("group_members").select("*").eq("user_id", user_id.lower()).execute()
        return result.data or []
    except Exception as e:
        logger.error(f"fetch_user_groups failed: {e}")
        return []


def fetch_user_names(user_ids: list[str]) -> dict[str, str]:
    sb = get_supabase()
    if not sb or not user_ids:
        return {}
    try:
        result = sb.table("users").select("id, name").in_("id", [u.lower() for u in user_ids]).execute()
        return {row["id"]: row.get("name") or "" for row in (result.data or [])}
    except Exception as e:
        logger.error(f"fetch_user_names failed: {e}")
        return {}
