"""Shared fixtures: an in-memory stand-in for the Supabase tables."""

from __future__ import annotations

import itertools

import pytest

import supabase_client as supa


class FakeBackend:
    """Holds rows per table and records every write."""

    def __init__(self):
        self.missions: dict[str, dict] = {}
        self.shelters: dict[str, dict] = {}
        self.badges: dict[str, dict] = {}
        self.unlocked: list[tuple[str, str]] = []
        self.points: list[dict] = []
        self.results: list[dict] = []
        self.group_members: dict[str, list[str]] = {}
        self.names: dict[str, str] = {}
        self.status_updates: list[tuple[str, str]] = []
        self.ratings: list[dict] = []
        self._ids = itertools.count(1)

    def next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    # ── missions ──
    def get_mission(self, mission_id):
        return self.missions.get(mission_id)

    def fetch_active_mission(self, user_id):
        for row in self.missions.values():
            if row["user_id"] == user_id and row["status"] == "have":
                return row
        return None

    def fetch_todays_mission(self, user_id):
        for row in self.missions.values():
            if row["user_id"] == user_id:
                return row
        return None

    def fetch_latest_mission(self, user_id):
        rows = [r for r in self.missions.values() if r["user_id"] == user_id]
        return rows[-1] if rows else None

    def fetch_recent_completed_missions(self, user_id, limit=30):
        rows = [r for r in self.missions.values() if r["user_id"] == user_id and r["status"] == "done"]
        return rows[:limit]

    def fetch_completed_missions_in_range(self, user_id, start, end):
        return [
            r for r in self.fetch_recent_completed_missions(user_id, limit=10_000)
            if "created_at" in r and start <= r["created_at"] <= end
        ]

    def create_mission(self, data):
        row = {"id": self.next_id("mission"), **data}
        self.missions[row["id"]] = row
        return row

    def update_mission_status(self, mission_id, status):
        self.status_updates.append((mission_id, status))
        if mission_id in self.missions:
            self.missions[mission_id]["status"] = status
        return True

    # ── shelters & badges ──
    def get_shelter(self, shelter_id):
        return self.shelters.get(shelter_id)

    def verify_shelter_exists(self, shelter_id):
        return shelter_id in self.shelters

    def fetch_shelters(self):
        return list(self.shelters.values())

    def fetch_nearby_shelters(self, latitude, longitude, radius_km=50):
        return list(self.shelters.values())

    def get_badge_for_shelter(self, shelter_id):
        for badge in self.badges.values():
            if badge["shelter_id"] == shelter_id:
                return badge
        return None

    def create_shelter_badge(self, badge_name, shelter_id, first_user_id):
        row = {
            "id": self.next_id("badge"),
            "badge_name": badge_name,
            "shelter_id": shelter_id,
            "first_user_id": first_user_id,
        }
        self.badges[row["id"]] = row
        return row

    def unlock_badge(self, user_id, badge_id):
        self.unlocked.append((user_id, badge_id))
        return {"user_id": user_id, "badge_id": badge_id}

    def user_has_badge(self, user_id, badge_id):
        return (user_id, badge_id) in self.unlocked

    # ── ratings ──
    def get_shelter_ratings(self, shelter_id):
        return [r for r in reversed(self.ratings) if r["shelter_id"] == shelter_id]

    def get_user_rating(self, user_id, shelter_id):
        for row in self.ratings:
            if row["user_id"] == user_id and row["shelter_id"] == shelter_id:
                return row
        return None

    def create_rating(self, user_id, shelter_id, rating, review):
        row = {
            "id": self.next_id("rating"),
            "shelter_id": shelter_id,
            "user_id": user_id,
            "rating": rating,
            "review": review,
        }
        self.ratings.append(row)
        return row

    def update_rating(self, rating_id, rating, review):
        for row in self.ratings:
            if row["id"] == rating_id:
                row.update(rating=rating, review=review)
                return row
        return None

    def delete_rating(self, rating_id):
        self.ratings = [r for r in self.ratings if r["id"] != rating_id]
        return True

    # ── results & points ──
    def create_mission_result(self, data):
        row = {"id": self.next_id("result"), **data}
        self.results.append(row)
        return row

    def fetch_recent_mission_results(self, user_id, limit=30):
        return [r for r in self.results if r["user_id"] == user_id][:limit]

    def get_user_mission_results(self, user_id):
        return [r for r in self.results if r["user_id"] == user_id]

    def fetch_mission_results_in_range(self, user_id, start, end):
        return [
            r for r in self.get_user_mission_results(user_id)
            if "created_at" in r and start <= r["created_at"] <= end
        ]

    def get_user_shelter_mission_results(self, user_id, shelter_id):
        return [r for r in self.get_user_mission_results(user_id) if r.get("shelter_id") == shelter_id]

    def get_shelter_mission_results(self, shelter_id):
        return [r for r in self.results if r.get("shelter_id") == shelter_id]

    def add_point_record(self, user_id, points):
        row = {"id": self.next_id("point"), "user_id": user_id, "point": points}
        self.points.append(row)
        return row

    def get_total_points(self, user_id):
        return sum(r["point"] for r in self.points if r["user_id"] == user_id)

    def get_recent_point_records(self, user_id, limit=50):
        return [r for r in reversed(self.points) if r["user_id"] == user_id][:limit]

    def get_all_point_records(self, user_ids=None):
        if user_ids is None:
            return list(self.points)
        return [r for r in self.points if r["user_id"] in user_ids]

    # ── groups & users ──
    def fetch_group_members(self, group_id):
        return [{"group_id": group_id, "user_id": u} for u in self.group_members.get(group_id, [])]

    def fetch_user_groups(self, user_id):
        return [
            {"group_id": group_id, "user_id": user_id}
            for group_id, members in self.group_members.items()
            if user_id in members
        ]

    def fetch_user_names(self, user_ids):
        return {u: self.names[u] for u in user_ids if u in self.names}


PATCHED = [
    "get_mission",
    "fetch_active_mission",
    "fetch_todays_mission",
    "fetch_latest_mission",
    "fetch_recent_completed_missions",
    "fetch_completed_missions_in_range",
    "create_mission",
    "update_mission_status",
    "get_shelter",
    "verify_shelter_exists",
    "fetch_shelters",
    "fetch_nearby_shelters",
    "get_badge_for_shelter",
    "create_shelter_badge",
    "unlock_badge",
    "user_has_badge",
    "get_shelter_ratings",
    "get_user_rating",
    "create_rating",
    "update_rating",
    "delete_rating",
    "create_mission_result",
    "fetch_recent_mission_results",
    "get_user_mission_results",
    "fetch_mission_results_in_range",
    "get_user_shelter_mission_results",
    "get_shelter_mission_results",
    "add_point_record",
    "get_total_points",
    "get_recent_point_records",
    "get_all_point_records",
    "fetch_group_members",
    "fetch_user_groups",
    "fetch_user_names",
]


@pytest.fixture
def backend(monkeypatch):
    fake = FakeBackend()
    for name in PATCHED:
        monkeypatch.setattr(supa, name, getattr(fake, name))
    return fake
