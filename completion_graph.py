"""
LangGraph pipeline that completes a mission once a shelter is reached.

7 nodes:
  1. mark_completed  — missions.status → 'done' (failure is logged, not fatal)
  2. verify_shelter  — the shelter must exist in the database
  3. resolve_badge   — unlock the shelter badge, or found it as first visitor
  4. compute_score   — distance / bonus / route-efficiency score
  5. persist_result  — insert the mission_results row
  6. award_points    — insert the points row
  7. refresh_rank    — new total points and national rank

Graph wiring:
  START → mark_completed → verify_shelter
  verify_shelter → [shelter missing → END]
  verify_shelter → resolve_badge → compute_score → persist_result
                 → award_points → refresh_rank → END
"""

from __future__ import annotations

import time
import logging
from dataclasses import fields
from typing import TypedDict
from langgraph.graph import StateGraph, END

from models import MissionState, MissionResult, PointRecord, Shelter
from config import EscapeConfig
from geo import haversine_m
from scoring import calculate_score
from leaderboard import aggregate_points, rank_entries, user_rank
import supabase_client as supa

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Pipeline State
# ──────────────────────────────────────────────────────────────

class CompletionState(TypedDict, total=False):
    # Inputs
    mission_id: str
    user_id: str
    shelter_id: str
    start_location: dict | None   # Location as dict
    end_location: dict            # Location as dict
    actual_distance_m: float
    steps: int
    config: dict                  # serialized EscapeConfig

    # Node outputs
    shelter: dict
    shelter_found: bool
    badge_id: str | None
    is_new_badge: bool
    score: dict                   # ScoreComponents as dict
    optimal_distance_m: float
    result_id: str | None
    total_points: int
    national_rank: int | None
    errors: list                  # list[str]


def _cfg(state: CompletionState) -> EscapeConfig:
    cfg_dict = state.get("config", {})
    known = {f.name for f in fields(EscapeConfig)}
    return EscapeConfig(**{k: v for k, v in cfg_dict.items() if k in known})


def _errors(state: CompletionState) -> list:
    return list(state.get("errors", []))


# ──────────────────────────────────────────────────────────────
# Nodes
# ──────────────────────────────────────────────────────────────

async def mark_completed_node(state: CompletionState) -> dict:
    errors = _errors(state)
    if not supa.update_mission_status(state["mission_id"], MissionState.COMPLETED.value):
        errors.append("Failed to update mission status")
    return {"errors": errors}


async def verify_shelter_node(state: CompletionState) -> dict:
    row = supa.get_shelter(state["shelter_id"])
    if row is None:
        errors = _errors(state)
        errors.append("Shelter not found in database")
        return {"shelter_found": False, "errors": errors}
    return {"shelter_found": True, "shelter": row}


async def resolve_badge_node(state: CompletionState) -> dict:
    """Existing badge → unlock it. No badge → this user is the first visitor."""
    user_id = state["user_id"]
    shelter_id = state["shelter_id"]
    errors = _errors(state)

    badge = supa.get_badge_for_shelter(shelter_id)
    is_new = False
    if badge is None:
        badge_name = f"badge_{int(time.time() * 1000)}.png"
        badge = supa.create_shelter_badge(badge_name, shelter_id, user_id)
        if badge is None:
            errors.append("Failed to create shelter badge")
            return {"badge_id": None, "is_new_badge": False, "errors": errors}
        is_new = True
        logger.info(f"User {user_id} founded the badge for shelter {shelter_id}")

    if supa.unlock_badge(user_id, badge["id"]) is None:
        errors.append("Failed to unlock badge")

    return {"badge_id": badge["id"], "is_new_badge": is_new, "errors": errors}


async def compute_score_node(state: CompletionState) -> dict:
    cfg = _cfg(state)
    shelter = Shelter(**state["shelter"])
    start = state.get("start_location") or state["end_location"]

    optimal = haversine_m(start["latitude"], start["longitude"], shelter.latitude, shelter.longitude)
    components = calculate_score(
        state.get("actual_distance_m", 0.0),
        optimal,
        state.get("is_new_badge", False),
        cfg,
    )
    return {"score": components.model_dump(), "optimal_distance_m": optimal}


async def persist_result_node(state: CompletionState) -> dict:
    start = state.get("start_location") or {}
    end = state["end_location"]
    score = state["score"]

    result = MissionResult(
        mission_id=state["mission_id"],
        user_id=state["user_id"],
        shelter_id=state["shelter_id"],
        start_latitude=start.get("latitude"),
        start_longitude=start.get("longitude"),
        end_latitude=end["latitude"],
        end_longitude=end["longitude"],
        actual_distance_meters=state.get("actual_distance_m", 0.0),
        optimal_distance_meters=state.get("optimal_distance_m"),
        steps=state.get("steps", 0),
        **score,
    )
    row = supa.create_mission_result(result.model_dump(mode="json", exclude_none=True))
    if row is None:
        errors = _errors(state)
        errors.append("Failed to save mission result")
        return {"result_id": None, "errors": errors}
    return {"result_id": row.get("id")}


async def award_points_node(state: CompletionState) -> dict:
    if supa.add_point_record(state["user_id"], state["score"]["final_points"]) is None:
        errors = _errors(state)
        errors.append("Failed to add points")
        return {"errors": errors}
    return {}


async def refresh_rank_node(state: CompletionState) -> dict:
    user_id = state["user_id"].lower()
    rows = [PointRecord(**r) for r in supa.get_all_point_records()]
    entries = rank_entries(aggregate_points(rows))
    return {
        "total_points": supa.get_total_points(user_id),
        "national_rank": user_rank(entries, user_id),
    }


# ──────────────────────────────────────────────────────────────
# Conditional edge: shelter verified → continue or stop
# ──────────────────────────────────────────────────────────────

def after_verification(state: CompletionState) -> str:
    return "resolve_badge" if state.get("shelter_found") else "end"


# ──────────────────────────────────────────────────────────────
# Build the graph
# ──────────────────────────────────────────────────────────────

def build_graph():
    """Construct and compile the completion StateGraph."""
    graph = StateGraph(CompletionState)

    graph.add_node("mark_completed", mark_completed_node)
    graph.add_node("verify_shelter", verify_shelter_node)
    graph.add_node("resolve_badge", resolve_badge_node)
    graph.add_node("compute_score", compute_score_node)
    graph.add_node("persist_result", persist_result_node)
    graph.add_node("award_points", award_points_node)
    graph.add_node("refresh_rank", refresh_rank_node)

    graph.set_entry_point("mark_completed")
    graph.add_edge("mark_completed", "verify_shelter")
    graph.add_conditional_edges(
        "verify_shelter",
        after_verification,
        {
            "resolve_badge": "resolve_badge",
            "end": END,
        },
    )
    graph.add_edge("resolve_badge", "compute_score")
    graph.add_edge("compute_score", "persist_result")
    graph.add_edge("persist_result", "award_points")
    graph.add_edge("award_points", "refresh_rank")
    graph.add_edge("refresh_rank", END)

    return graph.compile()


# ── Module-level compiled graph ───────────────────────────────

completion_graph = build_graph()
