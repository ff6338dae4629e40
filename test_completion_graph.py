import asyncio

import pytest

from completion_graph import completion_graph
from config import EscapeConfig
from geo import haversine_m
from scoring import calculate_score

START = {"latitude": 35.0, "longitude": 139.0}
END_LOC = {"latitude": 35.0011, "longitude": 139.0}


def _state(**overrides):
    state = {
        "mission_id": "m1",
        "user_id": "alice",
        "shelter_id": "s1",
        "start_location": START,
        "end_location": END_LOC,
        "actual_distance_m": 150.0,
        "steps": 200,
        "config": EscapeConfig().to_dict(),
        "errors": [],
    }
    state.update(overrides)
    return state


def _run(state):
    return asyncio.run(completion_graph.ainvoke(state))


@pytest.fixture
def world(backend):
    backend.missions["m1"] = {"id": "m1", "user_id": "alice", "status": "have"}
    backend.shelters["s1"] = {"id": "s1", "name": "City Gym", "latitude": 35.001, "longitude": 139.0}
    backend.points.append({"user_id": "bob", "point": 5000})
    return backend


def test_first_visitor_founds_badge_and_scores_bonus(world):
    result = _run(_state())

    optimal = haversine_m(35.0, 139.0, 35.001, 139.0)
    expected = calculate_score(150.0, optimal, True)

    assert result["is_new_badge"] is True
    assert result["score"] == expected.model_dump()
    assert result["errors"] == []
    assert list(world.badges.values())[0]["first_user_id"] == "alice"
    assert world.unlocked == [("alice", result["badge_id"])]
    assert world.status_updates == [("m1", "done")]


def test_result_and_points_are_persisted(world):
    result = _run(_state())
    final = result["score"]["final_points"]

    saved = world.results[0]
    assert saved["mission_id"] == "m1"
    assert saved["shelter_id"] == "s1"
    assert saved["steps"] == 200
    assert saved["final_points"] == final
    assert saved["end_latitude"] == END_LOC["latitude"]
    assert world.points[-1] == {"id": world.points[-1]["id"], "user_id": "alice", "point": final}
    assert result["total_points"] == final
    assert result["national_rank"] == (1 if final > 5000 else 2)


def test_existing_badge_is_unlocked_without_bonus(world):
    world.badges["b9"] = {"id": "b9", "badge_name": "gym.png", "shelter_id": "s1", "first_user_id": "bob"}

    result = _run(_state())

    assert result["is_new_badge"] is False
    assert result["badge_id"] == "b9"
    assert result["score"]["bonus_points"] == 0
    assert world.unlocked == [("alice", "b9")]
    assert len(world.badges) == 1


def test_unknown_shelter_stops_the_pipeline(world):
    result = _run(_state(shelter_id="missing"))

    assert result["shelter_found"] is False
    assert "Shelter not found in database" in result["errors"]
    assert "score" not in result
    assert world.results == []
    assert [p["user_id"] for p in world.points] == ["bob"]


def test_missing_start_scores_from_end_point(world):
    result = _run(_state(start_location=None, actual_distance_m=5.0))

    assert result["score"]["route_efficiency_multiplier"] == 1.0
    assert result["optimal_distance_m"] == pytest.approx(
        haversine_m(END_LOC["latitude"], END_LOC["longitude"], 35.001, 139.0)
    )


def test_failed_writes_are_reported(world, monkeypatch):
    import supabase_client as supa

    monkeypatch.setattr(supa, "create_mission_result", lambda data: None)
    monkeypatch.setattr(supa, "add_point_record", lambda user_id, points: None)

    result = _run(_state())

    assert "Failed to save mission result" in result["errors"]
    assert "Failed to add points" in result["errors"]
    assert result["result_id"] is None
