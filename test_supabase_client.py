from types import SimpleNamespace

import pytest

import supabase_client as supa


class FakeQuery:
    """Records the builder chain and returns canned rows on execute()."""

    def __init__(self, data=None, error=None):
        self.data = data
        self.error = error
        self.calls = []

    def __getattr__(self, name):
        def method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self

        return method

    def execute(self):
        if self.error is not None:
            raise self.error
        return SimpleNamespace(data=self.data)


class FakeClient:
    def __init__(self, query):
        self.query = query
        self.tables = []

    def table(self, name):
        self.tables.append(name)
        return self.query


@pytest.fixture
def client(monkeypatch):
    def install(data=None, error=None):
        fake = FakeClient(FakeQuery(data, error))
        monkeypatch.setattr(supa, "_client", fake)
        return fake

    return install


def test_unconfigured_returns_empty_values(monkeypatch):
    monkeypatch.setattr(supa, "_client", None)
    monkeypatch.setattr(supa, "SUPABASE_URL", "")

    assert supa.get_supabase() is None
    assert supa.get_mission("m1") is None
    assert supa.fetch_shelters() == []
    assert supa.get_total_points("alice") == 0
    assert supa.update_mission_status("m1", "done") is False
    assert supa.fetch_user_names(["alice"]) == {}


def test_get_total_points_skips_missing(client):
    client([{"point": 100}, {"point": None}, {"point": 25}])
    assert supa.get_total_points("Alice") == 125


def test_user_ids_are_lowercased(client):
    fake = client([])
    supa.fetch_recent_mission_results("ALICE", limit=5)

    assert fake.tables == ["mission_results"]
    assert ("eq", ("user_id", "alice"), {}) in fake.query.calls
    assert ("limit", (5,), {}) in fake.query.calls


def test_fetch_nearby_shelters_filters_box_corners(client):
    fake = client([
        {"id": 1, "name": "near", "latitude": 35.005, "longitude": 139.0},
        {"id": 2, "name": "corner", "latitude": 35.013, "longitude": 139.016},
    ])

    rows = supa.fetch_nearby_shelters(35.0, 139.0, radius_km=1.5)

    assert [r["name"] for r in rows] == ["near"]
    filters = [c[0] for c in fake.query.calls]
    assert filters.count("gte") == 2 and filters.count("lte") == 2


def test_team_point_rows_use_in_filter(client):
    fake = client([{"user_id": "a", "point": 1}])
    supa.get_all_point_records(["A", "b"])
    assert ("in_", ("user_id", ["a", "b"]), {}) in fake.query.calls


def test_unlock_badge_upserts(client):
    fake = client([{"user_id": "alice", "badge_id": "b1"}])

    assert supa.unlock_badge("Alice", "b1") == {"user_id": "alice", "badge_id": "b1"}
    assert fake.query.calls[0] == (
        "upsert",
        ({"user_id": "alice", "badge_id": "b1"},),
        {"on_conflict": "user_id,badge_id"},
    )


def test_query_errors_are_logged_not_raised(client, caplog):
    client(error=RuntimeError("connection reset"))

    assert supa.create_mission({"user_id": "alice"}) is None
    assert supa.fetch_group_members("g1") == []
    assert "create_mission failed" in caplog.text


def test_user_names_default_to_empty(client):
    client([{"id": "a", "name": "Ann"}, {"id": "b", "name": None}])
    assert supa.fetch_user_names(["a", "b"]) == {"a": "Ann", "b": ""}


def test_today_window_spans_one_day():
    from datetime import datetime, timedelta, timezone

    start, end = supa._today_window(datetime(2025, 11, 10, 15, 30, tzinfo=timezone(timedelta(hours=9))))

    assert start == "2025-11-09T15:00:00+00:00"
    assert end == "2025-11-10T15:00:00+00:00"


def test_badge_ownership_query(client):
    fake = client([{"badge_id": "b1"}])

    assert supa.user_has_badge("Alice", "b1") is True
    assert fake.tables == ["user_shelter_badges"]
    assert ("eq", ("user_id", "alice"), {}) in fake.query.calls


def test_badge_ownership_without_rows(client):
    client([])
    assert supa.user_has_badge("alice", "b1") is False


def test_shelter_ratings_newest_first(client):
    fake = client([{"id": "r1", "shelter_id": "s1", "user_id": "a", "rating": 4}])

    assert supa.get_shelter_ratings("s1")[0]["rating"] == 4
    assert fake.tables == ["shelter_ratings"]
    assert ("order", ("created_at",), {"desc": True}) in fake.query.calls


def test_create_rating_lowercases_user(client):
    fake = client([{"id": "r1"}])

    assert supa.create_rating("ALICE", "s1", 5, None) == {"id": "r1"}
    assert fake.query.calls[0] == (
        "insert",
        ({"shelter_id": "s1", "user_id": "alice", "rating": 5, "review": None},),
        {},
    )


def test_rating_errors_are_logged_not_raised(client, caplog):
    client(error=RuntimeError("permission denied"))

    assert supa.get_user_rating("alice", "s1") is None
    assert supa.delete_rating("r1") is False
    assert supa.user_has_badge("alice", "b1") is False
    assert "delete_rating failed" in caplog.text
