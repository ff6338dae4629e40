"""
Leaderboards — national and team rankings with smart pagination.

A full board can hold a few hundred users; the client only shows:
  - the top N (default 10), always
  - a window of ±W (default 15) rows around the requesting user
  - a separator row (rank = -1) when the two blocks do not touch
"""

from __future__ import annotations

from typing import Iterable

from models import PointRecord, RankingEntry
from config import EscapeConfig


SEPARATOR_RANK = -1


# ── Ranking ───────────────────────────────────────────────────

def aggregate_points(rows: Iterable[PointRecord]) -> dict[str, int]:
    """Sum point records per user."""
    totals: dict[str, int] = {}
    for row in rows:
        if row.user_id is None:
            continue
        totals[row.user_id] = totals.get(row.user_id, 0) + (row.point or 0)
    return totals


def rank_entries(
    totals: dict[str, int],
    names: dict[str, str] | None = None,
) -> list[RankingEntry]:
    """
    Sort by points (desc, ties by user id) and assign competition ranks:
    equal points share a rank and the next rank skips (1, 2, 2, 4).
    """
    names = names or {}
    ordered = sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))

    entries: list[RankingEntry] = []
    prev_points = None
    rank = 0
    for position, (user_id, points) in enumerate(ordered, start=1):
        if points != prev_points:
            rank = position
            prev_points = points
        entries.append(
            RankingEntry(user_id=user_id, name=names.get(user_id, ""), points=points, rank=rank)
        )
    return entries


def user_rank(entries: list[RankingEntry], user_id: str) -> int | None:
    for entry in entries:
        if entry.user_id == user_id:
            return entry.rank
    return None


def _index_of(entries: list[RankingEntry], user_id: str | None) -> int | None:
    if user_id is None:
        return None
    for i, entry in enumerate(entries):
        if entry.user_id == user_id:
            return i
    return None


# ── Smart pagination ──────────────────────────────────────────

def separator() -> RankingEntry:
    return RankingEntry(user_id=None, name="", points=0, rank=SEPARATOR_RANK)


def smart_paginate(
    entries: list[RankingEntry],
    user_id: str | None,
    cfg: EscapeConfig | None = None,
) -> list[RankingEntry]:
    """Top N + separator + the user's ±window slice, without duplicates."""
    if cfg is None:
        cfg = EscapeConfig()
    top_n = cfg.leaderboard_top_n
    window = cfg.leaderboard_context_window

    idx = _index_of(entries, user_id)
    if idx is None:
        return entries[: cfg.leaderboard_fallback_limit]

    # Window touches the top block → one contiguous slice
    if idx <= top_n + window:
        return entries[: max(top_n, idx + window + 1)]

    start = idx - window
    end = min(len(entries), idx + window + 1)
    return entries[:top_n] + [separator()] + entries[start:end]


def team_leaderboard(
    member_ids: Iterable[str],
    rows: Iterable[PointRecord],
    names: dict[str, str] | None = None,
) -> list[RankingEntry]:
    """Rank only group members; members without points appear with 0."""
    member_ids = set(member_ids)
    totals = {uid: 0 for uid in member_ids}
    for uid, points in aggregate_points(rows).items():
        if uid in member_ids:
            totals[uid] = points
    return rank_entries(totals, names)
