"""
Geodesic helpers — pure math, no I/O.

Spherical-earth haversine distances, bounding boxes for coarse database
queries, ray-casting polygon containment, shelter proximity checks,
random danger-zone polygons and zombie movement.
"""

from __future__ import annotations

import math
import random
import logging
import uuid
from typing import Iterable

from models import Shelter, DisasterType, Zombie

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE_LAT = 111.0


# ──────────────────────────────────────────────────────────────
# 1. Distance
# ──────────────────────────────────────────────────────────────

def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return haversine_km(lat1, lon1, lat2, lon2) * 1000


# ──────────────────────────────────────────────────────────────
# 2. Bounding box
# ──────────────────────────────────────────────────────────────

def bounding_box(lat: float, lon: float, radius_km: float) -> tuple[float, float, float, float]:
    """
    (min_lat, max_lat, min_lon, max_lon) enclosing a circle of ``radius_km``.

    1° latitude ≈ 111 km; the longitude span widens with 1/cos(lat).
    """
    lat_range = radius_km / KM_PER_DEGREE_LAT
    cos_lat = math.cos(math.radians(lat))
    # Near the poles every longitude is in range
    lon_range = 180.0 if cos_lat < 1e-9 else radius_km / (KM_PER_DEGREE_LAT * cos_lat)
    return lat - lat_range, lat + lat_range, lon - lon_range, lon + lon_range


# ──────────────────────────────────────────────────────────────
# 3. Polygon containment
# ──────────────────────────────────────────────────────────────

def point_in_polygon(lat: float, lon: float, polygon: list[tuple[float, float]]) -> bool:
    """Ray casting; ``polygon`` is a list of (lat, lon) vertices."""
    if len(polygon) < 3:
        return False

    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        yi, xi = polygon[i]
        yj, xj = polygon[j]
        if (yi > lat) != (yj > lat):
            x_cross = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lon < x_cross:
                inside = not inside
        j = i
    return inside


# ──────────────────────────────────────────────────────────────
# 4. Shelters
# ──────────────────────────────────────────────────────────────

def filter_by_disaster_types(
    shelters: Iterable[Shelter],
    disaster_types: set[DisasterType],
) -> list[Shelter]:
    """Keep shelters supporting any selected type. Empty selection → all."""
    shelters = list(shelters)
    if not disaster_types:
        return shelters
    return [s for s in shelters if any(s.supports(d) for d in disaster_types)]


def find_reached_shelter(
    shelters: Iterable[Shelter],
    lat: float,
    lon: float,
    radius_m: float,
    reached_ids: set[str] | None = None,
) -> Shelter | None:
    """First shelter within ``radius_m`` not already in ``reached_ids``."""
    reached_ids = reached_ids or set()
    for shelter in shelters:
        if shelter.id in reached_ids:
            continue
        distance = haversine_m(lat, lon, shelter.latitude, shelter.longitude)
        if distance <= radius_m:
            logger.info(f"Reached shelter '{shelter.name}' ({distance:.1f} m)")
            return shelter
    return None


# ──────────────────────────────────────────────────────────────
# 5. Danger zones
# ──────────────────────────────────────────────────────────────

M_PER_DEGREE_LAT = KM_PER_DEGREE_LAT * 1000


def _offset(lat: float, lon: float, north_m: float, east_m: float) -> tuple[float, float]:
    return (
        lat + north_m / M_PER_DEGREE_LAT,
        lon + east_m / (M_PER_DEGREE_LAT * math.cos(math.radians(lat))),
    )


def generate_danger_zones(
    lat: float,
    lon: float,
    rng: random.Random | None = None,
) -> list[list[tuple[float, float]]]:
    """
    5-8 irregular polygons (4-7 sides, 50-150 m radius) placed
    100-800 m from the given point.
    """
    rng = rng or random.Random()
    zones = []
    for _ in range(rng.randint(5, 8)):
        size_m = rng.uniform(50, 150)
        distance_m = rng.uniform(100, 800)
        bearing = rng.uniform(0, 2 * math.pi)
        center_lat, center_lon = _offset(
            lat, lon, distance_m * math.cos(bearing), distance_m * math.sin(bearing)
        )

        sides = rng.randint(4, 7)
        polygon = []
        for i in range(sides):
            angle = i / sides * 2 * math.pi
            radius_m = size_m * rng.uniform(0.7, 1.3)
            polygon.append(
                _offset(center_lat, center_lon, radius_m * math.cos(angle), radius_m * math.sin(angle))
            )
        zones.append(polygon)

    logger.info(f"Generated {len(zones)} danger zones")
    return zones


def check_polygon_entry(
    lat: float,
    lon: float,
    polygons: list[list[tuple[float, float]]],
    entered: set[int] | None = None,
) -> int | None:
    """Index of the first polygon containing the point, skipping ``entered``."""
    entered = entered or set()
    for index, polygon in enumerate(polygons):
        if index in entered:
            continue
        if point_in_polygon(lat, lon, polygon):
            return index
    return None


# ──────────────────────────────────────────────────────────────
# 6. Zombies
# ──────────────────────────────────────────────────────────────

def spawn_zombies(
    lat: float,
    lon: float,
    count: int,
    min_distance_m: float,
    max_distance_m: float,
    min_speed_mps: float,
    max_speed_mps: float,
    rng: random.Random | None = None,
) -> list[Zombie]:
    """``count`` zombies at random bearings and distances, facing anywhere."""
    rng = rng or random.Random()
    zombies = []
    for _ in range(count):
        distance_m = rng.uniform(min_distance_m, max_distance_m)
        bearing = rng.uniform(0, 2 * math.pi)
        z_lat, z_lon = _offset(lat, lon, distance_m * math.cos(bearing), distance_m * math.sin(bearing))
        zombies.append(
            Zombie(
                id=uuid.uuid4().hex,
                latitude=z_lat,
                longitude=z_lon,
                angle=rng.uniform(0, 2 * math.pi),
                speed_mps=rng.uniform(min_speed_mps, max_speed_mps),
            )
        )
    logger.info(f"Spawned {len(zombies)} zombies")
    return zombies


def move_zombies(
    zombies: list[Zombie],
    lat: float,
    lon: float,
    seconds: float,
    follow_strength: float,
    hit_distance_m: float,
    hit_ids: set[str],
    rng: random.Random | None = None,
) -> list[str]:
    """
    One movement tick towards the user at (lat, lon).

    Each zombie first checks whether it is within ``hit_distance_m``; a
    zombie counts as a hit once. It then turns towards the user, blending
    its old heading with ``1 - follow_strength`` weight plus up to ±0.5 rad
    of wander, and walks ``speed * seconds`` metres.
    Returns ids newly added to ``hit_ids``.
    """
    rng = rng or random.Random()
    new_hits = []
    for zombie in zombies:
        if zombie.id not in hit_ids and haversine_m(zombie.latitude, zombie.longitude, lat, lon) <= hit_distance_m:
            hit_ids.add(zombie.id)
            new_hits.append(zombie.id)

        to_user = math.atan2(lon - zombie.longitude, lat - zombie.latitude)
        zombie.angle = (
            to_user * follow_strength
            + zombie.angle * (1 - follow_strength)
            + rng.uniform(-0.5, 0.5)
        )
        step_m = zombie.speed_mps * seconds
        zombie.latitude, zombie.longitude = _offset(
            zombie.latitude,
            zombie.longitude,
            step_m * math.cos(zombie.angle),
            step_m * math.sin(zombie.angle),
        )
    return new_hits
