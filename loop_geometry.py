"""
Geometry helpers for Hero Loops.

All points are ``[lng, lat]`` pairs (the order GeoJSON and the directions
APIs use); geopy wants ``(lat, lng)``, so the swap happens here and nowhere
else.
"""

import math
from typing import List, Sequence

from geopy.distance import great_circle


Point = Sequence[float]


def haversine_meters(lat1, lng1, lat2, lng2):
    return great_circle((lat1, lng1), (lat2, lng2)).meters


def point_distance_meters(a: Point, b: Point) -> float:
    """Great-circle distance between two ``[lng, lat]`` points."""
    return great_circle((a[1], a[0]), (b[1], b[0])).meters


# 📏 Path length in km
def path_distance_km(path: Sequence[Point]) -> float:
    total = 0.0
    for i in range(1, len(path)):
        total += point_distance_meters(path[i - 1], path[i])
    return total / 1000


def destination_point(lat, lng, bearing_deg, distance_km):
    """Move ``distance_km`` from (lat, lng) along ``bearing_deg``. Returns [lng, lat]."""
    dest = great_circle(kilometers=distance_km).destination((lat, lng), bearing=bearing_deg)
    return [dest.longitude, dest.latitude]


# 💎 Diamond loop around a cluster center
def generate_diamond_waypoints(center: Point, radius_km: float, rotation_offset: float = 0) -> List[List[float]]:
    """
    Four waypoints at 0/90/180/270 degrees (plus ``rotation_offset``) around
    ``center``, followed by the first one again: A, B, C, D, A.
    """
    lng, lat = center[0], center[1]
    waypoints = [
        destination_point(lat, lng, (bearing + rotation_offset) % 360, radius_km)
        for bearing in (0, 90, 180, 270)
    ]
    waypoints.append(list(waypoints[0]))
    return waypoints


def rotation_offset_for(cluster_index: int, tier_index: int, cluster_step: float = 15, tier_step: float = 30) -> float:
    return cluster_index * cluster_step + tier_index * tier_step


# ✂️ Douglas-Peucker on the sphere
def perpendicular_distance(point: Point, line_start: Point, line_end: Point) -> float:
    """
    Height of ``point`` over the start→end base, in meters.

    Uses Heron's formula on the three great-circle side lengths, which is
    accurate enough at street scale.
    """
    base = point_distance_meters(line_start, line_end)
    if base == 0:
        return point_distance_meters(point, line_start)

    d_start = point_distance_meters(line_start, point)
    d_end = point_distance_meters(line_end, point)

    s = (base + d_start + d_end) / 2
    area = math.sqrt(max(0.0, s * (s - base) * (s - d_start) * (s - d_end)))
    return 2 * area / base


def douglas_peucker(points: Sequence[Point], tolerance_m: float) -> List[Point]:
    """Classic recursive Douglas-Peucker. Always keeps the first and last point."""
    if len(points) <= 2 or tolerance_m <= 0:
        return list(points)

    start, end = points[0], points[-1]
    max_dist = 0.0
    max_idx = 0

    for i in range(1, len(points) - 1):
        d = perpendicular_distance(points[i], start, end)
        if d > max_dist:
            max_dist = d
            max_idx = i

    if max_dist > tolerance_m:
        left = douglas_peucker(points[: max_idx + 1], tolerance_m)
        right = douglas_peucker(points[max_idx:], tolerance_m)
        return left[:-1] + right

    return [start, end]


def loop_gap_meters(path: Sequence[Point]) -> float:
    if len(path) < 2:
        return 0.0
    return point_distance_meters(path[0], path[-1])


def close_loop(path: Sequence[Point], max_gap_m: float = 100) -> List[Point]:
    """Append the start point when start and end are more than ``max_gap_m`` apart."""
    closed = list(path)
    if closed and loop_gap_meters(closed) > max_gap_m:
        closed.append(closed[0])
    return closed
