"""
Hybrid "Urban Strength" facility snapping.

Interior diamond waypoints (B, C, D) are nudged onto nearby fitness
facilities before the loop is routed. Walking explores and mixes facility
types; running and cycling stay on a single tier so the cardio flow is not
broken up.
"""

import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from infra_filter import GIS_PROPERTY_KEYS, resolve_property
from logging_config import get_logger
from loop_config import ActivityProfile
from loop_geometry import haversine_meters

logger = get_logger(__name__)

SNAPPABLE_INDICES = (1, 2, 3)

PRIMARY_SPORT_TYPES = {"calisthenics", "functional", "crossfit", "fitness_station"}
STAIR_TYPES = {"stairs", "public_steps", "steps"}
PARK_ZONE_CATEGORIES = {"gym_park", "zen_spot", "nature_community", "plaza"}


class FacilityPriority(IntEnum):
    PRIMARY = 1
    SECONDARY = 2
    TERTIARY = 3

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class FacilityCandidate:
    id: str
    name: str
    lat: float
    lng: float
    type: str
    priority: FacilityPriority
    step_count: int = 0
    near_park_or_plaza: bool = False


@dataclass(frozen=True)
class FacilityStop:
    id: str
    name: str
    lat: float
    lng: float
    waypoint_index: int
    priority: FacilityPriority
    type: str
    stop_type: str      # pit-stop | journey

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "lat": self.lat,
            "lng": self.lng,
            "waypointIndex": self.waypoint_index,
            "priority": self.priority.label,
            "type": self.type,
            "stopType": self.stop_type,
        }


@dataclass
class FacilityTiers:
    primary: List[FacilityCandidate] = field(default_factory=list)
    secondary: List[FacilityCandidate] = field(default_factory=list)
    tertiary: List[FacilityCandidate] = field(default_factory=list)

    def __len__(self):
        return len(self.primary) + len(self.secondary) + len(self.tertiary)


@dataclass
class SnapResult:
    waypoints: List[List[float]]
    stops: List[FacilityStop]
    hybrid_type: Optional[str]


def _as_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v).lower() for v in value]
    return [str(value).lower()]


def _coords(record: Dict[str, Any]):
    lat = record.get("lat")
    lng = record.get("lng")
    if lat is None or lng is None:
        location = record.get("location") or {}
        lat, lng = location.get("lat"), location.get("lng")
    try:
        if lat is None or lng is None:
            return None
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        return None
    if math.isnan(lat) or math.isnan(lng):
        return None
    return lat, lng


def _step_count(record: Dict[str, Any]) -> int:
    raw = resolve_property(record, GIS_PROPERTY_KEYS["step_count"])
    if raw is None:
        raw = (record.get("stairsDetails") or {}).get("numberOfSteps")
    try:
        return int(float(raw)) if raw is not None else 0
    except (TypeError, ValueError):
        return 0


def _facility_id(record: Dict[str, Any], index: int) -> str:
    raw = resolve_property(record, GIS_PROPERTY_KEYS["id"])
    if raw is None:
        return f"facility-{index}"
    # pandas turns integer columns with blanks into floats
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    return str(raw)


def _truthy(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y")
    # blank pandas cells arrive as NaN, which is unequal to itself
    return bool(value) and value == value


def categorise_facilities(records: Iterable[Dict[str, Any]], bench_park_radius_m: float = 200) -> FacilityTiers:
    """
    Partition raw facility records into PRIMARY / SECONDARY / TERTIARY pools.

    PRIMARY   dedicated fitness / calisthenics stations and gym parks
    SECONDARY stairs (step count kept for the per-activity threshold)
    TERTIARY  benches, only when next to a park or plaza
    """
    records = list(records)
    tiers = FacilityTiers()

    located = []
    for index, record in enumerate(records):
        coords = _coords(record)
        if coords is None:
            continue
        located.append((index, record, coords))

    park_zones = [
        (index, coords) for index, record, coords in located
        if str(resolve_property(record, GIS_PROPERTY_KEYS["category"]) or "").lower() in PARK_ZONE_CATEGORIES
    ]

    for index, record, (lat, lng) in located:
        category = str(resolve_property(record, GIS_PROPERTY_KEYS["category"]) or "").lower()
        sport_types = _as_list(record.get("sportTypes") or record.get("sport_types"))
        kinds = set(sport_types) | {category}
        base = dict(
            id=_facility_id(record, index),
            name=str(resolve_property(record, GIS_PROPERTY_KEYS["name"]) or category or "facility"),
            lat=lat,
            lng=lng,
        )

        if kinds & PRIMARY_SPORT_TYPES or category == "gym_park":
            kind = sport_types[0] if sport_types else "fitness_station"
            tiers.primary.append(FacilityCandidate(type=kind, priority=FacilityPriority.PRIMARY, **base))
        elif kinds & STAIR_TYPES:
            tiers.secondary.append(FacilityCandidate(
                type=category if category in STAIR_TYPES else "stairs",
                priority=FacilityPriority.SECONDARY,
                step_count=_step_count(record),
                **base
            ))
        elif "bench" in kinds:
            near = (
                _truthy(record.get("nearParkOrPlaza"))
                or str(record.get("environment", "")).lower() == "plaza"
                or any(
                    zone_index != index and haversine_meters(lat, lng, zlat, zlng) < bench_park_radius_m
                    for zone_index, (zlat, zlng) in park_zones
                )
            )
            if near:
                tiers.tertiary.append(FacilityCandidate(
                    type="bench", priority=FacilityPriority.TERTIARY, near_park_or_plaza=True, **base
                ))

    logger.info(
        f"🏋️ Facilities categorised: {len(tiers.primary)} primary, "
        f"{len(tiers.secondary)} stairs, {len(tiers.tertiary)} benches"
    )
    return tiers


def find_nearest_facility(point: Sequence[float], candidates: Iterable[FacilityCandidate], max_dist_m: float):
    """Nearest candidate to ``point`` ([lng, lat]) within ``max_dist_m``, as (candidate, meters)."""
    best = None
    best_dist = None
    for c in candidates:
        d = haversine_meters(point[1], point[0], c.lat, c.lng)
        if d <= max_dist_m and (best is None or d < best_dist):
            best, best_dist = c, d
    return (best, best_dist) if best is not None else None


def _stop(candidate: FacilityCandidate, index: int, stop_type: str) -> FacilityStop:
    return FacilityStop(
        id=candidate.id,
        name=candidate.name,
        lat=candidate.lat,
        lng=candidate.lng,
        waypoint_index=index,
        priority=candidate.priority,
        type=candidate.type,
        stop_type=stop_type,
    )


def _stairs_pool(tiers: FacilityTiers, min_steps: int) -> List[FacilityCandidate]:
    return [s for s in tiers.secondary if s.step_count > min_steps]


def max_stops_for(route_distance_km: float, profile: ActivityProfile) -> int:
    return min(math.floor(route_distance_km / profile.km_per_stop), profile.max_hybrid_stops)


def snap_waypoints_to_facilities(
    waypoints: Sequence[Sequence[float]],
    tiers: FacilityTiers,
    route_distance_km: float,
    profile: ActivityProfile,
    snap_radius_m: float = 300,
) -> SnapResult:
    """
    Snap the interior waypoints of a 5-point diamond onto facilities.

    Only indices 1-3 move; the closing point is re-synced to the start.
    """
    result = [list(wp) for wp in waypoints]
    stops: List[FacilityStop] = []
    used_ids = set()
    hybrid_type = None
    max_stops = max_stops_for(route_distance_km, profile)

    if profile.hybrid_mode == "exploration":
        pools = [
            (tiers.primary, FacilityPriority.PRIMARY),
            (_stairs_pool(tiers, profile.stair_min_steps), FacilityPriority.SECONDARY),
            (tiers.tertiary, FacilityPriority.TERTIARY),
        ]
        used_tiers = set()

        for idx in SNAPPABLE_INDICES:
            if len(stops) >= max_stops:
                break
            # Tiers not yet on this route first, then by priority
            ordered = sorted(pools, key=lambda p: (p[1] in used_tiers, p[1]))
            for pool, tier in ordered:
                available = [f for f in pool if f.id not in used_ids]
                found = find_nearest_facility(result[idx], available, snap_radius_m)
                if found:
                    facility, _ = found
                    result[idx] = [facility.lng, facility.lat]
                    used_ids.add(facility.id)
                    used_tiers.add(tier)
                    stops.append(_stop(facility, idx, "journey"))
                    break

        if len(used_tiers) > 1:
            hybrid_type = "mixed"
        elif used_tiers:
            hybrid_type = next(iter(used_tiers)).label
    else:
        attempts = [
            (tiers.primary, FacilityPriority.PRIMARY),
            (_stairs_pool(tiers, profile.stair_min_steps), FacilityPriority.SECONDARY),
            (tiers.tertiary, FacilityPriority.TERTIARY),
        ]
        for pool, tier in attempts:
            if stops:
                break
            # An activity that avoids stairs takes at most one tall flight
            tier_cap = 1 if tier == FacilityPriority.SECONDARY and profile.avoid_stairs else max_stops
            for idx in SNAPPABLE_INDICES:
                if len(stops) >= min(max_stops, tier_cap):
                    break
                available = [f for f in pool if f.id not in used_ids]
                found = find_nearest_facility(result[idx], available, snap_radius_m)
                if found:
                    facility, _ = found
                    result[idx] = [facility.lng, facility.lat]
                    used_ids.add(facility.id)
                    stops.append(_stop(facility, idx, "pit-stop"))
                    hybrid_type = tier.label

    result[-1] = list(result[0])
    return SnapResult(waypoints=result, stops=stops, hybrid_type=hybrid_type)
