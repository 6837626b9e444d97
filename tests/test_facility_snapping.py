import pytest

from facility_snapping import (
    FacilityCandidate,
    FacilityPriority,
    FacilityTiers,
    categorise_facilities,
    find_nearest_facility,
    max_stops_for,
    snap_waypoints_to_facilities,
)
from loop_config import ACTIVITY_PROFILES
from loop_geometry import destination_point, generate_diamond_waypoints, point_distance_meters

CENTER = (34.78, 32.08)
RUNNING = ACTIVITY_PROFILES["running"]
WALKING = ACTIVITY_PROFILES["walking"]
CYCLING = ACTIVITY_PROFILES["cycling"]


def near(waypoint, meters=50, bearing=90):
    lng, lat = destination_point(waypoint[1], waypoint[0], bearing, meters / 1000)
    return lat, lng


def candidate(fid, waypoint, priority, kind, step_count=0, meters=50):
    lat, lng = near(waypoint, meters)
    return FacilityCandidate(id=fid, name=fid, lat=lat, lng=lng, type=kind, priority=priority, step_count=step_count)


@pytest.fixture
def diamond():
    return generate_diamond_waypoints(CENTER, 0.8)


# ── categorise_facilities ────────────────────────────────────────────

def test_categorise_facilities_into_tiers():
    records = [
        {"id": "g1", "name": "Gan Meir Gym", "lat": 32.0, "lng": 34.0, "category": "gym_park"},
        {"id": "c1", "lat": 32.01, "lng": 34.0, "sportTypes": ["calisthenics", "pullups"]},
        {"id": "s1", "lat": 32.02, "lng": 34.0, "category": "stairs", "stepCount": 30},
        {"id": "s2", "lat": 32.03, "lng": 34.0, "category": "public_steps",
         "stairsDetails": {"numberOfSteps": "12"}},
        {"id": "b1", "lat": 32.001, "lng": 34.0, "category": "bench"},     # ~110 m from the gym park
        {"id": "b2", "lat": 32.05, "lng": 34.0, "category": "bench"},
        {"id": "b3", "lat": 32.1, "lng": 34.0, "category": "bench", "nearParkOrPlaza": "true"},
        {"id": "b4", "lat": 32.2, "lng": 34.0, "category": "bench", "environment": "Plaza"},
        {"id": "x1", "category": "stairs"},
        {"id": "x2", "lat": float("nan"), "lng": 34.0, "category": "bench", "nearParkOrPlaza": True},
    ]
    tiers = categorise_facilities(records)

    assert [f.id for f in tiers.primary] == ["g1", "c1"]
    assert tiers.primary[0].name == "Gan Meir Gym"
    assert tiers.primary[0].type == "fitness_station"
    assert tiers.primary[1].type == "calisthenics"

    assert [(f.id, f.step_count) for f in tiers.secondary] == [("s1", 30), ("s2", 12)]
    assert tiers.secondary[1].type == "public_steps"

    assert sorted(f.id for f in tiers.tertiary) == ["b1", "b3", "b4"]
    assert all(f.near_park_or_plaza for f in tiers.tertiary)
    assert len(tiers) == 7


def test_blank_csv_flag_is_not_near_park():
    tiers = categorise_facilities([{"id": "b", "lat": 32.0, "lng": 34.0, "category": "bench",
                                    "nearParkOrPlaza": float("nan")}])
    assert tiers.tertiary == []


# ── helpers ──────────────────────────────────────────────────────────

def test_find_nearest_facility_within_radius(diamond):
    close = candidate("close", diamond[1], FacilityPriority.PRIMARY, "fitness_station", meters=40)
    far = candidate("far", diamond[1], FacilityPriority.PRIMARY, "fitness_station", meters=250)
    found, dist = find_nearest_facility(diamond[1], [far, close], 300)
    assert found.id == "close"
    assert dist == pytest.approx(40, abs=1)


def test_find_nearest_facility_none_outside_radius(diamond):
    far = candidate("far", diamond[1], FacilityPriority.PRIMARY, "fitness_station", meters=400)
    assert find_nearest_facility(diamond[1], [far], 300) is None


def test_max_stops_scale_with_distance():
    assert max_stops_for(4, RUNNING) == 0
    assert max_stops_for(12, RUNNING) == 2
    assert max_stops_for(50, CYCLING) == 2
    assert max_stops_for(6, WALKING) == 3
    assert max_stops_for(10, WALKING) == 4


# ── performance (running / cycling) ──────────────────────────────────

def test_running_snaps_primary_pit_stops(diamond):
    tiers = FacilityTiers(
        primary=[
            candidate("p1", diamond[1], FacilityPriority.PRIMARY, "fitness_station"),
            candidate("p3", diamond[3], FacilityPriority.PRIMARY, "fitness_station"),
        ],
        secondary=[candidate("s2", diamond[2], FacilityPriority.SECONDARY, "stairs", step_count=40)],
    )
    result = snap_waypoints_to_facilities(diamond, tiers, 12, RUNNING)

    assert result.hybrid_type == "primary"
    assert [(s.id, s.waypoint_index, s.stop_type) for s in result.stops] == [
        ("p1", 1, "pit-stop"), ("p3", 3, "pit-stop"),
    ]
    assert result.waypoints[1] == [tiers.primary[0].lng, tiers.primary[0].lat]
    assert result.waypoints[2] == list(diamond[2])
    assert result.waypoints[0] == list(diamond[0])
    assert result.waypoints[-1] == result.waypoints[0]


def test_running_takes_one_tall_stair_flight_only(diamond):
    tiers = FacilityTiers(secondary=[
        candidate("s1", diamond[1], FacilityPriority.SECONDARY, "stairs", step_count=30),
        candidate("s2", diamond[2], FacilityPriority.SECONDARY, "stairs", step_count=30),
    ])
    result = snap_waypoints_to_facilities(diamond, tiers, 12, RUNNING)
    assert result.hybrid_type == "secondary"
    assert [s.id for s in result.stops] == ["s1"]


def test_running_ignores_short_stairs_walking_uses_them(diamond):
    tiers = FacilityTiers(secondary=[candidate("s1", diamond[1], FacilityPriority.SECONDARY, "stairs", step_count=18)])
    assert snap_waypoints_to_facilities(diamond, tiers, 12, RUNNING).stops == []
    assert [s.id for s in snap_waypoints_to_facilities(diamond, tiers, 6, WALKING).stops] == ["s1"]


def test_short_route_gets_no_stops(diamond):
    tiers = FacilityTiers(primary=[candidate("p1", diamond[1], FacilityPriority.PRIMARY, "fitness_station")])
    result = snap_waypoints_to_facilities(diamond, tiers, 4, RUNNING)
    assert result.stops == []
    assert result.hybrid_type is None
    assert result.waypoints == [list(w) for w in diamond]


def test_facility_out_of_reach_leaves_waypoints(diamond):
    tiers = FacilityTiers(primary=[
        candidate("p1", diamond[1], FacilityPriority.PRIMARY, "fitness_station", meters=350),
    ])
    result = snap_waypoints_to_facilities(diamond, tiers, 12, CYCLING, snap_radius_m=300)
    assert result.stops == []
    assert result.waypoints[1] == list(diamond[1])


# ── exploration (walking) ────────────────────────────────────────────

def test_walking_mixes_tiers_as_journey_stops(diamond):
    tiers = FacilityTiers(
        primary=[candidate("p1", diamond[1], FacilityPriority.PRIMARY, "fitness_station")],
        secondary=[candidate("s3", diamond[3], FacilityPriority.SECONDARY, "stairs", step_count=30)],
        tertiary=[candidate("b2", diamond[2], FacilityPriority.TERTIARY, "bench")],
    )
    result = snap_waypoints_to_facilities(diamond, tiers, 6, WALKING)

    assert result.hybrid_type == "mixed"
    assert [(s.id, s.waypoint_index) for s in result.stops] == [("p1", 1), ("b2", 2), ("s3", 3)]
    assert all(s.stop_type == "journey" for s in result.stops)


def test_walking_prefers_a_new_tier_over_a_second_primary(diamond):
    tiers = FacilityTiers(
        primary=[
            candidate("p1", diamond[1], FacilityPriority.PRIMARY, "fitness_station"),
            candidate("p2", diamond[2], FacilityPriority.PRIMARY, "fitness_station", meters=20),
        ],
        tertiary=[candidate("b2", diamond[2], FacilityPriority.TERTIARY, "bench", meters=200)],
    )
    result = snap_waypoints_to_facilities(diamond, tiers, 6, WALKING)
    assert [s.id for s in result.stops] == ["p1", "b2"]
    assert result.hybrid_type == "mixed"


def test_walking_single_tier_reports_that_tier(diamond):
    tiers = FacilityTiers(tertiary=[candidate("b1", diamond[1], FacilityPriority.TERTIARY, "bench")])
    result = snap_waypoints_to_facilities(diamond, tiers, 6, WALKING)
    assert result.hybrid_type == "tertiary"


def test_facility_used_once_per_route(diamond):
    shared = candidate("p1", diamond[1], FacilityPriority.PRIMARY, "fitness_station")
    tiers = FacilityTiers(primary=[shared])
    result = snap_waypoints_to_facilities(diamond, tiers, 10, WALKING, snap_radius_m=5000)
    assert [s.id for s in result.stops] == ["p1"]


def test_stop_to_dict_uses_wire_keys(diamond):
    tiers = FacilityTiers(primary=[candidate("p1", diamond[1], FacilityPriority.PRIMARY, "calisthenics")])
    stop = snap_waypoints_to_facilities(diamond, tiers, 12, RUNNING).stops[0].to_dict()
    assert stop["waypointIndex"] == 1
    assert stop["priority"] == "primary"
    assert stop["stopType"] == "pit-stop"
    assert stop["type"] == "calisthenics"
    assert point_distance_meters((stop["lng"], stop["lat"]), diamond[1]) == pytest.approx(50, abs=1)
