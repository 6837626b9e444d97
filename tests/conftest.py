import pytest

from directions import IntervalGate, RouteLeg
from infra_filter import InfrastructureSegment
from loop_geometry import destination_point, point_distance_meters


class FakeClock:
    """Clock whose time only moves when something sleeps (or a test advances it)."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def circle_path(center, radius_km, n_points):
    """Closed ring of ``n_points`` [lng, lat] points around ``center``; last point repeats the first."""
    lng, lat = center
    ring = [destination_point(lat, lng, 360.0 * i / (n_points - 1), radius_km) for i in range(n_points - 1)]
    ring.append(list(ring[0]))
    return ring


class LoopProvider:
    """
    Directions provider stand-in: answers with a ring through the diamond's
    corners, or with whatever ``responses`` dictates for each call.
    """

    def __init__(self, responses=None, n_points=120):
        self.calls = []
        self.responses = list(responses or [])
        self.n_points = n_points

    def route(self, waypoints, profile, continue_straight):
        self.calls.append({
            "waypoints": [list(w) for w in waypoints],
            "profile": profile,
            "continue_straight": continue_straight,
        })
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            if response is None or isinstance(response, RouteLeg):
                return response

        corners = waypoints[:4]
        center = (sum(w[0] for w in corners) / 4, sum(w[1] for w in corners) / 4)
        radius_km = point_distance_meters(center, waypoints[0]) / 1000
        path = circle_path(center, radius_km, self.n_points)
        return RouteLeg(path=path, distance_meters=2 * 3.14159 * radius_km * 1000, duration_seconds=0)


class StaticSegmentSource:
    def __init__(self, segments=None, facilities=None, error=None, facility_error=None):
        self.segments = segments or []
        self.facilities = facilities or []
        self.error = error
        self.facility_error = facility_error
        self.facility_calls = 0

    def fetch_infrastructure(self, area_id):
        if self.error:
            raise self.error
        return self.segments

    def fetch_facilities(self, area_id):
        self.facility_calls += 1
        if self.facility_error:
            raise self.facility_error
        return self.facilities


class RecordingStore:
    def __init__(self):
        self.calls = []

    def replace_routes(self, area_id, routes):
        self.calls.append((area_id, list(routes)))
        return True


def segment_group(center, count, mode="pedestrian", spread=0.001):
    """``count`` short segments scattered on a small grid around ``center``."""
    lng, lat = center
    segments = []
    for i in range(count):
        dx = spread * ((i % 5) - 2) / 2
        dy = spread * ((i // 5) % 5 - 2) / 2
        segments.append(InfrastructureSegment(
            path=((lng + dx, lat + dy), (lng + dx + 0.0005, lat + dy), (lng + dx + 0.001, lat + dy)),
            mode=mode,
        ))
    return segments


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def gate(fake_clock):
    return IntervalGate(1.5, clock=fake_clock.clock, sleep=fake_clock.sleep)
