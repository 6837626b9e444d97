import pytest
import requests
from openrouteservice import exceptions as ors_exceptions

from conftest import LoopProvider
from directions import CircularRouteBuilder, OpenRouteServiceProvider, RouteLeg

WAYPOINTS = [[34.78, 32.09], [34.79, 32.08], [34.78, 32.07], [34.77, 32.08], [34.78, 32.09]]

ORS_RESPONSE = {
    "type": "FeatureCollection",
    "features": [{
        "type": "Feature",
        "geometry": {"type": "LineString", "coordinates": [[34.78, 32.09, 12.0], [34.79, 32.08, 13.0]]},
        "properties": {"summary": {"distance": 5234.5, "duration": 3140.0}},
    }],
}


class FakeClient:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def directions(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return self.response


# ── OpenRouteServiceProvider ─────────────────────────────────────────

def test_ors_request_shape():
    client = FakeClient(ORS_RESPONSE)
    OpenRouteServiceProvider(client=client).route(WAYPOINTS, "cycling", continue_straight=True)

    call = client.calls[0]
    assert call["profile"] == "cycling-regular"
    assert call["format"] == "geojson"
    assert call["continue_straight"] is True
    assert call["coordinates"][0] == (34.78, 32.09)
    assert len(call["coordinates"]) == 5


def test_ors_omits_continue_straight_when_not_requested():
    client = FakeClient(ORS_RESPONSE)
    OpenRouteServiceProvider(client=client, radiuses=350).route(WAYPOINTS, "walking", continue_straight=False)

    call = client.calls[0]
    assert call["profile"] == "foot-walking"
    assert "continue_straight" not in call
    assert call["radiuses"] == [350] * 5


def test_ors_response_parsed_into_leg():
    leg = OpenRouteServiceProvider(client=FakeClient(ORS_RESPONSE)).route(WAYPOINTS, "walking", True)
    assert leg.path == [[34.78, 32.09], [34.79, 32.08]]
    assert leg.distance_meters == pytest.approx(5234.5)
    assert leg.duration_seconds == pytest.approx(3140.0)


@pytest.mark.parametrize("error", [
    ors_exceptions.ApiError(400, {"error": "Could not find routable point"}),
    ors_exceptions.Timeout(),
    requests.exceptions.ConnectionError("down"),
])
def test_ors_failures_become_none(error):
    provider = OpenRouteServiceProvider(client=FakeClient(error=error))
    assert provider.route(WAYPOINTS, "walking", True) is None


def test_ors_malformed_payload_becomes_none():
    provider = OpenRouteServiceProvider(client=FakeClient({"features": []}))
    assert provider.route(WAYPOINTS, "walking", True) is None


# ── IntervalGate ─────────────────────────────────────────────────────

def test_gate_first_call_passes_immediately(gate, fake_clock):
    assert gate.wait() == 0
    assert fake_clock.sleeps == []


def test_gate_spaces_back_to_back_calls(gate, fake_clock):
    gate.wait()
    gate.wait()
    gate.wait()
    assert fake_clock.sleeps == [pytest.approx(1.5), pytest.approx(1.5)]
    assert gate.total_waited == pytest.approx(3.0)


def test_gate_only_sleeps_the_remainder(gate, fake_clock):
    gate.wait()
    fake_clock.now += 1.0
    assert gate.wait() == pytest.approx(0.5)
    fake_clock.now += 5.0
    assert gate.wait() == 0


# ── CircularRouteBuilder ─────────────────────────────────────────────

def test_builder_needs_three_waypoints(gate):
    provider = LoopProvider()
    assert CircularRouteBuilder(provider, gate).build(WAYPOINTS[:2]) is None
    assert provider.calls == []


def test_builder_converts_leg(gate):
    leg = RouteLeg(path=[[0, 0], [0, 1]], distance_meters=8400, duration_seconds=3000)
    provider = LoopProvider(responses=[leg])
    route = CircularRouteBuilder(provider, gate).build(WAYPOINTS, "walking", True)

    assert route.distance_km == pytest.approx(8.4)
    assert route.duration_seconds == 3000
    assert provider.calls[0]["profile"] == "walking"
    assert provider.calls[0]["continue_straight"] is True


@pytest.mark.parametrize("response", [
    RuntimeError("boom"),
    None,
    RouteLeg(path=[], distance_meters=0, duration_seconds=0),
])
def test_builder_failures_become_none(gate, response):
    builder = CircularRouteBuilder(LoopProvider(responses=[response]), gate)
    assert builder.build(WAYPOINTS) is None


def test_builder_waits_between_requests(gate, fake_clock):
    builder = CircularRouteBuilder(LoopProvider(), gate)
    for _ in range(3):
        builder.build(WAYPOINTS)
    assert len(fake_clock.sleeps) == 2


def test_gate_interval_counts_from_end_of_previous_call(gate, fake_clock):
    class SlowProvider(LoopProvider):
        def route(self, waypoints, profile, continue_straight):
            fake_clock.now += 2.0
            return super().route(waypoints, profile, continue_straight)

    builder = CircularRouteBuilder(SlowProvider(), gate)
    builder.build(WAYPOINTS)
    builder.build(WAYPOINTS)
    assert fake_clock.sleeps == [pytest.approx(1.5)]


def test_gate_released_after_provider_error(gate, fake_clock):
    builder = CircularRouteBuilder(LoopProvider(responses=[RuntimeError("boom")]), gate)
    builder.build(WAYPOINTS)
    fake_clock.now += 1.0
    builder.build(WAYPOINTS)
    assert fake_clock.sleeps == [pytest.approx(0.5)]
