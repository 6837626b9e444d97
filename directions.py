"""
Directions provider access: OpenRouteService client wrapper, the request
interval gate, and the circular (closed loop) route builder.
"""

import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence

import openrouteservice
import requests
from openrouteservice import exceptions as ors_exceptions

from logging_config import get_logger, log_api_call, log_error

logger = get_logger(__name__)


# Our two travel profiles → OpenRouteService profile names
ORS_PROFILES = {
    "walking": "foot-walking",
    "cycling": "cycling-regular",
}


@dataclass
class RouteLeg:
    path: List[List[float]]     # [lng, lat]
    distance_meters: float
    duration_seconds: float


@dataclass
class CircularRoute:
    path: List[List[float]]
    distance_km: float
    duration_seconds: float


class DirectionsProvider(Protocol):
    def route(self, waypoints: Sequence[Sequence[float]], profile: str, continue_straight: bool) -> Optional[RouteLeg]:
        ...


class OpenRouteServiceProvider:
    """Directions through the OpenRouteService API (GeoJSON responses)."""

    def __init__(self, api_key=None, client=None, radiuses=None):
        if client is None:
            client = openrouteservice.Client(key=api_key)
        self.client = client
        # Per-waypoint snap radius in meters; -1 lets ORS search without limit
        self.radiuses = radiuses

    def route(self, waypoints, profile, continue_straight):
        ors_profile = ORS_PROFILES.get(profile, "foot-walking")
        log_api_call(logger, "openrouteservice", ors_profile, waypoints=len(waypoints))

        kwargs = {}
        if continue_straight:
            kwargs["continue_straight"] = True
        if self.radiuses is not None:
            kwargs["radiuses"] = [self.radiuses] * len(waypoints)

        try:
            response = self.client.directions(
                coordinates=[(wp[0], wp[1]) for wp in waypoints],
                profile=ors_profile,
                format="geojson",
                **kwargs
            )
        except (ors_exceptions.ApiError, ors_exceptions.HTTPError, ors_exceptions.Timeout) as e:
            log_error(logger, "routing_failed", f"❌ OpenRouteService error: {e}", api_name="openrouteservice")
            return None
        except requests.exceptions.RequestException as e:
            log_error(logger, "network", f"❌ OpenRouteService unreachable: {e}", api_name="openrouteservice")
            return None

        try:
            feature = response["features"][0]
            coords = [[pt[0], pt[1]] for pt in feature["geometry"]["coordinates"]]
            summary = feature.get("properties", {}).get("summary", {})
        except (KeyError, IndexError, TypeError) as e:
            log_error(logger, "bad_response", f"⚠️ Unexpected OpenRouteService payload: {e}", api_name="openrouteservice")
            return None

        return RouteLeg(
            path=coords,
            distance_meters=float(summary.get("distance", 0.0)),
            duration_seconds=float(summary.get("duration", 0.0)),
        )


class IntervalGate:
    """
    Keeps consecutive calls at least ``min_interval`` seconds apart.

    The interval runs from ``release()`` (the end of the previous call) when
    the caller reports it, otherwise from the previous ``wait()``.

    The clock and sleep functions are injectable so tests can run without
    actually waiting.
    """

    def __init__(self, min_interval: float = 1.5,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last = None
        self.total_waited = 0.0

    def wait(self) -> float:
        """Block until the next call is allowed. Returns the seconds slept."""
        waited = 0.0
        if self._last is not None:
            remaining = self.min_interval - (self._clock() - self._last)
            if remaining > 0:
                self._sleep(remaining)
                waited = remaining
        self._last = self._clock()
        self.total_waited += waited
        return waited

    def release(self) -> None:
        """Mark the guarded call as finished."""
        self._last = self._clock()


class CircularRouteBuilder:
    """Turns a closed waypoint list into a routable loop via the provider."""

    def __init__(self, provider: DirectionsProvider, limiter: Optional[IntervalGate] = None):
        self.provider = provider
        self.limiter = limiter or IntervalGate()

    def build(self, waypoints, profile="walking", continue_straight=True) -> Optional[CircularRoute]:
        """
        Route A→B→C→D→A. Returns None when the provider fails for any reason;
        callers treat that as "skip this candidate".
        """
        if len(waypoints) < 3:
            return None

        self.limiter.wait()
        try:
            leg = self.provider.route(waypoints, profile, continue_straight)
        except Exception as e:
            log_error(logger, "routing_failed", f"❌ Circular route error: {e}")
            return None
        finally:
            self.limiter.release()

        if leg is None or not leg.path:
            return None

        return CircularRoute(
            path=leg.path,
            distance_km=leg.distance_meters / 1000,
            duration_seconds=leg.duration_seconds,
        )
