# heroloops_backend.py

# 📦 Imports
import argparse
import json
import queue
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from data_sources import GeoJSONDataSource, OverpassDataSource
from density_clusters import identify_density_clusters, target_cluster_count
from directions import CircularRouteBuilder, IntervalGate, OpenRouteServiceProvider
from facility_snapping import FacilityStop, FacilityTiers, categorise_facilities, snap_waypoints_to_facilities
from infra_filter import InfrastructureSegment, filter_compatible_infrastructure
from logging_config import get_logger, log_error, setup_logging
from loop_config import ConfigurationError, SynthesisConfig, TierConfig, load_settings
from loop_geometry import close_loop, douglas_peucker, generate_diamond_waypoints, rotation_offset_for
from route_storage import SqlRouteStore, export_routes_as_gpx

logger = get_logger(__name__)

SOURCE_NAME = "Hero Loop Engine"

ACTIVITY_LABELS = {
    "running": "Run",
    "walking": "Walk",
    "cycling": "Ride",
}

TIER_NAME_LABELS = {
    "short": "Short Loop",
    "medium": "Medium Loop",
    "long": "Long Loop",
}

TIER_DIFFICULTY = {
    "short": "easy",
    "medium": "medium",
    "long": "hard",
}


# 🔌 Collaborators
class SegmentSource(Protocol):
    def fetch_infrastructure(self, area_id: str) -> Sequence[Any]:
        ...


class FacilitySource(Protocol):
    def fetch_facilities(self, area_id: str) -> List[Dict[str, Any]]:
        ...


class RouteStore(Protocol):
    def replace_routes(self, area_id: str, routes: List["CuratedRoute"]) -> bool:
        ...


# 📣 Progress events
@dataclass(frozen=True)
class ProgressEvent:
    phase: str      # fetch | filter | cluster | stitch | save | done
    detail: str
    percent: int


class ProgressSink(Protocol):
    def emit(self, event: ProgressEvent) -> None:
        ...


class LoggingProgressSink:
    def emit(self, event):
        logger.info(f"{event.phase}: {event.detail} ({event.percent}%)",
                    extra={"phase": event.phase, "percent": event.percent})


class CallbackProgressSink:
    """Adapts a plain ``fn(event)`` callable."""

    def __init__(self, callback: Callable[[ProgressEvent], None]):
        self.callback = callback

    def emit(self, event):
        self.callback(event)


class QueueProgressSink:
    """Buffers events on a queue for a consumer on another thread."""

    def __init__(self, events: Optional[queue.Queue] = None):
        self.events = events if events is not None else queue.Queue()

    def emit(self, event):
        self.events.put(event)

    def drain(self) -> List[ProgressEvent]:
        drained = []
        while True:
            try:
                drained.append(self.events.get_nowait())
            except queue.Empty:
                return drained


# 🗺️ Output entities
@dataclass
class CuratedRoute:
    id: str
    name: str
    description: str
    distance_km: float
    duration_min: int
    activity_type: str
    difficulty: str
    curated_tier: str
    path: List[List[float]]
    calories: int
    is_hybrid: bool = False
    hybrid_type: Optional[str] = None
    facility_stops: List[FacilityStop] = field(default_factory=list)
    infrastructure_mode: Optional[str] = None
    cluster_index: int = 0
    cluster_density: int = 0
    area_id: str = ""
    area_name: str = ""
    source_name: str = SOURCE_NAME

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "distance": self.distance_km,
            "duration": self.duration_min,
            "activityType": self.activity_type,
            "difficulty": self.difficulty,
            "curatedTier": self.curated_tier,
            "path": [list(p) for p in self.path],
            "calories": self.calories,
            "isHybrid": self.is_hybrid,
            "hybridType": self.hybrid_type,
            "facilityStops": [s.to_dict() for s in self.facility_stops],
            "infrastructureMode": self.infrastructure_mode,
            "clusterIndex": self.cluster_index,
            "clusterDensity": self.cluster_density,
            "areaId": self.area_id,
            "areaName": self.area_name,
            "source": self.source_name,
        }


@dataclass
class SynthesisStats:
    total_infrastructure_km: float = 0.0
    segments_processed: int = 0
    compatible_segments: int = 0
    clusters_found: int = 0
    tiers_generated: int = 0
    hybrid_routes: int = 0
    data_source: str = "none"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalInfrastructureKm": self.total_infrastructure_km,
            "segmentsProcessed": self.segments_processed,
            "compatibleSegments": self.compatible_segments,
            "clustersFound": self.clusters_found,
            "tiersGenerated": self.tiers_generated,
            "hybridRoutes": self.hybrid_routes,
            "dataSource": self.data_source,
        }


@dataclass
class SynthesisResult:
    curated_routes: List[CuratedRoute]
    stats: SynthesisStats
    status: str = "ok"      # ok | no_infrastructure | no_compatible_infrastructure


# 🏷️ Naming
def generate_route_name(hybrid_type, activity, area_name, tier):
    label = ACTIVITY_LABELS.get(activity, "Workout")

    if hybrid_type == "mixed":
        return f"Hybrid {label}: Combined Strength & Stairs – {area_name}"
    if hybrid_type == "primary":
        return f"Hybrid Route: {label} + Fitness Stations – {area_name}"
    if hybrid_type == "secondary":
        return f"Hybrid Route: {label} + Stair Training – {area_name}"
    if hybrid_type == "tertiary":
        return f"Hybrid Route: {label} + Urban Strength – {area_name}"
    return f"{TIER_NAME_LABELS.get(tier, 'Loop')} – {area_name}"


# ✅ Validation
def validate_candidate(candidate, tier: TierConfig, config: SynthesisConfig):
    """Returns (accepted, reason). ``candidate`` is a CircularRoute or None."""
    if candidate is None:
        return False, "routing_failed"
    if len(candidate.path) < config.min_path_points:
        return False, "too_few_points"
    low, high = config.distance_window(tier)
    if candidate.distance_km < low:
        return False, "too_short"
    if candidate.distance_km > high:
        return False, "too_long"
    return True, None


def estimate_duration_minutes(distance_km, duration_seconds, minutes_per_km):
    if duration_seconds and duration_seconds > 0:
        return round(duration_seconds / 60)
    return round(distance_km * minutes_per_km)


def _coerce_segment(raw) -> InfrastructureSegment:
    if isinstance(raw, InfrastructureSegment):
        return raw
    return InfrastructureSegment.from_dict(raw)


def _provenance_mode(data_source):
    if data_source == "none":
        return None
    if data_source == "mixed":
        return "shared"
    return data_source


# 🔁 Hero Loop generator
def generate_curated_routes(
    area_id: str,
    area_name: str,
    activity: str,
    segment_source: SegmentSource,
    route_builder: CircularRouteBuilder,
    facility_source: Optional[FacilitySource] = None,
    store: Optional[RouteStore] = None,
    config: Optional[SynthesisConfig] = None,
    progress: Optional[ProgressSink] = None,
) -> SynthesisResult:
    """
    Generate Hero Loop curated routes for an area.

    Pipeline:
     1. Fetch infrastructure segments and keep the ones the activity may use
     2. Identify density clusters
     3. For each cluster x tier: diamond waypoints, optional facility snapping
     4. Route the loop, validate it, smooth it with Douglas-Peucker
     5. Replace the area's stored routes with the new batch

    Source failures propagate; everything that goes wrong for a single
    candidate is logged and skipped.
    """
    config = config or SynthesisConfig()
    sink = progress or LoggingProgressSink()
    profile = config.profile_for(activity)
    tier_configs = config.tiers_for(activity)
    ctx = {"area_id": area_id, "activity": activity}

    def report(phase, detail, percent):
        sink.emit(ProgressEvent(phase, detail, percent))

    # ── 1. Fetch ─────────────────────────────────────────────────
    report("fetch", "Loading raw infrastructure...", 5)
    all_infra = [_coerce_segment(s) for s in segment_source.fetch_infrastructure(area_id)]

    if not all_infra:
        report("done", f"No infrastructure segments for {area_name}", 100)
        return SynthesisResult([], SynthesisStats(), status="no_infrastructure")

    compatible, data_source = filter_compatible_infrastructure(all_infra, activity)

    if not compatible:
        logger.warning(
            f"⚠️ Area {area_name!r} has {len(all_infra)} infra segments but none are compatible "
            f"with {activity}. Skipping route generation.", extra=ctx
        )
        report("done", f"No compatible infrastructure for {activity} in {area_name}", 100)
        return SynthesisResult(
            [],
            SynthesisStats(segments_processed=len(all_infra), data_source="none"),
            status="no_compatible_infrastructure",
        )

    report("filter", f"{len(compatible)}/{len(all_infra)} segments compatible with {activity}", 8)

    segments = [s for s in compatible if len(s.path) >= 2]
    total_infra_km = sum(s.length_km for s in segments)
    report("cluster", f"{len(segments)} segments ({total_infra_km:.1f} km)", 10)

    # ── 2. Clusters ──────────────────────────────────────────────
    target = target_cluster_count(len(segments), config.min_clusters, config.max_clusters, config.segments_per_cluster)
    clusters = identify_density_clusters(
        [s.midpoint for s in segments],
        target_clusters=target,
        min_clusters=config.min_clusters,
        max_clusters=config.max_clusters,
        max_iterations=config.kmeans_max_iterations,
        convergence_m=config.kmeans_convergence_m,
    )
    report("cluster", f"Found {len(clusters)} density clusters", 20)

    facility_tiers = FacilityTiers()
    if config.enable_hybrid and facility_source is not None:
        facility_tiers = categorise_facilities(
            facility_source.fetch_facilities(area_id),
            bench_park_radius_m=config.bench_park_radius_m,
        )

    # ── 3. Diamond loops ─────────────────────────────────────────
    curated_routes: List[CuratedRoute] = []
    hybrid_count = 0
    top_clusters = clusters[:config.max_clusters_used]
    total_steps = max(1, len(top_clusters) * len(tier_configs))
    steps_done = 0
    batch_stamp = int(time.time() * 1000)
    tolerance = config.smoothing_tolerance_for(activity)

    for ci, cluster in enumerate(top_clusters):
        if config.max_routes is not None and len(curated_routes) >= config.max_routes:
            break

        for ti, tier in enumerate(tier_configs):
            if config.max_routes is not None and len(curated_routes) >= config.max_routes:
                logger.info(f"🌟 Reached {config.max_routes} routes, stopping early", extra=ctx)
                break

            steps_done += 1
            pct = 20 + round(steps_done / total_steps * 60)
            report("stitch", f"Cluster {ci + 1}/{len(top_clusters)}: building {tier.label!r}...", pct)
            candidate_ctx = {**ctx, "cluster_index": ci, "tier": tier.tier}

            rotation = rotation_offset_for(ci, ti, config.cluster_rotation_deg, config.tier_rotation_deg)
            waypoints = generate_diamond_waypoints(cluster.center, tier.radius_km, rotation)

            facility_stops: List[FacilityStop] = []
            hybrid_type = None
            if config.enable_hybrid and len(facility_tiers):
                snap = snap_waypoints_to_facilities(
                    waypoints, facility_tiers, tier.max_km, profile, config.facility_snap_radius_m
                )
                waypoints, facility_stops, hybrid_type = snap.waypoints, snap.stops, snap.hybrid_type

            candidate = route_builder.build(waypoints, profile.directions_profile, profile.continue_straight)

            accepted, reason = validate_candidate(candidate, tier, config)
            if not accepted:
                detail = f" ({candidate.distance_km:.1f} km, {len(candidate.path)} pts)" if candidate else ""
                log_error(logger, reason,
                          f"Skipping cluster {ci + 1}, tier {tier.tier}: {reason}{detail}", **candidate_ctx)
                continue

            smoothed = douglas_peucker(candidate.path, tolerance)
            smoothed = close_loop(smoothed, config.loop_closure_m)

            is_hybrid = bool(facility_stops)
            if is_hybrid:
                hybrid_count += 1
            route_km = candidate.distance_km

            curated_routes.append(CuratedRoute(
                id=f"hero_{area_id}_{activity}_{tier.tier}_c{ci}_{batch_stamp}",
                name=generate_route_name(hybrid_type if is_hybrid else None, activity, area_name, tier.tier),
                description=f"Hero Loop – {tier.label} generated from cluster {ci + 1}",
                distance_km=round(route_km, 2),
                duration_min=estimate_duration_minutes(route_km, candidate.duration_seconds, profile.minutes_per_km),
                activity_type=activity,
                difficulty=TIER_DIFFICULTY.get(tier.tier, "medium"),
                curated_tier=tier.tier,
                path=[list(p) for p in smoothed],
                calories=round(route_km * profile.calories_per_km),
                is_hybrid=is_hybrid,
                hybrid_type=hybrid_type if is_hybrid else None,
                facility_stops=facility_stops,
                infrastructure_mode=_provenance_mode(data_source),
                cluster_index=ci,
                cluster_density=cluster.density,
                area_id=area_id,
                area_name=area_name,
            ))
            logger.info(f"📏 Accepted {tier.tier} loop: {route_km:.2f} km, {len(smoothed)} pts", extra=candidate_ctx)

    # ── 4. Save ──────────────────────────────────────────────────
    if curated_routes and store is not None:
        report("save", "Saving curated routes...", 90)
        store.replace_routes(area_id, curated_routes)

    report("done", f"{len(curated_routes)} Hero Loop routes created ({hybrid_count} hybrid)", 100)

    return SynthesisResult(
        curated_routes,
        SynthesisStats(
            total_infrastructure_km=round(total_infra_km, 1),
            segments_processed=len(all_infra),
            compatible_segments=len(compatible),
            clusters_found=len(clusters),
            tiers_generated=len(curated_routes),
            hybrid_routes=hybrid_count,
            data_source=data_source,
        ),
    )


# 🖥️ Command line
def parse_bbox(text):
    """``"south,west,north,east"`` → a float 4-tuple."""
    try:
        s, w, n, e = (float(part) for part in text.split(","))
    except ValueError as exc:
        raise ConfigurationError(f"Invalid bounding box {text!r}, expected S,W,N,E") from exc
    if not (s < n and w < e):
        raise ConfigurationError(f"Invalid bounding box {text!r}: south/west must be below north/east")
    return s, w, n, e


def build_source(area_id, activity, data_dir, overpass_bbox=None):
    if overpass_bbox:
        return OverpassDataSource({area_id: parse_bbox(overpass_bbox)})
    return GeoJSONDataSource(data_dir, fallback_activity=activity)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Generate Hero Loop routes for an area.")
    parser.add_argument("area_id")
    parser.add_argument("--area-name", default=None)
    parser.add_argument("--activity", choices=["running", "walking", "cycling"], default="running")
    parser.add_argument("--data-dir", default=None, help="Directory with <area>.geojson exports")
    parser.add_argument("--no-hybrid", action="store_true", help="Skip facility snapping")
    parser.add_argument("--max-routes", type=int, default=None)
    parser.add_argument("--db-url", default=None, help="SQLAlchemy URL to store routes in")
    parser.add_argument("--gpx-dir", default=None, help="Write one GPX file per route here")
    parser.add_argument("--overpass-bbox", default=None, metavar="S,W,N,E",
                        help="Pull segments and facilities from OpenStreetMap for this bounding box")
    args = parser.parse_args(argv)

    settings = load_settings()
    setup_logging(settings.log_level)

    if not settings.ors_api_key:
        raise ConfigurationError("ORS_API_KEY is not set")

    config = SynthesisConfig(enable_hybrid=not args.no_hybrid, max_routes=args.max_routes)
    source = build_source(args.area_id, args.activity, args.data_dir or settings.data_dir, args.overpass_bbox)
    builder = CircularRouteBuilder(
        OpenRouteServiceProvider(api_key=settings.ors_api_key),
        IntervalGate(config.request_interval_s),
    )
    db_url = args.db_url or settings.db_url
    store = SqlRouteStore(db_url) if db_url else None

    result = generate_curated_routes(
        args.area_id,
        args.area_name or args.area_id,
        args.activity,
        segment_source=source,
        route_builder=builder,
        facility_source=source,
        store=store,
        config=config,
    )

    if args.gpx_dir and result.curated_routes:
        export_routes_as_gpx(result.curated_routes, args.gpx_dir)

    print(json.dumps({"status": result.status, "stats": result.stats.to_dict(),
                      "routes": [{"id": r.id, "name": r.name, "distance": r.distance_km}
                                 for r in result.curated_routes]}, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
