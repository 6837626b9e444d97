# loop_config.py: Hero Loop synthesis configuration
# Tier tables, activity profiles and the thresholds the engine validates with.
# Everything here is a plain value passed into the pipeline, so two runs with
# different configs never interfere.

import os
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv


# ── Errors ───────────────────────────────────────────────────────────

class HeroLoopError(Exception):
    """Base exception for HeroLoops errors."""
    pass


class SourceUnavailableError(HeroLoopError):
    """An upstream segment or facility source could not be reached at all."""
    def __init__(self, message: str, source_name: str):
        super().__init__(message)
        self.source_name = source_name


class ConfigurationError(HeroLoopError):
    """Invalid configuration value or missing credential."""
    pass


# ── Activities ───────────────────────────────────────────────────────

ACTIVITIES = ("running", "walking", "cycling")

TIER_NAMES = ("short", "medium", "long")


@dataclass(frozen=True)
class TierConfig:
    """A named distance band with its diamond radius."""
    tier: str
    label: str
    min_km: float
    max_km: float
    radius_km: float

    def __post_init__(self):
        if self.min_km <= 0 or self.max_km < self.min_km:
            raise ConfigurationError(f"Invalid km window for tier {self.tier}: {self.min_km}-{self.max_km}")
        if self.radius_km <= 0:
            raise ConfigurationError(f"radius_km must be > 0 for tier {self.tier}")


@dataclass(frozen=True)
class ActivityProfile:
    directions_profile: str          # walking | cycling
    turn_penalty: str                # very_high | high | low
    avoid_stairs: bool
    calories_per_km: float
    minutes_per_km: float
    stair_min_steps: int = 15        # SECONDARY pool threshold
    max_hybrid_stops: int = 2
    km_per_stop: float = 5            # one stop per this many km of tier max
    hybrid_mode: str = "performance"  # performance | exploration

    @property
    def continue_straight(self) -> bool:
        return self.turn_penalty == "very_high"


ACTIVITY_PROFILES: Dict[str, ActivityProfile] = {
    "running": ActivityProfile(
        directions_profile="walking",
        turn_penalty="very_high",
        avoid_stairs=True,
        calories_per_km=65,
        minutes_per_km=6,
        stair_min_steps=20,
        max_hybrid_stops=2,
    ),
    "walking": ActivityProfile(
        directions_profile="walking",
        turn_penalty="low",
        avoid_stairs=False,
        calories_per_km=45,
        minutes_per_km=12,
        stair_min_steps=15,
        max_hybrid_stops=4,
        km_per_stop=2,
        hybrid_mode="exploration",
    ),
    "cycling": ActivityProfile(
        directions_profile="cycling",
        turn_penalty="high",
        avoid_stairs=True,
        calories_per_km=30,
        minutes_per_km=3,
        stair_min_steps=20,
        max_hybrid_stops=2,
    ),
}


# ── Tier tables ──────────────────────────────────────────────────────

TIER_TABLES: Dict[str, Tuple[TierConfig, ...]] = {
    "running": (
        TierConfig("short", "Short Run", 4, 7, 1.0),
        TierConfig("medium", "Run Loop", 8, 12, 1.6),
        TierConfig("long", "Long Run", 12, 20, 2.5),
    ),
    "walking": (
        TierConfig("short", "Short Walk", 2, 4, 0.5),
        TierConfig("medium", "Medium Walk", 4, 6, 0.8),
        TierConfig("long", "Long Walk", 6, 10, 1.3),
    ),
    "cycling": (
        TierConfig("short", "Short Ride", 5, 10, 1.5),
        TierConfig("medium", "Ride Loop", 10, 20, 3.0),
        TierConfig("long", "Long Ride", 20, 50, 5.0),
    ),
}

DEFAULT_TIERS: Tuple[TierConfig, ...] = (
    TierConfig("short", "Short Loop", 2, 6, 0.8),
    TierConfig("medium", "Medium Loop", 6, 14, 1.8),
    TierConfig("long", "Long Loop", 14, 50, 4.0),
)


def get_tier_configs(activity: str) -> Tuple[TierConfig, ...]:
    return TIER_TABLES.get(activity, DEFAULT_TIERS)


def get_activity_profile(activity: str) -> ActivityProfile:
    # Unknown activities behave like running
    return ACTIVITY_PROFILES.get(activity, ACTIVITY_PROFILES["running"])


# ── Engine thresholds ────────────────────────────────────────────────

@dataclass(frozen=True)
class SynthesisConfig:
    """
    Everything one synthesis run needs to know besides its collaborators.

    The numeric defaults are empirical: keep them configurable rather than
    deriving them.
    """
    tiers: Dict[str, Tuple[TierConfig, ...]] = field(default_factory=lambda: dict(TIER_TABLES))
    profiles: Dict[str, ActivityProfile] = field(default_factory=lambda: dict(ACTIVITY_PROFILES))

    # Clustering
    min_clusters: int = 3
    max_clusters: int = 8
    segments_per_cluster: int = 10
    max_clusters_used: int = 6
    kmeans_max_iterations: int = 20
    kmeans_convergence_m: float = 50.0

    # Waypoints
    cluster_rotation_deg: float = 15.0
    tier_rotation_deg: float = 30.0

    # Hybrid snapping
    enable_hybrid: bool = True
    facility_snap_radius_m: float = 300.0
    bench_park_radius_m: float = 200.0

    # Simplification
    smoothing_tolerance_m: float = 8.0
    smoothing_tolerance_straight_m: float = 15.0

    # Validation
    min_path_points: int = 50
    min_distance_factor: float = 0.5
    max_distance_factor: float = 1.1
    loop_closure_m: float = 100.0

    # Rate limiting
    request_interval_s: float = 1.5

    # Stop once this many routes were accepted (None = every cluster x tier)
    max_routes: Optional[int] = None

    def __post_init__(self):
        if not 1 <= self.min_clusters <= self.max_clusters:
            raise ConfigurationError("min_clusters must be between 1 and max_clusters")
        if self.min_distance_factor <= 0 or self.max_distance_factor < 1:
            raise ConfigurationError("distance factors must satisfy 0 < min and max >= 1")
        if self.request_interval_s < 0:
            raise ConfigurationError("request_interval_s must be >= 0")
        if self.max_routes is not None and self.max_routes < 1:
            raise ConfigurationError("max_routes must be >= 1")

    def tiers_for(self, activity: str) -> Tuple[TierConfig, ...]:
        return self.tiers.get(activity, DEFAULT_TIERS)

    def profile_for(self, activity: str) -> ActivityProfile:
        return self.profiles.get(activity, self.profiles.get("running", ACTIVITY_PROFILES["running"]))

    def smoothing_tolerance_for(self, activity: str) -> float:
        if self.profile_for(activity).turn_penalty == "very_high":
            return self.smoothing_tolerance_straight_m
        return self.smoothing_tolerance_m

    def distance_window(self, tier: TierConfig) -> Tuple[float, float]:
        return tier.min_km * self.min_distance_factor, tier.max_km * self.max_distance_factor

    def with_tiers(self, activity: str, *tiers: TierConfig) -> "SynthesisConfig":
        """Copy of this config with the tier table of one activity replaced."""
        table = dict(self.tiers)
        table[activity] = tuple(tiers)
        return replace(self, tiers=table)


def default_config(**overrides) -> SynthesisConfig:
    return SynthesisConfig(**overrides)


# ── Settings ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Settings:
    ors_api_key: Optional[str]
    data_dir: str
    db_url: Optional[str]
    log_level: str


def load_settings() -> Settings:
    """Read deployment settings from the environment (and a local .env)."""
    load_dotenv()
    return Settings(
        ors_api_key=os.getenv("ORS_API_KEY"),
        data_dir=os.getenv("HEROLOOPS_DATA_DIR", "data"),
        db_url=os.getenv("HEROLOOPS_DB_URL"),
        log_level=os.getenv("HEROLOOPS_LOG_LEVEL", "INFO"),
    )
