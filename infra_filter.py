"""
Infrastructure segments and the activity compatibility filter.

Municipal GIS layers spell the same attribute a dozen ways, so property
lookup goes through explicit prioritized key lists instead of ad-hoc
``props.get(...) or props.get(...)`` chains.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from logging_config import get_logger
from loop_geometry import path_distance_km

logger = get_logger(__name__)


INFRA_MODES = ("cycling", "pedestrian", "shared")


@dataclass(frozen=True)
class InfrastructureSegment:
    path: Tuple[Tuple[float, float], ...]   # [lng, lat] points
    mode: Optional[str] = None
    legacy_activity_type: Optional[str] = None
    segment_id: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InfrastructureSegment":
        """Build from the segment-source wire shape (``path``, ``mode``, ``legacyActivityType``)."""
        path = tuple((float(p[0]), float(p[1])) for p in data.get("path") or [])
        mode = data.get("mode") or None
        if mode is not None and mode not in INFRA_MODES:
            logger.debug(f"Ignoring unknown infrastructure mode {mode!r}")
            mode = None
        return cls(
            path=path,
            mode=mode,
            legacy_activity_type=data.get("legacyActivityType") or data.get("legacy_activity_type"),
            segment_id=data.get("id"),
            name=data.get("name"),
        )

    @property
    def midpoint(self) -> Tuple[float, float]:
        return self.path[len(self.path) // 2]

    @property
    def length_km(self) -> float:
        return path_distance_km(self.path)


# ── Compatibility ────────────────────────────────────────────────────

INFRA_COMPATIBILITY: Dict[str, Set[str]] = {
    "cycling": {"cycling", "shared", "pedestrian"},
    "running": {"pedestrian", "shared"},
    "walking": {"pedestrian", "shared"},
}


def mode_from_activity(activity: Optional[str]) -> str:
    if activity == "cycling":
        return "cycling"
    if activity in ("running", "walking"):
        return "pedestrian"
    return "shared"


def effective_infra_mode(segment: InfrastructureSegment) -> str:
    """Explicit mode when the import set one, else inferred from the legacy activity tag."""
    if segment.mode:
        return segment.mode
    return mode_from_activity(segment.legacy_activity_type)


def filter_compatible_infrastructure(segments: Iterable[InfrastructureSegment], activity: str):
    """
    Keep the segments ``activity`` may use.

    Returns ``(compatible, data_source)`` where ``data_source`` is one of
    ``cycling``, ``pedestrian``, ``mixed`` or ``none``.
    """
    allowed = INFRA_COMPATIBILITY.get(activity, {"shared"})
    compatible = [s for s in segments if effective_infra_mode(s) in allowed]

    modes = {effective_infra_mode(s) for s in compatible}
    if not compatible:
        data_source = "none"
    elif modes == {"cycling"}:
        data_source = "cycling"
    elif modes == {"pedestrian"}:
        data_source = "pedestrian"
    else:
        data_source = "mixed"

    return compatible, data_source


# ── GIS property resolution ──────────────────────────────────────────

GIS_PROPERTY_KEYS: Dict[str, Tuple[str, ...]] = {
    "mode_hint": (
        "highway", "Highway", "HIGHWAY",
        "path_type", "PATH_TYPE",
        "route_type", "ROUTE_TYPE",
        "type", "Type", "TYPE",
        "road_type", "ROAD_TYPE",
        "sug_dereh", "SUG_DEREH",
    ),
    "name": ("name", "Name", "NAME", "label", "Label", "shem", "SHEM"),
    "id": ("id", "ID", "OBJECTID", "GlobalID", "fid", "osm_id"),
    "step_count": ("stepCount", "step_count", "numberOfSteps", "steps", "STEPS", "num_steps"),
    "category": ("category", "Category", "leisure", "amenity", "urbanType", "facility_type"),
}


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, float) and value != value:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def resolve_property(props: Dict[str, Any], keys: Sequence[str]) -> Any:
    """First present, non-empty value among ``keys`` (in order), else None."""
    for key in keys:
        value = props.get(key)
        if _is_present(value):
            return value
    return None


def resolve_all(props: Dict[str, Any], keys: Sequence[str]) -> List[str]:
    """Every present value among ``keys``, lower-cased strings."""
    return [str(props[k]).lower() for k in keys if _is_present(props.get(k))]


CYCLING_KEYWORDS = ("cycleway", "bicycle", "bike", "cycle", "ofanaim", "אופניים")
PEDESTRIAN_KEYWORDS = ("footway", "pedestrian", "sidewalk", "footpath", "holchei_regel", "הולכי רגל", "מדרכה")
SHARED_KEYWORDS = ("path", "shared", "track", "shared_use", "meshutaf", "משותף")


def detect_infrastructure_mode(props: Dict[str, Any], fallback_activity: Optional[str] = None) -> str:
    """Classify a GIS feature as cycling / pedestrian / shared from its properties."""
    values = resolve_all(props, GIS_PROPERTY_KEYS["mode_hint"])

    cyc = any(k in v for v in values for k in CYCLING_KEYWORDS)
    ped = any(k in v for v in values for k in PEDESTRIAN_KEYWORDS)
    shr = any(k in v for v in values for k in SHARED_KEYWORDS)

    if (cyc and ped) or shr:
        return "shared"
    if cyc:
        return "cycling"
    if ped:
        return "pedestrian"
    return mode_from_activity(fallback_activity)


def parse_geojson_segments(geojson: Dict[str, Any], fallback_activity: Optional[str] = None) -> List[InfrastructureSegment]:
    """LineString / MultiLineString features → segments. Everything else is skipped."""
    if not geojson or "features" not in geojson:
        logger.warning("Invalid GeoJSON structure: no features")
        return []

    segments = []
    for index, feature in enumerate(geojson["features"]):
        geometry = feature.get("geometry") or {}
        props = feature.get("properties") or {}

        if geometry.get("type") == "LineString":
            coords = geometry.get("coordinates") or []
        elif geometry.get("type") == "MultiLineString":
            parts = geometry.get("coordinates") or [[]]
            coords = parts[0] if parts else []
        else:
            continue

        if len(coords) < 2:
            continue

        explicit = props.get("infrastructureMode") or props.get("mode")
        mode = explicit if explicit in INFRA_MODES else detect_infrastructure_mode(props, fallback_activity)
        seg_id = resolve_property(props, GIS_PROPERTY_KEYS["id"])

        segments.append(InfrastructureSegment(
            path=tuple((float(c[0]), float(c[1])) for c in coords),
            mode=mode,
            legacy_activity_type=props.get("activityType"),
            segment_id=str(seg_id) if seg_id is not None else f"segment-{index}",
            name=resolve_property(props, GIS_PROPERTY_KEYS["name"]),
        ))

    return segments
