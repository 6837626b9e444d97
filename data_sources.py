"""
Segment and facility sources.

GeoJSONDataSource reads municipal GIS exports from a directory; the
OverpassDataSource pulls the same shapes straight from OpenStreetMap.
"""

import hashlib
import json
import os
import time
from pathlib import Path
from typing import Any, Dict, List, Tuple

import pandas as pd
import requests

from infra_filter import InfrastructureSegment, detect_infrastructure_mode, parse_geojson_segments
from logging_config import get_logger
from loop_config import SourceUnavailableError

logger = get_logger(__name__)


# ── Local GIS exports ────────────────────────────────────────────────

class GeoJSONDataSource:
    """
    ``<dir>/<area>.geojson`` holds the area's path segments;
    ``<dir>/<area>_facilities.csv`` (or ``.geojson``) its facilities.
    """

    def __init__(self, directory, fallback_activity=None):
        self.directory = Path(directory)
        self.fallback_activity = fallback_activity

    def fetch_infrastructure(self, area_id: str) -> List[InfrastructureSegment]:
        path = self.directory / f"{area_id}.geojson"
        try:
            with open(path, "r", encoding="utf-8") as f:
                geojson = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SourceUnavailableError(f"Cannot read infrastructure for {area_id}: {e}", "geojson") from e

        segments = parse_geojson_segments(geojson, self.fallback_activity)
        logger.info(f"📂 Loaded {len(segments)} segments for {area_id} from {path}", extra={"area_id": area_id})
        return segments

    def fetch_facilities(self, area_id: str) -> List[Dict[str, Any]]:
        csv_path = self.directory / f"{area_id}_facilities.csv"
        geojson_path = self.directory / f"{area_id}_facilities.geojson"

        try:
            if csv_path.exists():
                df = pd.read_csv(csv_path)
                records = df.to_dict("records")
            elif geojson_path.exists():
                with open(geojson_path, "r", encoding="utf-8") as f:
                    records = facility_records_from_geojson(json.load(f))
            else:
                logger.info(f"No facility file for {area_id}", extra={"area_id": area_id})
                return []
        except (OSError, ValueError) as e:
            raise SourceUnavailableError(f"Cannot read facilities for {area_id}: {e}", "geojson") from e

        return records


def facility_records_from_geojson(geojson: Dict[str, Any]) -> List[Dict[str, Any]]:
    records = []
    for index, feature in enumerate(geojson.get("features", [])):
        geometry = feature.get("geometry") or {}
        if geometry.get("type") != "Point":
            continue
        lng, lat = geometry["coordinates"][:2]
        props = dict(feature.get("properties") or {})
        props.setdefault("id", f"facility-{index}")
        props["lat"], props["lng"] = lat, lng
        records.append(props)
    return records


# ── Overpass ─────────────────────────────────────────────────────────

OVERPASS_ENDPOINTS = [
    "https://overpass-api.de/api/interpreter",
    "https://lz4.overpass-api.de/api/interpreter",
    "https://z.overpass-api.de/api/interpreter",
]


def _hash_query(query: str) -> str:
    return hashlib.md5(query.encode('utf-8')).hexdigest()


def run_overpass_query(query: str, cache_dir="cache/overpass", cache_minutes=60, endpoints=None, timeout=60):
    """Run an Overpass query against each mirror in turn, caching the JSON on disk."""
    os.makedirs(cache_dir, exist_ok=True)
    cache_path = os.path.join(cache_dir, f"{_hash_query(query)}.json")

    if os.path.exists(cache_path):
        if time.time() - os.path.getmtime(cache_path) < cache_minutes * 60:
            with open(cache_path, "r") as f:
                return json.load(f)

    logger.info("📡 Querying Overpass API...")
    for endpoint in endpoints or OVERPASS_ENDPOINTS:
        try:
            response = requests.get(endpoint, params={"data": query}, timeout=timeout)
            response.raise_for_status()
            result = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"❌ Failed with endpoint {endpoint}: {e}", extra={"api_name": "overpass"})
            continue

        with open(cache_path, "w") as f:
            json.dump(result, f)

        logger.info(f"✅ Overpass response from: {endpoint}")
        return result

    logger.error("❌ All Overpass endpoints failed.")
    return None


def osm_infrastructure_mode(tags: Dict[str, Any]) -> str:
    bike = tags.get("bicycle") in ("designated", "yes")
    foot = tags.get("foot") in ("designated", "yes")
    if tags.get("highway") in ("cycleway", "footway") and bike and foot:
        return "shared"
    return detect_infrastructure_mode(tags, fallback_activity=None)


def osm_facility_category(tags: Dict[str, Any]):
    if tags.get("leisure") == "fitness_station" or tags.get("sport") in ("calisthenics", "crossfit"):
        return "fitness_station"
    if tags.get("highway") == "steps":
        return "stairs"
    if tags.get("amenity") == "bench":
        return "bench"
    if tags.get("leisure") in ("park", "garden"):
        return "nature_community"
    if tags.get("place") == "square" or tags.get("highway") == "pedestrian":
        return "plaza"
    return None


class OverpassDataSource:
    """Segments and facilities for bounding-box areas, straight from OSM."""

    def __init__(self, areas: Dict[str, Tuple[float, float, float, float]], cache_dir="cache/overpass",
                 cache_minutes=60, endpoints=None):
        # area id -> (south, west, north, east)
        self.areas = areas
        self.cache_dir = cache_dir
        self.cache_minutes = cache_minutes
        self.endpoints = endpoints

    def _bbox(self, area_id):
        if area_id not in self.areas:
            raise SourceUnavailableError(f"Unknown area {area_id}", "overpass")
        s, w, n, e = self.areas[area_id]
        return f"{s},{w},{n},{e}"

    def _query(self, area_id, query):
        data = run_overpass_query(query, self.cache_dir, self.cache_minutes, self.endpoints)
        if data is None:
            raise SourceUnavailableError(f"Overpass unreachable for {area_id}", "overpass")
        return data.get("elements", [])

    def build_infrastructure_query(self, bbox: str) -> str:
        return f"""
        [out:json][timeout:60];
        (
          way["highway"~"cycleway|footway|path|pedestrian|track|living_street"]({bbox});
          way["bicycle"="designated"]({bbox});
        );
        out geom;
        """

    def build_facility_query(self, bbox: str) -> str:
        return f"""
        [out:json][timeout:60];
        (
          node["leisure"="fitness_station"]({bbox});
          way["leisure"="fitness_station"]({bbox});
          way["highway"="steps"]({bbox});
          node["amenity"="bench"]({bbox});
          way["leisure"~"park|garden"]({bbox});
          way["place"="square"]({bbox});
        );
        out center tags;
        """

    def fetch_infrastructure(self, area_id: str) -> List[InfrastructureSegment]:
        elements = self._query(area_id, self.build_infrastructure_query(self._bbox(area_id)))
        segments = []
        for el in elements:
            if el.get("type") != "way" or len(el.get("geometry", [])) < 2:
                continue
            tags = el.get("tags", {})
            segments.append(InfrastructureSegment(
                path=tuple((pt["lon"], pt["lat"]) for pt in el["geometry"]),
                mode=osm_infrastructure_mode(tags),
                segment_id=f"way/{el['id']}",
                name=tags.get("name"),
            ))
        logger.info(f"🗺️ {len(segments)} OSM segments for {area_id}", extra={"area_id": area_id})
        return segments

    def fetch_facilities(self, area_id: str) -> List[Dict[str, Any]]:
        elements = self._query(area_id, self.build_facility_query(self._bbox(area_id)))
        records = []
        for el in elements:
            tags = el.get("tags", {})
            category = osm_facility_category(tags)
            if category is None:
                continue
            lat = el.get("lat", el.get("center", {}).get("lat"))
            lng = el.get("lon", el.get("center", {}).get("lon"))
            if lat is None or lng is None:
                continue
            records.append({
                "id": f"{el['type']}/{el['id']}",
                "name": tags.get("name", category),
                "lat": lat,
                "lng": lng,
                "category": category,
                "stepCount": tags.get("step_count"),
                "environment": "plaza" if category == "plaza" else None,
            })
        return records
