"""
Persistence for curated routes.

SqlRouteStore keeps one batch per area: every synthesis run deletes the
area's previous routes and inserts the new ones in a single transaction.
GPX export is a side channel for handing routes to GPS devices.
"""

import json
import os
import socket
from datetime import datetime, timezone
from typing import Any, Dict, List

import gpxpy
import gpxpy.gpx
from sqlalchemy import (
    Boolean, Column, DateTime, Float, Integer, MetaData, String, Table, Text,
    create_engine, delete, insert, select,
)
from sqlalchemy.engine import Engine

from logging_config import get_logger

logger = get_logger(__name__)

metadata = MetaData()

curated_routes_table = Table(
    "curated_routes",
    metadata,
    Column("id", String(200), primary_key=True),
    Column("area_id", String(100), nullable=False, index=True),
    Column("position", Integer, nullable=False),
    Column("activity_type", String(20), nullable=False),
    Column("curated_tier", String(20), nullable=False),
    Column("name", String(300), nullable=False),
    Column("distance_km", Float, nullable=False),
    Column("is_hybrid", Boolean, nullable=False, default=False),
    Column("payload", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


def build_postgres_url(secrets) -> str:
    """PostgreSQL URL from DB_* secrets, resolving the host to IPv4 first."""
    ipv4_host = socket.gethostbyname(secrets["DB_HOST"])
    return (
        f"postgresql+psycopg2://{secrets['DB_USER']}:{secrets['DB_PASSWORD']}@"
        f"{ipv4_host}:{secrets['DB_PORT']}/{secrets['DB_NAME']}"
    )


class SqlRouteStore:
    def __init__(self, engine, **engine_kwargs):
        if isinstance(engine, str):
            if engine.startswith("postgresql"):
                engine_kwargs.setdefault("connect_args", {"sslmode": "require"})
            engine = create_engine(engine, **engine_kwargs)
        self.engine: Engine = engine
        metadata.create_all(self.engine)

    def replace_routes(self, area_id: str, routes: List[Any]) -> bool:
        """Delete the area's stored routes and insert ``routes`` (all or nothing)."""
        now = datetime.now(timezone.utc)
        rows = []
        for position, route in enumerate(routes):
            rows.append({
                "id": route.id,
                "area_id": area_id,
                "position": position,
                "activity_type": route.activity_type,
                "curated_tier": route.curated_tier,
                "name": route.name,
                "distance_km": route.distance_km,
                "is_hybrid": route.is_hybrid,
                "payload": json.dumps(route.to_dict(), ensure_ascii=False),
                "created_at": now,
            })

        with self.engine.begin() as conn:
            deleted = conn.execute(
                delete(curated_routes_table).where(curated_routes_table.c.area_id == area_id)
            ).rowcount
            if rows:
                conn.execute(insert(curated_routes_table), rows)

        logger.info(f"💾 Replaced {deleted} stored routes with {len(rows)} for {area_id}", extra={"area_id": area_id})
        return True

    def fetch_routes(self, area_id: str) -> List[Dict[str, Any]]:
        query = (
            select(curated_routes_table.c.payload)
            .where(curated_routes_table.c.area_id == area_id)
            .order_by(curated_routes_table.c.position)
        )
        with self.engine.connect() as conn:
            return [json.loads(row.payload) for row in conn.execute(query)]


# 📁 GPX Export
def route_to_gpx(route) -> str:
    gpx = gpxpy.gpx.GPX()
    gpx_track = gpxpy.gpx.GPXTrack(name=route.name)
    gpx.tracks.append(gpx_track)
    gpx_segment = gpxpy.gpx.GPXTrackSegment()
    gpx_track.segments.append(gpx_segment)

    for lng, lat in route.path:
        gpx_segment.points.append(gpxpy.gpx.GPXTrackPoint(lat, lng))

    for stop in route.facility_stops:
        gpx.waypoints.append(gpxpy.gpx.GPXWaypoint(stop.lat, stop.lng, name=stop.name, type=stop.stop_type))

    return gpx.to_xml()


def export_routes_as_gpx(routes, directory) -> List[str]:
    os.makedirs(directory, exist_ok=True)
    written = []
    for route in routes:
        filename = os.path.join(directory, f"{route.id}.gpx")
        with open(filename, "w") as f:
            f.write(route_to_gpx(route))
        written.append(filename)
    logger.info(f"✅ {len(written)} GPX routes saved to: {directory}")
    return written
