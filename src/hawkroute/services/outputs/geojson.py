"""GeoJSON serializer for computed routes."""

from __future__ import annotations

from typing import Any, Dict, List

from shapely.geometry import LineString, Point, mapping

from ...models.domain import Coordinate, Route
from ..geospatial import bearing_degrees


def route_to_geojson(route: Route, start: Coordinate) -> Dict[str, Any]:
    """Build a FeatureCollection with the route polyline and one point per stop.

    GeoJSON positions are (lon, lat). An empty route yields only the start point.
    """
    features: List[Dict[str, Any]] = [
        {
            "type": "Feature",
            "geometry": mapping(Point(start.longitude, start.latitude)),
            "properties": {"kind": "start", "sequence": 0},
        }
    ]
    if route.segments:
        path = [start] + [segment.destination for segment in route.segments]
        features.insert(
            0,
            {
                "type": "Feature",
                "geometry": mapping(LineString([(point.longitude, point.latitude) for point in path])),
                "properties": {
                    "kind": "route",
                    "total_distance_m": route.total_distance_m,
                    "total_duration_s": route.total_duration_s,
                    "stops": len(route.segments),
                },
            },
        )
    for index, segment in enumerate(route.segments, start=1):
        features.append(
            {
                "type": "Feature",
                "geometry": mapping(Point(segment.destination.longitude, segment.destination.latitude)),
                "properties": {
                    "kind": "stop",
                    "sequence": index,
                    "request_id": segment.request_id,
                    "arrival_time": segment.arrival_time.isoformat(),
                    "distance_m": round(segment.distance_m, 1),
                    "duration_s": round(segment.duration_s, 1),
                    "bearing_deg": round(bearing_degrees(segment.origin, segment.destination), 1),
                },
            }
        )
    return {"type": "FeatureCollection", "features": features}
