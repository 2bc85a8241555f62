"""Geospatial helper functions: great-circle distance, travel estimates and radius lookups."""

from __future__ import annotations

import math
from typing import Iterable, Protocol, Sequence, TypeVar

from shapely.geometry import Point, Polygon

from ..config import settings
from ..errors import InvalidInputError
from ..models.domain import Coordinate

EARTH_RADIUS_M = 6_371_008.8


class Located(Protocol):
    location: Coordinate


EntityT = TypeVar("EntityT", bound=Located)


def haversine_m(a: Coordinate, b: Coordinate) -> float:
    """Compute distance between two coordinates using the Haversine formula.

    The pair is put in a canonical order first so the result is bit-for-bit
    symmetric.
    """

    if (b.latitude, b.longitude) < (a.latitude, a.longitude):
        a, b = b, a
    phi1, phi2 = math.radians(a.latitude), math.radians(b.latitude)
    d_phi = math.radians(b.latitude - a.latitude)
    d_lambda = math.radians(b.longitude - a.longitude)

    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(max(0.0, 1 - h)))
    return EARTH_RADIUS_M * c


def bearing_degrees(a: Coordinate, b: Coordinate) -> float:
    """Calculate the initial bearing from a to b."""

    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    delta_lambda = math.radians(b.longitude - a.longitude)
    y = math.sin(delta_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda)
    bearing = math.degrees(math.atan2(y, x))
    return (bearing + 360) % 360


class DistanceModel:
    """Straight-line distance and a speed-based travel time estimate.

    Durations are a heuristic (distance over an assumed average speed), not a
    road-network ETA.
    """

    def __init__(self, average_speed_kmh: float | None = None) -> None:
        speed = settings.average_speed_kmh if average_speed_kmh is None else average_speed_kmh
        if not speed > 0:
            raise InvalidInputError(f"Average speed must be positive, got {speed}")
        self.average_speed_kmh = float(speed)
        self._speed_mps = self.average_speed_kmh * 1000.0 / 3600.0

    def distance(self, a: Coordinate, b: Coordinate) -> float:
        return haversine_m(a, b)

    def travel_duration(self, a: Coordinate, b: Coordinate) -> float:
        return self.duration_for_distance(self.distance(a, b))

    def duration_for_distance(self, distance_m: float) -> float:
        return distance_m / self._speed_mps

    def __repr__(self) -> str:
        return f"DistanceModel(average_speed_kmh={self.average_speed_kmh})"


def entities_within_radius(
    center: Coordinate,
    entities: Iterable[EntityT],
    radius_m: float,
    *,
    distance_model: DistanceModel | None = None,
) -> list[EntityT]:
    """Return the entities whose location lies within ``radius_m`` of ``center``.

    The boundary is inclusive. A zero radius is treated as degenerate and
    yields nothing. Order of the result is not significant.
    """

    if radius_m < 0:
        raise InvalidInputError(f"Radius must be non-negative, got {radius_m}")
    if radius_m == 0:
        return []
    measure = distance_model.distance if distance_model is not None else haversine_m
    return [entity for entity in entities if measure(center, entity.location) <= radius_m]


def nearest_entities(
    center: Coordinate,
    entities: Iterable[EntityT],
    limit: int | None = None,
    *,
    radius_m: float | None = None,
) -> list[tuple[EntityT, float]]:
    """Return ``(entity, distance_m)`` pairs ordered by distance from ``center``."""

    candidates = list(entities)
    if radius_m is not None:
        candidates = entities_within_radius(center, candidates, radius_m)
    ranked = sorted(
        ((entity, haversine_m(center, entity.location)) for entity in candidates),
        key=lambda pair: (pair[1], _entity_key(pair[0])),
    )
    if limit is not None:
        ranked = ranked[: max(0, limit)]
    return ranked


def entities_within_polygon(
    polygon_coords: Sequence[tuple[float, float]],
    entities: Iterable[EntityT],
) -> list[EntityT]:
    """Return entities inside (or on the edge of) the polygon denoted by (lat, lon) pairs."""

    if len(polygon_coords) < 3:
        raise InvalidInputError("Polygon must have at least 3 coordinates")
    polygon = Polygon([(lng, lat) for lat, lng in polygon_coords])
    return [
        entity
        for entity in entities
        if polygon.covers(Point(entity.location.longitude, entity.location.latitude))
    ]


def _entity_key(entity: object) -> str:
    for attr in ("request_id", "hawker_id"):
        value = getattr(entity, attr, None)
        if value is not None:
            return str(value)
    return ""
