"""Domain models for hawkers, buyer requests and computed routes."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from ..errors import InvalidInputError


def _normalize_commodities(commodities: Iterable[str]) -> frozenset[str]:
    if isinstance(commodities, str):
        commodities = (commodities,)
    return frozenset(str(item) for item in commodities)


@dataclass(frozen=True, slots=True)
class Coordinate:
    """A WGS84 point in decimal degrees."""

    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        lat, lon = self.latitude, self.longitude
        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise InvalidInputError(f"Coordinate must be finite, got ({lat}, {lon})")
        if not -90.0 <= lat <= 90.0:
            raise InvalidInputError(f"Latitude {lat} outside [-90, 90]")
        if not -180.0 <= lon <= 180.0:
            raise InvalidInputError(f"Longitude {lon} outside [-180, 180]")


@dataclass(frozen=True, slots=True)
class BuyerRequest:
    """A buyer asking for commodities at a location during a time window.

    The window end doubles as the request's expiration. Instances are
    snapshots: an update replaces the request rather than mutating it.
    """

    request_id: str
    location: Coordinate
    commodities: frozenset[str]
    window_start: datetime
    window_end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "commodities", _normalize_commodities(self.commodities))
        if self.window_start > self.window_end:
            raise InvalidInputError(
                f"Request {self.request_id} has window start {self.window_start.isoformat()} "
                f"after window end {self.window_end.isoformat()}"
            )

    @property
    def expiration(self) -> datetime:
        return self.window_end


@dataclass(frozen=True, slots=True)
class HawkerLocation:
    """Latest known position of a hawker."""

    hawker_id: str
    location: Coordinate
    commodities: frozenset[str] = frozenset()
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "commodities", _normalize_commodities(self.commodities))


@dataclass(frozen=True, slots=True)
class RouteSegment:
    origin: Coordinate
    destination: Coordinate
    request_id: str
    distance_m: float
    duration_s: float
    arrival_time: datetime


@dataclass(frozen=True, slots=True)
class Route:
    """Ordered visits for a hawker with cumulative travel totals."""

    segments: tuple[RouteSegment, ...] = ()
    total_distance_m: float = 0.0
    total_duration_s: float = 0.0
    excluded_request_ids: tuple[str, ...] = ()
    converged: bool = True
    request_ids: tuple[str, ...] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "segments", tuple(self.segments))
        object.__setattr__(self, "excluded_request_ids", tuple(self.excluded_request_ids))
        object.__setattr__(self, "request_ids", tuple(segment.request_id for segment in self.segments))

    @classmethod
    def empty(cls) -> "Route":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.segments
