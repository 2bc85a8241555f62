"""Routing request/response schemas."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models.domain import BuyerRequest, Coordinate, HawkerLocation, Route


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CoordinateModel(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    def to_domain(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


class HawkerModel(CoordinateModel):
    hawker_id: str = Field(..., min_length=1)
    commodities: List[str] = Field(default_factory=list)
    updated_at: Optional[datetime] = None

    def to_domain(self) -> HawkerLocation:
        return HawkerLocation(
            hawker_id=self.hawker_id,
            location=Coordinate(self.latitude, self.longitude),
            commodities=frozenset(self.commodities),
            updated_at=_as_utc(self.updated_at) if self.updated_at else None,
        )


class BuyerRequestModel(CoordinateModel):
    request_id: str = Field(..., min_length=1)
    commodities: List[str] = Field(..., min_length=1, description="Commodities the buyer is asking for.")
    window_start: datetime
    window_end: datetime

    @field_validator("commodities")
    @classmethod
    def _strip_commodities(cls, value: List[str]) -> List[str]:
        cleaned = [item.strip() for item in value if item and item.strip()]
        if not cleaned:
            raise ValueError("At least one non-blank commodity is required")
        return cleaned

    @model_validator(mode="after")
    def _check_window(self) -> "BuyerRequestModel":
        if _as_utc(self.window_start) > _as_utc(self.window_end):
            raise ValueError("window_start must not be after window_end")
        return self

    def to_domain(self) -> BuyerRequest:
        return BuyerRequest(
            request_id=self.request_id,
            location=Coordinate(self.latitude, self.longitude),
            commodities=frozenset(self.commodities),
            window_start=_as_utc(self.window_start),
            window_end=_as_utc(self.window_end),
        )


class RoutingRequest(BaseModel):
    hawker: HawkerModel
    requests: List[BuyerRequestModel] = Field(default_factory=list)
    current_time: Optional[datetime] = Field(
        default=None,
        description="Reference time for expiry and arrival estimates. Defaults to now (UTC).",
    )
    radius_m: Optional[float] = Field(default=None, ge=0, description="Overrides the visibility radius.")
    match_commodities: bool = True
    include_geojson: bool = False

    def reference_time(self) -> datetime:
        return _as_utc(self.current_time) if self.current_time else datetime.now(timezone.utc)


class RouteSegmentModel(BaseModel):
    sequence: int
    request_id: str
    origin: CoordinateModel
    destination: CoordinateModel
    distance_m: float
    duration_s: float
    arrival_time: datetime


class RoutingResponse(BaseModel):
    hawker_id: str
    computed_at: datetime
    total_distance_m: float
    total_duration_s: float
    converged: bool
    excluded_request_ids: List[str]
    segments: List[RouteSegmentModel]
    geojson: Optional[dict] = None

    @classmethod
    def from_route(
        cls,
        hawker_id: str,
        route: Route,
        computed_at: datetime,
        geojson: Optional[dict] = None,
    ) -> "RoutingResponse":
        return cls(
            hawker_id=hawker_id,
            computed_at=computed_at,
            total_distance_m=route.total_distance_m,
            total_duration_s=route.total_duration_s,
            converged=route.converged,
            excluded_request_ids=list(route.excluded_request_ids),
            segments=[
                RouteSegmentModel(
                    sequence=index,
                    request_id=segment.request_id,
                    origin=CoordinateModel(latitude=segment.origin.latitude, longitude=segment.origin.longitude),
                    destination=CoordinateModel(
                        latitude=segment.destination.latitude,
                        longitude=segment.destination.longitude,
                    ),
                    distance_m=segment.distance_m,
                    duration_s=segment.duration_s,
                    arrival_time=segment.arrival_time,
                )
                for index, segment in enumerate(route.segments, start=1)
            ],
            geojson=geojson,
        )


class SnapshotRequest(BaseModel):
    """Live snapshot pushed by the location feed for one hawker."""

    hawker: HawkerModel
    requests: List[BuyerRequestModel] = Field(default_factory=list)
    taken_at: Optional[datetime] = None
    wait: bool = Field(default=False, description="Block until the triggered computation has finished.")

    def reference_time(self) -> datetime:
        return _as_utc(self.taken_at) if self.taken_at else datetime.now(timezone.utc)


class SnapshotResponse(BaseModel):
    hawker_id: str
    triggered: bool
    sequence: int
    route: Optional[RoutingResponse] = None
