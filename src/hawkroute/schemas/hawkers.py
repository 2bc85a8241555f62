"""Hawker lookup schemas."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from .routing import CoordinateModel, HawkerModel


class NearbyHawkersRequest(BaseModel):
    center: CoordinateModel
    radius_m: float = Field(..., ge=0)
    hawkers: List[HawkerModel] = Field(default_factory=list)
    commodity: Optional[str] = Field(default=None, description="Only hawkers selling this commodity.")
    limit: Optional[int] = Field(default=None, ge=1)


class NearbyHawkerModel(BaseModel):
    hawker_id: str
    latitude: float
    longitude: float
    distance_m: float
    commodities: List[str]


class NearbyHawkersResponse(BaseModel):
    items: List[NearbyHawkerModel]
    total: int
