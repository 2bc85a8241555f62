"""Hawker lookup endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from ...schemas.hawkers import NearbyHawkerModel, NearbyHawkersRequest, NearbyHawkersResponse
from ...services.filtering import normalize_commodity
from ...services.geospatial import nearest_entities

router = APIRouter(prefix="/hawkers", tags=["hawkers"])


@router.post("/nearby", response_model=NearbyHawkersResponse, status_code=status.HTTP_200_OK)
def nearby_hawkers(payload: NearbyHawkersRequest) -> NearbyHawkersResponse:
    """Hawkers within a radius of a buyer, closest first."""
    try:
        center = payload.center.to_domain()
        hawkers = [item.to_domain() for item in payload.hawkers]
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    if payload.commodity:
        wanted = normalize_commodity(payload.commodity)
        hawkers = [h for h in hawkers if any(normalize_commodity(item) == wanted for item in h.commodities)]

    ranked = nearest_entities(center, hawkers, payload.limit, radius_m=payload.radius_m)
    items = [
        NearbyHawkerModel(
            hawker_id=hawker.hawker_id,
            latitude=hawker.location.latitude,
            longitude=hawker.location.longitude,
            distance_m=distance,
            commodities=sorted(hawker.commodities),
        )
        for hawker, distance in ranked
    ]
    return NearbyHawkersResponse(items=items, total=len(items))
