"""Routing endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, status

from ...schemas.routing import RoutingRequest, RoutingResponse, SnapshotRequest, SnapshotResponse
from ...services.outputs.geojson import route_to_geojson
from ...services.routing.service import plan_route
from ...services.scheduling.scheduler import RouteSnapshot, SchedulerRegistry

router = APIRouter(prefix="/routes", tags=["routes"])


def _registry(request: Request) -> SchedulerRegistry:
    registry = getattr(request.app.state, "schedulers", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Route scheduler is not running",
        )
    return registry


@router.post("/optimize", response_model=RoutingResponse, status_code=status.HTTP_200_OK)
def optimize(payload: RoutingRequest) -> RoutingResponse:
    try:
        hawker = payload.hawker.to_domain()
        requests = [item.to_domain() for item in payload.requests]
        current_time = payload.reference_time()
        route = plan_route(
            hawker,
            requests,
            current_time,
            radius_m=payload.radius_m,
            match_commodities=payload.match_commodities,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception(f"Error optimizing route: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to optimize route: {str(exc)}"
        ) from exc

    geojson = route_to_geojson(route, hawker.location) if payload.include_geojson else None
    return RoutingResponse.from_route(hawker.hawker_id, route, current_time, geojson)


@router.post("/snapshots", response_model=SnapshotResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_snapshot(payload: SnapshotRequest, request: Request) -> SnapshotResponse:
    """Feed a live snapshot to the hawker's scheduler."""
    registry = _registry(request)
    try:
        snapshot = RouteSnapshot(
            hawker=payload.hawker.to_domain(),
            requests=tuple(item.to_domain() for item in payload.requests),
            taken_at=payload.reference_time(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    scheduler = registry.get(snapshot.hawker.hawker_id)
    triggered = await scheduler.submit(snapshot)
    route_payload = None
    if payload.wait:
        try:
            route = await scheduler.drain()
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        except Exception as exc:
            logging.exception(f"Error computing route for hawker {snapshot.hawker.hawker_id}: {exc}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to compute route: {str(exc)}"
            ) from exc
        if route is not None and scheduler.last_route_snapshot is not None:
            route_payload = RoutingResponse.from_route(
                snapshot.hawker.hawker_id, route, scheduler.last_route_snapshot.taken_at
            )
    return SnapshotResponse(
        hawker_id=snapshot.hawker.hawker_id,
        triggered=triggered,
        sequence=scheduler.sequence,
        route=route_payload,
    )


@router.get("/{hawker_id}", response_model=RoutingResponse, status_code=status.HTTP_200_OK)
def latest_route(hawker_id: str, request: Request, include_geojson: bool = False) -> RoutingResponse:
    """Return the last good route computed for a hawker."""
    scheduler = _registry(request).peek(hawker_id)
    if scheduler is None or scheduler.last_route is None or scheduler.last_route_snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No route computed yet for hawker '{hawker_id}'",
        )
    snapshot = scheduler.last_route_snapshot
    geojson = route_to_geojson(scheduler.last_route, snapshot.start) if include_geojson else None
    return RoutingResponse.from_route(hawker_id, scheduler.last_route, snapshot.taken_at, geojson)
