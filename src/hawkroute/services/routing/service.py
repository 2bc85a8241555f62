"""Routing orchestration service."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence

from ...config import Settings, settings
from ...models.domain import BuyerRequest, HawkerLocation, Route
from ..filtering import matching_requests
from ..geospatial import DistanceModel, entities_within_radius
from ..scheduling.scheduler import RouteSnapshot, SchedulerRegistry
from .optimizer import RouteOptimizer


def _visible_requests(
    hawker: HawkerLocation,
    requests: Sequence[BuyerRequest],
    *,
    radius_m: float,
    match_commodities: bool,
    distance_model: DistanceModel,
) -> list[BuyerRequest]:
    nearby = entities_within_radius(hawker.location, requests, radius_m, distance_model=distance_model)
    if match_commodities:
        nearby = matching_requests(nearby, hawker.commodities)
    return nearby


def plan_route(
    hawker: HawkerLocation,
    requests: Sequence[BuyerRequest],
    current_time: datetime | None = None,
    *,
    radius_m: float | None = None,
    match_commodities: bool = True,
    config: Settings | None = None,
    optimizer: RouteOptimizer | None = None,
) -> Route:
    """Run the full pipeline for one hawker.

    Requests are narrowed to the hawker's visibility radius, then to those
    asking for something the hawker sells, before being sequenced. Expired
    requests are dropped by the optimizer itself.
    """
    config = config or settings
    optimizer = optimizer or RouteOptimizer.from_settings(config)
    current_time = current_time or datetime.now(timezone.utc)
    radius = config.visibility_radius_m if radius_m is None else radius_m

    visible = _visible_requests(
        hawker,
        requests,
        radius_m=radius,
        match_commodities=match_commodities,
        distance_model=optimizer.distance_model,
    )
    logging.info(
        f"Hawker {hawker.hawker_id}: {len(visible)} of {len(requests)} requests visible "
        f"within {radius:.0f} m"
    )

    route = optimizer.optimize(hawker.location, visible, current_time)
    logging.info(
        f"Hawker {hawker.hawker_id}: routed {len(route.segments)} requests, "
        f"excluded {len(route.excluded_request_ids)}, "
        f"distance={route.total_distance_m:.1f} m, converged={route.converged}"
    )
    return route


def build_scheduler_registry(config: Settings | None = None, **scheduler_kwargs) -> SchedulerRegistry:
    """Registry whose schedulers run the full pipeline on each snapshot."""
    config = config or settings
    optimizer = RouteOptimizer.from_settings(config)

    def planner(snapshot: RouteSnapshot) -> Route:
        return plan_route(
            snapshot.hawker,
            snapshot.requests,
            snapshot.taken_at,
            config=config,
            optimizer=optimizer,
        )

    return SchedulerRegistry(optimizer=optimizer, planner=planner, config=config, **scheduler_kwargs)
