"""Time-window aware visit sequencing for a single hawker.

A tour is built greedily (nearest request first, earliest expiration on
near-ties) and then improved with 2-opt reversals. Every candidate order is
re-timed end to end: a request the hawker would reach after its window closes
is skipped at that position, and an early arrival waits for the window to
open.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Sequence

from ...config import Settings, settings
from ...models.domain import BuyerRequest, Coordinate, Route, RouteSegment
from ..filtering import eligible_requests
from ..geospatial import DistanceModel

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OptimizerConstraints:
    service_seconds: float = field(default_factory=lambda: settings.service_seconds)
    tie_epsilon_m: float = field(default_factory=lambda: settings.tie_epsilon_m)
    max_iterations: int = field(default_factory=lambda: settings.two_opt_max_iterations)
    time_budget_s: float = field(default_factory=lambda: settings.two_opt_time_budget_s)

    @classmethod
    def from_settings(cls, config: Settings) -> "OptimizerConstraints":
        return cls(
            service_seconds=config.service_seconds,
            tie_epsilon_m=config.tie_epsilon_m,
            max_iterations=config.two_opt_max_iterations,
            time_budget_s=config.two_opt_time_budget_s,
        )


@dataclass(slots=True)
class _Visit:
    request: BuyerRequest
    origin: Coordinate
    distance_m: float
    duration_s: float
    arrival: datetime


@dataclass(slots=True)
class _Timing:
    visits: list[_Visit]
    excluded: list[str]
    distance_m: float

    @property
    def served(self) -> frozenset[str]:
        return frozenset(visit.request.request_id for visit in self.visits)


class _LegTable:
    """Per-call memo of leg distances keyed by request id (``None`` is the start)."""

    def __init__(self, model: DistanceModel, start: Coordinate) -> None:
        self._model = model
        self._start = start
        self._cache: dict[tuple[Optional[str], str], float] = {}

    def distance(self, origin: Optional[BuyerRequest], target: BuyerRequest) -> float:
        key = (origin.request_id if origin is not None else None, target.request_id)
        value = self._cache.get(key)
        if value is None:
            source = origin.location if origin is not None else self._start
            value = self._model.distance(source, target.location)
            self._cache[key] = value
        return value


class RouteOptimizer:
    """Orders buyer requests into a feasible, short route.

    The optimizer holds no state between calls, so one instance can serve
    many hawkers concurrently.
    """

    def __init__(
        self,
        distance_model: DistanceModel | None = None,
        constraints: OptimizerConstraints | None = None,
        *,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.distance_model = distance_model or DistanceModel()
        self.constraints = constraints or OptimizerConstraints()
        self._monotonic = monotonic

    @classmethod
    def from_settings(cls, config: Settings) -> "RouteOptimizer":
        return cls(
            DistanceModel(config.average_speed_kmh),
            OptimizerConstraints.from_settings(config),
        )

    def optimize(
        self,
        start: Coordinate,
        requests: Iterable[BuyerRequest],
        current_time: datetime,
    ) -> Route:
        candidates = self._unique(eligible_requests(requests, current_time))
        if not candidates:
            return Route.empty()

        legs = _LegTable(self.distance_model, start)
        reachable: list[BuyerRequest] = []
        unreachable: list[str] = []
        for request in candidates:
            # Great-circle legs obey the triangle inequality, so the direct leg
            # is the earliest possible arrival in any order.
            if self._arrival(current_time, legs.distance(None, request), request) is None:
                unreachable.append(request.request_id)
            else:
                reachable.append(request)

        order = self._nearest_neighbor_order(reachable, legs, current_time)
        timing = self._time_sequence(order, legs, start, current_time)
        timing, converged = self._two_opt(order, timing, legs, start, current_time)

        return self._assemble(timing, unreachable, converged)

    def _unique(self, requests: Sequence[BuyerRequest]) -> list[BuyerRequest]:
        seen: set[str] = set()
        unique: list[BuyerRequest] = []
        for request in requests:
            if request.request_id in seen:
                logger.debug("Ignoring duplicate request id %s", request.request_id)
                continue
            seen.add(request.request_id)
            unique.append(request)
        return unique

    def _arrival(self, departure: datetime, distance_m: float, request: BuyerRequest) -> Optional[datetime]:
        """Arrival at ``request`` leaving at ``departure``, or None if its window has closed."""
        arrival = departure + timedelta(seconds=self.distance_model.duration_for_distance(distance_m))
        if arrival > request.window_end:
            return None
        return max(arrival, request.window_start)

    def _nearest_neighbor_order(
        self,
        requests: Sequence[BuyerRequest],
        legs: _LegTable,
        current_time: datetime,
    ) -> list[BuyerRequest]:
        """Greedy construction.

        The returned order also contains requests that turned out to be
        infeasible where they were considered; re-timing skips them, and the
        improvement phase may still find a position that fits them.
        """
        remaining = list(requests)
        order: list[BuyerRequest] = []
        position: Optional[BuyerRequest] = None
        departure = current_time
        service = timedelta(seconds=self.constraints.service_seconds)

        while remaining:
            scored = [(legs.distance(position, request), request) for request in remaining]
            nearest = min(distance for distance, _ in scored)
            tied = [pair for pair in scored if pair[0] <= nearest + self.constraints.tie_epsilon_m]
            distance, choice = min(tied, key=lambda pair: (pair[1].expiration, pair[0], pair[1].request_id))
            remaining.remove(choice)
            order.append(choice)

            arrival = self._arrival(departure, distance, choice)
            if arrival is None:
                logger.debug("Request %s cannot be reached in time from current position", choice.request_id)
                continue
            position = choice
            departure = arrival + service
        return order

    def _time_sequence(
        self,
        sequence: Sequence[BuyerRequest],
        legs: _LegTable,
        start: Coordinate,
        current_time: datetime,
    ) -> _Timing:
        visits: list[_Visit] = []
        excluded: list[str] = []
        total = 0.0
        position: Optional[BuyerRequest] = None
        departure = current_time
        service = timedelta(seconds=self.constraints.service_seconds)

        for request in sequence:
            distance = legs.distance(position, request)
            arrival = self._arrival(departure, distance, request)
            if arrival is None:
                excluded.append(request.request_id)
                continue
            visits.append(
                _Visit(
                    request=request,
                    origin=position.location if position is not None else start,
                    distance_m=distance,
                    duration_s=self.distance_model.duration_for_distance(distance),
                    arrival=arrival,
                )
            )
            total += distance
            position = request
            departure = arrival + service
        return _Timing(visits=visits, excluded=excluded, distance_m=total)

    @staticmethod
    def _improves(candidate: _Timing, current: _Timing) -> bool:
        served, current_served = candidate.served, current.served
        if not served >= current_served:
            return False
        if len(served) > len(current_served):
            return True
        return candidate.distance_m < current.distance_m

    def _two_opt(
        self,
        order: list[BuyerRequest],
        timing: _Timing,
        legs: _LegTable,
        start: Coordinate,
        current_time: datetime,
    ) -> tuple[_Timing, bool]:
        size = len(order)
        if size < 2:
            return timing, True

        deadline = self._monotonic() + self.constraints.time_budget_s
        evaluated = 0
        best_order, best = order, timing
        improved = True
        while improved:
            improved = False
            for i in range(size - 1):
                for j in range(i + 1, size):
                    if evaluated >= self.constraints.max_iterations or self._monotonic() >= deadline:
                        logger.warning(
                            "2-opt budget exhausted after %d reversals for %d requests; "
                            "returning best route found so far",
                            evaluated,
                            size,
                        )
                        return best, False
                    evaluated += 1
                    candidate_order = best_order[:i] + best_order[i : j + 1][::-1] + best_order[j + 1 :]
                    candidate = self._time_sequence(candidate_order, legs, start, current_time)
                    if self._improves(candidate, best):
                        best_order, best = candidate_order, candidate
                        improved = True
                        break
                if improved:
                    break
        return best, True

    @staticmethod
    def _assemble(timing: _Timing, unreachable: Sequence[str], converged: bool) -> Route:
        segments = tuple(
            RouteSegment(
                origin=visit.origin,
                destination=visit.request.location,
                request_id=visit.request.request_id,
                distance_m=visit.distance_m,
                duration_s=visit.duration_s,
                arrival_time=visit.arrival,
            )
            for visit in timing.visits
        )
        return Route(
            segments=segments,
            total_distance_m=sum(segment.distance_m for segment in segments),
            total_duration_s=sum(segment.duration_s for segment in segments),
            excluded_request_ids=tuple(sorted([*unreachable, *timing.excluded])),
            converged=converged,
        )


def optimize_route(
    start: Coordinate,
    requests: Iterable[BuyerRequest],
    current_time: datetime,
    *,
    config: Settings | None = None,
) -> Route:
    """Convenience wrapper building an optimizer from settings."""
    return RouteOptimizer.from_settings(config or settings).optimize(start, requests, current_time)
