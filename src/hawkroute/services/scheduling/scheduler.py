"""Debounced, cancellation-aware re-optimization for a single hawker.

Upstream pushes immutable snapshots; the scheduler decides whether a snapshot
warrants a new optimize call, coalesces bursts of triggers, and publishes a
result only if no newer snapshot has been accepted in the meantime.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

from ...config import Settings, settings
from ...models.domain import BuyerRequest, Coordinate, HawkerLocation, Route
from ..filtering import eligible_requests
from ..geospatial import haversine_m
from ..routing.optimizer import RouteOptimizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RouteSnapshot:
    """Everything one optimize call needs, captured at ``taken_at``."""

    hawker: HawkerLocation
    requests: tuple[BuyerRequest, ...]
    taken_at: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "requests", tuple(self.requests))

    @property
    def start(self) -> Coordinate:
        return self.hawker.location

    def fingerprint(self) -> tuple[frozenset[str], frozenset[tuple]]:
        """Hawker commodities plus the content of every request eligible at ``taken_at``."""
        return (
            self.hawker.commodities,
            frozenset(
                (
                    request.request_id,
                    request.location,
                    request.window_start,
                    request.window_end,
                    request.commodities,
                )
                for request in eligible_requests(self.requests, self.taken_at)
            ),
        )


RouteCallback = Callable[[Route, RouteSnapshot], Optional[Awaitable[None]]]
Planner = Callable[[RouteSnapshot], Route]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OptimizationScheduler:
    """Decides when to run the optimizer for one hawker and which result wins."""

    def __init__(
        self,
        optimizer: RouteOptimizer | None = None,
        *,
        planner: Planner | None = None,
        config: Settings | None = None,
        debounce_seconds: float | None = None,
        min_displacement_m: float | None = None,
        watch_expirations: bool | None = None,
        clock: Callable[[], datetime] = _utcnow,
        on_route: RouteCallback | None = None,
    ) -> None:
        config = config or settings
        self._optimizer = optimizer or RouteOptimizer.from_settings(config)
        self._planner = planner or self._optimize_snapshot
        self._debounce_seconds = config.debounce_seconds if debounce_seconds is None else debounce_seconds
        self._min_displacement_m = (
            config.min_displacement_m if min_displacement_m is None else min_displacement_m
        )
        self._watch_expirations = config.watch_expirations if watch_expirations is None else watch_expirations
        self._clock = clock
        self._on_route = on_route

        self._baseline: Optional[RouteSnapshot] = None
        self._latest: Optional[RouteSnapshot] = None
        self._sequence = 0
        self._published_sequence = 0
        self._pending: Optional[tuple[int, RouteSnapshot]] = None
        self._debounce_task: Optional[asyncio.Task] = None
        self._expiry_task: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Task] = set()
        self._last_route: Optional[Route] = None
        self._last_route_snapshot: Optional[RouteSnapshot] = None
        self._failure: Optional[BaseException] = None
        self._closed = False

    @property
    def last_route(self) -> Optional[Route]:
        """Most recent published route, kept as the fallback between computations."""
        return self._last_route

    @property
    def last_route_snapshot(self) -> Optional[RouteSnapshot]:
        return self._last_route_snapshot

    @property
    def sequence(self) -> int:
        return self._sequence

    @property
    def published_sequence(self) -> int:
        return self._published_sequence

    def _optimize_snapshot(self, snapshot: RouteSnapshot) -> Route:
        return self._optimizer.optimize(snapshot.start, snapshot.requests, snapshot.taken_at)

    def is_trigger(self, snapshot: RouteSnapshot) -> bool:
        """True if ``snapshot`` differs meaningfully from the last accepted one."""
        baseline = self._baseline
        if baseline is None:
            return True
        moved = haversine_m(baseline.start, snapshot.start)
        if moved > 0 and moved >= self._min_displacement_m:
            return True
        return baseline.fingerprint() != snapshot.fingerprint()

    async def submit(self, snapshot: RouteSnapshot) -> bool:
        """Offer a snapshot; returns True if it scheduled a new computation."""
        if self._closed:
            raise RuntimeError("Scheduler is closed")
        self._latest = snapshot
        if not self.is_trigger(snapshot):
            return False

        self._baseline = snapshot
        self._failure = None
        self._sequence += 1
        self._pending = (self._sequence, snapshot)
        if self._debounce_task is None or self._debounce_task.done():
            self._debounce_task = asyncio.create_task(self._debounce())
        return True

    async def _debounce(self) -> None:
        if self._debounce_seconds > 0:
            await asyncio.sleep(self._debounce_seconds)
        pending, self._pending = self._pending, None
        if pending is None:
            return
        sequence, snapshot = pending
        task = asyncio.create_task(self._compute(sequence, snapshot))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _compute(self, sequence: int, snapshot: RouteSnapshot) -> None:
        try:
            route = await asyncio.to_thread(self._planner, snapshot)
        except Exception as exc:
            logger.exception(
                "Route computation for hawker %s (snapshot %d) failed; keeping last good route",
                snapshot.hawker.hawker_id,
                sequence,
            )
            if sequence == self._sequence:
                self._failure = exc
            return

        if sequence < self._sequence:
            logger.debug(
                "Discarding route for snapshot %d of hawker %s; snapshot %d is newer",
                sequence,
                snapshot.hawker.hawker_id,
                self._sequence,
            )
            return
        if sequence <= self._published_sequence:
            return

        self._published_sequence = sequence
        self._last_route = route
        self._last_route_snapshot = snapshot
        self._failure = None
        await self._notify(route, snapshot)
        self._arm_expiry_watch(route, snapshot)

    async def _notify(self, route: Route, snapshot: RouteSnapshot) -> None:
        if self._on_route is None:
            return
        result = self._on_route(route, snapshot)
        if inspect.isawaitable(result):
            await result

    def _arm_expiry_watch(self, route: Route, snapshot: RouteSnapshot) -> None:
        if self._expiry_task is not None and not self._expiry_task.done():
            self._expiry_task.cancel()
        self._expiry_task = None
        if not self._watch_expirations or route.is_empty:
            return
        routed = set(route.request_ids)
        earliest = min(request.expiration for request in snapshot.requests if request.request_id in routed)
        self._expiry_task = asyncio.create_task(self._resubmit_at(earliest))

    async def _resubmit_at(self, expires_at: datetime) -> None:
        remaining = (expires_at - self._clock()).total_seconds()
        while remaining > 0:
            await asyncio.sleep(max(remaining, 0.001))
            remaining = (expires_at - self._clock()).total_seconds()
        latest = self._latest
        if latest is None or self._closed:
            return
        logger.debug("Request window closed for hawker %s; re-evaluating", latest.hawker.hawker_id)
        await self.submit(replace(latest, taken_at=self._clock()))

    async def drain(self) -> Optional[Route]:
        """Wait for pending and in-flight work, then return the last good route.

        Re-raises the error of the newest computation if it failed; the error
        stays visible to every caller until a newer snapshot is accepted.
        """
        while True:
            waiting: list[asyncio.Task] = list(self._inflight)
            if self._debounce_task is not None and not self._debounce_task.done():
                waiting.append(self._debounce_task)
            if not waiting:
                break
            await asyncio.gather(*waiting, return_exceptions=True)
        if self._failure is not None:
            raise self._failure
        return self._last_route

    async def close(self) -> None:
        self._closed = True
        tasks = [task for task in (self._debounce_task, self._expiry_task) if task is not None]
        tasks.extend(self._inflight)
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class SchedulerRegistry:
    """One independent scheduler per hawker, created on first use."""

    def __init__(self, factory: Callable[[str], OptimizationScheduler] | None = None, **scheduler_kwargs: Any) -> None:
        self._factory = factory or (lambda _hawker_id: OptimizationScheduler(**scheduler_kwargs))
        self._schedulers: dict[str, OptimizationScheduler] = {}

    def get(self, hawker_id: str) -> OptimizationScheduler:
        scheduler = self._schedulers.get(hawker_id)
        if scheduler is None:
            scheduler = self._factory(hawker_id)
            self._schedulers[hawker_id] = scheduler
        return scheduler

    def peek(self, hawker_id: str) -> Optional[OptimizationScheduler]:
        return self._schedulers.get(hawker_id)

    async def submit(self, snapshot: RouteSnapshot) -> bool:
        return await self.get(snapshot.hawker.hawker_id).submit(snapshot)

    def hawker_ids(self) -> Iterable[str]:
        return tuple(self._schedulers)

    def __contains__(self, hawker_id: object) -> bool:
        return hawker_id in self._schedulers

    def __len__(self) -> int:
        return len(self._schedulers)

    async def close(self) -> None:
        schedulers = list(self._schedulers.values())
        self._schedulers.clear()
        await asyncio.gather(*(scheduler.close() for scheduler in schedulers))
