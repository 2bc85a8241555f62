import asyncio
import threading
from datetime import datetime, timedelta, timezone

import pytest

from src.hawkroute.models.domain import BuyerRequest, Coordinate, HawkerLocation, Route
from src.hawkroute.services.geospatial import DistanceModel
from src.hawkroute.services.routing.optimizer import OptimizerConstraints, RouteOptimizer
from src.hawkroute.services.scheduling.scheduler import (
    OptimizationScheduler,
    RouteSnapshot,
    SchedulerRegistry,
)

NOW = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


def _hawker(lat: float = 0.0, lon: float = 0.0, hawker_id: str = "H1") -> HawkerLocation:
    return HawkerLocation(hawker_id=hawker_id, location=Coordinate(lat, lon), commodities=frozenset({"tea"}))


def _request(rid: str, lon: float, *, closes_at: datetime | None = None) -> BuyerRequest:
    return BuyerRequest(
        request_id=rid,
        location=Coordinate(0.0, lon),
        commodities=frozenset({"tea"}),
        window_start=NOW - timedelta(hours=1),
        window_end=closes_at or NOW + timedelta(hours=1),
    )


def _snapshot(*requests: BuyerRequest, hawker: HawkerLocation | None = None, at: datetime = NOW) -> RouteSnapshot:
    return RouteSnapshot(hawker=hawker or _hawker(), requests=requests, taken_at=at)


def _optimizer() -> RouteOptimizer:
    return RouteOptimizer(
        DistanceModel(20.0),
        OptimizerConstraints(service_seconds=0.0, tie_epsilon_m=1.0, max_iterations=1_000, time_budget_s=5.0),
    )


def _scheduler(**kwargs) -> OptimizationScheduler:
    kwargs.setdefault("debounce_seconds", 0)
    kwargs.setdefault("min_displacement_m", 25.0)
    kwargs.setdefault("watch_expirations", False)
    return OptimizationScheduler(_optimizer(), **kwargs)


def test_first_snapshot_publishes_optimizer_result():
    snapshot = _snapshot(_request("A", 0.002), _request("B", 0.001))

    async def scenario():
        published = []
        scheduler = _scheduler(on_route=lambda route, snap: published.append((route, snap)))
        assert await scheduler.submit(snapshot) is True
        route = await scheduler.drain()
        await scheduler.close()
        return route, published, scheduler

    route, published, scheduler = asyncio.run(scenario())

    assert route == _optimizer().optimize(snapshot.start, snapshot.requests, snapshot.taken_at)
    assert route.request_ids == ("B", "A")
    assert published == [(route, snapshot)]
    assert scheduler.last_route is route
    assert scheduler.published_sequence == 1


def test_trigger_rules():
    scheduler = _scheduler()
    base = _snapshot(_request("A", 0.002))

    async def scenario():
        assert await scheduler.submit(base) is True
        await scheduler.drain()
        results = {
            "unchanged": await scheduler.submit(_snapshot(_request("A", 0.002))),
            "small_move": await scheduler.submit(_snapshot(_request("A", 0.002), hawker=_hawker(0.0, 0.0001))),
        }
        results["new_request"] = await scheduler.submit(_snapshot(_request("A", 0.002), _request("B", 0.003)))
        results["expired"] = await scheduler.submit(
            _snapshot(
                _request("A", 0.002),
                _request("B", 0.003, closes_at=NOW + timedelta(minutes=5)),
                at=NOW + timedelta(minutes=5),
            )
        )
        results["big_move"] = await scheduler.submit(_snapshot(_request("A", 0.002), hawker=_hawker(0.0, 0.001)))
        moved = _hawker(0.0, 0.001)
        results["replaced_request"] = await scheduler.submit(_snapshot(_request("A", 0.004), hawker=moved))
        results["window_changed"] = await scheduler.submit(
            _snapshot(_request("A", 0.004, closes_at=NOW + timedelta(hours=2)), hawker=moved)
        )
        restocked = HawkerLocation(hawker_id="H1", location=moved.location, commodities=frozenset({"tea", "kopi"}))
        results["hawker_commodities"] = await scheduler.submit(
            _snapshot(_request("A", 0.004, closes_at=NOW + timedelta(hours=2)), hawker=restocked)
        )
        await scheduler.drain()
        await scheduler.close()
        return results

    results = asyncio.run(scenario())

    assert results == {
        "unchanged": False,
        "small_move": False,
        "new_request": True,
        "expired": True,
        "big_move": True,
        "replaced_request": True,
        "window_changed": True,
        "hawker_commodities": True,
    }


def test_burst_of_triggers_is_coalesced_into_latest_snapshot():
    seen: list[RouteSnapshot] = []
    optimizer = _optimizer()

    def planner(snapshot: RouteSnapshot) -> Route:
        seen.append(snapshot)
        return optimizer.optimize(snapshot.start, snapshot.requests, snapshot.taken_at)

    snapshots = [
        _snapshot(_request("A", 0.001)),
        _snapshot(_request("A", 0.001), _request("B", 0.002)),
        _snapshot(_request("A", 0.001), _request("B", 0.002), _request("C", 0.003)),
    ]

    async def scenario():
        scheduler = _scheduler(planner=planner, debounce_seconds=0.05)
        for snapshot in snapshots:
            assert await scheduler.submit(snapshot) is True
        route = await scheduler.drain()
        await scheduler.close()
        return route, scheduler

    route, scheduler = asyncio.run(scenario())

    assert seen == [snapshots[-1]]
    assert route.request_ids == ("A", "B", "C")
    assert scheduler.sequence == 3
    assert scheduler.published_sequence == 3


def test_newer_snapshot_wins_over_slower_older_computation():
    release = threading.Event()
    started = threading.Event()
    optimizer = _optimizer()

    def planner(snapshot: RouteSnapshot) -> Route:
        if len(snapshot.requests) == 1:
            started.set()
            release.wait(timeout=5)
        return optimizer.optimize(snapshot.start, snapshot.requests, snapshot.taken_at)

    older = _snapshot(_request("A", 0.001))
    newer = _snapshot(_request("A", 0.001), _request("B", 0.002))

    async def scenario():
        published = []

        async def on_route(route, snapshot):
            published.append(snapshot)

        scheduler = _scheduler(planner=planner, on_route=on_route)
        await scheduler.submit(older)
        for _ in range(200):
            if started.is_set():
                break
            await asyncio.sleep(0.01)
        await scheduler.submit(newer)
        for _ in range(200):
            if scheduler.published_sequence == 2:
                break
            await asyncio.sleep(0.01)
        release.set()
        route = await scheduler.drain()
        await scheduler.close()
        return route, published, scheduler

    route, published, scheduler = asyncio.run(scenario())

    assert published == [newer]
    assert route.request_ids == ("A", "B")
    assert scheduler.last_route_snapshot is newer
    assert scheduler.published_sequence == 2


def test_failed_computation_keeps_last_good_route():
    optimizer = _optimizer()
    calls = {"count": 0}

    def planner(snapshot: RouteSnapshot) -> Route:
        calls["count"] += 1
        if calls["count"] == 2:
            raise ValueError("boom")
        return optimizer.optimize(snapshot.start, snapshot.requests, snapshot.taken_at)

    async def scenario():
        scheduler = _scheduler(planner=planner)
        await scheduler.submit(_snapshot(_request("A", 0.001)))
        good = await scheduler.drain()
        await scheduler.submit(_snapshot(_request("A", 0.001), _request("B", 0.002)))
        outcomes = await asyncio.gather(scheduler.drain(), scheduler.drain(), return_exceptions=True)
        with pytest.raises(ValueError):
            await scheduler.drain()
        kept = scheduler.last_route
        await scheduler.submit(_snapshot(_request("A", 0.001), _request("C", 0.003)))
        recovered = await scheduler.drain()
        await scheduler.close()
        return good, outcomes, kept, recovered

    good, outcomes, kept, recovered = asyncio.run(scenario())

    assert good.request_ids == ("A",)
    assert [type(outcome) for outcome in outcomes] == [ValueError, ValueError]
    assert kept is good
    assert recovered.request_ids == ("A", "C")


def test_replaced_request_is_rerouted_to_its_new_location():
    published = []

    async def scenario():
        scheduler = _scheduler(on_route=lambda route, snap: published.append(route))
        await scheduler.submit(_snapshot(_request("A", 0.002)))
        await scheduler.drain()
        triggered = await scheduler.submit(_snapshot(_request("A", -0.003)))
        route = await scheduler.drain()
        await scheduler.close()
        return triggered, route

    triggered, route = asyncio.run(scenario())

    assert triggered is True
    assert len(published) == 2
    assert route.segments[0].destination == Coordinate(0.0, -0.003)


def test_hawker_commodity_change_triggers_reoptimization():
    async def scenario():
        scheduler = _scheduler()
        request = _request("A", 0.002)
        await scheduler.submit(_snapshot(request))
        await scheduler.drain()
        same = await scheduler.submit(_snapshot(request, hawker=_hawker()))
        restocked = HawkerLocation(hawker_id="H1", location=Coordinate(0.0, 0.0), commodities=frozenset({"kopi"}))
        changed = await scheduler.submit(_snapshot(request, hawker=restocked))
        await scheduler.drain()
        await scheduler.close()
        return same, changed, scheduler.published_sequence

    same, changed, published_sequence = asyncio.run(scenario())

    assert same is False
    assert changed is True
    assert published_sequence == 2


def test_expiring_request_triggers_reoptimization():
    async def scenario():
        now = datetime.now(timezone.utc)
        hawker = _hawker()
        short_lived = BuyerRequest(
            request_id="soon",
            location=hawker.location,
            commodities=frozenset({"tea"}),
            window_start=now - timedelta(minutes=1),
            window_end=now + timedelta(milliseconds=200),
        )
        scheduler = _scheduler(watch_expirations=True)
        await scheduler.submit(RouteSnapshot(hawker=hawker, requests=(short_lived,), taken_at=now))
        first = await scheduler.drain()
        await asyncio.sleep(1.0)
        second = await scheduler.drain()
        await scheduler.close()
        return first, second, scheduler

    first, second, scheduler = asyncio.run(scenario())

    assert first.request_ids == ("soon",)
    assert second.is_empty
    assert scheduler.published_sequence == 2


def test_closed_scheduler_rejects_snapshots():
    async def scenario():
        scheduler = _scheduler()
        await scheduler.close()
        with pytest.raises(RuntimeError):
            await scheduler.submit(_snapshot())

    asyncio.run(scenario())


def test_registry_keeps_hawkers_independent():
    async def scenario():
        registry = SchedulerRegistry(optimizer=_optimizer(), debounce_seconds=0, watch_expirations=False)
        await registry.submit(_snapshot(_request("A", 0.001), hawker=_hawker(hawker_id="H1")))
        await registry.submit(_snapshot(_request("B", 0.002), hawker=_hawker(hawker_id="H2")))
        first = await registry.get("H1").drain()
        second = await registry.get("H2").drain()
        ids = sorted(registry.hawker_ids())
        await registry.close()
        return first, second, ids, registry

    first, second, ids, registry = asyncio.run(scenario())

    assert first.request_ids == ("A",)
    assert second.request_ids == ("B",)
    assert ids == ["H1", "H2"]
    assert len(registry) == 0
