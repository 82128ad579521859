import asyncio

import pytest

from src.batchflow.models.domain import (
    AiOptimizationOptions,
    Coordinates,
    RouteOptimizationResult,
    RoutePoint,
    StopLocation,
)
from src.batchflow.services.workflow import ExternalCallFailed, RouteStage

START = Coordinates(lat=9.05, lng=7.49)


def _stops(*ids: str) -> list[StopLocation]:
    return [StopLocation(facility_id=fid, lat=9.0 + index * 0.01, lng=7.5) for index, fid in enumerate(ids)]


class FixedOptimizer:
    """Returns the stops in a fixed order."""

    def __init__(self, order: list[str], distance: float = 12.5, duration: float = 30.0) -> None:
        self.order = order
        self.distance = distance
        self.duration = duration
        self.calls = 0

    async def optimize(self, stops, start, options):
        self.calls += 1
        by_id = {stop.facility_id: stop for stop in stops}
        route = [
            RoutePoint(facility_id=fid, lat=by_id[fid].lat if fid in by_id else 0.0, lng=7.5, sequence=index)
            for index, fid in enumerate(self.order)
        ]
        return RouteOptimizationResult(route=route, total_distance_km=self.distance, estimated_duration_min=self.duration)


class FailingOptimizer:
    async def optimize(self, stops, start, options):
        raise ConnectionError("network down")


def test_optimize_stores_a_permutation_of_the_stops():
    stage = RouteStage()
    stops = _stops("F1", "F2", "F3")

    asyncio.run(stage.optimize(FixedOptimizer(["F3", "F1", "F2"]), stops, START, AiOptimizationOptions()))

    assert [point.facility_id for point in stage.optimized_route] == ["F3", "F1", "F2"]
    assert [point.sequence for point in stage.optimized_route] == [0, 1, 2]
    assert stage.total_distance_km == 12.5
    assert stage.estimated_duration_min == 30.0
    assert stage.is_optimized


def test_second_optimize_replaces_the_first():
    stage = RouteStage()
    stops = _stops("F1", "F2", "F3")
    asyncio.run(stage.optimize(FixedOptimizer(["F3", "F1", "F2"]), stops, START, AiOptimizationOptions()))

    asyncio.run(stage.optimize(FixedOptimizer(["F2", "F3", "F1"], distance=8.0, duration=20.0), stops, START, AiOptimizationOptions()))

    assert [point.facility_id for point in stage.optimized_route] == ["F2", "F3", "F1"]
    assert stage.total_distance_km == 8.0
    assert stage.estimated_duration_min == 20.0


def test_failed_optimize_keeps_previous_route():
    stage = RouteStage()
    stops = _stops("F1", "F2")
    asyncio.run(stage.optimize(FixedOptimizer(["F2", "F1"]), stops, START, AiOptimizationOptions()))

    with pytest.raises(ExternalCallFailed) as excinfo:
        asyncio.run(stage.optimize(FailingOptimizer(), stops, START, AiOptimizationOptions()))

    assert isinstance(excinfo.value.cause, ConnectionError)
    assert excinfo.value.operation == "optimize"
    assert [point.facility_id for point in stage.optimized_route] == ["F2", "F1"]


@pytest.mark.parametrize("order", [["F1", "F2"], ["F1", "F2", "F2"], ["F1", "F2", "X"]])
def test_result_that_is_not_a_permutation_is_rejected(order):
    stage = RouteStage()

    with pytest.raises(ExternalCallFailed):
        asyncio.run(stage.optimize(FixedOptimizer(order), _stops("F1", "F2", "F3"), START, AiOptimizationOptions()))

    assert stage.optimized_route == ()
    assert stage.total_distance_km is None


def test_stale_result_is_rejected_when_stops_changed_in_flight():
    stage = RouteStage()
    stops = _stops("F1", "F2")

    with pytest.raises(ExternalCallFailed):
        asyncio.run(
            stage.optimize(
                FixedOptimizer(["F1", "F2"]),
                stops,
                START,
                AiOptimizationOptions(),
                current_facility_ids=lambda: ["F1"],
            )
        )

    assert stage.optimized_route == ()


def test_invalidate_clears_route_and_totals():
    stage = RouteStage()
    stage.set_route([RoutePoint(facility_id="F1", lat=1.0, lng=2.0, sequence=5)], 3.0, 4.0)
    assert stage.optimized_route[0].sequence == 0

    stage.invalidate()

    assert stage.optimized_route == ()
    assert stage.total_distance_km is None
    assert stage.estimated_duration_min is None
