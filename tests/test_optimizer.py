import asyncio

import httpx
import pytest

from src.batchflow.models.domain import AiOptimizationOptions, Coordinates, StopLocation
from src.batchflow.services.geospatial import haversine_km, haversine_table
from src.batchflow.services.routing.optimizer import OsrmRouteOptimizer
from src.batchflow.services.routing.osrm_client import OSRMClient
from src.batchflow.services.routing.sequence_solver import solve_tour

START = Coordinates(lat=0.0, lng=0.0)


def _stops() -> list[StopLocation]:
    # Three stops on a line east of the start, given out of order.
    return [
        StopLocation(facility_id="FAR", lat=0.0, lng=0.3),
        StopLocation(facility_id="NEAR", lat=0.0, lng=0.1),
        StopLocation(facility_id="MID", lat=0.0, lng=0.2),
    ]


class DummyOSRM:
    def __init__(self, unreachable: bool = False) -> None:
        self.unreachable = unreachable
        self.requests = []

    def table(self, coordinates):
        self.requests.append(list(coordinates))
        count = len(coordinates)
        distances = [
            [abs(coordinates[i][1] - coordinates[j][1]) * 100000 for j in range(count)] for i in range(count)
        ]
        durations = [[value / 10 for value in row] for row in distances]
        if self.unreachable:
            for j in range(1, count):
                durations[0][j] = None
        return {"code": "Ok", "durations": durations, "distances": distances}


class BrokenOSRM:
    def table(self, coordinates):
        raise ConnectionError("OSRM down")


def test_haversine_table_is_symmetric_with_zero_diagonal():
    coords = [(24.7136, 46.6753), (21.4858, 39.1925)]
    table = haversine_table(coords, speed_kmh=60.0)

    assert table["distances"][0][0] == 0.0
    assert table["distances"][0][1] == pytest.approx(table["distances"][1][0])
    assert table["distances"][0][1] == pytest.approx(haversine_km(*coords[0], *coords[1]) * 1000.0)
    assert table["durations"][0][1] == pytest.approx(table["distances"][0][1] / 1000.0 / 60.0 * 3600.0)


def test_solve_tour_visits_every_stop_once():
    table = {
        "durations": [[0, 10, 20, 30], [10, 0, 10, 20], [20, 10, 0, 10], [30, 20, 10, 0]],
        "distances": [[0, 100, 200, 300], [100, 0, 100, 200], [200, 100, 0, 100], [300, 200, 100, 0]],
    }
    solution = solve_tour(table, time_limit_seconds=1)

    assert sorted(solution.order) == [1, 2, 3]
    assert solution.solved is True
    # Out along the line and back again.
    assert solution.total_distance_m == 600


def test_solve_tour_requires_a_stop():
    with pytest.raises(ValueError):
        solve_tour({"durations": [[0]], "distances": [[0]]})


def test_optimizer_uses_osrm_table_when_available():
    osrm = DummyOSRM()
    optimizer = OsrmRouteOptimizer(client_factory=lambda: osrm, time_limit_seconds=1)

    result = asyncio.run(optimizer.optimize(_stops(), START, AiOptimizationOptions(shortest_distance=True)))

    ids = [point.facility_id for point in result.route]
    assert sorted(ids) == ["FAR", "MID", "NEAR"]
    assert ids in (["NEAR", "MID", "FAR"], ["FAR", "MID", "NEAR"])
    assert [point.sequence for point in result.route] == [0, 1, 2]
    assert osrm.requests[0][0] == (0.0, 0.0)
    assert result.total_distance_km == pytest.approx(60.0, rel=0.01)


def test_optimizer_falls_back_to_straight_line_when_osrm_fails():
    optimizer = OsrmRouteOptimizer(client_factory=lambda: BrokenOSRM(), average_speed_kmh=60.0, time_limit_seconds=1)

    result = asyncio.run(optimizer.optimize(_stops(), START, AiOptimizationOptions()))

    assert len(result.route) == 3
    # 0.3 degrees of longitude at the equator, out and back.
    assert result.total_distance_km == pytest.approx(2 * haversine_km(0.0, 0.0, 0.0, 0.3), rel=0.01)
    assert result.estimated_duration_min == pytest.approx(result.total_distance_km, rel=0.01)


def test_optimizer_ignores_osrm_table_with_mostly_unreachable_legs():
    optimizer = OsrmRouteOptimizer(client_factory=lambda: DummyOSRM(unreachable=True), time_limit_seconds=1)

    result = asyncio.run(optimizer.optimize(_stops(), START, AiOptimizationOptions(fastest_route=True)))

    assert result.total_distance_km == pytest.approx(2 * haversine_km(0.0, 0.0, 0.0, 0.3), rel=0.01)


class OneGapOSRM(DummyOSRM):
    """No road between the start and the last stop, in either direction."""

    def table(self, coordinates):
        data = super().table(coordinates)
        last = len(coordinates) - 1
        for key in ("durations", "distances"):
            data[key][0][last] = None
            data[key][last][0] = None
        return data


def test_optimizer_estimates_single_unreachable_leg_instead_of_penalising_totals():
    stops = [StopLocation(facility_id="NEAR", lat=0.0, lng=0.1), StopLocation(facility_id="FAR", lat=0.0, lng=0.2)]
    optimizer = OsrmRouteOptimizer(client_factory=OneGapOSRM, average_speed_kmh=60.0, time_limit_seconds=1)

    result = optimizer.optimize_sync(stops, START, AiOptimizationOptions())

    # 10 km + 10 km on roads, the gap priced as a straight line back to the start.
    expected_km = 20.0 + haversine_km(0.0, 0.0, 0.0, 0.2)
    assert result.total_distance_km == pytest.approx(expected_km, rel=0.01)
    assert result.estimated_duration_min < 100


def test_optimizer_without_osrm_configured(monkeypatch):
    from src.batchflow.config import settings

    monkeypatch.setattr(settings, "osrm_base_url", None)
    optimizer = OsrmRouteOptimizer(time_limit_seconds=1)
    assert optimizer.client_factory is None

    result = asyncio.run(optimizer.optimize(_stops(), START, AiOptimizationOptions(efficiency=True)))
    assert sorted(point.facility_id for point in result.route) == ["FAR", "MID", "NEAR"]


def test_optimizer_rejects_empty_stops():
    optimizer = OsrmRouteOptimizer(client_factory=lambda: DummyOSRM(), time_limit_seconds=1)
    with pytest.raises(ValueError):
        optimizer.optimize_sync([], START, AiOptimizationOptions())


def test_osrm_client_requests_lon_lat_pairs():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(200, json={"code": "Ok", "durations": [[0, 1], [1, 0]], "distances": [[0, 5], [5, 0]]})

    client = OSRMClient(base_url="http://osrm.test/", transport=httpx.MockTransport(handler))
    table = client.table([(9.0, 7.4), (9.1, 7.5)])

    assert table["distances"][0][1] == 5
    assert seen[0].path == "/table/v1/driving/7.4,9.0;7.5,9.1"
    assert seen[0].params["annotations"] == "duration,distance"


def test_osrm_client_retries_then_gives_up_on_connection_errors():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)

    client = OSRMClient(
        base_url="http://osrm.test",
        max_retries=2,
        backoff_seconds=0.0,
        transport=httpx.MockTransport(handler),
    )

    with pytest.raises(ConnectionError):
        client.table([(9.0, 7.4), (9.1, 7.5)])
    assert len(calls) == 3


def test_osrm_client_rejects_error_code():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": "InvalidQuery", "message": "bad coordinates"})

    client = OSRMClient(base_url="http://osrm.test", transport=httpx.MockTransport(handler))
    with pytest.raises(ValueError):
        client.table([(9.0, 7.4), (9.1, 7.5)])
