"""Default route optimizer: OSRM travel matrix + OR-Tools tour, with a straight-line fallback."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Sequence

import httpx

from ...config import settings
from ...models.domain import AiOptimizationOptions, Coordinates, RouteOptimizationResult, RoutePoint, StopLocation
from ..geospatial import haversine_table
from .osrm_client import OSRMClient
from .sequence_solver import solve_tour

logger = logging.getLogger(__name__)

# Above this share of unreachable start->stop legs the OSRM table is not trusted.
MAX_UNREACHABLE_RATE = 0.5


def _unreachable_rate(table: dict) -> float:
    durations = table.get("durations") or []
    if not durations or len(durations[0]) < 2:
        return 0.0
    start_row = durations[0]
    unreachable = sum(1 for value in start_row[1:] if value is None)
    return unreachable / (len(start_row) - 1)


def _fill_unreachable(table: dict, coordinates: list[tuple[float, float]], speed_kmh: float) -> dict:
    """Replace None legs with straight-line estimates so route totals stay real."""
    estimate = None
    filled = {}
    for key in ("durations", "distances"):
        rows = []
        for i, row in enumerate(table[key]):
            new_row = list(row)
            for j, value in enumerate(new_row):
                if value is None:
                    if estimate is None:
                        estimate = haversine_table(coordinates, speed_kmh)
                    new_row[j] = estimate[key][i][j]
            rows.append(new_row)
        filled[key] = rows
    if estimate is not None:
        logger.info("Estimated unreachable OSRM legs from straight-line distances")
    return {**table, **filled}


class OsrmRouteOptimizer:
    """Implements the session's ``RouteOptimizer`` protocol.

    Option mapping: ``fastest_route`` minimizes travel time, everything else
    minimizes distance; ``efficiency`` switches on guided local search;
    ``priority_complex`` doubles the solver time limit.
    """

    def __init__(
        self,
        client_factory: Callable[[], OSRMClient] | None = None,
        *,
        average_speed_kmh: float | None = None,
        time_limit_seconds: int | None = None,
    ) -> None:
        self.client_factory = client_factory if client_factory is not None else (
            OSRMClient if settings.osrm_base_url else None
        )
        self.average_speed_kmh = average_speed_kmh or settings.average_speed_kmh
        self.time_limit_seconds = (
            time_limit_seconds if time_limit_seconds is not None else settings.solver_time_limit_seconds
        )

    async def optimize(
        self,
        stops: Sequence[StopLocation],
        start: Coordinates,
        options: AiOptimizationOptions,
    ) -> RouteOptimizationResult:
        return await asyncio.to_thread(self.optimize_sync, stops, start, options)

    def optimize_sync(
        self,
        stops: Sequence[StopLocation],
        start: Coordinates,
        options: AiOptimizationOptions,
    ) -> RouteOptimizationResult:
        if not stops:
            raise ValueError("Cannot optimize an empty route.")

        coordinates = [(start.lat, start.lng), *[(stop.lat, stop.lng) for stop in stops]]
        table = self._travel_table(coordinates)

        time_limit = self.time_limit_seconds * (2 if options.priority_complex else 1)
        solution = solve_tour(
            table,
            minimize_duration=options.fastest_route and not options.shortest_distance,
            guided_local_search=options.efficiency,
            time_limit_seconds=time_limit,
        )

        route = [
            RoutePoint(
                facility_id=stops[node - 1].facility_id,
                lat=stops[node - 1].lat,
                lng=stops[node - 1].lng,
                sequence=sequence,
            )
            for sequence, node in enumerate(solution.order)
        ]
        return RouteOptimizationResult(
            route=route,
            total_distance_km=round(solution.total_distance_m / 1000.0, 2),
            estimated_duration_min=round(solution.total_duration_s / 60.0, 1),
        )

    def _travel_table(self, coordinates: list[tuple[float, float]]) -> dict:
        if self.client_factory is not None:
            try:
                table = self.client_factory().table(coordinates)
                rate = _unreachable_rate(table)
                if rate <= MAX_UNREACHABLE_RATE:
                    return _fill_unreachable(table, coordinates, self.average_speed_kmh)
                logger.warning(
                    f"Too many unreachable legs from OSRM ({rate * 100:.1f}%). Using haversine fallback."
                )
            except (ConnectionError, ValueError, httpx.HTTPError) as e:
                logger.warning(f"OSRM table request failed: {e}. Using haversine fallback.")
        else:
            logger.info("OSRM not configured - estimating travel from straight-line distances")
        return haversine_table(coordinates, self.average_speed_kmh)
