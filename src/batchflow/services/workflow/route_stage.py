"""Holds the optimized stop sequence and its distance/duration."""

from __future__ import annotations

import logging
from typing import Callable, Protocol, Sequence

from ...models.domain import AiOptimizationOptions, Coordinates, RouteOptimizationResult, RoutePoint, StopLocation
from .errors import ExternalCallFailed

logger = logging.getLogger(__name__)


class RouteOptimizer(Protocol):
    async def optimize(
        self,
        stops: Sequence[StopLocation],
        start: Coordinates,
        options: AiOptimizationOptions,
    ) -> RouteOptimizationResult:
        ...


def ensure_permutation(route: Sequence[RoutePoint], facility_ids: Sequence[str]) -> None:
    """Raise ValueError unless ``route`` visits every facility exactly once."""
    visited = [point.facility_id for point in route]
    if len(visited) != len(set(visited)):
        raise ValueError("Route visits a facility more than once.")
    if set(visited) != set(facility_ids) or len(visited) != len(facility_ids):
        missing = sorted(set(facility_ids) - set(visited))
        extra = sorted(set(visited) - set(facility_ids))
        raise ValueError(f"Route does not match the working set (missing={missing}, unexpected={extra}).")


class RouteStage:
    def __init__(self) -> None:
        self.optimized_route: tuple[RoutePoint, ...] = ()
        self.total_distance_km: float | None = None
        self.estimated_duration_min: float | None = None

    @property
    def is_optimized(self) -> bool:
        return bool(self.optimized_route)

    def set_route(
        self,
        route: Sequence[RoutePoint],
        total_distance_km: float | None,
        estimated_duration_min: float | None,
    ) -> None:
        self.optimized_route = tuple(
            RoutePoint(facility_id=point.facility_id, lat=point.lat, lng=point.lng, sequence=index)
            for index, point in enumerate(sorted(route, key=lambda point: point.sequence))
        )
        self.total_distance_km = total_distance_km
        self.estimated_duration_min = estimated_duration_min

    def invalidate(self) -> None:
        self.optimized_route = ()
        self.total_distance_km = None
        self.estimated_duration_min = None

    async def optimize(
        self,
        optimizer: RouteOptimizer,
        stops: Sequence[StopLocation],
        start: Coordinates,
        options: AiOptimizationOptions,
        current_facility_ids: Callable[[], Sequence[str]] | None = None,
    ) -> RouteOptimizationResult:
        """Run the optimizer and replace the stored route only if the result is usable.

        ``current_facility_ids`` is read after the call resolves; when the
        stops changed while the request was in flight the result is stale
        and is rejected like any other failure.
        """
        try:
            result = await optimizer.optimize(stops, start, options)
            ensure_permutation(result.route, [stop.facility_id for stop in stops])
            if current_facility_ids is not None:
                ensure_permutation(result.route, current_facility_ids())
        except Exception as exc:
            logger.warning(f"Route optimization failed for {len(stops)} stops: {exc}")
            raise ExternalCallFailed("optimize", exc) from exc

        self.set_route(result.route, result.total_distance_km, result.estimated_duration_min)
        logger.info(
            f"Route optimized: {len(result.route)} stops, "
            f"{result.total_distance_km} km, {result.estimated_duration_min} min"
        )
        return result
