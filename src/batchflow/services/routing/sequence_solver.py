"""OR-Tools visit-order optimization for a single delivery vehicle.

The start location sits at matrix index 0 and the stops at 1..n. The tour
leaves the start, visits every stop once and returns to the start; the
return leg is included in the totals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ortools.constraint_solver import pywrapcp, routing_enums_pb2

logger = logging.getLogger(__name__)

# Unreachable legs (None in the OSRM table) cost this much instead of 0.
LARGE_PENALTY = 999999999


@dataclass(slots=True, frozen=True)
class TourSolution:
    order: list[int]
    total_distance_m: float
    total_duration_s: float
    solved: bool


def prepare_matrices(osrm_table: dict) -> tuple[list[list[int]], list[list[int]]]:
    """Return integer (duration, distance) matrices from an OSRM-shaped table."""
    durations = osrm_table.get("durations")
    distances = osrm_table.get("distances")
    if durations is None or distances is None:
        raise ValueError("OSRM table response missing durations or distances.")
    if len(durations) != len(distances):
        raise ValueError(f"Matrix size mismatch: durations={len(durations)}, distances={len(distances)}")

    duration_matrix = [[int(value) if value is not None else LARGE_PENALTY for value in row] for row in durations]
    distance_matrix = [[int(value) if value is not None else LARGE_PENALTY for value in row] for row in distances]
    for index in range(len(duration_matrix)):
        duration_matrix[index][index] = 0
        distance_matrix[index][index] = 0
    return duration_matrix, distance_matrix


def _tour_totals(order: list[int], duration_matrix: list[list[int]], distance_matrix: list[list[int]]) -> tuple[float, float]:
    path = [0, *order, 0]
    distance = sum(distance_matrix[a][b] for a, b in zip(path, path[1:]))
    duration = sum(duration_matrix[a][b] for a, b in zip(path, path[1:]))
    return float(distance), float(duration)


def solve_tour(
    osrm_table: dict,
    *,
    minimize_duration: bool = False,
    guided_local_search: bool = False,
    time_limit_seconds: int = 5,
) -> TourSolution:
    """Find a short closed tour from index 0 through every other index."""
    duration_matrix, distance_matrix = prepare_matrices(osrm_table)
    size = len(distance_matrix)
    if size < 2:
        raise ValueError("At least one stop besides the start location is required.")

    cost_matrix = duration_matrix if minimize_duration else distance_matrix
    manager = pywrapcp.RoutingIndexManager(size, 1, 0)
    routing = pywrapcp.RoutingModel(manager)

    def cost_callback(from_index: int, to_index: int) -> int:
        return cost_matrix[manager.IndexToNode(from_index)][manager.IndexToNode(to_index)]

    transit_callback_index = routing.RegisterTransitCallback(cost_callback)
    routing.SetArcCostEvaluatorOfAllVehicles(transit_callback_index)

    search_parameters = pywrapcp.DefaultRoutingSearchParameters()
    search_parameters.first_solution_strategy = routing_enums_pb2.FirstSolutionStrategy.PATH_CHEAPEST_ARC
    if guided_local_search:
        search_parameters.local_search_metaheuristic = (
            routing_enums_pb2.LocalSearchMetaheuristic.GUIDED_LOCAL_SEARCH
        )
        # Guided local search only stops on the time limit.
        search_parameters.time_limit.FromSeconds(max(1, time_limit_seconds))
    elif time_limit_seconds > 0:
        search_parameters.time_limit.FromSeconds(time_limit_seconds)

    assignment = routing.SolveWithParameters(search_parameters)
    if not assignment:
        logger.warning(f"Could not solve tour over {size - 1} stops, keeping the given order")
        order = list(range(1, size))
        distance, duration = _tour_totals(order, duration_matrix, distance_matrix)
        return TourSolution(order=order, total_distance_m=distance, total_duration_s=duration, solved=False)

    order: list[int] = []
    index = routing.Start(0)
    while not routing.IsEnd(index):
        node = manager.IndexToNode(index)
        if node != 0:
            order.append(node)
        index = assignment.Value(routing.NextVar(index))

    distance, duration = _tour_totals(order, duration_matrix, distance_matrix)
    return TourSolution(order=order, total_distance_m=distance, total_duration_s=duration, solved=True)
