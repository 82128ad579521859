"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Sequence

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def haversine_table(coordinates: Sequence[tuple[float, float]], speed_kmh: float) -> dict:
    """Build an OSRM-shaped table (meters / seconds) from straight-line distances."""

    n = len(coordinates)
    durations: list[list[float]] = [[0.0] * n for _ in range(n)]
    distances: list[list[float]] = [[0.0] * n for _ in range(n)]
    for i in range(n):
        for j in range(n):
            if i == j:
                continue
            lat1, lon1 = coordinates[i]
            lat2, lon2 = coordinates[j]
            distance_km = haversine_km(lat1, lon1, lat2, lon2)
            distances[i][j] = distance_km * 1000.0
            durations[i][j] = (distance_km / speed_kmh) * 3600.0
    return {"durations": durations, "distances": distances}
