"""OSRM table client used to price the legs between the start location and the stops."""

from __future__ import annotations

import logging
import time
from typing import Sequence

import httpx

from ...config import settings

logger = logging.getLogger(__name__)

# Coordinates are (lat, lng); OSRM wants lng,lat.
Coordinate = tuple[float, float]


def _coordinate_path(coordinates: Sequence[Coordinate]) -> str:
    return ";".join(f"{lng},{lat}" for lat, lng in coordinates)


def _check_table(data: dict, expected_size: int) -> dict:
    code = data.get("code", "Ok")
    if code != "Ok":
        raise ValueError(f"OSRM table request failed: {data.get('message', code)}")
    for key in ("durations", "distances"):
        matrix = data.get(key)
        if not isinstance(matrix, list) or len(matrix) != expected_size:
            raise ValueError(f"OSRM response has no usable '{key}' matrix for {expected_size} coordinates.")
    return data


class OSRMClient:
    """Synchronous client; the optimizer runs it in a worker thread.

    Timeouts, connection failures and 5xx/4xx answers (other than 414) are
    retried ``max_retries`` times with exponential backoff.
    """

    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        base = base_url or settings.osrm_base_url
        if not base:
            raise ValueError("OSRM base URL is not configured.")
        self.base_url = base.rstrip("/")
        self.profile = profile or settings.osrm_profile
        self.timeout = settings.osrm_timeout_seconds if timeout is None else timeout
        self.max_retries = settings.osrm_max_retries if max_retries is None else max_retries
        self.backoff_seconds = settings.osrm_backoff_seconds if backoff_seconds is None else backoff_seconds
        self._transport = transport

    def table(self, coordinates: Sequence[Coordinate]) -> dict:
        """Duration (s) and distance (m) matrices for every pair of coordinates."""
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for an OSRM table.")
        url = f"{self.base_url}/table/v1/{self.profile}/{_coordinate_path(coordinates)}"
        data = self._get_json(url, {"annotations": "duration,distance"}, len(coordinates))
        return _check_table(data, len(coordinates))

    def _get_json(self, url: str, params: dict, size: int) -> dict:
        with httpx.Client(timeout=httpx.Timeout(self.timeout, connect=10.0), transport=self._transport) as client:
            attempt = 0
            while True:
                last_try = attempt >= self.max_retries
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    return response.json()
                except httpx.HTTPStatusError as e:
                    if e.response.status_code == 414:
                        raise ValueError(f"OSRM request URL too large ({size} coordinates).") from e
                    if last_try:
                        raise
                    logger.debug(f"OSRM answered {e.response.status_code}, retrying (attempt {attempt + 1})")
                except httpx.TimeoutException as e:
                    if last_try:
                        logger.warning(f"OSRM table request timed out after {attempt + 1} attempts: {e}")
                        raise
                    logger.debug(f"OSRM request timed out, retrying (attempt {attempt + 1})")
                except httpx.NetworkError as e:
                    if last_try:
                        raise ConnectionError(f"Failed to connect to OSRM service at {self.base_url}: {e}") from e
                    logger.debug(f"OSRM network error, retrying (attempt {attempt + 1}): {e}")
                time.sleep(self.backoff_seconds * (2 ** attempt))
                attempt += 1


def check_health(base_url: str | None = None) -> bool:
    """True when OSRM answers a two-point table request."""
    base = base_url or settings.osrm_base_url
    if not base:
        return False
    try:
        OSRMClient(base_url=base, max_retries=0, timeout=5.0).table([(9.0765, 7.3986), (9.0579, 7.4951)])
    except (httpx.HTTPError, ValueError, ConnectionError):
        return False
    return True
