"""
Read-only access to APM metrics for the super-admin performance routes.

Collection and storage live in a separate service; this app only reads
through ``MetricsReader``. ``HttpMetricsReader`` talks to that service over
HTTP, ``NullMetricsReader`` is used when no APM endpoint is configured.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import requests

logger = logging.getLogger(__name__)

TIME_RANGES = ("1h", "24h", "7d", "30d")
REAL_TIME_RANGES = ("1h", "24h")


class MetricsUnavailable(Exception):
    """Raised when the APM read API cannot be reached or answers badly."""


class MetricsReader(Protocol):
    def get_historical_metrics(self, time_range: str) -> dict[str, Any]: ...

    def get_real_time_metrics(self, time_range: str) -> dict[str, Any]: ...


class NullMetricsReader:
    def get_historical_metrics(self, time_range: str) -> dict[str, Any]:
        return {"timeRange": time_range, "summary": {}, "series": []}

    def get_real_time_metrics(self, time_range: str) -> dict[str, Any]:
        return {"timeRange": time_range, "requests": 0, "errors": 0, "avgResponseTimeMs": None}


class HttpMetricsReader:
    def __init__(self, base_url: str, timeout_seconds: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds

    def _get(self, path: str, time_range: str) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            resp = requests.get(url, params={"timeRange": time_range}, timeout=self._timeout)
        except requests.RequestException as exc:
            logger.warning("APM request failed url=%s error=%s", url, type(exc).__name__)
            raise MetricsUnavailable(str(exc)) from exc

        if resp.status_code != 200:
            logger.warning("APM returned status=%s url=%s", resp.status_code, url)
            raise MetricsUnavailable(f"APM returned status {resp.status_code}")
        return resp.json()

    def get_historical_metrics(self, time_range: str) -> dict[str, Any]:
        return self._get("/metrics/historical", time_range)

    def get_real_time_metrics(self, time_range: str) -> dict[str, Any]:
        return self._get("/metrics/real-time", time_range)


def build_metrics_reader(base_url: str | None, timeout_seconds: float = 10.0) -> MetricsReader:
    if not base_url:
        return NullMetricsReader()
    return HttpMetricsReader(base_url, timeout_seconds=timeout_seconds)
