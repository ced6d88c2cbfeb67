"""
SparkTraffic Adapter: HTTP client for the SparkTraffic project API.
===================================================================

Wraps the stats, modify and add-project endpoints with retry + backoff.
Failure classification:

- transport errors, timeouts, 429 and 5xx  -> VendorUnavailable (retried first)
- other non-2xx                            -> VendorUnavailable (not retried)
- 2xx with unreadable usage payload        -> VendorDataInvalid
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import date
from typing import Any, Optional

import httpx

from trafficledger.config import settings
from trafficledger.core.errors import VendorDataInvalid, VendorUnavailable
from trafficledger.services.vendors.base import TrafficVendor, VendorUsage

logger = logging.getLogger(__name__)

STATS_PATH = "/get-website-traffic-project-stats"
MODIFY_PATH = "/modify-website-traffic-project"
CREATE_PATH = "/add-website-traffic-project"

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


def _to_int(value: Any) -> int:
    """Lenient integer parse; anything unreadable counts as 0."""
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        pass
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0


def parse_buckets(entries: list) -> dict[str, int]:
    """Flatten ``[{"2024-01-01": 10}, {"2024-01-02": "5"}]`` into a bucket map."""
    buckets: dict[str, int] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        for bucket, value in entry.items():
            buckets[str(bucket)] = buckets.get(str(bucket), 0) + _to_int(value)
    return buckets


class SparkTrafficVendor(TrafficVendor):
    """Async HTTP adapter for SparkTraffic."""

    name = "sparktraffic"

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
    ):
        self._api_key = api_key
        self._base_url = (base_url or settings.sparktraffic_base_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.vendor_timeout_s
        self._attempts = max(1, retries if retries is not None else settings.vendor_retries)
        self._backoff_base = backoff_base if backoff_base is not None else settings.vendor_backoff_base_s

    def _delay(self, attempt: int) -> float:
        if self._backoff_base <= 0:
            return 0.0
        return self._backoff_base * (2 ** attempt) + random.uniform(0, self._backoff_base)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Any:
        """Make an HTTP request with retries and backoff, returning the decoded body."""
        url = f"{self._base_url}{path}"
        headers = {"Content-Type": "application/json", "API_KEY": self._api_key}
        last_error = ""
        last_status = 0

        for attempt in range(self._attempts):
            try:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.request(method, url, params=params, json=json, headers=headers)
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
                last_status = 0
            else:
                last_status = resp.status_code
                if last_status < 400:
                    try:
                        return resp.json()
                    except ValueError as e:
                        raise VendorDataInvalid(
                            detail=f"non-JSON body from {path}",
                            context={"path": path, "status": last_status},
                        ) from e
                last_error = f"HTTP {last_status}"
                if last_status not in RETRYABLE_STATUS:
                    break

            if attempt + 1 < self._attempts:
                delay = self._delay(attempt)
                logger.warning(
                    "SparkTraffic retry %d/%d for %s %s: %s (wait %.1fs)",
                    attempt + 1, self._attempts - 1, method, path, last_error, delay,
                )
                await asyncio.sleep(delay)

        logger.error("SparkTraffic call failed: %s %s: %s", method, path, last_error)
        raise VendorUnavailable(
            detail=f"{method} {path} failed: {last_error}",
            context={"path": path, "status": last_status},
            status_code=last_status,
        )

    async def get_usage(self, project_id: str, from_date: date, to_date: date) -> VendorUsage:
        """GET /get-website-traffic-project-stats"""
        data = await self._request(
            "GET",
            STATS_PATH,
            params={
                "unique_id": project_id,
                "from": from_date.isoformat(),
                "to": to_date.isoformat(),
            },
        )
        if not isinstance(data, dict) or not isinstance(data.get("hits"), list):
            raise VendorDataInvalid(
                detail="stats payload has no hits list",
                context={"project_id": project_id},
            )
        visits = data.get("visits")
        return VendorUsage(
            hits_by_bucket=parse_buckets(data["hits"]),
            visits_by_bucket=parse_buckets(visits) if isinstance(visits, list) else {},
        )

    async def set_speed(self, project_id: str, speed: int) -> None:
        """POST /modify-website-traffic-project"""
        await self._request(
            "POST",
            MODIFY_PATH,
            json={"unique_id": project_id, "speed": int(speed)},
        )
        logger.info("SparkTraffic speed set: project=%s speed=%d", project_id, speed)

    async def create_project(self, payload: dict) -> str:
        """POST /add-website-traffic-project"""
        data = await self._request("POST", CREATE_PATH, json=payload)
        project_id = None
        if isinstance(data, dict):
            project_id = data.get("new-id") or data.get("id")
        if not project_id:
            raise VendorDataInvalid(
                detail="create response carries no project id",
                context={"response": str(data)[:200]},
            )
        return str(project_id)
