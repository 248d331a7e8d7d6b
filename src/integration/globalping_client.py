"""Client for the Globalping measurement API.

Creates HTTP measurements from fixed countries via POST /measurements and
reads them back via GET /measurements/{id}. Non-2xx responses become
``RemoteProbeError`` tagged retryable for 5xx and 429, so the caller's retry
policy and circuit breaker can act on them without inspecting messages.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.middleware.error_handler import RemoteProbeError

logger = logging.getLogger(__name__)


class GlobalpingClient:
    """Thin async wrapper over the measurement endpoints.

    Parameters
    ----------
    client:
        Shared ``httpx.AsyncClient``.
    api_url:
        Base URL of the API (e.g. "https://api.globalping.io/v1").
    user_agent:
        User-Agent identifying this service to the API.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_url: str = "https://api.globalping.io/v1",
        user_agent: str = "ReachabilityChecker/1.0",
    ) -> None:
        self._client = client
        self._api_url = api_url.rstrip("/")
        self._headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip",
            "User-Agent": user_agent,
        }

    async def create_measurement(
        self,
        hostname: str,
        *,
        protocol: str,
        countries: list[str],
    ) -> str:
        """Start an HTTP HEAD measurement and return its id.

        Raises
        ------
        RemoteProbeError
            On a non-2xx response or when the response carries no id.
        """
        payload = {
            "type": "http",
            "target": hostname,
            "locations": [{"country": country, "limit": 1} for country in countries],
            "inProgressUpdates": True,
            "measurementOptions": {
                "protocol": protocol,
                "request": {"method": "HEAD", "path": "/"},
            },
        }
        response = await self._client.post(
            f"{self._api_url}/measurements",
            json=payload,
            headers={**self._headers, "Content-Type": "application/json"},
        )
        if not response.is_success:
            raise RemoteProbeError(
                f"Globalping create failed: {response.status_code}",
                upstream_status=response.status_code,
            )

        body = response.json()
        measurement_id = body.get("id") if isinstance(body, dict) else None
        if not measurement_id:
            raise RemoteProbeError("Globalping response missing measurement id", retryable=False)

        logger.debug("Created Globalping measurement %s for %s", measurement_id, hostname)
        return str(measurement_id)

    async def get_measurement(self, measurement_id: str) -> dict[str, Any]:
        """Fetch the current state of a measurement.

        Raises
        ------
        RemoteProbeError
            On a non-2xx response.
        """
        response = await self._client.get(
            f"{self._api_url}/measurements/{measurement_id}",
            headers=self._headers,
        )
        if not response.is_success:
            raise RemoteProbeError(
                f"Globalping poll failed: {response.status_code}",
                upstream_status=response.status_code,
            )
        return response.json()
