"""HTTP client for the gateway's location endpoint."""

from __future__ import annotations

import json

import httpx

from cubemap.core.errors import (
    UpstreamBadStatus,
    UpstreamMalformed,
    UpstreamUnreachable,
)
from cubemap.core.models import LocationRecord


class GatewayClient:
    """Fetches ``/api/cube_location`` and validates the coordinates.

    Returns the raw JSON object (cache annotations included) so the poller
    can see ``cached``/``stale`` flags. Raises an UpstreamError subclass on
    transport failure, non-2xx status, malformed JSON or missing coordinates.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        path: str = "/api/cube_location",
        timeout: float = 30.0,
    ) -> None:
        self._client = client
        self.url = base_url.rstrip("/") + path
        self._timeout = timeout

    async def fetch_location(self) -> dict:
        try:
            resp = await self._client.get(self.url, timeout=self._timeout)
        except httpx.TransportError as exc:
            raise UpstreamUnreachable("Could not reach location gateway",
                                      details=str(exc) or type(exc).__name__) from exc

        if not resp.is_success:
            raise UpstreamBadStatus(resp.status_code, resp.text)

        try:
            payload = resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise UpstreamMalformed("Gateway returned invalid JSON", details=str(exc)) from exc

        # Raises InvalidRecord; the parsed record itself is not needed.
        LocationRecord.from_dict(payload)
        return payload
