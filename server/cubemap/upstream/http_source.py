"""HTTP implementation of LocationSource backed by httpx."""

from __future__ import annotations

import json

import httpx
import structlog

from cubemap.core.errors import (
    UpstreamBadStatus,
    UpstreamMalformed,
    UpstreamUnreachable,
)
from cubemap.core.models import LocationRecord

log = structlog.get_logger()


class HttpLocationSource:
    """Fetches the location JSON from the upstream GPS API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        location_path: str = "/api/v1/gps/location.json",
        read_timeout: float = 30.0,
    ) -> None:
        self._client = client
        self._url = base_url.rstrip("/") + "/" + location_path.lstrip("/")
        self._timeout = httpx.Timeout(10.0, read=read_timeout)

    @property
    def url(self) -> str:
        return self._url

    async def fetch(self) -> LocationRecord:
        try:
            resp = await self._client.get(self._url, timeout=self._timeout)
        except httpx.TransportError as exc:
            log.warning("upstream_unreachable", url=self._url, error=str(exc))
            raise UpstreamUnreachable("Could not connect to location API",
                                      details=str(exc) or type(exc).__name__) from exc

        if resp.status_code != 200:
            log.warning("upstream_bad_status", url=self._url, status=resp.status_code)
            raise UpstreamBadStatus(resp.status_code, resp.text)

        try:
            payload = resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            log.warning("upstream_malformed", url=self._url, error=str(exc))
            raise UpstreamMalformed("Location API returned invalid JSON",
                                    details=str(exc)) from exc

        return LocationRecord.from_dict(payload)
