"""Upstream interface (port) for fetching the current location."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from cubemap.core.models import LocationRecord


class LocationSource(Protocol):
    """Port: produces the tracked object's current location.

    Implementations raise an UpstreamError subclass on any failure.
    """

    @property
    def url(self) -> str: ...

    async def fetch(self) -> LocationRecord: ...
