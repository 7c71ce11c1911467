"""Geolocation providers used to stamp each punch."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional, Protocol

import aiohttp

from .config import Settings
from .errors import LocationDenied, LocationUnavailable
from .logger import debug_detail
from .models import LocationReading


class GeolocationProvider(Protocol):
    """Grant or refuse location access and produce a single fix."""

    async def request_permission(self) -> bool:
        """Return True when location access is granted."""

    async def get_current_position(self) -> LocationReading:
        """Return one current position or raise :class:`LocationUnavailable`."""


class FixedLocationProvider:
    """Report a configured position, e.g. a desk workstation at the office."""

    def __init__(self, latitude: Optional[float], longitude: Optional[float]) -> None:
        self._latitude = latitude
        self._longitude = longitude

    async def request_permission(self) -> bool:
        return True

    async def get_current_position(self) -> LocationReading:
        if self._latitude is None or self._longitude is None:
            raise LocationUnavailable(
                "No fixed location configured (set PUNCHCLOCK_LATITUDE and PUNCHCLOCK_LONGITUDE)"
            )
        return LocationReading(
            latitude=self._latitude,
            longitude=self._longitude,
            timestamp=datetime.now(tz=timezone.utc),
        )


class DeniedLocationProvider:
    """Behaves like a device whose user refused the location prompt."""

    async def request_permission(self) -> bool:
        return False

    async def get_current_position(self) -> LocationReading:
        raise LocationDenied()


class IpLocationProvider:
    """Resolve a coarse position from a geo-IP JSON endpoint."""

    def __init__(self, url: str, *, timeout: float = 10.0) -> None:
        self._url = url
        self._timeout = timeout

    async def request_permission(self) -> bool:
        return True

    async def get_current_position(self) -> LocationReading:
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self._url) as response:
                    if response.status != 200:
                        raise LocationUnavailable(f"Geo-IP lookup failed with HTTP {response.status}")
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise LocationUnavailable(f"Geo-IP lookup failed: {exc}") from exc

        if not isinstance(data, dict):
            raise LocationUnavailable("Geo-IP lookup returned an unexpected payload")
        lat = data.get("lat", data.get("latitude"))
        lon = data.get("lon", data.get("longitude"))
        try:
            return LocationReading(
                latitude=float(lat),
                longitude=float(lon),
                timestamp=datetime.now(tz=timezone.utc),
            )
        except (TypeError, ValueError) as exc:
            raise LocationUnavailable("Geo-IP lookup did not include coordinates") from exc


async def acquire_location(
    provider: GeolocationProvider, timeout: Optional[float] = None
) -> LocationReading:
    """Request permission and take one reading, bounded by ``timeout`` seconds."""

    async def _acquire() -> LocationReading:
        granted = await provider.request_permission()
        debug_detail(f"Location permission granted: {granted}")
        if not granted:
            raise LocationDenied()
        reading = await provider.get_current_position()
        debug_detail(f"Retrieved current position: {reading.latitude}, {reading.longitude}")
        return reading

    try:
        return await asyncio.wait_for(_acquire(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise LocationUnavailable("Timed out waiting for a location fix") from exc


def build_location_provider(settings: Settings) -> GeolocationProvider:
    if settings.location_mode == "deny":
        return DeniedLocationProvider()
    if settings.location_mode == "ip":
        return IpLocationProvider(settings.geoip_url, timeout=settings.location_timeout)
    return FixedLocationProvider(settings.latitude, settings.longitude)
