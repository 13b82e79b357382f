"""Reverse geocoding for the location label stored on new records."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import RLock
from typing import Callable, Dict, Optional, Protocol
from urllib.parse import urljoin

import requests

from .errors import GeocodingError
from .schemas import LOCATION_UNAVAILABLE

logger = logging.getLogger(__name__)

DEFAULT_MIN_INTERVAL = 2.0
DEFAULT_CACHE_TTL = 3600.0


class Geocoder(Protocol):
    def __call__(self, latitude: float, longitude: float) -> Optional[str]: ...


def coordinate_key(latitude: float, longitude: float) -> str:
    """Cache key with 3 decimal places, roughly a 111m grid."""
    return f"{round(latitude, 3)},{round(longitude, 3)}"


@dataclass(slots=True)
class _CachedAddress:
    address: str
    stored_at: float


class LocationResolver:
    """Caches addresses per coordinate cell and throttles geocoder calls.

    A lookup that misses the cache while the previous request is less than
    ``min_interval`` seconds old is skipped and yields ``None``. Lookups are
    serialized, so concurrent callers cannot both pass the interval check.
    """

    def __init__(
        self,
        geocoder: Geocoder,
        *,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.geocoder = geocoder
        self.min_interval = min_interval
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._lock = RLock()
        self._cache: Dict[str, _CachedAddress] = {}
        self._last_request: Optional[float] = None

    def cached(self, latitude: float, longitude: float) -> Optional[str]:
        key = coordinate_key(latitude, longitude)
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if self._clock() - entry.stored_at <= self.cache_ttl:
                return entry.address
            del self._cache[key]
            return None

    def can_request(self) -> bool:
        with self._lock:
            if self._last_request is None:
                return True
            return self._clock() - self._last_request >= self.min_interval

    def resolve(self, latitude: float, longitude: float) -> Optional[str]:
        with self._lock:
            return self._resolve_locked(latitude, longitude)

    def _resolve_locked(self, latitude: float, longitude: float) -> Optional[str]:
        address = self.cached(latitude, longitude)
        if address is not None:
            return address
        if not self.can_request():
            logger.debug("Skipping geocoding of %s, rate limited", coordinate_key(latitude, longitude))
            return None
        self._last_request = self._clock()
        try:
            address = self.geocoder(latitude, longitude)
        except GeocodingError as exc:
            logger.warning("Geocoding failed: %s", exc)
            return None
        if not address:
            return None
        self._cache[coordinate_key(latitude, longitude)] = _CachedAddress(address, self._clock())
        return address

    def label_for(self, latitude: Optional[float], longitude: Optional[float]) -> str:
        if latitude is None or longitude is None:
            return LOCATION_UNAVAILABLE
        return self.resolve(latitude, longitude) or LOCATION_UNAVAILABLE


class NominatimGeocoder:
    """Reverse geocoder backed by an OpenStreetMap Nominatim instance."""

    ADDRESS_PARTS = (
        ("road", "pedestrian", "neighbourhood"),
        ("city", "town", "village", "municipality"),
        ("state", "county"),
        ("country",),
    )

    def __init__(self, base_url: str, user_agent: str, timeout: int = 10) -> None:
        self.base_url = base_url.rstrip("/") + "/"
        self.user_agent = user_agent
        self.timeout = timeout

    def __call__(self, latitude: float, longitude: float) -> Optional[str]:
        url = urljoin(self.base_url, "reverse")
        params = {"format": "jsonv2", "lat": latitude, "lon": longitude, "addressdetails": 1}
        headers = {"Accept": "application/json", "User-Agent": self.user_agent}
        try:
            response = requests.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise GeocodingError(str(exc)) from exc
        if response.status_code >= 400:
            raise GeocodingError(f"Geocoder error {response.status_code}: {response.text}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise GeocodingError("Geocoder returned invalid JSON") from exc
        if not isinstance(payload, dict) or "error" in payload:
            raise GeocodingError(f"Geocoder returned no address: {payload}")
        return self.format_address(payload.get("address") or {})

    @classmethod
    def format_address(cls, address: Dict[str, str]) -> Optional[str]:
        parts = []
        for candidates in cls.ADDRESS_PARTS:
            value = next((address[name] for name in candidates if address.get(name)), None)
            if value:
                parts.append(value)
        return ", ".join(parts) or None


def null_geocoder(latitude: float, longitude: float) -> Optional[str]:
    return None


__all__ = [
    "Geocoder",
    "LocationResolver",
    "NominatimGeocoder",
    "coordinate_key",
    "null_geocoder",
]
