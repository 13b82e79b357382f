from __future__ import annotations

import threading
import time
from typing import List, Optional, Tuple

import pytest
import requests

from workhours.errors import GeocodingError
from workhours.location import LocationResolver, NominatimGeocoder, coordinate_key
from workhours.schemas import LOCATION_UNAVAILABLE


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingGeocoder:
    def __init__(self, address: Optional[str] = "Unter den Linden, Berlin, Germany") -> None:
        self.address = address
        self.calls: List[Tuple[float, float]] = []

    def __call__(self, latitude: float, longitude: float) -> Optional[str]:
        self.calls.append((latitude, longitude))
        return self.address


class FailingGeocoder:
    def __call__(self, latitude: float, longitude: float) -> Optional[str]:
        raise GeocodingError("service unavailable")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


def test_coordinate_key_rounds_to_three_decimals() -> None:
    assert coordinate_key(52.52001, 13.40499) == coordinate_key(52.52004, 13.40501)
    assert coordinate_key(52.52001, 13.40499) != coordinate_key(52.5215, 13.405)


def test_cached_address_is_reused_within_ttl(clock: FakeClock) -> None:
    geocoder = RecordingGeocoder()
    resolver = LocationResolver(geocoder, clock=clock)

    assert resolver.resolve(52.52001, 13.40499) == geocoder.address
    clock.advance(10)
    assert resolver.resolve(52.52004, 13.40501) == geocoder.address
    assert len(geocoder.calls) == 1


def test_expired_cache_entry_triggers_new_lookup(clock: FakeClock) -> None:
    geocoder = RecordingGeocoder()
    resolver = LocationResolver(geocoder, clock=clock, cache_ttl=3600)

    resolver.resolve(48.137, 11.575)
    clock.advance(3601)
    assert resolver.cached(48.137, 11.575) is None
    assert resolver.resolve(48.137, 11.575) == geocoder.address
    assert len(geocoder.calls) == 2


def test_requests_are_throttled(clock: FakeClock) -> None:
    geocoder = RecordingGeocoder()
    resolver = LocationResolver(geocoder, clock=clock, min_interval=2.0)

    resolver.resolve(48.137, 11.575)
    clock.advance(1.5)
    assert resolver.resolve(50.110, 8.682) is None
    assert len(geocoder.calls) == 1

    clock.advance(0.5)
    assert resolver.resolve(50.110, 8.682) == geocoder.address
    assert len(geocoder.calls) == 2


def test_geocoder_failure_yields_placeholder(clock: FakeClock) -> None:
    resolver = LocationResolver(FailingGeocoder(), clock=clock)
    assert resolver.resolve(48.137, 11.575) is None
    clock.advance(5)
    assert resolver.label_for(48.137, 11.575) == LOCATION_UNAVAILABLE


def test_label_without_coordinates(clock: FakeClock) -> None:
    geocoder = RecordingGeocoder()
    resolver = LocationResolver(geocoder, clock=clock)
    assert resolver.label_for(None, 11.575) == LOCATION_UNAVAILABLE
    assert geocoder.calls == []


def test_empty_address_is_not_cached(clock: FakeClock) -> None:
    geocoder = RecordingGeocoder(address=None)
    resolver = LocationResolver(geocoder, clock=clock)
    assert resolver.resolve(48.137, 11.575) is None
    assert resolver.cached(48.137, 11.575) is None


class FakeResponse:
    def __init__(self, status_code: int, payload: object) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = str(payload)

    def json(self) -> object:
        return self._payload


def test_nominatim_formats_address(monkeypatch) -> None:
    captured = {}

    def fake_get(url, params=None, headers=None, timeout=None):
        captured.update(url=url, params=params, headers=headers, timeout=timeout)
        return FakeResponse(
            200,
            {
                "address": {
                    "road": "Marienplatz",
                    "city": "München",
                    "state": "Bayern",
                    "country": "Deutschland",
                    "postcode": "80331",
                }
            },
        )

    monkeypatch.setattr(requests, "get", fake_get)
    geocoder = NominatimGeocoder("https://geo.example.org/", "workhours-tests", timeout=3)
    assert geocoder(48.137, 11.575) == "Marienplatz, München, Bayern, Deutschland"
    assert captured["url"] == "https://geo.example.org/reverse"
    assert captured["params"]["lat"] == 48.137
    assert captured["headers"]["User-Agent"] == "workhours-tests"
    assert captured["timeout"] == 3


def test_nominatim_falls_back_to_smaller_localities() -> None:
    assert NominatimGeocoder.format_address({"village": "Kleinkleckersdorf", "country": "Deutschland"}) == (
        "Kleinkleckersdorf, Deutschland"
    )
    assert NominatimGeocoder.format_address({}) is None


def test_nominatim_http_error_raises(monkeypatch) -> None:
    monkeypatch.setattr(requests, "get", lambda *args, **kwargs: FakeResponse(503, "busy"))
    with pytest.raises(GeocodingError):
        NominatimGeocoder("https://geo.example.org", "tests")(1.0, 2.0)


def test_nominatim_error_payload_raises(monkeypatch) -> None:
    monkeypatch.setattr(requests, "get", lambda *args, **kwargs: FakeResponse(200, {"error": "Unable to geocode"}))
    with pytest.raises(GeocodingError):
        NominatimGeocoder("https://geo.example.org", "tests")(0.0, 0.0)


def test_nominatim_transport_error_raises(monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(requests, "get", boom)
    with pytest.raises(GeocodingError):
        NominatimGeocoder("https://geo.example.org", "tests")(1.0, 2.0)


def test_concurrent_lookups_respect_interval(clock: FakeClock) -> None:
    entered = threading.Event()
    calls: List[Tuple[float, float]] = []

    def slow_geocoder(latitude: float, longitude: float) -> Optional[str]:
        calls.append((latitude, longitude))
        entered.set()
        time.sleep(0.05)
        return "Somewhere"

    resolver = LocationResolver(slow_geocoder, clock=clock, min_interval=2.0)
    results: List[Optional[str]] = []
    first = threading.Thread(target=lambda: results.append(resolver.resolve(48.137, 11.575)))
    first.start()
    entered.wait(timeout=1)
    second = threading.Thread(target=lambda: results.append(resolver.resolve(50.110, 8.682)))
    second.start()
    first.join()
    second.join()

    assert len(calls) == 1
    assert len(results) == 2
    assert set(results) == {"Somewhere", None}
