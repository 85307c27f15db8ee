from __future__ import annotations

import random
from dataclasses import replace
from datetime import datetime, timezone

import pytest
import requests

from backend.domain.models import MarketSnapshot, WeatherCondition
from backend.repository.market_data_gateway import (
    HttpMarketDataGateway,
    MarketDataUnavailableError,
    SimulatedMarketDataGateway,
    build_market_data_gateway,
)
from backend.utils.config import get_settings


# 2026-10-17 is a Saturday.
SATURDAY_8AM = datetime(2026, 10, 17, 8, 0, tzinfo=timezone.utc)
MONDAY_NOON = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FixedRandom(random.Random):
    def __init__(self, value: float) -> None:
        super().__init__(0)
        self._value = value

    def random(self) -> float:
        return self._value


class FakeResponse:
    def __init__(self, payload=None, status_code: int = 200, invalid_json: bool = False) -> None:
        self._payload = payload
        self.status_code = status_code
        self._invalid_json = invalid_json

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")

    def json(self):
        if self._invalid_json:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    def __init__(self, routes: dict[str, FakeResponse] | None = None, error: Exception | None = None) -> None:
        self.routes = routes or {}
        self.error = error
        self.requests: list[tuple[str, dict | None, float]] = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, params, timeout))
        if self.error is not None:
            raise self.error
        for suffix, response in self.routes.items():
            if url.endswith(suffix):
                return response
        return FakeResponse(status_code=404)


def _settings(**overrides):
    get_settings.cache_clear()
    return replace(get_settings(), **overrides)


def test_simulated_gateway_is_reproducible() -> None:
    settings = _settings()
    first = SimulatedMarketDataGateway(rng=random.Random(4), settings=settings)
    second = SimulatedMarketDataGateway(rng=random.Random(4), settings=settings)

    assert first.get_market_snapshot("t") == second.get_market_snapshot("t")
    assert first.get_competitor_pricing("t") == second.get_competitor_pricing("t")
    assert first.get_weather_conditions("Dubai", SATURDAY_8AM) == second.get_weather_conditions(
        "Dubai", SATURDAY_8AM
    )


def test_competitor_prices_sit_around_reference() -> None:
    gateway = SimulatedMarketDataGateway(rng=random.Random(8), settings=_settings())
    reference = 150.0 * 0.8

    prices = gateway.get_competitor_pricing("trip-x")

    assert len(prices) == 5
    assert all(reference * 0.8 - 0.01 <= price <= reference * 1.2 + 0.01 for price in prices)


def test_event_impact_combines_weekend_and_peak() -> None:
    quiet = SimulatedMarketDataGateway(rng=FixedRandom(0.5), settings=_settings())
    eventful = SimulatedMarketDataGateway(rng=FixedRandom(0.05), settings=_settings())

    assert quiet.get_event_impact("Dubai", SATURDAY_8AM) == 45.0
    assert quiet.get_event_impact("Dubai", MONDAY_NOON) == 0.0
    assert eventful.get_event_impact("Dubai", SATURDAY_8AM) == 85.0


def test_registered_trip_is_returned() -> None:
    gateway = SimulatedMarketDataGateway(rng=random.Random(1), settings=_settings())
    default_trip = gateway.get_trip_data("trip-1")
    custom = replace(default_trip, distance_km=12.0, origin="Sharjah")
    gateway.register_trip(custom)

    assert gateway.get_trip_data("trip-1") == custom
    assert default_trip.distance_km == 150.0


def test_http_gateway_parses_payloads() -> None:
    session = FakeSession(
        routes={
            "/trips/t1": FakeResponse(
                {
                    "id": "t1",
                    "from": "Dubai",
                    "to": "Abu Dhabi",
                    "distance": 140,
                    "duration": 85,
                    "departure_time": "2026-10-17T09:00:00",
                }
            ),
            "/trips/t1/market": FakeResponse(
                {
                    "active_trips": 4,
                    "waiting_passengers": 9,
                    "available_drivers": 3,
                    "recent_bookings": 22,
                }
            ),
            "/trips/t1/competitors": FakeResponse({"prices": [100, 110.5]}),
            "/weather": FakeResponse({"condition": "RAIN", "temperature": 19.5}),
        }
    )
    gateway = HttpMarketDataGateway(settings=_settings(gateway_timeout_seconds=1.5), session=session)

    trip = gateway.get_trip_data("t1")
    assert trip.departure_time.tzinfo is timezone.utc
    assert trip.distance_km == 140.0
    assert gateway.get_market_snapshot("t1") == MarketSnapshot(4, 9, 3, 22, 0.0)
    assert gateway.get_competitor_pricing("t1") == [100.0, 110.5]
    assert gateway.get_weather_conditions("Dubai", SATURDAY_8AM) == (WeatherCondition.RAIN, 19.5)
    assert all(timeout == 1.5 for _, _, timeout in session.requests)


def test_http_gateway_maps_failures_to_unavailable() -> None:
    settings = _settings()
    down = HttpMarketDataGateway(settings=settings, session=FakeSession(error=requests.ConnectionError("refused")))
    broken = HttpMarketDataGateway(
        settings=settings,
        session=FakeSession(routes={"/events/impact": FakeResponse(invalid_json=True)}),
    )
    malformed = HttpMarketDataGateway(
        settings=settings,
        session=FakeSession(routes={"/weather/impact": FakeResponse({"unexpected": 1})}),
    )

    with pytest.raises(MarketDataUnavailableError):
        down.get_market_snapshot("t1")
    with pytest.raises(MarketDataUnavailableError):
        broken.get_event_impact("Dubai", SATURDAY_8AM)
    with pytest.raises(MarketDataUnavailableError):
        malformed.get_weather_impact("Dubai", SATURDAY_8AM)
    with pytest.raises(MarketDataUnavailableError):
        malformed.get_trip_data("t404")


def test_gateway_factory_honours_mode() -> None:
    assert isinstance(build_market_data_gateway(_settings(gateway_mode="simulated")), SimulatedMarketDataGateway)
    assert isinstance(build_market_data_gateway(_settings(gateway_mode="http")), HttpMarketDataGateway)
