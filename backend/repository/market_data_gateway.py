"""Market data sources consumed by the demand and pricing services.

Two implementations share the ``MarketDataGateway`` protocol:

* ``SimulatedMarketDataGateway`` fabricates plausible market conditions from an
  injected random source, so a fixed seed reproduces the same market.
* ``HttpMarketDataGateway`` queries a remote market-data service. Every call is
  bounded by the configured timeout and any transport or payload problem is
  surfaced as ``MarketDataUnavailableError``.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol

import requests

from backend.domain.models import (
    MarketSnapshot,
    TripData,
    WeatherCondition,
    day_of_week,
    is_weekend_day,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

Clock = Callable[[], datetime]

WEATHER_PRICE_IMPACT = {
    WeatherCondition.CLEAR: 0.0,
    WeatherCondition.CLOUDY: 5.0,
    WeatherCondition.RAIN: 15.0,
    WeatherCondition.STORM: 30.0,
    WeatherCondition.FOG: 10.0,
}

COMPETITOR_SAMPLE_SIZE = 5


class MarketDataUnavailableError(Exception):
    """Raised when a market data query fails or times out."""


class MarketDataGateway(Protocol):
    def get_trip_data(self, trip_id: str) -> TripData: ...

    def get_market_snapshot(self, trip_id: str) -> MarketSnapshot: ...

    def get_weather_impact(self, location: str, at: datetime) -> float: ...

    def get_weather_conditions(self, location: str, at: datetime) -> tuple[WeatherCondition, float]: ...

    def get_event_impact(self, location: str, at: datetime) -> float: ...

    def get_competitor_pricing(self, trip_id: str) -> list[float]: ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_peak_hour(hour: int) -> bool:
    return 7 <= hour <= 9 or 17 <= hour <= 19


class SimulatedMarketDataGateway:
    """In-process stand-in for the live market feeds."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._rng = rng or random.Random(self._settings.random_seed)
        self._clock = clock or _utc_now
        self._trips: dict[str, TripData] = {}

    def register_trip(self, trip: TripData) -> None:
        self._trips[trip.trip_id] = trip

    def get_trip_data(self, trip_id: str) -> TripData:
        trip = self._trips.get(trip_id)
        if trip is not None:
            return trip
        departure = (self._clock() + timedelta(hours=1)).replace(second=0, microsecond=0)
        return TripData(
            trip_id=trip_id,
            origin="Dubai",
            destination="Abu Dhabi",
            distance_km=150.0,
            duration_minutes=90.0,
            departure_time=departure,
            vehicle_type="sedan",
        )

    def get_market_snapshot(self, trip_id: str) -> MarketSnapshot:
        return MarketSnapshot(
            active_trips=self._rng.randint(5, 24),
            waiting_passengers=self._rng.randint(5, 24),
            available_drivers=self._rng.randint(3, 17),
            recent_bookings=self._rng.randint(10, 59),
            average_wait_minutes=float(self._rng.randint(5, 19)),
        )

    def get_weather_conditions(self, location: str, at: datetime) -> tuple[WeatherCondition, float]:
        condition = self._rng.choice(list(WeatherCondition))
        temperature = round(20.0 + self._rng.random() * 20.0, 1)
        return condition, temperature

    def get_weather_impact(self, location: str, at: datetime) -> float:
        condition, _ = self.get_weather_conditions(location, at)
        return WEATHER_PRICE_IMPACT[condition]

    def get_event_impact(self, location: str, at: datetime) -> float:
        impact = 0.0
        if is_weekend_day(day_of_week(at)):
            impact += 25.0
        if is_peak_hour(at.hour):
            impact += 20.0
        # Roughly one in ten slots carries a concert, match or similar.
        if self._rng.random() < 0.1:
            impact += 40.0
        return min(100.0, impact)

    def get_competitor_pricing(self, trip_id: str) -> list[float]:
        reference = self.get_trip_data(trip_id).distance_km * self._settings.pricing_reference_price_per_km
        prices = []
        for _ in range(COMPETITOR_SAMPLE_SIZE):
            variation = (self._rng.random() - 0.5) * 0.4
            prices.append(round(reference * (1 + variation), 2))
        return prices


class HttpMarketDataGateway:
    """Gateway backed by a JSON market-data service."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._base_url = self._settings.gateway_base_url.rstrip("/")
        self._timeout = self._settings.gateway_timeout_seconds
        self._session = session or requests.Session()

    def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.get(url, params=params, timeout=self._timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as exc:
            logger.warning("Market data request failed | url=%s | error=%s", url, exc)
            raise MarketDataUnavailableError(f"market data request failed: {url}") from exc
        except ValueError as exc:
            raise MarketDataUnavailableError(f"market data response is not JSON: {url}") from exc

    @staticmethod
    def _location_params(location: str, at: datetime) -> dict[str, str]:
        return {"location": location, "time": at.isoformat()}

    def get_trip_data(self, trip_id: str) -> TripData:
        payload = self._get(f"/trips/{trip_id}")
        try:
            departure = datetime.fromisoformat(str(payload["departure_time"]))
            if departure.tzinfo is None:
                departure = departure.replace(tzinfo=timezone.utc)
            return TripData(
                trip_id=str(payload.get("id", trip_id)),
                origin=str(payload["from"]),
                destination=str(payload["to"]),
                distance_km=float(payload["distance"]),
                duration_minutes=float(payload["duration"]),
                departure_time=departure,
                vehicle_type=str(payload.get("vehicle_type", "sedan")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MarketDataUnavailableError(f"malformed trip payload for {trip_id}") from exc

    def get_market_snapshot(self, trip_id: str) -> MarketSnapshot:
        payload = self._get(f"/trips/{trip_id}/market")
        try:
            return MarketSnapshot(
                active_trips=int(payload["active_trips"]),
                waiting_passengers=int(payload["waiting_passengers"]),
                available_drivers=int(payload["available_drivers"]),
                recent_bookings=int(payload["recent_bookings"]),
                average_wait_minutes=float(payload.get("average_wait_minutes", 0.0)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MarketDataUnavailableError(f"malformed market payload for {trip_id}") from exc

    def get_weather_conditions(self, location: str, at: datetime) -> tuple[WeatherCondition, float]:
        payload = self._get("/weather", self._location_params(location, at))
        try:
            return WeatherCondition(str(payload["condition"]).lower()), float(payload["temperature"])
        except (KeyError, TypeError, ValueError) as exc:
            raise MarketDataUnavailableError(f"malformed weather payload for {location}") from exc

    def get_weather_impact(self, location: str, at: datetime) -> float:
        payload = self._get("/weather/impact", self._location_params(location, at))
        try:
            return float(payload["impact"])
        except (KeyError, TypeError, ValueError) as exc:
            raise MarketDataUnavailableError(f"malformed weather impact for {location}") from exc

    def get_event_impact(self, location: str, at: datetime) -> float:
        payload = self._get("/events/impact", self._location_params(location, at))
        try:
            return float(payload["impact"])
        except (KeyError, TypeError, ValueError) as exc:
            raise MarketDataUnavailableError(f"malformed event impact for {location}") from exc

    def get_competitor_pricing(self, trip_id: str) -> list[float]:
        payload = self._get(f"/trips/{trip_id}/competitors")
        try:
            prices = [float(value) for value in payload["prices"]]
        except (KeyError, TypeError, ValueError) as exc:
            raise MarketDataUnavailableError(f"malformed competitor payload for {trip_id}") from exc
        if not prices:
            raise MarketDataUnavailableError(f"no competitor prices for {trip_id}")
        return prices


def build_market_data_gateway(
    settings: Optional[Settings] = None,
    rng: Optional[random.Random] = None,
) -> MarketDataGateway:
    resolved = settings or get_settings()
    if resolved.gateway_mode == "http":
        logger.info("Using HTTP market data gateway | base_url=%s", resolved.gateway_base_url)
        return HttpMarketDataGateway(settings=resolved)
    return SimulatedMarketDataGateway(rng=rng, settings=resolved)
