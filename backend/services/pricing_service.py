"""Business logic for bounded dynamic trip pricing."""

from __future__ import annotations

import random
import sqlite3
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

import numpy as np

from backend.domain.constraints import PricingBounds, pricing_bounds_from_settings
from backend.domain.models import (
    CompetitorAnalysis,
    MarketPosition,
    MarketSnapshot,
    PricingFactors,
    PricingRecommendation,
    TripData,
    day_of_week,
)
from backend.repository.data_repository import DataRepository
from backend.repository.market_data_gateway import MarketDataGateway
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger
from backend.utils.scheduler import RepeatingTimer


logger = get_logger(__name__)

FALLBACK_REASON = "Using base price due to calculation error"

DEFAULT_PRICING_FACTORS = PricingFactors(
    demand_level=50.0,
    supply_level=50.0,
    time_of_day=12,
    day_of_week=1,
    weather_impact=0.0,
    event_impact=0.0,
    competitor_pricing=0.0,
    user_history=0.0,
)


class PricingError(Exception):
    """Base exception for pricing workflow failures."""


class PricingValidationError(PricingError):
    """Raised when a pricing request carries invalid input."""


def _clamp(value: float, lower: float, upper: float) -> float:
    return min(upper, max(lower, value))


def generate_reasoning(factors: PricingFactors, demand_score: float, multiplier: float) -> str:
    reasons: list[str] = []
    if demand_score > 0.7:
        reasons.append("High demand detected")
    elif demand_score < 0.3:
        reasons.append("Low demand period")
    if factors.supply_level < 30:
        reasons.append("Limited driver availability")
    if factors.weather_impact > 15:
        reasons.append("Weather conditions affecting travel")
    if factors.event_impact > 20:
        reasons.append("Special event or peak time")
    if factors.competitor_pricing > 10:
        reasons.append("Competitive market positioning")

    direction = "increase" if multiplier > 1 else "decrease"
    change_percent = abs((multiplier - 1) * 100)
    summary = f"Recommended {change_percent:.0f}% {direction} for optimal revenue."
    if not reasons:
        return summary
    return f"{', '.join(reasons)}. {summary}"


def calculate_revenue_potential(base_price: float, recommended_price: float, recent_bookings: int) -> float:
    """Monthly projection of the per-booking price delta."""
    daily_bookings = recent_bookings / 30.0
    return round((recommended_price - base_price) * daily_bookings * 30.0, 2)


def classify_market_position(price_ratio: float) -> MarketPosition:
    if price_ratio < 0.9:
        return MarketPosition.LOW
    if price_ratio < 1.1:
        return MarketPosition.MEDIUM
    if price_ratio < 1.3:
        return MarketPosition.HIGH
    return MarketPosition.PREMIUM


def analyze_competitor_position(
    recommended_price: float,
    competitor_prices: Sequence[float],
) -> CompetitorAnalysis:
    average = float(np.mean(competitor_prices))
    return CompetitorAnalysis(
        average_price=round(average, 2),
        market_position=classify_market_position(recommended_price / average),
    )


def fallback_recommendation(base_price: float) -> PricingRecommendation:
    return PricingRecommendation(
        recommended_price=base_price,
        confidence=50.0,
        reason=FALLBACK_REASON,
        factors=DEFAULT_PRICING_FACTORS,
        potential_revenue=0.0,
        competitor_analysis=CompetitorAnalysis(
            average_price=base_price,
            market_position=MarketPosition.MEDIUM,
        ),
        multiplier=1.0,
        is_fallback=True,
    )


class DynamicPricingService:
    """Turns live market conditions into a bounded price recommendation."""

    def __init__(
        self,
        gateway: MarketDataGateway,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._gateway = gateway
        self._repository = repository
        self._rng = rng or random.Random(self._settings.random_seed)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._bounds: PricingBounds = pricing_bounds_from_settings(self._settings)

    @property
    def bounds(self) -> PricingBounds:
        return self._bounds

    def calculate_pricing_factors(
        self,
        trip: TripData,
        snapshot: MarketSnapshot,
        weather_impact: float,
        event_impact: float,
        competitor_prices: Sequence[float],
    ) -> PricingFactors:
        if not competitor_prices:
            raise PricingError(f"no competitor prices for trip {trip.trip_id}")

        weather = _clamp(float(weather_impact), -50.0, 50.0)
        event = _clamp(float(event_impact), -50.0, 50.0)

        demand_level = _clamp(
            (snapshot.waiting_passengers / max(snapshot.available_drivers, 1)) * 50.0
            + (snapshot.recent_bookings / 10.0) * 30.0
            + (event / 50.0) * 20.0,
            0.0,
            100.0,
        )
        supply_level = _clamp(
            (snapshot.available_drivers / (snapshot.waiting_passengers + 1)) * 70.0
            + (30.0 if snapshot.active_trips > 0 else 0.0),
            0.0,
            100.0,
        )

        reference_price = trip.distance_km * self._settings.pricing_reference_price_per_km
        average_competitor = float(np.mean(competitor_prices))
        competitor_pricing = (average_competitor - reference_price) / reference_price * 100.0

        return PricingFactors(
            demand_level=demand_level,
            supply_level=supply_level,
            time_of_day=trip.departure_time.hour,
            day_of_week=day_of_week(trip.departure_time),
            weather_impact=weather,
            event_impact=event,
            competitor_pricing=competitor_pricing,
            user_history=self._rng.uniform(-10.0, 10.0),
        )

    def predict_demand_score(self, factors: PricingFactors) -> float:
        settings = self._settings
        score = (
            (factors.time_of_day / 24.0) * settings.pricing_weight_time_of_day
            + (factors.day_of_week / 7.0) * settings.pricing_weight_day_of_week
            + (max(0.0, factors.weather_impact) / 50.0) * settings.pricing_weight_weather
            + (factors.event_impact / 50.0) * settings.pricing_weight_events
            + (factors.demand_level / 100.0) * settings.pricing_weight_historical_demand
        )
        return _clamp(score, 0.0, 1.0)

    def optimize_price_multiplier(self, factors: PricingFactors, demand_score: float) -> float:
        settings = self._settings
        bounds = self._bounds

        multiplier = bounds.base_surge + demand_score * (bounds.max_surge - bounds.base_surge)
        multiplier *= 1 + settings.pricing_elasticity * (multiplier - 1)
        multiplier *= 1 + (factors.competitor_pricing / 100.0) * settings.pricing_competitor_factor
        multiplier += max(0.0, 1 - factors.supply_level / 100.0) * settings.pricing_urgency_factor
        multiplier += factors.weather_impact * settings.pricing_weather_factor
        multiplier += factors.event_impact * settings.pricing_event_factor
        multiplier += factors.user_history / 100.0

        return bounds.clamp_multiplier(multiplier)

    def calculate_confidence(
        self,
        factors: PricingFactors,
        snapshot: MarketSnapshot,
        trip: TripData,
    ) -> float:
        confidence = 70.0
        if snapshot.recent_bookings > 10:
            confidence += 10.0
        if snapshot.active_trips > 5:
            confidence += 5.0
        if factors.weather_impact > 25:
            confidence -= 10.0
        if factors.event_impact > 30:
            confidence -= 5.0

        hours_until_departure = (trip.departure_time - self._clock()).total_seconds() / 3600.0
        if hours_until_departure < 2:
            confidence += 10.0
        elif hours_until_departure > 24:
            confidence -= 10.0

        return _clamp(confidence, 50.0, 95.0)

    def calculate_optimal_price(
        self,
        trip_id: str,
        base_price: float,
        *,
        persist: bool = True,
    ) -> PricingRecommendation:
        """Recommend a price for a trip; internal failures fall back to ``base_price``."""
        if base_price <= 0:
            raise PricingValidationError("base_price must be greater than zero")

        try:
            trip = self._gateway.get_trip_data(trip_id)
            snapshot = self._gateway.get_market_snapshot(trip_id)
            weather_impact = self._gateway.get_weather_impact(trip.origin, trip.departure_time)
            event_impact = self._gateway.get_event_impact(trip.origin, trip.departure_time)
            competitor_prices = self._gateway.get_competitor_pricing(trip_id)

            factors = self.calculate_pricing_factors(
                trip, snapshot, weather_impact, event_impact, competitor_prices
            )
            demand_score = self.predict_demand_score(factors)
            multiplier = self.optimize_price_multiplier(factors, demand_score)
            recommended_price = self._bounds.clamp_price(
                base_price, round(base_price * multiplier, 2)
            )

            recommendation = PricingRecommendation(
                recommended_price=recommended_price,
                confidence=self.calculate_confidence(factors, snapshot, trip),
                reason=generate_reasoning(factors, demand_score, multiplier),
                factors=factors,
                potential_revenue=calculate_revenue_potential(
                    base_price, recommended_price, snapshot.recent_bookings
                ),
                competitor_analysis=analyze_competitor_position(
                    recommended_price, competitor_prices
                ),
                multiplier=multiplier,
            )
        except Exception:
            logger.exception(
                "Price optimization failed; using base price | trip_id=%s | base_price=%.2f",
                trip_id,
                base_price,
            )
            return fallback_recommendation(base_price)

        if persist and self._repository is not None:
            try:
                self._repository.save_recommendation(
                    trip_id=trip_id,
                    base_price=base_price,
                    recommendation=recommendation,
                    created_at=self._clock(),
                )
            except sqlite3.Error:
                logger.exception("Failed to cache recommendation | trip_id=%s", trip_id)

        logger.info(
            (
                "Price optimization completed | trip_id=%s | base_price=%.2f | "
                "multiplier=%.4f | recommended=%.2f | confidence=%.0f | position=%s"
            ),
            trip_id,
            base_price,
            multiplier,
            recommended_price,
            recommendation.confidence,
            recommendation.competitor_analysis.market_position.value,
        )
        return recommendation

    def get_cached_recommendation(self, trip_id: str) -> Optional[dict[str, Any]]:
        if self._repository is None:
            return None
        return self._repository.get_latest_recommendation(trip_id, self._clock())

    def record_feedback(self, trip_id: str, actual_price: float, was_accepted: bool) -> None:
        if actual_price <= 0:
            raise PricingValidationError("actual_price must be greater than zero")
        if self._repository is None:
            logger.warning("Pricing feedback dropped; no repository | trip_id=%s", trip_id)
            return
        self._repository.save_pricing_feedback(trip_id, actual_price, was_accepted)
        logger.info(
            "Pricing feedback recorded | trip_id=%s | price=%.2f | accepted=%s",
            trip_id,
            actual_price,
            was_accepted,
        )

    def should_auto_apply(self, recommendation: PricingRecommendation) -> bool:
        return recommendation.confidence > self._settings.pricing_auto_apply_confidence


class PricingRefresher:
    """Recomputes a trip's recommendation on a fixed interval while it is active.

    High-confidence recommendations are pushed to ``on_price_update`` with the
    new price and its reason.
    """

    def __init__(
        self,
        service: DynamicPricingService,
        trip_id: str,
        base_price: float,
        on_price_update: Callable[[float, str], None],
        interval_seconds: Optional[float] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        resolved = settings or get_settings()
        self._service = service
        self._trip_id = trip_id
        self._base_price = base_price
        self._on_price_update = on_price_update
        self._interval = interval_seconds or resolved.pricing_refresh_interval_seconds
        self._timer: Optional[RepeatingTimer] = None
        self.latest: Optional[PricingRecommendation] = None

    def refresh(self) -> PricingRecommendation:
        recommendation = self._service.calculate_optimal_price(self._trip_id, self._base_price)
        self.latest = recommendation
        if self._service.should_auto_apply(recommendation):
            self._on_price_update(recommendation.recommended_price, recommendation.reason)
        return recommendation

    def start(self) -> PricingRecommendation:
        recommendation = self.refresh()
        self._timer = RepeatingTimer(
            self._interval,
            self.refresh,
            name=f"pricing-refresh-{self._trip_id}",
        ).start()
        return recommendation

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
