"""Business logic for ride demand scoring and multi-horizon forecasts."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional, Sequence

import numpy as np

from backend.domain.models import (
    DemandFactors,
    DemandPatternReport,
    DemandPrediction,
    DemandTrend,
    HistoricalObservation,
    WeatherCondition,
    as_utc,
    day_of_week,
    is_weekend_day,
)
from backend.repository.market_data_gateway import MarketDataGateway
from backend.repository.observation_store import ObservationStore
from backend.services.pattern_service import DemandPatternService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

WEATHER_DEMAND_IMPACT = {
    WeatherCondition.CLEAR: 0.5,
    WeatherCondition.CLOUDY: 0.4,
    WeatherCondition.RAIN: 0.7,
    WeatherCondition.STORM: 0.9,
    WeatherCondition.FOG: 0.6,
}

DEFAULT_HISTORICAL_DEMAND = 50.0
FALLBACK_ADVISORY = "Unable to generate predictions - using fallback values"

FALLBACK_FACTORS = DemandFactors(
    time_of_day=12,
    day_of_week=1,
    weather_condition=WeatherCondition.CLEAR,
    temperature=25.0,
    is_holiday=False,
    is_weekend=False,
    event_impact=0.0,
    historical_demand=50.0,
    competitor_activity=50.0,
    economic_indicator=50.0,
)


class DemandValidationError(Exception):
    """Raised when a forecast request is malformed."""


def _clamp(value: float, lower: float, upper: float) -> float:
    return min(upper, max(lower, value))


def _mean(values: Sequence[float]) -> float:
    return float(np.mean(values)) if len(values) else 0.0


def economic_indicator(moment: datetime) -> float:
    """Business days and the Q4 season lift the baseline of 50."""
    indicator = 50.0
    if 1 <= day_of_week(moment) <= 5:
        indicator += 10.0
    if 10 <= moment.month <= 12:
        indicator += 15.0
    return _clamp(indicator, 0.0, 100.0)


def analyze_trend(demands: Sequence[float], threshold: float = 0.10) -> DemandTrend:
    """Compare the mean of the last three points with the three before them."""
    if len(demands) < 6:
        return DemandTrend.STABLE

    recent_avg = _mean(demands[-3:])
    older_avg = _mean(demands[-6:-3])
    if older_avg == 0.0:
        return DemandTrend.INCREASING if recent_avg > 0.0 else DemandTrend.STABLE

    change = (recent_avg - older_avg) / older_avg
    if change > threshold:
        return DemandTrend.INCREASING
    if change < -threshold:
        return DemandTrend.DECREASING
    return DemandTrend.STABLE


def calculate_volatility(demands: Sequence[float]) -> float:
    """Population standard deviation of the series, capped at 100."""
    if len(demands) < 2:
        return 0.0
    return min(100.0, float(np.std(np.asarray(demands, dtype=float))))


def generate_recommendations(
    predicted_demand: float,
    factors: DemandFactors,
    trend: DemandTrend,
) -> tuple[str, ...]:
    recommendations: list[str] = []

    if predicted_demand > 80:
        recommendations.extend(
            [
                "Increase fleet size by 20-30%",
                "Implement surge pricing immediately",
                "Activate emergency driver recruitment",
            ]
        )
    elif predicted_demand > 60:
        recommendations.extend(
            [
                "Moderate price increase recommended",
                "Monitor driver availability closely",
            ]
        )
    elif predicted_demand < 30:
        recommendations.extend(
            [
                "Consider promotional pricing",
                "Optimize fleet allocation",
            ]
        )

    if trend is DemandTrend.INCREASING:
        recommendations.append("Prepare for sustained high demand")
    elif trend is DemandTrend.DECREASING:
        recommendations.append("Implement retention strategies")

    if factors.weather_condition in (WeatherCondition.RAIN, WeatherCondition.STORM):
        recommendations.append("Increase safety measures for drivers")
        recommendations.append("Prepare for potential cancellations")

    return tuple(recommendations)


def fallback_prediction(horizon_hours: int) -> DemandPrediction:
    return DemandPrediction(
        predicted_demand=50.0,
        confidence=30.0,
        time_horizon=horizon_hours,
        factors=FALLBACK_FACTORS,
        trend=DemandTrend.STABLE,
        volatility=20.0,
        recommendations=(FALLBACK_ADVISORY,),
        is_fallback=True,
    )


class DemandPredictionService:
    """Scores expected ride demand for a location and point in time.

    Predictions are computed fresh per call from gateway inputs and a read-only
    snapshot of the injected observation store; the service keeps no other
    mutable state, so one instance can serve concurrent callers.
    """

    def __init__(
        self,
        store: ObservationStore,
        gateway: MarketDataGateway,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        pattern_service: Optional[DemandPatternService] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store
        self._gateway = gateway
        self._rng = rng or random.Random(self._settings.random_seed)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._pattern_service = pattern_service or DemandPatternService(
            store=store,
            settings=self._settings,
        )

    @property
    def observation_count(self) -> int:
        return len(self._store)

    def record_observation(
        self,
        demand: float,
        factors: Optional[Mapping[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> HistoricalObservation:
        if not 0.0 <= demand <= 100.0:
            raise DemandValidationError("demand must be between 0 and 100")
        return self._store.append(demand=demand, factors=factors, timestamp=timestamp)

    def _matching_observations(self, hour: int, day: int) -> list[HistoricalObservation]:
        window = self._settings.demand_hour_match_window
        matched = [
            item
            for item in self._store.snapshot()
            if abs(item.timestamp.hour - hour) <= window and day_of_week(item.timestamp) == day
        ]
        return sorted(matched, key=lambda item: item.timestamp)

    def _is_holiday(self, moment: datetime) -> bool:
        return (moment.month, moment.day) in self._settings.demand_holidays

    def gather_demand_factors(
        self,
        location: str,
        timestamp: datetime,
        matched: Sequence[HistoricalObservation],
    ) -> DemandFactors:
        """Collect current conditions; gateway failures propagate to the caller."""
        hour = timestamp.hour
        day = day_of_week(timestamp)
        condition, temperature = self._gateway.get_weather_conditions(location, timestamp)
        event_impact = _clamp(float(self._gateway.get_event_impact(location, timestamp)), 0.0, 100.0)
        historical_demand = (
            _mean([item.demand for item in matched]) if matched else DEFAULT_HISTORICAL_DEMAND
        )

        return DemandFactors(
            time_of_day=hour,
            day_of_week=day,
            weather_condition=WeatherCondition(condition),
            temperature=float(temperature),
            is_holiday=self._is_holiday(timestamp),
            is_weekend=is_weekend_day(day),
            event_impact=event_impact,
            historical_demand=historical_demand,
            competitor_activity=self._rng.random() * 100.0,
            economic_indicator=economic_indicator(timestamp),
        )

    def calculate_demand_score(
        self,
        factors: DemandFactors,
        matched: Sequence[HistoricalObservation],
    ) -> float:
        settings = self._settings
        weighted = (
            (factors.time_of_day / 24.0) * settings.demand_weight_time_of_day
            + (factors.day_of_week / 7.0) * settings.demand_weight_day_of_week
            + WEATHER_DEMAND_IMPACT.get(factors.weather_condition, 0.5) * settings.demand_weight_weather
            + (factors.event_impact / 100.0) * settings.demand_weight_events
            + (factors.historical_demand / 100.0) * settings.demand_weight_historical
            + (factors.economic_indicator / 100.0) * settings.demand_weight_economic
        )
        prediction = weighted * 100.0

        if matched:
            blend = settings.demand_historical_blend
            pattern_average = _mean([item.demand for item in matched])
            prediction = prediction * (1.0 - blend) + pattern_average * blend

        if factors.is_weekend:
            prediction *= settings.demand_weekend_multiplier
        if factors.is_holiday:
            prediction *= settings.demand_holiday_multiplier

        return _clamp(prediction, 0.0, 100.0)

    @staticmethod
    def calculate_confidence(factors: DemandFactors, matched_count: int) -> float:
        confidence = 60.0
        if matched_count > 10:
            confidence += 20.0
        elif matched_count > 5:
            confidence += 10.0

        if factors.event_impact < 20:
            confidence += 10.0
        if factors.weather_condition is WeatherCondition.CLEAR:
            confidence += 5.0

        if factors.event_impact > 50:
            confidence -= 15.0
        if factors.weather_condition is WeatherCondition.STORM:
            confidence -= 10.0

        return _clamp(confidence, 30.0, 95.0)

    def predict_demand(
        self,
        location: str,
        timestamp: Optional[datetime] = None,
        horizon_hours: Optional[int] = None,
    ) -> DemandPrediction:
        """Forecast demand; any internal failure yields the documented fallback."""
        horizon = horizon_hours if horizon_hours is not None else self._settings.demand_default_horizon_hours
        if horizon <= 0:
            raise DemandValidationError("horizon_hours must be a positive integer")

        target = as_utc(timestamp) if timestamp is not None else self._clock()
        try:
            matched = self._matching_observations(target.hour, day_of_week(target))
            factors = self.gather_demand_factors(location, target, matched)
            predicted = self.calculate_demand_score(factors, matched)
            confidence = self.calculate_confidence(factors, len(matched))
            demands = [item.demand for item in matched]
            trend = analyze_trend(demands, self._settings.demand_trend_threshold)
            volatility = calculate_volatility(demands)
        except Exception:
            logger.exception(
                "Demand prediction failed; using fallback | location=%s | target=%s",
                location,
                target.isoformat(),
            )
            return fallback_prediction(horizon)

        prediction = DemandPrediction(
            predicted_demand=predicted,
            confidence=confidence,
            time_horizon=horizon,
            factors=factors,
            trend=trend,
            volatility=volatility,
            recommendations=generate_recommendations(predicted, factors, trend),
        )
        logger.info(
            (
                "Demand prediction completed | location=%s | target=%s | horizon=%s | "
                "demand=%.2f | confidence=%.0f | trend=%s | matches=%s"
            ),
            location,
            target.isoformat(),
            horizon,
            predicted,
            confidence,
            trend.value,
            len(matched),
        )
        return prediction

    def predict_multiple_horizons(
        self,
        location: str,
        base_timestamp: Optional[datetime] = None,
    ) -> list[DemandPrediction]:
        base = as_utc(base_timestamp) if base_timestamp is not None else self._clock()
        return [
            self.predict_demand(location, base + timedelta(hours=horizon), horizon)
            for horizon in self._settings.demand_prediction_horizons
        ]

    def analyze_demand_patterns(
        self,
        location: str,
        start: datetime,
        end: datetime,
    ) -> DemandPatternReport:
        return self._pattern_service.analyze_demand_patterns(location, start, end)
