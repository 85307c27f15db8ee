from __future__ import annotations

import random
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from backend.domain.models import DemandFactors, DemandTrend, WeatherCondition
from backend.repository.market_data_gateway import (
    MarketDataUnavailableError,
    SimulatedMarketDataGateway,
)
from backend.repository.observation_store import ObservationStore
from backend.services.demand_service import (
    FALLBACK_ADVISORY,
    DemandPredictionService,
    DemandValidationError,
    analyze_trend,
    calculate_volatility,
    economic_indicator,
    generate_recommendations,
)
from backend.utils.config import get_settings


# 2026-10-17 is a Saturday.
SATURDAY_11 = datetime(2026, 10, 17, 11, 0, tzinfo=timezone.utc)


class FixedRandom(random.Random):
    """Random source whose ``random()`` always returns the same value."""

    def __init__(self, value: float) -> None:
        super().__init__(0)
        self._value = value

    def random(self) -> float:
        return self._value


class StubDemandGateway:
    def __init__(
        self,
        condition: WeatherCondition = WeatherCondition.CLEAR,
        event_impact: float = 0.0,
        fail: bool = False,
    ) -> None:
        self.condition = condition
        self.event_impact = event_impact
        self.fail = fail

    def get_weather_conditions(self, location, at):
        if self.fail:
            raise MarketDataUnavailableError("weather feed down")
        return self.condition, 25.0

    def get_event_impact(self, location, at):
        if self.fail:
            raise MarketDataUnavailableError("event feed down")
        return self.event_impact


def _settings():
    get_settings.cache_clear()
    return get_settings()


def _service(store=None, gateway=None, settings=None) -> DemandPredictionService:
    return DemandPredictionService(
        store=store or ObservationStore(capacity=1000),
        gateway=gateway or StubDemandGateway(),
        settings=settings or _settings(),
        rng=FixedRandom(0.5),
        clock=lambda: SATURDAY_11,
    )


def _factors(**overrides) -> DemandFactors:
    defaults = {
        "time_of_day": 6,
        "day_of_week": 1,
        "weather_condition": WeatherCondition.CLEAR,
        "temperature": 25.0,
        "is_holiday": False,
        "is_weekend": False,
        "event_impact": 0.0,
        "historical_demand": 20.0,
        "competitor_activity": 50.0,
        "economic_indicator": 50.0,
    }
    defaults.update(overrides)
    return DemandFactors(**defaults)


def test_predictions_stay_within_bounds_for_simulated_market() -> None:
    settings = replace(_settings(), random_seed=5)
    store = ObservationStore(settings=settings)
    store.seed_synthetic_history(now=SATURDAY_11)
    service = DemandPredictionService(
        store=store,
        gateway=SimulatedMarketDataGateway(rng=random.Random(5), settings=settings),
        settings=settings,
        rng=random.Random(5),
    )

    for hour in range(0, 24, 3):
        prediction = service.predict_demand("Dubai", SATURDAY_11.replace(hour=hour))
        assert 0.0 <= prediction.predicted_demand <= 100.0
        assert 30.0 <= prediction.confidence <= 95.0
        assert 0.0 <= prediction.volatility <= 100.0
        assert not prediction.is_fallback


def test_gateway_failure_returns_fallback_with_requested_horizon() -> None:
    service = _service(gateway=StubDemandGateway(fail=True))

    prediction = service.predict_demand("Dubai", SATURDAY_11, horizon_hours=6)

    assert prediction.is_fallback
    assert prediction.predicted_demand == 50.0
    assert prediction.confidence == 30.0
    assert prediction.trend is DemandTrend.STABLE
    assert prediction.volatility == 20.0
    assert prediction.time_horizon == 6
    assert prediction.recommendations == (FALLBACK_ADVISORY,)


def test_non_positive_horizon_rejected() -> None:
    with pytest.raises(DemandValidationError):
        _service().predict_demand("Dubai", SATURDAY_11, horizon_hours=0)


def test_multiple_horizons_are_ascending() -> None:
    predictions = _service().predict_multiple_horizons("Dubai", SATURDAY_11)
    assert [item.time_horizon for item in predictions] == [1, 6, 12, 24, 72]


def test_only_same_day_observations_within_two_hours_match() -> None:
    service = _service()
    service.record_observation(40.0, timestamp=SATURDAY_11.replace(hour=10))
    service.record_observation(60.0, timestamp=SATURDAY_11.replace(hour=13))
    service.record_observation(100.0, timestamp=SATURDAY_11.replace(hour=15))
    service.record_observation(100.0, timestamp=datetime(2026, 10, 18, 11, tzinfo=timezone.utc))

    prediction = service.predict_demand("Dubai", SATURDAY_11)

    assert prediction.factors.historical_demand == pytest.approx(50.0)
    assert prediction.factors.is_weekend
    assert prediction.factors.day_of_week == 6


def test_factors_reflect_gateway_and_calendar() -> None:
    service = _service(gateway=StubDemandGateway(condition=WeatherCondition.STORM, event_impact=150.0))

    factors = service.predict_demand("Dubai", SATURDAY_11).factors

    assert factors.weather_condition is WeatherCondition.STORM
    assert factors.event_impact == 100.0
    assert factors.historical_demand == 50.0
    assert factors.competitor_activity == 50.0
    assert factors.time_of_day == 11


def test_weighted_score_blends_with_matched_history() -> None:
    # 2026-10-19 is a Monday in Q4, so the economic indicator is 75.
    monday_8am = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)
    service = _service()
    service.record_observation(80.0, timestamp=datetime(2026, 10, 12, 8, 0, tzinfo=timezone.utc))

    prediction = service.predict_demand("Dubai", monday_8am)

    weighted = 8 / 24 * 0.25 + 1 / 7 * 0.20 + 0.5 * 0.15 + 0.0 * 0.15 + 0.8 * 0.15 + 0.75 * 0.10
    assert prediction.predicted_demand == pytest.approx(weighted * 100 * 0.7 + 80.0 * 0.3)
    assert prediction.predicted_demand == pytest.approx(50.7333, abs=1e-4)


def test_weighted_score_without_history_uses_weather_table() -> None:
    monday_8am = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)
    service = _service(gateway=StubDemandGateway(condition=WeatherCondition.RAIN, event_impact=40.0))

    prediction = service.predict_demand("Dubai", monday_8am)

    # No matches: historical defaults to 50 and no blending happens.
    assert prediction.predicted_demand == pytest.approx(
        (8 / 24 * 0.25 + 1 / 7 * 0.20 + 0.7 * 0.15 + 0.4 * 0.15 + 0.5 * 0.15 + 0.75 * 0.10) * 100
    )


def test_weekend_and_holiday_multipliers_apply() -> None:
    service = _service()
    plain = service.calculate_demand_score(_factors(), [])
    weekend = service.calculate_demand_score(_factors(is_weekend=True), [])
    holiday = service.calculate_demand_score(_factors(is_holiday=True), [])

    assert weekend == pytest.approx(plain * 1.2)
    assert holiday == pytest.approx(plain * 1.3)


def test_holiday_calendar_matches_month_and_day() -> None:
    prediction = _service().predict_demand(
        "Dubai",
        datetime(2026, 12, 25, 9, tzinfo=timezone.utc),
    )
    assert prediction.factors.is_holiday


def test_confidence_rules() -> None:
    calm = _factors(event_impact=0.0, weather_condition=WeatherCondition.CLEAR)
    stormy = _factors(event_impact=60.0, weather_condition=WeatherCondition.STORM)

    assert DemandPredictionService.calculate_confidence(calm, 11) == 95.0
    assert DemandPredictionService.calculate_confidence(calm, 0) == 75.0
    assert DemandPredictionService.calculate_confidence(stormy, 0) == 35.0
    assert DemandPredictionService.calculate_confidence(stormy, 6) == 45.0


def test_trend_classification() -> None:
    assert analyze_trend([10, 10, 10, 20, 20, 20]) is DemandTrend.INCREASING
    assert analyze_trend([20, 20, 20, 10, 10, 10]) is DemandTrend.DECREASING
    assert analyze_trend([20, 20, 20, 21, 21, 21]) is DemandTrend.STABLE
    assert analyze_trend([10, 90, 10]) is DemandTrend.STABLE
    assert analyze_trend([0, 0, 0, 5, 5, 5]) is DemandTrend.INCREASING


def test_volatility_is_population_std() -> None:
    assert calculate_volatility([10.0, 20.0]) == pytest.approx(5.0)
    assert calculate_volatility([42.0]) == 0.0


def test_economic_indicator() -> None:
    # Monday in October: business day and Q4.
    assert economic_indicator(datetime(2026, 10, 19, tzinfo=timezone.utc)) == 75.0
    # Sunday in June: neither.
    assert economic_indicator(datetime(2026, 6, 7, tzinfo=timezone.utc)) == 50.0


def test_recommendations_follow_demand_and_conditions() -> None:
    high = generate_recommendations(85.0, _factors(weather_condition=WeatherCondition.RAIN), DemandTrend.INCREASING)
    low = generate_recommendations(20.0, _factors(), DemandTrend.DECREASING)

    assert "Implement surge pricing immediately" in high
    assert "Prepare for sustained high demand" in high
    assert "Increase safety measures for drivers" in high
    assert low == (
        "Consider promotional pricing",
        "Optimize fleet allocation",
        "Implement retention strategies",
    )


def test_invalid_observation_rejected() -> None:
    with pytest.raises(DemandValidationError):
        _service().record_observation(120.0)
