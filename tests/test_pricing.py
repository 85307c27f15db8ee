from __future__ import annotations

import random
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from backend.domain.models import MarketPosition, MarketSnapshot, TripData
from backend.repository.data_repository import DataRepository
from backend.repository.market_data_gateway import (
    MarketDataUnavailableError,
    SimulatedMarketDataGateway,
)
from backend.services.pricing_service import (
    FALLBACK_REASON,
    DynamicPricingService,
    PricingRefresher,
    PricingValidationError,
    analyze_competitor_position,
    calculate_revenue_potential,
    classify_market_position,
    fallback_recommendation,
    generate_reasoning,
)
from backend.utils.config import get_settings


# 2026-10-17 is a Saturday; departure late evening.
NOW = datetime(2026, 10, 17, 22, 0, tzinfo=timezone.utc)


class FixedRandom(random.Random):
    """Random source whose ``random()`` always returns the same value."""

    def __init__(self, value: float) -> None:
        super().__init__(0)
        self._value = value

    def random(self) -> float:
        return self._value


class StubPricingGateway:
    def __init__(
        self,
        snapshot: MarketSnapshot,
        competitor_prices: list[float],
        weather_impact: float = 0.0,
        event_impact: float = 0.0,
        departure: datetime = NOW + timedelta(hours=1),
        fail: bool = False,
    ) -> None:
        self.snapshot = snapshot
        self.competitor_prices = competitor_prices
        self.weather_impact = weather_impact
        self.event_impact = event_impact
        self.departure = departure
        self.fail = fail

    def get_trip_data(self, trip_id):
        if self.fail:
            raise MarketDataUnavailableError("trip service down")
        return TripData(
            trip_id=trip_id,
            origin="Dubai",
            destination="Abu Dhabi",
            distance_km=100.0,
            duration_minutes=80.0,
            departure_time=self.departure,
            vehicle_type="sedan",
        )

    def get_market_snapshot(self, trip_id):
        return self.snapshot

    def get_weather_impact(self, location, at):
        return self.weather_impact

    def get_event_impact(self, location, at):
        return self.event_impact

    def get_competitor_pricing(self, trip_id):
        return self.competitor_prices


def _settings(tmp_path=None, **overrides):
    get_settings.cache_clear()
    base = get_settings()
    if tmp_path is not None:
        overrides.setdefault("database_path", tmp_path / "pricing.db")
    return replace(base, **overrides)


def _surge_gateway() -> StubPricingGateway:
    # Reference price is 100 km * 0.8 = 80, competitors sit at double that.
    return StubPricingGateway(
        snapshot=MarketSnapshot(
            active_trips=20,
            waiting_passengers=90,
            available_drivers=10,
            recent_bookings=40,
        ),
        competitor_prices=[160.0] * 5,
        weather_impact=50.0,
        event_impact=50.0,
    )


def _quiet_gateway() -> StubPricingGateway:
    return StubPricingGateway(
        snapshot=MarketSnapshot(
            active_trips=0,
            waiting_passengers=0,
            available_drivers=50,
            recent_bookings=0,
        ),
        competitor_prices=[8.0] * 5,
        weather_impact=-50.0,
        event_impact=0.0,
        departure=datetime(2026, 10, 19, 0, 0, tzinfo=timezone.utc),
    )


def _service(gateway, repository=None, settings=None, rng_value=0.75, clock=None):
    return DynamicPricingService(
        gateway=gateway,
        repository=repository,
        settings=settings or _settings(),
        rng=FixedRandom(rng_value),
        clock=clock or (lambda: NOW),
    )


def test_extreme_demand_clamps_to_max_surge() -> None:
    service = _service(_surge_gateway())

    recommendation = service.calculate_optimal_price("trip-a", 100.0, persist=False)

    assert recommendation.factors.demand_level == 100.0
    assert recommendation.factors.competitor_pricing == pytest.approx(100.0)
    assert recommendation.factors.user_history == pytest.approx(5.0)
    assert recommendation.multiplier == 3.0
    assert recommendation.recommended_price == 300.0
    assert recommendation.potential_revenue == pytest.approx(8000.0)
    assert recommendation.competitor_analysis.market_position is MarketPosition.PREMIUM
    assert recommendation.reason.startswith("High demand detected")
    assert recommendation.reason.endswith("Recommended 200% increase for optimal revenue.")
    assert not recommendation.is_fallback


def test_weak_market_clamps_to_min_discount() -> None:
    service = _service(_quiet_gateway(), rng_value=0.5)

    recommendation = service.calculate_optimal_price("trip-b", 100.0, persist=False)

    assert recommendation.multiplier == 0.7
    assert recommendation.recommended_price == pytest.approx(70.0)
    assert recommendation.potential_revenue == 0.0
    assert recommendation.competitor_analysis.market_position is MarketPosition.PREMIUM


def test_recommended_price_always_within_surge_band() -> None:
    settings = _settings()
    for seed in range(25):
        gateway = SimulatedMarketDataGateway(rng=random.Random(seed), settings=settings)
        service = DynamicPricingService(gateway=gateway, settings=settings, rng=random.Random(seed))
        for base_price in (1.0, 37.5, 100.0, 999.99):
            recommendation = service.calculate_optimal_price(f"trip-{seed}", base_price, persist=False)
            assert base_price * 0.7 - 1e-9 <= recommendation.recommended_price <= base_price * 3.0 + 1e-9
            assert 50.0 <= recommendation.confidence <= 95.0
            assert 0.0 <= recommendation.factors.demand_level <= 100.0
            assert 0.0 <= recommendation.factors.supply_level <= 100.0


def test_same_seed_gives_same_recommendation() -> None:
    settings = _settings()

    def clock() -> datetime:
        return NOW

    def _run():
        service = DynamicPricingService(
            gateway=SimulatedMarketDataGateway(rng=random.Random(99), settings=settings, clock=clock),
            settings=settings,
            rng=random.Random(99),
            clock=clock,
        )
        return service.calculate_optimal_price("trip-seeded", 80.0, persist=False)

    assert _run() == _run()


def test_gateway_failure_returns_base_price() -> None:
    gateway = _surge_gateway()
    gateway.fail = True

    recommendation = _service(gateway).calculate_optimal_price("trip-down", 100.0)

    assert recommendation.is_fallback
    assert recommendation.recommended_price == 100.0
    assert recommendation.confidence == 50.0
    assert recommendation.reason == FALLBACK_REASON
    assert recommendation.potential_revenue == 0.0
    assert recommendation.competitor_analysis.market_position is MarketPosition.MEDIUM


def test_empty_competitor_list_falls_back() -> None:
    gateway = _surge_gateway()
    gateway.competitor_prices = []

    recommendation = _service(gateway).calculate_optimal_price("trip-empty", 100.0)

    assert recommendation.is_fallback


def test_non_positive_base_price_rejected() -> None:
    with pytest.raises(PricingValidationError):
        _service(_surge_gateway()).calculate_optimal_price("trip-a", 0.0)


def test_confidence_depends_on_departure_window() -> None:
    near = _surge_gateway()
    far = _surge_gateway()
    far.departure = NOW + timedelta(hours=30)

    near_confidence = _service(near).calculate_optimal_price("trip", 100.0, persist=False).confidence
    far_confidence = _service(far).calculate_optimal_price("trip", 100.0, persist=False).confidence

    # 70 + bookings 10 + active trips 5 - weather 10 - events 5, then the departure window.
    assert near_confidence == 80.0
    assert far_confidence == 60.0


def test_recommendation_is_cached_until_expiry(tmp_path) -> None:
    settings = _settings(tmp_path)
    repository = DataRepository(settings)
    repository.initialize_database()
    now = [NOW]
    service = _service(_surge_gateway(), repository=repository, settings=settings, clock=lambda: now[0])

    recommendation = service.calculate_optimal_price("trip-cache", 100.0)
    cached = service.get_cached_recommendation("trip-cache")

    assert cached is not None
    assert cached["base_price"] == 100.0
    assert cached["recommendation"]["recommended_price"] == recommendation.recommended_price
    assert repository.count_recommendations() == 1

    now[0] = NOW + timedelta(seconds=settings.pricing_cache_ttl_seconds + 1)
    assert service.get_cached_recommendation("trip-cache") is None


def test_expired_recommendations_are_purged_on_write(tmp_path) -> None:
    settings = _settings(tmp_path)
    repository = DataRepository(settings)
    repository.initialize_database()
    now = [NOW]
    service = _service(_surge_gateway(), repository=repository, settings=settings, clock=lambda: now[0])

    service.calculate_optimal_price("trip-a", 100.0)
    service.calculate_optimal_price("trip-b", 100.0)
    assert repository.count_recommendations() == 2

    now[0] = NOW + timedelta(seconds=settings.pricing_cache_ttl_seconds + 1)
    service.calculate_optimal_price("trip-a", 100.0)

    assert repository.count_recommendations() == 1
    assert service.get_cached_recommendation("trip-a") is not None
    assert service.get_cached_recommendation("trip-b") is None


def test_fallback_is_not_cached(tmp_path) -> None:
    settings = _settings(tmp_path)
    repository = DataRepository(settings)
    repository.initialize_database()
    gateway = _surge_gateway()
    gateway.fail = True

    _service(gateway, repository=repository, settings=settings).calculate_optimal_price("trip", 100.0)

    assert repository.count_recommendations() == 0


def test_feedback_is_recorded(tmp_path) -> None:
    settings = _settings(tmp_path)
    repository = DataRepository(settings)
    repository.initialize_database()
    service = _service(_surge_gateway(), repository=repository, settings=settings)

    service.record_feedback("trip-1", 120.0, True)
    service.record_feedback("trip-1", 90.0, False)

    assert repository.count_pricing_feedback() == 2
    with pytest.raises(PricingValidationError):
        service.record_feedback("trip-1", -1.0, True)


def test_auto_apply_threshold_is_strict() -> None:
    service = _service(_surge_gateway())
    base = fallback_recommendation(100.0)

    assert service.should_auto_apply(replace(base, confidence=86.0))
    assert not service.should_auto_apply(replace(base, confidence=85.0))


def test_refresher_pushes_confident_updates() -> None:
    settings = _settings(pricing_auto_apply_confidence=0.0)
    service = _service(_surge_gateway(), settings=settings)
    updates: list[tuple[float, str]] = []

    refresher = PricingRefresher(
        service,
        "trip-live",
        100.0,
        lambda price, reason: updates.append((price, reason)),
        interval_seconds=3600.0,
        settings=settings,
    )
    first = refresher.start()
    refresher.cancel()

    assert updates == [(first.recommended_price, first.reason)]
    assert refresher.latest == first


def test_refresher_skips_low_confidence_updates() -> None:
    settings = _settings(pricing_auto_apply_confidence=99.0)
    updates: list[tuple[float, str]] = []
    refresher = PricingRefresher(
        _service(_surge_gateway(), settings=settings),
        "trip-live",
        100.0,
        lambda price, reason: updates.append((price, reason)),
        settings=settings,
    )

    refresher.refresh()

    assert updates == []
    assert refresher.latest is not None


def test_market_position_thresholds() -> None:
    assert classify_market_position(0.89) is MarketPosition.LOW
    assert classify_market_position(0.9) is MarketPosition.MEDIUM
    assert classify_market_position(1.1) is MarketPosition.HIGH
    assert classify_market_position(1.3) is MarketPosition.PREMIUM

    analysis = analyze_competitor_position(100.0, [90.0, 100.0, 110.0])
    assert analysis.average_price == 100.0
    assert analysis.market_position is MarketPosition.MEDIUM


def test_revenue_potential_scales_with_bookings() -> None:
    assert calculate_revenue_potential(100.0, 120.0, 30) == pytest.approx(600.0)
    assert calculate_revenue_potential(100.0, 90.0, 0) == 0.0


def test_reasoning_without_signals_is_summary_only() -> None:
    factors = replace(fallback_recommendation(100.0).factors, supply_level=80.0)
    assert generate_reasoning(factors, 0.5, 0.9) == "Recommended 10% decrease for optimal revenue."
