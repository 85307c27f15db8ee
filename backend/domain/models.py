"""Domain models for demand forecasting, pricing and negotiation."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional


class WeatherCondition(str, Enum):
    CLEAR = "clear"
    CLOUDY = "cloudy"
    RAIN = "rain"
    STORM = "storm"
    FOG = "fog"


class DemandTrend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class MarketPosition(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    PREMIUM = "premium"


class NegotiationParty(str, Enum):
    PROPOSER = "proposer"
    COUNTERPARTY = "counterparty"
    SYSTEM = "system"

    @property
    def opponent(self) -> "NegotiationParty":
        if self is NegotiationParty.PROPOSER:
            return NegotiationParty.COUNTERPARTY
        if self is NegotiationParty.COUNTERPARTY:
            return NegotiationParty.PROPOSER
        raise ValueError("system party has no opponent")


class NegotiationStatus(str, Enum):
    ACTIVE = "active"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not NegotiationStatus.ACTIVE


@dataclass(frozen=True)
class DemandFactors:
    time_of_day: int
    day_of_week: int
    weather_condition: WeatherCondition
    temperature: float
    is_holiday: bool
    is_weekend: bool
    event_impact: float
    historical_demand: float
    competitor_activity: float
    economic_indicator: float

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["weather_condition"] = self.weather_condition.value
        return payload


@dataclass(frozen=True)
class DemandPrediction:
    predicted_demand: float
    confidence: float
    time_horizon: int
    factors: DemandFactors
    trend: DemandTrend
    volatility: float
    recommendations: tuple[str, ...]
    is_fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "predicted_demand": self.predicted_demand,
            "confidence": self.confidence,
            "time_horizon": self.time_horizon,
            "factors": self.factors.to_dict(),
            "trend": self.trend.value,
            "volatility": self.volatility,
            "recommendations": list(self.recommendations),
            "is_fallback": self.is_fallback,
        }


@dataclass(frozen=True)
class HistoricalObservation:
    """One recorded demand value with whatever factors were known."""

    timestamp: datetime
    demand: float
    factors: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DemandAnomaly:
    timestamp: datetime
    demand: float
    reason: str


@dataclass(frozen=True)
class DemandPatternReport:
    peak_hours: list[int]
    peak_days: list[int]
    seasonal_trends: dict[str, float]
    anomalies: list[DemandAnomaly]


@dataclass(frozen=True)
class TripData:
    trip_id: str
    origin: str
    destination: str
    distance_km: float
    duration_minutes: float
    departure_time: datetime
    vehicle_type: str


@dataclass(frozen=True)
class MarketSnapshot:
    active_trips: int
    waiting_passengers: int
    available_drivers: int
    recent_bookings: int
    average_wait_minutes: float = 0.0


@dataclass(frozen=True)
class PricingFactors:
    demand_level: float
    supply_level: float
    time_of_day: int
    day_of_week: int
    weather_impact: float
    event_impact: float
    competitor_pricing: float
    user_history: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class CompetitorAnalysis:
    average_price: float
    market_position: MarketPosition


@dataclass(frozen=True)
class PricingRecommendation:
    recommended_price: float
    confidence: float
    reason: str
    factors: PricingFactors
    potential_revenue: float
    competitor_analysis: CompetitorAnalysis
    multiplier: float = 1.0
    is_fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommended_price": self.recommended_price,
            "confidence": self.confidence,
            "reason": self.reason,
            "factors": self.factors.to_dict(),
            "potential_revenue": self.potential_revenue,
            "competitor_analysis": {
                "average_price": self.competitor_analysis.average_price,
                "market_position": self.competitor_analysis.market_position.value,
            },
            "multiplier": self.multiplier,
            "is_fallback": self.is_fallback,
        }


@dataclass(frozen=True)
class NegotiationOffer:
    offer_id: str
    price: float
    timestamp: datetime
    party: NegotiationParty
    reason: str
    confidence: float
    is_accepted: Optional[bool] = None
    is_counter_offer: Optional[bool] = None


@dataclass(frozen=True)
class NegotiationOutcome:
    """Settled result handed to the booking side and persisted."""

    session_id: str
    trip_id: str
    role: NegotiationParty
    original_price: float
    final_price: float
    accepted: bool
    status: NegotiationStatus
    offer_count: int
    completed_at: datetime


def day_of_week(moment: datetime) -> int:
    """Day index with Sunday as 0 and Saturday as 6."""
    return (moment.weekday() + 1) % 7


def is_weekend_day(day: int) -> bool:
    return day in (0, 6)


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC so stored and queried times compare safely."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
