"""Domain-level validation rules for pricing bounds and negotiation terms."""

from __future__ import annotations

from dataclasses import dataclass

from backend.utils.config import Settings


@dataclass(frozen=True)
class PricingBounds:
    min_discount: float
    base_surge: float
    max_surge: float

    def clamp_multiplier(self, multiplier: float) -> float:
        return min(self.max_surge, max(self.min_discount, multiplier))

    def clamp_price(self, base_price: float, price: float) -> float:
        return min(base_price * self.max_surge, max(base_price * self.min_discount, price))


@dataclass(frozen=True)
class NegotiationConfig:
    duration_seconds: int
    acceptance_probability: float
    counterparty_flexibility: float
    proposer_flexibility: float
    lower_band: float
    upper_band: float
    counterparty_counter_adjustment: float
    proposer_counter_adjustment: float


def validate_pricing_bounds(bounds: PricingBounds) -> None:
    if bounds.min_discount <= 0.0:
        raise ValueError("min_discount must be > 0")
    if bounds.min_discount > 1.0:
        raise ValueError("min_discount must not exceed 1")
    if bounds.base_surge < 1.0:
        raise ValueError("base_surge must be >= 1")
    if bounds.max_surge < bounds.base_surge:
        raise ValueError("max_surge must be >= base_surge")


def validate_negotiation_config(config: NegotiationConfig) -> None:
    if config.duration_seconds <= 0:
        raise ValueError("duration_seconds must be > 0")
    if not 0.0 <= config.acceptance_probability <= 1.0:
        raise ValueError("acceptance_probability must be between 0 and 1")
    if config.counterparty_flexibility <= 0.0 or config.proposer_flexibility <= 0.0:
        raise ValueError("flexibility factors must be > 0")
    if not 0.0 < config.lower_band <= 1.0 <= config.upper_band:
        raise ValueError("negotiation band must satisfy 0 < lower <= 1 <= upper")
    if config.counterparty_counter_adjustment <= 0.0 or config.proposer_counter_adjustment <= 0.0:
        raise ValueError("counter adjustments must be > 0")


def pricing_bounds_from_settings(settings: Settings) -> PricingBounds:
    bounds = PricingBounds(
        min_discount=settings.pricing_min_discount,
        base_surge=settings.pricing_base_surge,
        max_surge=settings.pricing_max_surge,
    )
    validate_pricing_bounds(bounds)
    return bounds


def negotiation_config_from_settings(settings: Settings) -> NegotiationConfig:
    config = NegotiationConfig(
        duration_seconds=settings.negotiation_duration_seconds,
        acceptance_probability=settings.negotiation_acceptance_probability,
        counterparty_flexibility=settings.negotiation_counterparty_flexibility,
        proposer_flexibility=settings.negotiation_proposer_flexibility,
        lower_band=settings.negotiation_lower_band,
        upper_band=settings.negotiation_upper_band,
        counterparty_counter_adjustment=settings.negotiation_counterparty_counter_adjustment,
        proposer_counter_adjustment=settings.negotiation_proposer_counter_adjustment,
    )
    validate_negotiation_config(config)
    return config
