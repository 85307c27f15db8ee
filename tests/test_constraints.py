"""Tests for pricing bound and negotiation term validation logic."""

from __future__ import annotations

from dataclasses import replace

import pytest

from backend.domain.constraints import (
    NegotiationConfig,
    PricingBounds,
    negotiation_config_from_settings,
    pricing_bounds_from_settings,
    validate_negotiation_config,
    validate_pricing_bounds,
)
from backend.utils.config import get_settings


def valid_bounds(**overrides) -> PricingBounds:
    """Return the default surge band, optionally overriding fields."""
    defaults = {
        "min_discount": 0.7,
        "base_surge": 1.2,
        "max_surge": 3.0,
    }
    defaults.update(overrides)
    return PricingBounds(**defaults)


def valid_config(**overrides) -> NegotiationConfig:
    """Return valid baseline negotiation terms, optionally overriding fields."""
    defaults = {
        "duration_seconds": 300,
        "acceptance_probability": 0.7,
        "counterparty_flexibility": 0.9,
        "proposer_flexibility": 1.1,
        "lower_band": 0.8,
        "upper_band": 1.2,
        "counterparty_counter_adjustment": 1.05,
        "proposer_counter_adjustment": 0.95,
    }
    defaults.update(overrides)
    return NegotiationConfig(**defaults)


# --- Baseline pass ---

def test_valid_bounds_pass() -> None:
    validate_pricing_bounds(valid_bounds())


def test_valid_negotiation_config_passes() -> None:
    validate_negotiation_config(valid_config())


def test_default_settings_produce_valid_rules() -> None:
    get_settings.cache_clear()
    settings = get_settings()
    assert pricing_bounds_from_settings(settings) == valid_bounds()
    assert negotiation_config_from_settings(settings) == valid_config()


# --- pricing bounds ---

def test_min_discount_zero_raises() -> None:
    with pytest.raises(ValueError):
        validate_pricing_bounds(valid_bounds(min_discount=0.0))


def test_min_discount_above_one_raises() -> None:
    with pytest.raises(ValueError):
        validate_pricing_bounds(valid_bounds(min_discount=1.1))


def test_base_surge_below_one_raises() -> None:
    with pytest.raises(ValueError):
        validate_pricing_bounds(valid_bounds(base_surge=0.9))


def test_max_surge_below_base_surge_raises() -> None:
    with pytest.raises(ValueError):
        validate_pricing_bounds(valid_bounds(max_surge=1.1))


def test_settings_with_inverted_surge_band_rejected() -> None:
    get_settings.cache_clear()
    settings = replace(get_settings(), pricing_max_surge=1.0)
    with pytest.raises(ValueError):
        pricing_bounds_from_settings(settings)


def test_clamp_multiplier_respects_band() -> None:
    bounds = valid_bounds()
    assert bounds.clamp_multiplier(5.0) == 3.0
    assert bounds.clamp_multiplier(0.1) == 0.7
    assert bounds.clamp_multiplier(1.5) == 1.5


def test_clamp_price_respects_band() -> None:
    bounds = valid_bounds()
    assert bounds.clamp_price(100.0, 450.0) == pytest.approx(300.0)
    assert bounds.clamp_price(100.0, 12.0) == pytest.approx(70.0)
    assert bounds.clamp_price(100.0, 125.5) == 125.5


# --- negotiation terms ---

def test_duration_zero_raises() -> None:
    with pytest.raises(ValueError):
        validate_negotiation_config(valid_config(duration_seconds=0))


def test_acceptance_probability_above_one_raises() -> None:
    with pytest.raises(ValueError):
        validate_negotiation_config(valid_config(acceptance_probability=1.01))


def test_acceptance_probability_below_zero_raises() -> None:
    with pytest.raises(ValueError):
        validate_negotiation_config(valid_config(acceptance_probability=-0.01))


def test_non_positive_flexibility_raises() -> None:
    with pytest.raises(ValueError):
        validate_negotiation_config(valid_config(proposer_flexibility=0.0))


def test_lower_band_above_one_raises() -> None:
    with pytest.raises(ValueError):
        validate_negotiation_config(valid_config(lower_band=1.05))


def test_upper_band_below_one_raises() -> None:
    with pytest.raises(ValueError):
        validate_negotiation_config(valid_config(upper_band=0.95))


def test_non_positive_counter_adjustment_raises() -> None:
    with pytest.raises(ValueError):
        validate_negotiation_config(valid_config(counterparty_counter_adjustment=0.0))
