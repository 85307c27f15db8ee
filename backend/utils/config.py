"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]
ENV_PREFIX = "PRICING_ENGINE_"


def _env(name: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _env_optional_int(name: str) -> Optional[int]:
    raw = os.getenv(f"{ENV_PREFIX}{name}")
    if raw is None or not raw.strip():
        return None
    return int(raw)


@dataclass(frozen=True)
class Settings:
    """Every tunable of the pricing engine in one immutable object."""

    app_name: str = "Ride Pricing & Negotiation Engine"
    app_version: str = "1.0.0"
    log_level: str = "INFO"
    database_path: Path = PROJECT_ROOT / "data" / "pricing_engine.db"

    # Market data gateway
    gateway_mode: str = "simulated"
    gateway_base_url: str = "http://127.0.0.1:9000"
    gateway_timeout_seconds: float = 3.0
    random_seed: Optional[int] = None

    # Demand prediction
    demand_history_capacity: int = 1000
    demand_prediction_horizons: tuple[int, ...] = (1, 6, 12, 24, 72)
    demand_default_horizon_hours: int = 24
    demand_hour_match_window: int = 2
    demand_holidays: tuple[tuple[int, int], ...] = ((1, 1), (5, 15), (7, 15), (12, 25))
    demand_weight_time_of_day: float = 0.25
    demand_weight_day_of_week: float = 0.20
    demand_weight_weather: float = 0.15
    demand_weight_events: float = 0.15
    demand_weight_historical: float = 0.15
    demand_weight_economic: float = 0.10
    demand_historical_blend: float = 0.30
    demand_weekend_multiplier: float = 1.2
    demand_holiday_multiplier: float = 1.3
    demand_trend_threshold: float = 0.10
    demand_anomaly_min_observations: int = 10
    demand_anomaly_z_threshold: float = 2.0

    # Price optimization
    pricing_base_surge: float = 1.2
    pricing_max_surge: float = 3.0
    pricing_min_discount: float = 0.7
    pricing_elasticity: float = -0.3
    pricing_competitor_factor: float = 0.8
    pricing_urgency_factor: float = 0.6
    pricing_weather_factor: float = 0.005
    pricing_event_factor: float = 0.003
    pricing_reference_price_per_km: float = 0.8
    pricing_weight_time_of_day: float = 0.3
    pricing_weight_day_of_week: float = 0.2
    pricing_weight_weather: float = 0.15
    pricing_weight_events: float = 0.15
    pricing_weight_historical_demand: float = 0.2
    pricing_auto_apply_confidence: float = 85.0
    pricing_cache_ttl_seconds: int = 3600
    pricing_refresh_interval_seconds: float = 30.0

    # Negotiation
    negotiation_duration_seconds: int = 300
    negotiation_tick_interval_seconds: float = 1.0
    negotiation_acceptance_probability: float = 0.7
    negotiation_counterparty_flexibility: float = 0.9
    negotiation_proposer_flexibility: float = 1.1
    negotiation_lower_band: float = 0.8
    negotiation_upper_band: float = 1.2
    negotiation_counterparty_counter_adjustment: float = 1.05
    negotiation_proposer_counter_adjustment: float = 0.95
    negotiation_suggestion_threshold_pct: float = 10.0
    negotiation_finished_session_retention: int = 100

    # Synthetic history used by the simulated deployment
    synthetic_random_seed: int = 42
    synthetic_seed_days: int = 28
    synthetic_observations_per_day: int = 24
    synthetic_locations: tuple[str, ...] = field(
        default_factory=lambda: ("Dubai", "Abu Dhabi", "Sharjah")
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings with environment overrides applied."""
    defaults = Settings()
    return Settings(
        app_name=_env("APP_NAME", defaults.app_name),
        app_version=_env("APP_VERSION", defaults.app_version),
        log_level=_env("LOG_LEVEL", defaults.log_level),
        database_path=Path(_env("DATABASE_PATH", str(defaults.database_path))),
        gateway_mode=_env("GATEWAY_MODE", defaults.gateway_mode).lower(),
        gateway_base_url=_env("GATEWAY_BASE_URL", defaults.gateway_base_url),
        gateway_timeout_seconds=float(
            _env("GATEWAY_TIMEOUT_SECONDS", str(defaults.gateway_timeout_seconds))
        ),
        random_seed=_env_optional_int("RANDOM_SEED"),
        negotiation_duration_seconds=int(
            _env("NEGOTIATION_DURATION_SECONDS", str(defaults.negotiation_duration_seconds))
        ),
        negotiation_acceptance_probability=float(
            _env(
                "NEGOTIATION_ACCEPTANCE_PROBABILITY",
                str(defaults.negotiation_acceptance_probability),
            )
        ),
        negotiation_finished_session_retention=int(
            _env(
                "NEGOTIATION_FINISHED_SESSION_RETENTION",
                str(defaults.negotiation_finished_session_retention),
            )
        ),
        pricing_refresh_interval_seconds=float(
            _env(
                "PRICING_REFRESH_INTERVAL_SECONDS",
                str(defaults.pricing_refresh_interval_seconds),
            )
        ),
    )
