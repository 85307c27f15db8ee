"""Offline analysis of historical demand: peaks, seasonality and anomalies."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import numpy as np
import pandas as pd

from backend.domain.models import (
    DemandAnomaly,
    DemandPatternReport,
    HistoricalObservation,
    as_utc,
    day_of_week,
)
from backend.repository.observation_store import ObservationStore
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

MONTH_NAMES = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
PEAK_HOUR_COUNT = 3
PEAK_DAY_COUNT = 2


class PatternValidationError(Exception):
    """Raised when the requested analysis window is invalid."""


def build_observation_frame(observations: list[HistoricalObservation]) -> pd.DataFrame:
    """Flatten observations into a frame keyed by hour, day and month."""
    frame = pd.DataFrame(
        [
            {
                "demand": float(item.demand),
                "hour": item.timestamp.hour,
                "day": day_of_week(item.timestamp),
                "month": item.timestamp.month,
            }
            for item in observations
        ],
        columns=["demand", "hour", "day", "month"],
    )
    return frame


def _top_keys(frame: pd.DataFrame, key: str, count: int) -> list[int]:
    if frame.empty:
        return []
    averages = frame.groupby(key, sort=True)["demand"].mean()
    # Stable sort keeps ascending key order among equal averages.
    ranked = averages.sort_values(ascending=False, kind="stable")
    return [int(value) for value in ranked.index[:count]]


def find_peak_hours(frame: pd.DataFrame) -> list[int]:
    return _top_keys(frame, "hour", PEAK_HOUR_COUNT)


def find_peak_days(frame: pd.DataFrame) -> list[int]:
    return _top_keys(frame, "day", PEAK_DAY_COUNT)


def calculate_seasonal_trends(frame: pd.DataFrame) -> dict[str, float]:
    if frame.empty:
        return {}
    monthly = frame.groupby("month", sort=True)["demand"].mean()
    return {MONTH_NAMES[int(month) - 1]: float(value) for month, value in monthly.items()}


def detect_anomalies(
    observations: list[HistoricalObservation],
    min_observations: int = 10,
    z_threshold: float = 2.0,
) -> list[DemandAnomaly]:
    """Flag observations further than ``z_threshold`` population std devs from the mean."""
    if len(observations) < min_observations:
        return []

    demands = np.array([item.demand for item in observations], dtype=float)
    mean = float(np.mean(demands))
    std = float(np.std(demands))
    if std == 0.0:
        return []

    z_scores = np.abs(demands - mean) / std
    return [
        DemandAnomaly(
            timestamp=observations[index].timestamp,
            demand=observations[index].demand,
            reason=(
                f"Unusual demand level ({observations[index].demand:g}) "
                f"compared to average ({mean:.1f})"
            ),
        )
        for index in np.flatnonzero(z_scores > z_threshold)
    ]


class DemandPatternService:
    """Summarises a window of stored observations for analytics consumers."""

    def __init__(
        self,
        store: ObservationStore,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store

    def analyze_demand_patterns(
        self,
        location: str,
        start: datetime,
        end: datetime,
    ) -> DemandPatternReport:
        start, end = as_utc(start), as_utc(end)
        if start > end:
            raise PatternValidationError("start must not be after end")

        observations = self._store.query(start, end)
        frame = build_observation_frame(observations)
        report = DemandPatternReport(
            peak_hours=find_peak_hours(frame),
            peak_days=find_peak_days(frame),
            seasonal_trends=calculate_seasonal_trends(frame),
            anomalies=detect_anomalies(
                observations,
                min_observations=self._settings.demand_anomaly_min_observations,
                z_threshold=self._settings.demand_anomaly_z_threshold,
            ),
        )
        logger.info(
            "Demand pattern analysis completed | location=%s | observations=%s | anomalies=%s",
            location,
            len(observations),
            len(report.anomalies),
        )
        return report
