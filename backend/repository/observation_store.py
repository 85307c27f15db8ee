"""Bounded in-memory store of historical demand observations."""

from __future__ import annotations

import math
import random
from collections import deque
from datetime import datetime, timedelta, timezone
from threading import RLock
from typing import Any, Mapping, Optional

from backend.domain.models import HistoricalObservation, as_utc, day_of_week
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class ObservationStore:
    """Ring buffer of observations; the oldest entry is evicted at capacity.

    Readers always receive a snapshot list, so iteration never races with
    concurrent appends.
    """

    def __init__(self, capacity: Optional[int] = None, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        resolved_capacity = capacity if capacity is not None else self._settings.demand_history_capacity
        if resolved_capacity <= 0:
            raise ValueError("capacity must be a positive integer")
        self._observations: deque[HistoricalObservation] = deque(maxlen=resolved_capacity)
        self._lock = RLock()

    @property
    def capacity(self) -> int:
        return int(self._observations.maxlen or 0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._observations)

    def append(
        self,
        demand: float,
        factors: Optional[Mapping[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> HistoricalObservation:
        observation = HistoricalObservation(
            timestamp=as_utc(timestamp) if timestamp is not None else datetime.now(timezone.utc),
            demand=float(demand),
            factors=dict(factors or {}),
        )
        with self._lock:
            self._observations.append(observation)
        return observation

    def snapshot(self) -> list[HistoricalObservation]:
        with self._lock:
            return list(self._observations)

    def query(self, start: datetime, end: datetime) -> list[HistoricalObservation]:
        """Return observations with ``start <= timestamp <= end`` in insertion order."""
        start, end = as_utc(start), as_utc(end)
        return [item for item in self.snapshot() if start <= item.timestamp <= end]

    def clear(self) -> None:
        with self._lock:
            self._observations.clear()

    def seed_synthetic_history(self, now: Optional[datetime] = None) -> int:
        """Fill an empty store with a deterministic daily demand curve."""
        if len(self) > 0:
            logger.info("Observation history already present; skipping seed")
            return 0

        rng = random.Random(self._settings.synthetic_random_seed)
        end = (now or datetime.now(timezone.utc)).replace(minute=0, second=0, microsecond=0)
        days = self._settings.synthetic_seed_days
        per_day = self._settings.synthetic_observations_per_day
        step = timedelta(hours=24 / per_day)
        start = end - timedelta(days=days)

        created = 0
        current = start
        while current < end:
            hour = current.hour
            # Two commuter peaks on top of a flat baseline.
            commute = 25.0 * (
                math.exp(-((hour - 8) ** 2) / 4.0) + math.exp(-((hour - 18) ** 2) / 4.0)
            )
            weekend_boost = 10.0 if current.weekday() >= 5 else 0.0
            demand = min(100.0, max(0.0, 35.0 + commute + weekend_boost + rng.gauss(0.0, 5.0)))
            self.append(
                demand=round(demand, 2),
                factors={
                    "time_of_day": hour,
                    "day_of_week": day_of_week(current),
                },
                timestamp=current,
            )
            created += 1
            current += step

        logger.info("Synthetic observation seed completed | records=%s | retained=%s", created, len(self))
        return created
