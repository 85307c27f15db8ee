"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from backend.domain.models import NegotiationOutcome, PricingRecommendation
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        return connection

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS PricingRecommendations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        trip_id TEXT NOT NULL,
                        base_price REAL NOT NULL CHECK (base_price > 0),
                        recommended_price REAL NOT NULL CHECK (recommended_price > 0),
                        confidence REAL NOT NULL,
                        market_position TEXT NOT NULL,
                        reason TEXT NOT NULL,
                        payload TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        expires_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS NegotiationOutcomes (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        session_id TEXT NOT NULL UNIQUE,
                        trip_id TEXT NOT NULL,
                        role TEXT NOT NULL,
                        original_price REAL NOT NULL,
                        final_price REAL NOT NULL,
                        accepted INTEGER NOT NULL CHECK (accepted IN (0,1)),
                        status TEXT NOT NULL,
                        offer_count INTEGER NOT NULL,
                        completed_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS PricingFeedback (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        trip_id TEXT NOT NULL,
                        actual_price REAL NOT NULL,
                        was_accepted INTEGER NOT NULL CHECK (was_accepted IN (0,1)),
                        created_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_recommendations_trip_expiry
                    ON PricingRecommendations(trip_id, expires_at);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def save_recommendation(
        self,
        trip_id: str,
        base_price: float,
        recommendation: PricingRecommendation,
        created_at: datetime,
    ) -> None:
        """Cache a recommendation until the configured TTL elapses; expired rows are purged."""
        expires_at = created_at + timedelta(seconds=self._settings.pricing_cache_ttl_seconds)
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM PricingRecommendations WHERE expires_at <= ?;",
                (created_at.isoformat(),),
            )
            if cursor.rowcount:
                logger.debug("Expired recommendations purged | count=%s", cursor.rowcount)
            cursor.execute(
                """
                INSERT INTO PricingRecommendations (
                    trip_id, base_price, recommended_price, confidence,
                    market_position, reason, payload, created_at, expires_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    trip_id,
                    base_price,
                    recommendation.recommended_price,
                    recommendation.confidence,
                    recommendation.competitor_analysis.market_position.value,
                    recommendation.reason,
                    json.dumps(recommendation.to_dict()),
                    created_at.isoformat(),
                    expires_at.isoformat(),
                ),
            )
            conn.commit()

    def get_latest_recommendation(self, trip_id: str, now: datetime) -> Optional[dict[str, Any]]:
        """Return the newest unexpired cached recommendation for a trip."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT base_price, payload, created_at, expires_at
                FROM PricingRecommendations
                WHERE trip_id = ? AND expires_at > ?
                ORDER BY created_at DESC, id DESC
                LIMIT 1;
                """,
                (trip_id, now.isoformat()),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            return {
                "trip_id": trip_id,
                "base_price": float(row["base_price"]),
                "recommendation": json.loads(str(row["payload"])),
                "created_at": str(row["created_at"]),
                "expires_at": str(row["expires_at"]),
            }

    def count_recommendations(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM PricingRecommendations;")
            return int(cursor.fetchone()["count"])

    def save_negotiation_outcome(self, outcome: NegotiationOutcome) -> None:
        """Persist the settled price of a finished negotiation session."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT OR IGNORE INTO NegotiationOutcomes (
                    session_id, trip_id, role, original_price, final_price,
                    accepted, status, offer_count, completed_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    outcome.session_id,
                    outcome.trip_id,
                    outcome.role.value,
                    outcome.original_price,
                    outcome.final_price,
                    1 if outcome.accepted else 0,
                    outcome.status.value,
                    outcome.offer_count,
                    outcome.completed_at.isoformat(),
                ),
            )
            conn.commit()

    def get_negotiation_outcome(self, session_id: str) -> Optional[dict[str, Any]]:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT session_id, trip_id, role, original_price, final_price,
                       accepted, status, offer_count, completed_at
                FROM NegotiationOutcomes
                WHERE session_id = ?;
                """,
                (session_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            result = dict(row)
            result["accepted"] = bool(result["accepted"])
            return result

    def count_negotiation_outcomes(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM NegotiationOutcomes;")
            return int(cursor.fetchone()["count"])

    def save_pricing_feedback(self, trip_id: str, actual_price: float, was_accepted: bool) -> None:
        """Store booking outcomes so the pricing weights can be revisited offline."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO PricingFeedback (trip_id, actual_price, was_accepted, created_at)
                VALUES (?, ?, ?, ?);
                """,
                (
                    trip_id,
                    actual_price,
                    1 if was_accepted else 0,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.commit()

    def count_pricing_feedback(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM PricingFeedback;")
            return int(cursor.fetchone()["count"])
