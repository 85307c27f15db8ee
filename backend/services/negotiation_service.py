"""Time-boxed price negotiation between a trip's proposer and counterparty.

``NegotiationSession`` is the pure state machine: it owns the offer history
and moves from ``active`` to exactly one terminal status. It has no timer of
its own; something external calls ``tick()`` once per second. The
``NegotiationCoordinator`` creates sessions anchored on the pricing service's
recommendation, keeps the registry, drives ticks with a cancellable
``RepeatingTimer`` and records settled outcomes.
"""

from __future__ import annotations

import math
import random
import sqlite3
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock, RLock
from typing import Any, Callable, Optional, Union
from uuid import uuid4

from backend.domain.constraints import NegotiationConfig, negotiation_config_from_settings
from backend.domain.models import (
    NegotiationOffer,
    NegotiationOutcome,
    NegotiationParty,
    NegotiationStatus,
)
from backend.repository.data_repository import DataRepository
from backend.services.pricing_service import DynamicPricingService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger
from backend.utils.scheduler import RepeatingTimer


logger = get_logger(__name__)

CompletionCallback = Callable[[float, bool], None]
PartyLike = Union[NegotiationParty, str]

INITIAL_OFFER_CONFIDENCE = 100.0
MANUAL_OFFER_CONFIDENCE = 80.0
COUNTER_OFFER_CONFIDENCE = 75.0


class NegotiationError(Exception):
    """Base exception for negotiation workflow failures."""


class NegotiationInitializationError(NegotiationError):
    """Raised when a session cannot be opened with the given terms."""


class NegotiationNotFoundError(NegotiationError):
    """Raised when a session id is not registered."""


@dataclass(frozen=True)
class OfferResult:
    """What a ``make_offer`` call did to the session.

    ``handled_condition`` is set when the call was ignored, for example
    because the session already reached a terminal status.
    """

    status: NegotiationStatus
    current_offer: float
    accepted: bool
    offer: Optional[NegotiationOffer] = None
    counter_offer: Optional[NegotiationOffer] = None
    handled_condition: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.handled_condition is None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_offer_id() -> str:
    return uuid4().hex[:12]


def build_suggestions(
    recommended_price: float,
    original_price: float,
    role: NegotiationParty,
    threshold_pct: float = 10.0,
) -> list[str]:
    """Advice for ``role`` based on where the recommendation sits vs the anchor."""
    price_diff = (recommended_price - original_price) / original_price * 100.0
    suggestions: list[str] = []

    if role is NegotiationParty.COUNTERPARTY:
        if price_diff < -threshold_pct:
            suggestions.append(
                f"Suggested offer: {recommended_price:.2f} ({abs(price_diff):.1f}% lower)"
            )
            suggestions.append("High chance of acceptance based on current demand")
        elif price_diff > threshold_pct:
            suggestions.append("Current market conditions favor higher prices")
            suggestions.append("Consider accepting the current price to secure the ride")
    else:
        if price_diff > threshold_pct:
            suggestions.append(
                f"Suggested ask: {recommended_price:.2f} ({price_diff:.1f}% higher)"
            )
            suggestions.append("Strong demand supports higher pricing")
        else:
            suggestions.append("Market conditions are competitive")
            suggestions.append("Consider slight discount to fill seats quickly")

    return suggestions


def _is_valid_price(value: float) -> bool:
    return math.isfinite(value) and value > 0


def _coerce_party(value: PartyLike) -> NegotiationParty:
    party = NegotiationParty(value)
    if party is NegotiationParty.SYSTEM:
        raise ValueError("system cannot negotiate")
    return party


class NegotiationSession:
    """Single negotiation; all mutations are serialized by one re-entrant lock."""

    def __init__(
        self,
        trip_id: str,
        original_price: float,
        role: PartyLike,
        config: NegotiationConfig,
        rng: random.Random,
        *,
        suggestions: Optional[list[str]] = None,
        on_complete: Optional[CompletionCallback] = None,
        clock: Optional[Callable[[], datetime]] = None,
        session_id: Optional[str] = None,
    ) -> None:
        if not _is_valid_price(original_price):
            raise NegotiationInitializationError("original_price must be a finite number greater than zero")
        try:
            resolved_role = _coerce_party(role)
        except ValueError as exc:
            raise NegotiationInitializationError(
                "role must be 'proposer' or 'counterparty'"
            ) from exc

        self._lock = RLock()
        self._config = config
        self._rng = rng
        self._clock = clock or _utc_now
        self.session_id = session_id or f"neg_{uuid4().hex[:12]}"
        self.trip_id = trip_id
        self.role = resolved_role
        self.original_price = float(original_price)

        flexibility = (
            config.counterparty_flexibility
            if resolved_role is NegotiationParty.COUNTERPARTY
            else config.proposer_flexibility
        )
        # Bounds are kept on the cent grid so rounded counters stay inside them.
        self.min_acceptable = round(self.original_price * flexibility * config.lower_band, 2)
        self.max_acceptable = round(self.original_price * flexibility * config.upper_band, 2)

        self._status = NegotiationStatus.ACTIVE
        self._current_offer = self.original_price
        self._time_remaining = config.duration_seconds
        self._suggestions = list(suggestions or [])
        self._offers: list[NegotiationOffer] = [
            NegotiationOffer(
                offer_id="initial",
                price=self.original_price,
                timestamp=self._clock(),
                party=NegotiationParty.SYSTEM,
                reason="Initial price based on route and demand",
                confidence=INITIAL_OFFER_CONFIDENCE,
            )
        ]
        self._listeners: list[CompletionCallback] = [on_complete] if on_complete else []
        self._cancel_timer: Optional[Callable[[], None]] = None
        self._completed_at: Optional[datetime] = None

    @property
    def status(self) -> NegotiationStatus:
        return self._status

    @property
    def current_offer(self) -> float:
        return self._current_offer

    @property
    def time_remaining(self) -> int:
        return self._time_remaining

    @property
    def offers(self) -> tuple[NegotiationOffer, ...]:
        with self._lock:
            return tuple(self._offers)

    @property
    def suggestions(self) -> tuple[str, ...]:
        return tuple(self._suggestions)

    @property
    def completed_at(self) -> Optional[datetime]:
        return self._completed_at

    @property
    def is_active(self) -> bool:
        return self._status is NegotiationStatus.ACTIVE

    def add_completion_listener(self, listener: CompletionCallback) -> None:
        with self._lock:
            self._listeners.append(listener)

    def attach_timer(self, cancel: Callable[[], None]) -> None:
        """Register the cancellation handle of whatever drives ``tick()``."""
        with self._lock:
            if not self.is_active:
                cancel()
                return
            self._cancel_timer = cancel

    def _finish(self, status: NegotiationStatus, final_price: float, accepted: bool) -> None:
        self._status = status
        self._current_offer = final_price
        self._completed_at = self._clock()
        if self._cancel_timer is not None:
            self._cancel_timer()
            self._cancel_timer = None
        logger.info(
            "Negotiation finished | session_id=%s | trip_id=%s | status=%s | final_price=%.2f",
            self.session_id,
            self.trip_id,
            status.value,
            final_price,
        )
        for listener in self._listeners:
            try:
                listener(final_price, accepted)
            except Exception:
                logger.exception(
                    "Negotiation completion listener failed | session_id=%s",
                    self.session_id,
                )

    def _ignored(self, condition: str) -> OfferResult:
        logger.warning(
            "Negotiation offer ignored | session_id=%s | reason=%s",
            self.session_id,
            condition,
        )
        return OfferResult(
            status=self._status,
            current_offer=self._current_offer,
            accepted=self._status is NegotiationStatus.ACCEPTED,
            handled_condition=condition,
        )

    def tick(self) -> NegotiationStatus:
        """Advance the countdown by one second."""
        with self._lock:
            if not self.is_active:
                return self._status
            self._time_remaining -= 1
            if self._time_remaining <= 0:
                self._time_remaining = 0
                self._finish(NegotiationStatus.EXPIRED, self._current_offer, False)
            return self._status

    def _is_acceptable(self, price: float, party: NegotiationParty) -> bool:
        if party is NegotiationParty.PROPOSER:
            within_role_bound = price <= self.max_acceptable
        else:
            within_role_bound = price >= self.min_acceptable
        within_band = self.min_acceptable <= price <= self.max_acceptable
        return within_role_bound and within_band

    def _counter_price(self, price: float, party: NegotiationParty) -> float:
        adjustment = (
            self._config.counterparty_counter_adjustment
            if party is NegotiationParty.COUNTERPARTY
            else self._config.proposer_counter_adjustment
        )
        bounded = min(self.max_acceptable, max(self.min_acceptable, price * adjustment))
        return round(bounded, 2)

    def make_offer(self, price: float, by_party: PartyLike) -> OfferResult:
        with self._lock:
            if not self.is_active:
                return self._ignored(f"negotiation is {self._status.value}")
            try:
                party = _coerce_party(by_party)
            except ValueError:
                return self._ignored(f"invalid offering party: {by_party}")
            if not _is_valid_price(price):
                return self._ignored("offer price must be a finite number greater than zero")

            price = float(price)
            offer = NegotiationOffer(
                offer_id=_new_offer_id(),
                price=price,
                timestamp=self._clock(),
                party=party,
                reason=f"Manual offer by {party.value}",
                confidence=MANUAL_OFFER_CONFIDENCE,
                is_counter_offer=len(self._offers) > 1,
            )

            if (
                self._is_acceptable(price, party)
                and self._rng.random() < self._config.acceptance_probability
            ):
                accepted_offer = NegotiationOffer(
                    offer_id=offer.offer_id,
                    price=offer.price,
                    timestamp=offer.timestamp,
                    party=offer.party,
                    reason=offer.reason,
                    confidence=offer.confidence,
                    is_accepted=True,
                    is_counter_offer=offer.is_counter_offer,
                )
                self._offers.append(accepted_offer)
                self._finish(NegotiationStatus.ACCEPTED, price, True)
                return OfferResult(
                    status=self._status,
                    current_offer=self._current_offer,
                    accepted=True,
                    offer=accepted_offer,
                )

            counter_offer = NegotiationOffer(
                offer_id=_new_offer_id(),
                price=self._counter_price(price, party),
                timestamp=self._clock(),
                party=party.opponent,
                reason="Automated counter-offer",
                confidence=COUNTER_OFFER_CONFIDENCE,
                is_counter_offer=True,
            )
            self._offers.append(offer)
            self._offers.append(counter_offer)
            self._current_offer = counter_offer.price
            logger.info(
                "Negotiation counter-offer | session_id=%s | offered=%.2f | by=%s | counter=%.2f",
                self.session_id,
                price,
                party.value,
                counter_offer.price,
            )
            return OfferResult(
                status=self._status,
                current_offer=self._current_offer,
                accepted=False,
                offer=offer,
                counter_offer=counter_offer,
            )

    def accept_current_offer(self) -> bool:
        with self._lock:
            if not self.is_active:
                self._ignored(f"negotiation is {self._status.value}")
                return False
            self._finish(NegotiationStatus.ACCEPTED, self._current_offer, True)
            return True

    def reject_negotiation(self) -> bool:
        with self._lock:
            if not self.is_active:
                self._ignored(f"negotiation is {self._status.value}")
                return False
            self._finish(NegotiationStatus.REJECTED, self._current_offer, False)
            return True

    def close(self, reason: str = "cancelled") -> bool:
        """End the session early, e.g. when the trip itself is cancelled."""
        with self._lock:
            if not self.is_active:
                return False
            logger.info(
                "Negotiation closed early | session_id=%s | reason=%s",
                self.session_id,
                reason,
            )
            self._finish(NegotiationStatus.REJECTED, self._current_offer, False)
            return True

    def to_outcome(self) -> NegotiationOutcome:
        with self._lock:
            if self.is_active or self._completed_at is None:
                raise NegotiationError("negotiation has not finished")
            return NegotiationOutcome(
                session_id=self.session_id,
                trip_id=self.trip_id,
                role=self.role,
                original_price=self.original_price,
                final_price=self._current_offer,
                accepted=self._status is NegotiationStatus.ACCEPTED,
                status=self._status,
                offer_count=len(self._offers),
                completed_at=self._completed_at,
            )


class NegotiationCoordinator:
    """Creates, drives and finalizes negotiation sessions."""

    def __init__(
        self,
        pricing_service: DynamicPricingService,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._config = negotiation_config_from_settings(self._settings)
        self._pricing_service = pricing_service
        self._repository = repository
        self._rng = rng or random.Random(self._settings.random_seed)
        self._clock = clock or _utc_now
        self._sessions: dict[str, NegotiationSession] = {}
        self._timers: dict[str, RepeatingTimer] = {}
        self._finished: deque[str] = deque()
        self._registry_lock = Lock()

    def create_session(
        self,
        trip_id: str,
        original_price: float,
        role: PartyLike,
        on_complete: Optional[CompletionCallback] = None,
        *,
        start_timer: bool = True,
    ) -> NegotiationSession:
        if not _is_valid_price(original_price):
            raise NegotiationInitializationError("original_price must be a finite number greater than zero")

        try:
            resolved_role = _coerce_party(role)
        except ValueError as exc:
            raise NegotiationInitializationError(
                "role must be 'proposer' or 'counterparty'"
            ) from exc

        recommendation = self._pricing_service.calculate_optimal_price(
            trip_id,
            original_price,
            persist=False,
        )

        session = NegotiationSession(
            trip_id=trip_id,
            original_price=original_price,
            role=resolved_role,
            config=self._config,
            rng=self._rng,
            suggestions=build_suggestions(
                recommendation.recommended_price,
                original_price,
                resolved_role,
                self._settings.negotiation_suggestion_threshold_pct,
            ),
            on_complete=on_complete,
            clock=self._clock,
        )
        session.add_completion_listener(
            lambda final_price, accepted: self._record_outcome(session)
        )

        with self._registry_lock:
            self._sessions[session.session_id] = session

        if start_timer:
            self._start_timer(session)

        logger.info(
            (
                "Negotiation opened | session_id=%s | trip_id=%s | role=%s | "
                "original=%.2f | bounds=[%.2f, %.2f] | recommended=%.2f"
            ),
            session.session_id,
            trip_id,
            resolved_role.value,
            original_price,
            session.min_acceptable,
            session.max_acceptable,
            recommendation.recommended_price,
        )
        return session

    def _start_timer(self, session: NegotiationSession) -> None:
        def _tick() -> bool:
            return session.tick() is NegotiationStatus.ACTIVE

        timer = RepeatingTimer(
            self._settings.negotiation_tick_interval_seconds,
            _tick,
            name=f"negotiation-{session.session_id}",
        )
        with self._registry_lock:
            self._timers[session.session_id] = timer
        session.attach_timer(timer.cancel)
        timer.start()

    def _record_outcome(self, session: NegotiationSession) -> None:
        with self._registry_lock:
            self._timers.pop(session.session_id, None)
        if self._repository is not None:
            try:
                self._repository.save_negotiation_outcome(session.to_outcome())
            except sqlite3.Error:
                logger.exception(
                    "Failed to persist negotiation outcome | session_id=%s",
                    session.session_id,
                )
        self._evict_finished(session.session_id)

    def _evict_finished(self, session_id: str) -> None:
        """Keep only the most recently finished sessions in memory."""
        retention = max(0, self._settings.negotiation_finished_session_retention)
        with self._registry_lock:
            self._finished.append(session_id)
            evicted = 0
            while len(self._finished) > retention:
                self._sessions.pop(self._finished.popleft(), None)
                evicted += 1
        if evicted:
            logger.debug("Finished negotiations evicted | count=%s", evicted)

    def find_session(self, session_id: str) -> Optional[NegotiationSession]:
        with self._registry_lock:
            return self._sessions.get(session_id)

    def get_session(self, session_id: str) -> NegotiationSession:
        session = self.find_session(session_id)
        if session is None:
            raise NegotiationNotFoundError(f"negotiation {session_id} not found")
        return session

    def get_outcome(self, session_id: str) -> dict[str, Any]:
        """Settled result of a session that is no longer held in memory."""
        outcome = None
        if self._repository is not None:
            outcome = self._repository.get_negotiation_outcome(session_id)
        if outcome is None:
            raise NegotiationNotFoundError(f"negotiation {session_id} not found")
        return outcome

    def list_sessions(self, status: Optional[NegotiationStatus] = None) -> list[NegotiationSession]:
        with self._registry_lock:
            sessions = list(self._sessions.values())
        if status is None:
            return sessions
        return [session for session in sessions if session.status is status]

    def make_offer(self, session_id: str, price: float, by_party: PartyLike) -> OfferResult:
        return self.get_session(session_id).make_offer(price, by_party)

    def accept_current_offer(self, session_id: str) -> NegotiationSession:
        session = self.get_session(session_id)
        session.accept_current_offer()
        return session

    def reject_negotiation(self, session_id: str) -> NegotiationSession:
        session = self.get_session(session_id)
        session.reject_negotiation()
        return session

    def close_session(self, session_id: str, reason: str = "cancelled") -> NegotiationSession:
        session = self.get_session(session_id)
        session.close(reason)
        return session

    def active_timer_count(self) -> int:
        with self._registry_lock:
            return sum(1 for timer in self._timers.values() if not timer.cancelled)

    def shutdown(self) -> None:
        """Cancel every running timer; sessions keep their current state."""
        with self._registry_lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        logger.info("Negotiation coordinator shut down | cancelled_timers=%s", len(timers))
