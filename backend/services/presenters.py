"""Read-only mapping of pricing and negotiation state to display values."""

from __future__ import annotations

from typing import Any

from backend.domain.models import NegotiationOffer, NegotiationStatus, PricingRecommendation
from backend.services.negotiation_service import NegotiationSession


STATUS_COLORS = {
    NegotiationStatus.ACTIVE: "blue",
    NegotiationStatus.ACCEPTED: "green",
    NegotiationStatus.REJECTED: "red",
    NegotiationStatus.EXPIRED: "orange",
}

STATUS_ICONS = {
    NegotiationStatus.ACTIVE: "message-circle",
    NegotiationStatus.ACCEPTED: "check-circle",
    NegotiationStatus.REJECTED: "x-circle",
    NegotiationStatus.EXPIRED: "clock",
}


def format_time_remaining(seconds: int) -> str:
    """Render a countdown as ``m:ss``."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def demand_badge(demand_level: float) -> str:
    if demand_level > 80:
        return "peak"
    if demand_level > 60:
        return "high"
    if demand_level > 40:
        return "medium"
    if demand_level > 20:
        return "low"
    return "very-low"


def price_change_indicator(base_price: float, recommended_price: float) -> dict[str, Any]:
    change_percent = (recommended_price - base_price) / base_price * 100.0
    if change_percent > 0:
        direction = "increase"
    elif change_percent < 0:
        direction = "decrease"
    else:
        direction = "unchanged"
    return {
        "direction": direction,
        "change_percent": round(abs(change_percent), 1),
    }


def offer_view(offer: NegotiationOffer) -> dict[str, Any]:
    return {
        "offer_id": offer.offer_id,
        "price": offer.price,
        "timestamp": offer.timestamp.isoformat(),
        "party": offer.party.value,
        "reason": offer.reason,
        "confidence": offer.confidence,
        "is_accepted": offer.is_accepted,
        "is_counter_offer": offer.is_counter_offer,
    }


def negotiation_view(session: NegotiationSession) -> dict[str, Any]:
    status = session.status
    return {
        "session_id": session.session_id,
        "trip_id": session.trip_id,
        "role": session.role.value,
        "status": status.value,
        "status_color": STATUS_COLORS[status],
        "status_icon": STATUS_ICONS[status],
        "original_price": session.original_price,
        "current_offer": session.current_offer,
        "min_acceptable": session.min_acceptable,
        "max_acceptable": session.max_acceptable,
        "time_remaining": session.time_remaining,
        "time_remaining_display": format_time_remaining(session.time_remaining),
        "offers": [offer_view(offer) for offer in session.offers],
        "suggestions": list(session.suggestions),
    }


def outcome_view(outcome: dict[str, Any]) -> dict[str, Any]:
    """Stored outcome of a session that has left the in-memory registry."""
    status = NegotiationStatus(outcome["status"])
    return {
        **outcome,
        "status_color": STATUS_COLORS[status],
        "status_icon": STATUS_ICONS[status],
    }


def pricing_view(
    base_price: float,
    recommendation: PricingRecommendation,
    auto_apply: bool = False,
) -> dict[str, Any]:
    payload = recommendation.to_dict()
    payload["base_price"] = base_price
    payload["demand_badge"] = demand_badge(recommendation.factors.demand_level)
    payload["price_change"] = price_change_indicator(base_price, recommendation.recommended_price)
    payload["auto_apply"] = auto_apply
    return payload
