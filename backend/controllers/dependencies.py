"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from backend.services.demand_service import DemandPredictionService
from backend.services.negotiation_service import NegotiationCoordinator
from backend.services.pricing_service import DynamicPricingService


def _require_state(request: Request, attribute: str, label: str):
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_pricing_service(request: Request) -> DynamicPricingService:
    return _require_state(request, "pricing_service", "Pricing service")


def get_demand_service(request: Request) -> DemandPredictionService:
    return _require_state(request, "demand_service", "Demand service")


def get_negotiation_coordinator(request: Request) -> NegotiationCoordinator:
    return _require_state(request, "negotiation_coordinator", "Negotiation coordinator")
