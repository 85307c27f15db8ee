"""HTTP controller layer for dynamic trip pricing."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from backend.controllers.dependencies import get_pricing_service
from backend.services.presenters import pricing_view
from backend.services.pricing_service import DynamicPricingService, PricingValidationError
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/pricing", tags=["pricing"])


class OptimalPriceRequest(BaseModel):
    """Input DTO validated before entering service layer."""

    trip_id: str = Field(min_length=1, max_length=64)
    base_price: float = Field(gt=0.0, allow_inf_nan=False)

    @field_validator("trip_id")
    @classmethod
    def validate_trip_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("trip_id must be non-empty")
        return value.strip()


class PricingFactorsResponse(BaseModel):
    demand_level: float = Field(ge=0.0, le=100.0)
    supply_level: float = Field(ge=0.0, le=100.0)
    time_of_day: int = Field(ge=0, le=23)
    day_of_week: int = Field(ge=0, le=6)
    weather_impact: float = Field(ge=-50.0, le=50.0)
    event_impact: float = Field(ge=-50.0, le=50.0)
    competitor_pricing: float
    user_history: float = Field(ge=-10.0, le=10.0)


class CompetitorAnalysisResponse(BaseModel):
    average_price: float = Field(gt=0.0)
    market_position: str


class PriceChangeResponse(BaseModel):
    direction: str
    change_percent: float = Field(ge=0.0)


class OptimalPriceResponse(BaseModel):
    """Output DTO; the recommended price is always inside the surge band."""

    base_price: float = Field(gt=0.0, allow_inf_nan=False)
    recommended_price: float = Field(gt=0.0)
    confidence: float = Field(ge=0.0, le=100.0)
    reason: str
    factors: PricingFactorsResponse
    potential_revenue: float
    competitor_analysis: CompetitorAnalysisResponse
    multiplier: float = Field(gt=0.0)
    is_fallback: bool
    demand_badge: str
    price_change: PriceChangeResponse
    auto_apply: bool


class CachedRecommendationResponse(BaseModel):
    trip_id: str
    base_price: float
    recommendation: dict
    created_at: str
    expires_at: str


class PricingFeedbackRequest(BaseModel):
    trip_id: str = Field(min_length=1, max_length=64)
    actual_price: float = Field(gt=0.0, allow_inf_nan=False)
    was_accepted: bool


class PricingFeedbackResponse(BaseModel):
    trip_id: str
    recorded: bool


@router.post(
    "/optimal",
    response_model=OptimalPriceResponse,
    status_code=status.HTTP_200_OK,
)
def calculate_optimal_price(
    payload: OptimalPriceRequest,
    service: DynamicPricingService = Depends(get_pricing_service),
) -> OptimalPriceResponse:
    """Compute a bounded price; market-data outages degrade to the base price."""
    try:
        recommendation = service.calculate_optimal_price(payload.trip_id, payload.base_price)
        return OptimalPriceResponse(
            **pricing_view(
                payload.base_price,
                recommendation,
                auto_apply=service.should_auto_apply(recommendation),
            )
        )
    except PricingValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:
        logger.exception("Unexpected pricing failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to calculate price",
        ) from exc


@router.get(
    "/{trip_id}/cached",
    response_model=CachedRecommendationResponse,
    status_code=status.HTTP_200_OK,
)
def get_cached_recommendation(
    trip_id: str,
    service: DynamicPricingService = Depends(get_pricing_service),
) -> CachedRecommendationResponse:
    cached = service.get_cached_recommendation(trip_id)
    if cached is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No cached recommendation for trip {trip_id}",
        )
    return CachedRecommendationResponse(**cached)


@router.post(
    "/feedback",
    response_model=PricingFeedbackResponse,
    status_code=status.HTTP_201_CREATED,
)
def record_pricing_feedback(
    payload: PricingFeedbackRequest,
    service: DynamicPricingService = Depends(get_pricing_service),
) -> PricingFeedbackResponse:
    try:
        service.record_feedback(payload.trip_id, payload.actual_price, payload.was_accepted)
        return PricingFeedbackResponse(trip_id=payload.trip_id, recorded=True)
    except PricingValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:
        logger.exception("Unexpected feedback failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record pricing feedback",
        ) from exc
