"""HTTP controller layer for demand forecasting and pattern analysis."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from backend.controllers.dependencies import get_demand_service
from backend.services.demand_service import DemandPredictionService, DemandValidationError
from backend.services.pattern_service import PatternValidationError
from backend.services.presenters import demand_badge
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/demand", tags=["demand"])


class DemandPredictionRequest(BaseModel):
    location: str = Field(min_length=1, max_length=128)
    timestamp: datetime | None = None
    horizon_hours: int | None = Field(default=None, gt=0, le=168)


class DemandHorizonsRequest(BaseModel):
    location: str = Field(min_length=1, max_length=128)
    base_timestamp: datetime | None = None


class DemandPatternsRequest(BaseModel):
    location: str = Field(min_length=1, max_length=128)
    start: datetime
    end: datetime


class DemandObservationRequest(BaseModel):
    demand: float = Field(ge=0.0, le=100.0)
    timestamp: datetime | None = None
    factors: dict[str, Any] = Field(default_factory=dict)


class DemandFactorsResponse(BaseModel):
    time_of_day: int = Field(ge=0, le=23)
    day_of_week: int = Field(ge=0, le=6)
    weather_condition: str
    temperature: float
    is_holiday: bool
    is_weekend: bool
    event_impact: float = Field(ge=0.0, le=100.0)
    historical_demand: float = Field(ge=0.0, le=100.0)
    competitor_activity: float = Field(ge=0.0, le=100.0)
    economic_indicator: float = Field(ge=0.0, le=100.0)


class DemandPredictionResponse(BaseModel):
    """Output DTO constrained to the documented score bounds."""

    predicted_demand: float = Field(ge=0.0, le=100.0)
    confidence: float = Field(ge=30.0, le=95.0)
    time_horizon: int = Field(gt=0)
    factors: DemandFactorsResponse
    trend: str
    volatility: float = Field(ge=0.0, le=100.0)
    recommendations: list[str]
    is_fallback: bool
    demand_badge: str


class DemandHorizonsResponse(BaseModel):
    location: str
    predictions: list[DemandPredictionResponse]


class DemandAnomalyResponse(BaseModel):
    timestamp: datetime
    demand: float
    reason: str


class DemandPatternsResponse(BaseModel):
    location: str
    peak_hours: list[int]
    peak_days: list[int]
    seasonal_trends: dict[str, float]
    anomalies: list[DemandAnomalyResponse]


class DemandObservationResponse(BaseModel):
    timestamp: datetime
    demand: float
    stored_observations: int = Field(ge=0)


def _prediction_response(prediction) -> DemandPredictionResponse:
    payload = prediction.to_dict()
    payload["demand_badge"] = demand_badge(prediction.predicted_demand)
    return DemandPredictionResponse(**payload)


@router.post(
    "/predict",
    response_model=DemandPredictionResponse,
    status_code=status.HTTP_200_OK,
)
def predict_demand(
    payload: DemandPredictionRequest,
    service: DemandPredictionService = Depends(get_demand_service),
) -> DemandPredictionResponse:
    try:
        prediction = service.predict_demand(
            location=payload.location,
            timestamp=payload.timestamp,
            horizon_hours=payload.horizon_hours,
        )
        return _prediction_response(prediction)
    except DemandValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:
        logger.exception("Unexpected demand prediction failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to predict demand",
        ) from exc


@router.post(
    "/horizons",
    response_model=DemandHorizonsResponse,
    status_code=status.HTTP_200_OK,
)
def predict_multiple_horizons(
    payload: DemandHorizonsRequest,
    service: DemandPredictionService = Depends(get_demand_service),
) -> DemandHorizonsResponse:
    """Forecast every configured horizon in ascending order."""
    try:
        predictions = service.predict_multiple_horizons(payload.location, payload.base_timestamp)
        return DemandHorizonsResponse(
            location=payload.location,
            predictions=[_prediction_response(item) for item in predictions],
        )
    except Exception as exc:
        logger.exception("Unexpected multi-horizon prediction failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to predict demand horizons",
        ) from exc


@router.post(
    "/patterns",
    response_model=DemandPatternsResponse,
    status_code=status.HTTP_200_OK,
)
def analyze_demand_patterns(
    payload: DemandPatternsRequest,
    service: DemandPredictionService = Depends(get_demand_service),
) -> DemandPatternsResponse:
    try:
        report = service.analyze_demand_patterns(payload.location, payload.start, payload.end)
        return DemandPatternsResponse(
            location=payload.location,
            peak_hours=report.peak_hours,
            peak_days=report.peak_days,
            seasonal_trends=report.seasonal_trends,
            anomalies=[
                DemandAnomalyResponse(
                    timestamp=item.timestamp,
                    demand=item.demand,
                    reason=item.reason,
                )
                for item in report.anomalies
            ],
        )
    except PatternValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:
        logger.exception("Unexpected demand pattern failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to analyze demand patterns",
        ) from exc


@router.post(
    "/observations",
    response_model=DemandObservationResponse,
    status_code=status.HTTP_201_CREATED,
)
def record_observation(
    payload: DemandObservationRequest,
    service: DemandPredictionService = Depends(get_demand_service),
) -> DemandObservationResponse:
    try:
        observation = service.record_observation(
            demand=payload.demand,
            factors=payload.factors,
            timestamp=payload.timestamp,
        )
        return DemandObservationResponse(
            timestamp=observation.timestamp,
            demand=observation.demand,
            stored_observations=service.observation_count,
        )
    except DemandValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
