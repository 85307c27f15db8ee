"""HTTP controller layer for time-boxed price negotiations."""

from __future__ import annotations

from typing import Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from backend.controllers.dependencies import get_negotiation_coordinator
from backend.domain.models import NegotiationStatus
from backend.services.negotiation_service import (
    NegotiationCoordinator,
    NegotiationInitializationError,
    NegotiationNotFoundError,
)
from backend.services.presenters import negotiation_view, offer_view, outcome_view
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/negotiations", tags=["negotiation"])


class CreateNegotiationRequest(BaseModel):
    trip_id: str = Field(min_length=1, max_length=64)
    original_price: float = Field(gt=0.0, allow_inf_nan=False)
    role: str = Field(description="proposer or counterparty")


class MakeOfferRequest(BaseModel):
    price: float = Field(gt=0.0, allow_inf_nan=False)
    by_party: str = Field(description="proposer or counterparty")


class OfferResponse(BaseModel):
    offer_id: str
    price: float
    timestamp: str
    party: str
    reason: str
    confidence: float = Field(ge=0.0, le=100.0)
    is_accepted: bool | None = None
    is_counter_offer: bool | None = None


class NegotiationResponse(BaseModel):
    """Session view; ``current_offer`` always lies inside the acceptable band."""

    session_id: str
    trip_id: str
    role: str
    status: str
    status_color: str
    status_icon: str
    original_price: float = Field(gt=0.0)
    current_offer: float = Field(gt=0.0)
    min_acceptable: float = Field(gt=0.0)
    max_acceptable: float = Field(gt=0.0)
    time_remaining: int = Field(ge=0)
    time_remaining_display: str
    offers: list[OfferResponse]
    suggestions: list[str]


class NegotiationOutcomeResponse(BaseModel):
    """Settled session served from storage once evicted from memory."""

    session_id: str
    trip_id: str
    role: str
    status: str
    status_color: str
    status_icon: str
    original_price: float
    final_price: float
    accepted: bool
    offer_count: int = Field(ge=1)
    completed_at: str


class NegotiationListResponse(BaseModel):
    negotiations: list[NegotiationResponse]


class OfferResultResponse(BaseModel):
    applied: bool
    accepted: bool
    handled_condition: str | None = None
    offer: OfferResponse | None = None
    counter_offer: OfferResponse | None = None
    negotiation: NegotiationResponse


def _not_found(exc: NegotiationNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=str(exc),
    )


@router.post(
    "",
    response_model=NegotiationResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_negotiation(
    payload: CreateNegotiationRequest,
    coordinator: NegotiationCoordinator = Depends(get_negotiation_coordinator),
) -> NegotiationResponse:
    """Open a session anchored on the trip's recommended price."""
    try:
        session = coordinator.create_session(
            trip_id=payload.trip_id,
            original_price=payload.original_price,
            role=payload.role,
        )
        return NegotiationResponse(**negotiation_view(session))
    except NegotiationInitializationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:
        logger.exception("Unexpected negotiation creation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to open negotiation",
        ) from exc


@router.get(
    "",
    response_model=NegotiationListResponse,
    status_code=status.HTTP_200_OK,
)
def list_negotiations(
    status_filter: NegotiationStatus | None = Query(default=None, alias="status"),
    coordinator: NegotiationCoordinator = Depends(get_negotiation_coordinator),
) -> NegotiationListResponse:
    sessions = coordinator.list_sessions(status_filter)
    return NegotiationListResponse(
        negotiations=[NegotiationResponse(**negotiation_view(item)) for item in sessions]
    )


@router.get(
    "/{session_id}",
    response_model=Union[NegotiationResponse, NegotiationOutcomeResponse],
    status_code=status.HTTP_200_OK,
)
def get_negotiation(
    session_id: str,
    coordinator: NegotiationCoordinator = Depends(get_negotiation_coordinator),
) -> Union[NegotiationResponse, NegotiationOutcomeResponse]:
    """Live session view, or the stored outcome of an evicted session."""
    session = coordinator.find_session(session_id)
    if session is not None:
        return NegotiationResponse(**negotiation_view(session))
    try:
        return NegotiationOutcomeResponse(**outcome_view(coordinator.get_outcome(session_id)))
    except NegotiationNotFoundError as exc:
        raise _not_found(exc) from exc


@router.post(
    "/{session_id}/offers",
    response_model=OfferResultResponse,
    status_code=status.HTTP_200_OK,
)
def make_offer(
    session_id: str,
    payload: MakeOfferRequest,
    coordinator: NegotiationCoordinator = Depends(get_negotiation_coordinator),
) -> OfferResultResponse:
    """Submit an offer; ignored offers are reported in ``handled_condition``."""
    try:
        session = coordinator.get_session(session_id)
    except NegotiationNotFoundError as exc:
        raise _not_found(exc) from exc

    result = session.make_offer(payload.price, payload.by_party)
    return OfferResultResponse(
        applied=result.applied,
        accepted=result.accepted,
        handled_condition=result.handled_condition,
        offer=OfferResponse(**offer_view(result.offer)) if result.offer else None,
        counter_offer=(
            OfferResponse(**offer_view(result.counter_offer)) if result.counter_offer else None
        ),
        negotiation=NegotiationResponse(**negotiation_view(session)),
    )


@router.post(
    "/{session_id}/accept",
    response_model=NegotiationResponse,
    status_code=status.HTTP_200_OK,
)
def accept_current_offer(
    session_id: str,
    coordinator: NegotiationCoordinator = Depends(get_negotiation_coordinator),
) -> NegotiationResponse:
    try:
        session = coordinator.accept_current_offer(session_id)
    except NegotiationNotFoundError as exc:
        raise _not_found(exc) from exc
    return NegotiationResponse(**negotiation_view(session))


@router.post(
    "/{session_id}/reject",
    response_model=NegotiationResponse,
    status_code=status.HTTP_200_OK,
)
def reject_negotiation(
    session_id: str,
    coordinator: NegotiationCoordinator = Depends(get_negotiation_coordinator),
) -> NegotiationResponse:
    try:
        session = coordinator.reject_negotiation(session_id)
    except NegotiationNotFoundError as exc:
        raise _not_found(exc) from exc
    return NegotiationResponse(**negotiation_view(session))


@router.delete(
    "/{session_id}",
    response_model=NegotiationResponse,
    status_code=status.HTTP_200_OK,
)
def close_negotiation(
    session_id: str,
    reason: str = Query(default="cancelled", max_length=200),
    coordinator: NegotiationCoordinator = Depends(get_negotiation_coordinator),
) -> NegotiationResponse:
    """Close a session early, e.g. when its trip is cancelled."""
    try:
        session = coordinator.close_session(session_id, reason)
    except NegotiationNotFoundError as exc:
        raise _not_found(exc) from exc
    return NegotiationResponse(**negotiation_view(session))
