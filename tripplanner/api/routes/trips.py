"""Trip endpoints - creation, status polling, recommendations, selection and rerun."""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import BaseModel, Field

from tripplanner.api.deps import get_trip_service
from tripplanner.models.common import ProducerType
from tripplanner.models.recommendation import Recommendation
from tripplanner.models.trip import (
    CreateTripRequest,
    CreateTripResponse,
    RerunResponse,
    Trip,
    TripStatusView,
)
from tripplanner.services.trips import (
    RecommendationFilters,
    RecommendationPage,
    SortKey,
    TripService,
)

router = APIRouter(prefix="/trips", tags=["trips"])

Service = Annotated[TripService, Depends(get_trip_service)]


class SelectRequest(BaseModel):
    """Request body for selecting a recommendation."""

    selected_by: str = Field("anonymous", min_length=1)
    rank: int = Field(1, ge=1)


class RerunRequest(BaseModel):
    """Request body for a rerun; both fields optional."""

    producer_type: ProducerType | None = None
    reason: str | None = Field(None, max_length=500)


@router.post("", response_model=CreateTripResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_trip(request: CreateTripRequest, service: Service) -> CreateTripResponse:
    """Create a trip; planning continues in the background.

    Returns:
        Trip ID, trip status (planning, or draft when ``start`` is false)
        and initial producer states
    """
    return await service.create_trip(request)


@router.get("/{trip_id}", response_model=Trip)
async def get_trip(trip_id: str, service: Service) -> Trip:
    return await service.get_trip(trip_id)


@router.get("/{trip_id}/status", response_model=TripStatusView)
async def get_trip_status(trip_id: str, service: Service) -> TripStatusView:
    """Poll aggregate and per-producer execution status."""
    return await service.get_trip_status(trip_id)


@router.get("/{trip_id}/recommendations/{producer_type}", response_model=RecommendationPage)
async def list_recommendations(
    trip_id: str,
    producer_type: ProducerType,
    service: Service,
    min_rating: Annotated[float | None, Query(ge=0, le=5)] = None,
    max_price: Annotated[float | None, Query(ge=0)] = None,
    sort_by: Annotated[SortKey | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> RecommendationPage:
    """List recommendations of one type.

    Returns 409 with the producer's current state while it has not completed.
    """
    filters = RecommendationFilters(
        min_rating=min_rating,
        max_price=max_price,
        sort_by=sort_by,
        limit=limit,
        offset=offset,
    )
    return await service.get_recommendations(trip_id, producer_type, filters)


@router.get(
    "/{trip_id}/recommendations/{producer_type}/{recommendation_id}",
    response_model=Recommendation,
)
async def get_recommendation(
    trip_id: str, producer_type: ProducerType, recommendation_id: str, service: Service
) -> Recommendation:
    return await service.get_recommendation(trip_id, producer_type, recommendation_id)


@router.post(
    "/{trip_id}/recommendations/{producer_type}/{recommendation_id}/select",
    response_model=Recommendation,
)
async def select_recommendation(
    trip_id: str,
    producer_type: ProducerType,
    recommendation_id: str,
    service: Service,
    request: Annotated[SelectRequest | None, Body()] = None,
) -> Recommendation:
    """Select a recommendation; any prior selection of the same type is cleared."""
    request = request or SelectRequest()
    return await service.select(
        trip_id, producer_type, recommendation_id, request.selected_by, request.rank
    )


@router.post(
    "/{trip_id}/rerun", response_model=RerunResponse, status_code=status.HTTP_202_ACCEPTED
)
async def rerun(
    trip_id: str,
    service: Service,
    request: Annotated[RerunRequest | None, Body()] = None,
) -> RerunResponse:
    """Re-run one producer (or all enabled ones) in the background.

    Returns 409 while an execution pass is already in progress for the trip.
    """
    request = request or RerunRequest()
    return await service.rerun(trip_id, request.producer_type, request.reason)


@router.post("/{trip_id}/finalize", response_model=Trip)
async def finalize_trip(trip_id: str, service: Service) -> Trip:
    return await service.finalize_trip(trip_id)


@router.post("/{trip_id}/cancel", response_model=Trip)
async def cancel_trip(trip_id: str, service: Service) -> Trip:
    return await service.cancel_trip(trip_id)
