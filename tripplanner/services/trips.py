"""Trip service: the operations the HTTP layer calls."""

import logging
import uuid
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

from tripplanner.config import Settings
from tripplanner.db.repositories import RecommendationRepository, TripRepository
from tripplanner.errors import NotFoundError, NotReadyError, ValidationError
from tripplanner.models.common import (
    PRODUCER_TYPES,
    AggregateStatus,
    ProducerStatus,
    ProducerType,
    TripStatus,
)
from tripplanner.models.recommendation import Recommendation
from tripplanner.models.trip import (
    AggregateExecution,
    CreateTripRequest,
    CreateTripResponse,
    ProducerExecution,
    RerunResponse,
    Trip,
    TripStatusView,
)
from tripplanner.orchestration.orchestrator import Orchestrator
from tripplanner.orchestration.runner import BackgroundRunner
from tripplanner.orchestration.selection import SelectionManager, ensure_open

logger = logging.getLogger(__name__)

SortKey = Literal["rating", "price_asc", "price_desc", "confidence", "rank"]


class RecommendationFilters(BaseModel):
    """Query filters for listing recommendations."""

    min_rating: float | None = Field(None, ge=0, le=5)
    max_price: float | None = Field(None, ge=0)
    sort_by: SortKey | None = None
    limit: int = Field(20, ge=1, le=100)
    offset: int = Field(0, ge=0)


class RecommendationPage(BaseModel):
    """One page of recommendations; ``total`` counts matches before paging."""

    items: list[Recommendation]
    total: int
    limit: int
    offset: int


def _rank_position(rec: Recommendation) -> float:
    position = rec.provider_metadata.get("rank_position")
    return float(position) if isinstance(position, int | float) else float("inf")


def _sorted(items: list[Recommendation], sort_by: SortKey | None) -> list[Recommendation]:
    if sort_by is None:
        return items
    if sort_by == "rating":
        return sorted(items, key=lambda r: r.rating.score if r.rating else -1.0, reverse=True)
    if sort_by == "price_asc":
        return sorted(items, key=lambda r: r.price.amount)
    if sort_by == "price_desc":
        return sorted(items, key=lambda r: r.price.amount, reverse=True)
    if sort_by == "confidence":
        return sorted(items, key=lambda r: r.confidence.score, reverse=True)
    return sorted(items, key=_rank_position)


class TripService:
    """Creates trips, reports status and serves recommendations."""

    def __init__(
        self,
        settings: Settings,
        trips: TripRepository,
        recommendations: RecommendationRepository,
        orchestrator: Orchestrator,
        selection: SelectionManager,
        runner: BackgroundRunner,
    ) -> None:
        self._settings = settings
        self._trips = trips
        self._recommendations = recommendations
        self._orchestrator = orchestrator
        self._selection = selection
        self._runner = runner

    def _enabled_producers(self, requested: list[ProducerType] | None) -> list[ProducerType]:
        allowed = [p for p in PRODUCER_TYPES if p.value in self._settings.enabled_producers]
        if requested is None:
            enabled = allowed
        else:
            rejected = [p.value for p in requested if p not in allowed]
            if rejected:
                raise ValidationError.for_field(
                    "producers", f"Producers not enabled: {', '.join(rejected)}"
                )
            enabled = [p for p in allowed if p in requested]
        if not enabled:
            raise ValidationError.for_field("producers", "At least one producer must be enabled")
        return enabled

    async def create_trip(self, request: CreateTripRequest) -> CreateTripResponse:
        """Create a trip and, unless ``start`` is False, start planning in the background.

        Raises:
            ValidationError: Producers outside the allow-list or a bad currency
        """
        enabled = self._enabled_producers(request.producers)

        currency = (request.preferences.currency or self._settings.default_currency).upper()
        if len(currency) != 3 or not currency.isalpha():
            raise ValidationError.for_field("preferences.currency", "Currency must be 3 letters")

        now = datetime.now(UTC)
        status = TripStatus.planning if request.start else TripStatus.draft
        execution = (
            AggregateExecution(status=AggregateStatus.in_progress, started_at=now)
            if request.start
            else AggregateExecution()
        )
        trip = Trip(
            trip_id=str(uuid.uuid4()),
            status=status,
            destination=request.destination,
            origin=request.origin,
            departure_date=request.departure_date,
            return_date=request.return_date,
            travelers=request.travelers,
            currency=currency,
            preferences=request.preferences,
            interests=request.interests,
            enabled_producers=enabled,
            producer_execution={p: ProducerExecution() for p in PRODUCER_TYPES},
            execution=execution,
            created_by=request.created_by,
            created_at=now,
            updated_at=now,
        )
        await self._trips.create_trip(trip)

        logger.info(
            f"Trip {trip.trip_id} created",
            extra={
                "structured": {
                    "trip_id": trip.trip_id,
                    "status": status.value,
                    "producers": [p.value for p in enabled],
                }
            },
        )

        if request.start:
            self._runner.submit(
                self._orchestrator.run_trip(trip.trip_id), name=f"plan:{trip.trip_id}"
            )

        return CreateTripResponse(
            trip_id=trip.trip_id,
            status=status,
            producer_execution={p: trip.producer_execution[p] for p in enabled},
        )

    async def get_trip(self, trip_id: str) -> Trip:
        trip = await self._trips.get_trip(trip_id)
        if trip is None:
            raise NotFoundError(f"Trip {trip_id} not found")
        return trip

    async def get_trip_status(self, trip_id: str) -> TripStatusView:
        trip = await self.get_trip(trip_id)
        return TripStatusView(
            trip_id=trip.trip_id,
            trip_status=trip.status,
            overall_status=trip.execution.status,
            per_producer_status=trip.producer_execution,
            recommendation_counts={
                p: len(trip.recommendations.get(p, [])) for p in trip.enabled_producers
            },
        )

    def _require_completed(self, trip: Trip, producer_type: ProducerType) -> None:
        state = trip.producer_execution.get(producer_type)
        if producer_type not in trip.enabled_producers:
            state = ProducerExecution(status=ProducerStatus.skipped)
        if state is None or state.status != ProducerStatus.completed:
            raise NotReadyError(
                producer_type.value,
                (state or ProducerExecution()).model_dump(mode="json"),
            )

    async def get_recommendations(
        self,
        trip_id: str,
        producer_type: ProducerType,
        filters: RecommendationFilters | None = None,
    ) -> RecommendationPage:
        """List one producer type's recommendations.

        Raises:
            NotFoundError: Trip does not exist
            NotReadyError: Producer has not completed (carries its current state)
        """
        filters = filters or RecommendationFilters()
        trip = await self.get_trip(trip_id)
        self._require_completed(trip, producer_type)

        ids = trip.recommendations.get(producer_type, [])
        items = await self._recommendations.find_by_ids(ids)
        if filters.min_rating is not None:
            items = [r for r in items if r.rating and r.rating.score >= filters.min_rating]
        if filters.max_price is not None:
            items = [r for r in items if r.price.amount <= filters.max_price]
        items = _sorted(items, filters.sort_by)

        return RecommendationPage(
            items=items[filters.offset : filters.offset + filters.limit],
            total=len(items),
            limit=filters.limit,
            offset=filters.offset,
        )

    async def get_recommendation(
        self, trip_id: str, producer_type: ProducerType, recommendation_id: str
    ) -> Recommendation:
        trip = await self.get_trip(trip_id)
        if recommendation_id not in trip.recommendations.get(producer_type, []):
            raise NotFoundError(
                f"Recommendation {recommendation_id} not found for {producer_type.value}"
            )
        recommendation = await self._recommendations.get(recommendation_id)
        if recommendation is None:
            raise NotFoundError(f"Recommendation {recommendation_id} not found")
        return recommendation

    async def select(
        self,
        trip_id: str,
        producer_type: ProducerType,
        recommendation_id: str,
        selected_by: str,
        rank: int = 1,
    ) -> Recommendation:
        return await self._selection.select(
            trip_id, producer_type, recommendation_id, selected_by, rank
        )

    async def rerun(
        self,
        trip_id: str,
        producer_type: ProducerType | None = None,
        reason: str | None = None,
    ) -> RerunResponse:
        return await self._selection.rerun(trip_id, producer_type, reason)

    async def finalize_trip(self, trip_id: str) -> Trip:
        """Finalize a trip that has at least one selection."""
        trip = await self.get_trip(trip_id)
        ensure_open(trip)
        if not trip.selections:
            raise ValidationError.for_field(
                "selections", "At least one recommendation must be selected"
            )
        await self._trips.set_trip_status(trip_id, TripStatus.finalized)
        logger.info(f"Trip {trip_id} finalized", extra={"structured": {"trip_id": trip_id}})
        return await self.get_trip(trip_id)

    async def cancel_trip(self, trip_id: str) -> Trip:
        """Cancel any trip that is not finalized; cancelling twice is a no-op."""
        trip = await self.get_trip(trip_id)
        if trip.status == TripStatus.finalized:
            raise ValidationError.for_field("status", "Trip is finalized")
        if trip.status != TripStatus.cancelled:
            await self._trips.set_trip_status(trip_id, TripStatus.cancelled)
            logger.info(f"Trip {trip_id} cancelled", extra={"structured": {"trip_id": trip_id}})
        return await self.get_trip(trip_id)
