"""Selection and rerun operations over a trip's recommendations."""

import asyncio
import logging
import weakref
from datetime import UTC, datetime

from tripplanner.db.repositories import RecommendationRepository, TripRepository
from tripplanner.errors import (
    ConflictingExecutionError,
    InvalidRecommendationError,
    NotFoundError,
    ValidationError,
)
from tripplanner.models.common import ProducerStatus, ProducerType, TripStatus
from tripplanner.models.recommendation import Recommendation, SelectionState
from tripplanner.models.trip import RerunResponse, SelectionRecord, Trip
from tripplanner.orchestration.orchestrator import Orchestrator
from tripplanner.orchestration.runner import BackgroundRunner
from tripplanner.orchestration.status import ACTIVE_STATUSES

logger = logging.getLogger(__name__)

CLOSED_TRIP_STATUSES = (TripStatus.finalized, TripStatus.cancelled)


def ensure_open(trip: Trip) -> None:
    """Reject mutations on finalized or cancelled trips."""
    if trip.status in CLOSED_TRIP_STATUSES:
        raise ValidationError.for_field("status", f"Trip is {trip.status.value}")


class SelectionManager:
    """Idempotent selection and single-flight rerun per trip."""

    def __init__(
        self,
        trips: TripRepository,
        recommendations: RecommendationRepository,
        orchestrator: Orchestrator,
        runner: BackgroundRunner,
    ) -> None:
        self._trips = trips
        self._recommendations = recommendations
        self._orchestrator = orchestrator
        self._runner = runner
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _trip_lock(self, trip_id: str) -> asyncio.Lock:
        """Serializes select and rerun for one trip within this process."""
        lock = self._locks.get(trip_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[trip_id] = lock
        return lock

    async def _load(self, trip_id: str) -> Trip:
        trip = await self._trips.get_trip(trip_id)
        if trip is None:
            raise NotFoundError(f"Trip {trip_id} not found")
        return trip

    async def select(
        self,
        trip_id: str,
        producer_type: ProducerType,
        recommendation_id: str,
        selected_by: str,
        rank: int = 1,
    ) -> Recommendation:
        """Select one recommendation; last write wins per producer type.

        Raises:
            NotFoundError: Trip does not exist
            ValidationError: Trip is finalized or cancelled
            InvalidRecommendationError: ID is not among the trip's recommendations of that type
        """
        async with self._trip_lock(trip_id):
            trip = await self._load(trip_id)
            ensure_open(trip)

            candidates = trip.recommendations.get(producer_type, [])
            invalid = InvalidRecommendationError(
                f"Recommendation {recommendation_id} is not a {producer_type.value} "
                f"recommendation of trip {trip_id}"
            )
            if recommendation_id not in candidates:
                raise invalid

            now = datetime.now(UTC)
            selection = SelectionState(
                is_selected=True, rank=rank, selected_by=selected_by, selected_at=now
            )
            updated = await self._recommendations.select_exclusive(
                candidates, recommendation_id, selection
            )
            if updated is None:
                raise invalid
            stored = await self._trips.set_selection(
                trip_id,
                producer_type,
                SelectionRecord(
                    recommendation_id=recommendation_id,
                    selected_by=selected_by,
                    selected_at=now,
                    rank=rank,
                ),
                TripStatus.user_selecting,
            )
            if not stored:
                # Unlinked by a rerun outside this process
                raise invalid

        logger.info(
            f"Selected {producer_type.value} recommendation for trip {trip_id}",
            extra={
                "structured": {
                    "trip_id": trip_id,
                    "producer": producer_type.value,
                    "recommendation_id": recommendation_id,
                    "selected_by": selected_by,
                }
            },
        )
        return updated

    async def rerun(
        self,
        trip_id: str,
        producer_type: ProducerType | None = None,
        reason: str | None = None,
    ) -> RerunResponse:
        """Reset producers and re-run them in the background.

        Omitting ``producer_type`` re-runs every enabled producer. Returns as
        soon as the reset is persisted; the new run is observed by polling.
        If the reset fails part way, the reset producers are marked failed so
        the trip can be re-run again.

        Raises:
            NotFoundError: Trip does not exist
            ValidationError: Trip is closed, or the producer is not enabled for it
            ConflictingExecutionError: An execution pass is already in progress
            PersistenceError: The reset could not be stored
        """
        async with self._trip_lock(trip_id):
            trip = await self._load(trip_id)
            ensure_open(trip)

            if producer_type is not None and producer_type not in trip.enabled_producers:
                raise ValidationError.for_field(
                    "producer_type", f"{producer_type.value} is not enabled for this trip"
                )
            targets = [producer_type] if producer_type else list(trip.enabled_producers)

            if not await self._trips.try_begin_execution(trip_id, datetime.now(UTC)):
                raise ConflictingExecutionError(
                    f"Execution already in progress for trip {trip_id}"
                )

            # Producers that never ran (draft trips) stay pending unless failed on error
            unfinished = [
                t for t in targets if trip.producer_execution[t].status in ACTIVE_STATUSES
            ]
            reset: list[ProducerType] = []
            deleted = 0
            try:
                for target in targets:
                    previous = await self._trips.reset_producer(trip_id, target)
                    reset.append(target)
                    deleted += await self._recommendations.delete_by_ids(previous)

                if trip.status in (TripStatus.draft, TripStatus.recommendations_ready):
                    await self._trips.set_trip_status(trip_id, TripStatus.planning)
            except Exception as e:
                logger.error(
                    f"Rerun reset failed for trip {trip_id}",
                    extra={
                        "structured": {
                            "trip_id": trip_id,
                            "producers": [t.value for t in targets],
                            "reset": [t.value for t in reset],
                        }
                    },
                    exc_info=e,
                )
                stranded = [t for t in targets if t in reset or t in unfinished]
                await self._orchestrator.abandon(trip_id, stranded, e)
                raise

            self._runner.submit(
                self._orchestrator.run_trip(trip_id, targets), name=f"rerun:{trip_id}"
            )

        reason = reason or "manual rerun"
        logger.info(
            f"Rerun accepted for trip {trip_id}",
            extra={
                "structured": {
                    "trip_id": trip_id,
                    "producers": [t.value for t in targets],
                    "deleted_recommendations": deleted,
                    "reason": reason,
                }
            },
        )
        return RerunResponse(
            trip_id=trip_id,
            status=ProducerStatus.pending,
            retriggered=targets,
            reason=reason,
        )
