"""Repository protocol interfaces for data access.

Trip documents are never replaced wholesale once created: every mutation
targets one field path (a producer's execution state, one producer's
recommendation list, one selection, the aggregate execution block) so that
producers completing concurrently cannot overwrite each other's writes.
"""

from datetime import datetime
from typing import Any, Protocol

from tripplanner.models.common import AggregateStatus, ProducerType, TripStatus
from tripplanner.models.recommendation import Recommendation, SelectionState
from tripplanner.models.trip import AggregateExecution, ExecutionError, SelectionRecord, Trip


class TripRepository(Protocol):
    """Repository for trip aggregate operations."""

    async def create_trip(self, trip: Trip) -> None:
        """Insert a new trip document.

        Args:
            trip: Fully initialized trip aggregate
        """
        ...

    async def get_trip(self, trip_id: str) -> Trip | None:
        """Get trip by ID.

        Args:
            trip_id: Trip ID

        Returns:
            Trip or None if not found
        """
        ...

    async def update_producer(
        self, trip_id: str, producer_type: ProducerType, fields: dict[str, Any]
    ) -> None:
        """Set fields of one producer's execution state in isolation.

        Args:
            trip_id: Trip ID
            producer_type: Producer whose state is updated
            fields: ProducerExecution field name -> new value
        """
        ...

    async def append_producer_errors(
        self, trip_id: str, producer_type: ProducerType, errors: list[ExecutionError]
    ) -> None:
        """Append errors to one producer's execution state."""
        ...

    async def push_recommendations(
        self, trip_id: str, producer_type: ProducerType, recommendation_ids: list[str]
    ) -> None:
        """Append recommendation IDs to ``recommendations[producer_type]``."""
        ...

    async def reset_producer(self, trip_id: str, producer_type: ProducerType) -> list[str]:
        """Reset one producer to pending and unlink its recommendations and selection.

        Returns:
            The recommendation IDs that were linked before the reset
        """
        ...

    async def try_begin_execution(self, trip_id: str, now: datetime) -> bool:
        """Conditionally mark the aggregate in_progress.

        Sets the aggregate to in_progress only where it is not already
        in_progress; this is the single-flight claim for a trip.

        Returns:
            True if the claim succeeded, False if execution was already in progress
        """
        ...

    async def refresh_aggregate(self, trip_id: str, now: datetime) -> AggregateExecution:
        """Recompute the aggregate from the current producer statuses.

        Read-compute-write happens atomically and only touches the aggregate
        execution block and the top-level trip status.

        Returns:
            The new aggregate execution state
        """
        ...

    async def set_trip_status(self, trip_id: str, status: TripStatus) -> None:
        """Set the top-level trip status."""
        ...

    async def set_selection(
        self,
        trip_id: str,
        producer_type: ProducerType,
        record: SelectionRecord,
        status: TripStatus,
    ) -> bool:
        """Overwrite ``selections[producer_type]`` and set the trip status.

        Conditional on ``record.recommendation_id`` still being linked under
        ``recommendations[producer_type]``; the check and the write are atomic.

        Returns:
            True if the selection was stored, False if the recommendation is no
            longer linked to the trip
        """
        ...


class RecommendationRepository(Protocol):
    """Repository for recommendation records."""

    async def insert(self, recommendation: Recommendation) -> str:
        """Insert one recommendation.

        Returns:
            Recommendation ID
        """
        ...

    async def get(self, recommendation_id: str) -> Recommendation | None:
        """Get recommendation by ID."""
        ...

    async def find_by_ids(self, recommendation_ids: list[str]) -> list[Recommendation]:
        """Find recommendations by ID set, preserving the order of ``recommendation_ids``."""
        ...

    async def delete_by_ids(self, recommendation_ids: list[str]) -> int:
        """Delete recommendations by ID set.

        Returns:
            Number of deleted records
        """
        ...

    async def select_exclusive(
        self,
        candidate_ids: list[str],
        chosen_id: str,
        selection: SelectionState,
    ) -> Recommendation | None:
        """Atomically clear selection on all candidates and select ``chosen_id``.

        Args:
            candidate_ids: All recommendation IDs of the producer type on the trip
            chosen_id: The recommendation to select (must be in candidate_ids)
            selection: Selection fields to store on the chosen record

        Returns:
            The updated chosen recommendation, or None if it no longer exists
        """
        ...


def aggregate_after(
    current: AggregateExecution, new_status: AggregateStatus, now: datetime
) -> AggregateExecution:
    """Stamp aggregate timestamps for a status change."""
    started_at = current.started_at
    completed_at = current.completed_at

    if new_status == AggregateStatus.in_progress:
        if current.status != AggregateStatus.in_progress or started_at is None:
            started_at = now
        completed_at = None
    elif new_status != current.status or completed_at is None:
        completed_at = now

    return AggregateExecution(status=new_status, started_at=started_at, completed_at=completed_at)
