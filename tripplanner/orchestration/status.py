"""Pure status rules for producer and trip execution."""

from collections.abc import Iterable

from tripplanner.models.common import AggregateStatus, ProducerStatus, TripStatus

ACTIVE_STATUSES = {ProducerStatus.pending, ProducerStatus.running}


def compute_aggregate_status(statuses: Iterable[ProducerStatus]) -> AggregateStatus:
    """Derive the aggregate status from the enabled producers' statuses.

    Computed fresh from every status each time; never incrementally. Any
    producer still pending or running keeps the trip in_progress, even when
    another has already failed, so the rerun guard holds until every
    producer is terminal. Skipped producers are not enabled and are ignored.
    """
    considered = [s for s in statuses if s != ProducerStatus.skipped]

    if any(s in ACTIVE_STATUSES for s in considered):
        return AggregateStatus.in_progress

    completed = sum(1 for s in considered if s == ProducerStatus.completed)
    failed = sum(1 for s in considered if s == ProducerStatus.failed)

    if failed == 0:
        return AggregateStatus.completed
    if completed == 0:
        return AggregateStatus.failed
    return AggregateStatus.partial


def next_trip_status(current: TripStatus, aggregate: AggregateStatus) -> TripStatus:
    """Trip status after the aggregate reaches ``aggregate``."""
    if current not in (TripStatus.draft, TripStatus.planning):
        return current
    if aggregate in (AggregateStatus.completed, AggregateStatus.partial):
        return TripStatus.recommendations_ready
    if aggregate == AggregateStatus.in_progress:
        return TripStatus.planning
    return current
