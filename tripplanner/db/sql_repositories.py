"""SQLAlchemy implementations of repository interfaces."""

import logging
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tripplanner.db.models import (
    ProducerExecutionRow,
    RecommendationRow,
    TripRecommendationLink,
    TripRow,
    TripSelection,
)
from tripplanner.db.repositories import aggregate_after
from tripplanner.errors import PersistenceError
from tripplanner.models.common import AggregateStatus, ProducerStatus, ProducerType, TripStatus
from tripplanner.models.recommendation import Recommendation, SelectionState
from tripplanner.models.trip import (
    AggregateExecution,
    ExecutionError,
    ProducerExecution,
    SelectionRecord,
    Trip,
)
from tripplanner.orchestration.status import compute_aggregate_status, next_trip_status

logger = logging.getLogger(__name__)


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _producer_from_row(row: ProducerExecutionRow) -> ProducerExecution:
    return ProducerExecution(
        status=ProducerStatus(row.status),
        started_at=row.started_at,
        completed_at=row.completed_at,
        duration_ms=row.duration_ms,
        recommendation_count=row.recommendation_count,
        confidence=row.confidence,
        reasoning=row.reasoning,
        errors=[ExecutionError.model_validate(e) for e in row.errors or []],
    )


def _recommendation_to_row(rec: Recommendation) -> RecommendationRow:
    return RecommendationRow(
        id=rec.id,
        trip_id=rec.trip_id,
        producer_type=rec.producer_type.value,
        name=rec.name,
        description=rec.description,
        price=rec.price.model_dump(mode="json"),
        rating=rec.rating.model_dump(mode="json") if rec.rating else None,
        location=rec.location.model_dump(mode="json") if rec.location else None,
        confidence=rec.confidence.model_dump(mode="json"),
        images=[image.model_dump(mode="json") for image in rec.images],
        provider_metadata=rec.provider_metadata,
        is_selected=rec.selection.is_selected,
        selection_rank=rec.selection.rank,
        selected_by=rec.selection.selected_by,
        selected_at=rec.selection.selected_at,
        created_at=rec.created_at,
    )


def _recommendation_from_row(row: RecommendationRow) -> Recommendation:
    return Recommendation.model_validate(
        {
            "id": row.id,
            "trip_id": row.trip_id,
            "producer_type": row.producer_type,
            "name": row.name,
            "description": row.description,
            "price": row.price,
            "rating": row.rating,
            "location": row.location,
            "confidence": row.confidence,
            "images": row.images or [],
            "provider_metadata": row.provider_metadata or {},
            "selection": {
                "is_selected": row.is_selected,
                "rank": row.selection_rank,
                "selected_by": row.selected_by,
                "selected_at": row.selected_at,
            },
            "created_at": row.created_at,
        }
    )


class _SqlRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def _fail(self, operation: str, error: SQLAlchemyError, **context: Any) -> PersistenceError:
        logger.error(
            f"Persistence failure during {operation}: {type(error).__name__}",
            extra={"structured": {"operation": operation, **context}},
            exc_info=error,
        )
        return PersistenceError(f"{operation} failed: {type(error).__name__}")


class SqlTripRepository(_SqlRepository):
    """SQL implementation of TripRepository."""

    async def create_trip(self, trip: Trip) -> None:
        """Insert trip row and one execution row per producer."""
        try:
            async with self._session_factory() as session, session.begin():
                session.add(
                    TripRow(
                        trip_id=trip.trip_id,
                        status=trip.status.value,
                        destination=trip.destination,
                        origin=trip.origin,
                        departure_date=trip.departure_date,
                        return_date=trip.return_date,
                        travelers=trip.travelers,
                        currency=trip.currency,
                        preferences=trip.preferences.model_dump(mode="json"),
                        interests=list(trip.interests),
                        enabled_producers=[p.value for p in trip.enabled_producers],
                        aggregate_status=trip.execution.status.value,
                        aggregate_started_at=trip.execution.started_at,
                        aggregate_completed_at=trip.execution.completed_at,
                        created_by=trip.created_by,
                        created_at=trip.created_at,
                        updated_at=trip.updated_at,
                    )
                )
                # Trip row must exist before rows that reference it
                await session.flush()
                for producer_type, state in trip.producer_execution.items():
                    session.add(
                        ProducerExecutionRow(
                            trip_id=trip.trip_id,
                            producer_type=producer_type.value,
                            status=state.status.value,
                            started_at=state.started_at,
                            completed_at=state.completed_at,
                            duration_ms=state.duration_ms,
                            recommendation_count=state.recommendation_count,
                            confidence=state.confidence,
                            reasoning=state.reasoning,
                            errors=[e.model_dump(mode="json") for e in state.errors],
                        )
                    )
        except SQLAlchemyError as e:
            raise self._fail("create_trip", e, trip_id=trip.trip_id) from e

    async def get_trip(self, trip_id: str) -> Trip | None:
        """Load trip row plus its execution, link and selection rows."""
        try:
            async with self._session_factory() as session:
                row = await session.get(TripRow, trip_id)
                if row is None:
                    return None

                producers = (
                    await session.execute(
                        select(ProducerExecutionRow).where(ProducerExecutionRow.trip_id == trip_id)
                    )
                ).scalars()
                links = (
                    await session.execute(
                        select(TripRecommendationLink)
                        .where(TripRecommendationLink.trip_id == trip_id)
                        .order_by(TripRecommendationLink.id)
                    )
                ).scalars()
                selections = (
                    await session.execute(
                        select(TripSelection).where(TripSelection.trip_id == trip_id)
                    )
                ).scalars()

                recommendations: dict[str, list[str]] = {}
                for link in links:
                    recommendations.setdefault(link.producer_type, []).append(
                        link.recommendation_id
                    )

                return Trip.model_validate(
                    {
                        "trip_id": row.trip_id,
                        "status": row.status,
                        "destination": row.destination,
                        "origin": row.origin,
                        "departure_date": row.departure_date,
                        "return_date": row.return_date,
                        "travelers": row.travelers,
                        "currency": row.currency,
                        "preferences": row.preferences or {},
                        "interests": row.interests or [],
                        "enabled_producers": row.enabled_producers,
                        "producer_execution": {
                            p.producer_type: _producer_from_row(p) for p in producers
                        },
                        "execution": {
                            "status": row.aggregate_status,
                            "started_at": row.aggregate_started_at,
                            "completed_at": row.aggregate_completed_at,
                        },
                        "recommendations": recommendations,
                        "selections": {
                            s.producer_type: {
                                "recommendation_id": s.recommendation_id,
                                "selected_by": s.selected_by,
                                "selected_at": s.selected_at,
                                "rank": s.rank,
                            }
                            for s in selections
                        },
                        "created_by": row.created_by,
                        "created_at": row.created_at,
                        "updated_at": row.updated_at,
                    }
                )
        except SQLAlchemyError as e:
            raise self._fail("get_trip", e, trip_id=trip_id) from e

    async def update_producer(
        self, trip_id: str, producer_type: ProducerType, fields: dict[str, Any]
    ) -> None:
        """UPDATE the producer's own row only."""
        values = {name: _column_value(value) for name, value in fields.items()}
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    update(ProducerExecutionRow)
                    .where(ProducerExecutionRow.trip_id == trip_id)
                    .where(ProducerExecutionRow.producer_type == producer_type.value)
                    .values(**values)
                )
                if result.rowcount == 0:
                    raise PersistenceError(f"No {producer_type.value} state for trip {trip_id}")
        except SQLAlchemyError as e:
            raise self._fail(
                "update_producer", e, trip_id=trip_id, producer=producer_type.value
            ) from e

    async def append_producer_errors(
        self, trip_id: str, producer_type: ProducerType, errors: list[ExecutionError]
    ) -> None:
        """Append to the errors column of the producer's row."""
        try:
            async with self._session_factory() as session, session.begin():
                row = (
                    await session.execute(
                        select(ProducerExecutionRow)
                        .where(ProducerExecutionRow.trip_id == trip_id)
                        .where(ProducerExecutionRow.producer_type == producer_type.value)
                        .with_for_update()
                    )
                ).scalar_one_or_none()
                if row is None:
                    raise PersistenceError(f"No {producer_type.value} state for trip {trip_id}")
                row.errors = [*(row.errors or []), *(e.model_dump(mode="json") for e in errors)]
        except SQLAlchemyError as e:
            raise self._fail(
                "append_producer_errors", e, trip_id=trip_id, producer=producer_type.value
            ) from e

    async def push_recommendations(
        self, trip_id: str, producer_type: ProducerType, recommendation_ids: list[str]
    ) -> None:
        """Insert ordered link rows."""
        if not recommendation_ids:
            return
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(
                    insert(TripRecommendationLink),
                    [
                        {
                            "trip_id": trip_id,
                            "producer_type": producer_type.value,
                            "recommendation_id": rid,
                        }
                        for rid in recommendation_ids
                    ],
                )
        except SQLAlchemyError as e:
            raise self._fail(
                "push_recommendations", e, trip_id=trip_id, producer=producer_type.value
            ) from e

    async def reset_producer(self, trip_id: str, producer_type: ProducerType) -> list[str]:
        """Unlink recommendations, drop the selection and reset the producer row."""
        try:
            async with self._session_factory() as session, session.begin():
                previous = list(
                    (
                        await session.execute(
                            select(TripRecommendationLink.recommendation_id)
                            .where(TripRecommendationLink.trip_id == trip_id)
                            .where(TripRecommendationLink.producer_type == producer_type.value)
                            .order_by(TripRecommendationLink.id)
                        )
                    ).scalars()
                )
                await session.execute(
                    delete(TripRecommendationLink)
                    .where(TripRecommendationLink.trip_id == trip_id)
                    .where(TripRecommendationLink.producer_type == producer_type.value)
                )
                await session.execute(
                    delete(TripSelection)
                    .where(TripSelection.trip_id == trip_id)
                    .where(TripSelection.producer_type == producer_type.value)
                )
                await session.execute(
                    update(ProducerExecutionRow)
                    .where(ProducerExecutionRow.trip_id == trip_id)
                    .where(ProducerExecutionRow.producer_type == producer_type.value)
                    .values(
                        status=ProducerStatus.pending.value,
                        started_at=None,
                        completed_at=None,
                        duration_ms=None,
                        recommendation_count=0,
                        confidence=None,
                        reasoning=None,
                        errors=[],
                    )
                )
                return previous
        except SQLAlchemyError as e:
            raise self._fail(
                "reset_producer", e, trip_id=trip_id, producer=producer_type.value
            ) from e

    async def try_begin_execution(self, trip_id: str, now: datetime) -> bool:
        """Conditional UPDATE ... WHERE aggregate_status != 'in_progress'."""
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    update(TripRow)
                    .where(TripRow.trip_id == trip_id)
                    .where(TripRow.aggregate_status != AggregateStatus.in_progress.value)
                    .values(
                        aggregate_status=AggregateStatus.in_progress.value,
                        aggregate_started_at=now,
                        aggregate_completed_at=None,
                        updated_at=now,
                    )
                )
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise self._fail("try_begin_execution", e, trip_id=trip_id) from e

    async def refresh_aggregate(self, trip_id: str, now: datetime) -> AggregateExecution:
        """Recompute the aggregate inside one transaction holding the trip row lock."""
        try:
            async with self._session_factory() as session, session.begin():
                row = (
                    await session.execute(
                        select(TripRow).where(TripRow.trip_id == trip_id).with_for_update()
                    )
                ).scalar_one_or_none()
                if row is None:
                    raise PersistenceError(f"Trip {trip_id} not found for update")

                enabled = set(row.enabled_producers)
                statuses = [
                    ProducerStatus(p.status)
                    for p in (
                        await session.execute(
                            select(ProducerExecutionRow).where(
                                ProducerExecutionRow.trip_id == trip_id
                            )
                        )
                    ).scalars()
                    if p.producer_type in enabled
                ]
                new_status = compute_aggregate_status(statuses)
                current = AggregateExecution(
                    status=AggregateStatus(row.aggregate_status),
                    started_at=row.aggregate_started_at,
                    completed_at=row.aggregate_completed_at,
                )
                aggregate = aggregate_after(current, new_status, now)

                row.aggregate_status = aggregate.status.value
                row.aggregate_started_at = aggregate.started_at
                row.aggregate_completed_at = aggregate.completed_at
                row.status = next_trip_status(TripStatus(row.status), new_status).value
                row.updated_at = now
                return aggregate
        except SQLAlchemyError as e:
            raise self._fail("refresh_aggregate", e, trip_id=trip_id) from e

    async def set_trip_status(self, trip_id: str, status: TripStatus) -> None:
        """Set the top-level trip status."""
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(
                    update(TripRow).where(TripRow.trip_id == trip_id).values(status=status.value)
                )
        except SQLAlchemyError as e:
            raise self._fail("set_trip_status", e, trip_id=trip_id) from e

    async def set_selection(
        self,
        trip_id: str,
        producer_type: ProducerType,
        record: SelectionRecord,
        status: TripStatus,
    ) -> bool:
        """Replace the selection row while the link row is held FOR UPDATE."""
        try:
            async with self._session_factory() as session, session.begin():
                link = (
                    await session.execute(
                        select(TripRecommendationLink.id)
                        .where(TripRecommendationLink.trip_id == trip_id)
                        .where(TripRecommendationLink.producer_type == producer_type.value)
                        .where(
                            TripRecommendationLink.recommendation_id == record.recommendation_id
                        )
                        .with_for_update()
                    )
                ).first()
                if link is None:
                    return False
                await session.execute(
                    delete(TripSelection)
                    .where(TripSelection.trip_id == trip_id)
                    .where(TripSelection.producer_type == producer_type.value)
                )
                session.add(
                    TripSelection(
                        trip_id=trip_id,
                        producer_type=producer_type.value,
                        recommendation_id=record.recommendation_id,
                        selected_by=record.selected_by,
                        selected_at=record.selected_at,
                        rank=record.rank,
                    )
                )
                await session.execute(
                    update(TripRow).where(TripRow.trip_id == trip_id).values(status=status.value)
                )
                return True
        except SQLAlchemyError as e:
            raise self._fail(
                "set_selection", e, trip_id=trip_id, producer=producer_type.value
            ) from e


class SqlRecommendationRepository(_SqlRepository):
    """SQL implementation of RecommendationRepository."""

    async def insert(self, recommendation: Recommendation) -> str:
        """Insert one recommendation row."""
        try:
            async with self._session_factory() as session, session.begin():
                session.add(_recommendation_to_row(recommendation))
            return recommendation.id
        except SQLAlchemyError as e:
            raise self._fail("insert_recommendation", e, recommendation_id=recommendation.id) from e

    async def get(self, recommendation_id: str) -> Recommendation | None:
        """Get recommendation by ID."""
        try:
            async with self._session_factory() as session:
                row = await session.get(RecommendationRow, recommendation_id)
                return _recommendation_from_row(row) if row else None
        except SQLAlchemyError as e:
            raise self._fail("get_recommendation", e, recommendation_id=recommendation_id) from e

    async def find_by_ids(self, recommendation_ids: list[str]) -> list[Recommendation]:
        """Find recommendations by ID set, in the given order."""
        if not recommendation_ids:
            return []
        try:
            async with self._session_factory() as session:
                rows = (
                    await session.execute(
                        select(RecommendationRow).where(
                            RecommendationRow.id.in_(recommendation_ids)
                        )
                    )
                ).scalars()
                by_id = {row.id: _recommendation_from_row(row) for row in rows}
        except SQLAlchemyError as e:
            raise self._fail("find_recommendations", e, count=len(recommendation_ids)) from e
        return [by_id[rid] for rid in recommendation_ids if rid in by_id]

    async def delete_by_ids(self, recommendation_ids: list[str]) -> int:
        """Delete recommendations by ID set."""
        if not recommendation_ids:
            return 0
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    delete(RecommendationRow).where(RecommendationRow.id.in_(recommendation_ids))
                )
                return result.rowcount
        except SQLAlchemyError as e:
            raise self._fail("delete_recommendations", e, count=len(recommendation_ids)) from e

    async def select_exclusive(
        self,
        candidate_ids: list[str],
        chosen_id: str,
        selection: SelectionState,
    ) -> Recommendation | None:
        """Set the chosen row, then clear the other candidates, in one transaction."""
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    update(RecommendationRow)
                    .where(RecommendationRow.id == chosen_id)
                    .values(
                        is_selected=selection.is_selected,
                        selection_rank=selection.rank,
                        selected_by=selection.selected_by,
                        selected_at=selection.selected_at,
                    )
                )
                if result.rowcount == 0:
                    return None
                await session.execute(
                    update(RecommendationRow)
                    .where(RecommendationRow.id.in_(candidate_ids))
                    .where(RecommendationRow.id != chosen_id)
                    .values(
                        is_selected=False,
                        selection_rank=None,
                        selected_by=None,
                        selected_at=None,
                    )
                )
                row = await session.get(RecommendationRow, chosen_id, populate_existing=True)
                return _recommendation_from_row(row)
        except SQLAlchemyError as e:
            raise self._fail("select_recommendation", e, recommendation_id=chosen_id) from e
