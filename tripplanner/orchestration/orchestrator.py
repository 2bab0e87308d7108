"""Drives producers for a trip and owns the per-producer execution state machine.

Per producer: pending -> running -> completed | failed (| skipped when the
producer is not enabled for the trip). After every producer transition the
aggregate is recomputed from scratch by the repository.

Producer failures never escape ``run_trip``/``run_producer``: they become
part of the trip's state.
"""

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import Any

from tripplanner.db.repositories import TripRepository
from tripplanner.errors import NotFoundError, PersistenceError
from tripplanner.models.common import ProducerStatus, ProducerType
from tripplanner.models.criteria import SearchCriteria
from tripplanner.models.trip import AggregateExecution, ExecutionError, Trip
from tripplanner.normalization.normalizer import NormalizationContext, RecommendationNormalizer
from tripplanner.producers.base import Producer, RawResult, Summary

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


class RunMetrics:
    """Interface for producer run metrics."""

    def record_run(self, producer: str, status: str, duration_ms: float) -> None:
        pass


class Orchestrator:
    """Runs producers for trips."""

    def __init__(
        self,
        trips: TripRepository,
        normalizer: RecommendationNormalizer,
        producers: dict[ProducerType, Producer],
        metrics: RunMetrics | None = None,
    ) -> None:
        self._trips = trips
        self._normalizer = normalizer
        self._producers = producers
        self._metrics = metrics or RunMetrics()

    async def run_trip(
        self, trip_id: str, producer_types: list[ProducerType] | None = None
    ) -> AggregateExecution:
        """Run the given producers (default: all enabled) concurrently.

        Producers outside the trip's enabled set are marked skipped, never run.

        Returns:
            Aggregate execution state after every targeted producer finished

        Raises:
            NotFoundError: Trip does not exist
        """
        trip: Trip | None = None
        try:
            trip = await self._trips.get_trip(trip_id)
            if trip is None:
                raise NotFoundError(f"Trip {trip_id} not found")
            await self._mark_disabled_skipped(trip)
        except NotFoundError:
            raise
        except (Exception, asyncio.CancelledError) as e:
            # Nothing has run yet: fail the targets so the trip does not stay in_progress
            known = self._targets(trip, producer_types) if trip else producer_types or []
            await self.abandon(trip_id, known, e)
            raise

        targets = self._targets(trip, producer_types)
        criteria = SearchCriteria.from_trip(trip)

        logger.info(
            f"Running {len(targets)} producers for trip {trip_id}",
            extra={"structured": {"trip_id": trip_id, "producers": [p.value for p in targets]}},
        )

        await asyncio.gather(*(self.run_producer(trip_id, p, criteria) for p in targets))
        return await self._trips.refresh_aggregate(trip_id, _now())

    async def run_producer(
        self, trip_id: str, producer_type: ProducerType, criteria: SearchCriteria
    ) -> ProducerStatus:
        """Execute one producer end to end.

        Returns:
            The producer's terminal status
        """
        start = time.monotonic()
        try:
            return await self._execute(trip_id, producer_type, criteria, start)
        except asyncio.CancelledError:
            logger.warning(
                f"Run of {producer_type.value} for trip {trip_id} cancelled",
                extra={"structured": {"trip_id": trip_id, "producer": producer_type.value}},
            )
            await self._record_failure(
                trip_id, producer_type, RuntimeError("Run cancelled before completion"), start
            )
            raise
        except Exception as e:
            logger.error(
                f"Unexpected failure while running {producer_type.value} for trip {trip_id}",
                extra={"structured": {"trip_id": trip_id, "producer": producer_type.value}},
                exc_info=e,
            )
            await self._record_failure(trip_id, producer_type, e, start)
            return ProducerStatus.failed

    async def abandon(
        self, trip_id: str, producer_types: list[ProducerType], error: Exception
    ) -> None:
        """Fail producers whose run will never start and recompute the aggregate.

        Releases the trip's single-flight claim when a rerun could not be
        handed to the background runner.
        """
        start = time.monotonic()
        for producer_type in producer_types:
            await self._record_failure(trip_id, producer_type, error, start)
        try:
            await self._trips.refresh_aggregate(trip_id, _now())
        except PersistenceError as e:
            logger.error(
                f"Could not release execution claim for trip {trip_id}",
                extra={"structured": {"trip_id": trip_id}},
                exc_info=e,
            )

    async def _execute(
        self,
        trip_id: str,
        producer_type: ProducerType,
        criteria: SearchCriteria,
        start: float,
    ) -> ProducerStatus:
        producer = self._producers[producer_type]

        # 1. pending -> running
        await self._trips.update_producer(
            trip_id,
            producer_type,
            {"status": ProducerStatus.running, "started_at": _now(), "completed_at": None},
        )
        await self._trips.refresh_aggregate(trip_id, _now())

        # 2. search
        try:
            result = await producer.search(criteria)
        except Exception as e:
            logger.warning(
                f"Producer {producer_type.value} search failed: {e}",
                extra={
                    "structured": {
                        "trip_id": trip_id,
                        "producer": producer_type.value,
                        "error_type": type(e).__name__,
                    }
                },
            )
            await self._record_failure(trip_id, producer_type, e, start)
            return ProducerStatus.failed
        raw = result.value

        # 3. rank
        ranked: list[RawResult] | None
        try:
            ranked = producer.rank(raw)
        except Exception as e:
            logger.warning(
                f"Producer {producer_type.value} rank failed, using raw results: {e}",
                extra={"structured": {"trip_id": trip_id, "producer": producer_type.value}},
            )
            ranked = None

        # 4. summarize
        summary: Summary | None = None
        if ranked is not None:
            try:
                summary = producer.summarize(ranked, criteria)
            except Exception as e:
                logger.warning(
                    f"Producer {producer_type.value} summarize failed, using ranked results: {e}",
                    extra={"structured": {"trip_id": trip_id, "producer": producer_type.value}},
                )

        # 5. best-available result set
        selected = best_available(summary, ranked, raw)

        # 6. normalize, persist, link
        ctx = NormalizationContext(
            trip_id=trip_id,
            producer_type=producer_type,
            currency=criteria.currency,
            destination=criteria.destination,
            provenance=result.provenance,
            reasoning=summary.reasoning if summary else "",
        )
        outcome = await self._normalizer.persist(selected, ctx)
        await self._trips.push_recommendations(trip_id, producer_type, outcome.recommendation_ids)
        if outcome.errors:
            await self._trips.append_producer_errors(trip_id, producer_type, outcome.errors)

        # 7. running -> completed
        duration_ms = (time.monotonic() - start) * 1000
        fields: dict[str, Any] = {
            "status": ProducerStatus.completed,
            "completed_at": _now(),
            "duration_ms": round(duration_ms, 2),
            "recommendation_count": len(outcome.recommendation_ids),
            "confidence": summary.confidence if summary else None,
            "reasoning": summary.reasoning if summary else None,
        }
        await self._trips.update_producer(trip_id, producer_type, fields)
        await self._trips.refresh_aggregate(trip_id, _now())

        self._metrics.record_run(producer_type.value, ProducerStatus.completed.value, duration_ms)
        logger.info(
            f"Producer {producer_type.value} completed for trip {trip_id}",
            extra={
                "structured": {
                    "trip_id": trip_id,
                    "producer": producer_type.value,
                    "outcome": "completed",
                    "latency_ms": round(duration_ms, 2),
                    "raw_count": len(raw),
                    "persisted_count": len(outcome.recommendation_ids),
                    "skipped_count": outcome.skipped,
                    "fallback": result.provenance.fallback,
                }
            },
        )
        return ProducerStatus.completed

    async def _record_failure(
        self, trip_id: str, producer_type: ProducerType, error: Exception, start: float
    ) -> None:
        duration_ms = (time.monotonic() - start) * 1000
        self._metrics.record_run(producer_type.value, ProducerStatus.failed.value, duration_ms)
        try:
            await self._trips.append_producer_errors(
                trip_id,
                producer_type,
                [ExecutionError(message=str(error) or type(error).__name__, timestamp=_now())],
            )
            await self._trips.update_producer(
                trip_id,
                producer_type,
                {
                    "status": ProducerStatus.failed,
                    "completed_at": _now(),
                    "duration_ms": round(duration_ms, 2),
                },
            )
            await self._trips.refresh_aggregate(trip_id, _now())
        except PersistenceError as e:
            logger.error(
                f"Could not record {producer_type.value} failure for trip {trip_id}",
                extra={"structured": {"trip_id": trip_id, "producer": producer_type.value}},
                exc_info=e,
            )

    @staticmethod
    def _targets(trip: Trip, producer_types: list[ProducerType] | None) -> list[ProducerType]:
        requested = producer_types or trip.enabled_producers
        return [p for p in requested if p in trip.enabled_producers]

    async def _mark_disabled_skipped(self, trip: Trip) -> None:
        for producer_type, state in trip.producer_execution.items():
            if producer_type in trip.enabled_producers or state.status == ProducerStatus.skipped:
                continue
            await self._trips.update_producer(
                trip.trip_id, producer_type, {"status": ProducerStatus.skipped}
            )


def best_available(
    summary: Summary | None, ranked: list[RawResult] | None, raw: list[RawResult] | None
) -> list[RawResult]:
    """Summarized output, else ranked, else raw, else empty."""
    if summary is not None:
        return summary.items
    if ranked is not None:
        return ranked
    if raw is not None:
        return raw
    return []
