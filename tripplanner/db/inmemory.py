"""In-memory implementations of repository interfaces.

Trips are held as JSON documents and mutated by field path under a single
``asyncio.Lock``, mirroring a document store's "set field X where id = Y".
"""

import asyncio
import copy
from datetime import UTC, datetime
from typing import Any

from pydantic_core import to_jsonable_python

from tripplanner.db.repositories import aggregate_after
from tripplanner.errors import PersistenceError
from tripplanner.models.common import AggregateStatus, ProducerStatus, ProducerType, TripStatus
from tripplanner.models.recommendation import Recommendation, SelectionState
from tripplanner.models.trip import AggregateExecution, ExecutionError, SelectionRecord, Trip
from tripplanner.orchestration.status import compute_aggregate_status, next_trip_status


def _get_path(doc: dict[str, Any], path: str) -> Any:
    node: Any = doc
    for part in path.split("."):
        node = node[part]
    return node


def _set_path(doc: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    node = doc
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = to_jsonable_python(value)


class InMemoryTripRepository:
    """In-memory implementation of TripRepository."""

    def __init__(self) -> None:
        self._docs: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def _update(self, trip_id: str, updates: dict[str, Any]) -> None:
        # Yield first: every persistence write is a suspension point.
        await asyncio.sleep(0)
        async with self._lock:
            doc = self._doc(trip_id)
            for path, value in updates.items():
                _set_path(doc, path, value)
            _set_path(doc, "updated_at", datetime.now(UTC))

    def _doc(self, trip_id: str) -> dict[str, Any]:
        doc = self._docs.get(trip_id)
        if doc is None:
            raise PersistenceError(f"Trip {trip_id} not found for update")
        return doc

    async def create_trip(self, trip: Trip) -> None:
        """Insert a new trip document."""
        async with self._lock:
            if trip.trip_id in self._docs:
                raise PersistenceError(f"Trip {trip.trip_id} already exists")
            self._docs[trip.trip_id] = trip.model_dump(mode="json")

    async def get_trip(self, trip_id: str) -> Trip | None:
        """Get trip by ID."""
        await asyncio.sleep(0)
        async with self._lock:
            doc = self._docs.get(trip_id)
            if doc is None:
                return None
            return Trip.model_validate(copy.deepcopy(doc))

    async def update_producer(
        self, trip_id: str, producer_type: ProducerType, fields: dict[str, Any]
    ) -> None:
        """Set fields of one producer's execution state."""
        prefix = f"producer_execution.{producer_type.value}"
        await self._update(trip_id, {f"{prefix}.{name}": value for name, value in fields.items()})

    async def append_producer_errors(
        self, trip_id: str, producer_type: ProducerType, errors: list[ExecutionError]
    ) -> None:
        """Append errors to one producer's execution state."""
        await asyncio.sleep(0)
        async with self._lock:
            doc = self._doc(trip_id)
            existing = _get_path(doc, f"producer_execution.{producer_type.value}.errors")
            existing.extend(e.model_dump(mode="json") for e in errors)

    async def push_recommendations(
        self, trip_id: str, producer_type: ProducerType, recommendation_ids: list[str]
    ) -> None:
        """Append recommendation IDs for one producer type."""
        await asyncio.sleep(0)
        async with self._lock:
            doc = self._doc(trip_id)
            doc["recommendations"].setdefault(producer_type.value, []).extend(recommendation_ids)

    async def reset_producer(self, trip_id: str, producer_type: ProducerType) -> list[str]:
        """Reset one producer and unlink its recommendations and selection."""
        await asyncio.sleep(0)
        async with self._lock:
            doc = self._doc(trip_id)
            key = producer_type.value
            previous = list(doc["recommendations"].get(key, []))
            doc["recommendations"][key] = []
            doc["selections"].pop(key, None)
            doc["producer_execution"][key] = {
                "status": ProducerStatus.pending.value,
                "started_at": None,
                "completed_at": None,
                "duration_ms": None,
                "recommendation_count": 0,
                "confidence": None,
                "reasoning": None,
                "errors": [],
            }
            return previous

    async def try_begin_execution(self, trip_id: str, now: datetime) -> bool:
        """Claim the trip for execution unless it is already in progress."""
        async with self._lock:
            doc = self._doc(trip_id)
            if doc["execution"]["status"] == AggregateStatus.in_progress.value:
                return False
            doc["execution"] = to_jsonable_python(
                AggregateExecution(status=AggregateStatus.in_progress, started_at=now)
            )
            return True

    async def refresh_aggregate(self, trip_id: str, now: datetime) -> AggregateExecution:
        """Recompute the aggregate from current producer statuses."""
        await asyncio.sleep(0)
        async with self._lock:
            doc = self._doc(trip_id)
            trip = Trip.model_validate(doc)
            new_status = compute_aggregate_status(trip.producer_statuses().values())
            aggregate = aggregate_after(trip.execution, new_status, now)
            doc["execution"] = aggregate.model_dump(mode="json")
            doc["status"] = next_trip_status(trip.status, new_status).value
            _set_path(doc, "updated_at", now)
            return aggregate

    async def set_trip_status(self, trip_id: str, status: TripStatus) -> None:
        """Set the top-level trip status."""
        await self._update(trip_id, {"status": status.value})

    async def set_selection(
        self,
        trip_id: str,
        producer_type: ProducerType,
        record: SelectionRecord,
        status: TripStatus,
    ) -> bool:
        """Overwrite one producer type's selection if the recommendation is still linked."""
        await asyncio.sleep(0)
        async with self._lock:
            doc = self._doc(trip_id)
            key = producer_type.value
            if record.recommendation_id not in doc["recommendations"].get(key, []):
                return False
            doc["selections"][key] = record.model_dump(mode="json")
            doc["status"] = status.value
            _set_path(doc, "updated_at", datetime.now(UTC))
            return True


class InMemoryRecommendationRepository:
    """In-memory implementation of RecommendationRepository."""

    def __init__(self) -> None:
        self._records: dict[str, Recommendation] = {}
        self._lock = asyncio.Lock()

    async def insert(self, recommendation: Recommendation) -> str:
        """Insert one recommendation."""
        await asyncio.sleep(0)
        async with self._lock:
            if recommendation.id in self._records:
                raise PersistenceError(f"Recommendation {recommendation.id} already exists")
            self._records[recommendation.id] = recommendation.model_copy(deep=True)
            return recommendation.id

    async def get(self, recommendation_id: str) -> Recommendation | None:
        """Get recommendation by ID."""
        record = self._records.get(recommendation_id)
        return record.model_copy(deep=True) if record else None

    async def find_by_ids(self, recommendation_ids: list[str]) -> list[Recommendation]:
        """Find recommendations by ID set, in the given order."""
        await asyncio.sleep(0)
        return [
            self._records[rid].model_copy(deep=True)
            for rid in recommendation_ids
            if rid in self._records
        ]

    async def delete_by_ids(self, recommendation_ids: list[str]) -> int:
        """Delete recommendations by ID set."""
        await asyncio.sleep(0)
        async with self._lock:
            deleted = 0
            for rid in recommendation_ids:
                if self._records.pop(rid, None) is not None:
                    deleted += 1
            return deleted

    async def select_exclusive(
        self,
        candidate_ids: list[str],
        chosen_id: str,
        selection: SelectionState,
    ) -> Recommendation | None:
        """Clear selection on every candidate, then select the chosen one."""
        async with self._lock:
            chosen = self._records.get(chosen_id)
            if chosen is None:
                return None

            for rid in candidate_ids:
                record = self._records.get(rid)
                if record is not None and rid != chosen_id:
                    self._records[rid] = record.model_copy(update={"selection": SelectionState()})

            updated = chosen.model_copy(update={"selection": selection})
            self._records[chosen_id] = updated
            return updated.model_copy(deep=True)
