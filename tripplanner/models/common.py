"""Common types and enums shared across all models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class ProducerType(str, Enum):
    """Recommendation category handled by one producer."""

    flight = "flight"
    lodging = "lodging"
    dining = "dining"
    activity = "activity"
    local_transport = "local_transport"


PRODUCER_TYPES: list[ProducerType] = list(ProducerType)


class ProducerStatus(str, Enum):
    """Per-producer execution status."""

    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"
    skipped = "skipped"


TERMINAL_PRODUCER_STATUSES = frozenset(
    {ProducerStatus.completed, ProducerStatus.failed, ProducerStatus.skipped}
)


class AggregateStatus(str, Enum):
    """Trip-level execution status derived from all producer statuses."""

    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    partial = "partial"
    failed = "failed"


class TripStatus(str, Enum):
    """User-facing trip lifecycle status."""

    draft = "draft"
    planning = "planning"
    recommendations_ready = "recommendations_ready"
    user_selecting = "user_selecting"
    finalized = "finalized"
    cancelled = "cancelled"


class PriceUnit(str, Enum):
    """How a price applies."""

    per_person = "per_person"
    per_night = "per_night"
    per_room = "per_room"
    per_group = "per_group"
    total = "total"


class Provenance(BaseModel):
    """Provenance metadata for provider results."""

    source: str  # Provider-specific identifier (e.g., "provider.fixtures.flight")
    ref_id: str | None = None
    source_url: str | None = None
    fetched_at: datetime
    fallback: bool = False
