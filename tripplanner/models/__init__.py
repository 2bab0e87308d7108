"""Models package - re-exports for convenience."""

from tripplanner.models.common import (
    PRODUCER_TYPES,
    AggregateStatus,
    PriceUnit,
    ProducerStatus,
    ProducerType,
    Provenance,
    TripStatus,
)
from tripplanner.models.criteria import SearchCriteria
from tripplanner.models.recommendation import (
    Confidence,
    Coordinates,
    Image,
    Location,
    Price,
    Rating,
    Recommendation,
    SelectionState,
)
from tripplanner.models.trip import (
    AggregateExecution,
    CreateTripRequest,
    CreateTripResponse,
    ExecutionError,
    ProducerExecution,
    RerunResponse,
    SelectionRecord,
    Trip,
    TripPreferences,
    TripStatusView,
)

__all__ = [
    "PRODUCER_TYPES",
    "AggregateExecution",
    "AggregateStatus",
    "Confidence",
    "Coordinates",
    "CreateTripRequest",
    "CreateTripResponse",
    "ExecutionError",
    "Image",
    "Location",
    "Price",
    "PriceUnit",
    "ProducerExecution",
    "ProducerStatus",
    "ProducerType",
    "Provenance",
    "Rating",
    "Recommendation",
    "RerunResponse",
    "SearchCriteria",
    "SelectionRecord",
    "SelectionState",
    "Trip",
    "TripPreferences",
    "TripStatus",
    "TripStatusView",
]
