"""Trip aggregate and request/response shapes."""

from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from tripplanner.models.common import AggregateStatus, ProducerStatus, ProducerType, TripStatus


class ExecutionError(BaseModel):
    """One recorded producer error."""

    message: str
    timestamp: datetime


class ProducerExecution(BaseModel):
    """Execution state for one producer on one trip."""

    status: ProducerStatus = ProducerStatus.pending
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: float | None = None
    recommendation_count: int = 0
    confidence: float | None = None
    reasoning: str | None = None
    errors: list[ExecutionError] = Field(default_factory=list)


class AggregateExecution(BaseModel):
    """Trip-level execution state."""

    status: AggregateStatus = AggregateStatus.pending
    started_at: datetime | None = None
    completed_at: datetime | None = None


class SelectionRecord(BaseModel):
    """The currently-selected recommendation for one producer type."""

    recommendation_id: str
    selected_by: str
    selected_at: datetime
    rank: int = 1


class TripPreferences(BaseModel):
    """Traveller preferences that shape producer search criteria."""

    currency: str | None = Field(None, min_length=3, max_length=3)
    non_stop_flights: bool | None = None
    flight_class: str | None = None
    accommodation_type: str | None = None
    min_rating: float | None = Field(None, ge=0, le=5)
    max_price: float | None = Field(None, gt=0)
    cuisines: list[str] | None = None
    transport_types: list[str] | None = None


class CreateTripRequest(BaseModel):
    """Request body for trip creation."""

    destination: str = Field(..., min_length=1)
    origin: str | None = None
    departure_date: date
    return_date: date | None = None
    travelers: int = Field(1, ge=1, le=20)
    preferences: TripPreferences = Field(default_factory=TripPreferences)
    interests: list[str] = Field(default_factory=list)
    producers: list[ProducerType] | None = None
    created_by: str = "anonymous"
    start: bool = True

    @field_validator("destination")
    @classmethod
    def _strip_destination(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("destination must not be blank")
        return value

    @model_validator(mode="after")
    def _check_dates(self) -> "CreateTripRequest":
        if self.return_date is not None and self.return_date < self.departure_date:
            raise ValueError("return_date must not be before departure_date")
        return self


class Trip(BaseModel):
    """Trip aggregate root.

    Immutable by convention: every change goes through the repository's
    field-level update methods, never through whole-document replacement.
    """

    trip_id: str
    status: TripStatus
    destination: str
    origin: str | None = None
    departure_date: date
    return_date: date | None = None
    travelers: int = 1
    currency: str = "USD"
    preferences: TripPreferences = Field(default_factory=TripPreferences)
    interests: list[str] = Field(default_factory=list)
    enabled_producers: list[ProducerType]
    producer_execution: dict[ProducerType, ProducerExecution]
    execution: AggregateExecution = Field(default_factory=AggregateExecution)
    recommendations: dict[ProducerType, list[str]] = Field(default_factory=dict)
    selections: dict[ProducerType, SelectionRecord] = Field(default_factory=dict)
    created_by: str = "anonymous"
    created_at: datetime
    updated_at: datetime

    def producer_statuses(self) -> dict[ProducerType, ProducerStatus]:
        """Statuses of the trip's enabled producers."""
        return {
            producer_type: self.producer_execution[producer_type].status
            for producer_type in self.enabled_producers
        }


class TripStatusView(BaseModel):
    """Response for trip status polling."""

    trip_id: str
    trip_status: TripStatus
    overall_status: AggregateStatus
    per_producer_status: dict[ProducerType, ProducerExecution]
    recommendation_counts: dict[ProducerType, int]


class CreateTripResponse(BaseModel):
    """Response for trip creation."""

    trip_id: str
    status: TripStatus
    producer_execution: dict[ProducerType, ProducerExecution]


class RerunResponse(BaseModel):
    """Response for a rerun request."""

    trip_id: str
    status: ProducerStatus = ProducerStatus.pending
    retriggered: list[ProducerType]
    reason: str
