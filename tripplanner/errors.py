"""Error taxonomy shared by the service, orchestrator and HTTP layer."""

from typing import Any


class TripPlannerError(Exception):
    """Base class for all trip planner errors."""

    pass


class ValidationError(TripPlannerError):
    """Bad input, with field-level details."""

    def __init__(self, message: str, details: list[dict[str, str]] | None = None) -> None:
        super().__init__(message)
        self.details = details or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, details=[{"field": field, "message": message}])


class NotFoundError(TripPlannerError):
    """Trip or recommendation does not exist."""

    pass


class InvalidRecommendationError(TripPlannerError):
    """Recommendation does not belong to the trip's producer type."""

    pass


class NotReadyError(TripPlannerError):
    """Producer has not reached completed; recoverable by polling."""

    def __init__(self, producer_type: str, producer_status: dict[str, Any]) -> None:
        super().__init__(f"{producer_type} recommendations are not ready")
        self.producer_type = producer_type
        self.producer_status = producer_status


class ConflictingExecutionError(TripPlannerError):
    """Execution already in progress for this trip."""

    pass


class ProviderUnavailableError(TripPlannerError):
    """External provider failed, timed out, or its circuit breaker is open."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(message)
        self.provider = provider


class PersistenceError(TripPlannerError):
    """Storage operation failed; fatal for the current operation."""

    pass


class NormalizationError(TripPlannerError):
    """A single raw item could not be turned into a Recommendation."""

    pass
