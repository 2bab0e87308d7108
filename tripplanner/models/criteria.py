"""Search criteria handed to producers."""

from datetime import date

from pydantic import BaseModel, Field

from tripplanner.models.trip import Trip


class SearchCriteria(BaseModel):
    """Provider-agnostic search criteria derived from a trip."""

    trip_id: str
    destination: str
    origin: str | None = None
    departure_date: date
    return_date: date | None = None
    travelers: int = 1
    currency: str = "USD"
    non_stop: bool | None = None
    flight_class: str | None = None
    accommodation_type: str | None = None
    min_rating: float | None = None
    max_price: float | None = None
    cuisines: list[str] | None = None
    transport_types: list[str] | None = None
    interests: list[str] = Field(default_factory=list)

    @classmethod
    def from_trip(cls, trip: Trip) -> "SearchCriteria":
        prefs = trip.preferences
        return cls(
            trip_id=trip.trip_id,
            destination=trip.destination,
            origin=trip.origin,
            departure_date=trip.departure_date,
            return_date=trip.return_date,
            travelers=trip.travelers,
            currency=trip.currency,
            non_stop=prefs.non_stop_flights,
            flight_class=prefs.flight_class,
            accommodation_type=prefs.accommodation_type,
            min_rating=prefs.min_rating,
            max_price=prefs.max_price,
            cuisines=prefs.cuisines,
            transport_types=prefs.transport_types,
            interests=trip.interests,
        )

    def nights(self) -> int:
        """Number of nights, at least one."""
        if self.return_date is None:
            return 1
        return max(1, (self.return_date - self.departure_date).days)
