"""Canonical Recommendation record produced by the normalizer."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from tripplanner.models.common import PriceUnit, ProducerType


class Price(BaseModel):
    """Normalized price."""

    amount: float = Field(0.0, ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    unit: PriceUnit = PriceUnit.per_person


class Rating(BaseModel):
    """Normalized rating on a 0-5 scale."""

    score: float = Field(..., ge=0, le=5)
    review_count: int = Field(0, ge=0)
    source: str = "provider"


class Coordinates(BaseModel):
    """WGS84 coordinates."""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class Location(BaseModel):
    """Where a recommendation is."""

    address: str | None = None
    city: str | None = None
    country: str | None = None
    coordinates: Coordinates | None = None
    place_id: str | None = None


class Confidence(BaseModel):
    """Producer confidence, always on a 0-1 scale."""

    score: float = Field(..., ge=0, le=1)
    reasoning: str = ""


class Image(BaseModel):
    """Image reference."""

    url: str
    alt: str | None = None
    is_primary: bool = False


class SelectionState(BaseModel):
    """Selection fields - the only mutable part of a Recommendation."""

    is_selected: bool = False
    rank: int | None = None
    selected_by: str | None = None
    selected_at: datetime | None = None


class Recommendation(BaseModel):
    """One normalized recommendation owned by exactly one trip."""

    id: str
    trip_id: str
    producer_type: ProducerType
    name: str
    description: str
    price: Price
    rating: Rating | None = None
    location: Location | None = None
    confidence: Confidence
    images: list[Image] = Field(default_factory=list)
    provider_metadata: dict[str, Any] = Field(default_factory=dict)
    selection: SelectionState = Field(default_factory=SelectionState)
    created_at: datetime
