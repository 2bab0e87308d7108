"""SQLAlchemy ORM models for the trip store."""

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TripRow(Base):
    """Trip table - aggregate root and aggregate execution block."""

    __tablename__ = "trip"
    __table_args__ = (Index("idx_trip_status", "status"),)

    trip_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    destination: Mapped[str] = mapped_column(Text, nullable=False)
    origin: Mapped[str | None] = mapped_column(Text, nullable=True)
    departure_date: Mapped[date] = mapped_column(Date, nullable=False)
    return_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    travelers: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    preferences: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    interests: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    enabled_producers: Mapped[list[str]] = mapped_column(JSONType, nullable=False)
    aggregate_status: Mapped[str] = mapped_column(Text, nullable=False)
    aggregate_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    aggregate_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_by: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ProducerExecutionRow(Base):
    """One row per trip x producer, so producer updates never touch each other."""

    __tablename__ = "producer_execution"

    trip_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("trip.trip_id", ondelete="CASCADE"), primary_key=True
    )
    producer_type: Mapped[str] = mapped_column(String(32), primary_key=True)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[float | None] = mapped_column(Float, nullable=True)
    recommendation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    errors: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)


class TripRecommendationLink(Base):
    """Ordered link from a trip's producer type to its recommendations."""

    __tablename__ = "trip_recommendation"
    __table_args__ = (Index("idx_trip_rec_trip_type", "trip_id", "producer_type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trip_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("trip.trip_id", ondelete="CASCADE"), nullable=False
    )
    producer_type: Mapped[str] = mapped_column(String(32), nullable=False)
    recommendation_id: Mapped[str] = mapped_column(String(36), nullable=False)


class TripSelection(Base):
    """At most one selected recommendation per trip x producer type."""

    __tablename__ = "trip_selection"

    trip_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("trip.trip_id", ondelete="CASCADE"), primary_key=True
    )
    producer_type: Mapped[str] = mapped_column(String(32), primary_key=True)
    recommendation_id: Mapped[str] = mapped_column(String(36), nullable=False)
    selected_by: Mapped[str] = mapped_column(Text, nullable=False)
    selected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class RecommendationRow(Base):
    """Normalized recommendation record."""

    __tablename__ = "recommendation"
    __table_args__ = (Index("idx_rec_trip_type", "trip_id", "producer_type"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    trip_id: Mapped[str] = mapped_column(String(36), nullable=False)
    producer_type: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    rating: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    location: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    confidence: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    images: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    provider_metadata: Mapped[dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=dict
    )
    is_selected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    selection_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    selected_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    selected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
