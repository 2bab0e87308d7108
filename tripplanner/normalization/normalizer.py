"""Result normalizer: raw provider items -> canonical Recommendation records.

Every field is read through an ordered list of named extraction rules. The
first rule that yields a usable value wins; when all rules are exhausted the
field takes its documented default. The only producer-specific knowledge is
the default price unit per type.
"""

import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from pydantic import ValidationError as PydanticValidationError

from tripplanner.config import Settings
from tripplanner.db.repositories import RecommendationRepository
from tripplanner.errors import NormalizationError, PersistenceError
from tripplanner.models.common import PriceUnit, ProducerType, Provenance
from tripplanner.models.recommendation import (
    Confidence,
    Coordinates,
    Image,
    Location,
    Price,
    Rating,
    Recommendation,
)
from tripplanner.models.trip import ExecutionError
from tripplanner.normalization.shapes import as_number, as_text, get_path

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CONFIDENCE = 0.5

DEFAULT_PRICE_UNITS: dict[ProducerType, PriceUnit] = {
    ProducerType.flight: PriceUnit.total,
    ProducerType.lodging: PriceUnit.per_night,
    ProducerType.dining: PriceUnit.per_person,
    ProducerType.activity: PriceUnit.per_person,
    ProducerType.local_transport: PriceUnit.per_person,
}


@dataclass(frozen=True)
class Rule(Generic[T]):
    """One named extraction rule; returns None when it does not apply."""

    name: str
    extract: Callable[[dict[str, Any]], T | None]


def apply_rules(rules: list[Rule[T]], item: dict[str, Any]) -> tuple[T | None, str | None]:
    """Run rules in order and return ``(value, rule_name)`` of the first hit."""
    for rule in rules:
        value = rule.extract(item)
        if value is not None:
            return value, rule.name
    return None, None


def _number_at(path: str) -> Callable[[dict[str, Any]], float | None]:
    return lambda item: as_number(get_path(item, path))


def _text_at(path: str) -> Callable[[dict[str, Any]], str | None]:
    return lambda item: as_text(get_path(item, path))


def _joined(*paths: str) -> Callable[[dict[str, Any]], str | None]:
    """Space-join the given fields; applies only when the first is present."""

    def extract(item: dict[str, Any]) -> str | None:
        parts = [as_text(get_path(item, p)) for p in paths]
        if parts[0] is None:
            return None
        return " ".join(p for p in parts if p)

    return extract


# Price

PRICE_AMOUNT_RULES: list[Rule[float]] = [
    Rule("total_price", _number_at("totalPrice")),
    Rule("total_price_snake", _number_at("total_price")),
    Rule("nested_total", _number_at("price.total")),
    Rule("nested_amount", _number_at("price.amount")),
    Rule("bare_price", _number_at("price")),
    Rule("cost", _number_at("cost")),
    Rule("estimated_cost", _number_at("estimatedCost")),
    Rule("average_meal", _number_at("averageMeal")),
]

CURRENCY_RULES: list[Rule[str]] = [
    Rule("nested_currency", _text_at("price.currency")),
    Rule("currency", _text_at("currency")),
]

PRICE_UNIT_RULES: list[Rule[str]] = [
    Rule("nested_unit", _text_at("price.unit")),
    Rule("unit", _text_at("unit")),
    Rule("price_unit", _text_at("priceUnit")),
]

# Rating

RATING_SCORE_RULES: list[Rule[float]] = [
    Rule("nested_score", _number_at("rating.score")),
    Rule("bare_rating", _number_at("rating")),
]

REVIEW_COUNT_RULES: list[Rule[float]] = [
    Rule("nested_review_count", _number_at("rating.reviewCount")),
    Rule("nested_review_count_snake", _number_at("rating.review_count")),
    Rule("review_count", _number_at("reviewCount")),
    Rule("review_count_snake", _number_at("review_count")),
    Rule("user_ratings_total", _number_at("user_ratings_total")),
]

RATING_SOURCE_RULES: list[Rule[str]] = [
    Rule("nested_source", _text_at("rating.source")),
]

# Confidence

CONFIDENCE_RULES: list[Rule[Any]] = [
    Rule("nested_score", lambda item: get_path(item, "confidence.score")),
    Rule(
        "confidence",
        lambda item: None if isinstance(v := get_path(item, "confidence"), dict) else v,
    ),
    Rule("confidence_score", lambda item: get_path(item, "confidenceScore")),
]

REASONING_RULES: list[Rule[str]] = [
    Rule("nested_reasoning", _text_at("confidence.reasoning")),
    Rule("reasoning", _text_at("reasoning")),
]

# Name / description

NAME_RULES: list[Rule[str]] = [
    Rule("title", _text_at("title")),
    Rule("name", _text_at("name")),
    Rule("airline_flight", _joined("airline", "flightNumber")),
    Rule("provider_service", _joined("provider", "service")),
    Rule("external_id", lambda item: f"Option {v}" if (v := as_text(item.get("id"))) else None),
]

DESCRIPTION_RULES: list[Rule[str]] = [
    Rule("description", _text_at("description")),
    Rule("summary", _text_at("summary")),
    Rule("details", _text_at("details")),
]

# Fields summarized into a description when no description rule applies
DESCRIPTION_HIGHLIGHTS = (
    "cuisine",
    "category",
    "type",
    "class",
    "duration",
    "estimatedTime",
    "location.distance",
)

# Location

ADDRESS_RULES: list[Rule[str]] = [
    Rule("nested_address", _text_at("location.address")),
    Rule("address", _text_at("address")),
    Rule("vicinity", _text_at("vicinity")),
    Rule("formatted_address", _text_at("formatted_address")),
]

CITY_RULES: list[Rule[str]] = [
    Rule("nested_city", _text_at("location.city")),
    Rule("city", _text_at("city")),
]

COUNTRY_RULES: list[Rule[str]] = [
    Rule("nested_country", _text_at("location.country")),
    Rule("country", _text_at("country")),
]

PLACE_ID_RULES: list[Rule[str]] = [
    Rule("nested_place_id", _text_at("location.place_id")),
    Rule("place_id", _text_at("place_id")),
    Rule("place_id_camel", _text_at("placeId")),
]

COORDINATE_SOURCES = ("location.coordinates", "coordinates", "geometry.location", "location")

# Images

IMAGE_LIST_RULES: list[Rule[list[Any]]] = [
    Rule("images", lambda item: v if isinstance(v := item.get("images"), list) else None),
    Rule("photos", lambda item: v if isinstance(v := item.get("photos"), list) else None),
    Rule("image", lambda item: [v] if (v := item.get("image") or item.get("imageUrl")) else None),
]

# Metadata

METADATA_RULES: list[Rule[dict[str, Any]]] = [
    Rule(
        "provider_metadata",
        lambda item: v if isinstance(v := item.get("provider_metadata"), dict) else None,
    ),
    Rule(
        "agent_metadata",
        lambda item: v if isinstance(v := item.get("agentMetadata"), dict) else None,
    ),
]


def normalize_confidence(raw: Any) -> float:
    """Map any raw confidence onto [0, 1].

    Values above 1 are read as percentages. Absent, non-numeric and
    non-finite values default to 0.5.
    """
    value = as_number(raw)
    if value is None:
        return DEFAULT_CONFIDENCE
    if value > 1:
        value = value / 100
    return min(1.0, max(0.0, value))


def normalize_rating_score(raw: float) -> float:
    """Map a raw rating onto the 0-5 scale.

    Scores in (5, 10] are read as a 10-point scale and halved; anything above
    10 is capped at 5.
    """
    if raw > 10:
        return 5.0
    if raw > 5:
        raw = raw / 2
    return min(5.0, max(0.0, raw))


def parse_coordinates(value: Any) -> Coordinates | None:
    """Accept ``{lat,lng}``, ``{latitude,longitude}`` or ``[lat, lng]``."""
    lat: float | None = None
    lng: float | None = None
    if isinstance(value, dict):
        lat = as_number(value.get("lat", value.get("latitude")))
        lng = as_number(value.get("lng", value.get("lon", value.get("longitude"))))
    elif isinstance(value, list | tuple) and len(value) == 2:
        lat, lng = as_number(value[0]), as_number(value[1])
    if lat is None or lng is None:
        return None
    try:
        return Coordinates(lat=lat, lng=lng)
    except PydanticValidationError:
        return None


def parse_images(entries: list[Any]) -> list[Image]:
    """Keep bare URL strings and ``{url, alt}`` objects; drop everything else."""
    images: list[Image] = []
    for entry in entries:
        if isinstance(entry, str) and entry.strip():
            images.append(Image(url=entry.strip()))
        elif isinstance(entry, dict) and (url := as_text(entry.get("url"))):
            alt = as_text(entry.get("alt"))
            images.append(Image(url=url, alt=alt, is_primary=entry.get("is_primary") is True))
    if images and not any(image.is_primary for image in images):
        images[0] = images[0].model_copy(update={"is_primary": True})
    return images


@dataclass(frozen=True)
class NormalizationContext:
    """Trip-level facts the normalizer needs for defaults."""

    trip_id: str
    producer_type: ProducerType
    currency: str
    destination: str
    provenance: Provenance | None = None
    reasoning: str = ""


@dataclass
class NormalizationOutcome:
    """IDs that persisted plus one error per skipped item."""

    recommendation_ids: list[str] = field(default_factory=list)
    errors: list[ExecutionError] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.errors)


class NormalizerMetrics:
    """Interface for normalizer metrics."""

    def inc_skipped(self, producer: str, reason: str) -> None:
        pass


class RecommendationNormalizer:
    """Turns raw items into Recommendations and persists them one by one."""

    def __init__(
        self,
        repository: RecommendationRepository,
        settings: Settings,
        metrics: NormalizerMetrics | None = None,
    ) -> None:
        self._repository = repository
        self._settings = settings
        self._metrics = metrics or NormalizerMetrics()

    def normalize(self, item: Any, ctx: NormalizationContext) -> Recommendation:
        """Build one Recommendation from a raw item.

        Raises:
            NormalizationError: Item is not a mapping or yields an invalid record
        """
        if not isinstance(item, dict):
            raise NormalizationError(f"Expected an object, got {type(item).__name__}")

        try:
            return Recommendation(
                id=str(uuid.uuid4()),
                trip_id=ctx.trip_id,
                producer_type=ctx.producer_type,
                name=self._name(item),
                description=self._description(item),
                price=self._price(item, ctx),
                rating=self._rating(item),
                location=self._location(item, ctx),
                confidence=self._confidence(item, ctx),
                images=self._images(item),
                provider_metadata=self._metadata(item, ctx),
                created_at=datetime.now(UTC),
            )
        except PydanticValidationError as e:
            raise NormalizationError(
                f"Invalid recommendation: {e.error_count()} field errors"
            ) from e

    async def persist(self, items: list[Any], ctx: NormalizationContext) -> NormalizationOutcome:
        """Normalize and insert each item; a bad item is skipped, never fatal.

        Returns:
            Outcome with the persisted IDs in input order and the skip errors
        """
        outcome = NormalizationOutcome()
        for index, item in enumerate(items):
            try:
                recommendation = self.normalize(item, ctx)
                recommendation_id = await self._repository.insert(recommendation)
            except (NormalizationError, PersistenceError) as e:
                reason = "malformed" if isinstance(e, NormalizationError) else "insert_failed"
                logger.warning(
                    f"Skipping {ctx.producer_type.value} item {index}: {e}",
                    extra={
                        "structured": {
                            "trip_id": ctx.trip_id,
                            "producer": ctx.producer_type.value,
                            "item_index": index,
                            "reason": reason,
                        }
                    },
                )
                self._metrics.inc_skipped(ctx.producer_type.value, reason)
                outcome.errors.append(
                    ExecutionError(
                        message=f"Item {index} skipped ({reason}): {e}",
                        timestamp=datetime.now(UTC),
                    )
                )
                continue
            outcome.recommendation_ids.append(recommendation_id)
        return outcome

    def _name(self, item: dict[str, Any]) -> str:
        name, _ = apply_rules(NAME_RULES, item)
        if name is None:
            try:
                serialized = json.dumps(item, sort_keys=True, default=str)
            except TypeError:
                # keys of mixed types cannot be sorted
                serialized = json.dumps(item, default=str)
            name = serialized[: self._settings.synthesized_name_length]
        return name[: self._settings.name_max_length]

    def _description(self, item: dict[str, Any]) -> str:
        description, _ = apply_rules(DESCRIPTION_RULES, item)
        if description is None:
            highlights = [as_text(get_path(item, path)) for path in DESCRIPTION_HIGHLIGHTS]
            description = ", ".join(h for h in highlights if h)
        return description[: self._settings.description_max_length]

    def _price(self, item: dict[str, Any], ctx: NormalizationContext) -> Price:
        amount, _ = apply_rules(PRICE_AMOUNT_RULES, item)
        currency, _ = apply_rules(CURRENCY_RULES, item)
        if currency is None or len(currency) != 3 or not currency.isalpha():
            currency = ctx.currency
        unit_text, _ = apply_rules(PRICE_UNIT_RULES, item)
        try:
            unit = PriceUnit(unit_text) if unit_text else DEFAULT_PRICE_UNITS[ctx.producer_type]
        except ValueError:
            unit = DEFAULT_PRICE_UNITS[ctx.producer_type]
        return Price(amount=max(0.0, amount or 0.0), currency=currency.upper(), unit=unit)

    def _rating(self, item: dict[str, Any]) -> Rating | None:
        score, _ = apply_rules(RATING_SCORE_RULES, item)
        if score is None:
            return None
        review_count, _ = apply_rules(REVIEW_COUNT_RULES, item)
        source, _ = apply_rules(RATING_SOURCE_RULES, item)
        return Rating(
            score=normalize_rating_score(score),
            review_count=max(0, int(review_count or 0)),
            source=source or as_text(item.get("source")) or "provider",
        )

    def _location(self, item: dict[str, Any], ctx: NormalizationContext) -> Location:
        address, _ = apply_rules(ADDRESS_RULES, item)
        city, _ = apply_rules(CITY_RULES, item)
        country, _ = apply_rules(COUNTRY_RULES, item)
        place_id, _ = apply_rules(PLACE_ID_RULES, item)
        coordinates = None
        for path in COORDINATE_SOURCES:
            coordinates = parse_coordinates(get_path(item, path))
            if coordinates is not None:
                break
        return Location(
            address=address,
            city=city or ctx.destination,
            country=country,
            coordinates=coordinates,
            place_id=place_id,
        )

    def _confidence(self, item: dict[str, Any], ctx: NormalizationContext) -> Confidence:
        raw, _ = apply_rules(CONFIDENCE_RULES, item)
        reasoning, _ = apply_rules(REASONING_RULES, item)
        return Confidence(score=normalize_confidence(raw), reasoning=reasoning or ctx.reasoning)

    def _images(self, item: dict[str, Any]) -> list[Image]:
        entries, _ = apply_rules(IMAGE_LIST_RULES, item)
        return parse_images(entries or [])

    def _metadata(self, item: dict[str, Any], ctx: NormalizationContext) -> dict[str, Any]:
        passthrough, _ = apply_rules(METADATA_RULES, item)
        metadata: dict[str, Any] = dict(passthrough or {})
        if (external_id := as_text(item.get("id"))) is not None:
            metadata["external_id"] = external_id
        if (score := as_number(item.get("score"))) is not None:
            metadata["desirability_score"] = score
        if (position := item.get("rank_position")) is not None:
            metadata["rank_position"] = position
        source = as_text(item.get("source"))
        if source is None and ctx.provenance is not None:
            source = ctx.provenance.source
        if source is not None:
            metadata["source"] = source
        if ctx.provenance is not None and ctx.provenance.fallback:
            metadata["fallback"] = True
        return metadata
