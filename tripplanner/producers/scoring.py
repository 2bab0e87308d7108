"""Desirability scores and criteria filters per producer type.

Scores start at 100 and move with price, rating, duration, distance,
amenities and availability; they never go below zero. Every lookup tolerates
missing or oddly-shaped fields so a sparse provider item still scores.
"""

import re
from collections.abc import Callable
from typing import Any

from tripplanner.models.common import ProducerType
from tripplanner.models.criteria import SearchCriteria
from tripplanner.normalization.shapes import as_number, as_text, get_path, leading_number

Scorer = Callable[[dict[str, Any]], float]
CriteriaFilter = Callable[[dict[str, Any], SearchCriteria], bool]

PREMIUM_AMENITIES = {"pool", "spa", "gym", "restaurant", "bar", "room-service"}
POPULAR_CUISINES = {"italian", "french", "japanese", "mediterranean"}
POPULAR_CATEGORIES = {"cultural", "food", "adventure", "nature", "arts"}
DINING_PRICE_BONUS = {"$": 15, "$$": 20, "$$$": 10, "$$$$": 5}
TRANSPORT_TYPE_BONUS = {"rideshare": 15, "public": 10, "taxi": 8, "rental": 5}

_DURATION = re.compile(r"(\d+)\s*h(?:\s*(\d+)\s*m)?")
PRICE_PATHS = ("totalPrice", "price.total", "price.amount", "price", "estimatedCost", "averageMeal")


def _price(item: dict[str, Any]) -> float:
    for path in PRICE_PATHS:
        value = as_number(get_path(item, path))
        if value is not None:
            return value
    return 0.0


def _rating(item: dict[str, Any]) -> float:
    value = as_number(get_path(item, "rating.score"))
    if value is None:
        value = as_number(item.get("rating"))
    if value is None:
        return 0.0
    return value / 2 if value > 5 else value


def _list(item: dict[str, Any], key: str) -> list[Any]:
    value = item.get(key)
    return value if isinstance(value, list) else []


def flight_hours(duration: Any) -> float | None:
    """Hours from ``"8h 15m"``-style durations or a bare number of hours."""
    number = as_number(duration)
    if number is not None:
        return number
    if isinstance(duration, str) and (match := _DURATION.search(duration)):
        return int(match.group(1)) + int(match.group(2) or 0) / 60
    return None


def score_flight(item: dict[str, Any]) -> float:
    score = 100 - _price(item) / 10
    if as_number(item.get("stops")) == 0:
        score += 20
    hours = flight_hours(item.get("duration"))
    if hours is not None:
        score -= hours
    departure = as_text(get_path(item, "departure.time"))
    if departure and (hour := as_number(departure.split(":")[0])) is not None:
        if 8 <= hour <= 16:
            score += 10
    return max(0.0, score)


def score_lodging(item: dict[str, Any]) -> float:
    score = 100 + max(0.0, 50 - _price(item) / 10)
    score += _rating(item) * 15
    distance = leading_number(get_path(item, "location.distance"))
    if distance is not None:
        score -= distance * 3
    amenities = {str(a).lower() for a in _list(item, "amenities")}
    score += len(amenities & PREMIUM_AMENITIES) * 5
    kind = as_text(item.get("type"))
    if kind == "hotel":
        score += 10
    elif kind == "resort":
        score += 15
    return max(0.0, score)


def score_dining(item: dict[str, Any]) -> float:
    score = 100 + _rating(item) * 20
    score += DINING_PRICE_BONUS.get(as_text(item.get("priceRange")) or "", 0)
    distance = leading_number(get_path(item, "location.distance"))
    if distance is not None:
        score -= distance * 8
    score += len(_list(item, "features")) * 3
    if item.get("reservations") is True:
        score += 10
    if (as_text(item.get("cuisine")) or "").lower() in POPULAR_CUISINES:
        score += 8
    return max(0.0, score)


def score_activity(item: dict[str, Any]) -> float:
    score = 100 + _rating(item) * 15
    price = _price(item)
    if price < 100:
        score += 10
    if price < 50:
        score += 5
    if (as_text(item.get("category")) or "").lower() in POPULAR_CATEGORIES:
        score += 10
    duration = as_text(item.get("duration")) or ""
    if "hour" in duration:
        hours = leading_number(duration) or 0
        if 2 <= hours <= 4:
            score += 15
        elif 1 <= hours <= 6:
            score += 5
    if item.get("bookingRequired") is False:
        score += 5
    return max(0.0, score)


def score_local_transport(item: dict[str, Any]) -> float:
    score = 100 - _price(item) / 2
    estimated = as_text(item.get("estimatedTime")) or ""
    minutes = leading_number(estimated) if "minute" in estimated else 60
    score -= (minutes or 60) / 3
    availability = as_text(item.get("availability")) or ""
    if availability == "immediate":
        score += 20
    elif "5" in availability:
        score += 15
    elif "10" in availability:
        score += 10
    score += TRANSPORT_TYPE_BONUS.get(as_text(item.get("type")) or "", 0)
    score += len(_list(item, "features")) * 2
    if (as_number(item.get("capacity")) or 0) >= 4:
        score += 5
    return max(0.0, score)


def _within_budget(item: dict[str, Any], criteria: SearchCriteria) -> bool:
    return criteria.max_price is None or _price(item) <= criteria.max_price


def _meets_rating(item: dict[str, Any], criteria: SearchCriteria) -> bool:
    if criteria.min_rating is None:
        return True
    # Unrated items are kept; rating filters only exclude known-low ratings
    if as_number(get_path(item, "rating.score")) is None and as_number(item.get("rating")) is None:
        return True
    return _rating(item) >= criteria.min_rating


def filter_flight(item: dict[str, Any], criteria: SearchCriteria) -> bool:
    if not _within_budget(item, criteria):
        return False
    if criteria.non_stop and (as_number(item.get("stops")) or 0) > 0:
        return False
    if criteria.flight_class:
        cabin = as_text(item.get("class"))
        if cabin is not None and cabin.lower() != criteria.flight_class.lower():
            return False
    return True


def filter_lodging(item: dict[str, Any], criteria: SearchCriteria) -> bool:
    if not (_within_budget(item, criteria) and _meets_rating(item, criteria)):
        return False
    if criteria.accommodation_type:
        kind = as_text(item.get("type"))
        if kind is not None and kind.lower() != criteria.accommodation_type.lower():
            return False
    return True


def filter_dining(item: dict[str, Any], criteria: SearchCriteria) -> bool:
    if not _meets_rating(item, criteria):
        return False
    if criteria.cuisines:
        cuisine = (as_text(item.get("cuisine")) or "").lower()
        wanted = {c.lower() for c in criteria.cuisines}
        if cuisine and cuisine not in wanted:
            return False
    return True


def filter_activity(item: dict[str, Any], criteria: SearchCriteria) -> bool:
    return _within_budget(item, criteria) and _meets_rating(item, criteria)


def filter_local_transport(item: dict[str, Any], criteria: SearchCriteria) -> bool:
    if criteria.transport_types:
        kind = (as_text(item.get("type")) or "").lower()
        if kind and kind not in {t.lower() for t in criteria.transport_types}:
            return False
    return True


SCORERS: dict[ProducerType, Scorer] = {
    ProducerType.flight: score_flight,
    ProducerType.lodging: score_lodging,
    ProducerType.dining: score_dining,
    ProducerType.activity: score_activity,
    ProducerType.local_transport: score_local_transport,
}

FILTERS: dict[ProducerType, CriteriaFilter] = {
    ProducerType.flight: filter_flight,
    ProducerType.lodging: filter_lodging,
    ProducerType.dining: filter_dining,
    ProducerType.activity: filter_activity,
    ProducerType.local_transport: filter_local_transport,
}
