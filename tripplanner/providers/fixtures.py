"""Fixture-backed providers and the curated fallback catalog."""

import copy
import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

from tripplanner.errors import ProviderUnavailableError
from tripplanner.models.common import ProducerType
from tripplanner.models.criteria import SearchCriteria

logger = logging.getLogger(__name__)

FIXTURES_DIR = Path(__file__).parent.parent / "fixtures"
DEFAULT_KEY = "default"
FALLBACK_SOURCE = "fallback"


@lru_cache(maxsize=16)
def _load(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data: dict[str, Any] = json.load(f)
    return data


def _catalog_key(catalog: dict[str, Any], destination: str) -> str:
    """Pick the catalog entry whose key appears in the destination, else default."""
    dest = destination.lower()
    for key in catalog:
        if key != DEFAULT_KEY and key.replace("_", " ") in dest:
            return key
    return DEFAULT_KEY


class FixtureSearchProvider:
    """Serves bundled JSON catalogs keyed by destination.

    Each file under ``fixtures/`` is named after a producer type and maps a
    lowercase destination key to a list of raw items; ``default`` covers
    every other destination.
    """

    def __init__(self, producer_type: ProducerType, fixtures_dir: Path = FIXTURES_DIR) -> None:
        self.producer_type = producer_type
        self.name = f"fixtures.{producer_type.value}"
        self._path = fixtures_dir / f"{producer_type.value}.json"
        self.source_url = f"fixtures://{producer_type.value}"

    async def search(self, criteria: SearchCriteria) -> list[dict[str, Any]]:
        try:
            catalog = _load(self._path)
        except (OSError, json.JSONDecodeError) as e:
            raise ProviderUnavailableError(self.name, f"Fixture catalog unreadable: {e}") from e

        key = _catalog_key(catalog, criteria.destination)
        items = copy.deepcopy(catalog.get(key, []))
        if self.producer_type == ProducerType.flight:
            for item in items:
                _stamp_flight(item, criteria)
        return items


def _stamp_flight(item: dict[str, Any], criteria: SearchCriteria) -> None:
    """Fill route endpoints and dates the catalog leaves open."""
    departure = item.setdefault("departure", {})
    arrival = item.setdefault("arrival", {})
    departure.setdefault("airport", criteria.origin or "ANY")
    departure.setdefault("date", criteria.departure_date.isoformat())
    arrival.setdefault("airport", criteria.destination)
    arrival.setdefault("date", criteria.departure_date.isoformat())


def load_fallback(
    producer_type: ProducerType, limit: int, fixtures_dir: Path = FIXTURES_DIR
) -> list[dict[str, Any]]:
    """Curated substitute items for a producer whose provider is down.

    Returns at most ``limit`` items, each tagged ``source: "fallback"``.
    """
    catalog = _load(fixtures_dir / "fallback.json")
    items = copy.deepcopy(catalog.get(producer_type.value, []))[: max(0, limit)]
    for item in items:
        item["source"] = FALLBACK_SOURCE
    return items
