"""Shared pytest fixtures for all test suites."""

import asyncio
import copy
from collections.abc import AsyncGenerator, Callable
from datetime import date
from typing import Any

import pytest
import pytest_asyncio

from tripplanner.config import Settings
from tripplanner.errors import ProviderUnavailableError
from tripplanner.models.common import ProducerType
from tripplanner.models.criteria import SearchCriteria
from tripplanner.models.trip import CreateTripRequest
from tripplanner.providers.executor import BreakerRegistry, ProviderExecutor
from tripplanner.services.container import Container, build_container


async def no_sleep(_: float) -> None:
    """Sleep replacement so retries do not slow tests down."""
    return None


class StaticProvider:
    """Returns a fixed list of raw items."""

    def __init__(self, items: list[Any], name: str = "static", delay: float = 0.0) -> None:
        self.name = name
        self.source_url = None
        self._items = items
        self._delay = delay
        self.calls = 0

    async def search(self, criteria: SearchCriteria) -> list[dict[str, Any]]:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        return copy.deepcopy(self._items)


class FailingProvider:
    """Always raises."""

    def __init__(self, error: Exception | None = None, name: str = "failing") -> None:
        self.name = name
        self.source_url = None
        self._error = error or ProviderUnavailableError(name, "upstream returned 503")
        self.calls = 0

    async def search(self, criteria: SearchCriteria) -> list[dict[str, Any]]:
        self.calls += 1
        raise self._error


class GatedProvider:
    """Blocks until ``release()`` is called, then returns its items."""

    def __init__(self, items: list[Any], name: str = "gated") -> None:
        self.name = name
        self.source_url = None
        self._items = items
        self._gate = asyncio.Event()
        self.started = asyncio.Event()

    def release(self) -> None:
        self._gate.set()

    async def search(self, criteria: SearchCriteria) -> list[dict[str, Any]]:
        self.started.set()
        await self._gate.wait()
        return copy.deepcopy(self._items)


FLIGHT_ITEMS = [
    {"id": "F1", "airline": "Air A", "flightNumber": "AA1", "price": 300, "stops": 0,
     "duration": "5h 00m", "departure": {"time": "09:00"}, "confidence": 80},
    {"id": "F2", "airline": "Air B", "flightNumber": "BB2", "price": 250, "stops": 1,
     "duration": "7h 30m", "departure": {"time": "22:00"}, "confidence": 0.6},
    {"id": "F3", "airline": "Air C", "flightNumber": "CC3", "price": 420, "stops": 0,
     "duration": "5h 10m", "departure": {"time": "12:00"}},
]

DINING_ITEMS = [
    {"id": "D1", "name": "Bistro One", "cuisine": "French", "priceRange": "$$", "averageMeal": 40,
     "rating": 4.5, "location": {"distance": "0.5 km"}, "features": ["terrace"],
     "reservations": True},
    {"id": "D2", "name": "Noodle Bar", "cuisine": "Japanese", "priceRange": "$", "averageMeal": 15,
     "rating": 4.1, "location": {"distance": "1.2 km"}, "features": [], "reservations": False},
]


@pytest.fixture
def flight_items() -> list[dict[str, Any]]:
    return copy.deepcopy(FLIGHT_ITEMS)


@pytest.fixture
def dining_items() -> list[dict[str, Any]]:
    return copy.deepcopy(DINING_ITEMS)


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(_env_file=None, database_url=None)  # type: ignore[call-arg]


@pytest.fixture
def executor() -> ProviderExecutor:
    """Executor with no-op sleep and its own breaker registry."""
    return ProviderExecutor(sleep_fn=no_sleep, registry=BreakerRegistry())


@pytest.fixture
def criteria() -> SearchCriteria:
    return SearchCriteria(
        trip_id="trip-1",
        destination="Paris, France",
        origin="JFK",
        departure_date=date(2026, 6, 1),
        return_date=date(2026, 6, 5),
        travelers=2,
        currency="USD",
    )


@pytest.fixture
def trip_request() -> Callable[..., CreateTripRequest]:
    """Factory for trip creation requests."""

    def make(**overrides: Any) -> CreateTripRequest:
        data: dict[str, Any] = {
            "destination": "Paris, France",
            "origin": "JFK",
            "departure_date": "2026-06-01",
            "return_date": "2026-06-05",
            "travelers": 2,
        }
        data.update(overrides)
        return CreateTripRequest.model_validate(data)

    return make


@pytest_asyncio.fixture
async def make_container(
    settings: Settings, executor: ProviderExecutor
) -> AsyncGenerator[Callable[..., Container], None]:
    """Factory building containers; background work is cancelled on teardown."""
    built: list[Container] = []

    def make(
        providers: dict[ProducerType, Any] | None = None, **overrides: Any
    ) -> Container:
        container = build_container(
            settings.model_copy(update=overrides), providers=providers, executor=executor
        )
        built.append(container)
        return container

    yield make

    for container in built:
        await container.shutdown()


@pytest.fixture
def static_provider() -> type[StaticProvider]:
    return StaticProvider


@pytest.fixture
def failing_provider() -> type[FailingProvider]:
    return FailingProvider


@pytest.fixture
def gated_provider() -> type[GatedProvider]:
    return GatedProvider
