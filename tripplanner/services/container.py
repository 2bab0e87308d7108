"""Wiring: builds repositories, producers, orchestrator and services from settings."""

import logging
from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from tripplanner.config import Settings
from tripplanner.db.engine import (
    create_async_engine_from_settings,
    create_schema,
    create_session_factory,
)
from tripplanner.db.inmemory import InMemoryRecommendationRepository, InMemoryTripRepository
from tripplanner.db.repositories import RecommendationRepository, TripRepository
from tripplanner.db.sql_repositories import SqlRecommendationRepository, SqlTripRepository
from tripplanner.models.common import ProducerType
from tripplanner.normalization.normalizer import RecommendationNormalizer
from tripplanner.orchestration.orchestrator import Orchestrator
from tripplanner.orchestration.runner import BackgroundRunner
from tripplanner.orchestration.selection import SelectionManager
from tripplanner.producers.registry import build_producers
from tripplanner.providers.base import SearchProvider
from tripplanner.providers.executor import ProviderExecutor
from tripplanner.services.trips import TripService
from tripplanner.utils.logging import StructuredProviderLogger
from tripplanner.utils.metrics import (
    PrometheusNormalizerMetrics,
    PrometheusProviderMetrics,
    PrometheusRunMetrics,
)

logger = logging.getLogger(__name__)


@dataclass
class Container:
    """Everything a running app needs, plus the resources to release on shutdown."""

    settings: Settings
    trips: TripRepository
    recommendations: RecommendationRepository
    orchestrator: Orchestrator
    selection: SelectionManager
    runner: BackgroundRunner
    service: TripService
    engine: AsyncEngine | None = None
    http_client: httpx.AsyncClient | None = None

    async def startup(self) -> None:
        if self.engine is not None:
            await create_schema(self.engine)

    async def shutdown(self) -> None:
        await self.runner.shutdown()
        if self.http_client is not None:
            await self.http_client.aclose()
        if self.engine is not None:
            await self.engine.dispose()


def build_container(
    settings: Settings,
    *,
    providers: dict[ProducerType, SearchProvider] | None = None,
    executor: ProviderExecutor | None = None,
) -> Container:
    """Build the object graph.

    Args:
        settings: Application settings
        providers: Per-type provider overrides
        executor: Provider executor override (tests pass one with a no-op sleep)
    """
    engine: AsyncEngine | None = None
    trips: TripRepository
    recommendations: RecommendationRepository
    if settings.database_url:
        engine = create_async_engine_from_settings(settings)
        session_factory = create_session_factory(engine)
        trips = SqlTripRepository(session_factory)
        recommendations = SqlRecommendationRepository(session_factory)
        store = "sql"
    else:
        trips = InMemoryTripRepository()
        recommendations = InMemoryRecommendationRepository()
        store = "memory"

    http_client = (
        httpx.AsyncClient(timeout=settings.provider_timeout_ms / 1000)
        if settings.provider_base_urls
        else None
    )
    executor = executor or ProviderExecutor(
        metrics=PrometheusProviderMetrics(), logger=StructuredProviderLogger()
    )
    producers = build_producers(settings, executor, client=http_client, providers=providers)

    normalizer = RecommendationNormalizer(
        recommendations, settings, metrics=PrometheusNormalizerMetrics()
    )
    orchestrator = Orchestrator(trips, normalizer, producers, metrics=PrometheusRunMetrics())
    runner = BackgroundRunner()
    selection = SelectionManager(trips, recommendations, orchestrator, runner)
    service = TripService(settings, trips, recommendations, orchestrator, selection, runner)

    logger.info(
        f"Container built with {store} store",
        extra={"structured": {"store": store, "producers": settings.enabled_producers}},
    )
    return Container(
        settings=settings,
        trips=trips,
        recommendations=recommendations,
        orchestrator=orchestrator,
        selection=selection,
        runner=runner,
        service=service,
        engine=engine,
        http_client=http_client,
    )
